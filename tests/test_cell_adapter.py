"""
TON adapter tests against a mocked toncenter API
"""
import base64
import json
import time
from decimal import Decimal

import httpx
import pytest
from tonsdk.boc import begin_cell
from tonsdk.utils import Address

from hodl.adapters.cell import JETTON_TRANSFER_OPCODE, jetton_transfer_body
from hodl.exceptions import BroadcastFailure, NetworkError, UnsupportedOperation
from hodl.models import UNKNOWN_HASH
from hodl.wallets import ton_account_from_key


def ok(result):
    return httpx.Response(200, json={'ok': True, 'result': result})


def failed(error, status=500):
    return httpx.Response(status, json={'ok': False, 'error': error, 'code': status})


def num(value):
    return {'exit_code': 0, 'stack': [['num', hex(value)]]}


def address_cell_boc(address):
    cell = begin_cell().store_address(Address(address)).end_cell()
    return base64.b64encode(cell.to_boc(False)).decode()


class GetMethods:
    """Dispatches /runGetMethod calls on the get-method name."""

    def __init__(self, **handlers):
        self.handlers = handlers

    def __call__(self, request):
        body = json.loads(request.content)
        return self.handlers[body['method']](body)


@pytest.fixture
def sender():
    return ton_account_from_key('11' * 32)


@pytest.fixture
def recipient():
    return ton_account_from_key('22' * 32).address


@pytest.fixture
def chain(api):
    """Minimal wallet state: a seqno that moves once a message is accepted."""
    state = {'seqno': 5, 'advance': True, 'history': []}
    api.route('POST', '/runGetMethod', GetMethods(seqno=lambda body: ok(num(state['seqno']))))

    def send(request):
        if state['advance']:
            state['seqno'] += 1
        return ok({'hash': 'msg-hash'})

    api.route('POST', '/sendBocReturnHash', send)
    api.route('GET', '/getTransactions', lambda request: ok(state['history']))
    return state


class TestNativeTransfer:
    """Candidate building, broadcast and confirmation"""

    async def test_candidates_share_seqno(self, ton_adapter, chain, sender, recipient):
        signed = await ton_adapter.handle_native_transfer(sender, recipient, "1.5", comment="hi")

        assert signed.details['seqno'] == 5
        assert len(signed.alternates) == 2
        assert signed.unsigned.amount == Decimal("1.5")
        assert len({signed.raw, *signed.alternates}) == 3

    async def test_hash_recovered_from_in_msg(self, ton_adapter, chain, sender, recipient):
        chain['history'] = [{
            'transaction_id': {'hash': 'tx-hash'},
            'utime': int(time.time()),
            'in_msg': {'hash': 'msg-hash', 'value': '0'},
            'out_msgs': [{'source': sender.address, 'destination': recipient, 'value': '1500000000'}],
        }]
        signed = await ton_adapter.handle_native_transfer(sender, recipient, "1.5")
        receipt = await ton_adapter.send_signed_transaction(signed)

        assert receipt.transaction_hash == 'tx-hash'
        assert receipt.success
        assert not receipt.uncertain

    async def test_rejected_candidate_falls_through(self, ton_adapter, api, chain, sender, recipient):
        attempts = []

        def send(request):
            attempts.append(json.loads(request.content)['boc'])
            if len(attempts) == 1:
                return failed('LITE_SERVER_UNKNOWN: cannot apply external message')
            chain['seqno'] += 1
            return ok({'hash': 'msg-hash'})

        api.route('POST', '/sendBocReturnHash', send)
        chain['history'] = [{
            'transaction_id': {'hash': 'tx-hash'},
            'utime': int(time.time()),
            'in_msg': {'hash': 'msg-hash'},
            'out_msgs': [],
        }]
        signed = await ton_adapter.handle_native_transfer(sender, recipient, 1)
        receipt = await ton_adapter.send_signed_transaction(signed)

        assert attempts == [signed.raw, signed.alternates[0]]
        assert receipt.transaction_hash == 'tx-hash'

    async def test_every_candidate_rejected(self, ton_adapter, api, chain, sender, recipient):
        api.route('POST', '/sendBocReturnHash', lambda request: failed('rejected'))
        signed = await ton_adapter.handle_native_transfer(sender, recipient, 1)
        with pytest.raises(BroadcastFailure):
            await ton_adapter.send_signed_transaction(signed)

    async def test_hash_recovered_by_destination(self, ton_adapter, api, chain, sender, recipient):
        def send_without_hash(request):
            chain['seqno'] += 1
            return ok({})

        api.route('POST', '/sendBocReturnHash', send_without_hash)
        chain['history'] = [
            {
                'transaction_id': {'hash': 'stale'},
                'utime': int(time.time()) - 3600,
                'in_msg': {},
                'out_msgs': [{'destination': recipient, 'value': '1'}],
            },
            {
                'transaction_id': {'hash': 'fresh'},
                'utime': int(time.time()),
                'in_msg': {},
                'out_msgs': [{'destination': Address(recipient).to_string(False), 'value': '1'}],
            },
        ]
        signed = await ton_adapter.handle_native_transfer(sender, recipient, 1)
        receipt = await ton_adapter.send_signed_transaction(signed)
        assert receipt.transaction_hash == 'fresh'

    async def test_seqno_never_advances(self, ton_adapter, chain, sender, recipient):
        chain['advance'] = False
        signed = await ton_adapter.handle_native_transfer(sender, recipient, 1)
        receipt = await ton_adapter.send_signed_transaction(signed)

        assert receipt.transaction_hash == UNKNOWN_HASH
        assert not receipt.has_hash
        assert receipt.success is False
        assert receipt.uncertain

    async def test_confirmed_without_history_is_uncertain(self, ton_adapter, chain, sender, recipient):
        signed = await ton_adapter.handle_native_transfer(sender, recipient, 1)
        receipt = await ton_adapter.send_signed_transaction(signed)

        assert receipt.transaction_hash == UNKNOWN_HASH
        assert receipt.success is True
        assert receipt.uncertain

    async def test_all_strategies_fail(self, ton_adapter, chain, sender, recipient):
        def broken():
            raise ValueError("cannot serialize")

        ton_adapter._strategies = lambda *args: [('standard', broken), ('non_bounceable', broken)]
        with pytest.raises(BroadcastFailure):
            await ton_adapter.handle_native_transfer(sender, recipient, 1)

    async def test_undeployed_wallet_signs_at_zero(self, ton_adapter, api, sender, recipient):
        api.route('POST', '/runGetMethod', GetMethods(seqno=lambda body: ok({'exit_code': -13, 'stack': []})))
        signed = await ton_adapter.handle_native_transfer(sender, recipient, 1)
        assert signed.details['seqno'] == 0


class TestJettons:
    """Jetton wallet resolution, balances and transfers"""

    @pytest.fixture
    def jetton_wallet(self):
        return ton_account_from_key('33' * 32).address

    async def test_uninitialized_jetton_wallet_is_zero(self, ton_adapter, api, sender, jetton_wallet):
        api.route('POST', '/runGetMethod', GetMethods(
            get_wallet_address=lambda body: ok({'exit_code': 0, 'stack': [
                ['cell', {'bytes': address_cell_boc(jetton_wallet)}],
            ]}),
            get_wallet_data=lambda body: ok({'exit_code': -13, 'stack': []}),
        ))
        assert await ton_adapter.get_token_balance(sender.address, 'USDT') == 0

    async def test_jetton_balance(self, ton_adapter, api, sender, jetton_wallet):
        queried = []

        def wallet_data(body):
            queried.append(body['address'])
            return ok(num(2500000))

        api.route('POST', '/runGetMethod', GetMethods(
            get_wallet_address=lambda body: ok({'exit_code': 0, 'stack': [
                ['cell', {'bytes': address_cell_boc(jetton_wallet)}],
            ]}),
            get_wallet_data=wallet_data,
        ))
        assert await ton_adapter.get_token_balance(sender.address, 'USDT') == Decimal("2.5")
        assert Address(queried[0]).to_string(False) == Address(jetton_wallet).to_string(False)

    async def test_token_transfer_targets_jetton_wallet(self, ton_adapter, api, sender, recipient, jetton_wallet):
        api.route('POST', '/runGetMethod', GetMethods(
            seqno=lambda body: ok(num(1)),
            get_wallet_address=lambda body: ok({'exit_code': 0, 'stack': [
                ['cell', {'bytes': address_cell_boc(jetton_wallet)}],
            ]}),
        ))
        signed = await ton_adapter.handle_token_transfer(sender, 'USDT', recipient, "1.23")

        assert signed.details['rawAmount'] == 1230000
        assert signed.details['destination'] == jetton_wallet
        assert signed.unsigned.details['jettonWallet'] == jetton_wallet

    def test_transfer_body_layout(self, recipient, sender):
        body = jetton_transfer_body(1230000, recipient, sender.address, forward_nano=1, query_id=7)
        reader = body.begin_parse()
        assert reader.read_uint(32) == JETTON_TRANSFER_OPCODE
        assert reader.read_uint(64) == 7
        assert reader.read_coins() == 1230000
        assert not body.refs

    def test_transfer_body_with_comment(self, recipient, sender):
        body = jetton_transfer_body(1, recipient, sender.address, forward_nano=1, comment="order 42")
        assert len(body.refs) == 1


class TestQueries:

    async def test_balance_in_ton(self, ton_adapter, api, sender):
        api.route('GET', '/getAddressBalance', lambda request: ok("2500000000"))
        assert await ton_adapter.get_balance(sender.address) == Decimal("2.5")

    async def test_api_error_is_network_error(self, ton_adapter, api, sender):
        api.route('GET', '/getAddressBalance', lambda request: failed('rate limit', status=429))
        with pytest.raises(NetworkError) as info:
            await ton_adapter.get_balance(sender.address)
        assert info.value.operation == "get_balance"

    async def test_transactions_normalised(self, ton_adapter, api, sender, recipient):
        api.route('GET', '/getTransactions', lambda request: ok([{
            'transaction_id': {'hash': 'abc', 'lt': '1'},
            'utime': 1700000000,
            'in_msg': {'source': recipient, 'destination': sender.address, 'value': '1000000000', 'hash': 'm1'},
            'out_msgs': [],
        }]))
        [tx] = await ton_adapter.get_transactions(sender.address, limit=5)
        assert tx == {
            'hash': 'abc',
            'value': Decimal("1"),
            'from': recipient,
            'to': sender.address,
            'timestamp': 1700000000,
            'in_msg_hash': 'm1',
        }
        assert api.requests[-1].url.params['limit'] == '5'

    async def test_gas_unsupported(self, ton_adapter):
        with pytest.raises(UnsupportedOperation):
            await ton_adapter.get_gas_price()
