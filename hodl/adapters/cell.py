"""
Cell-based (TON) chain adapter.

Talks to a toncenter v2 compatible HTTP API. Transfers are built by up to
three independent strategies against the seqno fetched right before signing;
broadcast tries them in order, then polls the wallet seqno for a bounded
number of attempts and tries to recover the real transaction hash from recent
history. When the hash cannot be recovered the receipt is marked uncertain
instead of carrying an invented hash.
"""
import asyncio
import base64
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import httpx
from tonsdk.boc import Cell, begin_cell
from tonsdk.utils import Address

from ..config import (
    AdapterType,
    NetworkConfig,
    RPC_TIMEOUT,
    TON_CONFIRM_ATTEMPTS,
    TON_CONFIRM_DELAY,
    TON_JETTON_FEE,
    TON_JETTON_FORWARD,
    TokenDescriptor,
)
from ..exceptions import AddressValidationError, BroadcastFailure, NetworkError, TokenError
from ..models import UNKNOWN_HASH, Account, Receipt, SignedTransaction, UnsignedTransaction
from ..transactions import normalize_receipt
from ..utils import AmountLike, from_base_units, to_base_units, to_decimal
from .. import wallets
from .base import Capability, ChainAdapter

TON_DECIMALS = 9
DEFAULT_JETTON_DECIMALS = 9

# Get-method exit codes of a contract that has not been deployed yet
UNINITIALIZED_EXIT_CODES = (-13, -256)

JETTON_TRANSFER_OPCODE = 0x0f8a7ea5

# How far back a history entry may predate the broadcast and still match
HISTORY_SLACK_SECONDS = 60


def comment_cell(comment: str) -> Cell:
    """Text comment payload: a zero opcode followed by the UTF-8 text."""
    return begin_cell().store_uint(0, 32).store_string(comment).end_cell()


def jetton_transfer_body(raw_amount: int, to: str, response_to: str, forward_nano: int,
                         comment: Optional[str] = None, query_id: int = 0) -> Cell:
    """
    Body of a jetton `transfer` message sent to the sender's jetton wallet.

    Args:
        raw_amount (int): Jetton amount in base units
        to (str): Recipient owner address
        response_to (str): Where excess TON is returned
        forward_nano (int): TON forwarded with the transfer notification
        comment (str, optional): Text attached to the notification
        query_id (int): Arbitrary query id

    Returns:
        Cell: The message body
    """
    builder = (
        begin_cell()
        .store_uint(JETTON_TRANSFER_OPCODE, 32)
        .store_uint(query_id, 64)
        .store_coins(raw_amount)
        .store_address(Address(to))
        .store_address(Address(response_to))
        .store_bit(0)  # no custom payload
        .store_coins(forward_nano)
    )
    if comment:
        builder = builder.store_bit(1).store_ref(comment_cell(comment))
    else:
        builder = builder.store_bit(0)
    return builder.end_cell()


def _raw_address(address: str) -> Optional[str]:
    try:
        return Address(address).to_string(False)
    except Exception:
        return None


def _parse_num(entry) -> int:
    """Decode a toncenter stack entry like ["num", "0x1a"]."""
    kind, value = entry[0], entry[1]
    if kind != 'num':
        raise ValueError(f"Expected a number on the stack, got {kind}")
    return int(value, 16) if isinstance(value, str) else int(value)


class CellBasedAdapter(ChainAdapter):
    """TON with v4r2 wallets and jetton tokens."""

    adapter_type = AdapterType.CELL
    capabilities = frozenset({
        Capability.NATIVE_BALANCE,
        Capability.TOKEN_BALANCE,
        Capability.ACCOUNTS,
        Capability.NATIVE_TRANSFER,
        Capability.TOKEN_TRANSFER,
        Capability.BROADCAST,
    })

    def __init__(self, config: NetworkConfig, client: Optional[httpx.AsyncClient] = None,
                 confirm_attempts: int = TON_CONFIRM_ATTEMPTS, confirm_delay: float = TON_CONFIRM_DELAY):
        super().__init__(config)
        headers = {'X-API-Key': config.api_key} if config.api_key else {}
        self.client = client or httpx.AsyncClient(base_url=config.endpoint_url, timeout=RPC_TIMEOUT,
                                                  headers=headers)
        self.confirm_attempts = confirm_attempts
        self.confirm_delay = confirm_delay

    async def close(self):
        await self.client.aclose()

    async def _request(self, method: str, path: str, operation: str, **kwargs) -> Any:
        """Call the API and unwrap its {"ok", "result"} envelope."""
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise NetworkError(f"Endpoint unreachable: {e}", chain=self.name, operation=operation, cause=e) from e
        try:
            data = response.json()
        except ValueError as e:
            raise NetworkError(f"Malformed response (HTTP {response.status_code})",
                               chain=self.name, operation=operation, cause=e) from e
        if not isinstance(data, dict) or not data.get('ok'):
            error = data.get('error') if isinstance(data, dict) else data
            raise NetworkError(f"Request failed (HTTP {response.status_code}): {error}",
                               chain=self.name, operation=operation)
        self.logger.debug(f"{operation} -> {data['result']}")
        return data['result']

    def _address(self, address: str, operation: str) -> Address:
        try:
            return Address(address)
        except Exception as e:
            raise AddressValidationError(f"Invalid TON address: {address!r}",
                                         chain=self.name, operation=operation, cause=e) from e

    async def run_get_method(self, address: str, method: str,
                             stack: Optional[List] = None) -> Tuple[int, List]:
        """
        Run a contract get-method.

        Returns:
            tuple: (exit code, result stack)
        """
        result = await self._request('POST', '/runGetMethod', method, json={
            'address': address,
            'method': method,
            'stack': stack or [],
        })
        return int(result.get('exit_code', 0)), result.get('stack', [])

    # ------------------------------------------------------------------
    # Chain state
    # ------------------------------------------------------------------

    async def get_seqno(self, address: str) -> int:
        """Wallet sequence number; 0 for a wallet that is not deployed yet."""
        exit_code, stack = await self.run_get_method(address, 'seqno')
        if exit_code in UNINITIALIZED_EXIT_CODES:
            return 0
        if exit_code != 0 or not stack:
            raise NetworkError(f"seqno failed with exit code {exit_code}", chain=self.name, operation="get_seqno")
        return _parse_num(stack[0])

    async def get_balance(self, address: str) -> Decimal:
        self._address(address, "get_balance")
        result = await self._request('GET', '/getAddressBalance', "get_balance", params={'address': address})
        return from_base_units(int(result), TON_DECIMALS)

    async def get_jetton_wallet_address(self, owner: str, token: TokenDescriptor) -> str:
        """Resolve the owner's jetton wallet through the jetton master's get_wallet_address."""
        owner_slice = begin_cell().store_address(self._address(owner, "get_jetton_wallet")).end_cell()
        stack = [['tvm.Slice', base64.b64encode(owner_slice.to_boc(False)).decode()]]
        exit_code, result = await self.run_get_method(token.address, 'get_wallet_address', stack)
        if exit_code != 0 or not result:
            raise TokenError(f"Cannot resolve {token.symbol} wallet (exit code {exit_code})",
                             chain=self.name, operation="get_jetton_wallet")
        boc = result[0][1]['bytes']
        wallet_address = Cell.one_from_boc(base64.b64decode(boc)).begin_parse().read_msg_addr()
        return wallet_address.to_string(True, True, True)

    async def get_raw_token_balance(self, address: str, token: TokenDescriptor) -> Tuple[int, int]:
        decimals = token.decimals if token.decimals is not None else DEFAULT_JETTON_DECIMALS
        jetton_wallet = await self.get_jetton_wallet_address(address, token)
        exit_code, stack = await self.run_get_method(jetton_wallet, 'get_wallet_data')
        if exit_code in UNINITIALIZED_EXIT_CODES:
            self.logger.warning(f"{token.symbol} wallet of {address} is not initialized, balance is 0")
            return 0, decimals
        if exit_code != 0 or not stack:
            raise TokenError(f"get_wallet_data failed with exit code {exit_code}",
                             chain=self.name, operation="get_token_balance")
        return _parse_num(stack[0]), decimals

    async def get_transactions(self, address: str, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Recent transactions of an address, newest first.

        Returns:
            list: Entries with hash, value (TON), from, to and timestamp
        """
        result = await self._request('GET', '/getTransactions', "get_transactions",
                                     params={'address': address, 'limit': limit})
        transactions = []
        for tx in result:
            in_msg = tx.get('in_msg') or {}
            out_msgs = tx.get('out_msgs') or []
            # Outgoing transfers carry the value on the first out message
            message = out_msgs[0] if out_msgs else in_msg
            transactions.append({
                'hash': (tx.get('transaction_id') or {}).get('hash'),
                'value': from_base_units(int(message.get('value') or 0), TON_DECIMALS),
                'from': message.get('source') or None,
                'to': message.get('destination') or None,
                'timestamp': int(tx.get('utime', 0)),
                'in_msg_hash': in_msg.get('hash'),
            })
        return transactions

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self) -> Account:
        return wallets.create_ton_account()

    def account_from_mnemonic(self, mnemonic: str) -> Account:
        return wallets.derive_ton_account(mnemonic)

    def generate_mnemonic(self, word_count: int = 24) -> str:
        return wallets.generate_ton_mnemonic(word_count)

    def validate_mnemonic(self, mnemonic: str) -> bool:
        return wallets.validate_ton_mnemonic(mnemonic)

    def private_key_to_account(self, private_key: str) -> Account:
        return wallets.ton_account_from_key(private_key)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def _wallet(self, account: Account):
        return wallets.ton_wallet_contract(bytes.fromhex(account.public_key),
                                           bytes.fromhex(account.private_key.text()))

    def _strategies(self, wallet, to: str, nano: int, seqno: int, payload):
        """Ordered message builders; each returns a signed external message."""
        explicit = comment_cell(payload) if isinstance(payload, str) else payload

        def standard():
            return wallet.create_transfer_message(to, nano, seqno, payload=payload, send_mode=3)

        def explicit_payload():
            return wallet.create_transfer_message(to, nano, seqno, payload=explicit, send_mode=1)

        def non_bounceable():
            destination = Address(to).to_string(True, True, False)
            return wallet.create_transfer_message(destination, nano, seqno, payload=explicit, send_mode=3)

        return [('standard', standard), ('explicit_payload', explicit_payload), ('non_bounceable', non_bounceable)]

    async def _build_signed(self, account: Account, to: str, nano: int, payload,
                            unsigned: UnsignedTransaction, operation: str) -> SignedTransaction:
        wallet = self._wallet(account)
        seqno = await self.get_seqno(account.address)

        bocs = []
        for name, build in self._strategies(wallet, to, nano, seqno, payload):
            try:
                query = build()
                bocs.append(base64.b64encode(query['message'].to_boc(False)).decode())
            except Exception as e:
                self.logger.warning(f"Transfer strategy '{name}' failed on {self.name}: {e}")
        if not bocs:
            raise BroadcastFailure("All transfer strategies failed", chain=self.name, operation=operation)

        self.logger.info(f"Signed {len(bocs)} candidate message(s) at seqno {seqno}")
        return SignedTransaction(
            chain=self.name, raw=bocs[0], unsigned=unsigned, alternates=tuple(bocs[1:]),
            details={'seqno': seqno, 'destination': to},
        )

    async def handle_native_transfer(self, account: Account, to: str, amount: AmountLike,
                                     comment: Optional[str] = None) -> SignedTransaction:
        """
        Build and sign a TON transfer with an optional comment.

        Args:
            account (Account): Sender
            to (str): Recipient address
            amount: Amount in TON
            comment (str, optional): Text comment

        Returns:
            SignedTransaction: First strategy's BOC in `raw`, the rest in `alternates`
        """
        self._address(to, "handle_native_transfer")
        value = to_decimal(amount)
        nano = to_base_units(value, TON_DECIMALS)
        unsigned = UnsignedTransaction(
            kind='native', from_address=account.address, to=to, amount=value,
            symbol=self.config.native_token_symbol, details={'comment': comment},
        )
        return await self._build_signed(account, to, nano, comment or "", unsigned, "handle_native_transfer")

    async def handle_token_transfer(self, account: Account, symbol: str, to: str, amount: AmountLike,
                                    comment: Optional[str] = None) -> SignedTransaction:
        """
        Build and sign a jetton transfer.

        The message goes to the sender's jetton wallet and carries a small TON
        allowance for fees; excess is returned to the sender.
        """
        token = self.resolve_token(symbol)
        self._address(to, "handle_token_transfer")
        value = to_decimal(amount)
        decimals = token.decimals if token.decimals is not None else DEFAULT_JETTON_DECIMALS
        raw_amount = to_base_units(value, decimals)

        jetton_wallet = await self.get_jetton_wallet_address(account.address, token)
        body = jetton_transfer_body(
            raw_amount, to, account.address,
            forward_nano=to_base_units(TON_JETTON_FORWARD, TON_DECIMALS),
            comment=comment, query_id=int(time.time()),
        )
        fee_nano = to_base_units(TON_JETTON_FEE, TON_DECIMALS)
        unsigned = UnsignedTransaction(
            kind='token', from_address=account.address, to=to, amount=value,
            fee_parameters={'tonAllowance': fee_nano}, symbol=symbol,
            details={'rawAmount': raw_amount, 'jettonWallet': jetton_wallet, 'comment': comment},
        )
        self.logger.info(f"Signing {value} {symbol} transfer to {to} via jetton wallet {jetton_wallet}")
        signed = await self._build_signed(account, jetton_wallet, fee_nano, body, unsigned, "handle_token_transfer")
        signed.details['rawAmount'] = raw_amount
        return signed

    async def send_signed_transaction(self, signed: SignedTransaction) -> Receipt:
        """
        Submit the candidate messages in order and wait for the seqno to move.

        Returns:
            Receipt: The recovered hash, or UNKNOWN_HASH with `uncertain` set
        """
        self._check_signed(signed, "send_signed_transaction")
        sender = signed.unsigned.from_address
        seqno = signed.details.get('seqno', 0)
        sent_at = int(time.time())

        result = None
        for index, boc in enumerate((signed.raw,) + tuple(signed.alternates)):
            try:
                result = await self._request('POST', '/sendBocReturnHash', "send_signed_transaction",
                                             json={'boc': boc})
                break
            except NetworkError as e:
                self.logger.warning(f"Candidate {index + 1} rejected on {self.name}: {e.message}")
        else:
            raise BroadcastFailure("Every transfer candidate was rejected",
                                   chain=self.name, operation="send_signed_transaction")

        message_hash = (result or {}).get('hash') if isinstance(result, dict) else None
        self.logger.info(f"Message accepted on {self.name}, waiting for seqno to pass {seqno}")
        return await self._confirm(sender, seqno, sent_at, message_hash, signed.details.get('destination'))

    async def _confirm(self, address: str, seqno: int, sent_at: int,
                       message_hash: Optional[str], destination: Optional[str]) -> Receipt:
        raw_result = {'messageHash': message_hash, 'seqno': seqno}
        confirmed = False
        for attempt in range(self.confirm_attempts):
            if attempt:
                await asyncio.sleep(self.confirm_delay)
            try:
                if not confirmed:
                    confirmed = await self.get_seqno(address) > seqno
                if confirmed:
                    tx_hash = await self._find_transaction(address, sent_at, message_hash, destination)
                    if tx_hash:
                        self.logger.info(f"Confirmed {tx_hash} on {self.name}")
                        return normalize_receipt(raw_result, success=True, transaction_hash=tx_hash)
            except NetworkError as e:
                self.logger.warning(f"Confirmation attempt {attempt + 1} failed: {e.message}")

        self.logger.warning(f"Could not recover the transaction hash on {self.name} "
                            f"after {self.confirm_attempts} attempts (seqno advanced: {confirmed})")
        return Receipt(transaction_hash=UNKNOWN_HASH, success=confirmed, raw_result=raw_result, uncertain=True)

    async def _find_transaction(self, address: str, sent_at: int, message_hash: Optional[str],
                                destination: Optional[str]) -> Optional[str]:
        target = _raw_address(destination) if destination else None
        for tx in await self.get_transactions(address, limit=10):
            if message_hash and tx['in_msg_hash'] == message_hash:
                return tx['hash']
            if tx['timestamp'] < sent_at - HISTORY_SLACK_SECONDS:
                continue
            if target and tx['to'] and _raw_address(tx['to']) == target:
                return tx['hash']
        return None
