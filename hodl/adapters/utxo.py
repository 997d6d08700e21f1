"""
UTXO-based (Bitcoin) chain adapter.

Coin selection is done here rather than delegated to a library: unspent
outputs are taken smallest first until they cover the amount plus a fee that
is re-estimated after every added input. Inputs are native segwit (P2WPKH)
and every signature is checked before the transaction is serialised.
"""
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

import httpx
from bitcoin import SelectParams
from bitcoin.core import (
    CMutableTransaction,
    CMutableTxIn,
    CMutableTxOut,
    COutPoint,
    CTxInWitness,
    CTxWitness,
    b2x,
    lx,
)
from bitcoin.core.script import (
    OP_CHECKSIG,
    OP_DUP,
    OP_EQUALVERIFY,
    OP_HASH160,
    SIGHASH_ALL,
    SIGVERSION_WITNESS_V0,
    CScript,
    CScriptWitness,
    SignatureHash,
)
from bitcoin.wallet import CBitcoinAddress
from bip_utils import WifDecoder
from coincurve import PrivateKey, PublicKey

from ..config import AdapterType, BTC_DUST_THRESHOLD, BTC_FEE_RATE, NetworkConfig, RPC_TIMEOUT
from ..exceptions import (
    AddressValidationError,
    BroadcastFailure,
    ConfigError,
    InsufficientBalance,
    InvalidKey,
    NetworkError,
    SignatureValidationFailure,
)
from ..models import Account, Receipt, SignedTransaction, UnsignedTransaction, Utxo
from ..transactions import normalize_receipt
from ..utils import AmountLike, from_base_units, to_base_units, to_decimal
from .. import wallets
from .base import Capability, ChainAdapter

SATOSHI_DECIMALS = 8

# Approximate native segwit byte costs
INPUT_VBYTES = 68
OUTPUT_VBYTES = 31
OVERHEAD_VBYTES = 10

# python-bitcoinlib chain parameter names
CHAIN_PARAMS = {'bitcoin': 'mainnet', 'testnet': 'testnet'}


def estimate_fee(num_inputs: int, fee_rate: int, num_outputs: int = 2) -> int:
    """Fee in satoshis for a transaction of the given shape."""
    return fee_rate * (INPUT_VBYTES * num_inputs + OUTPUT_VBYTES * num_outputs + OVERHEAD_VBYTES)


@dataclass(frozen=True)
class CoinSelection:
    """Inputs chosen for a transfer and the resulting fee and change."""

    inputs: Tuple[Utxo, ...]
    total_input: int
    fee: int
    change: int

    @property
    def has_change_output(self) -> bool:
        return self.change > 0


def select_coins(utxos: Sequence[Utxo], target: int, fee_rate: int = BTC_FEE_RATE,
                 dust_threshold: int = BTC_DUST_THRESHOLD) -> CoinSelection:
    """
    Pick unspent outputs to cover a payment.

    Outputs are tried in ascending value order and accumulated until
    total >= target + fee, with the fee recomputed for each input count. The
    estimate always assumes a recipient and a change output. Change at or
    below the dust threshold is dropped and left to the fee.

    Args:
        utxos: Unspent outputs of the sender
        target (int): Amount to send in satoshis
        fee_rate (int): Fee rate in sat/vB
        dust_threshold (int): Largest change value that is not worth an output

    Returns:
        CoinSelection: The selection

    Raises:
        InsufficientBalance: If every output together cannot cover target + fee
    """
    if target <= 0:
        raise ValueError("Target must be a positive number of satoshis")

    selected = []
    total = 0
    fee = 0
    for utxo in sorted(utxos, key=lambda u: u.value_satoshis):
        selected.append(utxo)
        total += utxo.value_satoshis
        fee = estimate_fee(len(selected), fee_rate)
        if total >= target + fee:
            break
    else:
        available = sum(u.value_satoshis for u in utxos)
        raise InsufficientBalance(
            f"Need {target + fee} sats (amount {target} + fee {fee}), have {available} sats",
            operation="select_coins",
        )

    change = total - target - fee
    if change <= dust_threshold:
        fee += change
        change = 0
    return CoinSelection(inputs=tuple(selected), total_input=total, fee=fee, change=change)


class UtxoBasedAdapter(ChainAdapter):
    """Bitcoin over an Esplora-compatible REST API."""

    adapter_type = AdapterType.UTXO
    capabilities = frozenset({
        Capability.NATIVE_BALANCE,
        Capability.ACCOUNTS,
        Capability.NATIVE_TRANSFER,
        Capability.BROADCAST,
    })

    def __init__(self, config: NetworkConfig, client: Optional[httpx.AsyncClient] = None,
                 fee_rate: int = BTC_FEE_RATE, dust_threshold: int = BTC_DUST_THRESHOLD):
        super().__init__(config)
        self.network = config.network or 'bitcoin'
        if self.network not in CHAIN_PARAMS:
            raise ConfigError(f"Unknown bitcoin network '{self.network}'",
                              chain=self.name, operation="create_adapter")
        self.fee_rate = fee_rate
        self.dust_threshold = dust_threshold
        self.client = client or httpx.AsyncClient(base_url=config.endpoint_url, timeout=RPC_TIMEOUT)

    async def close(self):
        await self.client.aclose()

    async def _request(self, method: str, path: str, operation: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NetworkError(f"HTTP {e.response.status_code}: {e.response.text.strip()}",
                               chain=self.name, operation=operation, cause=e) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Endpoint unreachable: {e}", chain=self.name, operation=operation, cause=e) from e
        return response

    def _script_pubkey(self, address: str, operation: str):
        SelectParams(CHAIN_PARAMS[self.network])
        try:
            return CBitcoinAddress(address).to_scriptPubKey()
        except Exception as e:
            raise AddressValidationError(f"Invalid {self.network} address: {address!r}",
                                         chain=self.name, operation=operation, cause=e) from e

    # ------------------------------------------------------------------
    # Chain state
    # ------------------------------------------------------------------

    async def get_balance(self, address: str) -> Decimal:
        """Confirmed plus mempool balance in BTC."""
        response = await self._request('GET', f'/address/{address}', "get_balance")
        data = response.json()
        satoshis = 0
        for stats in (data.get('chain_stats', {}), data.get('mempool_stats', {})):
            satoshis += int(stats.get('funded_txo_sum', 0)) - int(stats.get('spent_txo_sum', 0))
        return from_base_units(satoshis, SATOSHI_DECIMALS)

    async def get_utxos(self, address: str) -> List[Utxo]:
        """Unspent outputs of an address, always fetched fresh."""
        response = await self._request('GET', f'/address/{address}/utxo', "get_utxos")
        utxos = [Utxo.from_api(item) for item in response.json()]
        self.logger.debug(f"{address} has {len(utxos)} unspent outputs on {self.name}")
        return utxos

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self) -> Account:
        return wallets.create_btc_account(self.network)

    def account_from_mnemonic(self, mnemonic: str) -> Account:
        return wallets.derive_btc_account(mnemonic, self.network)

    def generate_mnemonic(self, word_count: int = 12) -> str:
        return wallets.generate_mnemonic(word_count)

    def validate_mnemonic(self, mnemonic: str) -> bool:
        return wallets.validate_mnemonic(mnemonic)

    def private_key_to_account(self, private_key: str) -> Account:
        return wallets.btc_account_from_wif(private_key, self.network)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def _signing_key(self, account: Account) -> PrivateKey:
        try:
            raw_key, _ = WifDecoder.Decode(account.private_key.text(),
                                           net_ver=wallets.BTC_PARAMS[self.network]['wif_net_ver'])
        except Exception as e:
            raise InvalidKey("Invalid WIF private key", chain=self.name,
                             operation="handle_native_transfer", cause=e) from e
        return PrivateKey(raw_key)

    def sign_transaction(self, account: Account, selection: CoinSelection, to: str, target: int) -> str:
        """
        Build, sign and serialise a P2WPKH transaction.

        Each input signature is verified against its BIP143 sighash before
        the witness is attached.

        Returns:
            str: Raw transaction hex

        Raises:
            SignatureValidationFailure: If any signature does not verify
        """
        sender_script = self._script_pubkey(account.address, "handle_native_transfer")
        outputs = [CMutableTxOut(target, self._script_pubkey(to, "handle_native_transfer"))]
        if selection.has_change_output:
            outputs.append(CMutableTxOut(selection.change, sender_script))
        inputs = [CMutableTxIn(COutPoint(lx(u.txid), u.output_index)) for u in selection.inputs]
        unsigned_tx = CMutableTransaction(inputs, outputs, nLockTime=0, nVersion=2)

        key = self._signing_key(account)
        public_key = key.public_key.format(compressed=True)
        # scriptCode for P2WPKH is the P2PKH script over the witness program
        script_code = CScript([OP_DUP, OP_HASH160, bytes(sender_script)[2:], OP_EQUALVERIFY, OP_CHECKSIG])

        witnesses = []
        for index, utxo in enumerate(selection.inputs):
            sighash = SignatureHash(script_code, unsigned_tx, index, SIGHASH_ALL,
                                    amount=utxo.value_satoshis, sigversion=SIGVERSION_WITNESS_V0)
            signature = key.sign(sighash, hasher=None)
            if not PublicKey(public_key).verify(signature, sighash, hasher=None):
                raise SignatureValidationFailure(f"Signature for input {index} does not verify",
                                                 chain=self.name, operation="handle_native_transfer")
            witnesses.append(CTxInWitness(CScriptWitness([signature + bytes([SIGHASH_ALL]), public_key])))

        signed_tx = CMutableTransaction(inputs, outputs, nLockTime=0, nVersion=2,
                                        witness=CTxWitness(witnesses))
        return b2x(signed_tx.serialize())

    async def handle_native_transfer(self, account: Account, to: str, amount: AmountLike) -> SignedTransaction:
        """
        Select coins, sign and serialise a BTC transfer.

        Args:
            account (Account): Sender holding a WIF key
            to (str): Recipient address
            amount: Amount in BTC

        Returns:
            SignedTransaction: Raw hex transaction with the selection in `details`
        """
        self._script_pubkey(to, "handle_native_transfer")
        value = to_decimal(amount)
        target = to_base_units(value, SATOSHI_DECIMALS)

        utxos = await self.get_utxos(account.address)
        try:
            selection = select_coins(utxos, target, self.fee_rate, self.dust_threshold)
        except InsufficientBalance as e:
            e.chain = self.name
            e.operation = "handle_native_transfer"
            raise

        self.logger.info(f"Selected {len(selection.inputs)} inputs for {target} sats "
                         f"(fee={selection.fee}, change={selection.change})")
        raw = self.sign_transaction(account, selection, to, target)
        unsigned = UnsignedTransaction(
            kind='native', from_address=account.address, to=to, amount=value,
            fee_parameters={'feeRate': self.fee_rate, 'fee': selection.fee},
            symbol=self.config.native_token_symbol,
            details={'inputs': [asdict(u) for u in selection.inputs], 'change': selection.change},
        )
        return SignedTransaction(
            chain=self.name, raw=raw, unsigned=unsigned,
            details={'fee': selection.fee, 'change': selection.change,
                     'totalInput': selection.total_input, 'inputCount': len(selection.inputs)},
        )

    async def send_signed_transaction(self, signed: SignedTransaction) -> Receipt:
        """Broadcast the raw hex; the node answers with the txid as plain text."""
        self._check_signed(signed, "send_signed_transaction")
        try:
            response = await self._request('POST', '/tx', "send_signed_transaction", content=signed.raw)
        except NetworkError as e:
            raise BroadcastFailure(e.message, chain=self.name, operation="send_signed_transaction",
                                   cause=e.cause) from e
        txid = response.text.strip()
        self.logger.info(f"Broadcast {txid} on {self.name}")
        return normalize_receipt(txid, success=True)
