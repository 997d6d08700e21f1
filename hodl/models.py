"""
Data models shared by every chain adapter.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

# Placeholder used when a node gives no usable transaction hash
UNKNOWN_HASH = "unknown"


class SecretBuffer:
    """Mutable byte buffer for key material that can be overwritten in place.

    Python strings are immutable and cannot be scrubbed, so secrets are held
    here and only decoded at the point of use.
    """

    def __init__(self, value):
        if isinstance(value, str):
            value = value.encode("utf-8")
        self._buffer = bytearray(value)
        self._wiped = False

    @property
    def wiped(self) -> bool:
        return self._wiped

    def reveal(self) -> bytes:
        if self._wiped:
            raise ValueError("Secret has been wiped")
        return bytes(self._buffer)

    def text(self) -> str:
        return self.reveal().decode("utf-8")

    def wipe(self):
        for i in range(len(self._buffer)):
            self._buffer[i] = 0
        self._wiped = True

    def __len__(self):
        return len(self._buffer)

    def __eq__(self, other):
        if not isinstance(other, SecretBuffer):
            return NotImplemented
        return self._buffer == other._buffer

    def __repr__(self):
        return "SecretBuffer(<wiped>)" if self._wiped else "SecretBuffer(****)"


@dataclass
class Account:
    """A keypair on one chain model.

    `private_key` holds the chain-native export form (0x-hex for EVM, WIF for
    Bitcoin, hex of the 64-byte ed25519 secret for TON). `mnemonic` is only
    set when the account was derived from a phrase.
    """

    address: str
    public_key: str
    private_key: SecretBuffer
    mnemonic: Optional[SecretBuffer] = None

    def wipe(self):
        """Overwrite the secret material held by this account."""
        self.private_key.wipe()
        if self.mnemonic is not None:
            self.mnemonic.wipe()

    @property
    def has_mnemonic(self) -> bool:
        return self.mnemonic is not None


@dataclass(frozen=True)
class Utxo:
    """An unspent output belonging to the sender."""

    txid: str
    output_index: int
    value_satoshis: int

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Utxo':
        return cls(
            txid=str(data['txid']),
            output_index=int(data['vout']),
            value_satoshis=int(data['value']),
        )


@dataclass
class UnsignedTransaction:
    """Model-specific transfer envelope before signing."""

    kind: str  # 'native' or 'token'
    from_address: str
    to: str
    amount: Decimal
    fee_parameters: Dict[str, Any] = field(default_factory=dict)
    symbol: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SignedTransaction:
    """Serialized transaction ready for broadcast.

    `alternates` holds independently built and signed encodings of the same
    transfer for chains whose submission falls back between strategies.
    """

    chain: str
    raw: str
    unsigned: UnsignedTransaction
    transaction_hash: Optional[str] = None
    alternates: Tuple[str, ...] = ()
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Receipt:
    """Canonical broadcast result every adapter returns."""

    transaction_hash: str
    success: bool
    raw_result: Any = None
    uncertain: bool = False

    @property
    def has_hash(self) -> bool:
        return self.transaction_hash != UNKNOWN_HASH
