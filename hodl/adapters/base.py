"""
The contract every chain adapter implements.

An adapter declares the capabilities it provides; declaring a capability
without overriding every operation behind it is rejected when the class is
defined, and calling an operation outside the declared set raises
UnsupportedOperation.
"""
import logging
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, Tuple

from ..config import NetworkConfig, TokenDescriptor
from ..exceptions import ConfigError, TokenError, UnsupportedOperation
from ..models import Account, Receipt, SignedTransaction
from ..utils import AmountLike, from_base_units


class Capability:
    """Capability tags an adapter can declare."""

    NATIVE_BALANCE = "native_balance"
    TOKEN_BALANCE = "token_balance"
    ACCOUNTS = "accounts"
    NATIVE_TRANSFER = "native_transfer"
    TOKEN_TRANSFER = "token_transfer"
    BROADCAST = "broadcast"
    GAS = "gas"


# Operations an adapter must override to claim each capability
CAPABILITY_METHODS: Dict[str, Tuple[str, ...]] = {
    Capability.NATIVE_BALANCE: ("get_balance",),
    Capability.TOKEN_BALANCE: ("get_raw_token_balance",),
    Capability.ACCOUNTS: (
        "create_account",
        "account_from_mnemonic",
        "generate_mnemonic",
        "validate_mnemonic",
        "private_key_to_account",
    ),
    Capability.NATIVE_TRANSFER: ("handle_native_transfer",),
    Capability.TOKEN_TRANSFER: ("handle_token_transfer",),
    Capability.BROADCAST: ("send_signed_transaction",),
    Capability.GAS: ("get_gas_price", "estimate_gas"),
}


class ChainAdapter:
    """Polymorphic interface over one network.

    One instance is bound to one NetworkConfig for its whole life and owns its
    client handle exclusively. Key operations are synchronous; everything that
    touches the network is a coroutine.
    """

    adapter_type: str = ""
    capabilities: FrozenSet[str] = frozenset()

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        for capability in cls.capabilities:
            if capability not in CAPABILITY_METHODS:
                raise TypeError(f"{cls.__name__} declares unknown capability '{capability}'")
            missing = [
                name for name in CAPABILITY_METHODS[capability]
                if getattr(cls, name) is getattr(ChainAdapter, name)
            ]
            if missing:
                raise TypeError(
                    f"{cls.__name__} declares '{capability}' but does not implement {', '.join(missing)}"
                )

    def __init__(self, config: NetworkConfig):
        if not isinstance(config, NetworkConfig):
            raise ConfigError("Adapter requires a NetworkConfig", operation="create_adapter")
        if config.adapter_type != self.adapter_type:
            raise ConfigError(
                f"{type(self).__name__} cannot serve a '{config.adapter_type}' network",
                chain=config.name, operation="create_adapter",
            )
        self.config = config
        self.name = config.name
        self.logger = logging.getLogger(f"hodl.adapters.{self.adapter_type}")

    def __repr__(self):
        return f"{type(self).__name__}({self.name!r})"

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        """Release the client handle."""

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    def _unsupported(self, operation: str):
        raise UnsupportedOperation(
            f"Operation not supported by {self.adapter_type} networks",
            chain=self.name, operation=operation,
        )

    def resolve_token(self, symbol: str) -> TokenDescriptor:
        token = self.config.get_token(symbol)
        if token is None:
            raise TokenError(f"Token {symbol} not supported", chain=self.name, operation="resolve_token")
        return token

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    async def get_balance(self, address: str) -> Decimal:
        """Native balance in whole units."""
        self._unsupported("get_balance")

    async def get_raw_token_balance(self, address: str, token: TokenDescriptor) -> Tuple[int, int]:
        """Raw token balance and the token's decimal count."""
        self._unsupported("get_raw_token_balance")

    async def get_raw_token_balances(self, address: str,
                                     tokens: Iterable[TokenDescriptor]) -> List[Tuple[int, int]]:
        """Raw balances for several tokens; adapters may batch this."""
        return [await self.get_raw_token_balance(address, token) for token in tokens]

    async def get_token_balance(self, address: str, symbol: str) -> Decimal:
        if not self.supports(Capability.TOKEN_BALANCE):
            self._unsupported("get_token_balance")
        raw, decimals = await self.get_raw_token_balance(address, self.resolve_token(symbol))
        return from_base_units(raw, decimals)

    async def get_token_balances(self, address: str) -> List[Tuple[str, Decimal]]:
        """Native balance first, then configured tokens in registry order."""
        from ..tokens import BalanceAggregator
        return await BalanceAggregator(self).get_balances(address)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self) -> Account:
        self._unsupported("create_account")

    def account_from_mnemonic(self, mnemonic: str) -> Account:
        self._unsupported("account_from_mnemonic")

    def generate_mnemonic(self, word_count: int = 12) -> str:
        self._unsupported("generate_mnemonic")

    def validate_mnemonic(self, mnemonic: str) -> bool:
        self._unsupported("validate_mnemonic")

    def private_key_to_account(self, private_key: str) -> Account:
        self._unsupported("private_key_to_account")

    def create_account_from_mnemonic(self, word_count: int = 12) -> Account:
        if not self.supports(Capability.ACCOUNTS):
            self._unsupported("create_account_from_mnemonic")
        return self.account_from_mnemonic(self.generate_mnemonic(word_count))

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def handle_native_transfer(self, account: Account, to: str, amount: AmountLike) -> SignedTransaction:
        self._unsupported("handle_native_transfer")

    async def handle_token_transfer(self, account: Account, symbol: str, to: str,
                                    amount: AmountLike) -> SignedTransaction:
        self._unsupported("handle_token_transfer")

    async def send_signed_transaction(self, signed: SignedTransaction) -> Receipt:
        self._unsupported("send_signed_transaction")

    async def get_gas_price(self) -> int:
        self._unsupported("get_gas_price")

    async def estimate_gas(self, transaction: dict) -> int:
        self._unsupported("estimate_gas")

    def _check_signed(self, signed: SignedTransaction, operation: str):
        if signed.chain != self.name:
            raise ConfigError(f"Transaction was signed for {signed.chain}",
                              chain=self.name, operation=operation)
