"""
Wallet session: one active network adapter and one active account.
"""
import atexit
import logging
import signal
import threading
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

from .adapters.base import ChainAdapter
from .config import NetworkConfig
from .exceptions import BlockchainWalletError, ConfigError
from .models import Account, Receipt
from .registry import AdapterRegistry
from .storage import EncryptedStore
from .utils import AmountLike, format_amount, mask_private_key, to_decimal

logger = logging.getLogger("hodl.manager")


class WalletManager:
    """Owns the active adapter and the in-memory secrets of one session.

    Switching networks builds a new adapter. The active account is written to
    the encrypted store and its key material is overwritten when the session
    ends, whether by close(), interpreter exit or SIGINT/SIGTERM.
    """

    def __init__(self, store: Optional[EncryptedStore] = None, registry: Optional[AdapterRegistry] = None,
                 install_signal_handlers: bool = True):
        self.store = store if store is not None else EncryptedStore()
        self.registry = registry if registry is not None else AdapterRegistry()
        self.adapter: Optional[ChainAdapter] = None
        self.network: Optional[str] = None
        self.account: Optional[Account] = None
        self._previous_handlers: Dict[int, Any] = {}

        atexit.register(self.wipe)
        if install_signal_handlers and threading.current_thread() is threading.main_thread():
            for signum in (signal.SIGINT, signal.SIGTERM):
                self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def _handle_signal(self, signum, frame):
        logger.info(f"Received signal {signum}, wiping secrets")
        self.wipe()
        previous = self._previous_handlers.get(signum)
        if callable(previous):
            previous(signum, frame)
        elif signum == signal.SIGINT:
            raise KeyboardInterrupt
        else:
            raise SystemExit(128 + signum)

    def _restore_signal_handlers(self):
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        self._previous_handlers = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _require_adapter(self) -> ChainAdapter:
        if self.adapter is None:
            raise ConfigError("No network selected", operation="wallet_session")
        return self.adapter

    def _require_account(self) -> Account:
        if self.account is None:
            raise ConfigError("No account loaded", chain=self.network, operation="wallet_session")
        return self.account

    # ------------------------------------------------------------------
    # Networks
    # ------------------------------------------------------------------

    async def select_network(self, network: Union[str, NetworkConfig], **adapter_kwargs) -> ChainAdapter:
        """
        Bind the session to a network, replacing the previous adapter.

        Args:
            network: Built-in network key or a NetworkConfig

        Returns:
            ChainAdapter: The new adapter
        """
        if isinstance(network, NetworkConfig):
            adapter = self.registry.create(network, **adapter_kwargs)
            key = network.name
        else:
            adapter = self.registry.create_for(network, **adapter_kwargs)
            key = network

        if self.adapter is not None:
            await self.adapter.close()
        self.wipe()

        self.adapter = adapter
        self.network = key
        usage = self.store.get('networkUsage', key) or 0
        self.store.set('networkUsage', key, usage + 1)
        logger.info(f"Selected network {adapter.config.name}")

        self.account = self._load_account()
        return adapter

    def network_usage(self) -> Dict[str, int]:
        return dict(self.store.get('networkUsage') or {})

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    @staticmethod
    def _account_slot(adapter: ChainAdapter) -> str:
        # Mainnet and testnet keys of one chain model are not interchangeable
        if adapter.config.network:
            return f"{adapter.adapter_type}:{adapter.config.network}"
        return adapter.adapter_type

    def _load_account(self) -> Optional[Account]:
        adapter = self._require_adapter()
        stored = self.store.secure_get('account', self._account_slot(adapter))
        if stored:
            if stored.get('mnemonic'):
                account = adapter.account_from_mnemonic(stored['mnemonic'])
            else:
                account = adapter.private_key_to_account(stored['privateKey'])
            logger.info(f"Loaded account {account.address}")
            return account

        # First visit to this chain model: reuse the shared phrase when it fits
        mnemonic = self.store.secure_get('mnemonic')
        if mnemonic and adapter.validate_mnemonic(mnemonic):
            account = adapter.account_from_mnemonic(mnemonic)
            self._save_account(account)
            logger.info(f"Derived account {account.address} from the stored mnemonic")
            return account
        return None

    def _save_account(self, account: Account):
        adapter = self._require_adapter()
        record = {
            'address': account.address,
            'privateKey': account.private_key.text(),
            'mnemonic': account.mnemonic.text() if account.mnemonic is not None else None,
        }
        self.store.secure_set('account', self._account_slot(adapter), record)
        if record['mnemonic'] and self.store.secure_get('mnemonic') is None:
            self.store.secure_set('mnemonic', record['mnemonic'])

    def _activate(self, account: Account) -> Account:
        self.wipe()
        self._save_account(account)
        self.account = account
        logger.info(f"Active account {account.address} on {self.network}")
        return account

    def create_account(self, word_count: int = 12) -> Account:
        """Create an account from a fresh mnemonic and make it active."""
        return self._activate(self._require_adapter().create_account_from_mnemonic(word_count))

    def import_mnemonic(self, mnemonic: str) -> Account:
        return self._activate(self._require_adapter().account_from_mnemonic(mnemonic))

    def import_private_key(self, private_key: str) -> Account:
        logger.info(f"Importing private key {mask_private_key(private_key)}")
        return self._activate(self._require_adapter().private_key_to_account(private_key))

    def forget_account(self):
        """Remove the stored account of the active chain model."""
        adapter = self._require_adapter()
        self.store.secure_delete('account', self._account_slot(adapter))
        self.wipe()

    # ------------------------------------------------------------------
    # Balances and transfers
    # ------------------------------------------------------------------

    async def balances(self, address: Optional[str] = None) -> List[Tuple[str, Decimal]]:
        address = address or self._require_account().address
        return await self._require_adapter().get_token_balances(address)

    async def transfer(self, symbol: str, to: str, amount: AmountLike, **kwargs) -> Receipt:
        """
        Sign, broadcast and record a transfer from the active account.

        Args:
            symbol (str): Native symbol or a configured token symbol
            to (str): Recipient address
            amount: Amount in whole units

        Returns:
            Receipt: Canonical broadcast result
        """
        adapter = self._require_adapter()
        account = self._require_account()
        value = to_decimal(amount)
        native = adapter.config.native_token_symbol

        if symbol == native:
            signed = await adapter.handle_native_transfer(account, to, value, **kwargs)
        else:
            signed = await adapter.handle_token_transfer(account, symbol, to, value, **kwargs)

        try:
            receipt = await adapter.send_signed_transaction(signed)
        except BlockchainWalletError as e:
            self._record(account.address, native, symbol, to, value, None, error=str(e))
            raise

        self._record(account.address, native, symbol, to, value, receipt)
        return receipt

    def _record(self, address: str, native: str, symbol: str, to: str, value: Decimal,
                receipt: Optional[Receipt], error: Optional[str] = None):
        adapter = self._require_adapter()
        entry = {
            'network': self.network,
            'symbol': symbol,
            'to': to,
            'amount': format_amount(value),
            'timestamp': int(time.time()),
            'hash': receipt.transaction_hash if receipt else None,
            'success': receipt.success if receipt else False,
            'uncertain': receipt.uncertain if receipt else False,
        }
        if receipt and receipt.has_hash:
            entry['explorer'] = adapter.config.explorer_url(receipt.transaction_hash)
        if error:
            entry['error'] = error
        self.store.append('transactions', address, native, entry)

    def history(self, address: Optional[str] = None) -> List[Dict[str, Any]]:
        """Recorded transfers of an address on the active network's native symbol."""
        adapter = self._require_adapter()
        address = address or self._require_account().address
        return list(self.store.get('transactions', address, adapter.config.native_token_symbol) or [])

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def wipe(self):
        """Overwrite the active account's key material."""
        if self.account is not None:
            self.account.wipe()
            self.account = None

    async def close(self):
        self.wipe()
        if self.adapter is not None:
            await self.adapter.close()
            self.adapter = None
        self._restore_signal_handlers()
        atexit.unregister(self.wipe)
