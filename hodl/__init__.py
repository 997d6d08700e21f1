"""
HODL - a multi-chain wallet core for EVM, Bitcoin and TON networks.
"""
# Configuration
from .config import (
    NETWORKS, AdapterType, NetworkConfig, TokenDescriptor, get_network_config
)

# Core components
from .adapters import (
    Capability, ChainAdapter, AccountBasedAdapter, UtxoBasedAdapter, CellBasedAdapter,
    CoinSelection, estimate_fee, select_coins
)
from .tokens import BalanceAggregator
from .transactions import extract_transaction_hash, normalize_receipt
from .registry import AdapterRegistry
from .storage import EncryptedStore
from .manager import WalletManager

# Models
from .models import (
    UNKNOWN_HASH, Account, SecretBuffer, Utxo, UnsignedTransaction, SignedTransaction, Receipt
)

# Utilities
from .utils import (
    configure_logging, to_base_units, from_base_units, format_amount,
    mask_private_key, mask_mnemonic
)

# Exceptions
from .exceptions import (
    BlockchainWalletError, ConfigError, UnsupportedOperation, InvalidKey,
    InsufficientBalance, SignatureValidationFailure, BroadcastFailure,
    NetworkError, TokenError, AddressValidationError
)

__all__ = [
    # Configuration
    'NETWORKS',
    'AdapterType',
    'NetworkConfig',
    'TokenDescriptor',
    'get_network_config',

    # Core components
    'Capability',
    'ChainAdapter',
    'AccountBasedAdapter',
    'UtxoBasedAdapter',
    'CellBasedAdapter',
    'CoinSelection',
    'estimate_fee',
    'select_coins',
    'BalanceAggregator',
    'extract_transaction_hash',
    'normalize_receipt',
    'AdapterRegistry',
    'EncryptedStore',
    'WalletManager',

    # Models
    'UNKNOWN_HASH',
    'Account',
    'SecretBuffer',
    'Utxo',
    'UnsignedTransaction',
    'SignedTransaction',
    'Receipt',

    # Utilities
    'configure_logging',
    'to_base_units',
    'from_base_units',
    'format_amount',
    'mask_private_key',
    'mask_mnemonic',

    # Exceptions
    'BlockchainWalletError',
    'ConfigError',
    'UnsupportedOperation',
    'InvalidKey',
    'InsufficientBalance',
    'SignatureValidationFailure',
    'BroadcastFailure',
    'NetworkError',
    'TokenError',
    'AddressValidationError'
]
