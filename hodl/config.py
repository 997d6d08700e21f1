"""
Configuration settings for the HODL multi-chain wallet.

Network descriptors, ABIs and tunables live here. Descriptors are plain dicts
so they can come from anywhere; `NetworkConfig.from_descriptor` is the single
place where they are validated and normalised.
"""
import os
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Any, Mapping, Optional

from dotenv import load_dotenv

from .exceptions import ConfigError

# Load environment variables from .env file
load_dotenv()

# Configure logger
logger = logging.getLogger("hodl.config")


class AdapterType:
    """Chain models an adapter can implement."""

    ACCOUNT = "account"
    UTXO = "utxo"
    CELL = "cell"

    ALL = (ACCOUNT, UTXO, CELL)


# Transaction settings
EVM_NATIVE_GAS_LIMIT = int(os.getenv('HODL_EVM_NATIVE_GAS_LIMIT', '21000'))
EVM_TOKEN_GAS_LIMIT = int(os.getenv('HODL_EVM_TOKEN_GAS_LIMIT', '100000'))
RECEIPT_TIMEOUT = int(os.getenv('HODL_RECEIPT_TIMEOUT', '180'))  # seconds
RPC_TIMEOUT = float(os.getenv('HODL_RPC_TIMEOUT', '30'))  # seconds

BTC_FEE_RATE = int(os.getenv('HODL_BTC_FEE_RATE', '10'))  # sat/vB
BTC_DUST_THRESHOLD = int(os.getenv('HODL_BTC_DUST_THRESHOLD', '546'))  # satoshis

TON_JETTON_FEE = os.getenv('HODL_TON_JETTON_FEE', '0.05')  # TON attached to jetton transfers
TON_JETTON_FORWARD = os.getenv('HODL_TON_JETTON_FORWARD', '0.000000001')  # TON forwarded to recipient
TON_CONFIRM_ATTEMPTS = int(os.getenv('HODL_TON_CONFIRM_ATTEMPTS', '10'))
TON_CONFIRM_DELAY = float(os.getenv('HODL_TON_CONFIRM_DELAY', '3'))  # seconds
TON_API_KEY = os.getenv('HODL_TON_API_KEY', '')

# Derivation paths
EVM_DERIVATION_PATH = "m/44'/60'/0'/0/0"

# Encrypted store settings
STORE_DIR = os.getenv('HODL_STORE_DIR', os.path.join(os.path.expanduser('~'), '.HODL'))
STORE_FILE = os.getenv('HODL_STORE_FILE', 'store.json')
ENCRYPTION_KEY = os.getenv('HODL_ENCRYPTION_KEY')

EVM_ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'

# Multicall3 is deployed at the same address on every supported EVM chain
MULTICALL3_ADDRESS = '0xcA11bde05977b3631167028862bE2a173976CA11'

MULTICALL_ABI = [
    {
        "inputs": [
            {
                "components": [
                    {"internalType": "address", "name": "target", "type": "address"},
                    {"internalType": "bytes", "name": "callData", "type": "bytes"}
                ],
                "internalType": "struct Multicall.Call[]",
                "name": "calls",
                "type": "tuple[]"
            }
        ],
        "name": "aggregate",
        "outputs": [
            {"internalType": "uint256", "name": "blockNumber", "type": "uint256"},
            {"internalType": "bytes[]", "name": "returnData", "type": "bytes[]"}
        ],
        "stateMutability": "view",
        "type": "function"
    }
]

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function"
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_to", "type": "address"},
            {"name": "_value", "type": "uint256"}
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function"
    }
]


def _rpc(name: str, default: str) -> str:
    return os.getenv(f'HODL_{name.upper().replace("-", "_")}_RPC', default)


# Built-in network descriptors - use environment variables if available
NETWORKS: Dict[str, Dict[str, Any]] = {
    'eth': {
        'name': '[ERC-20] Ethereum',
        'NetworkAdapterType': AdapterType.ACCOUNT,
        'endpointUrl': _rpc('eth', 'https://eth.public-rpc.com'),
        'chainId': 1,
        'nativeTokenSymbol': 'ETH',
        'explorerUrlPrefix': 'https://etherscan.io/tx/',
        'multicall': MULTICALL3_ADDRESS,
        'tokenRegistry': {
            'USDT': {'address': '0xdAC17F958D2ee523a2206206994597C13D831ec7', 'decimals': 6},
        },
    },
    'bsc': {
        'name': '[BEP-20] Binance Smart Chain',
        'NetworkAdapterType': AdapterType.ACCOUNT,
        'endpointUrl': _rpc('bsc', 'https://bsc-dataseed.binance.org/'),
        'chainId': 56,
        'nativeTokenSymbol': 'BNB',
        'explorerUrlPrefix': 'https://bscscan.com/tx/',
        'multicall': MULTICALL3_ADDRESS,
        'tokenRegistry': {
            'USDT': {'address': '0x55d398326f99059fF775485246999027B3197955', 'decimals': 18},
        },
    },
    'pol': {
        'name': '[ERC-20] Polygon',
        'NetworkAdapterType': AdapterType.ACCOUNT,
        'endpointUrl': _rpc('pol', 'https://polygon-rpc.com/'),
        'chainId': 137,
        'nativeTokenSymbol': 'POL',
        'explorerUrlPrefix': 'https://polygonscan.com/tx/',
        'multicall': MULTICALL3_ADDRESS,
        'tokenRegistry': {
            'USDT': {'address': '0xc2132D05D31c914a87C6611C10748AEb04B58e8F', 'decimals': 6},
        },
    },
    'arb': {
        'name': '[ERC-20] Arbitrum One',
        'NetworkAdapterType': AdapterType.ACCOUNT,
        'endpointUrl': _rpc('arb', 'https://arb1.arbitrum.io/rpc'),
        'chainId': 42161,
        'nativeTokenSymbol': 'ETH',
        'explorerUrlPrefix': 'https://arbiscan.io/tx/',
        'multicall': MULTICALL3_ADDRESS,
        'tokenRegistry': {
            'USDT': {'address': '0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9', 'decimals': 6},
        },
    },
    'op': {
        'name': '[ERC-20] Optimism',
        'NetworkAdapterType': AdapterType.ACCOUNT,
        'endpointUrl': _rpc('op', 'https://mainnet.optimism.io'),
        'chainId': 10,
        'nativeTokenSymbol': 'ETH',
        'explorerUrlPrefix': 'https://optimistic.etherscan.io/tx/',
        'multicall': MULTICALL3_ADDRESS,
        'tokenRegistry': {
            'USDT': {'address': '0x94b008aA00579c1307B0EF2c499aD98a8ce58e58', 'decimals': 6},
        },
    },
    'avax': {
        'name': '[ERC-20] Avalanche C-Chain',
        'NetworkAdapterType': AdapterType.ACCOUNT,
        'endpointUrl': _rpc('avax', 'https://api.avax.network/ext/bc/C/rpc'),
        'chainId': 43114,
        'nativeTokenSymbol': 'AVAX',
        'explorerUrlPrefix': 'https://snowtrace.io/tx/',
        'multicall': MULTICALL3_ADDRESS,
        'tokenRegistry': {
            'USDT': {'address': '0x9702230A8Ea53601f5cD2dc00fDBc13d4dF4A8c7', 'decimals': 6},
        },
    },
    'ftm': {
        'name': '[ERC-20] Fantom',
        'NetworkAdapterType': AdapterType.ACCOUNT,
        'endpointUrl': _rpc('ftm', 'https://rpc.ftm.tools/'),
        'chainId': 250,
        'nativeTokenSymbol': 'FTM',
        'explorerUrlPrefix': 'https://ftmscan.com/tx/',
        'multicall': MULTICALL3_ADDRESS,
        'tokenRegistry': {
            'USDT': {'address': '0x049d68029688eAbF473097a2fC38ef61633A3C7A', 'decimals': 6},
        },
    },
    'btc': {
        'name': 'Bitcoin',
        'NetworkAdapterType': AdapterType.UTXO,
        'endpointUrl': _rpc('btc', 'https://blockstream.info/api'),
        'network': 'bitcoin',
        'nativeTokenSymbol': 'BTC',
        'explorerUrlPrefix': 'https://blockstream.info/tx/',
        'tokenRegistry': {},
    },
    'btc-testnet': {
        'name': 'Bitcoin Testnet',
        'NetworkAdapterType': AdapterType.UTXO,
        'endpointUrl': _rpc('btc-testnet', 'https://blockstream.info/testnet/api'),
        'network': 'testnet',
        'nativeTokenSymbol': 'tBTC',
        'explorerUrlPrefix': 'https://blockstream.info/testnet/tx/',
        'tokenRegistry': {},
    },
    'ton': {
        'name': '[TON] The Open Network',
        'NetworkAdapterType': AdapterType.CELL,
        'endpointUrl': _rpc('ton', 'https://toncenter.com/api/v2'),
        'apiKey': TON_API_KEY,
        'nativeTokenSymbol': 'TON',
        'explorerUrlPrefix': 'https://tonscan.org/tx/',
        'tokenRegistry': {
            'USDT': {'address': 'EQCxE6mUtQJKFnGfaROTKOt1lZbDiiX1kCixRv7Nw2Id_sDs', 'decimals': 6},
        },
    },
}


@dataclass(frozen=True)
class TokenDescriptor:
    """A token entry from a network's registry."""

    symbol: str
    address: str
    decimals: Optional[int] = None


@dataclass(frozen=True)
class NetworkConfig:
    """Immutable, normalised description of one network."""

    name: str
    adapter_type: str
    endpoint_url: str
    native_token_symbol: str
    explorer_url_prefix: str
    token_registry: Mapping[str, TokenDescriptor] = field(default_factory=lambda: MappingProxyType({}))
    chain_id: Optional[int] = None
    network: Optional[str] = None
    multicall_address: Optional[str] = None
    api_key: Optional[str] = None

    # Alternate key spellings found in older descriptors, tried in order
    _ALIASES = {
        'name': ('name',),
        'adapter_type': ('NetworkAdapterType', 'adapter'),
        'endpoint_url': ('endpointUrl', 'url', 'rpcUrl', 'apiUrl'),
        'native_token_symbol': ('nativeTokenSymbol', 'nativeToken'),
        'explorer_url_prefix': ('explorerUrlPrefix', 'explorer'),
        'token_registry': ('tokenRegistry', 'tokens'),
    }

    @classmethod
    def from_descriptor(cls, descriptor: Dict[str, Any]) -> 'NetworkConfig':
        """
        Validate a raw descriptor and build a NetworkConfig from it.

        Args:
            descriptor (dict): Network descriptor in any of the supported shapes

        Returns:
            NetworkConfig: The normalised configuration

        Raises:
            ConfigError: If a required field is missing or malformed
        """
        if not isinstance(descriptor, dict):
            raise ConfigError("Network descriptor must be a mapping", operation="load_config")

        values = {}
        for attr, keys in cls._ALIASES.items():
            value = next((descriptor[k] for k in keys if descriptor.get(k) is not None), None)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ConfigError(f"Missing required field '{keys[0]}'",
                                  chain=descriptor.get('name'), operation="load_config")
            values[attr] = value

        if values['adapter_type'] not in AdapterType.ALL:
            raise ConfigError(f"Unknown adapter type '{values['adapter_type']}'",
                              chain=values['name'], operation="load_config")

        if not isinstance(values['token_registry'], dict):
            raise ConfigError("Token registry must be a mapping",
                              chain=values['name'], operation="load_config")
        values['token_registry'] = MappingProxyType(
            _normalize_tokens(values['name'], values['token_registry'])
        )

        chain_id = descriptor.get('chainId')
        return cls(
            chain_id=int(chain_id) if chain_id is not None else None,
            network=descriptor.get('network'),
            multicall_address=descriptor.get('multicall'),
            api_key=descriptor.get('apiKey') or None,
            **values,
        )

    def get_token(self, symbol: str) -> Optional[TokenDescriptor]:
        return self.token_registry.get(symbol)

    def explorer_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url_prefix}{tx_hash}"


def _normalize_tokens(network_name: str, tokens: Dict[str, Any]) -> Dict[str, TokenDescriptor]:
    normalized = {}
    for symbol, entry in tokens.items():
        if isinstance(entry, str):
            address, decimals = entry, None
        elif isinstance(entry, dict) and entry.get('address'):
            address, decimals = entry['address'], entry.get('decimals')
        else:
            raise ConfigError(f"Token '{symbol}' has no contract address",
                              chain=network_name, operation="load_config")

        # Legacy descriptors listed the native coin under the zero address
        if address.lower() == EVM_ZERO_ADDRESS:
            logger.debug(f"Dropping native placeholder token {symbol} from {network_name}")
            continue

        normalized[symbol] = TokenDescriptor(
            symbol=symbol,
            address=address,
            decimals=int(decimals) if decimals is not None else None,
        )
    return normalized


def get_network_config(network: str) -> NetworkConfig:
    """
    Get configuration for a built-in network.

    Args:
        network (str): Network key, e.g. 'eth' or 'btc'

    Returns:
        NetworkConfig: Normalised network configuration
    """
    if network not in NETWORKS:
        raise ConfigError(f"Unknown network '{network}'", operation="load_config")
    return NetworkConfig.from_descriptor(NETWORKS[network])
