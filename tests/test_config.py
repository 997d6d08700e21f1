"""
Network configuration loading tests
"""
import pytest

from hodl.config import AdapterType, NETWORKS, NetworkConfig, get_network_config
from hodl.exceptions import ConfigError


def descriptor(**overrides):
    base = {
        'name': 'Testnet',
        'NetworkAdapterType': AdapterType.ACCOUNT,
        'endpointUrl': 'http://localhost:8545',
        'nativeTokenSymbol': 'ETH',
        'explorerUrlPrefix': 'https://explorer.test/tx/',
        'tokenRegistry': {},
    }
    base.update(overrides)
    return base


class TestFromDescriptor:
    """Validation and normalisation of network descriptors"""

    def test_canonical_shape(self):
        config = NetworkConfig.from_descriptor(descriptor())
        assert config.name == 'Testnet'
        assert config.adapter_type == AdapterType.ACCOUNT
        assert config.endpoint_url == 'http://localhost:8545'
        assert config.explorer_url('0xabc') == 'https://explorer.test/tx/0xabc'

    @pytest.mark.parametrize("field", [
        'name', 'NetworkAdapterType', 'endpointUrl', 'nativeTokenSymbol', 'explorerUrlPrefix', 'tokenRegistry',
    ])
    def test_missing_field_raises(self, field):
        data = descriptor()
        del data[field]
        with pytest.raises(ConfigError) as info:
            NetworkConfig.from_descriptor(data)
        assert field in str(info.value)

    def test_blank_endpoint_raises(self):
        with pytest.raises(ConfigError):
            NetworkConfig.from_descriptor(descriptor(endpointUrl='  '))

    def test_unknown_adapter_type(self):
        with pytest.raises(ConfigError):
            NetworkConfig.from_descriptor(descriptor(NetworkAdapterType='dag'))

    def test_registry_must_be_mapping(self):
        with pytest.raises(ConfigError):
            NetworkConfig.from_descriptor(descriptor(tokenRegistry=['USDT']))

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError):
            NetworkConfig.from_descriptor("eth")

    @pytest.mark.parametrize("key", ['url', 'rpcUrl', 'apiUrl'])
    def test_legacy_endpoint_keys(self, key):
        data = descriptor()
        data[key] = data.pop('endpointUrl')
        assert NetworkConfig.from_descriptor(data).endpoint_url == 'http://localhost:8545'

    def test_legacy_short_keys(self):
        data = {
            'name': 'Legacy',
            'adapter': AdapterType.UTXO,
            'url': 'http://btc.test',
            'nativeToken': 'BTC',
            'explorer': 'https://btc.test/tx/',
            'tokens': {},
        }
        config = NetworkConfig.from_descriptor(data)
        assert config.native_token_symbol == 'BTC'
        assert config.adapter_type == AdapterType.UTXO

    def test_token_shapes_normalised_in_order(self):
        tokens = {
            'USDT': '0xdAC17F958D2ee523a2206206994597C13D831ec7',
            'USDC': {'address': '0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48', 'decimals': 6},
            'ETH': '0x0000000000000000000000000000000000000000',
        }
        config = NetworkConfig.from_descriptor(descriptor(tokenRegistry=tokens))
        assert list(config.token_registry) == ['USDT', 'USDC']
        assert config.get_token('USDT').decimals is None
        assert config.get_token('USDC').decimals == 6
        assert config.get_token('ETH') is None

    def test_token_without_address(self):
        with pytest.raises(ConfigError):
            NetworkConfig.from_descriptor(descriptor(tokenRegistry={'USDT': {'decimals': 6}}))

    def test_config_is_immutable(self):
        config = NetworkConfig.from_descriptor(descriptor(tokenRegistry={'USDT': '0x' + '11' * 20}))
        with pytest.raises(Exception):
            config.name = 'other'
        with pytest.raises(TypeError):
            config.token_registry['DAI'] = None


class TestBuiltInNetworks:

    @pytest.mark.parametrize("key", list(NETWORKS))
    def test_every_network_loads(self, key):
        config = get_network_config(key)
        assert config.adapter_type in AdapterType.ALL
        assert config.endpoint_url

    @pytest.mark.parametrize("key", list(NETWORKS))
    def test_catalog_uses_canonical_keys(self, key):
        entry = NETWORKS[key]
        for legacy in ('url', 'rpcUrl', 'apiUrl', 'adapter', 'nativeToken', 'explorer', 'tokens'):
            assert legacy not in entry
        assert all(isinstance(token, dict) for token in entry['tokenRegistry'].values())

    def test_unknown_network(self):
        with pytest.raises(ConfigError):
            get_network_config('doge')
