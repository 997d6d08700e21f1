"""
Adapter registry and adapter contract tests
"""
import pytest

from hodl.adapters.account import AccountBasedAdapter
from hodl.adapters.base import Capability, ChainAdapter
from hodl.adapters.cell import CellBasedAdapter
from hodl.adapters.utxo import UtxoBasedAdapter
from hodl.config import AdapterType, NETWORKS, get_network_config
from hodl.exceptions import ConfigError, UnsupportedOperation
from hodl.registry import AdapterRegistry


class TestRegistry:
    """Adapter lookup by adapter type"""

    @pytest.mark.parametrize("network, expected", [
        ('eth', AccountBasedAdapter),
        ('bsc', AccountBasedAdapter),
        ('btc', UtxoBasedAdapter),
        ('btc-testnet', UtxoBasedAdapter),
        ('ton', CellBasedAdapter),
    ])
    async def test_create_for_network(self, network, expected):
        adapter = AdapterRegistry().create_for(network)
        try:
            assert type(adapter) is expected
            assert adapter.config == get_network_config(network)
        finally:
            await adapter.close()

    async def test_create_from_descriptor(self):
        adapter = AdapterRegistry().create({
            'name': 'Local',
            'NetworkAdapterType': AdapterType.ACCOUNT,
            'endpointUrl': 'http://127.0.0.1:8545',
            'nativeTokenSymbol': 'ETH',
            'explorerUrlPrefix': 'http://127.0.0.1/tx/',
            'tokenRegistry': {},
        })
        assert isinstance(adapter, AccountBasedAdapter)
        assert adapter.multicall is None
        await adapter.close()

    def test_fresh_adapter_each_time(self):
        registry = AdapterRegistry()
        config = get_network_config('btc')
        assert registry.create(config) is not registry.create(config)

    def test_invalid_descriptor(self):
        with pytest.raises(ConfigError):
            AdapterRegistry().create({'name': 'broken'})

    def test_unregistered_type(self):
        registry = AdapterRegistry(adapters={})
        with pytest.raises(ConfigError):
            registry.create_for('eth')

    def test_register_rejects_mismatched_type(self):
        with pytest.raises(ConfigError):
            AdapterRegistry().register(AdapterType.UTXO, AccountBasedAdapter)

    def test_register_rejects_non_adapter(self):
        with pytest.raises(ConfigError):
            AdapterRegistry().register(AdapterType.UTXO, dict)

    def test_available_networks(self):
        assert AdapterRegistry.available_networks() == list(NETWORKS)


class TestAdapterContract:
    """Capability declarations on ChainAdapter subclasses"""

    def test_undeclared_capability_methods_rejected(self):
        with pytest.raises(TypeError):
            class Incomplete(ChainAdapter):
                adapter_type = AdapterType.UTXO
                capabilities = frozenset({Capability.NATIVE_BALANCE})

    def test_unknown_capability_rejected(self):
        with pytest.raises(TypeError):
            class Strange(ChainAdapter):
                capabilities = frozenset({"teleport"})

    async def test_minimal_adapter(self):
        class BalanceOnly(ChainAdapter):
            adapter_type = AdapterType.UTXO
            capabilities = frozenset({Capability.NATIVE_BALANCE})

            async def get_balance(self, address):
                return 0

        adapter = BalanceOnly(get_network_config('btc'))
        assert adapter.supports(Capability.NATIVE_BALANCE)
        assert not adapter.supports(Capability.TOKEN_TRANSFER)
        assert await adapter.get_token_balances('addr') == [('BTC', 0)]

        with pytest.raises(UnsupportedOperation) as info:
            await adapter.handle_native_transfer(None, 'addr', 1)
        assert info.value.operation == "handle_native_transfer"
        assert info.value.chain == adapter.name
        with pytest.raises(UnsupportedOperation):
            adapter.create_account_from_mnemonic()

    def test_wrong_network_type(self):
        with pytest.raises(ConfigError):
            UtxoBasedAdapter(get_network_config('eth'))

    def test_requires_network_config(self):
        with pytest.raises(ConfigError):
            AccountBasedAdapter({'name': 'eth'})

    def test_account_from_fresh_mnemonic(self):
        adapter = UtxoBasedAdapter(get_network_config('btc'))
        account = adapter.create_account_from_mnemonic(24)
        assert account.has_mnemonic
        assert len(account.mnemonic.text().split()) == 24
