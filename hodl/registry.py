"""
Static mapping from adapter type to adapter class.
"""
import logging
from typing import Any, Dict, List, Optional, Type, Union

from .adapters.account import AccountBasedAdapter
from .adapters.base import ChainAdapter
from .adapters.cell import CellBasedAdapter
from .adapters.utxo import UtxoBasedAdapter
from .config import AdapterType, NETWORKS, NetworkConfig, get_network_config
from .exceptions import ConfigError

logger = logging.getLogger("hodl.registry")


class AdapterRegistry:
    """Builds the adapter matching a network configuration.

    The registry is populated up front; nothing is discovered at runtime.
    """

    def __init__(self, adapters: Optional[Dict[str, Type[ChainAdapter]]] = None):
        self._adapters: Dict[str, Type[ChainAdapter]] = {}
        defaults = {
            AdapterType.ACCOUNT: AccountBasedAdapter,
            AdapterType.UTXO: UtxoBasedAdapter,
            AdapterType.CELL: CellBasedAdapter,
        }
        for adapter_type, adapter_class in (adapters if adapters is not None else defaults).items():
            self.register(adapter_type, adapter_class)

    def register(self, adapter_type: str, adapter_class: Type[ChainAdapter]):
        """
        Register an adapter class for an adapter type.

        Raises:
            ConfigError: If the class does not serve that adapter type
        """
        if not (isinstance(adapter_class, type) and issubclass(adapter_class, ChainAdapter)):
            raise ConfigError(f"{adapter_class!r} is not a ChainAdapter", operation="register_adapter")
        if adapter_class.adapter_type != adapter_type:
            raise ConfigError(f"{adapter_class.__name__} serves '{adapter_class.adapter_type}', "
                              f"not '{adapter_type}'", operation="register_adapter")
        self._adapters[adapter_type] = adapter_class

    def adapter_class(self, adapter_type: str) -> Type[ChainAdapter]:
        if adapter_type not in self._adapters:
            raise ConfigError(f"No adapter registered for '{adapter_type}'", operation="create_adapter")
        return self._adapters[adapter_type]

    def create(self, config: Union[NetworkConfig, Dict[str, Any]], **kwargs) -> ChainAdapter:
        """
        Build a fresh adapter for a network.

        Args:
            config: NetworkConfig or a raw descriptor, validated here
            **kwargs: Passed through to the adapter constructor

        Returns:
            ChainAdapter: A new adapter bound to the configuration
        """
        if not isinstance(config, NetworkConfig):
            config = NetworkConfig.from_descriptor(config)
        adapter = self.adapter_class(config.adapter_type)(config, **kwargs)
        logger.info(f"Created {type(adapter).__name__} for {config.name}")
        return adapter

    def create_for(self, network: str, **kwargs) -> ChainAdapter:
        """Build an adapter for a built-in network key such as 'eth' or 'ton'."""
        return self.create(get_network_config(network), **kwargs)

    @staticmethod
    def available_networks() -> List[str]:
        return list(NETWORKS)
