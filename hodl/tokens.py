"""
Balance aggregation across the native coin and a network's configured tokens.
"""
import logging
from decimal import Decimal
from typing import List, Tuple

from .adapters.base import Capability
from .utils import from_base_units

logger = logging.getLogger("hodl.tokens")


class BalanceAggregator:
    """Collects native and token balances for one address through an adapter.

    Raw integer amounts are kept until the final scaling step so large
    balances do not pick up float artifacts.
    """

    def __init__(self, adapter):
        self.adapter = adapter

    @property
    def tokens(self):
        return list(self.adapter.config.token_registry.values())

    async def get_balances(self, address: str) -> List[Tuple[str, Decimal]]:
        """
        Get the native balance followed by every configured token balance.

        Args:
            address (str): Owner address

        Returns:
            list: (symbol, amount) pairs, native first, then tokens in registry order
        """
        config = self.adapter.config
        balances = [(config.native_token_symbol, await self.adapter.get_balance(address))]

        tokens = self.tokens
        if not tokens:
            return balances
        if not self.adapter.supports(Capability.TOKEN_BALANCE):
            logger.debug(f"{config.name} has no token support, skipping {len(tokens)} configured tokens")
            return balances

        raw_balances = await self.adapter.get_raw_token_balances(address, tokens)
        for token, (raw, decimals) in zip(tokens, raw_balances):
            balances.append((token.symbol, from_base_units(raw, decimals)))

        logger.info(f"Fetched {len(balances)} balances for {address} on {config.name}")
        return balances
