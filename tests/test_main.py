"""
Command line rendering tests
"""
from decimal import Decimal
from unittest.mock import AsyncMock

from rich.console import Console

import main
from hodl import AdapterRegistry


class TestCommands:

    def test_networks_table(self):
        console = Console(record=True, width=200)
        main.show_networks(console)
        output = console.export_text()
        assert "btc-testnet" in output
        assert "Bitcoin" in output

    async def test_balances_table(self, monkeypatch):
        adapter = AdapterRegistry().create_for('eth')
        adapter.get_token_balances = AsyncMock(return_value=[('ETH', Decimal("1.50")), ('USDT', Decimal("0.123456"))])
        monkeypatch.setattr(AdapterRegistry, 'create_for', lambda self, network: adapter)

        console = Console(record=True, width=200)
        await main.show_balances(console, 'eth', '0x000000000000000000000000000000000000dEaD')
        output = console.export_text()
        assert "1.5" in output
        assert "0.123456" in output
