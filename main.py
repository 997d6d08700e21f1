import argparse
import asyncio
import logging

from rich import print as rprint
from rich.console import Console
from rich.table import Table

from hodl import AdapterRegistry, BlockchainWalletError, NETWORKS, configure_logging, format_amount


def show_networks(console: Console):
    """Print the built-in networks in a table"""
    table = Table(title="Networks")
    table.add_column("Key", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Model", style="green")
    table.add_column("Native", style="yellow")
    table.add_column("Tokens")

    for key, descriptor in NETWORKS.items():
        table.add_row(
            key,
            descriptor['name'],
            descriptor['NetworkAdapterType'],
            descriptor['nativeTokenSymbol'],
            ", ".join(descriptor.get('tokenRegistry') or {}),
        )
    console.print(table)


async def show_balances(console: Console, network: str, address: str):
    """Print the native and token balances of an address"""
    async with AdapterRegistry().create_for(network) as adapter:
        balances = await adapter.get_token_balances(address)

    table = Table(title=f"{address} on {adapter.config.name}")
    table.add_column("Symbol", style="cyan")
    table.add_column("Balance", style="green", justify="right")
    for symbol, amount in balances:
        table.add_row(symbol, format_amount(amount))
    console.print(table)


def main():
    """Main application entry point"""
    parser = argparse.ArgumentParser(description="HODL multi-chain wallet")
    parser.add_argument('-v', '--verbose', action='store_true', help="debug logging")
    commands = parser.add_subparsers(dest='command', required=True)
    commands.add_parser('networks', help="list built-in networks")
    balances = commands.add_parser('balances', help="show balances of an address")
    balances.add_argument('network', choices=list(NETWORKS))
    balances.add_argument('address')
    args = parser.parse_args()

    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    console = Console()

    if args.command == 'networks':
        show_networks(console)
    elif args.command == 'balances':
        asyncio.run(show_balances(console, args.network, args.address))


if __name__ == "__main__":
    try:
        main()
    except (KeyboardInterrupt, EOFError):
        rprint("\n[yellow]Application terminated by user[/yellow]")
    except BlockchainWalletError as e:
        rprint(f"\n[red]Error: {str(e)}[/red]")
        raise SystemExit(1)
