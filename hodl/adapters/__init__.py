"""
Chain adapters, one per chain model.
"""
from .base import CAPABILITY_METHODS, Capability, ChainAdapter
from .account import AccountBasedAdapter
from .utxo import CoinSelection, UtxoBasedAdapter, estimate_fee, select_coins
from .cell import CellBasedAdapter

__all__ = [
    'CAPABILITY_METHODS',
    'Capability',
    'ChainAdapter',
    'AccountBasedAdapter',
    'UtxoBasedAdapter',
    'CellBasedAdapter',
    'CoinSelection',
    'estimate_fee',
    'select_coins',
]
