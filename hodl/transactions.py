"""
Broadcast result normalisation.

Nodes answer a broadcast in different shapes: a bare hash string, raw bytes,
or an object whose hash lives under one of several field names, sometimes
nested under `result`. Everything is folded into a canonical Receipt.
"""
import logging
from collections.abc import Mapping
from typing import Any, Optional

from .models import UNKNOWN_HASH, Receipt

logger = logging.getLogger("hodl.transactions")

# Field names tried in order when looking for a hash in a node response
HASH_FIELDS = ('transactionHash', 'hash', 'tx_hash', 'id')


def _hash_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (bytes, bytearray)):
        if not value:
            return None
        # HexBytes carries its own 0x rendering
        to_hex = getattr(value, 'to_0x_hex', None)
        return to_hex() if to_hex else '0x' + bytes(value).hex()
    return None


def extract_transaction_hash(response: Any) -> Optional[str]:
    """
    Find the transaction hash in a broadcast response.

    Args:
        response: String, bytes, or mapping returned by a node

    Returns:
        str: The hash, or None if no known field holds one
    """
    direct = _hash_text(response)
    if direct is not None:
        return direct

    if isinstance(response, Mapping):
        for name in HASH_FIELDS:
            found = _hash_text(response.get(name))
            if found is not None:
                return found
        nested = response.get('result')
        if nested is not None and nested is not response:
            return extract_transaction_hash(nested)
    return None


def normalize_receipt(response: Any, success: bool = True, uncertain: bool = False,
                      transaction_hash: Optional[str] = None) -> Receipt:
    """
    Build the canonical Receipt from whatever a node returned.

    Args:
        response: Raw node response, kept as `raw_result`
        success (bool): Whether the transaction is known to have succeeded
        uncertain (bool): Whether the outcome could not be confirmed
        transaction_hash (str, optional): Hash known ahead of time, used when
            the response carries none

    Returns:
        Receipt: Normalised receipt; the hash is UNKNOWN_HASH when none was found
    """
    found = extract_transaction_hash(response) or transaction_hash
    if found is None:
        logger.warning(f"No transaction hash in node response, recording '{UNKNOWN_HASH}'")
        found = UNKNOWN_HASH
    return Receipt(transaction_hash=found, success=success, raw_result=response, uncertain=uncertain)
