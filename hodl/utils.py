"""
Utility functions for the HODL multi-chain wallet.
"""
import asyncio
import logging
from decimal import Decimal, InvalidOperation, localcontext
from typing import Awaitable, Optional, TypeVar, Union

from rich.logging import RichHandler
from web3 import Web3

from .exceptions import NetworkError

logger = logging.getLogger("hodl")

T = TypeVar("T")

AmountLike = Union[Decimal, int, str, float]


def configure_logging(level: int = logging.INFO, log_file: Optional[str] = "hodl.log"):
    """
    Install the file and console handlers on the root logger.

    Args:
        level (int): Logging level
        log_file (str, optional): Log file path, or None for console only
    """
    handlers = [RichHandler(rich_tracebacks=True, show_path=False)]
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(file_handler)
    logging.basicConfig(level=level, format='%(message)s', handlers=handlers, force=True)


def to_decimal(amount: AmountLike) -> Decimal:
    """
    Convert a user supplied amount to a Decimal without float artifacts.

    Args:
        amount: Amount as Decimal, int, str or float

    Returns:
        Decimal: The amount

    Raises:
        ValueError: If the amount is not a finite, non-negative number
    """
    if isinstance(amount, Decimal):
        value = amount
    else:
        try:
            # Floats go through str() so 0.1 stays 0.1
            value = Decimal(str(amount).strip())
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {amount!r}")
    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid amount: {amount!r}")
    return value


def to_base_units(amount: AmountLike, decimals: int) -> int:
    """
    Convert a human readable amount to integer base units, rounding down.

    The Decimal coefficient is shifted as an integer, so no digit is lost to
    context precision however large the amount.

    Args:
        amount: Amount in whole tokens
        decimals (int): Token decimal count

    Returns:
        int: floor(amount * 10**decimals)
    """
    _, digits, exponent = to_decimal(amount).as_tuple()
    coefficient = int(''.join(map(str, digits)))
    shift = exponent + decimals
    if shift >= 0:
        return coefficient * 10 ** shift
    return coefficient // 10 ** -shift


def from_base_units(raw: int, decimals: int) -> Decimal:
    """
    Convert integer base units to a human readable Decimal.

    Scaling runs in a local context wide enough for every digit of the raw
    amount, so large balances come back exact.

    Args:
        raw (int): Raw on-chain amount
        decimals (int): Token decimal count

    Returns:
        Decimal: The amount in whole tokens
    """
    raw = int(raw)
    if raw == 0:
        return Decimal(0)
    with localcontext() as ctx:
        ctx.prec = len(str(abs(raw))) + 2
        return Decimal(raw).scaleb(-decimals)


def format_amount(value: Decimal) -> str:
    """Render a Decimal without exponent notation or trailing zeros."""
    text = format(value, 'f')
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return text or '0'


def mask_private_key(private_key: str) -> str:
    """
    Mask a private key for display or logging.

    Args:
        private_key (str): The private key to mask

    Returns:
        str: The masked private key
    """
    if not private_key:
        return ""

    key = private_key[2:] if private_key.startswith('0x') else private_key

    # Show only first 4 and last 4 characters
    if len(key) > 8:
        return f"{key[:4]}...{key[-4:]}"
    return "****"


def mask_mnemonic(mnemonic: str) -> str:
    """
    Mask a mnemonic phrase for display or logging.

    Args:
        mnemonic (str): The mnemonic phrase to mask

    Returns:
        str: The masked mnemonic
    """
    if not mnemonic:
        return ""

    words = mnemonic.split()
    if len(words) <= 2:
        return "****"

    # Show only first and last word
    return f"{words[0]} ... {words[-1]}"


def validate_evm_address(address: str) -> bool:
    """Check whether an address is a valid EVM address."""
    try:
        return Web3.is_address(address)
    except Exception:
        return False


async def with_timeout(awaitable: Awaitable[T], timeout: float, chain: Optional[str] = None,
                       operation: Optional[str] = None) -> T:
    """
    Race a call against a fixed timeout.

    A timeout means the endpoint is unreachable; it surfaces as NetworkError
    rather than a bare asyncio error.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise NetworkError(f"Endpoint unreachable (no response within {timeout:g}s)",
                           chain=chain, operation=operation, cause=e) from e
