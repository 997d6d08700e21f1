"""
Custom exceptions for the HODL multi-chain wallet.
"""
from typing import Optional


class BlockchainWalletError(Exception):
    """Base exception for all wallet errors.

    Carries the chain and operation the failure happened in so callers can
    render a diagnostic without inspecting the traceback.
    """

    def __init__(self, message: str, chain: Optional[str] = None,
                 operation: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.chain = chain
        self.operation = operation
        self.cause = cause

    def __str__(self):
        prefix = ""
        if self.chain:
            prefix += f"[{self.chain}] "
        if self.operation:
            prefix += f"{self.operation}: "
        return f"{prefix}{self.message}"


class ConfigError(BlockchainWalletError):
    """Exception raised for a malformed or incomplete network descriptor."""
    pass


class UnsupportedOperation(BlockchainWalletError):
    """Exception raised when a chain model does not implement an operation."""
    pass


class InvalidKey(BlockchainWalletError):
    """Exception raised for malformed mnemonics or private keys on import."""
    pass


class InsufficientBalance(BlockchainWalletError):
    """Exception raised when funds cannot cover the amount plus fees."""
    pass


class SignatureValidationFailure(BlockchainWalletError):
    """Exception raised when a freshly produced signature does not verify."""
    pass


class BroadcastFailure(BlockchainWalletError):
    """Exception raised when a node rejects a transaction or cannot be reached."""
    pass


class NetworkError(BlockchainWalletError):
    """Exception raised for unreachable endpoints and malformed node responses."""
    pass


class TokenError(BlockchainWalletError):
    """Exception raised for tokens missing from the network's registry."""
    pass


class AddressValidationError(BlockchainWalletError):
    """Exception raised for malformed recipient or owner addresses."""
    pass
