"""
Exception types raised by arborist.

Everything the CLI reports as a failure derives from ArboristError.
"""

from typing import Iterable, Tuple


class ArboristError(Exception):
    """Base class for all arborist failures."""
    pass


class ValidationError(ArboristError):
    """Exception raised for bad user input, before anything is sent."""
    pass


class InvalidTreeGeometryError(ValidationError):
    """Exception raised when a (depth, buffer size) pair is not supported."""

    def __init__(self, depth: int, max_buffer_size: int, valid_pairs: Iterable[Tuple[int, int]]):
        self.depth = depth
        self.max_buffer_size = max_buffer_size
        self.valid_pairs = list(valid_pairs)
        pairs = ", ".join(f"({d}, {b})" for d, b in self.valid_pairs)
        super().__init__(
            f"Invalid combination of max depth {depth} and max buffer size "
            f"{max_buffer_size}. Valid (depth, buffer size) pairs are: {pairs}"
        )


class InvalidCanopyDepthError(ValidationError):
    """Exception raised when the canopy would not fit in the tree."""
    pass


class InvalidPubkeyError(ValidationError):
    """Exception raised when a string is not a base58-encoded public key."""
    pass


class ConfigError(ArboristError):
    """Exception raised for unreadable or malformed configuration."""
    pass


class SignerError(ArboristError):
    """Exception raised when no signing keypair could be resolved."""
    pass


class SubmissionError(ArboristError):
    """Exception raised when a transaction definitely did not land."""
    pass


class IndeterminateOutcomeError(ArboristError):
    """Exception raised when a sent transaction was never seen confirmed."""

    def __init__(self, signature: str, reason: str):
        self.signature = signature
        self.reason = reason
        super().__init__(
            f"Transaction {signature} was sent but not confirmed ({reason}). "
            f"Check its status on-chain before retrying."
        )
