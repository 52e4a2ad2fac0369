"""
RPC clients used by arborist.
"""

from .solana_client import SolanaClient

__all__ = [
    'SolanaClient',
]
