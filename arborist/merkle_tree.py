"""
Concurrent Merkle tree geometry for compressed NFTs.

The SPL Account Compression program only accepts a fixed set of
(max depth, max buffer size) pairs, each with its own precompiled buffer
layout. This module holds that catalog and computes the exact account size
the program expects for a given geometry.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

import structlog

from .errors import InvalidCanopyDepthError, InvalidTreeGeometryError

logger = structlog.get_logger(__name__)

NODE_SIZE = 32

# Account type byte + header version byte + 54 byte V1 header
# (max_buffer_size u32, max_depth u32, authority, creation_slot u64, 6 padding bytes)
CONCURRENT_MERKLE_TREE_HEADER_SIZE_V1 = 2 + 54

# sequence_number, active_index, buffer_size
_TREE_COUNTERS_SIZE = 3 * 8


def _path_size(depth: int) -> int:
    # depth nodes + one extra node + u32 index + u32 padding
    return depth * NODE_SIZE + NODE_SIZE + 4 + 4


def concurrent_merkle_tree_size(depth: int, max_buffer_size: int) -> int:
    """
    Size in bytes of a ConcurrentMerkleTree<depth, max_buffer_size> body.

    The body is three u64 counters, max_buffer_size change log entries and
    the rightmost proof. A change log entry (root, path, index, padding) and
    the rightmost proof (proof, leaf, index, padding) have the same size.
    """
    return _TREE_COUNTERS_SIZE + (max_buffer_size + 1) * _path_size(depth)


def canopy_size(canopy_depth: int) -> int:
    """Bytes needed to cache the top canopy_depth levels of the tree."""
    return ((2 << canopy_depth) - 2) * NODE_SIZE


@dataclass(frozen=True)
class TreeGeometry:
    """One supported combination of tree shape parameters."""
    depth: int
    max_buffer_size: int

    @property
    def max_capacity(self) -> int:
        """Maximum number of leaves."""
        return 2 ** self.depth

    @property
    def tree_bytes(self) -> int:
        return concurrent_merkle_tree_size(self.depth, self.max_buffer_size)

    @property
    def account_bytes(self) -> int:
        """Size of the tree account without a canopy."""
        return CONCURRENT_MERKLE_TREE_HEADER_SIZE_V1 + self.tree_bytes


# Pairs the account compression program has precompiled layouts for.
_SUPPORTED_PAIRS = (
    (5, 8),
    (14, 64), (14, 256), (14, 1024), (14, 2048),
    (15, 64),
    (16, 64),
    (17, 64),
    (18, 64),
    (19, 64),
    (20, 64), (20, 256), (20, 1024), (20, 2048),
    (24, 64), (24, 256), (24, 512), (24, 1024), (24, 2048),
    (26, 512), (26, 1024), (26, 2048),
    (30, 512), (30, 1024), (30, 2048),
)

TREE_GEOMETRIES: Dict[Tuple[int, int], TreeGeometry] = {
    pair: TreeGeometry(*pair) for pair in _SUPPORTED_PAIRS
}


def valid_pairs() -> List[Tuple[int, int]]:
    """All supported (depth, max buffer size) pairs, sorted."""
    return sorted(TREE_GEOMETRIES)


def lookup(depth: int, max_buffer_size: int) -> TreeGeometry:
    """
    Find the geometry for a (depth, max buffer size) pair.

    Raises:
        InvalidTreeGeometryError: if the pair is not in the catalog
    """
    geometry = TREE_GEOMETRIES.get((depth, max_buffer_size))
    if geometry is None:
        logger.debug(
            "Rejected unsupported tree geometry",
            depth=depth,
            max_buffer_size=max_buffer_size
        )
        raise InvalidTreeGeometryError(depth, max_buffer_size, valid_pairs())
    return geometry


def size_of(geometry: TreeGeometry, canopy_depth: int = 0) -> int:
    """
    Total bytes to allocate for a tree account.

    Args:
        geometry: Catalog entry for the tree
        canopy_depth: Number of top tree levels cached on-chain

    Returns:
        Header + tree body + canopy size in bytes
    """
    if canopy_depth < 0 or canopy_depth > geometry.depth:
        raise InvalidCanopyDepthError(
            f"Canopy depth must be between 0 and the tree depth {geometry.depth}, "
            f"got {canopy_depth}"
        )
    return geometry.account_bytes + canopy_size(canopy_depth)


def validate_tree_parameters(depth: int, max_buffer_size: int, canopy_depth: int = 0) -> TreeGeometry:
    """Check all create-tree parameters, returning the catalog entry."""
    geometry = lookup(depth, max_buffer_size)
    size_of(geometry, canopy_depth)
    return geometry


def format_valid_pairs() -> str:
    """Render the catalog as a table for help output."""
    by_depth: Dict[int, List[int]] = {}
    for depth, buffer_size in valid_pairs():
        by_depth.setdefault(depth, []).append(buffer_size)
    lines = [
        f"  depth {depth:>2}: buffer {', '.join(str(b) for b in buffers)}"
        for depth, buffers in sorted(by_depth.items())
    ]
    return "\n".join(lines)
