"""
Tree operations for arborist.

TreeService ties the pieces together: it validates the geometry, sizes and
funds the tree account, derives the tree config PDA, builds the
instructions and hands them to the Solana client.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import structlog
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .bubblegum import (
    create_tree_instructions,
    delegate_tree_instructions,
    derive_tree_config,
)
from .logging_utils import (
    OperationType,
    log_blockchain_operation,
    log_tree_event,
)
from .merkle_tree import size_of, validate_tree_parameters

logger = structlog.get_logger(__name__)


@dataclass
class CreatedTree:
    """Result of a successful create-tree."""
    tree_address: str
    tree_config: str
    tree_config_bump: int
    tree_creator: str
    depth: int
    max_buffer_size: int
    canopy_depth: int
    max_capacity: int
    account_bytes: int
    rent_lamports: int
    signature: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DelegatedTree:
    """Result of a successful delegate-tree."""
    tree_address: str
    tree_config: str
    tree_creator: str
    new_tree_delegate: str
    signature: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TreeService:
    """
    Creates Bubblegum trees and delegates their authority.

    The client only needs get_minimum_balance_for_rent_exemption() and
    send_transaction(instructions, payer, signers).
    """

    def __init__(self, client, keypair: Keypair):
        """
        Initialize the tree service.

        Args:
            client: SolanaClient (or anything with the same two coroutines)
            keypair: Fee payer and tree authority
        """
        self.client = client
        self.keypair = keypair
        self.authority = keypair.pubkey()

    @log_blockchain_operation(OperationType.TREE_CREATION, "create_tree")
    async def create_tree(
        self,
        depth: int,
        max_buffer_size: int,
        canopy_depth: int = 0,
        public: Optional[bool] = None,
        tree_keypair: Optional[Keypair] = None,
    ) -> CreatedTree:
        """
        Create a new Merkle tree and its tree config.

        Args:
            depth: Max depth of the tree
            max_buffer_size: Max concurrent change log entries
            canopy_depth: Number of top levels cached on-chain
            public: Bubblegum "public" flag, None leaves the program default
            tree_keypair: Keypair for the tree account, generated if omitted

        Returns:
            CreatedTree with the new addresses and transaction signature
        """
        geometry = validate_tree_parameters(depth, max_buffer_size, canopy_depth)
        size = size_of(geometry, canopy_depth)

        tree = tree_keypair or Keypair()
        tree_address = tree.pubkey()
        tree_config, bump = derive_tree_config(tree_address)

        logger.info(
            "Creating Merkle tree",
            tree_address=str(tree_address),
            tree_config=str(tree_config),
            depth=depth,
            max_buffer_size=max_buffer_size,
            canopy_depth=canopy_depth,
            account_bytes=size
        )

        rent = await self.client.get_minimum_balance_for_rent_exemption(size)
        instructions = create_tree_instructions(
            payer=self.authority,
            tree_address=tree_address,
            geometry=geometry,
            lamports=rent,
            canopy_depth=canopy_depth,
            public=public,
        )
        signature = await self.client.send_transaction(
            instructions, self.authority, [self.keypair, tree]
        )

        result = CreatedTree(
            tree_address=str(tree_address),
            tree_config=str(tree_config),
            tree_config_bump=bump,
            tree_creator=str(self.authority),
            depth=geometry.depth,
            max_buffer_size=geometry.max_buffer_size,
            canopy_depth=canopy_depth,
            max_capacity=geometry.max_capacity,
            account_bytes=size,
            rent_lamports=rent,
            signature=signature,
        )
        log_tree_event("created", result.tree_address, {
            "tree_config": result.tree_config,
            "signature": signature,
            "rent_lamports": rent,
        })
        return result

    @log_blockchain_operation(OperationType.TREE_DELEGATION, "delegate_tree")
    async def delegate_tree(
        self,
        tree_address: Pubkey,
        new_tree_delegate: Pubkey,
        tree_config: Optional[Pubkey] = None,
    ) -> DelegatedTree:
        """
        Set a new delegate on an existing tree.

        The loaded keypair must be the tree creator or current delegate;
        Bubblegum rejects the transaction otherwise.
        """
        if tree_config is None:
            tree_config, _bump = derive_tree_config(tree_address)

        instructions = delegate_tree_instructions(
            tree_creator=self.authority,
            tree_address=tree_address,
            new_tree_delegate=new_tree_delegate,
            tree_config=tree_config,
        )
        signature = await self.client.send_transaction(
            instructions, self.authority, [self.keypair]
        )

        result = DelegatedTree(
            tree_address=str(tree_address),
            tree_config=str(tree_config),
            tree_creator=str(self.authority),
            new_tree_delegate=str(new_tree_delegate),
            signature=signature,
        )
        log_tree_event("delegated", result.tree_address, {
            "new_tree_delegate": result.new_tree_delegate,
            "signature": signature,
        })
        return result
