"""
Metaplex Bubblegum instruction building.

Derives the tree config PDA and assembles the instruction lists for
creating a tree and handing off its delegate authority. Nothing in here
touches the network.
"""

import hashlib
import struct
from typing import List, Optional, Tuple

import base58
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import CreateAccountParams, create_account

from .config import (
    BUBBLEGUM_PROGRAM_ID as _BUBBLEGUM_PROGRAM_ID,
    SPL_ACCOUNT_COMPRESSION_PROGRAM_ID as _SPL_ACCOUNT_COMPRESSION_PROGRAM_ID,
    SPL_NOOP_PROGRAM_ID as _SPL_NOOP_PROGRAM_ID,
    SYSTEM_PROGRAM_ID as _SYSTEM_PROGRAM_ID,
)
from .errors import InvalidPubkeyError
from .merkle_tree import TreeGeometry, size_of

BUBBLEGUM_PROGRAM_ID = Pubkey.from_string(_BUBBLEGUM_PROGRAM_ID)
SPL_ACCOUNT_COMPRESSION_PROGRAM_ID = Pubkey.from_string(_SPL_ACCOUNT_COMPRESSION_PROGRAM_ID)
SPL_NOOP_PROGRAM_ID = Pubkey.from_string(_SPL_NOOP_PROGRAM_ID)
SYSTEM_PROGRAM_ID = Pubkey.from_string(_SYSTEM_PROGRAM_ID)

PUBKEY_LENGTH = 32


def anchor_discriminator(name: str) -> bytes:
    """First 8 bytes of sha256("global:<name>"), the Anchor instruction tag."""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


CREATE_TREE_DISCRIMINATOR = anchor_discriminator("create_tree")
SET_TREE_DELEGATE_DISCRIMINATOR = anchor_discriminator("set_tree_delegate")


def parse_pubkey(value: str, name: str = "public key") -> Pubkey:
    """
    Decode a base58 public key.

    Args:
        value: base58 string supplied by the user
        name: what the key is, for the error message

    Raises:
        InvalidPubkeyError: if the string is not 32 bytes of valid base58
    """
    text = value.strip()
    if not text:
        raise InvalidPubkeyError(f"Invalid {name}: empty value")
    try:
        raw = base58.b58decode(text)
    except ValueError as e:
        raise InvalidPubkeyError(f"Invalid {name} {value!r}: {e}") from e
    if len(raw) != PUBKEY_LENGTH:
        raise InvalidPubkeyError(
            f"Invalid {name} {value!r}: decodes to {len(raw)} bytes, expected {PUBKEY_LENGTH}"
        )
    return Pubkey.from_bytes(raw)


def derive_tree_config(
    tree_address: Pubkey,
    program_id: Pubkey = BUBBLEGUM_PROGRAM_ID,
) -> Tuple[Pubkey, int]:
    """Derive the tree config PDA and bump for a Merkle tree account."""
    return Pubkey.find_program_address([bytes(tree_address)], program_id)


def create_tree_data(
    max_depth: int,
    max_buffer_size: int,
    public: Optional[bool] = None,
) -> bytes:
    """Serialize Bubblegum create_tree arguments."""
    data = bytearray(CREATE_TREE_DISCRIMINATOR)
    data.extend(struct.pack('<I', max_depth))
    data.extend(struct.pack('<I', max_buffer_size))
    if public is None:
        data.append(0)
    else:
        data.extend(struct.pack('<B?', 1, public))
    return bytes(data)


def create_tree_instructions(
    payer: Pubkey,
    tree_address: Pubkey,
    geometry: TreeGeometry,
    lamports: int,
    canopy_depth: int = 0,
    public: Optional[bool] = None,
    tree_creator: Optional[Pubkey] = None,
) -> List[Instruction]:
    """
    Build the two instructions that create a tree.

    The first allocates the tree account under the account compression
    program, the second has Bubblegum initialize it and create the tree
    config PDA. They must be sent together, in this order.

    Args:
        payer: Fee payer and funder of the new accounts
        tree_address: Public key of the freshly generated tree keypair
        geometry: Catalog entry for the tree
        lamports: Rent-exempt balance for the tree account
        canopy_depth: Number of top tree levels cached on-chain
        public: Bubblegum "public" flag, None leaves the program default
        tree_creator: Creator authority, defaults to the payer

    Returns:
        [create_account, create_tree]
    """
    creator = tree_creator or payer
    tree_config, _bump = derive_tree_config(tree_address)

    allocate = create_account(
        CreateAccountParams(
            from_pubkey=payer,
            to_pubkey=tree_address,
            lamports=lamports,
            space=size_of(geometry, canopy_depth),
            owner=SPL_ACCOUNT_COMPRESSION_PROGRAM_ID,
        )
    )

    initialize = Instruction(
        program_id=BUBBLEGUM_PROGRAM_ID,
        accounts=[
            AccountMeta(pubkey=tree_config, is_signer=False, is_writable=True),
            AccountMeta(pubkey=tree_address, is_signer=False, is_writable=True),
            AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
            AccountMeta(pubkey=creator, is_signer=True, is_writable=False),
            AccountMeta(pubkey=SPL_NOOP_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SPL_ACCOUNT_COMPRESSION_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
        data=create_tree_data(geometry.depth, geometry.max_buffer_size, public),
    )

    return [allocate, initialize]


def delegate_tree_instructions(
    tree_creator: Pubkey,
    tree_address: Pubkey,
    new_tree_delegate: Pubkey,
    tree_config: Optional[Pubkey] = None,
) -> List[Instruction]:
    """
    Build the set_tree_delegate instruction.

    Whether tree_creator actually holds authority over the tree is checked
    by Bubblegum when the transaction executes, not here.

    Args:
        tree_creator: Current tree authority, signs the transaction
        tree_address: Merkle tree account
        new_tree_delegate: Key that becomes the tree delegate
        tree_config: Tree config PDA, derived from tree_address if omitted

    Returns:
        [set_tree_delegate]
    """
    if tree_config is None:
        tree_config, _bump = derive_tree_config(tree_address)

    return [
        Instruction(
            program_id=BUBBLEGUM_PROGRAM_ID,
            accounts=[
                AccountMeta(pubkey=tree_config, is_signer=False, is_writable=True),
                AccountMeta(pubkey=tree_creator, is_signer=True, is_writable=False),
                AccountMeta(pubkey=new_tree_delegate, is_signer=False, is_writable=False),
                AccountMeta(pubkey=tree_address, is_signer=False, is_writable=True),
                AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            ],
            data=SET_TREE_DELEGATE_DISCRIMINATOR,
        )
    ]
