"""
Unit tests for Bubblegum PDA derivation and instruction building.
"""

import hashlib
import struct

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM
from solders.system_program import decode_create_account

from ..bubblegum import (
    BUBBLEGUM_PROGRAM_ID,
    CREATE_TREE_DISCRIMINATOR,
    SET_TREE_DELEGATE_DISCRIMINATOR,
    SPL_ACCOUNT_COMPRESSION_PROGRAM_ID,
    SPL_NOOP_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    anchor_discriminator,
    create_tree_data,
    create_tree_instructions,
    delegate_tree_instructions,
    derive_tree_config,
    parse_pubkey,
)
from ..errors import InvalidCanopyDepthError, InvalidPubkeyError
from ..merkle_tree import lookup, size_of


class TestPubkeyParsing:
    """Test cases for parse_pubkey."""

    def test_valid_pubkey(self):
        key = Keypair().pubkey()
        assert parse_pubkey(str(key)) == key

    def test_surrounding_whitespace_ignored(self):
        key = Keypair().pubkey()
        assert parse_pubkey(f"  {key}\n") == key

    @pytest.mark.parametrize("value", [
        "",
        "   ",
        "not-base58-0OIl",
        "abc",
        "1" * 60,
    ])
    def test_invalid_pubkey(self, value):
        with pytest.raises(InvalidPubkeyError):
            parse_pubkey(value, "new tree delegate")

    def test_error_names_the_argument(self):
        with pytest.raises(InvalidPubkeyError, match="new tree delegate"):
            parse_pubkey("0OIl", "new tree delegate")


class TestTreeConfigDerivation:
    """Test cases for the tree config PDA."""

    def test_matches_find_program_address(self):
        tree = Keypair().pubkey()
        expected = Pubkey.find_program_address([bytes(tree)], BUBBLEGUM_PROGRAM_ID)

        assert derive_tree_config(tree) == expected

    def test_deterministic(self):
        tree = Keypair().pubkey()
        assert derive_tree_config(tree) == derive_tree_config(tree)

    def test_fixed_tree_address(self):
        tree = Pubkey.from_string("11111111111111111111111111111112")
        address, bump = derive_tree_config(tree)
        again_address, again_bump = derive_tree_config(tree)

        assert (address, bump) == (again_address, again_bump)
        assert 0 <= bump <= 255

    def test_pda_is_off_curve(self):
        address, _bump = derive_tree_config(Keypair().pubkey())
        assert not address.is_on_curve()

    def test_distinct_trees_distinct_configs(self):
        trees = [Keypair().pubkey() for _ in range(50)]
        configs = {derive_tree_config(tree)[0] for tree in trees}
        assert len(configs) == len(trees)

    def test_program_id_changes_address(self):
        tree = Keypair().pubkey()
        other_program = Keypair().pubkey()
        assert derive_tree_config(tree)[0] != derive_tree_config(tree, other_program)[0]


class TestInstructionData:
    """Test cases for instruction data encoding."""

    def test_discriminators(self):
        assert CREATE_TREE_DISCRIMINATOR == hashlib.sha256(b"global:create_tree").digest()[:8]
        assert SET_TREE_DELEGATE_DISCRIMINATOR == hashlib.sha256(b"global:set_tree_delegate").digest()[:8]
        assert anchor_discriminator("create_tree") == CREATE_TREE_DISCRIMINATOR

    def test_create_tree_data_without_public_flag(self):
        data = create_tree_data(14, 64)

        assert len(data) == 17
        assert data[:8] == CREATE_TREE_DISCRIMINATOR
        assert struct.unpack("<II", data[8:16]) == (14, 64)
        assert data[16:] == b"\x00"

    @pytest.mark.parametrize("public,tail", [(True, b"\x01\x01"), (False, b"\x01\x00")])
    def test_create_tree_data_with_public_flag(self, public, tail):
        data = create_tree_data(20, 256, public)

        assert len(data) == 18
        assert struct.unpack("<II", data[8:16]) == (20, 256)
        assert data[16:] == tail


class TestCreateTreeInstructions:
    """Test cases for the create-tree instruction list."""

    def setup_method(self):
        self.payer = Keypair().pubkey()
        self.tree = Keypair().pubkey()
        self.geometry = lookup(14, 64)

    def test_two_instructions_allocate_then_initialize(self):
        instructions = create_tree_instructions(self.payer, self.tree, self.geometry, lamports=1_000)

        assert len(instructions) == 2
        assert instructions[0].program_id == SYSTEM_PROGRAM
        assert instructions[1].program_id == BUBBLEGUM_PROGRAM_ID

    def test_allocation_matches_size(self):
        instructions = create_tree_instructions(self.payer, self.tree, self.geometry, lamports=222_000)
        params = decode_create_account(instructions[0])

        assert params.from_pubkey == self.payer
        assert params.to_pubkey == self.tree
        assert params.lamports == 222_000
        assert params.space == size_of(self.geometry) == 31_800
        assert params.owner == SPL_ACCOUNT_COMPRESSION_PROGRAM_ID

    def test_allocation_includes_canopy(self):
        instructions = create_tree_instructions(
            self.payer, self.tree, self.geometry, lamports=1, canopy_depth=5
        )
        params = decode_create_account(instructions[0])

        assert params.space == size_of(self.geometry, 5)

    def test_invalid_canopy_rejected(self):
        with pytest.raises(InvalidCanopyDepthError):
            create_tree_instructions(self.payer, self.tree, self.geometry, lamports=1, canopy_depth=15)

    def test_initialize_accounts(self):
        instructions = create_tree_instructions(self.payer, self.tree, self.geometry, lamports=1)
        tree_config, _bump = derive_tree_config(self.tree)
        metas = instructions[1].accounts

        assert [m.pubkey for m in metas] == [
            tree_config,
            self.tree,
            self.payer,
            self.payer,
            SPL_NOOP_PROGRAM_ID,
            SPL_ACCOUNT_COMPRESSION_PROGRAM_ID,
            SYSTEM_PROGRAM_ID,
        ]
        assert metas[0].is_writable and not metas[0].is_signer
        assert metas[1].is_writable and not metas[1].is_signer
        assert metas[2].is_signer and metas[2].is_writable
        assert metas[3].is_signer and not metas[3].is_writable
        assert not any(m.is_signer for m in metas[4:])

    def test_initialize_data(self):
        instructions = create_tree_instructions(self.payer, self.tree, self.geometry, lamports=1)
        assert bytes(instructions[1].data) == create_tree_data(14, 64)

    def test_separate_tree_creator(self):
        creator = Keypair().pubkey()
        instructions = create_tree_instructions(
            self.payer, self.tree, self.geometry, lamports=1, tree_creator=creator
        )
        metas = instructions[1].accounts

        assert metas[2].pubkey == self.payer
        assert metas[3].pubkey == creator


class TestDelegateTreeInstructions:
    """Test cases for the delegate-tree instruction list."""

    def setup_method(self):
        self.creator = Keypair().pubkey()
        self.tree = Keypair().pubkey()
        self.delegate = Keypair().pubkey()

    def test_single_instruction(self):
        instructions = delegate_tree_instructions(self.creator, self.tree, self.delegate)

        assert len(instructions) == 1
        assert instructions[0].program_id == BUBBLEGUM_PROGRAM_ID
        assert bytes(instructions[0].data) == SET_TREE_DELEGATE_DISCRIMINATOR

    def test_accounts(self):
        tree_config, _bump = derive_tree_config(self.tree)
        metas = delegate_tree_instructions(self.creator, self.tree, self.delegate)[0].accounts

        assert [m.pubkey for m in metas] == [
            tree_config,
            self.creator,
            self.delegate,
            self.tree,
            SYSTEM_PROGRAM_ID,
        ]
        assert metas[0].is_writable
        assert metas[3].is_writable

    def test_only_supplied_keys_referenced(self):
        tree_config = Keypair().pubkey()
        metas = delegate_tree_instructions(
            self.creator, self.tree, self.delegate, tree_config=tree_config
        )[0].accounts

        assert {m.pubkey for m in metas} == {
            tree_config, self.creator, self.delegate, self.tree, SYSTEM_PROGRAM_ID
        }
        assert [m.pubkey for m in metas if m.is_signer] == [self.creator]

    def test_explicit_tree_config_used_verbatim(self):
        tree_config = Keypair().pubkey()
        metas = delegate_tree_instructions(
            self.creator, self.tree, self.delegate, tree_config=tree_config
        )[0].accounts

        assert metas[0].pubkey == tree_config
