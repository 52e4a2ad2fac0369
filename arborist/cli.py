"""
Command-line interface for arborist.

    arborist create-tree -d DEPTH -b BUFFER [-c CANOPY]
    arborist delegate-tree -t TREE [-c TREE_CONFIG] -d NEW_DELEGATE
    arborist help [COMMAND]
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

import structlog
from solders.keypair import Keypair

from . import __version__
from .bubblegum import parse_pubkey
from .clients.solana_client import SolanaClient
from .config import COMMITMENT_LEVELS, get_arborist_config
from .errors import ArboristError, IndeterminateOutcomeError
from .logging_utils import configure_logging
from .merkle_tree import format_valid_pairs, validate_tree_parameters
from .services import CreatedTree, DelegatedTree, TreeService
from .signer import keypair_from_path

logger = structlog.get_logger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000


def _global_options(verbose_dest: str = "verbose") -> argparse.ArgumentParser:
    # Defaults are suppressed so the options can also follow the subcommand
    # without the subparser clobbering values given before it.
    parser = argparse.ArgumentParser(add_help=False, argument_default=argparse.SUPPRESS)
    parser.add_argument(
        "-C", "--solana-config",
        metavar="PATH",
        help="Path to an existing Solana CLI configuration file",
    )
    parser.add_argument(
        "-u", "--url",
        dest="rpc_url",
        metavar="URL_OR_MONIKER",
        help="Override the default RPC endpoint (mainnet-beta, devnet, testnet, localhost or a URL)",
    )
    parser.add_argument("--rpc-timeout", type=int, metavar="SECONDS", help="Timeout for RPC requests")
    parser.add_argument(
        "--commitment",
        choices=COMMITMENT_LEVELS,
        help="Override the default RPC commitment level",
    )
    parser.add_argument("-k", "--keypair", metavar="SOURCE", help="Override the default keypair path")
    parser.add_argument(
        "--skip-seed-phrase-validation",
        action="store_true",
        help="Skip validation of seed phrases. Use this if your phrase does not use the BIP39 official English word list",
    )
    parser.add_argument(
        "--confirm-key",
        action="store_true",
        help="Confirm the recovered key before using it; only relevant with seed phrases",
    )
    parser.add_argument(
        "--skip-preflight",
        action="store_true",
        help="Send transactions without preflight simulation",
    )
    parser.add_argument(
        "-v", "--verbose",
        dest=verbose_dest,
        action="count",
        help="Increase log verbosity (-v, -vv)",
    )
    parser.add_argument("--log-format", choices=["console", "json"], help="Log output format")
    return parser


# -v given after the subcommand lands here and is added to the count before it.
SUBCOMMAND_VERBOSE = "subcommand_verbose"

_GLOBAL_DEFAULTS: Dict[str, Any] = {
    "solana_config": None,
    "rpc_url": None,
    "rpc_timeout": None,
    "commitment": None,
    "keypair": None,
    "skip_seed_phrase_validation": False,
    "confirm_key": False,
    "skip_preflight": False,
    "verbose": 0,
    "log_format": None,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="arborist",
        description="CLI for common operations on Metaplex Bubblegum compressed NFT trees.",
        parents=[_global_options()],
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.set_defaults(**_GLOBAL_DEFAULTS)
    sub = parser.add_subparsers(dest="cmd", metavar="COMMAND")

    p_create = sub.add_parser(
        "create-tree",
        parents=[_global_options(SUBCOMMAND_VERBOSE)],
        help="Create a new Merkle tree and tree configuration",
        description="Create a new Merkle tree and tree configuration.",
        epilog="Supported (depth, buffer size) pairs:\n" + format_valid_pairs(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p_create.add_argument("-d", "--depth", type=int, required=True, help="Depth (log2 capacity) of the tree")
    p_create.add_argument(
        "-b", "--buffer",
        dest="buffer_size",
        type=int,
        required=True,
        help="Buffer size (i.e. concurrency limit) for the tree",
    )
    p_create.add_argument(
        "-c", "--canopy",
        dest="canopy_depth",
        type=int,
        default=0,
        help="Cached tree (canopy) depth",
    )
    visibility = p_create.add_mutually_exclusive_group()
    visibility.add_argument(
        "--public",
        dest="public",
        action="store_const",
        const=True,
        default=None,
        help="Allow anyone to mint to the tree",
    )
    visibility.add_argument(
        "--private",
        dest="public",
        action="store_const",
        const=False,
        help="Only the tree creator or delegate may mint",
    )
    p_create.add_argument("--json", action="store_true", help="Print the result as JSON")
    p_create.set_defaults(func=_cmd_create_tree)

    p_delegate = sub.add_parser(
        "delegate-tree",
        parents=[_global_options(SUBCOMMAND_VERBOSE)],
        help="Delegate a Merkle tree to a new tree authority",
        description="Delegate a Merkle tree to a new tree authority. The loaded keypair must be the tree creator.",
    )
    p_delegate.add_argument("-t", "--tree", dest="merkle_tree", required=True, help="Address of the Merkle tree")
    p_delegate.add_argument(
        "-c", "--config",
        dest="tree_config",
        help="Address of the tree configuration PDA (derived from the tree if omitted)",
    )
    p_delegate.add_argument(
        "-d", "--delegate",
        dest="new_tree_delegate",
        required=True,
        help="The new delegate over the Merkle tree",
    )
    p_delegate.add_argument("--json", action="store_true", help="Print the result as JSON")
    p_delegate.set_defaults(func=_cmd_delegate_tree)

    p_help = sub.add_parser("help", help="Print this message or the help of the given subcommand")
    p_help.add_argument("command", nargs="?", help="Subcommand to describe")
    p_help.set_defaults(func=None)

    parser.subcommands = {"create-tree": p_create, "delegate-tree": p_delegate, "help": p_help}
    return parser


def parse_args(parser: argparse.ArgumentParser, argv: Optional[List[str]] = None) -> argparse.Namespace:
    args = parser.parse_args(argv)
    args.verbose += vars(args).pop(SUBCOMMAND_VERBOSE, 0)
    return args


def _resolve_settings(args: argparse.Namespace) -> Dict[str, Any]:
    return get_arborist_config(
        config_path=args.solana_config,
        rpc_url=args.rpc_url,
        keypair=args.keypair,
        commitment=args.commitment,
        rpc_timeout=args.rpc_timeout,
    )


def _load_signer(args: argparse.Namespace, settings: Dict[str, Any]) -> Keypair:
    return keypair_from_path(
        settings["keypair_path"],
        keypair_name="signer",
        skip_seed_phrase_validation=args.skip_seed_phrase_validation,
        confirm_pubkey=args.confirm_key,
    )


def _make_client(args: argparse.Namespace, settings: Dict[str, Any]) -> SolanaClient:
    return SolanaClient(
        rpc_url=settings["rpc_url"],
        commitment=settings["commitment"],
        timeout=settings["timeout"],
        max_retries=settings["max_retries"],
        retry_delay=settings["retry_delay"],
        skip_preflight=args.skip_preflight,
    )


def _print_created(result: CreatedTree, as_json: bool) -> None:
    if as_json:
        print(json.dumps(result.to_dict(), indent=2))
        return
    print(f"Tree address: {result.tree_address}")
    print(f"Tree config: {result.tree_config}")
    print(
        f"Depth: {result.depth}, buffer size: {result.max_buffer_size}, "
        f"canopy depth: {result.canopy_depth} (capacity {result.max_capacity:,} leaves)"
    )
    print(
        f"Account size: {result.account_bytes:,} bytes, rent: {result.rent_lamports:,} lamports "
        f"({result.rent_lamports / LAMPORTS_PER_SOL:.9f} SOL)"
    )
    print(f"Success! Transaction signature: {result.signature}")


def _print_delegated(result: DelegatedTree, as_json: bool) -> None:
    if as_json:
        print(json.dumps(result.to_dict(), indent=2))
        return
    print(f"Tree address: {result.tree_address}")
    print(f"Tree config: {result.tree_config}")
    print(f"New tree delegate: {result.new_tree_delegate}")
    print(f"Success! Transaction signature: {result.signature}")


def _cmd_create_tree(args: argparse.Namespace) -> int:
    # Validate before resolving the signer or touching the network.
    validate_tree_parameters(args.depth, args.buffer_size, args.canopy_depth)

    settings = _resolve_settings(args)
    keypair = _load_signer(args, settings)

    async def run() -> CreatedTree:
        async with _make_client(args, settings) as client:
            service = TreeService(client, keypair)
            return await service.create_tree(
                args.depth,
                args.buffer_size,
                canopy_depth=args.canopy_depth,
                public=args.public,
            )

    _print_created(asyncio.run(run()), args.json)
    return 0


def _cmd_delegate_tree(args: argparse.Namespace) -> int:
    merkle_tree = parse_pubkey(args.merkle_tree, "tree address")
    tree_config = parse_pubkey(args.tree_config, "tree config address") if args.tree_config else None
    new_tree_delegate = parse_pubkey(args.new_tree_delegate, "new tree delegate")

    settings = _resolve_settings(args)
    keypair = _load_signer(args, settings)

    async def run() -> DelegatedTree:
        async with _make_client(args, settings) as client:
            service = TreeService(client, keypair)
            return await service.delegate_tree(merkle_tree, new_tree_delegate, tree_config=tree_config)

    _print_delegated(asyncio.run(run()), args.json)
    return 0


def _cmd_help(parser: argparse.ArgumentParser, command: Optional[str]) -> int:
    if command is None:
        parser.print_help()
        return 0
    subparser = parser.subcommands.get(command)
    if subparser is None:
        print(f"ERROR: unrecognized subcommand {command!r}", file=sys.stderr)
        return 2
    subparser.print_help()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parse_args(parser, argv)

    if args.cmd is None:
        parser.print_help(sys.stderr)
        return 2
    if args.cmd == "help":
        return _cmd_help(parser, args.command)

    configure_logging(args.verbose, args.log_format)

    try:
        return args.func(args)
    except IndeterminateOutcomeError as exc:
        logger.warning("Transaction outcome unknown", signature=exc.signature, reason=exc.reason)
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except ArboristError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
