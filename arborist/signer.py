"""
Signer resolution.

Turns a keypair source string, as accepted by the Solana CLI, into a
solders Keypair: a keypair file, a seed phrase prompt or a keypair piped
on stdin.
"""

import getpass
import json
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, TextIO
from urllib.parse import parse_qs, urlsplit

import structlog
from mnemonic import Mnemonic
from solders.keypair import Keypair

from .bubblegum import parse_pubkey
from .errors import InvalidPubkeyError, SignerError

logger = structlog.get_logger(__name__)

ASK_KEYWORD = "ASK"
STDOUT_OUTFILE_TOKEN = "-"
DEFAULT_DERIVATION_PATH = "m/44'/501'"
SEED_PHRASE_LANGUAGES = (
    "english",
    "chinese_simplified",
    "chinese_traditional",
    "japanese",
    "spanish",
    "korean",
    "french",
    "italian",
)


class SignerSourceKind(Enum):
    """Where a signing key comes from."""
    PROMPT = "prompt"
    FILEPATH = "file"
    USB = "usb"
    STDIN = "stdin"
    PUBKEY = "pubkey"


@dataclass
class SignerSource:
    """A parsed keypair source."""
    kind: SignerSourceKind
    path: Optional[str] = None
    derivation_path: Optional[str] = None
    legacy: bool = False


def _derivation_path_from_query(query: str) -> Optional[str]:
    params = parse_qs(query)
    if "full-path" in params:
        return params["full-path"][0]
    if "key" in params:
        parts = [p.rstrip("'") for p in params["key"][0].split("/") if p]
        if not parts or len(parts) > 2 or not all(p.isdigit() for p in parts):
            raise SignerError(f"Invalid derivation key {params['key'][0]!r}, expected ACCOUNT[/CHANGE]")
        hardened = "/".join(f"{p}'" for p in parts)
        return f"{DEFAULT_DERIVATION_PATH}/{hardened}"
    if params:
        raise SignerError(f"Unrecognized derivation path query {query!r}")
    return None


def parse_signer_source(source: str) -> SignerSource:
    """
    Classify a keypair source string.

    Raises:
        SignerError: if the source is not recognised or the file is missing
    """
    if "://" in source:
        parts = urlsplit(source)
        scheme = parts.scheme.lower()
        if scheme == SignerSourceKind.PROMPT.value:
            return SignerSource(
                SignerSourceKind.PROMPT,
                derivation_path=_derivation_path_from_query(parts.query),
            )
        if scheme == SignerSourceKind.FILEPATH.value:
            return SignerSource(SignerSourceKind.FILEPATH, path=parts.netloc + parts.path)
        if scheme == SignerSourceKind.USB.value:
            return SignerSource(SignerSourceKind.USB, path=source)
        if scheme == SignerSourceKind.STDIN.value:
            return SignerSource(SignerSourceKind.STDIN)
        raise SignerError(f"Unrecognized signer source {source!r}")

    if source == STDOUT_OUTFILE_TOKEN:
        return SignerSource(SignerSourceKind.STDIN)
    if source == ASK_KEYWORD:
        return SignerSource(SignerSourceKind.PROMPT, legacy=True)

    try:
        parse_pubkey(source)
    except InvalidPubkeyError:
        pass
    else:
        return SignerSource(SignerSourceKind.PUBKEY, path=source)

    path = Path(source).expanduser()
    if not path.exists():
        raise SignerError(
            f"could not read keypair file \"{source}\". Run \"solana-keygen new\" "
            f"to create a keypair file: no such file or directory"
        )
    return SignerSource(SignerSourceKind.FILEPATH, path=str(path))


def _keypair_from_json(text: str, origin: str) -> Keypair:
    try:
        data = json.loads(text)
        if not isinstance(data, list) or len(data) != 64:
            raise ValueError("expected a JSON array of 64 bytes")
        return Keypair.from_bytes(bytes(data))
    except (ValueError, TypeError) as e:
        raise SignerError(f"Invalid keypair in {origin}: {e}") from e


def read_keypair_file(path: str) -> Keypair:
    """Load a Solana CLI JSON keypair file."""
    keypair_path = Path(path).expanduser()
    try:
        text = keypair_path.read_text()
    except OSError as e:
        raise SignerError(
            f"could not read keypair file \"{keypair_path}\". Run \"solana-keygen new\" "
            f"to create a keypair file: {e}"
        ) from e
    return _keypair_from_json(text, str(keypair_path))


def sanitize_seed_phrase(seed_phrase: str) -> str:
    return " ".join(seed_phrase.split())


def seed_phrase_language(seed_phrase: str) -> Optional[str]:
    """First BIP39 word list the phrase is a valid mnemonic in, or None."""
    for language in SEED_PHRASE_LANGUAGES:
        if Mnemonic(language).check(seed_phrase):
            return language
    return None


def prompt_passphrase(prompt: str) -> str:
    passphrase = getpass.getpass(prompt)
    if passphrase:
        confirmed = getpass.getpass("Enter same passphrase again: ")
        if confirmed != passphrase:
            raise SignerError("Passphrases did not match")
    return passphrase


def keypair_from_seed_phrase(
    keypair_name: str,
    derivation_path: Optional[str] = None,
    legacy: bool = False,
    skip_seed_phrase_validation: bool = False,
    confirm_pubkey: bool = False,
) -> Keypair:
    """
    Recover a keypair from an interactively entered seed phrase.

    The phrase must be a valid BIP39 mnemonic (word list and checksum) in
    one of SEED_PHRASE_LANGUAGES unless validation is skipped. Legacy
    sources (the ASK keyword) use the first 32 bytes of the seed directly;
    everything else goes through an ed25519 derivation path.
    """
    seed_phrase = sanitize_seed_phrase(getpass.getpass(f"[{keypair_name}] seed phrase: "))
    if not skip_seed_phrase_validation:
        language = seed_phrase_language(seed_phrase)
        if language is None:
            raise SignerError("Can't get mnemonic from seed phrases")
        logger.debug("Seed phrase validated", language=language)

    passphrase = prompt_passphrase(
        f"[{keypair_name}] If this seed phrase has an associated passphrase, enter it now. "
        f"Otherwise, press ENTER to continue: "
    )

    try:
        if legacy:
            keypair = Keypair.from_seed_phrase_and_passphrase(seed_phrase, passphrase)
        else:
            keypair = Keypair.from_seed_and_derivation_path(
                Mnemonic.to_seed(seed_phrase, passphrase),
                derivation_path or DEFAULT_DERIVATION_PATH,
            )
    except ValueError as e:
        raise SignerError(f"Error deriving keypair from seed phrase: {e}") from e

    if confirm_pubkey:
        answer = input(f"Recovered pubkey `{keypair.pubkey()}`. Continue? (y/n): ")
        if answer.strip().lower() != "y":
            raise SignerError("Exiting: recovered pubkey was not confirmed")

    return keypair


def keypair_from_path(
    source: str,
    keypair_name: str = "signer",
    skip_seed_phrase_validation: bool = False,
    confirm_pubkey: bool = False,
    stdin: Optional[TextIO] = None,
) -> Keypair:
    """
    Resolve a keypair source to a Keypair.

    Args:
        source: Path, URI or keyword naming the keypair
        keypair_name: Label shown in prompts
        skip_seed_phrase_validation: Accept seed phrases of any length
        confirm_pubkey: Ask before using a keypair recovered from a seed phrase
        stdin: Stream to read a piped keypair from (defaults to sys.stdin)

    Raises:
        SignerError: if no keypair can be produced from the source
    """
    signer_source = parse_signer_source(source)
    logger.debug("Resolving signer", kind=signer_source.kind.value, keypair_name=keypair_name)

    if signer_source.kind is SignerSourceKind.PROMPT:
        return keypair_from_seed_phrase(
            keypair_name,
            derivation_path=signer_source.derivation_path,
            legacy=signer_source.legacy,
            skip_seed_phrase_validation=skip_seed_phrase_validation,
            confirm_pubkey=confirm_pubkey,
        )
    if signer_source.kind is SignerSourceKind.FILEPATH:
        return read_keypair_file(signer_source.path)
    if signer_source.kind is SignerSourceKind.STDIN:
        stream = stdin or sys.stdin
        return _keypair_from_json(stream.read(), "stdin")

    raise SignerError(
        f"signer of type `{signer_source.kind.value}` does not support Keypair output"
    )
