"""
Solana RPC client for arborist.

Wraps solana-py's AsyncClient with the few calls the tree operations need:
latest blockhash, rent-exemption minimum, and sign/send/confirm of a single
transaction. Read-only calls are retried; sending never is.
"""

import logging
import time
from typing import List, Sequence, Tuple

import httpx
import structlog
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.core import (
    RPCException,
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import IndeterminateOutcomeError, SubmissionError
from ..logging_utils import create_operation_logger, log_rpc_metrics

logger = create_operation_logger("solana_client")

RETRYABLE_ERRORS = (RPCException, SolanaRpcException, httpx.TransportError)


class SolanaClient:
    """
    Thin async RPC client used to submit tree transactions.

    Use as an async context manager so the underlying HTTP session is closed.
    """

    def __init__(
        self,
        rpc_url: str,
        commitment: str = "confirmed",
        timeout: int = 90,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        skip_preflight: bool = False,
    ):
        """
        Initialize the Solana client.

        Args:
            rpc_url: JSON RPC endpoint
            commitment: Commitment level for reads and confirmation
            timeout: Request timeout in seconds
            max_retries: Attempts for read-only calls
            retry_delay: Base delay for exponential backoff
            skip_preflight: Send without preflight simulation
        """
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.skip_preflight = skip_preflight
        self.async_client = AsyncClient(rpc_url, commitment=commitment, timeout=timeout)
        self.logger = logger.bind(endpoint=rpc_url)

    async def __aenter__(self) -> "SolanaClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        await self.async_client.close()
        self.logger.debug("SolanaClient connection closed")

    async def _make_rpc_call_with_retry(self, method_name: str, *args, **kwargs):
        """Call an AsyncClient method, retrying transient failures."""
        method = getattr(self.async_client, method_name)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_delay, min=self.retry_delay, max=10),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(self.logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                start_time = time.time()
                try:
                    result = await method(*args, **kwargs)
                except Exception as e:
                    log_rpc_metrics(self.rpc_url, method_name, time.time() - start_time, False, str(e))
                    raise
                log_rpc_metrics(self.rpc_url, method_name, time.time() - start_time, True)
        return result

    async def get_latest_blockhash(self) -> Tuple[Hash, int]:
        """Latest blockhash and the last block height it is valid for."""
        try:
            resp = await self._make_rpc_call_with_retry("get_latest_blockhash")
        except RETRYABLE_ERRORS as e:
            raise SubmissionError(f"Error getting latest blockhash: {e}") from e
        return resp.value.blockhash, resp.value.last_valid_block_height

    async def get_minimum_balance_for_rent_exemption(self, data_length: int) -> int:
        """Get minimum balance required for rent exemption."""
        try:
            resp = await self._make_rpc_call_with_retry(
                "get_minimum_balance_for_rent_exemption", data_length
            )
        except RETRYABLE_ERRORS as e:
            raise SubmissionError(
                f"Error getting rent exemption balance for {data_length} bytes: {e}"
            ) from e
        return resp.value

    def build_transaction(
        self,
        instructions: List[Instruction],
        payer: Pubkey,
        signers: Sequence[Keypair],
        recent_blockhash: Hash,
    ) -> VersionedTransaction:
        """Compile and sign a v0 transaction."""
        message = MessageV0.try_compile(
            payer=payer,
            instructions=instructions,
            address_lookup_table_accounts=[],
            recent_blockhash=recent_blockhash,
        )
        return VersionedTransaction(message, list(signers))

    async def send_transaction(
        self,
        instructions: List[Instruction],
        payer: Pubkey,
        signers: Sequence[Keypair],
    ) -> str:
        """
        Sign, send and confirm one transaction.

        Sending happens exactly once. Any failure before the node accepted
        the transaction is a SubmissionError; once it has a signature, a
        missing confirmation is an IndeterminateOutcomeError.

        Returns:
            The transaction signature as a base58 string
        """
        blockhash, last_valid_block_height = await self.get_latest_blockhash()
        try:
            transaction = self.build_transaction(instructions, payer, signers, blockhash)
        except Exception as e:
            raise SubmissionError(f"Error signing transaction: {e}") from e
        signature = str(transaction.signatures[0])

        self.logger.info(
            "Sending transaction",
            signature=signature,
            instruction_count=len(instructions),
            signer_count=len(signers),
            skip_preflight=self.skip_preflight
        )

        opts = TxOpts(
            skip_preflight=self.skip_preflight,
            preflight_commitment=self.commitment,
        )
        start_time = time.time()
        try:
            await self.async_client.send_raw_transaction(bytes(transaction), opts=opts)
        except RPCException as e:
            log_rpc_metrics(self.rpc_url, "send_raw_transaction", time.time() - start_time, False, str(e))
            raise SubmissionError(f"Error sending transaction: {e}") from e
        except (SolanaRpcException, httpx.HTTPError) as e:
            log_rpc_metrics(self.rpc_url, "send_raw_transaction", time.time() - start_time, False, str(e))
            cause = e.__cause__ if isinstance(e, SolanaRpcException) else e
            if isinstance(cause, httpx.ConnectError):
                raise SubmissionError(f"Error sending transaction: {cause}") from e
            raise IndeterminateOutcomeError(signature, f"send failed mid-request: {e}") from e
        log_rpc_metrics(self.rpc_url, "send_raw_transaction", time.time() - start_time, True)

        await self.confirm_transaction(signature, transaction, last_valid_block_height)
        return signature

    async def confirm_transaction(
        self,
        signature: str,
        transaction: VersionedTransaction,
        last_valid_block_height: int,
    ) -> None:
        """Wait for the commitment level, raising on on-chain failure."""
        try:
            resp = await self.async_client.confirm_transaction(
                transaction.signatures[0],
                commitment=self.commitment,
                last_valid_block_height=last_valid_block_height,
            )
        except (UnconfirmedTxError, TransactionExpiredBlockheightExceededError) as e:
            raise IndeterminateOutcomeError(signature, str(e)) from e
        except (RPCException, SolanaRpcException, httpx.HTTPError) as e:
            raise IndeterminateOutcomeError(signature, f"error while confirming: {e}") from e

        status = resp.value[0] if resp.value else None
        if status is not None and status.err is not None:
            self.logger.error("Transaction failed on-chain", signature=signature, error=str(status.err))
            raise SubmissionError(f"Transaction {signature} failed: {status.err}")

        self.logger.info("Transaction confirmed", signature=signature, commitment=self.commitment)
