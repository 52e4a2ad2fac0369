"""
Unit tests for the Solana RPC client.

AsyncClient is mocked throughout; nothing here talks to a cluster.
"""

from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest
from solana.exceptions import SolanaRpcException
from solana.rpc.core import (
    RPCException,
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.system_program import TransferParams, transfer

from ..clients.solana_client import SolanaClient
from ..errors import IndeterminateOutcomeError, SubmissionError

RPC_URL = "https://api.devnet.solana.com"


@pytest.fixture
def rpc():
    """The mocked AsyncClient instance behind SolanaClient."""
    with patch("arborist.clients.solana_client.AsyncClient") as mock_cls:
        instance = mock_cls.return_value
        instance.close = AsyncMock()
        instance.get_latest_blockhash = AsyncMock(
            return_value=Mock(value=Mock(blockhash=Hash.default(), last_valid_block_height=1_000))
        )
        instance.get_minimum_balance_for_rent_exemption = AsyncMock(return_value=Mock(value=222_222))
        instance.send_raw_transaction = AsyncMock()
        instance.confirm_transaction = AsyncMock(return_value=Mock(value=[Mock(err=None)]))
        yield instance


@pytest.fixture
def client(rpc):
    return SolanaClient(RPC_URL, commitment="confirmed", max_retries=3, retry_delay=0)


@pytest.fixture
def payer():
    return Keypair()


@pytest.fixture
def instructions(payer):
    return [transfer(TransferParams(from_pubkey=payer.pubkey(), to_pubkey=Keypair().pubkey(), lamports=1))]


def _connect_failure():
    error = SolanaRpcException("request failed")
    error.__cause__ = httpx.ConnectError("connection refused")
    return error


class TestReads:
    """Test cases for read-only RPC calls."""

    async def test_context_manager_closes(self, rpc):
        async with SolanaClient(RPC_URL) as client:
            assert client.rpc_url == RPC_URL

        rpc.close.assert_awaited_once()

    async def test_rent(self, client, rpc):
        assert await client.get_minimum_balance_for_rent_exemption(31_800) == 222_222
        rpc.get_minimum_balance_for_rent_exemption.assert_awaited_once_with(31_800)

    async def test_latest_blockhash(self, client):
        blockhash, last_valid_block_height = await client.get_latest_blockhash()

        assert blockhash == Hash.default()
        assert last_valid_block_height == 1_000

    async def test_retry_then_success(self, client, rpc):
        rpc.get_minimum_balance_for_rent_exemption.side_effect = [
            RPCException("node is behind"),
            httpx.ReadTimeout("timed out"),
            Mock(value=5),
        ]

        assert await client.get_minimum_balance_for_rent_exemption(10) == 5
        assert rpc.get_minimum_balance_for_rent_exemption.await_count == 3

    async def test_retries_exhausted(self, client, rpc):
        rpc.get_latest_blockhash.side_effect = RPCException("unavailable")

        with pytest.raises(SubmissionError, match="latest blockhash"):
            await client.get_latest_blockhash()
        assert rpc.get_latest_blockhash.await_count == 3

    async def test_non_retryable_error_propagates(self, client, rpc):
        rpc.get_latest_blockhash.side_effect = KeyError("value")

        with pytest.raises(KeyError):
            await client.get_latest_blockhash()
        assert rpc.get_latest_blockhash.await_count == 1


class TestSendTransaction:
    """Test cases for sign, send and confirm."""

    def test_build_transaction(self, client, payer, instructions):
        transaction = client.build_transaction(instructions, payer.pubkey(), [payer], Hash.default())

        assert isinstance(transaction.message, MessageV0)
        assert transaction.message.account_keys[0] == payer.pubkey()
        assert len(transaction.signatures) == 1

    async def test_success(self, client, rpc, payer, instructions):
        signature = await client.send_transaction(instructions, payer.pubkey(), [payer])

        expected = client.build_transaction(instructions, payer.pubkey(), [payer], Hash.default())
        assert signature == str(expected.signatures[0])
        rpc.send_raw_transaction.assert_awaited_once()
        sent_bytes = rpc.send_raw_transaction.await_args[0][0]
        assert sent_bytes == bytes(expected)

        _, kwargs = rpc.confirm_transaction.await_args
        assert kwargs["commitment"] == "confirmed"
        assert kwargs["last_valid_block_height"] == 1_000

    async def test_skip_preflight_option(self, rpc, payer, instructions):
        client = SolanaClient(RPC_URL, skip_preflight=True, retry_delay=0)
        await client.send_transaction(instructions, payer.pubkey(), [payer])

        opts = rpc.send_raw_transaction.await_args[1]["opts"]
        assert opts.skip_preflight is True

    async def test_blockhash_failure_sends_nothing(self, client, rpc, payer, instructions):
        rpc.get_latest_blockhash.side_effect = RPCException("unavailable")

        with pytest.raises(SubmissionError):
            await client.send_transaction(instructions, payer.pubkey(), [payer])
        rpc.send_raw_transaction.assert_not_awaited()

    async def test_missing_signer(self, client, rpc, payer, instructions):
        with pytest.raises(SubmissionError, match="signing"):
            await client.send_transaction(instructions, payer.pubkey(), [Keypair()])
        rpc.send_raw_transaction.assert_not_awaited()

    async def test_preflight_rejection(self, client, rpc, payer, instructions):
        rpc.send_raw_transaction.side_effect = RPCException("custom program error: 0x1")

        with pytest.raises(SubmissionError, match="custom program error"):
            await client.send_transaction(instructions, payer.pubkey(), [payer])
        rpc.send_raw_transaction.assert_awaited_once()
        rpc.confirm_transaction.assert_not_awaited()

    async def test_connection_refused_is_not_sent(self, client, rpc, payer, instructions):
        rpc.send_raw_transaction.side_effect = _connect_failure()

        with pytest.raises(SubmissionError, match="connection refused"):
            await client.send_transaction(instructions, payer.pubkey(), [payer])

    async def test_timeout_mid_send_is_indeterminate(self, client, rpc, payer, instructions):
        rpc.send_raw_transaction.side_effect = httpx.ReadTimeout("timed out")

        with pytest.raises(IndeterminateOutcomeError) as exc_info:
            await client.send_transaction(instructions, payer.pubkey(), [payer])

        expected = client.build_transaction(instructions, payer.pubkey(), [payer], Hash.default())
        assert exc_info.value.signature == str(expected.signatures[0])
        rpc.send_raw_transaction.assert_awaited_once()

    @pytest.mark.parametrize("error", [
        UnconfirmedTxError("Unable to confirm transaction"),
        TransactionExpiredBlockheightExceededError("block height exceeded"),
        httpx.ReadTimeout("timed out"),
    ])
    async def test_unconfirmed_is_indeterminate(self, client, rpc, payer, instructions, error):
        rpc.confirm_transaction.side_effect = error

        with pytest.raises(IndeterminateOutcomeError, match="Check its status on-chain"):
            await client.send_transaction(instructions, payer.pubkey(), [payer])
        rpc.send_raw_transaction.assert_awaited_once()

    async def test_on_chain_failure(self, client, rpc, payer, instructions):
        rpc.confirm_transaction.return_value = Mock(value=[Mock(err="InstructionError(1, Custom(6000))")])

        with pytest.raises(SubmissionError, match="failed"):
            await client.send_transaction(instructions, payer.pubkey(), [payer])
