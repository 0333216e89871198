"""TokenContract adapter for a deployed course token, via web3.py."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from web3 import AsyncWeb3
from web3.exceptions import (
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    Web3RPCError,
)

from course_rewards.chain.contract import TxReceipt
from course_rewards.chain.wallet import WalletProvider
from course_rewards.core.errors import ChainRejectedError, ChainUnavailableError

logger = logging.getLogger(__name__)

COURSE_TOKEN_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "awardTokens",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "student", "type": "address"},
            {"name": "courseId", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "hasCourseCompleted",
        "stateMutability": "view",
        "inputs": [
            {"name": "student", "type": "address"},
            {"name": "courseId", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "getCompletedCourses",
        "stateMutability": "view",
        "inputs": [{"name": "student", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256[]"}],
    },
    {
        "type": "event",
        "name": "CourseCompleted",
        "anonymous": False,
        "inputs": [
            {"name": "student", "type": "address", "indexed": True},
            {"name": "courseId", "type": "uint256", "indexed": True},
            {"name": "reward", "type": "uint256", "indexed": False},
        ],
    },
]

_REVERT_PREFIX = "execution reverted: "


def _revert_reason(exc: ContractLogicError) -> str:
    message = exc.message or str(exc)
    if message.startswith(_REVERT_PREFIX):
        return message[len(_REVERT_PREFIX):]
    return message


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except ContractLogicError as exc:
        raise ChainRejectedError(_revert_reason(exc)) from exc
    except Web3RPCError as exc:
        # The node refused the transaction: bad nonce, insufficient funds, ...
        raise ChainRejectedError(str(exc)) from exc
    except TimeExhausted as exc:
        raise ChainUnavailableError(str(exc)) from exc
    except (ProviderConnectionError, OSError) as exc:
        raise ChainUnavailableError(str(exc)) from exc


class Web3TokenContract:
    """Satisfies the TokenContract Protocol against a JSON-RPC node."""

    def __init__(
        self,
        w3: AsyncWeb3,
        address: str,
        wallet: WalletProvider,
        *,
        poll_latency: float = 1.0,
    ) -> None:
        self._w3 = w3
        self._wallet = wallet
        self._poll_latency = poll_latency
        self._contract = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(address), abi=COURSE_TOKEN_ABI
        )
        self._sender: str | None = None
        wallet.subscribe("accountsChanged", self._forget_sender)

    def _forget_sender(self, _accounts: Any) -> None:
        self._sender = None

    async def _sender_address(self) -> str:
        if self._sender is None:
            accounts = await self._wallet.request_accounts()
            if not accounts:
                raise ChainRejectedError("wallet exposes no accounts")
            self._sender = accounts[0]
        return self._sender

    async def has_course_completed(self, student: str, course_id: int) -> bool:
        with _translate_errors():
            return await self._contract.functions.hasCourseCompleted(
                AsyncWeb3.to_checksum_address(student), course_id
            ).call()

    async def get_completed_courses(self, student: str) -> list[int]:
        with _translate_errors():
            result = await self._contract.functions.getCompletedCourses(
                AsyncWeb3.to_checksum_address(student)
            ).call()
        return [int(c) for c in result]

    async def award_tokens(self, student: str, course_id: int) -> str:
        sender = await self._sender_address()
        with _translate_errors():
            # build_transaction estimates gas, so a call that would revert
            # fails here with its reason string instead of burning gas.
            tx = await self._contract.functions.awardTokens(
                AsyncWeb3.to_checksum_address(student), course_id
            ).build_transaction({"from": sender})
            tx_hash = await self._wallet.send_transaction(tx)
        logger.info("awardTokens broadcast", extra={"tx_hash": tx_hash})
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        with _translate_errors():
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash,  # type: ignore[arg-type]
                timeout=timeout,
                poll_latency=self._poll_latency,
            )
        return TxReceipt(
            tx_hash=tx_hash,
            block_number=int(receipt["blockNumber"]),
            succeeded=receipt["status"] == 1,
        )
