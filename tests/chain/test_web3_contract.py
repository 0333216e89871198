"""web3.py adapter: error translation and sender handling (no node required)."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import (
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    Web3RPCError,
)

from course_rewards.chain.wallet import LocalAccountWallet
from course_rewards.chain.web3_contract import Web3TokenContract, _translate_errors
from course_rewards.core.errors import ChainRejectedError, ChainUnavailableError

CONTRACT_ADDRESS = "0x" + "12" * 20
PRIVATE_KEY = "0x" + "11" * 32


class _FakeWallet:
    def __init__(self, accounts: list[str]) -> None:
        self.accounts = accounts
        self.requests = 0
        self.handlers: dict[str, list] = {}

    async def request_accounts(self) -> list[str]:
        self.requests += 1
        return list(self.accounts)

    async def send_transaction(self, tx: dict[str, Any]) -> str:
        raise AssertionError("no broadcast expected")

    def subscribe(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)
        return lambda: self.handlers[event].remove(handler)

    def emit(self, event: str, payload: Any) -> None:
        for handler in self.handlers.get(event, []):
            handler(payload)


def _w3() -> AsyncWeb3:
    return AsyncWeb3(AsyncHTTPProvider("http://127.0.0.1:8545"))


def test_contract_logic_error_becomes_rejection_with_reason() -> None:
    with pytest.raises(ChainRejectedError) as exc_info:
        with _translate_errors():
            raise ContractLogicError("execution reverted: Course already completed")
    assert exc_info.value.reason == "Course already completed"


def test_rpc_error_becomes_rejection() -> None:
    with pytest.raises(ChainRejectedError):
        with _translate_errors():
            raise Web3RPCError("nonce too low")


@pytest.mark.parametrize(
    "exc",
    [
        TimeExhausted("not mined in 120 seconds"),
        ProviderConnectionError("connection refused"),
        ConnectionResetError("reset by peer"),
    ],
)
def test_transport_errors_become_unavailable(exc: Exception) -> None:
    with pytest.raises(ChainUnavailableError):
        with _translate_errors():
            raise exc


def test_unrelated_errors_pass_through() -> None:
    with pytest.raises(KeyError):
        with _translate_errors():
            raise KeyError("blockNumber")


def test_sender_is_cached_until_accounts_change() -> None:
    first, second = "0x" + "aa" * 20, "0x" + "bb" * 20
    wallet = _FakeWallet([first])
    contract = Web3TokenContract(_w3(), CONTRACT_ADDRESS, wallet)

    async def scenario():
        a = await contract._sender_address()
        b = await contract._sender_address()
        wallet.accounts = [second]
        wallet.emit("accountsChanged", [second])
        c = await contract._sender_address()
        return a, b, c

    a, b, c = asyncio.run(scenario())
    assert (a, b, c) == (first, first, second)
    assert wallet.requests == 2


def test_award_without_accounts_is_rejected_before_rpc() -> None:
    contract = Web3TokenContract(_w3(), CONTRACT_ADDRESS, _FakeWallet([]))

    with pytest.raises(ChainRejectedError) as exc_info:
        asyncio.run(contract.award_tokens("0x" + "ab" * 20, 1))
    assert exc_info.value.reason == "wallet exposes no accounts"


def test_local_wallet_exposes_its_address() -> None:
    wallet = LocalAccountWallet(_w3(), PRIVATE_KEY)

    accounts = asyncio.run(wallet.request_accounts())
    assert accounts == [Account.from_key(PRIVATE_KEY).address]


def test_local_wallet_close_notifies_disconnect_handlers() -> None:
    wallet = LocalAccountWallet(_w3(), PRIVATE_KEY)
    seen: list[str] = []
    removed: list[str] = []

    def broken(_address: str) -> None:
        raise RuntimeError("handler bug")

    wallet.subscribe("disconnect", broken)
    wallet.subscribe("disconnect", seen.append)
    unsubscribe = wallet.subscribe("disconnect", removed.append)
    unsubscribe()
    wallet.close()

    assert seen == [Account.from_key(PRIVATE_KEY).address]
    assert removed == []


class _StubEth:
    """Node stub whose pending transaction count follows what was broadcast."""

    def __init__(self) -> None:
        self.sent: list[bytes] = []
        self.nonces_served: list[int] = []

    async def get_transaction_count(self, address: str, block: str) -> int:
        await asyncio.sleep(0)
        self.nonces_served.append(len(self.sent))
        return len(self.sent)

    async def send_raw_transaction(self, raw: bytes) -> bytes:
        await asyncio.sleep(0)
        self.sent.append(raw)
        return bytes([len(self.sent)]) * 32


class _StubW3:
    def __init__(self) -> None:
        self.eth = _StubEth()


def test_concurrent_sends_use_consecutive_nonces() -> None:
    w3 = _StubW3()
    wallet = LocalAccountWallet(w3, PRIVATE_KEY)  # type: ignore[arg-type]
    tx = {"to": CONTRACT_ADDRESS, "value": 0, "gas": 21000, "gasPrice": 1, "chainId": 1}

    async def scenario():
        return await asyncio.gather(wallet.send_transaction(tx), wallet.send_transaction(tx))

    hashes = asyncio.run(scenario())
    assert w3.eth.nonces_served == [0, 1]
    assert len(set(hashes)) == 2
    assert len(w3.eth.sent) == 2
