"""Wallet provider port.

The signer is a capability handed to the contract adapter, with the
same three verbs an EIP-1193 provider exposes:

  request_accounts()   -> addresses the wallet can sign for
  send_transaction(tx) -> broadcast a signed transaction, return its hash
  subscribe(event, fn) -> accountsChanged / disconnect notifications

LocalAccountWallet is the server-side implementation: a single hot key
(the contract owner / minter) loaded from CHAIN_PRIVATE_KEY.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol

from eth_account import Account
from web3 import AsyncWeb3

logger = logging.getLogger(__name__)

WalletHandler = Callable[[Any], None]


class WalletProvider(Protocol):
    async def request_accounts(self) -> list[str]: ...
    async def send_transaction(self, tx: dict[str, Any]) -> str: ...
    def subscribe(self, event: str, handler: WalletHandler) -> Callable[[], None]: ...


class LocalAccountWallet:
    """Signs with a local private key and broadcasts raw transactions."""

    def __init__(self, w3: AsyncWeb3, private_key: str) -> None:
        self._w3 = w3
        self._account = Account.from_key(private_key)
        self._handlers: dict[str, list[WalletHandler]] = {}
        # Held from nonce lookup to broadcast, so concurrent settlements
        # from this key never sign the same nonce.
        self._send_lock = asyncio.Lock()

    async def request_accounts(self) -> list[str]:
        return [self._account.address]

    async def send_transaction(self, tx: dict[str, Any]) -> str:
        tx = dict(tx)
        tx.setdefault("from", self._account.address)
        async with self._send_lock:
            if "nonce" not in tx:
                # "pending" counts transactions this key already broadcast
                tx["nonce"] = await self._w3.eth.get_transaction_count(
                    self._account.address, "pending"
                )
            signed = self._account.sign_transaction(tx)
            tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        return AsyncWeb3.to_hex(tx_hash)

    def subscribe(self, event: str, handler: WalletHandler) -> Callable[[], None]:
        handlers = self._handlers.setdefault(event, [])
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def close(self) -> None:
        for handler in list(self._handlers.get("disconnect", [])):
            try:
                handler(self._account.address)
            except Exception:
                logger.exception("Wallet disconnect handler failed")
        self._handlers.clear()
