"""Scoped chain connection.

Opened once per process (API lifespan or worker) and handed to the
ChainReconciler; closed on shutdown.  Mirrors lifespan_db()/lifespan_redis():
with no CHAIN_RPC_URL the simulated contract is used instead.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from web3 import AsyncHTTPProvider, AsyncWeb3

from course_rewards.chain.contract import InMemoryTokenContract, TokenContract
from course_rewards.chain.wallet import LocalAccountWallet
from course_rewards.chain.web3_contract import Web3TokenContract
from course_rewards.core.config import Settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_chain_session(settings: Settings) -> AsyncIterator[TokenContract]:
    if not settings.chain_rpc_url:
        if settings.on_chain:
            logger.warning(
                "REWARD_MODE=on-chain without CHAIN_RPC_URL, using simulated contract"
            )
        yield InMemoryTokenContract(default_reward=settings.default_token_reward)
        return

    if not settings.token_contract_address or not settings.chain_private_key:
        raise ValueError(
            "CHAIN_RPC_URL requires TOKEN_CONTRACT_ADDRESS and CHAIN_PRIVATE_KEY"
        )

    w3 = AsyncWeb3(AsyncHTTPProvider(settings.chain_rpc_url))
    if await w3.is_connected():
        logger.info("Chain RPC connected, chain_id=%s", await w3.eth.chain_id)
    else:
        # Start anyway: settlements fail as chain_unavailable and can be
        # retried once the node is back.
        logger.warning("Chain RPC not reachable at startup")

    wallet = LocalAccountWallet(w3, settings.chain_private_key)
    contract = Web3TokenContract(w3, settings.token_contract_address, wallet)
    try:
        yield contract
    finally:
        wallet.close()
        await w3.provider.disconnect()
        logger.info("Chain RPC session closed")
