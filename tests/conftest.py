"""Pytest configuration and fixtures."""

import json
import os
import time
from typing import Optional

import httpx
import pytest
import pytest_asyncio
from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import function_signature_to_4byte_selector, keccak
from web3 import Web3

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"

from stakerelay.config import Settings
from stakerelay.relay.auth import compute_digest
from stakerelay.relay.replay import MemoryReplayStore
from stakerelay.services import RelayServices
from stakerelay.signing.local import LocalSigner

USER_KEY = "0x" + "11" * 32
OTHER_KEY = "0x" + "33" * 32
RELAYER_KEY = "0x" + "22" * 32

USER_ADDRESS = Account.from_key(USER_KEY).address
RELAYER_ADDRESS = Account.from_key(RELAYER_KEY).address

STAKING_ADDRESS = Web3.to_checksum_address("0x" + "aa" * 20)
ROUTER_ADDRESS = Web3.to_checksum_address("0x" + "bb" * 20)
YLS_ADDRESS = Web3.to_checksum_address("0x" + "cc" * 20)
WETH_ADDRESS = Web3.to_checksum_address("0x" + "dd" * 20)
TOKEN_1 = Web3.to_checksum_address("0x" + "01" * 20)
TOKEN_2 = Web3.to_checksum_address("0x" + "02" * 20)

RPC_URL = "http://node.test"
ONE_TOKEN = 10**18


def selector(signature: str) -> str:
    return "0x" + function_signature_to_4byte_selector(signature).hex()


def sign_stake(
    key: str = USER_KEY,
    pid: int = 0,
    amount: int = ONE_TOKEN,
    deadline: Optional[int] = None,
    user: Optional[str] = None,
) -> dict:
    """Build a relay payload signed the way a wallet would sign it."""
    account = Account.from_key(key)
    user = user or account.address
    if deadline is None:
        deadline = int(time.time()) + 3600
    digest = compute_digest(user, pid, amount, deadline)
    signed = Account.sign_message(encode_defunct(primitive=digest), private_key=key)
    return {
        "user": user,
        "pid": pid,
        "amount": str(amount),
        "deadline": deadline,
        "signature": Web3.to_hex(signed.signature),
    }


class FakeNode:
    """In-process JSON-RPC node served through httpx.MockTransport.

    ``send_errors`` is consumed one entry per eth_sendRawTransaction call:
    ``"timeout"`` raises a transport timeout, a ``(code, message)`` tuple is
    returned as a JSON-RPC error.
    """

    def __init__(self):
        self.nonce = 5
        self.balance = ONE_TOKEN
        self.gas_price = 2_000_000_000
        self.base_fee: Optional[int] = 1_000_000_000
        self.priority_fee = 1_000_000
        self.send_errors: list = []
        self.sent: list[str] = []
        self.requests: list[dict] = []
        self.receipts: dict[str, dict] = {}
        self.call_results: dict[str, str] = {}
        self.failing_methods: set[str] = set()

        self.set_staking(staked=5 * ONE_TOKEN, reward_debt=ONE_TOKEN, pending=ONE_TOKEN // 2, total=100 * ONE_TOKEN)

    def set_staking(self, staked: int, reward_debt: int, pending: int, total: int) -> None:
        self.call_results[selector("userInfo(uint256,address)")] = encode(["uint256", "uint256"], [staked, reward_debt])
        self.call_results[selector("pendingRewards(uint256,address)")] = encode(["uint256"], [pending])
        self.call_results[selector("totalStaked()")] = encode(["uint256"], [total])

    def set_amounts_out(self, amounts: list[int]) -> None:
        self.call_results[selector("getAmountsOut(uint256,address[])")] = encode(["uint256[]"], [amounts])

    def count(self, method: str) -> int:
        return sum(1 for r in self.requests if r["method"] == method)

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append(payload)
        method = payload["method"]
        params = payload["params"]

        if method in self.failing_methods:
            return httpx.Response(503, text="service unavailable")

        if method == "eth_gasPrice":
            return self._result(payload, hex(self.gas_price))
        if method == "eth_maxPriorityFeePerGas":
            return self._result(payload, hex(self.priority_fee))
        if method == "eth_getBlockByNumber":
            block = {"number": "0x10"}
            if self.base_fee is not None:
                block["baseFeePerGas"] = hex(self.base_fee)
            return self._result(payload, block)
        if method == "eth_getTransactionCount":
            return self._result(payload, hex(self.nonce))
        if method == "eth_getBalance":
            return self._result(payload, hex(self.balance))
        if method == "eth_getTransactionReceipt":
            return self._result(payload, self.receipts.get(params[0]))
        if method == "eth_call":
            result = self.call_results.get(params[0]["data"][:10])
            if result is None:
                return self._error(payload, 3, "execution reverted")
            return self._result(payload, "0x" + result.hex())
        if method == "eth_sendRawTransaction":
            if self.send_errors:
                error = self.send_errors.pop(0)
                if error == "timeout":
                    raise httpx.ReadTimeout("timed out", request=request)
                return self._error(payload, *error)
            raw = params[0]
            self.sent.append(raw)
            self.nonce += 1
            return self._result(payload, Web3.to_hex(keccak(hexstr=raw)))

        return self._error(payload, -32601, f"method {method} not found")

    @staticmethod
    def _result(payload: dict, result) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})

    @staticmethod
    def _error(payload: dict, code: int, message: str) -> httpx.Response:
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": payload["id"], "error": {"code": code, "message": message}},
        )


class RecordingSigner(LocalSigner):
    """Local signer that keeps every transaction it signs."""

    def __init__(self, private_key: str):
        super().__init__(private_key)
        self.signed: list[dict] = []

    async def sign_transaction(self, tx: dict):
        self.signed.append(dict(tx))
        return await super().sign_transaction(tx)


@pytest.fixture
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture
def transport(node) -> httpx.MockTransport:
    return httpx.MockTransport(node.handler)


@pytest.fixture
def signer() -> RecordingSigner:
    return RecordingSigner(RELAYER_KEY)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at the fake node and a throwaway database."""
    return Settings(
        environment="test",
        op_mainnet_rpc=RPC_URL,
        staking_contract_address=STAKING_ADDRESS,
        swap_router_address=ROUTER_ADDRESS,
        yls_token_address=YLS_ADDRESS,
        weth_address=WETH_ADDRESS,
        relayer_private_key=RELAYER_KEY,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'replay.db'}",
        replay_backend="sql",
        relay_backoff_base_seconds=0,
    )


@pytest_asyncio.fixture
async def services(settings, transport, signer):
    """Fully wired services with a durable replay store."""
    services = RelayServices(settings, transport=transport, signer=signer)
    await services.start()
    yield services
    await services.close()


@pytest_asyncio.fixture
async def memory_services(settings, transport, signer):
    """Fully wired services with an in-memory replay store."""
    services = RelayServices(settings, transport=transport, signer=signer, replay_store=MemoryReplayStore())
    await services.start()
    yield services
    await services.close()
