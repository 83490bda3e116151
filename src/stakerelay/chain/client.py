"""JSON-RPC client for the chain node.

Talks to the node over HTTP with httpx and encodes contract calls with
eth-abi. One client is created per process and shared by the aggregator and
the submitter.
"""

import itertools
import logging
from typing import Any, Optional, Sequence

import httpx
from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

logger = logging.getLogger(__name__)


class RPCError(Exception):
    """Base class for node communication failures."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data


class RPCTransportError(RPCError):
    """Timeout, connection failure or HTTP-level error talking to the node."""

    pass


class RPCResponseError(RPCError):
    """The node answered with a JSON-RPC error object."""

    pass


# Staking contract view functions: name -> (signature, output types)
STAKING_VIEWS = {
    "userInfo": ("userInfo(uint256,address)", ["uint256", "uint256"]),
    "pendingRewards": ("pendingRewards(uint256,address)", ["uint256"]),
    "totalStaked": ("totalStaked()", ["uint256"]),
}

ROUTER_GET_AMOUNTS_OUT = ("getAmountsOut(uint256,address[])", ["uint256[]"])


def split_signature(signature: str) -> tuple[str, list[str]]:
    """Split ``name(type1,type2)`` into the name and argument types."""
    name, _, rest = signature.partition("(")
    args = rest.rstrip(")")
    return name, [t for t in args.split(",") if t]


def encode_call(signature: str, args: Sequence[Any]) -> str:
    """ABI-encode a function call as 0x-prefixed calldata."""
    _, types = split_signature(signature)
    selector = function_signature_to_4byte_selector(signature)
    return "0x" + (selector + encode(types, list(args))).hex()


def decode_result(output_types: Sequence[str], data: str) -> tuple:
    raw = bytes.fromhex(data[2:] if data.startswith("0x") else data)
    return decode(list(output_types), raw)


class ChainClient:
    """Minimal async JSON-RPC client.

    Every call is bounded by ``timeout``. Transport failures raise
    RPCTransportError, node-reported errors raise RPCResponseError.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._ids = itertools.count(1)

    async def close(self) -> None:
        await self._client.aclose()

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        """Send a single JSON-RPC request and return its ``result``."""
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": next(self._ids),
        }

        try:
            response = await self._client.post(self.rpc_url, json=payload)
        except httpx.TimeoutException as e:
            raise RPCTransportError(f"{method} timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise RPCTransportError(f"{method} transport error: {e}") from e

        if response.status_code != 200:
            raise RPCTransportError(
                f"{method} HTTP {response.status_code}", code=response.status_code
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RPCTransportError(f"{method} returned invalid JSON") from e

        error = data.get("error")
        if error:
            raise RPCResponseError(
                error.get("message", "unknown error"),
                code=error.get("code"),
                data=error.get("data"),
            )
        return data.get("result")

    # Chain state

    async def get_gas_price(self) -> int:
        return int(await self.request("eth_gasPrice"), 16)

    async def get_max_priority_fee(self) -> int:
        return int(await self.request("eth_maxPriorityFeePerGas"), 16)

    async def get_base_fee(self) -> Optional[int]:
        """Base fee of the latest block, or None on pre-London chains."""
        block = await self.request("eth_getBlockByNumber", ["latest", False])
        base_fee = (block or {}).get("baseFeePerGas")
        return int(base_fee, 16) if base_fee is not None else None

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return int(await self.request("eth_getTransactionCount", [address, block]), 16)

    async def get_balance(self, address: str, block: str = "latest") -> int:
        return int(await self.request("eth_getBalance", [address, block]), 16)

    async def send_raw_transaction(self, raw_tx: str) -> str:
        return await self.request("eth_sendRawTransaction", [raw_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        return await self.request("eth_getTransactionReceipt", [tx_hash])

    # Contract calls

    async def call(self, to: str, data: str, block: str = "latest") -> str:
        return await self.request("eth_call", [{"to": to, "data": data}, block])

    async def call_function(
        self, to: str, signature: str, args: Sequence[Any], output_types: Sequence[str]
    ) -> tuple:
        """Call a view function and decode its outputs."""
        result = await self.call(to_checksum_address(to), encode_call(signature, args))
        return decode_result(output_types, result)
