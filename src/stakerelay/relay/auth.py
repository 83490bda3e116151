"""Signature authentication for relay requests.

The signed payload is the Solidity ``abi.encodePacked(address, uint256,
uint256, uint256)`` of ``(user, pid, amount, deadline)`` hashed with
keccak256. Wallets sign that 32-byte digest with the EIP-191 personal message
prefix, so recovery applies the same prefix.
"""

import logging
import time
from typing import Callable, Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak, to_bytes

from stakerelay.errors import AuthenticationError, ExpiredError
from stakerelay.relay.validation import RelayRequest

logger = logging.getLogger(__name__)


def compute_digest(user: str, pid: int, amount: int, deadline: int) -> bytes:
    """Compute the authorization digest for a stake request."""
    encoded = (
        to_bytes(hexstr=user).rjust(20, b"\x00")
        + pid.to_bytes(32, "big")
        + amount.to_bytes(32, "big")
        + deadline.to_bytes(32, "big")
    )
    return keccak(encoded)


def digest_hex(digest: bytes) -> str:
    return "0x" + digest.hex()


def recover_signer(digest: bytes, signature: bytes) -> str:
    """Recover the address that signed ``digest`` as a personal message."""
    message = encode_defunct(primitive=digest)
    return Account.recover_message(message, signature=signature)


class SignatureAuthenticator:
    """Checks deadline and signer of a validated request.

    Expiry is checked before recovery so that a correctly signed but stale
    request is reported as expired rather than as tampering.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time

    def now(self) -> int:
        return int(self._clock())

    def authenticate(self, request: RelayRequest, now: Optional[int] = None) -> bytes:
        """Authenticate a request.

        Returns:
            The authorization digest

        Raises:
            ExpiredError: If the deadline is not in the future
            AuthenticationError: If the recovered signer is not ``request.user``
        """
        if now is None:
            now = self.now()
        if request.deadline <= now:
            raise ExpiredError(
                "Transaction expired",
                details=f"deadline {request.deadline} <= now {now}",
            )

        digest = compute_digest(request.user, request.pid, request.amount, request.deadline)

        try:
            recovered = recover_signer(digest, request.signature)
        except Exception as e:
            # Malformed v/r/s values fail inside the recovery itself
            logger.info(f"Signature recovery failed for {request.user}: {e}")
            raise AuthenticationError("Invalid signature", details=str(e))

        if recovered.lower() != request.user.lower():
            logger.info(f"Signature mismatch: claimed {request.user}, recovered {recovered}")
            raise AuthenticationError(
                "Invalid signature",
                details=f"recovered signer {recovered} does not match {request.user}",
            )

        return digest
