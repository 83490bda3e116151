"""Structural validation of incoming relay requests.

Pure functions only: nothing here touches the network.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from eth_utils import is_hex_address, to_checksum_address

from stakerelay.errors import ValidationError

UINT256_MAX = 2**256 - 1
SIGNATURE_LENGTH = 65

REQUIRED_FIELDS = ("user", "pid", "amount", "deadline", "signature")


@dataclass(frozen=True)
class RelayRequest:
    """A validated stake authorization.

    Attributes:
        user: Checksummed address of the principal that signed the request
        pid: Staking pool identifier (0 is a valid pool)
        amount: Token amount in base units
        deadline: Unix timestamp after which the authorization is void
        signature: 65-byte recoverable signature (r || s || v)
    """
    user: str
    pid: int
    amount: int
    deadline: int
    signature: bytes

    @property
    def signature_hex(self) -> str:
        return "0x" + self.signature.hex()


def parse_uint(value: Any, field: str) -> int:
    """Parse a JSON number or a base-10 / 0x-hex string into an int.

    Raises:
        ValidationError: If the value is not an unsigned 256-bit integer
    """
    # bool is a subclass of int
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            if text.lower().startswith("0x"):
                result = int(text, 16)
            elif text.isdigit():
                result = int(text, 10)
            else:
                raise ValueError(text)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field)
    else:
        raise ValidationError(f"{field} must be an integer", field=field)

    if result < 0:
        raise ValidationError(f"{field} must be >= 0", field=field)
    if result > UINT256_MAX:
        raise ValidationError(f"{field} exceeds uint256", field=field)
    return result


def parse_address(value: Any, field: str = "address") -> str:
    """Validate a 20-byte hex address and return it checksummed."""
    if not isinstance(value, str) or not is_hex_address(value):
        raise ValidationError(f"{field} must be a valid address", field=field)
    return to_checksum_address(value)


def parse_signature(value: Any) -> bytes:
    """Decode a hex signature of exactly 65 bytes."""
    if not isinstance(value, str):
        raise ValidationError("signature must be a hex string", field="signature")

    text = value[2:] if value.lower().startswith("0x") else value
    try:
        raw = bytes.fromhex(text)
    except ValueError:
        raise ValidationError("signature must be a hex string", field="signature")

    if len(raw) != SIGNATURE_LENGTH:
        raise ValidationError(
            f"signature must be {SIGNATURE_LENGTH} bytes, got {len(raw)}",
            field="signature",
        )
    return raw


def validate_relay_request(payload: Any) -> RelayRequest:
    """Validate raw request fields and build a RelayRequest.

    Args:
        payload: Decoded JSON body

    Returns:
        Immutable RelayRequest

    Raises:
        ValidationError: Naming the first offending field
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object")

    for field in REQUIRED_FIELDS:
        # pid=0 is present; only a missing key or null counts as absent
        if payload.get(field) is None or payload.get(field) == "":
            raise ValidationError(f"Missing required field: {field}", field=field)

    user = parse_address(payload["user"], "user")
    pid = parse_uint(payload["pid"], "pid")

    amount = parse_uint(payload["amount"], "amount")
    if amount == 0:
        raise ValidationError("amount must be > 0", field="amount")

    deadline = parse_uint(payload["deadline"], "deadline")
    if deadline == 0:
        raise ValidationError("deadline must be > 0", field="deadline")

    signature = parse_signature(payload["signature"])

    return RelayRequest(
        user=user,
        pid=pid,
        amount=amount,
        deadline=deadline,
        signature=signature,
    )
