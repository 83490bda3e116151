"""Base interfaces for relayer transaction signing.

Signing flow:
1. RelayerSubmitter builds an unsigned transaction dict
2. The signer backend signs it with the custodial credential
3. The submitter broadcasts the raw signed bytes

The submitter only ever sees the signer's address and signed payloads, so the
key storage (env var, KMS, HSM) can change without touching relay logic.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class SignerType(str, Enum):
    """Type of signing backend."""
    LOCAL = "local"           # Private key in memory (hot wallet)
    KMS = "kms"               # Cloud key management service
    HSM = "hsm"               # Hardware Security Module


@dataclass
class SignedTransaction:
    """Result of signing a transaction.

    Attributes:
        raw_transaction: RLP-encoded signed transaction as 0x-prefixed hex
        tx_hash: Hash of the signed transaction as 0x-prefixed hex
    """
    raw_transaction: str
    tx_hash: str


class SignerBackend(ABC):
    """Abstract base class for signing backends.

    Implementations should NEVER expose raw private keys.
    """

    def __init__(self, signer_type: SignerType):
        self.signer_type = signer_type

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksummed address of the signing account."""
        pass

    @abstractmethod
    async def sign_transaction(self, tx: dict) -> SignedTransaction:
        """Sign a transaction dict.

        Args:
            tx: Transaction fields (to, data, nonce, gas, fees, chainId, type)

        Returns:
            SignedTransaction ready for broadcast

        Raises:
            SigningError: If the backend cannot sign
        """
        pass

    async def health_check(self) -> bool:
        """Check if the signing backend is available."""
        return True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(type={self.signer_type.value}, address={self.address})"


class SigningError(Exception):
    """Exception raised when signing fails."""
    pass


class KeyNotFoundError(SigningError):
    """Exception raised when signing key is not configured."""
    pass
