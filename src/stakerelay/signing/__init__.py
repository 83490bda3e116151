"""Custodial credential providers for the relayer account.

- LocalSigner: private key in memory (development / hot wallet)
"""

from stakerelay.signing.base import (
    KeyNotFoundError,
    SignedTransaction,
    SignerBackend,
    SigningError,
)
from stakerelay.signing.factory import create_signer
from stakerelay.signing.local import LocalSigner

__all__ = [
    "KeyNotFoundError",
    "LocalSigner",
    "SignedTransaction",
    "SignerBackend",
    "SigningError",
    "create_signer",
]
