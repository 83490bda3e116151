"""Signer factory.

Creates the signing backend selected by configuration.
"""

import logging

from stakerelay.config import Settings
from stakerelay.signing.base import SignerBackend, SignerType, SigningError

logger = logging.getLogger(__name__)


def get_signer_type(settings: Settings) -> SignerType:
    """Resolve SIGNER_BACKEND into a SignerType.

    Raises:
        SigningError: If the value names no known backend
    """
    explicit = (settings.signer_backend or "local").lower()
    try:
        return SignerType(explicit)
    except ValueError:
        raise SigningError(f"Unknown signer backend: {explicit}")


def create_signer(settings: Settings) -> SignerBackend:
    """Build the configured signer.

    Raises:
        SigningError: If the backend is unknown or not available in this build
        KeyNotFoundError: If the backend has no key configured
    """
    signer_type = get_signer_type(settings)
    logger.info(f"Initializing {signer_type.value} signer")

    if signer_type == SignerType.LOCAL:
        from stakerelay.signing.local import LocalSigner
        return LocalSigner(settings.relayer_private_key or "")

    # TODO: add a KMS backend that signs transaction hashes with an asymmetric secp256k1 key
    raise SigningError(f"Signer backend '{signer_type.value}' is not available")
