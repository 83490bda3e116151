"""Local signing backend.

Holds the relayer private key in memory. Suitable for development and for a
hot relayer wallet funded with small gas balances only.

WARNING: Use a KMS/HSM backend for production deployments holding
significant funds.
"""

import logging

from eth_account import Account
from web3 import Web3

from stakerelay.signing.base import (
    KeyNotFoundError,
    SignedTransaction,
    SignerBackend,
    SignerType,
    SigningError,
)

logger = logging.getLogger(__name__)


class LocalSigner(SignerBackend):
    """Local signing backend using an in-memory private key."""

    def __init__(self, private_key: str):
        super().__init__(SignerType.LOCAL)
        if not private_key:
            raise KeyNotFoundError("RELAYER_PRIVATE_KEY is not configured")
        try:
            self._account = Account.from_key(private_key)
        except Exception as e:
            # Never include the key itself in the message
            raise KeyNotFoundError(f"Invalid relayer private key: {type(e).__name__}")
        logger.info(f"Loaded local relayer key for {self._account.address}")

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_transaction(self, tx: dict) -> SignedTransaction:
        """Sign a transaction with the local key."""
        try:
            signed = self._account.sign_transaction(tx)
        except Exception as e:
            logger.error(f"Local signing failed: {e}")
            raise SigningError(str(e)) from e

        # eth-account >= 0.13 uses raw_transaction, older versions rawTransaction
        raw_tx = getattr(signed, "raw_transaction", None) or signed.rawTransaction
        return SignedTransaction(
            raw_transaction=Web3.to_hex(raw_tx),
            tx_hash=Web3.to_hex(signed.hash),
        )
