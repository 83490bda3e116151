"""Relay pipeline state machine.

Received -> Validated -> Authenticated -> ReplayChecked -> Submitted -> Accepted | Failed

Any failing transition ends the request in Rejected with the specific error
kind; later stages do not run.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from stakerelay.errors import InternalError, RelayError
from stakerelay.relay.auth import SignatureAuthenticator, digest_hex
from stakerelay.relay.replay import ReplayGuard
from stakerelay.relay.submitter import RelayerSubmitter
from stakerelay.relay.validation import RelayRequest, validate_relay_request

logger = logging.getLogger(__name__)


class RelayState(str, Enum):
    """Lifecycle state of a relay request."""

    RECEIVED = "received"
    VALIDATED = "validated"
    AUTHENTICATED = "authenticated"
    REPLAY_CHECKED = "replay_checked"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    FAILED = "failed"
    REJECTED = "rejected"


@dataclass
class RelayOutcome:
    """Trace of one request through the pipeline."""
    state: RelayState = RelayState.RECEIVED
    request: Optional[RelayRequest] = None
    digest: Optional[str] = None
    tx_hash: Optional[str] = None
    error: Optional[RelayError] = None
    history: list[RelayState] = field(default_factory=lambda: [RelayState.RECEIVED])

    def advance(self, state: RelayState) -> None:
        logger.debug(f"Relay request {self.digest or '(no digest)'}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)


class RelayPipeline:
    """Runs validation, authentication, replay protection and submission."""

    def __init__(
        self,
        authenticator: SignatureAuthenticator,
        replay_guard: ReplayGuard,
        submitter: RelayerSubmitter,
    ):
        self.authenticator = authenticator
        self.replay_guard = replay_guard
        self.submitter = submitter

    async def relay(self, payload: Any) -> RelayOutcome:
        """Process a raw relay payload.

        Returns:
            Outcome in state ACCEPTED with ``tx_hash`` set

        Raises:
            RelayError: The error that moved the request to REJECTED or FAILED;
                it is also attached to the outcome passed to the log
        """
        outcome = RelayOutcome()
        try:
            request = validate_relay_request(payload)
            outcome.request = request
            outcome.advance(RelayState.VALIDATED)

            digest = self.authenticator.authenticate(request)
            outcome.digest = digest_hex(digest)
            outcome.advance(RelayState.AUTHENTICATED)

            # Consumption and submission must finish even if the client goes away
            task = asyncio.ensure_future(self._commit(request, digest, outcome))
            task.add_done_callback(self._commit_done)
            await asyncio.shield(task)
        except RelayError as e:
            outcome.error = e
            if outcome.state != RelayState.FAILED:
                outcome.advance(RelayState.REJECTED)
            logger.info(f"Relay request {outcome.state.value} ({e.kind}): {e.message}")
            raise

        return outcome

    async def _commit(self, request: RelayRequest, digest: bytes, outcome: RelayOutcome) -> None:
        await self.replay_guard.try_consume(request, digest)
        outcome.advance(RelayState.REPLAY_CHECKED)

        outcome.advance(RelayState.SUBMITTED)
        try:
            tx_hash = await self.submitter.submit(request)
        except Exception as e:
            error = e
            if not isinstance(error, RelayError):
                logger.exception(f"Unexpected submission fault for digest {outcome.digest}")
                error = InternalError("Failed to relay transaction", details=str(e))
            outcome.advance(RelayState.FAILED)
            logger.error(
                f"Relay submission failed for digest {outcome.digest}; "
                f"authorization stays consumed: {error.details or error.message}"
            )
            await self._record_failure(digest, error)
            if error is e:
                raise
            raise error from e

        outcome.tx_hash = tx_hash
        outcome.advance(RelayState.ACCEPTED)
        try:
            await self.replay_guard.record_result(digest, tx_hash=tx_hash)
        except Exception as e:
            logger.error(f"Failed to record tx {tx_hash} for digest {outcome.digest}: {e}")

    @staticmethod
    def _commit_done(task: asyncio.Future) -> None:
        # Retrieve the result so a commit that outlives its caller does not
        # leave an unretrieved exception behind
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug(f"Relay commit finished with {type(error).__name__}: {error}")

    async def _record_failure(self, digest: bytes, error: RelayError) -> None:
        try:
            await self.replay_guard.record_result(digest, error=error.details or error.message)
        except Exception as e:
            logger.error(f"Failed to record relay failure for {digest_hex(digest)}: {e}")
