"""Tests for the relay pipeline."""

import asyncio
import gc
import time

import pytest

from stakerelay.errors import AuthenticationError, ExpiredError, InternalError, ReplayError, UpstreamError, ValidationError
from stakerelay.ledger.models import ReplayStatus
from stakerelay.relay.auth import compute_digest, digest_hex
from stakerelay.relay.pipeline import RelayState
from tests.conftest import OTHER_KEY, USER_ADDRESS, sign_stake


def digest_of(payload: dict) -> str:
    return digest_hex(
        compute_digest(payload["user"], payload["pid"], int(payload["amount"]), payload["deadline"])
    )


async def wait_for(predicate, timeout: float = 2.0):
    deadline = time.monotonic() + timeout
    while not await predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.fixture
def pipeline(memory_services):
    return memory_services.pipeline


@pytest.fixture
def store(memory_services):
    return memory_services.replay_guard.store


class TestRelayPipeline:
    """Tests for the end-to-end state machine."""

    async def test_accepted(self, pipeline, store, node):
        payload = sign_stake()

        outcome = await pipeline.relay(payload)

        assert outcome.state == RelayState.ACCEPTED
        assert outcome.history == [
            RelayState.RECEIVED,
            RelayState.VALIDATED,
            RelayState.AUTHENTICATED,
            RelayState.REPLAY_CHECKED,
            RelayState.SUBMITTED,
            RelayState.ACCEPTED,
        ]
        assert outcome.digest == digest_of(payload)
        assert len(node.sent) == 1

        record = await store.get(outcome.digest)
        assert record.status == ReplayStatus.SUBMITTED
        assert record.tx_hash == outcome.tx_hash

    async def test_validation_failure(self, pipeline, store):
        payload = sign_stake()
        payload["amount"] = "0"

        with pytest.raises(ValidationError):
            await pipeline.relay(payload)
        assert len(store) == 0

    async def test_bad_signature_consumes_nothing(self, pipeline, store, node):
        payload = sign_stake(key=OTHER_KEY, user=USER_ADDRESS)

        with pytest.raises(AuthenticationError):
            await pipeline.relay(payload)

        assert len(store) == 0
        assert node.sent == []

    async def test_expired_consumes_nothing(self, pipeline, store, node):
        payload = sign_stake(deadline=int(time.time()) - 10)

        with pytest.raises(ExpiredError):
            await pipeline.relay(payload)

        assert len(store) == 0
        assert node.sent == []

    async def test_replay_rejected(self, pipeline, node):
        payload = sign_stake()
        await pipeline.relay(payload)

        with pytest.raises(ReplayError):
            await pipeline.relay(payload)
        assert len(node.sent) == 1

    async def test_concurrent_duplicates_submit_once(self, pipeline, node):
        payload = sign_stake()

        results = await asyncio.gather(*(pipeline.relay(payload) for _ in range(5)), return_exceptions=True)

        accepted = [r for r in results if not isinstance(r, Exception)]
        assert len(accepted) == 1
        assert all(isinstance(r, ReplayError) for r in results if isinstance(r, Exception))
        assert len(node.sent) == 1

    async def test_submission_failure_keeps_consumption(self, pipeline, store, node):
        node.send_errors = [(-32000, "execution reverted: pool closed")]
        payload = sign_stake()

        with pytest.raises(UpstreamError):
            await pipeline.relay(payload)

        record = await store.get(digest_of(payload))
        assert record.status == ReplayStatus.FAILED
        assert "pool closed" in record.error_message

        with pytest.raises(ReplayError):
            await pipeline.relay(payload)

    async def test_unexpected_fault_becomes_internal_error(self, pipeline, store, monkeypatch):
        async def broken_submit(request):
            raise RuntimeError("kaboom")

        monkeypatch.setattr(pipeline.submitter, "submit", broken_submit)
        payload = sign_stake()

        with pytest.raises(InternalError) as exc:
            await pipeline.relay(payload)

        assert exc.value.message == "Failed to relay transaction"
        assert isinstance(exc.value.__cause__, RuntimeError)
        record = await store.get(digest_of(payload))
        assert record.status == ReplayStatus.FAILED

    async def test_submission_survives_caller_cancellation(self, pipeline, store, node, monkeypatch):
        entered = asyncio.Event()
        release = asyncio.Event()
        original_submit = pipeline.submitter.submit

        async def slow_submit(request):
            entered.set()
            await release.wait()
            return await original_submit(request)

        monkeypatch.setattr(pipeline.submitter, "submit", slow_submit)
        payload = sign_stake()

        task = asyncio.create_task(pipeline.relay(payload))
        await entered.wait()
        task.cancel()
        release.set()

        with pytest.raises(asyncio.CancelledError):
            await task

        async def submitted():
            record = await store.get(digest_of(payload))
            return record is not None and record.status == ReplayStatus.SUBMITTED

        await wait_for(submitted)
        assert len(node.sent) == 1

    async def test_failure_after_caller_cancellation_is_retrieved(self, pipeline, store, monkeypatch):
        loop = asyncio.get_running_loop()
        reported = []
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(lambda _loop, context: reported.append(context))

        entered = asyncio.Event()
        release = asyncio.Event()

        async def failing_submit(request):
            entered.set()
            await release.wait()
            raise UpstreamError("Failed to relay transaction", details="node unavailable")

        monkeypatch.setattr(pipeline.submitter, "submit", failing_submit)
        payload = sign_stake()

        try:
            task = asyncio.create_task(pipeline.relay(payload))
            await entered.wait()
            task.cancel()
            release.set()

            with pytest.raises(asyncio.CancelledError):
                await task

            async def failed():
                record = await store.get(digest_of(payload))
                return record is not None and record.status == ReplayStatus.FAILED

            await wait_for(failed)
            for _ in range(5):
                await asyncio.sleep(0)
            del task
            gc.collect()
        finally:
            loop.set_exception_handler(previous_handler)

        assert not [c for c in reported if "never retrieved" in c.get("message", "")]
