"""Tests for the polling relayer loop."""

import asyncio
from typing import List

import pytest

from factcheck_relayer.models.schemas import FactCheckRequest, RequestStatus
from factcheck_relayer.relayer import Relayer
from factcheck_relayer.state.store import RequestStore


class FakeEvents:
    """An event source backed by a block-number -> requests mapping."""

    def __init__(self, head: int = 100):
        self.head = head
        self.blocks = {}
        self.queries = []

    def emit(self, block: int, request_id: int, uri: str = "blob") -> None:
        self.blocks.setdefault(block, []).append(
            FactCheckRequest(
                request_id=request_id,
                requester="0xABC",
                content_uri=uri,
                block_number=block,
            )
        )

    async def latest_block(self) -> int:
        return self.head

    async def fetch_requests(self, from_block: int, to_block: int) -> List[FactCheckRequest]:
        self.queries.append((from_block, to_block))
        found = []
        for block in range(from_block, to_block + 1):
            found.extend(self.blocks.get(block, []))
        return found


class FakePipeline:
    """Records handled requests; can be held open to simulate slow work."""

    def __init__(self, store: RequestStore):
        self.store = store
        self.handled: List[int] = []
        self.release = asyncio.Event()
        self.release.set()
        self.running = 0
        self.max_running = 0

    async def handle(self, request: FactCheckRequest):
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            await self.release.wait()
            self.handled.append(request.request_id)
            self.store.mark_in_flight(request.request_id)
            self.store.mark_fulfilled(request.request_id, "0xhash", "50.00%")
        finally:
            self.running -= 1


@pytest.fixture
def store(tmp_path):
    return RequestStore(tmp_path / "state", max_attempts=3, retry_delay=0)


@pytest.fixture
def events():
    return FakeEvents(head=100)


@pytest.fixture
def pipeline(store):
    return FakePipeline(store)


class TestPollOnce:
    """Tests for a single polling pass."""

    @pytest.mark.asyncio
    async def test_dispatches_and_advances_cursor(self, store, events, pipeline):
        events.emit(95, 1)
        events.emit(99, 2)
        relayer = Relayer(pipeline, events, store)

        next_block = await relayer.poll_once(90)
        await relayer.drain()

        assert next_block == 101
        assert store.get_cursor() == 100
        assert sorted(pipeline.handled) == [1, 2]
        assert store.get(1).status == RequestStatus.FULFILLED

    @pytest.mark.asyncio
    async def test_nothing_new_when_head_behind(self, store, events, pipeline):
        relayer = Relayer(pipeline, events, store)

        assert await relayer.poll_once(101) == 101
        assert events.queries == []
        assert store.get_cursor() is None

    @pytest.mark.asyncio
    async def test_block_range_is_chunked(self, store, events, pipeline):
        relayer = Relayer(pipeline, events, store, max_block_range=10)

        next_block = await relayer.poll_once(71)

        assert events.queries == [(71, 80)]
        assert next_block == 81
        assert store.get_cursor() == 80

    @pytest.mark.asyncio
    async def test_requests_are_recorded_before_dispatch(self, store, events, pipeline):
        events.emit(100, 5)
        pipeline.release.clear()
        relayer = Relayer(pipeline, events, store)

        await relayer.poll_once(100)
        await asyncio.sleep(0)

        assert store.get(5).status == RequestStatus.PENDING
        assert relayer.in_flight == [5]

        pipeline.release.set()
        await relayer.drain()
        assert relayer.in_flight == []


class TestDispatch:
    """Tests for task dispatch and concurrency."""

    @pytest.mark.asyncio
    async def test_same_request_is_not_dispatched_twice(self, store, events, pipeline):
        pipeline.release.clear()
        relayer = Relayer(pipeline, events, store)
        request = FactCheckRequest(request_id=1, requester="0xA", content_uri="blob")
        store.upsert_request(request)

        assert relayer.dispatch(request) is not None
        assert relayer.dispatch(request) is None

        pipeline.release.set()
        await relayer.drain()
        assert pipeline.handled == [1]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, store, events, pipeline):
        pipeline.release.clear()
        relayer = Relayer(pipeline, events, store, max_concurrent=2)
        for request_id in range(5):
            request = FactCheckRequest(request_id=request_id, requester="0xA", content_uri="b")
            store.upsert_request(request)
            relayer.dispatch(request)

        for _ in range(5):
            await asyncio.sleep(0)
        assert pipeline.running == 2

        pipeline.release.set()
        await relayer.drain()
        assert sorted(pipeline.handled) == [0, 1, 2, 3, 4]
        assert pipeline.max_running == 2

    @pytest.mark.asyncio
    async def test_due_retries_are_dispatched(self, store, events, pipeline):
        request = FactCheckRequest(request_id=3, requester="0xA", content_uri="blob")
        store.upsert_request(request)
        store.mark_in_flight(3)
        store.mark_failed(3, "BrokerError: HTTP 502")
        relayer = Relayer(pipeline, events, store)

        assert relayer.dispatch_due_retries() == 1
        await relayer.drain()

        assert pipeline.handled == [3]
        assert relayer.dispatch_due_retries() == 0


class TestRun:
    """Tests for the long-running loop."""

    @pytest.mark.asyncio
    async def test_resumes_after_cursor(self, store, events, pipeline):
        store.set_cursor(97)
        events.emit(97, 1)
        events.emit(98, 2)
        relayer = Relayer(pipeline, events, store, poll_interval=0.01)

        task = asyncio.create_task(relayer.run())
        await asyncio.sleep(0.05)
        relayer.stop()
        await asyncio.wait_for(task, timeout=1)

        assert pipeline.handled == [2]
        assert events.queries[0] == (98, 100)

    @pytest.mark.asyncio
    async def test_starts_at_head_without_cursor(self, store, events, pipeline):
        relayer = Relayer(pipeline, events, store, poll_interval=0.01)

        task = asyncio.create_task(relayer.run())
        await asyncio.sleep(0.05)
        relayer.stop()
        await asyncio.wait_for(task, timeout=1)

        assert events.queries[0] == (100, 100)

    @pytest.mark.asyncio
    async def test_recovers_interrupted_requests(self, store, events, pipeline):
        request = FactCheckRequest(request_id=4, requester="0xA", content_uri="blob")
        store.upsert_request(request)
        store.mark_in_flight(4)
        relayer = Relayer(pipeline, events, store, poll_interval=0.01, start_block=100)

        task = asyncio.create_task(relayer.run())
        await asyncio.sleep(0.05)
        relayer.stop()
        await asyncio.wait_for(task, timeout=1)

        assert pipeline.handled == [4]
        assert store.get(4).status == RequestStatus.FULFILLED

    @pytest.mark.asyncio
    async def test_polling_errors_do_not_stop_the_loop(self, store, pipeline):
        class FlakyEvents(FakeEvents):
            calls = 0

            async def latest_block(self):
                FlakyEvents.calls += 1
                if FlakyEvents.calls == 2:
                    raise ConnectionError("rpc down")
                return self.head

        events = FlakyEvents(head=100)
        relayer = Relayer(pipeline, events, store, poll_interval=0.01, start_block=100)

        task = asyncio.create_task(relayer.run())
        await asyncio.sleep(0.1)
        relayer.stop()
        await asyncio.wait_for(task, timeout=1)

        assert FlakyEvents.calls > 3
