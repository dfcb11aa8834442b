"""Long-running relayer: polls for requests and dispatches pipeline runs."""

import asyncio
import logging
from typing import Dict, List, Optional, Protocol

from factcheck_relayer.models.schemas import FactCheckRequest
from factcheck_relayer.pipeline import FactCheckPipeline
from factcheck_relayer.state.store import RequestStore

logger = logging.getLogger(__name__)


class EventSource(Protocol):
    """Where fact-check requests come from."""

    async def latest_block(self) -> int:
        ...

    async def fetch_requests(self, from_block: int, to_block: int) -> List[FactCheckRequest]:
        ...


class Relayer:
    """
    Polls the contract for `FactCheckRequested` events and runs the pipeline
    for each one in its own task.

    - New requests are recorded in the store before they are dispatched.
    - A request id already in flight is never dispatched twice.
    - Each poll also re-dispatches requests whose retry time has come.
    - At most ``max_concurrent`` pipelines run at once.
    """

    def __init__(
        self,
        pipeline: FactCheckPipeline,
        events: EventSource,
        store: RequestStore,
        poll_interval: float = 4.0,
        start_block: Optional[int] = None,
        max_concurrent: int = 10,
        max_block_range: int = 2000,
    ):
        self.pipeline = pipeline
        self.events = events
        self.store = store
        self.poll_interval = poll_interval
        self.start_block = start_block
        self.max_block_range = max_block_range
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._in_flight: Dict[int, asyncio.Task] = {}
        self._stopping = asyncio.Event()

    @property
    def in_flight(self) -> List[int]:
        return sorted(self._in_flight)

    def dispatch(self, request: FactCheckRequest) -> Optional[asyncio.Task]:
        """Spawn a pipeline task for a request unless one is already running."""
        request_id = request.request_id
        if request_id in self._in_flight:
            logger.debug(f"[{request_id}] Already in flight, not dispatching again")
            return None

        task = asyncio.create_task(self._run_one(request), name=f"factcheck-{request_id}")
        self._in_flight[request_id] = task
        task.add_done_callback(lambda _: self._in_flight.pop(request_id, None))
        return task

    async def _run_one(self, request: FactCheckRequest) -> None:
        async with self._semaphore:
            await self.pipeline.handle(request)

    async def _initial_block(self) -> int:
        cursor = self.store.get_cursor()
        if cursor is not None:
            return cursor + 1
        if self.start_block is not None:
            return self.start_block
        return await self.events.latest_block()

    async def poll_once(self, from_block: int) -> int:
        """
        Fetch and dispatch requests from ``from_block`` up to the chain head.

        Returns:
            The block to poll from next.
        """
        latest = await self.events.latest_block()
        if latest < from_block:
            return from_block

        to_block = min(latest, from_block + self.max_block_range - 1)
        requests = await self.events.fetch_requests(from_block, to_block)

        for request in requests:
            self.store.upsert_request(request)
            self.dispatch(request)

        if requests:
            logger.info(f"Found {len(requests)} requests in blocks {from_block}-{to_block}")

        self.store.set_cursor(to_block)
        return to_block + 1

    def dispatch_due_retries(self) -> int:
        """Re-dispatch pending and due failed requests. Returns how many."""
        dispatched = 0
        for record in self.store.due_for_retry():
            if record.request_id in self._in_flight:
                continue
            logger.info(
                f"[{record.request_id}] Retrying ({record.attempts} attempts so far)"
            )
            if self.dispatch(record.to_request()):
                dispatched += 1
        return dispatched

    async def run(self) -> None:
        """Poll until ``stop()`` is called, then wait for in-flight requests."""
        recovered = self.store.recover_in_flight()
        if recovered:
            logger.warning(f"Recovered {recovered} requests interrupted by a previous run")

        next_block = await self._initial_block()
        logger.info(f"Relayer listening for FactCheckRequested from block {next_block}")

        while not self._stopping.is_set():
            try:
                next_block = await self.poll_once(next_block)
                self.dispatch_due_retries()
            except Exception:
                # RPC hiccups must not stop the loop; the cursor was not advanced
                logger.exception("Polling for fact-check requests failed")

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

        await self.drain()

    def stop(self) -> None:
        self._stopping.set()

    async def drain(self) -> None:
        """Wait for every in-flight request to finish."""
        if self._in_flight:
            logger.info(f"Waiting for {len(self._in_flight)} in-flight requests")
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)
