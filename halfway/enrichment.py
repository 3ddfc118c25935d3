"""
Rate-limited travel-time enrichment.

Travel times are a progressive enhancement: the place list is published first
and the queue then fills in one directions request per tick. With O origins and
P places a result set costs O x P x 2 requests (driving and walking), so at the
default one request per second full enrichment of 20 places from 2 origins takes
over a minute. Only one request is ever in flight.
"""

import asyncio
import collections
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Iterable, Optional, Sequence

from .errors import DirectionsUnavailable, StaleResult
from .models import CandidatePlace, Coordinate, Origin, TravelMode

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_S = 1.0
TRAVEL_MODES = (TravelMode.DRIVING, TravelMode.WALKING)


class QueueState(Enum):
    IDLE = 'idle'
    PROCESSING = 'processing'


@dataclass(frozen=True)
class EnrichmentRequest:
    place_id: str
    origin_index: int
    origin: Coordinate
    destination: Coordinate
    mode: TravelMode
    generation: int


# (request, minutes) -> None
ResultCallback = Callable[[EnrichmentRequest, int], None]


def _discard_outcome(future: asyncio.Future) -> None:
    # Marks a failure as retrieved when nobody is awaiting the call any more
    if not future.cancelled():
        future.exception()


class EnrichmentQueue:
    """
    FIFO of directions requests drained at a fixed rate.

    The directions backend must provide ``route_duration_async(origin, destination, mode)``
    returning seconds. Completed durations are handed to ``on_result`` as whole
    minutes; results tagged with a generation other than the live one are dropped.
    """

    def __init__(
        self,
        directions,
        on_result: Optional[ResultCallback] = None,
        interval: float = DEFAULT_INTERVAL_S,
        timeout: Optional[float] = 10.0,
    ):
        self.directions = directions
        self.on_result = on_result
        self.interval = interval
        self.timeout = timeout
        self.state = QueueState.IDLE
        self.generation = 0
        self._pending: Deque[EnrichmentRequest] = collections.deque()
        self._task: Optional[asyncio.Task] = None
        self._straggler: Optional[asyncio.Future] = None

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def enabled(self) -> bool:
        return self.directions is not None

    @property
    def pending(self) -> Sequence[EnrichmentRequest]:
        return tuple(self._pending)

    def reset(self, generation: int) -> None:
        """Drop everything queued and only accept results for ``generation`` from now on"""
        dropped = len(self._pending)
        self._pending.clear()
        self.generation = generation
        if dropped:
            logger.debug("Enrichment queue reset to generation %d, dropped %d pending requests", generation, dropped)

    def enqueue(self, request: EnrichmentRequest) -> None:
        if not self.enabled:
            return
        self._pending.append(request)

    def enqueue_result_set(self, places: Iterable[CandidatePlace], origins: Sequence[Origin], generation: int) -> int:
        """Queue a driving and a walking request for every (place, origin) pair"""
        count = 0
        for place in places:
            for index, origin in enumerate(origins):
                for mode in TRAVEL_MODES:
                    self.enqueue(EnrichmentRequest(
                        place_id=place.id,
                        origin_index=index,
                        origin=origin.coordinate,
                        destination=place.coordinate,
                        mode=mode,
                        generation=generation,
                    ))
                    count += 1
        if self.enabled:
            logger.info(
                "Queued %d travel-time requests for generation %d (~%.0fs at %.1fs/request)",
                count, generation, count * self.interval, self.interval,
            )
        return count

    async def _route(self, request: EnrichmentRequest) -> int:
        call = asyncio.ensure_future(
            self.directions.route_duration_async(request.origin, request.destination, request.mode)
        )
        call.add_done_callback(_discard_outcome)
        if not self.timeout:
            return await call
        try:
            return await asyncio.wait_for(asyncio.shield(call), timeout=self.timeout)
        except asyncio.TimeoutError:
            # The backend call keeps running in its worker thread; nothing new is sent until it ends
            self._straggler = call
            raise

    @property
    def busy(self) -> bool:
        if self.state is QueueState.PROCESSING:
            return True
        return self._straggler is not None and not self._straggler.done()

    async def tick(self) -> bool:
        """
        Process at most one request. Returns True when a request was taken off
        the queue, whatever its outcome.
        """
        if self.busy or not self._pending:
            return False
        self._straggler = None
        request = self._pending.popleft()
        self.state = QueueState.PROCESSING
        try:
            seconds = await self._route(request)
            if request.generation != self.generation:
                raise StaleResult(request.generation, self.generation)
            if self.on_result is not None:
                self.on_result(request, int(seconds) // 60)
        except DirectionsUnavailable as e:
            logger.debug("Dropping %s request for place %s: %s", request.mode.value, request.place_id, e)
        except asyncio.TimeoutError:
            logger.debug("Directions request for place %s timed out after %ss", request.place_id, self.timeout)
        except StaleResult as e:
            logger.debug("%s", e)
        except Exception:
            # Any failure drops the request; the queue keeps draining
            logger.exception("Unexpected error enriching place %s", request.place_id)
        finally:
            self.state = QueueState.IDLE
        return True

    async def run(self) -> None:
        """Tick on a fixed schedule; a slow request delays the next tick but does not shift the ones after it"""
        loop = asyncio.get_event_loop()
        next_tick = loop.time()
        while True:
            await self.tick()
            next_tick += self.interval
            delay = next_tick - loop.time()
            if delay < 0:
                # Fell behind; restart the schedule rather than firing a burst
                next_tick = loop.time()
                delay = 0
            await asyncio.sleep(delay)

    def start(self) -> None:
        if not self.enabled or (self._task is not None and not self._task.done()):
            return
        self._task = asyncio.ensure_future(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
