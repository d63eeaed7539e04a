"""
Heartbeat Supervisor - Liveness detection for WebSocket sessions

@.architecture
Incoming: ws/hub.py, ws/registry.py --- {SessionRegistry, float interval}
Processing: RepeatingTimer.start(), RepeatingTimer.cancel(), HeartbeatSupervisor.sweep() --- {3 jobs: scheduling, liveness_probing, eviction}
Outgoing: ws/registry.py, Frontend (WebSocket) --- {heartbeat frames, evicted sessions removed from the registry}

Detection window is two sweeps: a session silent since the previous sweep is
evicted; any other session has its flag cleared and receives a heartbeat frame.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from monitoring import get_logger, setup_standard_metrics
from ws.protocols import HeartbeatFrame, encode_frame
from ws.registry import SessionRegistry
from ws.session import Session

logger = get_logger(__name__)

HEARTBEAT_INTERVAL = 30.0  # Heartbeat interval in seconds


class RepeatingTimer:
    """
    Runs an async callback every ``interval`` seconds on the event loop.

    ``cancel()`` is idempotent and safe on a timer that never started.
    Callback errors are logged and do not stop the timer.
    """

    def __init__(self, interval: float, callback: Callable[[], Awaitable[Any]], name: str = "timer"):
        if interval <= 0:
            raise ValueError("interval must be greater than zero")
        self.interval = interval
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking. No-op if already running."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.callback()
            except Exception as e:
                logger.error(f"{self.name} tick failed: {e}", exc_info=True)

    async def cancel(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


class HeartbeatSupervisor:
    """
    Periodic liveness sweep over one registry.

    The sweep is exposed directly (``sweep()``) so the eviction policy can be
    driven step by step without waiting on the timer.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        interval: float = HEARTBEAT_INTERVAL,
        metrics: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize supervisor.

        Args:
            registry: Sessions to supervise
            interval: Seconds between sweeps
            metrics: Metric objects from setup_standard_metrics()
        """
        self.registry = registry
        self.interval = interval
        self.metrics = metrics or setup_standard_metrics()
        self._timer = RepeatingTimer(interval, self.sweep, name="heartbeat")

    @property
    def is_running(self) -> bool:
        return self._timer.is_running

    def start(self) -> None:
        self._timer.start()
        logger.info(f"Heartbeat started (interval={self.interval}s)")

    async def stop(self) -> None:
        was_running = self._timer.is_running
        await self._timer.cancel()
        if was_running:
            logger.info("Heartbeat stopped")

    async def sweep(self) -> List[Session]:
        """
        Run one liveness sweep.

        Evictions and heartbeat frames are written concurrently; each terminate is
        bounded by the transport send_timeout.

        Returns:
            Sessions evicted by this sweep
        """
        evicted: List[Session] = []
        pinged: List[Session] = []

        # Partition before awaiting any write
        for session in self.registry.sessions():
            if session.is_alive:
                session.is_alive = False
                pinged.append(session)
            else:
                evicted.append(session)

        heartbeat = encode_frame(HeartbeatFrame())
        await asyncio.gather(
            *(self._evict(session) for session in evicted),
            *(self.registry.deliver(session, heartbeat) for session in pinged),
            return_exceptions=True,
        )

        if evicted:
            logger.info(f"Heartbeat sweep evicted {len(evicted)} session(s)")
        return evicted

    async def _evict(self, session: Session) -> None:
        logger.info(
            f"Evicting unresponsive session {session.id}",
            session_id=session.id,
            user_id=session.user_id,
        )
        self.registry.remove(session)
        self.metrics['evictions_total'].inc()
        await session.transport.terminate()
