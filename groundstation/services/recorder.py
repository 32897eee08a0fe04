import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from pymongo.errors import PyMongoError

from groundstation.models.messages import Measure, Position
from groundstation.repositories import FieldRepository, PlanetRepository, RobotRepository

logger = logging.getLogger(__name__)

Write = Tuple[str, Callable[..., Awaitable[None]], tuple]


class ExplorationRecorder:
    """
    Passive persistence sink for exploration events.

    Sessions hand events over without waiting: each call only enqueues the
    write, and a single writer task drains the queue in order. Storage
    failures are logged and swallowed so a slow or unreachable database never
    holds up a robot session.
    """

    def __init__(
        self,
        planet_repo: PlanetRepository,
        field_repo: FieldRepository,
        robot_repo: RobotRepository,
        max_pending: int = 1000,
    ):
        self.planet_repo = planet_repo
        self.field_repo = field_repo
        self.robot_repo = robot_repo
        self.planet_name: Optional[str] = None
        self.dropped = 0
        self._queue: "asyncio.Queue[Write]" = asyncio.Queue(maxsize=max_pending)
        self._writer: Optional[asyncio.Task] = None
        self._closed = False

    # ----- producer side -----

    def planet_discovered(self, width: int, height: int, robot_name: str) -> None:
        self.planet_name = f"Planet-{width}x{height}"
        self._enqueue(robot_name, self._write_planet, width, height, robot_name)

    def field_measured(self, robot_name: str, x: int, y: int, measure: Measure) -> None:
        self._enqueue(robot_name, self._write_field, self.planet_name or "unknown", robot_name, x, y, measure)

    def robot_updated(
        self,
        robot_name: str,
        position: Optional[Position] = None,
        energy: Optional[int] = None,
        temperature: Optional[float] = None,
        state: Optional[str] = None,
    ) -> None:
        doc: Dict[str, Any] = {}
        if position is not None:
            doc.update({"x": position.x, "y": position.y, "direction": position.direction.value})
        if energy is not None:
            doc["energy"] = energy
        if temperature is not None:
            doc["temperature"] = temperature
        if state is not None:
            doc["state"] = state
        if not doc:
            return
        self._enqueue(robot_name, self._write_robot, robot_name, doc)

    def _enqueue(self, robot_name: str, write: Callable[..., Awaitable[None]], *args) -> None:
        if self._closed:
            logger.debug("[%s] recorder closed, skipping %s", robot_name, write.__name__.lstrip("_"))
            return
        try:
            self._queue.put_nowait((robot_name, write, args))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("[%s] recorder backlog full, dropping %s", robot_name, write.__name__.lstrip("_"))
            return
        self.start()

    # ----- writer side -----

    def start(self) -> None:
        if self._writer is None or self._writer.done():
            self._writer = asyncio.ensure_future(self._drain())

    async def _drain(self) -> None:
        while True:
            robot_name, write, args = await self._queue.get()
            try:
                await write(*args)
            except Exception:
                logger.exception("[%s] recorder write failed", robot_name)
            finally:
                self._queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued write has been attempted."""
        if not self._queue.empty():
            self.start()
        await self._queue.join()

    async def close(self, timeout: Optional[float] = 5.0) -> None:
        """Drain what is queued (bounded by ``timeout``), then stop the writer."""
        self._closed = True
        try:
            await asyncio.wait_for(self.flush(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Recorder closed with %d unwritten event(s)", self._queue.qsize())
        writer, self._writer = self._writer, None
        if writer is not None and not writer.done():
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass

    async def _write_planet(self, width: int, height: int, robot_name: str) -> None:
        try:
            await self.planet_repo.upsert(width, height, reported_by=robot_name)
        except PyMongoError as exc:
            logger.warning("[%s] failed to persist planet %dx%d: %s", robot_name, width, height, exc)

    async def _write_field(self, planet: str, robot_name: str, x: int, y: int, measure: Measure) -> None:
        try:
            await self.field_repo.upsert(
                planet=planet,
                x=x,
                y=y,
                ground=measure.ground.value,
                temperature=measure.temperature,
                robot_name=robot_name,
            )
        except PyMongoError as exc:
            logger.warning("[%s] failed to persist measurement at (%d,%d): %s", robot_name, x, y, exc)

    async def _write_robot(self, robot_name: str, doc: Dict[str, Any]) -> None:
        try:
            await self.robot_repo.upsert(robot_name, doc)
        except PyMongoError as exc:
            logger.warning("[%s] failed to persist robot record: %s", robot_name, exc)
