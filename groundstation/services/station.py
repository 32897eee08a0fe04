import asyncio
import logging
from typing import List, Optional

from groundstation.db.context import DBContext
from groundstation.handlers.robot_session import RobotSession
from groundstation.handlers.station_server import StationServer
from groundstation.models import (
    ExplorationStats,
    FieldSnapshot,
    ProtocolMessage,
    RobotSnapshot,
    SessionSummary,
)
from groundstation.services.errors import SessionNotFoundError
from groundstation.services.recorder import ExplorationRecorder
from groundstation.services.world_state import WorldStateStore
from groundstation.settings import StationSettings

logger = logging.getLogger(__name__)


class GroundStation:
    """
    Owns the shared world state, the robot acceptor and the optional recorder.

    The control API only talks to this object.
    """

    def __init__(
        self,
        settings: StationSettings,
        store: Optional[WorldStateStore] = None,
        recorder: Optional[ExplorationRecorder] = None,
        db_context: Optional[DBContext] = None,
    ):
        self.settings = settings
        self.store = store or WorldStateStore()
        self.recorder = recorder
        self.db_context = db_context
        self.server = StationServer(self.store, settings, recorder=recorder)

    def listen(self) -> None:
        """Bind the robot port. Raises OSError when the port is unavailable."""
        self.server.listen(self.settings.station_port, address=self.settings.station_address)
        logger.info(
            "Waiting for robots on %s:%d", self.settings.station_address, self.settings.station_port
        )

    def sessions(self) -> List[RobotSession]:
        return self.store.agents()

    def list_sessions(self) -> List[SessionSummary]:
        return [session.summary() for session in self.sessions()]

    def get_session(self, name: str) -> RobotSession:
        session = self.store.get_agent(name)
        if session is None:
            raise SessionNotFoundError(name)
        return session

    async def set_autonomous(self, name: str, enabled: bool) -> SessionSummary:
        session = self.get_session(name)
        await session.set_autonomous(enabled)
        return session.summary()

    async def send_manual_command(self, name: str, line: str) -> ProtocolMessage:
        return await self.get_session(name).send_manual_command(line)

    def exploration_stats(self) -> ExplorationStats:
        explored, total = self.store.exploration_stats()
        width, height = self.store.get_world_size()
        return ExplorationStats(
            explored=explored,
            total=total,
            width=max(width, 0),
            height=max(height, 0),
            complete=self.store.is_fully_explored(),
        )

    def fields_snapshot(self) -> List[FieldSnapshot]:
        return [
            FieldSnapshot(x=x, y=y, ground=measure.ground.value, temperature=measure.temperature)
            for (x, y), measure in sorted(self.store.fields_snapshot().items(), key=lambda item: (item[0][1], item[0][0]))
        ]

    def positions_snapshot(self) -> List[RobotSnapshot]:
        return [
            RobotSnapshot(name=name, x=position.x, y=position.y, direction=position.direction.value)
            for name, position in sorted(self.store.positions_snapshot().items())
        ]

    async def shutdown(self, grace_s: float = 1.0) -> None:
        """Stop accepting, cancel planners, close sockets, flush the recorder, then close storage."""
        logger.info("Shutting down ground station")
        self.server.stop()
        sessions = self.sessions()
        for session in sessions:
            await session.stop_planner()
        for session in sessions:
            session.close_stream()
        await self._wait_for_teardown(grace_s)
        if self.recorder is not None:
            await self.recorder.close()
        if self.db_context is not None:
            await self.db_context.close()

    async def _wait_for_teardown(self, grace_s: float) -> None:
        deadline = asyncio.get_running_loop().time() + grace_s
        while self.store.agents() and asyncio.get_running_loop().time() < deadline:
            await asyncio.sleep(self.settings.poll_interval_s)
        if self.store.agents():
            logger.warning("%d session(s) still open after shutdown", len(self.store.agents()))
