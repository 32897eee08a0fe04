import logging
import uuid
from typing import Optional

from tornado.iostream import IOStream
from tornado.tcpserver import TCPServer

from groundstation.handlers.robot_session import RobotSession
from groundstation.services.recorder import ExplorationRecorder
from groundstation.services.world_state import WorldStateStore
from groundstation.settings import StationSettings

logger = logging.getLogger(__name__)


class StationServer(TCPServer):
    """Accepts robot connections and runs one RobotSession per stream."""

    def __init__(
        self,
        store: WorldStateStore,
        settings: StationSettings,
        recorder: Optional[ExplorationRecorder] = None,
    ):
        super().__init__(max_buffer_size=max(settings.max_line_bytes * 2, 1024 * 1024))
        self.store = store
        self.settings = settings
        self.recorder = recorder

    async def handle_stream(self, stream: IOStream, address) -> None:
        name = f"Robot-{uuid.uuid4().hex[:8]}"
        session = RobotSession(stream, name, self.store, self.settings, recorder=self.recorder)
        self.store.register_agent(name, session)
        logger.info("New robot connected => %s from %s", name, address)
        try:
            await session.run()
        except Exception:
            logger.exception("[%s] session failed", name)
