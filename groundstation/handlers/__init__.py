from .control_handlers import (
    AutonomyHandler,
    CommandHandler,
    FieldsHandler,
    HealthHandler,
    RobotsHandler,
    SessionHandler,
    SessionsHandler,
    StatsHandler,
)
from .docs_handler import DocsHandler
from .robot_session import RobotSession
from .station_server import StationServer

__all__ = [
    "AutonomyHandler",
    "CommandHandler",
    "DocsHandler",
    "FieldsHandler",
    "HealthHandler",
    "RobotSession",
    "RobotsHandler",
    "SessionHandler",
    "SessionsHandler",
    "StationServer",
    "StatsHandler",
]
