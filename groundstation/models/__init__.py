"""Pydantic models for the robot wire protocol and the control API."""

from .messages import (
    Command,
    Coord,
    Direction,
    Ground,
    Measure,
    Position,
    ProtocolMessage,
    RobotStatus,
    Rotation,
    SchemaDocument,
    UnknownMessage,
    WorldSize,
    OUTBOUND_COMMANDS,
    TEMP_UNKNOWN,
)
from .agent import Agent, SessionState
from .control import (
    AutonomyRequest,
    ExplorationStats,
    FieldSnapshot,
    RobotSnapshot,
    SessionList,
    SessionSummary,
)

__all__ = [
    "Command",
    "Coord",
    "Direction",
    "Ground",
    "Measure",
    "Position",
    "ProtocolMessage",
    "RobotStatus",
    "Rotation",
    "SchemaDocument",
    "UnknownMessage",
    "WorldSize",
    "OUTBOUND_COMMANDS",
    "TEMP_UNKNOWN",
    "Agent",
    "SessionState",
    "AutonomyRequest",
    "ExplorationStats",
    "FieldSnapshot",
    "RobotSnapshot",
    "SessionList",
    "SessionSummary",
]
