import json
import math
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

Coord = Tuple[int, int]

TEMP_UNKNOWN = -999.9


class Command(str, Enum):
    ORBIT = "ORBIT"
    INIT = "INIT"
    LAND = "LAND"
    LANDED = "LANDED"
    SCAN = "SCAN"
    SCANED = "SCANED"
    MOVE = "MOVE"
    MOVED = "MOVED"
    MVSCAN = "MVSCAN"
    MVSCANED = "MVSCANED"
    ROTATE = "ROTATE"
    ROTATED = "ROTATED"
    CRASHED = "CRASHED"
    EXIT = "EXIT"
    ERROR = "ERROR"
    GETPOS = "GETPOS"
    POS = "POS"
    CHARGE = "CHARGE"
    CHARGED = "CHARGED"
    STATUS = "STATUS"
    UNKNOWN = "UNKNOWN"


class Rotation(str, Enum):
    LEFT = "LEFT"
    RIGHT = "RIGHT"


class Direction(str, Enum):
    NORTH = "NORTH"
    EAST = "EAST"
    SOUTH = "SOUTH"
    WEST = "WEST"

    def turned(self, rotation: Rotation) -> "Direction":
        compass = list(Direction)
        step = 1 if rotation == Rotation.RIGHT else -1
        return compass[(compass.index(self) + step) % len(compass)]

    @property
    def offset(self) -> Coord:
        return _OFFSETS[self]


# y grows towards SOUTH
_OFFSETS = {
    Direction.NORTH: (0, -1),
    Direction.EAST: (1, 0),
    Direction.SOUTH: (0, 1),
    Direction.WEST: (-1, 0),
}


class Ground(str, Enum):
    NICHTS = "NICHTS"
    SAND = "SAND"
    GEROELL = "GEROELL"
    FELS = "FELS"
    WASSER = "WASSER"
    PFLANZEN = "PFLANZEN"
    MORAST = "MORAST"
    LAVA = "LAVA"


def _upper(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().upper()
    return value


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Position(WireModel):
    x: int = Field(..., alias="X", description="Column, grows towards EAST.")
    y: int = Field(..., alias="Y", description="Row, grows towards SOUTH.")
    direction: Direction = Field(..., alias="DIRECTION", description="Current facing.")

    @field_validator("direction", mode="before")
    @classmethod
    def normalize_direction(cls, value):
        return _upper(value)

    @property
    def coord(self) -> Coord:
        return (self.x, self.y)

    def ahead(self) -> Coord:
        dx, dy = self.direction.offset
        return (self.x + dx, self.y + dy)


class Measure(WireModel):
    ground: Ground = Field(..., alias="GROUND", description="Ground type of the measured cell.")
    temperature: float = Field(default=TEMP_UNKNOWN, alias="TEMP", description="Ground temperature in °C.")

    @field_validator("ground", mode="before")
    @classmethod
    def normalize_ground(cls, value):
        return _upper(value)

    @field_validator("temperature", mode="before")
    @classmethod
    def default_temperature(cls, value):
        return TEMP_UNKNOWN if value is None else value

    @property
    def impassable(self) -> bool:
        return self.ground == Ground.NICHTS


class WorldSize(WireModel):
    width: int = Field(..., alias="WIDTH")
    height: int = Field(..., alias="HEIGHT")


class RobotStatus(WireModel):
    temperature: Optional[float] = Field(default=None, alias="TEMP", description="Working temperature in °C.")
    energy: Optional[int] = Field(default=None, alias="ENERGY", description="Battery level in percent.")
    message: str = Field(default="", alias="MESSAGE", description="Pipe-delimited events and NAME=value readouts.")

    @field_validator("energy", mode="before")
    @classmethod
    def clamp_energy(cls, value):
        if value is None:
            return value
        number = float(value)
        if not math.isfinite(number):
            raise ValueError("energy must be a finite number")
        return max(0, min(100, int(number)))

    @field_validator("message", mode="before")
    @classmethod
    def coerce_message(cls, value):
        return "" if value is None else str(value)

    def tokens(self) -> List[str]:
        return [token.strip() for token in self.message.split("|") if token.strip()]

    def readings(self) -> Dict[str, str]:
        """NAME=value component readouts."""
        result: Dict[str, str] = {}
        for token in self.tokens():
            if "=" in token:
                key, value = token.split("=", 1)
                result[key.strip().upper()] = value.strip()
        return result

    def events(self) -> List[str]:
        return [token.upper() for token in self.tokens() if "=" not in token]


class ProtocolMessage(WireModel):
    """Base of every wire message; ``CMD`` is matched case-insensitively."""

    command: Command = Field(..., alias="CMD")

    @field_validator("command", mode="before")
    @classmethod
    def normalize_command(cls, value):
        return _upper(value)

    def to_line(self) -> str:
        payload = self.model_dump(by_alias=True, mode="json", exclude_none=True)
        payload["CMD"] = self.command.value.lower()
        return json.dumps(payload, separators=(",", ":"))


class BareMessage(ProtocolMessage):
    """Commands without a payload: move, scan, mvscan, getpos, exit, crashed, error."""


class OrbitCommand(ProtocolMessage):
    command: Command = Field(default=Command.ORBIT, alias="CMD")
    name: str = Field(..., alias="NAME")


class LandCommand(ProtocolMessage):
    command: Command = Field(default=Command.LAND, alias="CMD")
    position: Position = Field(..., alias="POSITION")


class RotateCommand(ProtocolMessage):
    command: Command = Field(default=Command.ROTATE, alias="CMD")
    rotation: Rotation = Field(..., alias="ROTATION")

    @field_validator("rotation", mode="before")
    @classmethod
    def normalize_rotation(cls, value):
        return _upper(value)


class ChargeCommand(ProtocolMessage):
    command: Command = Field(default=Command.CHARGE, alias="CMD")
    duration: int = Field(..., alias="DURATION", ge=0, description="Charge duration in seconds.")


class InitMessage(ProtocolMessage):
    size: WorldSize = Field(..., alias="SIZE")


class MeasureMessage(ProtocolMessage):
    """landed / scaned."""

    measure: Measure = Field(..., alias="MEASURE")


class PositionMessage(ProtocolMessage):
    """moved / pos."""

    position: Position = Field(..., alias="POSITION")


class MvScanedMessage(ProtocolMessage):
    measure: Measure = Field(..., alias="MEASURE")
    position: Optional[Position] = Field(default=None, alias="POSITION")


class RotatedMessage(ProtocolMessage):
    direction: Direction = Field(..., alias="DIRECTION")

    @field_validator("direction", mode="before")
    @classmethod
    def normalize_direction(cls, value):
        return _upper(value)


class StatusMessage(ProtocolMessage):
    """status / charged."""

    status: RobotStatus = Field(default_factory=RobotStatus, alias="STATUS")


class UnknownMessage(ProtocolMessage):
    command: Command = Field(default=Command.UNKNOWN, alias="CMD")
    raw: str = Field(default="", description="The line as received.")
    reason: str = Field(default="", description="Why the line could not be classified.")


class GetPosMessage(ProtocolMessage):
    """getpos; a robot answering with CMD=getpos carries a POSITION."""

    position: Optional[Position] = Field(default=None, alias="POSITION")


class ErrorMessage(ProtocolMessage):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


MESSAGE_TYPES = {
    Command.ORBIT: OrbitCommand,
    Command.INIT: InitMessage,
    Command.LAND: LandCommand,
    Command.LANDED: MeasureMessage,
    Command.SCAN: BareMessage,
    Command.SCANED: MeasureMessage,
    Command.MOVE: BareMessage,
    Command.MOVED: PositionMessage,
    Command.MVSCAN: BareMessage,
    Command.MVSCANED: MvScanedMessage,
    Command.ROTATE: RotateCommand,
    Command.ROTATED: RotatedMessage,
    Command.CRASHED: BareMessage,
    Command.EXIT: BareMessage,
    Command.ERROR: ErrorMessage,
    Command.GETPOS: GetPosMessage,
    Command.POS: PositionMessage,
    Command.CHARGE: ChargeCommand,
    Command.CHARGED: StatusMessage,
    Command.STATUS: StatusMessage,
}

OUTBOUND_COMMANDS = frozenset(
    {
        Command.ORBIT,
        Command.LAND,
        Command.MOVE,
        Command.SCAN,
        Command.MVSCAN,
        Command.ROTATE,
        Command.CHARGE,
        Command.GETPOS,
        Command.EXIT,
    }
)


class SchemaDocument(BaseModel):
    """Documentation payload served at /docs for quick reference."""

    robot_endpoint: Dict[str, Any]
    control_endpoints: Dict[str, str]
    inbound_messages: Dict[str, Dict[str, Any]]
    outbound_messages: Dict[str, Dict[str, Any]]
    examples: Dict[str, Any] = Field(default_factory=dict)
    notes: List[str] = []
