import json
from typing import Optional

from pydantic import ValidationError

from groundstation.models.messages import (
    MESSAGE_TYPES,
    BareMessage,
    ChargeCommand,
    Command,
    Direction,
    LandCommand,
    OrbitCommand,
    Position,
    ProtocolMessage,
    RotateCommand,
    Rotation,
    UnknownMessage,
)


def decode(line: Optional[str]) -> Optional[ProtocolMessage]:
    """
    Parse one protocol line into its message model.

    Returns None for empty input. Anything that cannot be mapped onto the
    command vocabulary comes back as an UnknownMessage instead of raising.
    """
    if line is None:
        return None
    text = line.strip()
    if not text:
        return None

    try:
        payload = json.loads(text)
    except RecursionError:
        return UnknownMessage(raw=text, reason="malformed json: nested too deeply")
    except ValueError as exc:
        return UnknownMessage(raw=text, reason=f"malformed json: {getattr(exc, 'msg', exc)}")

    if not isinstance(payload, dict):
        return UnknownMessage(raw=text, reason="payload is not an object")

    cmd = payload.get("CMD")
    if not isinstance(cmd, str):
        return UnknownMessage(raw=text, reason="missing CMD")
    try:
        command = Command(cmd.strip().upper())
    except ValueError:
        return UnknownMessage(raw=text, reason=f"unknown CMD {cmd!r}")
    if command == Command.UNKNOWN:
        return UnknownMessage(raw=text, reason="explicit UNKNOWN")

    model = MESSAGE_TYPES.get(command, BareMessage)
    try:
        return model.model_validate({**payload, "CMD": command})
    except ValidationError as exc:
        return UnknownMessage(raw=text, reason=f"invalid {command.value.lower()} payload: {exc.error_count()} error(s)")


def classify(message: Optional[ProtocolMessage]) -> Command:
    if message is None:
        return Command.UNKNOWN
    return message.command


def encode_orbit(name: str) -> str:
    return OrbitCommand(name=name).to_line()


def encode_land(x: int, y: int, direction: Direction) -> str:
    return LandCommand(position=Position(x=x, y=y, direction=direction)).to_line()


def encode_move() -> str:
    return BareMessage(command=Command.MOVE).to_line()


def encode_scan() -> str:
    return BareMessage(command=Command.SCAN).to_line()


def encode_mvscan() -> str:
    return BareMessage(command=Command.MVSCAN).to_line()


def encode_rotate(rotation: Rotation) -> str:
    return RotateCommand(rotation=rotation).to_line()


def encode_charge(duration: int) -> str:
    return ChargeCommand(duration=duration).to_line()


def encode_getpos() -> str:
    return BareMessage(command=Command.GETPOS).to_line()


def encode_exit() -> str:
    return BareMessage(command=Command.EXIT).to_line()
