import os
from typing import Any, Optional

from pydantic import BaseModel, Field

from groundstation.models.messages import Direction


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(default)


def _to_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


def _to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    return default


def _clip(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


class StationSettings(BaseModel):
    """Runtime configuration; built from the environment by ``from_env``."""

    station_address: str = Field(default="0.0.0.0", description="Bind address for robot connections.")
    station_port: int = Field(default=9000, description="TCP port robots connect to.")
    http_address: str = Field(default="0.0.0.0", description="Bind address for the control API.")
    http_port: int = Field(default=8000, description="Port of the control API.")

    auto_pilot: bool = Field(default=False, description="Start new sessions in autonomous mode.")
    ack_timeout_s: float = Field(default=3.0, description="How long to wait for a command acknowledgement.")
    read_timeout_s: float = Field(default=2.0, description="Bounded socket read wait between shutdown checks.")
    poll_interval_s: float = Field(default=0.5, description="Polling interval while waiting for world geometry.")
    charge_duration_s: int = Field(default=5, description="Duration sent with planner charge commands.")
    charge_margin_s: float = Field(default=1.0, description="Grace on top of the charge duration.")
    energy_low_threshold: int = Field(default=20, description="Planner charges below this energy level.")
    landing_direction: Direction = Field(default=Direction.EAST)
    landing_attempts: int = Field(default=3)
    max_steps_per_goal: Optional[int] = Field(
        default=None, description="Movement iterations per frontier goal; derived from world size when unset."
    )
    simulate_energy: bool = Field(default=False, description="Drain energy locally until a status report arrives.")
    move_energy_cost: int = Field(default=2)
    max_line_bytes: int = Field(default=65536)

    mongodb_url: Optional[str] = Field(default=None, description="Enables the MongoDB exploration recorder.")
    log_level: str = Field(default="INFO")

    @classmethod
    def from_env(cls) -> "StationSettings":
        defaults = cls()
        settings = cls(
            station_address=os.getenv("STATION_ADDRESS", defaults.station_address).strip() or defaults.station_address,
            station_port=_to_int(os.getenv("STATION_PORT"), defaults.station_port),
            http_address=os.getenv("ADDRESS", defaults.http_address).strip() or defaults.http_address,
            http_port=_to_int(os.getenv("PORT"), defaults.http_port),
            auto_pilot=_to_bool(os.getenv("AUTO_PILOT"), defaults.auto_pilot),
            ack_timeout_s=_to_float(os.getenv("ACK_TIMEOUT_S"), defaults.ack_timeout_s),
            read_timeout_s=_to_float(os.getenv("READ_TIMEOUT_S"), defaults.read_timeout_s),
            poll_interval_s=_to_float(os.getenv("POLL_INTERVAL_S"), defaults.poll_interval_s),
            charge_duration_s=_to_int(os.getenv("CHARGE_DURATION_S"), defaults.charge_duration_s),
            charge_margin_s=_to_float(os.getenv("CHARGE_MARGIN_S"), defaults.charge_margin_s),
            energy_low_threshold=_to_int(os.getenv("ENERGY_LOW_THRESHOLD"), defaults.energy_low_threshold),
            landing_direction=_direction(os.getenv("LANDING_DIRECTION"), defaults.landing_direction),
            landing_attempts=_to_int(os.getenv("LANDING_ATTEMPTS"), defaults.landing_attempts),
            simulate_energy=_to_bool(os.getenv("SIMULATE_ENERGY"), defaults.simulate_energy),
            move_energy_cost=_to_int(os.getenv("MOVE_ENERGY_COST"), defaults.move_energy_cost),
            max_line_bytes=_to_int(os.getenv("MAX_LINE_BYTES"), defaults.max_line_bytes),
            mongodb_url=os.getenv("MONGODB_URL") or None,
            log_level=(os.getenv("LOG_LEVEL") or defaults.log_level).upper(),
        )

        settings.station_port = int(_clip(settings.station_port, 1, 65535))
        settings.http_port = int(_clip(settings.http_port, 1, 65535))
        settings.ack_timeout_s = _clip(settings.ack_timeout_s, 0.05, 120.0)
        settings.read_timeout_s = _clip(settings.read_timeout_s, 0.05, 60.0)
        settings.poll_interval_s = _clip(settings.poll_interval_s, 0.01, 10.0)
        settings.charge_duration_s = int(_clip(settings.charge_duration_s, 1, 600))
        settings.charge_margin_s = _clip(settings.charge_margin_s, 0.0, 60.0)
        settings.energy_low_threshold = int(_clip(settings.energy_low_threshold, 0, 100))
        settings.landing_attempts = int(_clip(settings.landing_attempts, 1, 100))
        settings.move_energy_cost = int(_clip(settings.move_energy_cost, 0, 100))
        settings.max_line_bytes = int(_clip(settings.max_line_bytes, 256, 16 * 1024 * 1024))
        return settings


def _direction(value: Optional[str], default: Direction) -> Direction:
    if not value:
        return default
    try:
        return Direction(value.strip().upper())
    except ValueError:
        return default
