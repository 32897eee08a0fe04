from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Optional

from groundstation.models.messages import Coord, Measure


class SessionState(str, Enum):
    CONNECTED = "connected"
    AWAITING_ORBIT_ACK = "awaiting_orbit_ack"
    ORBITING = "orbiting"
    AWAITING_LANDING_ACK = "awaiting_landing_ack"
    LANDED = "landed"
    EXPLORING = "exploring"
    CHARGING = "charging"
    TERMINATED = "terminated"


LANDED_STATES = frozenset({SessionState.LANDED, SessionState.EXPLORING, SessionState.CHARGING})


@dataclass
class Agent:
    """Per-session robot record. Only the owning session and its planner touch it."""

    name: str
    energy: int = 100
    work_temp: float = 20.0
    autonomous: bool = False
    state: SessionState = SessionState.CONNECTED

    frontier: Deque[Coord] = field(default_factory=deque)
    goal: Optional[Coord] = None
    pending_measurement: Optional[Measure] = None
    last_move_target: Optional[Coord] = None
    needs_reattempt: bool = False
    stuck_rotation_toggle: bool = False

    status_received: bool = False
    component_health: Dict[str, str] = field(default_factory=dict)
    last_message: str = ""

    @property
    def landed(self) -> bool:
        return self.state in LANDED_STATES

    @property
    def terminated(self) -> bool:
        return self.state == SessionState.TERMINATED

    def apply_status(self, energy: Optional[int], temperature: Optional[float]) -> None:
        if energy is not None:
            self.energy = energy
            self.status_received = True
        if temperature is not None:
            self.work_temp = temperature

    def drain_locally(self, amount: int) -> bool:
        """Fallback energy estimate; ignored once the robot has reported a status."""
        if self.status_received:
            return False
        self.energy = max(0, self.energy - amount)
        return True
