import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from groundstation.models.messages import Coord, Direction, Measure, Position

logger = logging.getLogger(__name__)


class WorldStateStore:
    """
    Process-wide exploration state shared by every robot session.

    Holds the world geometry, explored field measurements, committed robot
    positions, in-flight move reservations and the registry of connected
    agents. Every cross-robot interaction goes through the methods below; the
    underlying containers are never handed out, snapshots are copies.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._width = -1
        self._height = -1
        self._fields: Dict[Coord, Measure] = {}
        self._positions: Dict[str, Position] = {}
        self._reservations: Dict[Coord, str] = {}
        self._agents: Dict[str, Any] = {}

    # ----- world geometry -----

    def set_world_size(self, width: int, height: int) -> None:
        with self._lock:
            if self._width > 0 and (self._width, self._height) != (width, height):
                logger.warning(
                    "World size changed from %dx%d to %dx%d", self._width, self._height, width, height
                )
            self._width = width
            self._height = height

    def get_world_size(self) -> Tuple[int, int]:
        with self._lock:
            return self._width, self._height

    def world_size_known(self) -> bool:
        with self._lock:
            return self._width > 0 and self._height > 0

    def in_bounds(self, coord: Coord) -> bool:
        x, y = coord
        with self._lock:
            return 0 <= x < self._width and 0 <= y < self._height

    # ----- measurements -----

    def record_measurement(self, x: int, y: int, measure: Measure) -> bool:
        """Upsert the measure for (x, y). Returns False when the cell lies outside a known world."""
        with self._lock:
            if self.world_size_known() and not self.in_bounds((x, y)):
                logger.warning("Dropping measurement outside the world at (%d,%d)", x, y)
                return False
            self._fields[(x, y)] = measure
            return True

    def measurement_at(self, coord: Coord) -> Optional[Measure]:
        with self._lock:
            return self._fields.get(coord)

    def is_explored(self, coord: Coord) -> bool:
        with self._lock:
            return coord in self._fields

    def is_impassable(self, coord: Coord) -> bool:
        with self._lock:
            measure = self._fields.get(coord)
            return measure is not None and measure.impassable

    def is_fully_explored(self) -> bool:
        with self._lock:
            if not self.world_size_known():
                return False
            return len(self._fields) >= self._width * self._height

    def exploration_stats(self) -> Tuple[int, int]:
        with self._lock:
            total = self._width * self._height if self.world_size_known() else 0
            return len(self._fields), total

    # ----- positions -----

    def set_agent_position(self, name: str, position: Position) -> None:
        with self._lock:
            self._positions[name] = position.model_copy()

    def get_agent_position(self, name: str) -> Optional[Position]:
        with self._lock:
            position = self._positions.get(name)
            return position.model_copy() if position is not None else None

    def set_agent_direction(self, name: str, direction: Direction) -> bool:
        with self._lock:
            position = self._positions.get(name)
            if position is None:
                return False
            self._positions[name] = position.model_copy(update={"direction": direction})
            return True

    def occupant_at(self, coord: Coord, exclude: Optional[str] = None) -> Optional[str]:
        with self._lock:
            for name, position in self._positions.items():
                if name != exclude and position.coord == coord:
                    return name
            return None

    # ----- reservations -----

    def try_reserve(self, coord: Coord, owner: str) -> bool:
        """
        Claim ``coord`` for ``owner``'s next move.

        Fails if the coordinate is already reserved, by anyone including
        ``owner``, or another agent currently stands on it.
        """
        with self._lock:
            if coord in self._reservations:
                return False
            if self.occupant_at(coord, exclude=owner) is not None:
                return False
            self._reservations[coord] = owner
            return True

    def release(self, coord: Optional[Coord], owner: Optional[str] = None) -> bool:
        if coord is None:
            return False
        with self._lock:
            holder = self._reservations.get(coord)
            if holder is None or (owner is not None and holder != owner):
                return False
            del self._reservations[coord]
            return True

    def release_all(self, owner: str) -> List[Coord]:
        with self._lock:
            held = [coord for coord, holder in self._reservations.items() if holder == owner]
            for coord in held:
                del self._reservations[coord]
            return held

    def is_reserved(self, coord: Coord) -> bool:
        with self._lock:
            return coord in self._reservations

    def reservation_owner(self, coord: Coord) -> Optional[str]:
        with self._lock:
            return self._reservations.get(coord)

    # ----- agent registry -----

    def register_agent(self, name: str, handle: Any) -> None:
        with self._lock:
            self._agents[name] = handle

    def unregister_agent(self, name: str) -> None:
        with self._lock:
            self._agents.pop(name, None)
            self._positions.pop(name, None)
            released = self.release_all(name)
        if released:
            logger.info("[%s] released %d reservation(s) on unregister", name, len(released))

    def get_agent(self, name: str) -> Optional[Any]:
        with self._lock:
            return self._agents.get(name)

    def agents(self) -> List[Any]:
        with self._lock:
            return list(self._agents.values())

    # ----- snapshots -----

    def fields_snapshot(self) -> Dict[Coord, Measure]:
        with self._lock:
            return dict(self._fields)

    def positions_snapshot(self) -> Dict[str, Position]:
        with self._lock:
            return {name: position.model_copy() for name, position in self._positions.items()}

    def reservations_snapshot(self) -> Dict[Coord, str]:
        with self._lock:
            return dict(self._reservations)
