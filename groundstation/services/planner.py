import asyncio
import logging
from collections import deque
from enum import Enum
from typing import TYPE_CHECKING, Deque, Iterator, Optional

from groundstation.models.agent import SessionState
from groundstation.models.messages import Command, Coord, Direction, Position, Rotation
from groundstation.services import protocol
from groundstation.services.world_state import WorldStateStore
from groundstation.settings import StationSettings

if TYPE_CHECKING:
    from groundstation.handlers.robot_session import RobotSession

logger = logging.getLogger(__name__)

_COMPASS = list(Direction)


class PlannerAction(str, Enum):
    EXIT = "exit"
    CHARGE = "charge"
    RETRY = "retry"
    EXPLORE = "explore"


def turn_towards(current: Direction, target: Direction) -> Optional[Rotation]:
    """Next single rotation from ``current`` towards ``target``; None when already aligned.

    A half turn starts with RIGHT, so any alignment takes at most two rotations.
    """
    diff = (_COMPASS.index(target) - _COMPASS.index(current)) % 4
    if diff == 0:
        return None
    return Rotation.LEFT if diff == 3 else Rotation.RIGHT


def needed_direction(position: Position, goal: Coord) -> Optional[Direction]:
    """Facing required for the next step towards ``goal``; x is resolved before y."""
    dx = goal[0] - position.x
    dy = goal[1] - position.y
    if dx:
        return Direction.EAST if dx > 0 else Direction.WEST
    if dy:
        return Direction.SOUTH if dy > 0 else Direction.NORTH
    return None


def row_major(width: int, height: int) -> Iterator[Coord]:
    for y in range(height):
        for x in range(width):
            yield (x, y)


def build_frontier(store: WorldStateStore) -> Deque[Coord]:
    width, height = store.get_world_size()
    return deque(coord for coord in row_major(width, height) if not store.is_explored(coord))


def select_landing_spot(store: WorldStateStore, name: str) -> Coord:
    """
    First row-major cell that is not known impassable, not occupied and can be
    reserved for ``name``. Falls back to the origin when every cell is taken.
    """
    width, height = store.get_world_size()
    for coord in row_major(width, height):
        if store.is_impassable(coord) or store.occupant_at(coord, exclude=name) is not None:
            continue
        if store.try_reserve(coord, name):
            return coord
    store.try_reserve((0, 0), name)
    return (0, 0)


class Planner:
    """
    Frontier exploration loop for one robot session.

    Commands go through ``session.request`` so every step waits for the
    robot's actual acknowledgement instead of sleeping a fixed delay.
    """

    def __init__(self, session: "RobotSession", store: WorldStateStore, settings: StationSettings):
        self.session = session
        self.store = store
        self.settings = settings
        self.agent = session.agent
        self._sidestep = False

    @property
    def name(self) -> str:
        return self.agent.name

    def _active(self) -> bool:
        return self.agent.autonomous and not self.agent.terminated

    async def run(self) -> None:
        logger.info("[%s] AutoPilot START", self.name)
        try:
            if not await self._wait_for_world():
                return
            if not self.agent.landed and not await self._land():
                return
            self.agent.frontier = build_frontier(self.store)
            self.session.transition(SessionState.EXPLORING)
            while self._active():
                if await self.step() == PlannerAction.EXIT:
                    break
        finally:
            self.store.release_all(self.name)
            if self.agent.state == SessionState.EXPLORING:
                self.session.transition(SessionState.LANDED)
            logger.info("[%s] AutoPilot END", self.name)

    async def _wait_for_world(self) -> bool:
        while self._active() and not self.store.world_size_known():
            await asyncio.sleep(self.settings.poll_interval_s)
        return self._active()

    async def _land(self) -> bool:
        for attempt in range(1, self.settings.landing_attempts + 1):
            if not self._active():
                return False
            x, y = select_landing_spot(self.store, self.name)
            self.agent.last_move_target = (x, y)
            self.session.transition(SessionState.AWAITING_LANDING_ACK)
            logger.info(
                "[%s] landing at (%d,%d) facing %s (attempt %d)",
                self.name,
                x,
                y,
                self.settings.landing_direction.value,
                attempt,
            )
            await self.session.request(
                protocol.encode_land(x, y, self.settings.landing_direction),
                {Command.POS, Command.GETPOS, Command.CRASHED},
                timeout=self.settings.ack_timeout_s * 2,
            )
            if self.agent.landed:
                return True
            if self.agent.terminated:
                return False
            self.store.release((x, y), self.name)
            logger.warning("[%s] no landing confirmation for (%d,%d)", self.name, x, y)
        logger.error("[%s] giving up landing after %d attempts", self.name, self.settings.landing_attempts)
        return False

    # ----- decision -----

    def _prune_frontier(self) -> None:
        self.agent.frontier = deque(c for c in self.agent.frontier if not self.store.is_explored(c))
        goal = self.agent.goal
        if goal is not None and self.store.is_explored(goal):
            self.agent.goal = None
            self.agent.needs_reattempt = False

    def _retry_pending(self) -> bool:
        return self.agent.needs_reattempt and self.agent.goal is not None

    def decide(self) -> PlannerAction:
        """Choose the next action; the only side effect is pruning explored cells."""
        self._prune_frontier()
        if self.store.is_fully_explored():
            return PlannerAction.EXIT
        if not self.agent.frontier and not self._retry_pending():
            return PlannerAction.EXIT
        if self.agent.energy < self.settings.energy_low_threshold:
            return PlannerAction.CHARGE
        if self._retry_pending():
            return PlannerAction.RETRY
        return PlannerAction.EXPLORE

    async def step(self) -> PlannerAction:
        action = self.decide()
        if action == PlannerAction.EXIT:
            explored, total = self.store.exploration_stats()
            reason = "all fields explored" if self.store.is_fully_explored() else "frontier exhausted"
            logger.info("[%s] %s (%d/%d) => exit", self.name, reason, explored, total)
            await self.session.send(protocol.encode_exit())
            self.session.terminate(reason)
        elif action == PlannerAction.CHARGE:
            await self._charge()
        elif action == PlannerAction.RETRY:
            self.agent.needs_reattempt = False
            logger.info("[%s] re-attempting (%d,%d)", self.name, *self.agent.goal)
            await self._pursue(self.agent.goal)
        else:
            await self._pursue(self.agent.frontier.popleft())
        return action

    async def _charge(self) -> None:
        duration = self.settings.charge_duration_s
        logger.info("[%s] low energy (%d) => charging %ds", self.name, self.agent.energy, duration)
        self.session.transition(SessionState.CHARGING)
        reply = await self.session.request(
            protocol.encode_charge(duration),
            {Command.CHARGED},
            timeout=duration + self.settings.charge_margin_s,
        )
        if reply is None:
            logger.warning("[%s] no CHARGED report", self.name)
            if not self.agent.status_received:
                # local estimate only; assume the charge went through
                self.agent.energy = 100
        self.session.transition(SessionState.EXPLORING)

    # ----- movement -----

    async def _pursue(self, goal: Coord) -> None:
        self.agent.goal = goal
        reached = await self._move_to(goal)
        if reached or not self.agent.needs_reattempt:
            self.agent.goal = None

    async def _move_to(self, goal: Coord) -> bool:
        width, height = self.store.get_world_size()
        max_steps = self.settings.max_steps_per_goal or 4 * (width + height) + 16
        self._sidestep = False
        for _ in range(max_steps):
            if not self._active():
                return False
            if self.store.is_explored(goal):
                return True
            position = self.store.get_agent_position(self.name)
            if position is None:
                await self._resync()
                continue
            if position.coord == goal:
                return True

            needed = needed_direction(position, goal)
            if not self._sidestep and position.direction != needed:
                await self._rotate(turn_towards(position.direction, needed))
                continue

            ahead = position.ahead()
            if not self._can_enter(ahead):
                logger.debug("[%s] (%d,%d) blocked => sidestep", self.name, *ahead)
                self._sidestep = True
                await self._rotate(Rotation.RIGHT)
                continue

            self._sidestep = False
            if not await self._advance(ahead):
                return False
        logger.warning("[%s] abandoning (%d,%d) after %d steps", self.name, goal[0], goal[1], max_steps)
        return False

    def _can_enter(self, coord: Coord) -> bool:
        return (
            self.store.in_bounds(coord)
            and not self.store.is_impassable(coord)
            and self.store.try_reserve(coord, self.name)
        )

    async def _advance(self, ahead: Coord) -> bool:
        """Move one cell; scans on the way when the cell has no measurement yet."""
        self.agent.last_move_target = ahead
        if self.store.is_explored(ahead):
            line, expect = protocol.encode_move(), {Command.MOVED, Command.CRASHED}
        else:
            line, expect = protocol.encode_mvscan(), {Command.MVSCANED, Command.CRASHED}

        reply = await self.session.request(line, expect)
        if reply is None:
            if self.agent.terminated:
                return False
            logger.info("[%s] move to (%d,%d) not acknowledged => will re-attempt", self.name, *ahead)
            self.agent.needs_reattempt = True
            await self._resync()
            self.store.release(ahead, self.name)
            if self.agent.last_move_target == ahead:
                self.agent.last_move_target = None
            return False
        return reply.command != Command.CRASHED

    async def _rotate(self, rotation: Rotation) -> None:
        reply = await self.session.request(protocol.encode_rotate(rotation), {Command.ROTATED})
        if reply is None and not self.agent.terminated:
            await self._resync()

    async def _resync(self) -> None:
        await self.session.request(protocol.encode_getpos(), {Command.POS, Command.GETPOS})
