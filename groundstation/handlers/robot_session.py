import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, Optional, Union

from tornado import gen
from tornado.iostream import IOStream, StreamClosedError, UnsatisfiableReadError
from tornado.util import TimeoutError as ReadTimeoutError

from groundstation.models import Agent, SessionState, SessionSummary
from groundstation.models.messages import (
    OUTBOUND_COMMANDS,
    Command,
    Ground,
    GetPosMessage,
    InitMessage,
    LandCommand,
    Measure,
    MeasureMessage,
    MvScanedMessage,
    Position,
    PositionMessage,
    ProtocolMessage,
    Rotation,
    RotatedMessage,
    StatusMessage,
    UnknownMessage,
)
from groundstation.services import protocol
from groundstation.services.errors import InvalidCommandError, SessionTerminatedError
from groundstation.services.planner import Planner
from groundstation.services.recorder import ExplorationRecorder
from groundstation.services.world_state import WorldStateStore
from groundstation.settings import StationSettings

logger = logging.getLogger(__name__)

INFORMATIONAL_EVENTS = frozenset(
    {
        "HEATER_ON",
        "HEATER_OFF",
        "COOLER_ON",
        "COOLER_OFF",
        "WARN_MIN_TEMP",
        "WARN_MAX_TEMP",
        "EMERGENCY_CALL",
        "CHARGE_END",
        "SCAN_STOP",
        "ROTATE_STOP",
    }
)


class RobotSession:
    """
    One connected robot: the protocol state machine plus its optional planner.

    The read loop is the only consumer of the stream; every inbound line is
    decoded, applied to the shared world state and then offered to the pending
    request slot the planner may be waiting on.
    """

    def __init__(
        self,
        stream: IOStream,
        name: str,
        store: WorldStateStore,
        settings: StationSettings,
        recorder: Optional[ExplorationRecorder] = None,
    ):
        self.stream = stream
        self.name = name
        self.store = store
        self.settings = settings
        self.recorder = recorder
        self.agent = Agent(name=name, autonomous=settings.auto_pilot)

        self.planner: Optional[Planner] = None
        self._planner_task: Optional[asyncio.Task] = None
        self._pending: Optional[asyncio.Future] = None
        self._pending_expect: FrozenSet[Command] = frozenset()
        self._closing = False

        self._handlers: Dict[Command, Callable[[ProtocolMessage], Awaitable[None]]] = {
            Command.INIT: self._on_init,
            Command.LANDED: self._on_landed,
            Command.POS: self._on_position,
            Command.GETPOS: self._on_position,
            Command.SCANED: self._on_scaned,
            Command.MOVED: self._on_moved,
            Command.MVSCANED: self._on_mvscaned,
            Command.ROTATED: self._on_rotated,
            Command.STATUS: self._on_status,
            Command.CHARGED: self._on_status,
            Command.CRASHED: self._on_crashed,
            Command.EXIT: self._on_exit,
            Command.ERROR: self._on_error,
            Command.UNKNOWN: self._on_unknown,
        }

    @property
    def state(self) -> SessionState:
        return self.agent.state

    @property
    def autonomous(self) -> bool:
        return self.agent.autonomous

    # ----- lifecycle -----

    async def run(self) -> None:
        logger.info("[%s] session started", self.name)
        try:
            if await self.send(protocol.encode_orbit(self.name)):
                self.transition(SessionState.AWAITING_ORBIT_ACK)
            await self._read_loop()
        except StreamClosedError:
            if not self._closing:
                logger.info("[%s] connection closed by robot", self.name)
        except UnsatisfiableReadError as exc:
            logger.warning("[%s] dropping connection: %s", self.name, exc)
        except OSError as exc:
            logger.warning("[%s] connection lost: %s", self.name, exc)
        finally:
            await self._teardown()

    async def _read_loop(self) -> None:
        read_future = None
        while not self._closing and not self.agent.terminated:
            if read_future is None:
                read_future = self.stream.read_until(b"\n", max_bytes=self.settings.max_line_bytes)
            try:
                data = await gen.with_timeout(
                    timedelta(seconds=self.settings.read_timeout_s),
                    read_future,
                    quiet_exceptions=(StreamClosedError,),
                )
            except ReadTimeoutError:
                continue
            read_future = None
            line = data.decode("utf-8", errors="replace")
            try:
                await self.handle_line(line)
            except Exception:
                logger.exception("[%s] failed to handle %r", self.name, line.strip())

    async def _teardown(self) -> None:
        self._closing = True
        self.terminate("connection closed")
        await self.stop_planner()
        if not self.stream.closed():
            self.stream.close()
        self.store.unregister_agent(self.name)
        self._persist_robot()
        logger.info("[%s] session ended", self.name)

    def terminate(self, reason: str) -> None:
        """Enter the absorbing TERMINATED state; the read loop winds down on its next check."""
        if self.agent.terminated:
            return
        logger.info("[%s] terminated: %s", self.name, reason)
        self.agent.state = SessionState.TERMINATED
        self._closing = True
        self.interrupt_pending()

    async def close(self) -> None:
        """Stop the planner first, then the socket."""
        self._closing = True
        await self.stop_planner()
        self.close_stream()

    def close_stream(self) -> None:
        self._closing = True
        if not self.stream.closed():
            self.stream.close()

    def transition(self, state: SessionState) -> None:
        if self.agent.terminated or self.agent.state == state:
            return
        logger.debug("[%s] %s -> %s", self.name, self.agent.state.value, state.value)
        self.agent.state = state

    # ----- outbound -----

    async def send(self, line: str) -> bool:
        if self.agent.terminated or self.stream.closed():
            logger.debug("[%s] not sending after termination: %s", self.name, line)
            return False
        logger.debug("[%s] >> %s", self.name, line)
        try:
            await self.stream.write((line + "\n").encode("utf-8"))
        except StreamClosedError:
            logger.warning("[%s] could not send, connection closed", self.name)
            self.terminate("connection closed while sending")
            return False
        return True

    async def request(
        self,
        line: str,
        expect: Iterable[Command],
        timeout: Optional[float] = None,
    ) -> Optional[ProtocolMessage]:
        """
        Send ``line`` and wait for the first inbound message whose command is in ``expect``.

        The reply has already been applied to the session state when this
        returns. Returns None on timeout, on interruption (e.g. MOVE_STOP) or
        when the session terminates in the meantime.
        """
        if self.agent.terminated:
            return None
        self.interrupt_pending()
        future = asyncio.get_running_loop().create_future()
        self._pending = future
        self._pending_expect = frozenset(expect)
        wait_s = timeout if timeout is not None else self.settings.ack_timeout_s
        try:
            if not await self.send(line):
                return None
            return await asyncio.wait_for(future, wait_s)
        except asyncio.TimeoutError:
            logger.info(
                "[%s] no %s within %.1fs",
                self.name,
                "/".join(sorted(c.value for c in self._pending_expect)),
                wait_s,
            )
            return None
        finally:
            if self._pending is future:
                self._pending = None
                self._pending_expect = frozenset()

    def interrupt_pending(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.set_result(None)

    def _resolve_pending(self, message: ProtocolMessage) -> None:
        future = self._pending
        if future is not None and not future.done() and message.command in self._pending_expect:
            future.set_result(message)

    async def send_manual_command(self, line: str) -> ProtocolMessage:
        """Operator command; must be one of the station->robot kinds."""
        message = protocol.decode(line)
        command = protocol.classify(message)
        if command not in OUTBOUND_COMMANDS:
            reason = message.reason if isinstance(message, UnknownMessage) else f"{command.value} is not a station command"
            raise InvalidCommandError(reason or "empty command")
        if self.agent.terminated:
            raise SessionTerminatedError(self.name)

        if isinstance(message, LandCommand):
            target = message.position.coord
            self.store.release(self.agent.last_move_target, self.name)
            self.store.try_reserve(target, self.name)
            self.agent.last_move_target = target
            self.transition(SessionState.AWAITING_LANDING_ACK)
        elif command in (Command.MOVE, Command.MVSCAN):
            position = self.store.get_agent_position(self.name)
            if position is not None:
                ahead = position.ahead()
                self.store.release(self.agent.last_move_target, self.name)
                if self.store.in_bounds(ahead) and not self.store.try_reserve(ahead, self.name):
                    logger.warning("[%s] (%d,%d) is already reserved", self.name, *ahead)
                self.agent.last_move_target = ahead
        elif command == Command.CHARGE and self.agent.landed:
            self.transition(SessionState.CHARGING)

        logger.info("[%s] manual command => %s", self.name, command.value)
        await self.send(message.to_line())
        if command == Command.EXIT:
            self.terminate("exit sent by operator")
        return message

    # ----- planner control -----

    async def set_autonomous(self, enabled: bool) -> None:
        if self.agent.terminated:
            raise SessionTerminatedError(self.name)
        self.agent.autonomous = enabled
        logger.info("[%s] autonomous => %s", self.name, enabled)
        if enabled:
            self._start_planner()
        else:
            await self.stop_planner()

    def _start_planner(self) -> None:
        if self.agent.terminated or not self.agent.autonomous:
            return
        if self._planner_task is not None and not self._planner_task.done():
            return
        self.planner = Planner(self, self.store, self.settings)
        self._planner_task = asyncio.ensure_future(self.planner.run())
        self._planner_task.add_done_callback(self._on_planner_done)

    def _on_planner_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[%s] planner failed, autonomy disabled", self.name, exc_info=exc)
            self.agent.autonomous = False

    async def stop_planner(self) -> None:
        task = self._planner_task
        self._planner_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ----- inbound -----

    async def handle_line(self, line: str) -> None:
        message = protocol.decode(line)
        if message is None:
            return
        logger.debug("[%s] << %s", self.name, line.strip())
        await self.handle_message(message)

    async def handle_message(self, message: ProtocolMessage) -> None:
        handler = self._handlers.get(protocol.classify(message))
        if handler is None:
            logger.info("[%s] %s not handled from robot side", self.name, message.command.value)
        else:
            await handler(message)
        self._resolve_pending(message)

    async def _on_init(self, message: InitMessage) -> None:
        width, height = message.size.width, message.size.height
        self.store.set_world_size(width, height)
        logger.info("[%s] planet size => w=%d h=%d", self.name, width, height)
        if self.agent.state in (SessionState.CONNECTED, SessionState.AWAITING_ORBIT_ACK):
            self.transition(SessionState.ORBITING)
        if self.recorder is not None:
            self.recorder.planet_discovered(width, height, self.name)
        self._start_planner()

    async def _on_landed(self, message: MeasureMessage) -> None:
        self.agent.pending_measurement = message.measure
        logger.info("[%s] landed on %s, asking for position", self.name, message.measure.ground.value)
        await self.send(protocol.encode_getpos())

    async def _on_position(self, message: Union[PositionMessage, GetPosMessage]) -> None:
        position = message.position
        if position is None:
            logger.info("[%s] %s without POSITION ignored", self.name, message.command.value)
            return
        self.store.set_agent_position(self.name, position)

        measure = self.agent.pending_measurement
        if measure is not None:
            self.agent.pending_measurement = None
            await self._commit_measurement(position.x, position.y, measure)
            self.store.release(position.coord, self.name)
            self.store.release(self.agent.last_move_target, self.name)
            self.agent.last_move_target = None
            self.transition(SessionState.LANDED)
            logger.info("[%s] landing confirmed at (%d,%d) facing %s", self.name, position.x, position.y, position.direction.value)
            self._start_planner()
        self._persist_robot(position)

    async def _on_scaned(self, message: MeasureMessage) -> None:
        position = self.store.get_agent_position(self.name)
        if position is None:
            logger.warning("[%s] scan result without known position dropped", self.name)
            return
        x, y = position.ahead()
        await self._commit_measurement(x, y, message.measure)

    async def _on_moved(self, message: PositionMessage) -> None:
        await self._commit_move(message.position)

    async def _on_mvscaned(self, message: MvScanedMessage) -> None:
        current = self.store.get_agent_position(self.name)
        new_position = message.position
        if new_position is None and current is not None:
            x, y = current.ahead()
            new_position = Position(x=x, y=y, direction=current.direction)
        if new_position is None:
            logger.warning("[%s] mvscan result without known position dropped", self.name)
            return
        await self._commit_measurement(new_position.x, new_position.y, message.measure)
        await self._commit_move(new_position)

    async def _commit_move(self, position: Position) -> None:
        self.store.set_agent_position(self.name, position)
        self.store.release(self.agent.last_move_target, self.name)
        self.store.release(position.coord, self.name)
        self.agent.last_move_target = None
        if self.settings.simulate_energy and self.agent.drain_locally(self.settings.move_energy_cost):
            logger.debug("[%s] estimated energy => %d", self.name, self.agent.energy)
        self._persist_robot(position)

    async def _on_rotated(self, message: RotatedMessage) -> None:
        if not self.store.set_agent_direction(self.name, message.direction):
            logger.debug("[%s] rotated before landing, facing not tracked", self.name)

    async def _on_status(self, message: StatusMessage) -> None:
        status = message.status
        self.agent.apply_status(status.energy, status.temperature)
        self.agent.last_message = status.message
        logger.debug(
            "[%s] status => temp=%s, energy=%s, msg=%s",
            self.name,
            status.temperature,
            status.energy,
            status.message,
        )
        readings = status.readings()
        if readings:
            self.agent.component_health.update(readings)
            logger.info("[%s] component status => %s", self.name, readings)
        if message.command == Command.CHARGED and self.agent.state == SessionState.CHARGING:
            self.transition(SessionState.EXPLORING if self.planner_running else SessionState.LANDED)
        for event in status.events():
            await self._on_event(event)
        self._persist_robot()

    async def _on_event(self, event: str) -> None:
        if event in INFORMATIONAL_EVENTS:
            logger.info("[%s] event %s", self.name, event)
            return
        if event not in ("WARN_LOW_ENERGY", "STUCK_IN_MUD", "MOVE_STOP", "MOVE_DIRECTION_CHANGED"):
            logger.info("[%s] unrecognized status event %s", self.name, event)
            return
        if not self.agent.autonomous:
            logger.info("[%s] event %s (autonomy off, no reaction)", self.name, event)
            return

        if event == "WARN_LOW_ENERGY":
            if self.agent.state != SessionState.CHARGING:
                logger.info("[%s] low energy warning => charging", self.name)
                if self.agent.landed:
                    self.transition(SessionState.CHARGING)
                await self.send(protocol.encode_charge(self.settings.charge_duration_s))
        elif event == "STUCK_IN_MUD":
            rotation = Rotation.RIGHT if self.agent.stuck_rotation_toggle else Rotation.LEFT
            self.agent.stuck_rotation_toggle = not self.agent.stuck_rotation_toggle
            logger.info("[%s] stuck in mud => rotating %s", self.name, rotation.value)
            await self.send(protocol.encode_rotate(rotation))
        elif event == "MOVE_STOP":
            logger.info("[%s] move stopped => re-attempt", self.name)
            self.agent.needs_reattempt = True
            if Command.MOVED in self._pending_expect or Command.MVSCANED in self._pending_expect:
                self.interrupt_pending()
        elif event == "MOVE_DIRECTION_CHANGED":
            logger.info("[%s] direction changed => resync position", self.name)
            await self.send(protocol.encode_getpos())

    async def _on_crashed(self, message: ProtocolMessage) -> None:
        target = self.agent.last_move_target
        if target is not None:
            x, y = target
            logger.warning("[%s] CRASHED moving into (%d,%d) => marking NICHTS", self.name, x, y)
            await self._commit_measurement(x, y, Measure(ground=Ground.NICHTS))
            self.store.release(target, self.name)
            self.agent.last_move_target = None
        else:
            logger.warning("[%s] CRASHED", self.name)
        self.terminate("robot crashed")

    async def _on_exit(self, message: ProtocolMessage) -> None:
        logger.info("[%s] robot requested exit", self.name)
        self.terminate("robot exited")

    async def _on_error(self, message: ProtocolMessage) -> None:
        logger.warning("[%s] ERROR => %s", self.name, message.model_dump(by_alias=True))
        self.terminate("robot reported an error")

    async def _on_unknown(self, message: UnknownMessage) -> None:
        logger.warning("[%s] ignoring message (%s): %s", self.name, message.reason, message.raw)

    # ----- shared state / persistence -----

    async def _commit_measurement(self, x: int, y: int, measure: Measure) -> None:
        if not self.store.record_measurement(x, y, measure):
            return
        logger.debug("[%s] measure => (%d,%d) => %s %.1f", self.name, x, y, measure.ground.value, measure.temperature)
        if self.recorder is not None:
            self.recorder.field_measured(self.name, x, y, measure)

    def _persist_robot(self, position: Optional[Position] = None) -> None:
        if self.recorder is None:
            return
        self.recorder.robot_updated(
            self.name,
            position=position,
            energy=self.agent.energy,
            temperature=self.agent.work_temp,
            state=self.agent.state.value,
        )

    @property
    def planner_running(self) -> bool:
        return self._planner_task is not None and not self._planner_task.done()

    def summary(self) -> SessionSummary:
        position = self.store.get_agent_position(self.name)
        return SessionSummary(
            name=self.name,
            autonomous=self.agent.autonomous,
            state=self.agent.state.value,
            energy=self.agent.energy,
            work_temp=self.agent.work_temp,
            position=position.model_dump(mode="json") if position is not None else None,
            frontier=len(self.agent.frontier),
            component_health=dict(self.agent.component_health),
        )
