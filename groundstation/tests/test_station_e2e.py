import asyncio
import json

import pytest
from tornado import testing
from tornado.iostream import StreamClosedError
from tornado.tcpclient import TCPClient

from groundstation.models import Direction, Ground, Rotation
from groundstation.services.station import GroundStation
from groundstation.settings import StationSettings


class PlanetSurface:
    """Ground truth shared by simulated robots; flags any two robots in one cell."""

    def __init__(self, rows):
        self.rows = rows
        self.width = len(rows[0])
        self.height = len(rows)
        self.occupied = {}
        self.collisions = []

    def ground(self, x, y):
        return self.rows[y][x]

    def passable(self, x, y):
        return 0 <= x < self.width and 0 <= y < self.height and self.ground(x, y) != Ground.NICHTS.value

    def enter(self, robot, cell):
        holder = self.occupied.get(cell)
        if holder is not None and holder != robot:
            self.collisions.append((robot, holder, cell))
        self.leave(robot)
        self.occupied[cell] = robot

    def leave(self, robot):
        for cell, holder in list(self.occupied.items()):
            if holder == robot:
                del self.occupied[cell]


class SimulatedRobot:
    """Speaks the robot side of the line protocol over a real TCP connection."""

    def __init__(self, surface: PlanetSurface, port: int):
        self.surface = surface
        self.port = port
        self.name = None
        self.x = self.y = None
        self.direction = None
        self.received = []
        self.done = False

    def position(self):
        return {"X": self.x, "Y": self.y, "DIRECTION": self.direction.value}

    def measure(self):
        return {"GROUND": self.surface.ground(self.x, self.y), "TEMP": 20.0}

    def react(self, msg):
        cmd = msg["CMD"]
        if cmd == "orbit":
            self.name = msg["NAME"]
            return [{"CMD": "init", "SIZE": {"WIDTH": self.surface.width, "HEIGHT": self.surface.height}}]
        if cmd == "land":
            pos = msg["POSITION"]
            if not self.surface.passable(pos["X"], pos["Y"]):
                self.done = True
                return [{"CMD": "crashed"}]
            self.x, self.y, self.direction = pos["X"], pos["Y"], Direction(pos["DIRECTION"])
            self.surface.enter(self.name, (self.x, self.y))
            return [{"CMD": "landed", "MEASURE": self.measure()}]
        if cmd == "getpos":
            return [{"CMD": "pos", "POSITION": self.position()}]
        if cmd == "rotate":
            self.direction = self.direction.turned(Rotation(msg["ROTATION"]))
            return [{"CMD": "rotated", "DIRECTION": self.direction.value}]
        if cmd in ("move", "mvscan"):
            dx, dy = self.direction.offset
            x, y = self.x + dx, self.y + dy
            if not self.surface.passable(x, y):
                self.done = True
                return [{"CMD": "crashed"}]
            self.x, self.y = x, y
            self.surface.enter(self.name, (x, y))
            if cmd == "move":
                return [{"CMD": "moved", "POSITION": self.position()}]
            return [{"CMD": "mvscaned", "MEASURE": self.measure(), "POSITION": self.position()}]
        if cmd == "scan":
            dx, dy = self.direction.offset
            return [{"CMD": "scaned", "MEASURE": {"GROUND": self.surface.ground(self.x + dx, self.y + dy)}}]
        if cmd == "charge":
            return [{"CMD": "charged", "STATUS": {"ENERGY": 100, "TEMP": 20.0, "MESSAGE": "CHARGE_END"}}]
        if cmd == "exit":
            self.done = True
        return []

    async def run(self):
        stream = await TCPClient().connect("127.0.0.1", self.port)
        try:
            while not self.done:
                line = await stream.read_until(b"\n")
                msg = json.loads(line)
                self.received.append(msg["CMD"])
                for reply in self.react(msg):
                    await stream.write((json.dumps(reply) + "\n").encode("utf-8"))
        except StreamClosedError:
            pass
        finally:
            self.surface.leave(self.name)
            stream.close()


def start_station(**overrides):
    settings = StationSettings(
        auto_pilot=True,
        ack_timeout_s=2.0,
        read_timeout_s=0.05,
        poll_interval_s=0.01,
        **overrides,
    )
    station = GroundStation(settings)
    sock, port = testing.bind_unused_port()
    station.server.add_socket(sock)
    return station, port


async def wait_until_idle(station, timeout=10.0):
    async def idle():
        while station.store.agents():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(idle(), timeout)


@pytest.mark.asyncio
async def test_single_robot_explores_strip_and_exits():
    surface = PlanetSurface([["SAND", "SAND", "GEROELL", "SAND"]])
    station, port = start_station()
    robot = SimulatedRobot(surface, port)

    try:
        await asyncio.wait_for(robot.run(), 10.0)
        await wait_until_idle(station)

        assert robot.received == ["orbit", "land", "getpos", "mvscan", "mvscan", "mvscan", "exit"]
        assert station.exploration_stats().complete
        assert station.store.measurement_at((2, 0)).ground == Ground.GEROELL
        assert station.store.reservations_snapshot() == {}
    finally:
        await station.shutdown()


@pytest.mark.asyncio
async def test_crash_into_unknown_cell_marks_it_impassable():
    surface = PlanetSurface([["SAND", "NICHTS", "SAND"]])
    station, port = start_station()
    robot = SimulatedRobot(surface, port)

    try:
        await asyncio.wait_for(robot.run(), 10.0)
        await wait_until_idle(station)

        assert robot.received[-1] == "mvscan"
        assert "exit" not in robot.received
        assert station.store.measurement_at((1, 0)).ground == Ground.NICHTS
        assert not station.store.is_reserved((1, 0))
    finally:
        await station.shutdown()


@pytest.mark.asyncio
async def test_two_robots_share_the_map_without_collisions():
    surface = PlanetSurface([["SAND"] * 3 for _ in range(3)])
    station, port = start_station()
    robots = [SimulatedRobot(surface, port), SimulatedRobot(surface, port)]

    try:
        await asyncio.wait_for(asyncio.gather(*(robot.run() for robot in robots)), 20.0)
        await wait_until_idle(station)

        assert surface.collisions == []
        assert all(robot.received[-1] == "exit" for robot in robots)
        assert station.exploration_stats().complete
        assert station.store.reservations_snapshot() == {}
    finally:
        await station.shutdown()


@pytest.mark.asyncio
async def test_robot_without_autonomy_waits_in_orbit():
    surface = PlanetSurface([["SAND", "SAND"]])
    station, port = start_station()
    station.settings.auto_pilot = False
    robot = SimulatedRobot(surface, port)
    task = asyncio.ensure_future(robot.run())

    try:
        while not station.store.world_size_known():
            await asyncio.sleep(0.01)
        [session] = station.sessions()
        await asyncio.sleep(0.1)

        assert robot.received == ["orbit"]
        assert session.state.value == "orbiting"

        await station.set_autonomous(session.name, True)
        await asyncio.wait_for(task, 10.0)

        assert robot.received[-1] == "exit"
        assert station.exploration_stats().complete
    finally:
        task.cancel()
        await station.shutdown()


class UnresponsiveMoverRobot(SimulatedRobot):
    """Lands normally but never acknowledges a move."""

    def react(self, msg):
        if msg["CMD"] in ("move", "mvscan"):
            return []
        return super().react(msg)


@pytest.mark.asyncio
async def test_shutdown_stops_planners_before_closing_sockets():
    surface = PlanetSurface([["SAND", "SAND"]])
    station, port = start_station()
    robot = UnresponsiveMoverRobot(surface, port)
    task = asyncio.ensure_future(robot.run())

    async def move_in_flight():
        while "mvscan" not in robot.received:
            await asyncio.sleep(0.01)

    try:
        await asyncio.wait_for(move_in_flight(), 5.0)
        [session] = station.sessions()
        assert session.planner_running
        assert station.store.reservation_owner((1, 0)) == session.name

        order = []
        stop_planner, close_stream = session.stop_planner, session.close_stream

        async def recording_stop_planner():
            order.append("stop_planner")
            await stop_planner()

        def recording_close_stream():
            order.append(("close_stream", session.planner_running))
            close_stream()

        session.stop_planner = recording_stop_planner
        session.close_stream = recording_close_stream

        await station.shutdown()
        await asyncio.wait_for(task, 2.0)

        assert order[:2] == ["stop_planner", ("close_stream", False)]
        assert session.state.value == "terminated"
        assert station.store.reservations_snapshot() == {}
        assert station.store.agents() == []
        assert robot.received[-1] == "mvscan"
    finally:
        task.cancel()
