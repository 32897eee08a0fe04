import json

import pytest
from tornado import httpclient, httpserver, testing

from groundstation.handlers.robot_session import RobotSession
from groundstation.models import Direction, Ground, Measure, Position, SessionState
from groundstation.services.station import GroundStation
from groundstation.settings import StationSettings


class FakeStream:
    def __init__(self):
        self.sent = []
        self._closed = False

    async def write(self, data: bytes):
        self.sent.append(json.loads(data.decode("utf-8")))

    def closed(self):
        return self._closed

    def close(self):
        self._closed = True


def serve_station(station):
    import groundstation.main as main

    server = httpserver.HTTPServer(main.make_app(station))
    sock, port = testing.bind_unused_port()
    server.add_socket(sock)
    return server, f"http://127.0.0.1:{port}"


def add_session(station, name="Robot-api", state=SessionState.LANDED):
    stream = FakeStream()
    session = RobotSession(stream, name, station.store, station.settings)
    session.agent.state = state
    station.store.register_agent(name, session)
    return session, stream


async def fetch(url, method="GET", body=None):
    client = httpclient.AsyncHTTPClient()
    resp = await client.fetch(url, method=method, body=body, raise_error=False)
    return resp.code, json.loads(resp.body)


@pytest.mark.asyncio
async def test_health_stats_and_docs():
    station = GroundStation(StationSettings())
    station.store.set_world_size(2, 2)
    station.store.record_measurement(1, 0, Measure(ground=Ground.WASSER, temperature=4.0))
    server, base = serve_station(station)

    try:
        assert await fetch(f"{base}/health") == (200, {"status": "ok"})

        code, stats = await fetch(f"{base}/stats")
        assert code == 200
        assert stats == {"explored": 1, "total": 4, "width": 2, "height": 2, "complete": False}

        code, fields = await fetch(f"{base}/fields")
        assert fields == {"fields": [{"x": 1, "y": 0, "ground": "WASSER", "temperature": 4.0}]}

        code, docs = await fetch(f"{base}/docs")
        assert code == 200
        assert docs["robot_endpoint"]["port"] == 9000
        assert "POSITION" in docs["outbound_messages"]["land"]["properties"]
        assert docs["examples"]["robot_session"][0]["line"]["CMD"] == "orbit"
    finally:
        server.stop()


@pytest.mark.asyncio
async def test_session_listing_and_lookup():
    station = GroundStation(StationSettings())
    session, _ = add_session(station)
    station.store.set_agent_position(session.name, Position(x=1, y=1, direction=Direction.WEST))
    server, base = serve_station(station)

    try:
        code, body = await fetch(f"{base}/sessions")
        assert code == 200
        assert [s["name"] for s in body["sessions"]] == ["Robot-api"]

        code, summary = await fetch(f"{base}/sessions/Robot-api")
        assert summary["state"] == "landed"
        assert summary["position"] == {"x": 1, "y": 1, "direction": "WEST"}

        code, robots = await fetch(f"{base}/robots")
        assert robots == {"robots": [{"name": "Robot-api", "x": 1, "y": 1, "direction": "WEST"}]}

        code, body = await fetch(f"{base}/sessions/nobody")
        assert code == 404
        assert "nobody" in body["detail"]
    finally:
        server.stop()


@pytest.mark.asyncio
async def test_manual_commands_and_autonomy():
    station = GroundStation(StationSettings())
    session, stream = add_session(station)
    server, base = serve_station(station)

    try:
        code, body = await fetch(
            f"{base}/sessions/Robot-api/command", method="POST", body='{"CMD":"rotate","ROTATION":"RIGHT"}'
        )
        assert code == 200
        assert body == {"sent": {"CMD": "rotate", "ROTATION": "RIGHT"}}
        assert stream.sent == [{"CMD": "rotate", "ROTATION": "RIGHT"}]

        code, _ = await fetch(f"{base}/sessions/Robot-api/command", method="POST", body="{not json")
        assert code == 400

        code, summary = await fetch(
            f"{base}/sessions/Robot-api/autonomy", method="PUT", body=json.dumps({"autonomous": False})
        )
        assert code == 200
        assert summary["autonomous"] is False

        code, _ = await fetch(f"{base}/sessions/Robot-api/autonomy", method="PUT", body='{"autonomous": "maybe"}')
        assert code == 400

        session.terminate("test")
        code, _ = await fetch(f"{base}/sessions/Robot-api/command", method="POST", body='{"CMD":"getpos"}')
        assert code == 409
        code, _ = await fetch(
            f"{base}/sessions/Robot-api/autonomy", method="PUT", body=json.dumps({"autonomous": True})
        )
        assert code == 409
    finally:
        server.stop()
