import json
from typing import Any, Dict

import tornado.web
from pydantic import ValidationError

from groundstation.models import AutonomyRequest, SessionList
from groundstation.services.errors import GroundStationError


class StationHandler(tornado.web.RequestHandler):
    """Base for control endpoints; errors are returned as ``{"detail": ...}``."""

    def initialize(self, station):
        self.station = station

    def write_json(self, payload: Any, status: int = 200) -> None:
        self.set_status(status)
        self.set_header("Content-Type", "application/json")
        self.finish(json.dumps(payload))

    def write_failure(self, exc: GroundStationError) -> None:
        self.write_json({"detail": str(exc)}, status=exc.status_code)

    def write_error(self, status_code: int, **kwargs: Any) -> None:
        self.set_header("Content-Type", "application/json")
        self.finish(json.dumps({"detail": self._reason}))


class HealthHandler(StationHandler):
    def get(self):
        self.write_json({"status": "ok"})


class SessionsHandler(StationHandler):
    def get(self):
        self.write_json(SessionList(sessions=self.station.list_sessions()).model_dump(mode="json"))


class SessionHandler(StationHandler):
    def get(self, name: str):
        try:
            session = self.station.get_session(name)
        except GroundStationError as exc:
            self.write_failure(exc)
            return
        self.write_json(session.summary().model_dump(mode="json"))


class AutonomyHandler(StationHandler):
    async def put(self, name: str):
        try:
            body = AutonomyRequest.model_validate_json(self.request.body or b"{}")
        except ValidationError as exc:
            self.write_json({"detail": json.loads(exc.json(include_url=False))}, status=400)
            return
        try:
            summary = await self.station.set_autonomous(name, body.autonomous)
        except GroundStationError as exc:
            self.write_failure(exc)
            return
        self.write_json(summary.model_dump(mode="json"))


class CommandHandler(StationHandler):
    """Forwards one raw protocol line, e.g. ``{"CMD":"rotate","ROTATION":"LEFT"}``."""

    async def post(self, name: str):
        line = self.request.body.decode("utf-8", errors="replace")
        try:
            message = await self.station.send_manual_command(name, line)
        except GroundStationError as exc:
            self.write_failure(exc)
            return
        self.write_json({"sent": json.loads(message.to_line())})


class StatsHandler(StationHandler):
    def get(self):
        self.write_json(self.station.exploration_stats().model_dump(mode="json"))


class FieldsHandler(StationHandler):
    def get(self):
        fields: Dict[str, Any] = {"fields": [f.model_dump(mode="json") for f in self.station.fields_snapshot()]}
        self.write_json(fields)


class RobotsHandler(StationHandler):
    def get(self):
        self.write_json({"robots": [r.model_dump(mode="json") for r in self.station.positions_snapshot()]})
