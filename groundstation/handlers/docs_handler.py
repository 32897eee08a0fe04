import tornado.web

from groundstation.models import AutonomyRequest, ExplorationStats, SchemaDocument, SessionSummary
from groundstation.models.messages import (
    BareMessage,
    ChargeCommand,
    InitMessage,
    LandCommand,
    MeasureMessage,
    MvScanedMessage,
    OrbitCommand,
    PositionMessage,
    RotateCommand,
    RotatedMessage,
    StatusMessage,
)


class DocsHandler(tornado.web.RequestHandler):
    def initialize(self, station=None):
        self.station = station

    def get(self):
        settings = self.station.settings if self.station is not None else None

        robot_session_example = [
            {"to": "robot", "line": {"CMD": "orbit", "NAME": "Robot-1a2b3c4d"}},
            {"to": "station", "line": {"CMD": "init", "SIZE": {"WIDTH": 4, "HEIGHT": 1}}},
            {"to": "robot", "line": {"CMD": "land", "POSITION": {"X": 0, "Y": 0, "DIRECTION": "EAST"}}},
            {"to": "station", "line": {"CMD": "landed", "MEASURE": {"GROUND": "SAND", "TEMP": 21.5}}},
            {"to": "robot", "line": {"CMD": "getpos"}},
            {"to": "station", "line": {"CMD": "pos", "POSITION": {"X": 0, "Y": 0, "DIRECTION": "EAST"}}},
            {"to": "robot", "line": {"CMD": "mvscan"}},
            {
                "to": "station",
                "line": {
                    "CMD": "mvscaned",
                    "MEASURE": {"GROUND": "GEROELL", "TEMP": 19.0},
                    "POSITION": {"X": 1, "Y": 0, "DIRECTION": "EAST"},
                },
            },
            {"to": "robot", "line": {"CMD": "exit"}},
        ]

        schema = SchemaDocument(
            robot_endpoint={
                "transport": "tcp",
                "framing": "one JSON object per line, UTF-8, terminated by \\n",
                "port": settings.station_port if settings is not None else 9000,
            },
            control_endpoints={
                "GET /health": "liveness",
                "GET /docs": "this document",
                "GET /sessions": "summaries of connected robots",
                "GET /sessions/<name>": "one robot summary",
                "PUT /sessions/<name>/autonomy": "toggle the planner, body AutonomyRequest",
                "POST /sessions/<name>/command": "send one raw protocol line to the robot",
                "GET /stats": "exploration progress",
                "GET /fields": "all recorded measurements",
                "GET /robots": "committed robot positions",
            },
            inbound_messages={
                "init": InitMessage.model_json_schema(),
                "landed/scaned": MeasureMessage.model_json_schema(),
                "moved/pos": PositionMessage.model_json_schema(),
                "mvscaned": MvScanedMessage.model_json_schema(),
                "rotated": RotatedMessage.model_json_schema(),
                "status/charged": StatusMessage.model_json_schema(),
                "crashed/exit/error": BareMessage.model_json_schema(),
            },
            outbound_messages={
                "orbit": OrbitCommand.model_json_schema(),
                "land": LandCommand.model_json_schema(),
                "rotate": RotateCommand.model_json_schema(),
                "charge": ChargeCommand.model_json_schema(),
                "move/scan/mvscan/getpos/exit": BareMessage.model_json_schema(),
            },
            examples={
                "robot_session": robot_session_example,
                "autonomy_request": AutonomyRequest(autonomous=True).model_dump(),
                "session_summary": SessionSummary.model_json_schema(),
                "exploration_stats": ExplorationStats.model_json_schema(),
            },
            notes=[
                "CMD values are matched case-insensitively; the station sends them lowercase.",
                "Unparseable lines are logged and ignored, they never close the session.",
                "Coordinates are zero-based, y grows towards SOUTH.",
                "A CRASHED reply marks the cell the robot was moving into as NICHTS.",
            ],
        )
        self.set_header("Content-Type", "application/json")
        self.write(schema.model_dump(mode="json"))
