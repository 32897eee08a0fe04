import asyncio
import os
import signal

import logging

import tornado.web

from groundstation.db.context import DBContext
from groundstation.handlers import (
    AutonomyHandler,
    CommandHandler,
    DocsHandler,
    FieldsHandler,
    HealthHandler,
    RobotsHandler,
    SessionHandler,
    SessionsHandler,
    StatsHandler,
)
from groundstation.repositories import FieldRepository, PlanetRepository, RobotRepository
from groundstation.services.recorder import ExplorationRecorder
from groundstation.services.station import GroundStation
from groundstation.settings import StationSettings


def make_station(settings: StationSettings) -> GroundStation:
    recorder = None
    db_context = None
    if settings.mongodb_url:
        db_context = DBContext(settings.mongodb_url)
        recorder = ExplorationRecorder(
            PlanetRepository(db_context),
            FieldRepository(db_context),
            RobotRepository(db_context),
        )
    return GroundStation(settings, recorder=recorder, db_context=db_context)


def make_app(station: GroundStation) -> tornado.web.Application:
    deps = dict(station=station)
    return tornado.web.Application(
        [
            (r"/health", HealthHandler, deps),
            (r"/docs", DocsHandler, deps),
            (r"/sessions", SessionsHandler, deps),
            (r"/sessions/([^/]+)", SessionHandler, deps),
            (r"/sessions/([^/]+)/autonomy", AutonomyHandler, deps),
            (r"/sessions/([^/]+)/command", CommandHandler, deps),
            (r"/stats", StatsHandler, deps),
            (r"/fields", FieldsHandler, deps),
            (r"/robots", RobotsHandler, deps),
        ]
    )


def setup_logger(name, level="INFO"):
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    return logger


async def serve(settings: StationSettings) -> int:
    logger = setup_logger("groundstation", settings.log_level)
    logger.info(f"Started ground station process {os.getpid()}")
    station = make_station(settings)
    app = make_app(station)
    try:
        station.listen()
        http_server = app.listen(port=settings.http_port, address=settings.http_address)
    except OSError as exc:
        logger.error(f"Could not bind listening sockets: {exc}")
        await station.shutdown()
        return 1
    logger.info(
        f"Control API running on http://{settings.http_address}:{settings.http_port} (Press Ctrl+C to quit)"
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    await stop.wait()

    http_server.stop()
    await station.shutdown()
    logger.info("Ground station stopped.")
    return 0


def main() -> None:
    settings = StationSettings.from_env()
    raise SystemExit(asyncio.run(serve(settings)))


if __name__ == "__main__":
    main()
