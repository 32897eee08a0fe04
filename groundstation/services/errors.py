class GroundStationError(Exception):
    """Base for errors surfaced to operator-facing callers."""

    status_code = 500


class SessionNotFoundError(GroundStationError):
    status_code = 404

    def __init__(self, name: str):
        super().__init__(f"no robot session named {name!r}")
        self.name = name


class SessionTerminatedError(GroundStationError):
    status_code = 409

    def __init__(self, name: str):
        super().__init__(f"robot session {name!r} has terminated")
        self.name = name


class InvalidCommandError(GroundStationError):
    status_code = 400
