from .field_repository import FieldRepository
from .planet_repository import PlanetRepository
from .robot_repository import RobotRepository

__all__ = ["FieldRepository", "PlanetRepository", "RobotRepository"]
