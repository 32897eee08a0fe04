from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SessionSummary(BaseModel):
    name: str
    autonomous: bool
    state: str
    energy: int = Field(..., description="Last known battery level in percent.")
    work_temp: float = Field(..., description="Last known working temperature in °C.")
    position: Optional[Dict[str, Any]] = Field(default=None, description="Committed position, if landed.")
    frontier: int = Field(default=0, description="Cells still queued for this robot.")
    component_health: Dict[str, str] = Field(default_factory=dict)


class AutonomyRequest(BaseModel):
    autonomous: bool


class ExplorationStats(BaseModel):
    explored: int
    total: int
    width: int
    height: int
    complete: bool


class FieldSnapshot(BaseModel):
    x: int
    y: int
    ground: str
    temperature: float


class RobotSnapshot(BaseModel):
    name: str
    x: int
    y: int
    direction: str


class SessionList(BaseModel):
    sessions: List[SessionSummary]
