# cpops/services/types.py
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Actor:
    """Who performed an action, as recorded in the action log."""
    user_id: Optional[int] = None
    username: Optional[str] = None


@dataclass(frozen=True)
class TeamLink:
    intervention_id: int
    team_id: int
    status_id: Optional[int]
    status_name: Optional[str] = None
    status_color: Optional[str] = None
    # null status counts as not closed
    is_closed: bool = False


@dataclass(frozen=True)
class HistoryRecord:
    id: int
    intervention_id: int
    team_id: int
    status_id: Optional[int]
    started_at: datetime
    ended_at: Optional[datetime]


@dataclass
class TeamView:
    team_id: int
    name: str
    type: str
    status_id: Optional[int]
    status_name: Optional[str]
    status_color: Optional[str]
    status_is_closed: bool
    status_started_at: Optional[datetime]
    status_duration_seconds: Optional[int]


@dataclass
class StatusDuration:
    status_name: str
    total_seconds: int


@dataclass
class InterventionView:
    id: int
    event_id: int
    intervention_number: int
    title: str
    location: Optional[str]
    description: Optional[str]
    created_at: datetime
    closed_at: Optional[datetime]
    open_seconds: int
    teams: List[TeamView] = field(default_factory=list)
    status_durations: List[StatusDuration] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["created_at"] = self.created_at.isoformat()
        d["closed_at"] = self.closed_at.isoformat() if self.closed_at else None
        for t in d["teams"]:
            if t["status_started_at"] is not None:
                t["status_started_at"] = t["status_started_at"].isoformat()
        return d
