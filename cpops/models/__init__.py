# cpops/models/__init__.py

# Event and its catalog
from .event import Event
from .status import Status
from .team_type import TeamType
from .team import Team
from .team_member import TeamMember

# Interventions, team-status links and their history
from .intervention import Intervention
from .intervention_team import InterventionTeam
from .status_history import StatusHistory

# Chat and audit trail
from .intervention_message import InterventionMessage
from .action_log import ActionLog


def register_models():
    return [
        Event,
        Status,
        TeamType,
        Team,
        TeamMember,
        Intervention,
        InterventionTeam,
        StatusHistory,
        InterventionMessage,
        ActionLog,
    ]

__all__ = [
    "Event", "Status", "TeamType", "Team", "TeamMember",
    "Intervention", "InterventionTeam", "StatusHistory",
    "InterventionMessage", "ActionLog",
    "register_models",
]
