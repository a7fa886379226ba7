# cpops/models/intervention_team.py
from sqlalchemy import ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column
from ..db.base import Base

class InterventionTeam(Base):
    """Team-status link: the current status of one team within one intervention."""
    __tablename__ = "intervention_teams"

    intervention_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("interventions.id", ondelete="CASCADE"), primary_key=True
    )
    team_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True
    )
    # nulled or reassigned explicitly before a status is deleted
    status_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("statuses.id"), nullable=True
    )
