# cpops/models/status_history.py
from datetime import datetime
from sqlalchemy import ForeignKey, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column
from ..db.base import Base
from ..db.types import UTCDateTime

class StatusHistory(Base):
    """
    One interval [started_at, ended_at) during which an (intervention, team)
    pair held a status. Append-only; ended_at is set once.
    """
    __tablename__ = "intervention_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    intervention_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("interventions.id", ondelete="CASCADE"), nullable=False
    )
    team_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    # no FK: deleting a status must not rewrite closed intervals
    status_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_status_history_pair", "intervention_id", "team_id"),
    )
