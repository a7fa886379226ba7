# cpops/models/status.py
from sqlalchemy import String, ForeignKey, Integer, Boolean, text
from sqlalchemy.orm import Mapped, mapped_column
from ..db.base import Base

class Status(Base):
    __tablename__ = "statuses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    color: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'#3b82f6'"))
    # a team holding a closing status is finished with the intervention
    is_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
