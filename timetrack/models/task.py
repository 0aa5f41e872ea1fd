from sqlalchemy import Column, DateTime, String, func

from timetrack.database import Base


class Task(Base):
    """Minimal task row; task lifecycle is managed outside this service."""

    __tablename__ = "tasks"

    id = Column(String, primary_key=True, index=True)
    title = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
