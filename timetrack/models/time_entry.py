from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey, String, false, func
from sqlalchemy.schema import Index

from timetrack.database import Base


class TimeEntry(Base):
    __tablename__ = "time_entries"

    id = Column(String, primary_key=True, index=True)

    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)

    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)

    is_paused = Column(Boolean, nullable=False, default=False, server_default=false())
    last_resumed_at = Column(DateTime(timezone=True), nullable=True)
    paused_at = Column(DateTime(timezone=True), nullable=True)

    # seconds
    total_paused_duration = Column(Float, nullable=False, default=0.0, server_default="0")
    duration = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("total_paused_duration >= 0", name="ck_time_entries_total_paused_nonnegative"),
        CheckConstraint("duration IS NULL OR duration >= 0", name="ck_time_entries_duration_nonnegative"),
        Index("ix_time_entries_end_time_start_time", "end_time", "start_time"),
    )
