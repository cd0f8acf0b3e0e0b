"""ActivitySubmission ORM model - one progress record per (student, activity)."""

import json
from datetime import datetime, timezone

from sqlalchemy import Integer, Float, String, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from coursework.database import Base

STATUSES = ("not_started", "in_progress", "submitted", "abandoned", "graded")


class ActivitySubmission(Base):
    __tablename__ = "activity_submissions"
    __table_args__ = (
        UniqueConstraint("student_id", "activity_id", name="uq_submission_student_activity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    activity_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("activities.id"), nullable=False
    )
    course_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("courses.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String, default="not_started")
    progress_ratio: Mapped[float] = mapped_column(Float, default=0.0)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    points_earned: Mapped[int] = mapped_column(Integer, default=0)
    attempt_state_json: Mapped[str] = mapped_column("attempt_state", Text, default="{}")
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    graded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def attempt_state(self) -> dict:
        return json.loads(self.attempt_state_json or "{}")

    @attempt_state.setter
    def attempt_state(self, value: dict) -> None:
        self.attempt_state_json = json.dumps(value)

    @property
    def is_complete(self) -> bool:
        return self.status in ("submitted", "graded")
