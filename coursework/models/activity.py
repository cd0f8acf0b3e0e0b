"""Activity ORM model."""

import json
from datetime import datetime, timezone

from sqlalchemy import Boolean, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coursework.database import Base

ACTIVITY_TYPES = (
    "ai_chat",
    "quiz",
    "reading",
    "pdf",
    "video",
    "interactive",
    "collaborative",
    "custom",
    "assignment",
)


class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("courses.id"), nullable=False
    )
    lesson_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("lessons.id"), nullable=True
    )
    activity_type: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_json: Mapped[str] = mapped_column("content", Text, default="{}")
    points: Mapped[int] = mapped_column(Integer, default=0)
    estimated_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    assign_to_all: Mapped[bool] = mapped_column(Boolean, default=True)
    assigned_student_ids_json: Mapped[str] = mapped_column(
        "assigned_student_ids", Text, default="[]"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    lesson: Mapped["Lesson"] = relationship("Lesson", back_populates="activities")

    @property
    def content(self) -> dict:
        return json.loads(self.content_json or "{}")

    @content.setter
    def content(self, value: dict) -> None:
        self.content_json = json.dumps(value)

    @property
    def assigned_student_ids(self) -> list[int]:
        return json.loads(self.assigned_student_ids_json or "[]")

    @assigned_student_ids.setter
    def assigned_student_ids(self, value: list[int]) -> None:
        self.assigned_student_ids_json = json.dumps(sorted(set(value)))
