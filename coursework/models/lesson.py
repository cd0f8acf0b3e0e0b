"""Lesson ORM model."""

import json
from datetime import datetime, timezone

from sqlalchemy import Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coursework.database import Base


class Lesson(Base):
    __tablename__ = "lessons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("courses.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    learning_objectives_json: Mapped[str] = mapped_column(
        "learning_objectives", Text, default="[]"
    )
    join_code: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    course: Mapped["Course"] = relationship("Course", back_populates="lessons")
    activities: Mapped[list["Activity"]] = relationship(
        "Activity", back_populates="lesson"
    )

    @property
    def learning_objectives(self) -> list[str]:
        return json.loads(self.learning_objectives_json or "[]")

    @learning_objectives.setter
    def learning_objectives(self, value: list[str]) -> None:
        self.learning_objectives_json = json.dumps(list(value))
