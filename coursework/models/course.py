"""Course ORM model."""

import json
from datetime import datetime, timezone

from sqlalchemy import Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coursework.database import Base


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    teacher_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String, nullable=False)
    subject: Mapped[str | None] = mapped_column(String, nullable=True)
    grade_level: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    learning_objectives_json: Mapped[str] = mapped_column(
        "learning_objectives", Text, default="[]"
    )
    join_code: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    teacher: Mapped["User"] = relationship("User", back_populates="courses")
    enrollments: Mapped[list["Enrollment"]] = relationship(
        "Enrollment", back_populates="course"
    )
    lessons: Mapped[list["Lesson"]] = relationship(
        "Lesson", back_populates="course", order_by="Lesson.position"
    )

    @property
    def learning_objectives(self) -> list[str]:
        return json.loads(self.learning_objectives_json or "[]")

    @learning_objectives.setter
    def learning_objectives(self, value: list[str]) -> None:
        self.learning_objectives_json = json.dumps(list(value))
