"""ObjectiveMastery ORM model."""

from datetime import datetime

from sqlalchemy import Integer, Float, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from coursework.database import Base


class ObjectiveMastery(Base):
    __tablename__ = "objective_mastery"
    __table_args__ = (
        UniqueConstraint(
            "student_id", "course_id", "learning_objective",
            name="uq_mastery_student_course_objective",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    course_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("courses.id"), nullable=False
    )
    learning_objective: Mapped[str] = mapped_column(String, nullable=False)
    mastery_score: Mapped[float] = mapped_column(Float, default=0.0)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_assessed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
