"""Row builders and request helpers shared by the tests."""

from sqlalchemy.ext.asyncio import AsyncSession

from coursework.models import Activity, Course, Enrollment, Lesson, User


def headers_for(user: User) -> dict[str, str]:
    """Identity proxy header for a user."""
    return {"x-authenticated-user-email": user.email}


async def make_user(db: AsyncSession, email: str, name: str, role: str = "student") -> User:
    user = User(email=email, name=name, role=role)
    db.add(user)
    await db.commit()
    return user


async def enroll(db: AsyncSession, student: User, course: Course) -> Enrollment:
    enrollment = Enrollment(student_id=student.id, course_id=course.id, progress_percent=0.0)
    db.add(enrollment)
    await db.commit()
    return enrollment


async def make_activity(
    db: AsyncSession,
    course: Course,
    activity_type: str,
    *,
    points: int = 10,
    content: dict | None = None,
    lesson: Lesson | None = None,
    student_ids: list[int] | None = None,
    title: str | None = None,
) -> Activity:
    """Create an activity targeted at everyone, or at ``student_ids`` when given."""
    activity = Activity(
        course_id=course.id,
        lesson_id=lesson.id if lesson else None,
        activity_type=activity_type,
        title=title or f"{activity_type.title()} activity",
        points=points,
        assign_to_all=student_ids is None,
    )
    activity.content = content or {}
    activity.assigned_student_ids = student_ids or []
    db.add(activity)
    await db.commit()
    return activity
