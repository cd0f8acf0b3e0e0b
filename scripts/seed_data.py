"""Seed the database with a demo teacher, course, lessons and one activity of each kind.

Usage: python scripts/seed_data.py
"""

import asyncio
import sys
from pathlib import Path

# Ensure project root is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy import select

from coursework.config import settings
from coursework.database import async_session, init_db
from coursework.models import Activity, Course, Lesson, User
from coursework.services.enrollment import generate_join_code

DEMO_TEACHER = {"email": "teacher@example.com", "name": "Demo Teacher", "role": "teacher"}

DEMO_COURSE = {
    "title": "Fractions and Decimals",
    "subject": "Mathematics",
    "grade_level": "5",
    "description": "Parts of a whole, written two ways.",
    "learning_objectives": ["Equivalent fractions", "Adding fractions", "Decimal place value"],
}

DEMO_LESSONS = [
    {"title": "What is a fraction?", "learning_objectives": ["Equivalent fractions"]},
    {"title": "Adding fractions", "learning_objectives": ["Adding fractions"]},
    {"title": "Tenths and hundredths", "learning_objectives": ["Decimal place value"]},
]

# (lesson index, activity fields)
DEMO_ACTIVITIES = [
    (0, {
        "activity_type": "video",
        "title": "Pizza slices",
        "points": 10,
        "estimated_minutes": 6,
        "content": {"url": "https://example.com/videos/pizza-fractions.mp4"},
    }),
    (0, {
        "activity_type": "quiz",
        "title": "Equivalent fractions check",
        "points": 40,
        "estimated_minutes": 10,
        "content": {
            "questions": [
                {"question": "Which fraction equals 1/2?", "options": ["2/4", "2/3", "3/4"],
                 "correct_answer": 0, "explanation": "2/4 simplifies to 1/2.",
                 "learning_objective": "Equivalent fractions"},
                {"question": "Which fraction equals 2/6?", "options": ["1/2", "1/3", "2/3"],
                 "correct_answer": 1, "explanation": "Divide top and bottom by 2.",
                 "learning_objective": "Equivalent fractions"},
            ],
        },
    }),
    (1, {
        "activity_type": "interactive",
        "title": "Fraction bar lab",
        "points": 0,
        "content": {
            "steps": [
                {"action": "find common denominator", "points": 15,
                 "hint": "Look for a number both denominators divide into",
                 "description": "Both bars now use the same slice size."},
                {"action": "add numerators", "points": 15,
                 "hint": "Only the top numbers change",
                 "description": "You combined the slices."},
            ],
        },
    }),
    (1, {
        "activity_type": "collaborative",
        "title": "Share a fraction story",
        "points": 0,
        "content": {"prompt": "Describe a time you split something fairly."},
    }),
    (2, {
        "activity_type": "ai_chat",
        "title": "Decimal tutor",
        "points": 0,
        "content": {"learning_objectives": ["Decimal place value"]},
    }),
    (2, {
        "activity_type": "reading",
        "title": "Place value chart",
        "points": 10,
        "content": {"body": "The first digit after the point counts tenths..."},
    }),
]


async def seed() -> None:
    # Ensure data directory exists
    settings.DATA_DIR.mkdir(parents=True, exist_ok=True)

    # Create tables
    await init_db()
    print("Database tables created.")

    async with async_session() as session:
        result = await session.execute(select(User).where(User.email == DEMO_TEACHER["email"]))
        teacher = result.scalar_one_or_none()
        if teacher is None:
            teacher = User(**DEMO_TEACHER)
            session.add(teacher)
            await session.flush()
            print(f"  Inserted teacher: {teacher.email}")

        result = await session.execute(
            select(Course).where(
                Course.teacher_id == teacher.id, Course.title == DEMO_COURSE["title"]
            )
        )
        if result.scalar_one_or_none() is not None:
            print("  Demo course already present, nothing to do.")
            return

        fields = dict(DEMO_COURSE)
        objectives = fields.pop("learning_objectives")
        course = Course(teacher_id=teacher.id, join_code=await generate_join_code(session, Course), **fields)
        course.learning_objectives = objectives
        session.add(course)
        await session.flush()

        lessons = []
        for position, lesson_data in enumerate(DEMO_LESSONS):
            lesson = Lesson(
                course_id=course.id,
                title=lesson_data["title"],
                position=position,
                join_code=await generate_join_code(session, Lesson),
            )
            lesson.learning_objectives = lesson_data["learning_objectives"]
            session.add(lesson)
            lessons.append(lesson)
        await session.flush()

        for lesson_index, activity_data in DEMO_ACTIVITIES:
            data = dict(activity_data)
            content = data.pop("content")
            activity = Activity(course_id=course.id, lesson_id=lessons[lesson_index].id, **data)
            activity.content = content
            session.add(activity)
            print(f"  Inserted: {data['activity_type']} - {data['title']}")

        await session.commit()
        print(f"  Course join code: {course.join_code}")

    print("Seed data complete.")


if __name__ == "__main__":
    asyncio.run(seed())
