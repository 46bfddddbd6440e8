"""Workout models.

Only the columns the ownership chain needs live here; the rest of the
workout schema is owned by the CRUD layer.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base


class WorkoutSession(Base):
    """A workout session owned by one user"""

    __tablename__ = "workout_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    started_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="workout_sessions")
    workout_exercises = relationship(
        "WorkoutExercise", back_populates="workout_session", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index('idx_workout_sessions_user', 'user_id'),
    )


class Exercise(Base):
    """Shared exercise library entry"""

    __tablename__ = "exercises"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class WorkoutExercise(Base):
    """An exercise performed inside a workout session"""

    __tablename__ = "workout_exercises"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("workout_sessions.id", ondelete="CASCADE"), nullable=False)
    exercise_id = Column(Integer, ForeignKey("exercises.id"), nullable=False)
    order_in_workout = Column(Integer, default=1, nullable=False)

    workout_session = relationship("WorkoutSession", back_populates="workout_exercises")
    exercise = relationship("Exercise")

    __table_args__ = (
        Index('idx_workout_exercises_session', 'session_id'),
    )


class _SetColumns:
    id = Column(Integer, primary_key=True, index=True)
    set_number = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class StrengthSet(_SetColumns, Base):
    __tablename__ = "strength_sets"

    workout_exercise_id = Column(
        Integer, ForeignKey("workout_exercises.id", ondelete="CASCADE"), nullable=False, index=True
    )


class CardioSet(_SetColumns, Base):
    __tablename__ = "cardio_sets"

    workout_exercise_id = Column(
        Integer, ForeignKey("workout_exercises.id", ondelete="CASCADE"), nullable=False, index=True
    )


class FlexibilitySet(_SetColumns, Base):
    __tablename__ = "flexibility_sets"

    workout_exercise_id = Column(
        Integer, ForeignKey("workout_exercises.id", ondelete="CASCADE"), nullable=False, index=True
    )
