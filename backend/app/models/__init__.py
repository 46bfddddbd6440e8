"""Database models"""

from app.models.user import User
from app.models.workout import (
    WorkoutSession,
    Exercise,
    WorkoutExercise,
    StrengthSet,
    CardioSet,
    FlexibilitySet,
)
from app.models.audit import AuditEvent

__all__ = [
    "User",
    "WorkoutSession", "Exercise", "WorkoutExercise",
    "StrengthSet", "CardioSet", "FlexibilitySet",
    "AuditEvent",
]
