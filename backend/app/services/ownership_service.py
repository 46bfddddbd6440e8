"""Resource ownership authorization for nested workout resources"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Protocol, Tuple, Type

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import ResourceNotFoundError
from app.models.workout import CardioSet, FlexibilitySet, StrengthSet, WorkoutExercise, WorkoutSession
from app.schemas.user import UserRole

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    SESSION = "session"
    WORKOUT_EXERCISE = "workout_exercise"
    STRENGTH_SET = "strength_set"
    CARDIO_SET = "cardio_set"
    FLEXIBILITY_SET = "flexibility_set"
    # Any of the three set kinds; tries each table in turn.
    ANY_SET = "any_set"
    # Shared exercise library entry, not owned by a user.
    EXERCISE = "exercise"


SET_KINDS: Tuple[ResourceKind, ...] = (
    ResourceKind.STRENGTH_SET,
    ResourceKind.CARDIO_SET,
    ResourceKind.FLEXIBILITY_SET,
)


@dataclass(frozen=True)
class ResourceRef:
    kind: ResourceKind
    id: int


@dataclass(frozen=True)
class CallerIdentity:
    """The authenticated caller as seen by authorization checks."""
    user_id: int
    role: str
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def is_moderator(self) -> bool:
        return self.role == UserRole.MODERATOR.value


class OwnershipLookups(Protocol):
    """Read-only queries the authorizer needs from the workout domain."""

    def find_owner_of_session(self, session_id: int) -> Optional[int]:
        ...

    def find_session_owning_workout_exercise(self, workout_exercise_id: int) -> Optional[int]:
        ...

    def find_session_owning_item(self, kind: ResourceKind, item_id: int) -> Optional[int]:
        ...


class SqlOwnershipLookups:
    """OwnershipLookups backed by the SQLAlchemy session of the current request."""

    SET_MODELS: Dict[ResourceKind, Type] = {
        ResourceKind.STRENGTH_SET: StrengthSet,
        ResourceKind.CARDIO_SET: CardioSet,
        ResourceKind.FLEXIBILITY_SET: FlexibilitySet,
    }

    def __init__(self, db: Session):
        self.db = db

    def find_owner_of_session(self, session_id: int) -> Optional[int]:
        row = (
            self.db.query(WorkoutSession.user_id)
            .filter(WorkoutSession.id == session_id)
            .first()
        )
        return row[0] if row else None

    def find_session_owning_workout_exercise(self, workout_exercise_id: int) -> Optional[int]:
        row = (
            self.db.query(WorkoutExercise.session_id)
            .filter(WorkoutExercise.id == workout_exercise_id)
            .first()
        )
        return row[0] if row else None

    def find_session_owning_item(self, kind: ResourceKind, item_id: int) -> Optional[int]:
        model = self.SET_MODELS.get(kind)
        if model is None:
            raise ValueError(f"Not a set resource kind: {kind}")
        row = (
            self.db.query(WorkoutExercise.session_id)
            .join(model, model.workout_exercise_id == WorkoutExercise.id)
            .filter(model.id == item_id)
            .first()
        )
        return row[0] if row else None


class ResourceOwnershipAuthorizer:
    """
    Decide whether a caller may touch a resource.

    Each resource kind has one resolver that walks the ownership chain
    (set -> workout exercise -> session -> user) to the owning user id.
    Any broken link or lookup failure denies.
    """

    def __init__(self, lookups: OwnershipLookups):
        self.lookups = lookups
        self._resolvers: Dict[ResourceKind, Callable[[int], Optional[int]]] = {
            ResourceKind.SESSION: self._owner_of_session,
            ResourceKind.WORKOUT_EXERCISE: self._owner_of_workout_exercise,
            ResourceKind.STRENGTH_SET: lambda item_id: self._owner_of_set(ResourceKind.STRENGTH_SET, item_id),
            ResourceKind.CARDIO_SET: lambda item_id: self._owner_of_set(ResourceKind.CARDIO_SET, item_id),
            ResourceKind.FLEXIBILITY_SET: lambda item_id: self._owner_of_set(ResourceKind.FLEXIBILITY_SET, item_id),
        }

    def _owner_of_session(self, session_id: int) -> Optional[int]:
        return self.lookups.find_owner_of_session(session_id)

    def _owner_of_workout_exercise(self, workout_exercise_id: int) -> Optional[int]:
        session_id = self.lookups.find_session_owning_workout_exercise(workout_exercise_id)
        if session_id is None:
            return None
        return self._owner_of_session(session_id)

    def _owner_of_set(self, kind: ResourceKind, item_id: int) -> Optional[int]:
        session_id = self.lookups.find_session_owning_item(kind, item_id)
        if session_id is None:
            return None
        return self._owner_of_session(session_id)

    def resolve_owner(self, ref: ResourceRef) -> Optional[int]:
        """
        Owning user id of a resource, or None when the chain is broken

        Raises:
            SQLAlchemyError: Propagated from the lookups
        """
        if ref.kind is ResourceKind.ANY_SET:
            for kind in SET_KINDS:
                owner = self._resolvers[kind](ref.id)
                if owner is not None:
                    return owner
            return None
        resolver = self._resolvers.get(ref.kind)
        if resolver is None:
            return None
        return resolver(ref.id)

    def _owns(self, caller: CallerIdentity, ref: ResourceRef) -> bool:
        try:
            owner = self.resolve_owner(ref)
        except SQLAlchemyError as exc:
            logger.error("Ownership lookup failed for %s %s: %s", ref.kind.value, ref.id, exc)
            return False
        if owner is None:
            logger.info("Ownership chain broken for %s %s", ref.kind.value, ref.id)
            return False
        if owner != caller.user_id:
            logger.warning(
                "SECURITY: ownership mismatch. caller=%s resource=%s:%s owner=%s",
                caller.user_id, ref.kind.value, ref.id, owner,
            )
            return False
        return True

    def can_access(self, caller: CallerIdentity, ref: ResourceRef, *, read_only: bool = False) -> bool:
        """
        Check whether the caller may access a resource

        Args:
            caller: Authenticated caller
            ref: Resource being accessed
            read_only: True for reads; the shared exercise library is readable by everyone

        Returns:
            bool: True if access is allowed
        """
        if caller.is_admin:
            return True
        if ref.kind is ResourceKind.EXERCISE:
            if caller.is_moderator or read_only:
                return True
            logger.warning(
                "SECURITY: exercise library modification denied. caller=%s exercise=%s",
                caller.user_id, ref.id,
            )
            return False
        return self._owns(caller, ref)

    def can_modify(self, caller: CallerIdentity, ref: ResourceRef) -> bool:
        return self.can_access(caller, ref, read_only=False)

    def require_access(self, caller: CallerIdentity, ref: ResourceRef, *, read_only: bool = False) -> None:
        """
        Raise unless the caller may access the resource.

        Denials surface as 404 so callers cannot probe for other users' ids.
        """
        if not self.can_access(caller, ref, read_only=read_only):
            raise ResourceNotFoundError(ref.kind.value.replace("_", " ").capitalize())
