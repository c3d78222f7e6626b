"""
Domain exceptions for the research workflow engine.

Every error carries a human-readable message plus a ``details`` dict with the
entity id and attempted operation, so API layers can render precise responses.
"""

from typing import Any


class ThesisValidatorError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for an API response."""
        return {
            "error": {
                "code": self.__class__.__name__,
                "message": self.message,
                "details": self.details,
            }
        }


class NotFoundError(ThesisValidatorError):
    """Entity is absent or belongs to another engagement."""

    def __init__(self, entity: str, entity_id: Any, engagement_id: Any | None = None) -> None:
        details: dict[str, Any] = {"entity": entity, "id": str(entity_id)}
        if engagement_id is not None:
            details["engagement_id"] = str(engagement_id)
        super().__init__(message=f"{entity} not found", details=details)


class ConflictError(ThesisValidatorError):
    """Operation is not allowed in the entity's current state."""


class InvalidTransitionError(ConflictError):
    """A state machine rejected the requested transition."""

    def __init__(
        self,
        entity: str,
        entity_id: Any,
        current: str,
        target: str,
        message: str | None = None,
    ) -> None:
        super().__init__(
            message=message or f"Cannot move {entity} from '{current}' to '{target}'",
            details={
                "entity": entity,
                "id": str(entity_id),
                "current_status": current,
                "attempted_status": target,
            },
        )


class AlreadyResolvedError(InvalidTransitionError):
    """Contradiction is already in a terminal state."""

    def __init__(self, contradiction_id: Any, current: str, target: str) -> None:
        super().__init__(
            "contradiction",
            contradiction_id,
            current,
            target,
            message="Contradiction is already resolved",
        )


class ActiveJobExistsError(ConflictError):
    """An engagement already has a queued or running job."""

    def __init__(self, engagement_id: Any, job_id: Any | None = None) -> None:
        super().__init__(
            message="Engagement already has an active job",
            details={
                "engagement_id": str(engagement_id),
                "job_id": str(job_id) if job_id is not None else None,
            },
        )
        self.job_id = job_id


class ValidationError(ThesisValidatorError, ValueError):
    """Malformed input: out-of-range score, unknown enum value, missing field."""


class ProviderError(ThesisValidatorError):
    """A reasoning or market-data call failed or timed out during a phase."""

    def __init__(self, phase: str, message: str, details: dict[str, Any] | None = None) -> None:
        self.phase = phase
        super().__init__(
            message=f"{phase}: {message}",
            details={"phase": phase, **(details or {})},
        )


class StorageError(ThesisValidatorError):
    """Persistence layer failure; fatal to the current operation."""


class JobCancelledError(ThesisValidatorError):
    """A running job observed a cancellation request at a phase boundary."""

    def __init__(self, job_id: Any, phase: str | None = None) -> None:
        super().__init__(
            message="cancelled",
            details={"job_id": str(job_id), "phase": phase},
        )
        self.job_id = job_id
        self.phase = phase
