"""Error taxonomy for the TaskHub authorization core.

Every error carries a stable ``code`` so the transport layer can map it to
a status without inspecting messages. Nothing in the core swallows these;
only store-level version conflicts are retried (see teams/store.py).
"""

from __future__ import annotations

from typing import Optional


class TaskhubError(Exception):
    """Base error for all authorization-core failures."""

    code = "INTERNAL_ERROR"


class NotFound(TaskhubError):
    """Entity absent. Raised by the loader before any resolver call."""

    code = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.capitalize()} '{entity_id}' not found")


class AuthenticationRequired(TaskhubError):
    """No actor could be resolved for the request."""

    code = "AUTH_REQUIRED"

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class AuthorizationDenied(TaskhubError):
    """The resolver returned False for the requested capability."""

    code = "FORBIDDEN"

    def __init__(
        self,
        capability: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        self.capability = capability
        self.entity_type = entity_type
        self.entity_id = entity_id
        if message is None:
            message = f"Not authorized to {capability} this {entity_type}"
        super().__init__(message)


class AlreadyMember(TaskhubError):
    code = "ALREADY_MEMBER"

    def __init__(self, user_id: str, entity_type: str) -> None:
        self.user_id = user_id
        super().__init__(f"User '{user_id}' is already a member of this {entity_type}")


class NotAMember(TaskhubError):
    code = "NOT_A_MEMBER"

    def __init__(self, user_id: str, entity_type: str) -> None:
        self.user_id = user_id
        super().__init__(f"User '{user_id}' is not a member of this {entity_type}")


class OwnerProtected(TaskhubError):
    """Attempt to remove or re-role the immutable owner of a team or project."""

    code = "OWNER_PROTECTED"

    def __init__(self, entity_type: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Cannot remove or change the role of the {entity_type} owner")


class ConflictError(TaskhubError):
    """Concurrent-write collision at the storage boundary."""

    code = "CONFLICT"


class ValidationError(TaskhubError, ValueError):
    """Malformed input that passed transport validation (role, capability, status)."""

    code = "VALIDATION_ERROR"


class InvalidRoleError(ValidationError):
    pass


class InvalidCapabilityError(ValidationError):
    pass
