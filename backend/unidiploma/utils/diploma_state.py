from unidiploma.documents.exceptions import InvalidTransitionError, PermissionDeniedError
from unidiploma.models.enums import DiplomaStatus, UserRole

# Defines all valid status transitions for a diploma
ALLOWED_TRANSITIONS: dict[DiplomaStatus, set[DiplomaStatus]] = {
    DiplomaStatus.DRAFT: {
        DiplomaStatus.ISSUED,
    },
    DiplomaStatus.ISSUED: {
        DiplomaStatus.AUTHENTICATED,
    },
    DiplomaStatus.AUTHENTICATED: set(),  # Terminal state
}

# Roles allowed to move a diploma INTO the given state
TRANSITION_ROLES: dict[DiplomaStatus, set[UserRole]] = {
    DiplomaStatus.ISSUED: {UserRole.ADMIN, UserRole.UNIVERSITY_STAFF},
    DiplomaStatus.AUTHENTICATED: {UserRole.ESU_STAFF},
}


def diploma_status(diploma) -> DiplomaStatus:
    """Derive the lifecycle state from the stored record."""
    if not diploma.document_path:
        return DiplomaStatus.DRAFT
    if diploma.is_authentic:
        return DiplomaStatus.AUTHENTICATED
    return DiplomaStatus.ISSUED


def validate_transition(current: DiplomaStatus, new: DiplomaStatus) -> None:
    """Validate a diploma status transition. Raises InvalidTransitionError (409) if invalid."""
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if new not in allowed:
        raise InvalidTransitionError(
            f"Cannot transition from '{current.value}' to '{new.value}'"
        )


def require_role(new: DiplomaStatus, role: UserRole | str) -> None:
    """Raise PermissionDeniedError (403) if ``role`` may not trigger a move into ``new``."""
    try:
        role = UserRole(role)
    except ValueError:
        raise PermissionDeniedError(f"Unknown role '{role}'")
    if role not in TRANSITION_ROLES.get(new, set()):
        raise PermissionDeniedError(
            f"Role '{role.value}' is not allowed to move a diploma to '{new.value}'"
        )
