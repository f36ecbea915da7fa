"""
Service-wide exception hierarchy.

Every service raises these types; blueprints register handlers against them
once and get consistent HTTP status codes everywhere.

None of them is retried by the service layer. A workflow operation that
raises has already rolled its session back, so the request row and its
children are exactly as they were before the call.

Usage:
    from moc.core.exceptions import NotFoundError, InvalidStateError

    raise NotFoundError(resource="MocRequest", resource_id=request_id)
    raise InvalidStateError("Only draft requests can be submitted.",
                            current_status="submitted", action="submit")
"""


class NotFoundError(Exception):
    """Raised when a referenced request, slot or approval level does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model name (e.g. "MocRequest", "MocApprover").
        resource_id: The key that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is missing or violates a field-level business rule.

    Always raised before any state is mutated; the caller fixes the input and
    tries again. Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidStateError(Exception):
    """Raised when an operation is not legal in the request's current status/stage.

    Examples: submitting a non-draft request, advancing a stage whose gate is
    unmet, completing a slot out of turn. The caller must re-fetch and decide.
    Maps to HTTP 409.
    """

    def __init__(
        self,
        message: str,
        *,
        current_status: str | None = None,
        current_stage: str | None = None,
        action: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.current_status = current_status
        self.current_stage = current_stage
        self.action = action
        self.details = details or {}
        super().__init__(message)


class ConcurrencyConflictError(InvalidStateError):
    """Raised when another writer changed the request between our read and commit."""

    def __init__(self, resource_id: str, action: str | None = None) -> None:
        super().__init__(
            f"MocRequest id={resource_id} was modified concurrently; reload and retry",
            action=action,
        )
        self.resource_id = resource_id


class AuthorizationError(Exception):
    """Raised when the acting role may not perform the operation.

    Terminal for the call. Maps to HTTP 403.

    Args:
        message: Human-readable explanation.
        acting_role: Role presented by the caller.
        required_role: Role the operation needed, when there is exactly one.
    """

    def __init__(
        self,
        message: str,
        acting_role: str | None = None,
        required_role: str | None = None,
    ) -> None:
        self.acting_role = acting_role
        self.required_role = required_role
        super().__init__(message)
