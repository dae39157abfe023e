"""
Exception hierarchy for the tenancy remediation services.

Services raise these types; the admin blueprint registers one handler per
type and maps it to a stable HTTP status and error code.

Usage:
    from app.core.exceptions import NotFoundError, InvalidStateError

    raise NotFoundError(resource="Tenant", resource_id=42)
    raise InvalidStateError("Target tenant is not active", details={"status": "suspended"})

Propagation:
    SchemaDriftError is absorbed into per-table results by the scanning
    services so one broken table never blocks an aggregate report. Every
    other type propagates unchanged to the caller.
"""


class NotFoundError(Exception):
    """Raised when a tenant, record or table does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Tenant", "projects").
        resource_id: The PK that was looked up.
        tenant_id: Optional — the scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class InvalidStateError(Exception):
    """Raised when an operation is well-formed but not allowed in the current state.

    Examples: target tenant not active, table not registered, row not
    currently quarantined.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional structured payload for API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AmbiguousResolutionError(Exception):
    """Raised when FK inference yields more than one candidate tenant for a row."""

    def __init__(self, table: str, record_id: int | str, candidates) -> None:
        self.table = table
        self.record_id = record_id
        self.candidates = sorted(candidates)
        super().__init__(
            f"{table} id={record_id} resolves to multiple tenants: {self.candidates}"
        )


class SchemaDriftError(Exception):
    """Raised when a registered table or one of its columns is absent from the database."""

    def __init__(self, table: str, missing_columns: list[str] | None = None) -> None:
        self.table = table
        self.missing_columns = missing_columns or []
        if self.missing_columns:
            msg = f"Table {table} is missing columns: {', '.join(self.missing_columns)}"
        else:
            msg = f"Table {table} does not exist"
        super().__init__(msg)


class ConfirmationMismatchError(Exception):
    """Raised when a destructive action is missing its exact confirmation proof.

    A client-side rejection, never a server fault.
    """

    def __init__(self, message: str, expected_hint: str | None = None) -> None:
        self.expected_hint = expected_hint
        super().__init__(message)


class FeatureDisabledError(Exception):
    """Raised when the requested mode is switched off by configuration."""

    def __init__(self, feature: str, flag: str) -> None:
        self.feature = feature
        self.flag = flag
        super().__init__(f"{feature} is disabled (set {flag}=true to enable)")


class ConflictError(Exception):
    """Raised when an operation would violate a unique constraint.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)
