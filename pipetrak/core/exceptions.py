"""
Progress engine exception hierarchy.

Every rejection raised by a service carries a machine-readable ``kind`` and,
where one applies, the offending ``field``. Blueprints never build error
bodies by hand: a single handler (``pipetrak.utils.errors``) maps ``kind`` to
an HTTP status and renders ``{"error", "code", "details"}``.

All of these are raised BEFORE any mutation is flushed, so a caller that
catches one can rely on the component being untouched.

Usage:
    from pipetrak.core.exceptions import MilestoneNotInTemplate, NotFoundError

    raise NotFoundError(resource="Component", resource_id=42)
    raise OutOfRange("Value must be between 0 and 100", field="value")
"""


class ProgressEngineError(Exception):
    """Base class for typed, deterministic validation failures.

    Args:
        message: Human-readable explanation.
        field: Name of the offending input field, if any.
        details: Extra structured payload for the calling layer.
    """

    kind = "ProgressEngineError"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.message = message
        self.field = field
        self.details = dict(details or {})
        if field is not None:
            self.details.setdefault("field", field)
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, **self.details}


class TemplateNotFound(ProgressEngineError):
    """No progress template exists for a component type (hard stop)."""

    kind = "TemplateNotFound"

    def __init__(self, component_type: str, version: int | None = None) -> None:
        self.component_type = component_type
        msg = f"No progress template for component type {component_type!r}"
        if version is not None:
            msg += f" (version {version})"
        super().__init__(
            msg,
            field="component_type",
            details={"component_type": component_type},
        )


class MilestoneNotInTemplate(ProgressEngineError):
    """The caller named a milestone the component's template does not define."""

    kind = "MilestoneNotInTemplate"

    def __init__(self, milestone_name: str, component_type: str, valid: list[str] | None = None) -> None:
        self.milestone_name = milestone_name
        super().__init__(
            f"Milestone {milestone_name!r} is not defined for {component_type}",
            field="milestone_name",
            details={"milestone_name": milestone_name, "valid_milestones": valid or []},
        )


class TypeMismatch(ProgressEngineError):
    """Boolean supplied for a partial milestone, or a number for a discrete one."""

    kind = "TypeMismatch"


class OutOfRange(ProgressEngineError):
    """Partial value outside [0, 100] or off the configured step granularity."""

    kind = "OutOfRange"


class WelderRequired(ProgressEngineError):
    """Weld completion (or NDE) attempted on a weld with no assigned welder."""

    kind = "WelderRequired"

    def __init__(self, message: str = "A welder must be assigned first", *, field: str = "welder_id",
                 details: dict | None = None) -> None:
        super().__init__(message, field=field, details=details)


class RepairChainTooDeep(ProgressEngineError):
    """Repair creation would exceed the lineage depth bound.

    Surfaced for manual (engineering) escalation; callers must not retry.
    """

    kind = "RepairChainTooDeep"

    def __init__(self, original_weld_id: int, depth: int, max_depth: int, *, cycle: bool = False) -> None:
        self.depth = depth
        self.max_depth = max_depth
        if cycle:
            msg = f"Repair chain for weld {original_weld_id} contains a cycle"
        else:
            msg = (
                f"Weld {original_weld_id} is already repair #{depth}; "
                f"the limit is {max_depth} repairs; escalate for engineering review"
            )
        super().__init__(
            msg,
            field="original_weld_id",
            details={"depth": depth, "max_depth": max_depth, "cycle": cycle},
        )


class NotFoundError(ProgressEngineError):
    """Raised when a requested component/weld/welder does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Component", "Welder").
        resource_id: The PK that was looked up.
    """

    kind = "NotFound"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg, details={"resource": resource, "resource_id": resource_id})


class ReferentialConflict(ProgressEngineError):
    """Operation blocked because another record still references the target.

    E.g. deleting a Welder still assigned to field welds, or changing a FAIL
    result once a repair weld exists.
    """

    kind = "ReferentialConflict"


class ValidationError(ProgressEngineError):
    """Raised when input fails a business rule not covered by a narrower kind.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
        field: Offending field, if a single one applies.
    """

    kind = "ValidationError"

    def __init__(self, message: str, details: dict | None = None, *, field: str | None = None) -> None:
        super().__init__(message, field=field, details=details)


class ConflictError(ProgressEngineError):
    """Raised when an operation would duplicate a unique value.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    kind = "Conflict"

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.value = value
        super().__init__(
            f"{resource} with {field}={value!r} already exists",
            field=field,
            details={"resource": resource, "value": value},
        )
