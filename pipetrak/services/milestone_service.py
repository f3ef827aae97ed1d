"""
Milestone update engine.

The one entry point that changes a component's progress. A single update:

    1. lock the component row (SELECT ... FOR UPDATE) and resolve its template
    2. check the milestone exists in the template and type/range-check the value
    3. run field-weld preconditions (closed welds and "Accepted" are
       refused; "Weld Complete" needs a welder)
    4. merge the single key into ``current_milestones``
    5. recompute ``percent_complete`` with the pure calculator
    6. append a MilestoneEvent (same transaction)
    7. apply field-weld side effects, mark affected rollups stale, commit

Steps 1-3 raise typed ``ProgressEngineError`` subclasses before anything is
written. Any database failure rolls the whole unit back.

``apply_milestone_values`` is the flush-only core shared with the weld state
machine, repair seeding and the field-weld import.

Usage:
    from pipetrak.services.milestone_service import apply_milestone_update

    result = apply_milestone_update(component_id, "Receive", True, "jdoe")
    result.previous_value   # None if never set
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from pipetrak.core.exceptions import (
    ConflictError,
    MilestoneNotInTemplate,
    NotFoundError,
    ValidationError,
)
from pipetrak.models import db
from pipetrak.models.component import Component, identity_key_errors
from pipetrak.models.milestone_event import MilestoneEvent, record_milestone_event
from pipetrak.models.project import Drawing, Project, System, TestPackage
from pipetrak.services import rollup_service, weld_state_machine
from pipetrak.services.progress_calculator import (
    calculate_percent_complete,
    classify_action,
    validate_milestone_value,
)
from pipetrak.services.template_registry import (
    ResolvedTemplate,
    resolve_template,
    resolve_template_by_id,
)

logger = logging.getLogger(__name__)

MIN_RETIRE_REASON_LENGTH = 10


@dataclass
class MilestoneUpdateResult:
    component: Component
    previous_value: Any
    event_id: int

    def to_dict(self) -> dict:
        return {
            "component": self.component.to_dict(),
            "previous_value": self.previous_value,
            "event_id": self.event_id,
        }


# ── Row access ───────────────────────────────────────────────────────────────

def lock_component(component_id: int) -> Component:
    """Load a component under an exclusive row lock, refreshing any stale copy."""
    component = db.session.execute(
        select(Component)
        .where(Component.id == component_id)
        .with_for_update(of=Component)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if component is None:
        raise NotFoundError("Component", component_id)
    return component


def template_for(component: Component) -> ResolvedTemplate:
    return resolve_template_by_id(component.progress_template_id, component.component_type)


# ── Core (flush only) ────────────────────────────────────────────────────────

def apply_milestone_values(
    component: Component,
    template: ResolvedTemplate,
    updates: dict,
    *,
    actor: str = "system",
    metadata: dict | None = None,
    only_changed: bool = False,
) -> list[MilestoneEvent]:
    """Validate and merge several milestone values, one audit event per key.

    Every key and value is checked before the map is touched. With
    ``only_changed`` a key whose value is already stored is skipped; this is
    how automated transitions avoid logging no-op events.

    Flush only: the caller commits (or rolls back) together with its own
    writes.
    """
    checked = {}
    for name, value in updates.items():
        milestone = template.get(name)
        if milestone is None:
            raise MilestoneNotInTemplate(name, component.component_type, template.milestone_names)
        checked[name] = (milestone, validate_milestone_value(milestone, value))

    current = dict(component.current_milestones or {})
    pending = []
    for name, (milestone, value) in checked.items():
        previous = current.get(name)
        if only_changed and previous == value and type(previous) is type(value):
            continue
        current[name] = value
        pending.append((name, value, previous, classify_action(milestone, previous, value)))

    if not pending:
        return []

    # Reassign so the JSON column registers the change
    component.current_milestones = current
    component.percent_complete = calculate_percent_complete(template.milestones, current)
    component.last_updated_at = datetime.now(timezone.utc)
    component.last_updated_by = actor

    events = [
        record_milestone_event(
            component_id=component.id,
            milestone_name=name,
            action=action,
            value=value,
            previous_value=previous,
            actor=actor,
            metadata=metadata,
        )
        for name, value, previous, action in pending
    ]
    rollup_service.invalidate_for_component(component)
    return events


# ── Public operations ────────────────────────────────────────────────────────

def apply_milestone_update(
    component_id: int,
    milestone_name: str,
    new_value,
    actor_id: str,
    *,
    metadata: dict | None = None,
) -> MilestoneUpdateResult:
    """Set one milestone on one component and commit.

    Replaying the current value is allowed and still writes an ``update``
    event with previous == new.

    Raises:
        NotFoundError, TemplateNotFound, MilestoneNotInTemplate, TypeMismatch,
        OutOfRange, WelderRequired, ValidationError (retired component,
        accepted or rejected weld, hand-set "Accepted").
    """
    actor = str(actor_id or "system")
    try:
        component = lock_component(component_id)
        if component.is_retired:
            raise ValidationError("Retired components cannot be updated", field="component_id")

        template = template_for(component)
        milestone = template.get(milestone_name)
        if milestone is None:
            raise MilestoneNotInTemplate(
                milestone_name, component.component_type, template.milestone_names,
            )
        value = validate_milestone_value(milestone, new_value)
        previous_value = (component.current_milestones or {}).get(milestone_name)

        field_weld = component.field_weld if component.component_type == "field_weld" else None
        if field_weld is not None:
            weld_state_machine.check_milestone_preconditions(field_weld, milestone, value)

        event_meta = dict(metadata or {})
        if field_weld is not None and field_weld.welder_id is not None:
            event_meta.setdefault("welder_id", field_weld.welder_id)

        (event,) = apply_milestone_values(
            component, template, {milestone_name: value},
            actor=actor, metadata=event_meta or None,
        )
        if field_weld is not None:
            weld_state_machine.on_milestone_applied(field_weld, milestone, value)

        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception(
            "Milestone update failed and was rolled back",
            extra={"component_id": component_id, "milestone_name": milestone_name, "actor": actor},
        )
        raise
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Milestone %s on component %s: %s",
        milestone_name, component.id, event.action,
        extra={
            "component_id": component.id,
            "drawing_id": component.drawing_id,
            "actor": actor,
            "event_type": event.action,
        },
    )
    rollup_service.refresh_after_commit(rollup_service.parents_of(component))
    return MilestoneUpdateResult(component=component, previous_value=previous_value, event_id=event.id)


def find_component_by_identity(project_id: int, component_type: str, identity_key: dict):
    """Non-retired component in a project with exactly this identity key."""
    candidates = db.session.execute(
        select(Component).where(
            Component.project_id == project_id,
            Component.component_type == component_type,
            Component.is_retired.is_(False),
        )
    ).scalars()
    for candidate in candidates:
        if candidate.identity_key == identity_key:
            return candidate
    return None


def _check_parent(model, pk, project_id: int, field: str) -> None:
    if pk is None:
        return
    parent = db.session.get(model, pk)
    if parent is None:
        raise NotFoundError(model.__name__, pk)
    if parent.project_id != project_id:
        raise ValidationError(f"{model.__name__} {pk} belongs to another project", field=field)


def build_component(
    project_id: int,
    component_type: str,
    identity_key: dict,
    *,
    drawing_id: int | None = None,
    test_package_id: int | None = None,
    system_id: int | None = None,
    attributes: dict | None = None,
    actor_id: str = "system",
) -> Component:
    """Validate and add a component bound to the latest template (flush only)."""
    if db.session.get(Project, project_id) is None:
        raise NotFoundError("Project", project_id)

    errors = identity_key_errors(component_type, identity_key)
    if errors:
        raise ValidationError("Invalid identity key", details=errors, field="identity_key")

    template = resolve_template(component_type)
    _check_parent(Drawing, drawing_id, project_id, "drawing_id")
    _check_parent(TestPackage, test_package_id, project_id, "test_package_id")
    _check_parent(System, system_id, project_id, "system_id")

    if find_component_by_identity(project_id, component_type, identity_key) is not None:
        raise ConflictError("Component", "identity_key", str(identity_key))

    component = Component(
        project_id=project_id,
        drawing_id=drawing_id,
        test_package_id=test_package_id,
        system_id=system_id,
        component_type=component_type,
        progress_template_id=template.id,
        identity_key=dict(identity_key),
        attributes=attributes or {},
        current_milestones={},
        percent_complete=0.0,
        created_by=actor_id,
        last_updated_by=actor_id,
    )
    db.session.add(component)
    db.session.flush()
    rollup_service.invalidate_for_component(component)
    return component


def create_component(project_id: int, component_type: str, identity_key: dict, **kwargs) -> Component:
    """Create and commit a non-weld component.

    Field welds need their QC record as well and are created through
    ``field_weld_service.create_field_weld``.
    """
    if component_type == "field_weld":
        raise ValidationError(
            "Field welds are created through the field weld endpoint",
            field="component_type",
        )
    try:
        component = build_component(project_id, component_type, identity_key, **kwargs)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(
        "Component created",
        extra={"component_id": component.id, "drawing_id": component.drawing_id,
               "actor": kwargs.get("actor_id", "system")},
    )
    rollup_service.refresh_after_commit(rollup_service.parents_of(component))
    return component


def retire_component(component_id: int, reason: str, actor_id: str = "system") -> Component:
    """Retire a component; it drops out of every rollup.

    Raises:
        ValidationError: reason shorter than 10 characters.
    """
    reason = (reason or "").strip()
    if len(reason) < MIN_RETIRE_REASON_LENGTH:
        raise ValidationError(
            f"A retire reason of at least {MIN_RETIRE_REASON_LENGTH} characters is required",
            field="reason",
        )
    try:
        component = lock_component(component_id)
        if not component.is_retired:
            component.is_retired = True
            component.retire_reason = reason
            component.last_updated_at = datetime.now(timezone.utc)
            component.last_updated_by = actor_id
            rollup_service.invalidate_for_component(component)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Component retired", extra={"component_id": component.id, "actor": actor_id})
    rollup_service.refresh_after_commit(rollup_service.parents_of(component))
    return component


def get_component(component_id: int) -> Component:
    component = db.session.get(Component, component_id)
    if component is None:
        raise NotFoundError("Component", component_id)
    return component


def get_milestone_history(component_id: int, milestone_name: str | None = None, limit: int | None = None) -> list[dict]:
    """Audit events for a component, newest first."""
    get_component(component_id)
    stmt = (
        select(MilestoneEvent)
        .where(MilestoneEvent.component_id == component_id)
        .order_by(MilestoneEvent.created_at.desc(), MilestoneEvent.id.desc())
    )
    if milestone_name:
        stmt = stmt.where(MilestoneEvent.milestone_name == milestone_name)
    if limit:
        stmt = stmt.limit(limit)
    return [e.to_dict() for e in db.session.execute(stmt).scalars()]
