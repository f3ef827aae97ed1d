"""
Field weld operations: creation, welder assignment and NDE results.

Each operation locks the weld's component row, decides the transition with
``weld_state_machine``, applies milestone changes through
``milestone_service.apply_milestone_values`` (so automated changes are
audited like manual ones), writes a FieldWeldEvent and commits once.

NDE rules:
    - recording a result needs an assigned welder
    - once a repair exists, a FAIL result can no longer be changed, and no
      result can be cleared
    - clearing a result needs a reason
"""

import logging

from sqlalchemy import exists, select

from pipetrak.core.exceptions import (
    NotFoundError,
    ReferentialConflict,
    ValidationError,
    WelderRequired,
)
from pipetrak.models import db
from pipetrak.models.component import Component
from pipetrak.models.field_weld import (
    NDE_RESULTS,
    NDE_TYPES,
    WELD_SPEC_FIELDS,
    WELD_TYPES,
    FieldWeld,
    FieldWeldEvent,
    write_weld_event,
)
from pipetrak.services import milestone_service, rollup_service, weld_state_machine
from pipetrak.services.welder_service import get_welder

logger = logging.getLogger(__name__)


def get_field_weld(field_weld_id: int) -> FieldWeld:
    field_weld = db.session.get(FieldWeld, field_weld_id)
    if field_weld is None:
        raise NotFoundError("FieldWeld", field_weld_id)
    return field_weld


def _lock_field_weld(field_weld_id: int):
    """Return (field_weld, component) with the component row locked."""
    field_weld = get_field_weld(field_weld_id)
    component = milestone_service.lock_component(field_weld.component_id)
    db.session.refresh(field_weld)
    return field_weld, component


def has_repairs(field_weld_id: int) -> bool:
    return db.session.execute(
        select(exists().where(FieldWeld.original_weld_id == field_weld_id))
    ).scalar()


def validate_spec_fields(fields: dict) -> dict:
    """Keep only weld spec fields and check weld_type."""
    unknown = set(fields) - set(WELD_SPEC_FIELDS)
    if unknown:
        raise ValidationError(
            "Unknown weld spec field(s)",
            details={"unknown": sorted(unknown), "valid_fields": list(WELD_SPEC_FIELDS)},
            field=sorted(unknown)[0],
        )
    weld_type = fields.get("weld_type")
    if "weld_type" in fields and weld_type not in WELD_TYPES:
        raise ValidationError(
            f"Invalid weld_type {weld_type!r}",
            details={"valid_values": sorted(WELD_TYPES)},
            field="weld_type",
        )
    return dict(fields)


def build_field_weld(
    project_id: int,
    weld_number: str,
    *,
    weld_type: str,
    drawing_id: int | None = None,
    test_package_id: int | None = None,
    system_id: int | None = None,
    weld_size: str | None = None,
    schedule: str | None = None,
    base_metal: str | None = None,
    spec: str | None = None,
    nde_required: bool = False,
    attributes: dict | None = None,
    original_weld_id: int | None = None,
    actor_id: str = "system",
) -> FieldWeld:
    """Create the field_weld Component and its FieldWeld record (flush only)."""
    spec_fields = validate_spec_fields({
        "weld_type": weld_type, "weld_size": weld_size, "schedule": schedule,
        "base_metal": base_metal, "spec": spec,
    })
    component = milestone_service.build_component(
        project_id, "field_weld", {"weld_number": weld_number},
        drawing_id=drawing_id, test_package_id=test_package_id, system_id=system_id,
        attributes=attributes, actor_id=actor_id,
    )
    field_weld = FieldWeld(
        component=component,
        project_id=project_id,
        nde_required=bool(nde_required),
        status="active",
        original_weld_id=original_weld_id,
        created_by=actor_id,
        **spec_fields,
    )
    db.session.add(field_weld)
    db.session.flush()
    return field_weld


def create_field_weld(project_id: int, weld_number: str, **kwargs) -> FieldWeld:
    try:
        field_weld = build_field_weld(project_id, weld_number, **kwargs)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(
        "Field weld created",
        extra={"field_weld_id": field_weld.id, "component_id": field_weld.component_id,
               "actor": kwargs.get("actor_id", "system")},
    )
    rollup_service.refresh_after_commit(rollup_service.parents_of(field_weld.component))
    return field_weld


def list_field_welds(project_id: int, *, drawing_id: int | None = None, status: str | None = None) -> list[dict]:
    stmt = (
        select(FieldWeld)
        .join(Component, FieldWeld.component_id == Component.id)
        .where(FieldWeld.project_id == project_id, Component.is_retired.is_(False))
        .order_by(FieldWeld.id)
    )
    if drawing_id is not None:
        stmt = stmt.where(Component.drawing_id == drawing_id)
    if status:
        stmt = stmt.where(FieldWeld.status == status)
    return [fw.to_dict() for fw in db.session.execute(stmt).scalars()]


def get_weld_events(field_weld_id: int) -> list[dict]:
    get_field_weld(field_weld_id)
    rows = db.session.execute(
        select(FieldWeldEvent)
        .where(FieldWeldEvent.field_weld_id == field_weld_id)
        .order_by(FieldWeldEvent.created_at.desc(), FieldWeldEvent.id.desc())
    ).scalars()
    return [e.to_dict() for e in rows]


# ── Welder assignment ────────────────────────────────────────────────────────

def assign_welder(field_weld_id: int, welder_id: int, actor_id: str = "system", *, date_welded=None) -> FieldWeld:
    """Assign (or reassign) a welder, optionally recording the weld date."""
    try:
        field_weld, _component = _lock_field_weld(field_weld_id)
        welder = get_welder(welder_id)
        if welder.project_id != field_weld.project_id:
            raise ValidationError("Welder belongs to another project", field="welder_id")

        previous = field_weld.welder_id
        field_weld.welder_id = welder.id
        if date_welded is not None:
            field_weld.date_welded = date_welded
        write_weld_event(
            field_weld_id=field_weld.id,
            action="assign" if previous is None else "update",
            actor=actor_id,
            welder_id=welder.id,
            previous_welder_id=previous,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(
        "Welder %s assigned to weld %s", welder.stencil_norm, field_weld.weld_number,
        extra={"field_weld_id": field_weld.id, "welder_id": welder.id, "actor": actor_id},
    )
    return field_weld


def clear_welder(field_weld_id: int, actor_id: str = "system") -> FieldWeld:
    """Remove the welder; blocked once "Weld Complete" is set."""
    try:
        field_weld, component = _lock_field_weld(field_weld_id)
        if (component.current_milestones or {}).get(weld_state_machine.WELD_COMPLETE) is True:
            raise ValidationError(
                "Cannot clear the welder of a weld marked complete; roll back 'Weld Complete' first",
                field="welder_id",
            )
        previous = field_weld.welder_id
        if previous is not None:
            field_weld.welder_id = None
            field_weld.date_welded = None
            write_weld_event(
                field_weld_id=field_weld.id, action="clear", actor=actor_id,
                previous_welder_id=previous,
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Welder cleared", extra={"field_weld_id": field_weld.id, "actor": actor_id})
    return field_weld


# ── NDE ──────────────────────────────────────────────────────────────────────

def apply_nde_transition(field_weld, component, new_result, *, actor_id, trigger="nde_result") -> None:
    """Apply status and milestone changes for an NDE result (flush only)."""
    template = milestone_service.template_for(component)
    transition = weld_state_machine.evaluate_nde_transition(
        template.milestones, field_weld.nde_result, new_result,
    )
    if transition.milestones is not None:
        milestone_service.apply_milestone_values(
            component, template, transition.milestones,
            actor=actor_id,
            metadata={"trigger": trigger, "nde_result": new_result, "welder_id": field_weld.welder_id},
            only_changed=True,
        )
        weld_complete = template.get(weld_state_machine.WELD_COMPLETE)
        if weld_complete is not None:
            weld_state_machine.on_milestone_applied(
                field_weld, weld_complete, transition.milestones.get(weld_complete.name),
            )
    field_weld.status = transition.status


def record_nde_result(
    field_weld_id: int,
    nde_type: str,
    nde_result: str,
    actor_id: str = "system",
    *,
    nde_date=None,
    notes: str | None = None,
) -> FieldWeld:
    """Record or correct an NDE result and run the matching weld transition.

    Raises:
        ValidationError: unknown NDE type or result.
        WelderRequired: no welder assigned.
        ReferentialConflict: changing a FAIL result after a repair was created.
    """
    if nde_type not in NDE_TYPES:
        raise ValidationError(
            f"Invalid nde_type {nde_type!r}", details={"valid_values": sorted(NDE_TYPES)}, field="nde_type",
        )
    if nde_result not in NDE_RESULTS:
        raise ValidationError(
            f"Invalid nde_result {nde_result!r}", details={"valid_values": sorted(NDE_RESULTS)},
            field="nde_result",
        )

    try:
        field_weld, component = _lock_field_weld(field_weld_id)
        if field_weld.welder_id is None:
            raise WelderRequired(
                "NDE cannot be recorded before a welder is assigned",
                details={"field_weld_id": field_weld.id},
            )
        previous_type, previous_result = field_weld.nde_type, field_weld.nde_result
        if previous_result == "FAIL" and nde_result != "FAIL" and has_repairs(field_weld.id):
            raise ReferentialConflict(
                "A repair weld exists for this rejected weld; its FAIL result cannot be changed",
                field="nde_result",
                details={"field_weld_id": field_weld.id},
            )

        apply_nde_transition(field_weld, component, nde_result, actor_id=actor_id)
        field_weld.nde_type = nde_type
        field_weld.nde_result = nde_result
        if nde_date is not None:
            field_weld.nde_date = nde_date
        if notes is not None:
            field_weld.nde_notes = notes
        write_weld_event(
            field_weld_id=field_weld.id,
            action="nde_record" if previous_result is None else "nde_update",
            actor=actor_id,
            nde_type=nde_type,
            nde_result=nde_result,
            previous_nde_type=previous_type,
            previous_nde_result=previous_result,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "NDE %s recorded on weld %s, status %s", nde_result, field_weld.weld_number, field_weld.status,
        extra={"field_weld_id": field_weld.id, "component_id": component.id,
               "drawing_id": component.drawing_id, "actor": actor_id, "event_type": "nde_result"},
    )
    rollup_service.refresh_after_commit(rollup_service.parents_of(component))
    return field_weld


def clear_nde_result(field_weld_id: int, reason: str, actor_id: str = "system") -> FieldWeld:
    """Remove a recorded NDE result; a PASS/FAIL weld reverts to 95%."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to clear an NDE result", field="reason")

    try:
        field_weld, component = _lock_field_weld(field_weld_id)
        if field_weld.nde_result is None:
            raise ValidationError("No NDE result is recorded on this weld", field="nde_result")
        if has_repairs(field_weld.id):
            raise ReferentialConflict(
                "A repair weld exists for this weld; its NDE result cannot be cleared",
                field="nde_result",
                details={"field_weld_id": field_weld.id},
            )
        previous_type, previous_result = field_weld.nde_type, field_weld.nde_result
        apply_nde_transition(field_weld, component, None, actor_id=actor_id, trigger="nde_clear")
        field_weld.nde_type = None
        field_weld.nde_result = None
        field_weld.nde_date = None
        write_weld_event(
            field_weld_id=field_weld.id,
            action="nde_clear",
            actor=actor_id,
            previous_nde_type=previous_type,
            previous_nde_result=previous_result,
            metadata={"reason": reason},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "NDE result cleared on weld %s", field_weld.weld_number,
        extra={"field_weld_id": field_weld.id, "actor": actor_id, "event_type": "nde_clear"},
    )
    rollup_service.refresh_after_commit(rollup_service.parents_of(component))
    return field_weld
