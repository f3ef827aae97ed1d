"""
Repair chain manager.

A rejected weld is repaired by a new field weld that points back at it via
``original_weld_id``. Chains are walked with an explicit loop that carries a
visited set and stops after ``REPAIR_CHAIN_MAX_DEPTH`` hops, so neither a
corrupt cycle nor a runaway chain can recurse.

Depth: the root weld is 0, its repair 1, and so on. A weld at depth
``max`` cannot be repaired again (``RepairChainTooDeep``); that case goes to
engineering review and must not be retried.

Repairs are numbered ``<root weld number>.<depth>``, e.g. ``W-001.2``.
"""

import logging

from flask import current_app
from sqlalchemy import select

from pipetrak.core.exceptions import NotFoundError, RepairChainTooDeep
from pipetrak.models import db
from pipetrak.models.field_weld import FieldWeld
from pipetrak.services import field_weld_service, milestone_service, rollup_service

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10


def max_repair_depth() -> int:
    return int(current_app.config.get("REPAIR_CHAIN_MAX_DEPTH", DEFAULT_MAX_DEPTH))


def walk_repair_chain(field_weld: FieldWeld, *, max_depth: int | None = None, strict: bool = True) -> list[FieldWeld]:
    """Return ``[field_weld, its original, ..., root]``.

    A dangling ``original_weld_id`` ends the chain. With ``strict`` a cycle or
    a chain longer than ``max_depth`` raises ``RepairChainTooDeep``; otherwise
    the walk just stops there (used for display).
    """
    max_depth = max_repair_depth() if max_depth is None else max_depth
    chain = [field_weld]
    visited = {field_weld.id}
    current = field_weld
    while current.original_weld_id is not None:
        if current.original_weld_id in visited:
            if strict:
                raise RepairChainTooDeep(field_weld.id, len(chain) - 1, max_depth, cycle=True)
            break
        if len(chain) > max_depth:
            if strict:
                raise RepairChainTooDeep(field_weld.id, len(chain) - 1, max_depth)
            break
        parent = db.session.get(FieldWeld, current.original_weld_id)
        if parent is None:
            break
        visited.add(parent.id)
        chain.append(parent)
        current = parent
    return chain


def get_repair_depth(field_weld: FieldWeld, *, max_depth: int | None = None) -> int:
    return len(walk_repair_chain(field_weld, max_depth=max_depth)) - 1


def _root_weld_number(chain: list[FieldWeld]) -> str:
    return chain[-1].weld_number or str(chain[-1].id)


def create_repair_weld(original_weld_id: int, spec_overrides: dict | None = None, actor_id: str = "system") -> FieldWeld:
    """Create the next repair in a weld's chain.

    The repair copies the original's spec fields (unless overridden) and its
    drawing, package and system, starts ``active`` with the first template
    milestone ("Fit-up") already complete.

    Raises:
        NotFoundError: unknown original weld.
        RepairChainTooDeep: the original is already at the depth limit, or
            its chain contains a cycle.
        ValidationError: unknown or invalid override fields.
    """
    original = db.session.get(FieldWeld, original_weld_id)
    if original is None:
        raise NotFoundError("FieldWeld", original_weld_id)

    overrides = field_weld_service.validate_spec_fields(spec_overrides or {})
    max_depth = max_repair_depth()
    chain = walk_repair_chain(original, max_depth=max_depth)
    depth = len(chain) - 1
    if depth >= max_depth:
        logger.warning(
            "Repair refused: weld %s is at repair depth %d", original.weld_number, depth,
            extra={"field_weld_id": original.id, "depth": depth, "max_depth": max_depth},
        )
        raise RepairChainTooDeep(original.id, depth, max_depth)

    if original.status != "rejected":
        logger.warning(
            "Creating a repair for weld %s which is %s, not rejected",
            original.weld_number, original.status,
            extra={"field_weld_id": original.id, "status": original.status},
        )

    spec_fields = {**original.spec_fields(), **overrides}
    source = original.component
    weld_number = f"{_root_weld_number(chain)}.{depth + 1}"

    try:
        repair = field_weld_service.build_field_weld(
            original.project_id,
            weld_number,
            drawing_id=source.drawing_id,
            test_package_id=source.test_package_id,
            system_id=source.system_id,
            nde_required=original.nde_required,
            original_weld_id=original.id,
            actor_id=actor_id,
            **spec_fields,
        )
        component = repair.component
        template = milestone_service.template_for(component)
        first = template.first_milestone
        milestone_service.apply_milestone_values(
            component, template, {first.name: first.max_value},
            actor=actor_id,
            metadata={"trigger": "repair_created", "original_weld_id": original.id},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Repair weld %s created for %s (depth %d)", weld_number, original.weld_number, depth + 1,
        extra={"field_weld_id": repair.id, "original_weld_id": original.id,
               "component_id": component.id, "actor": actor_id},
    )
    rollup_service.refresh_after_commit(rollup_service.parents_of(component))
    return repair


def _latest_repair_of(field_weld_id: int) -> FieldWeld | None:
    return db.session.execute(
        select(FieldWeld)
        .where(FieldWeld.original_weld_id == field_weld_id)
        .order_by(FieldWeld.created_at.desc(), FieldWeld.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def _history_entry(field_weld: FieldWeld, depth: int, current_id: int) -> dict:
    return {
        "field_weld_id": field_weld.id,
        "weld_number": field_weld.weld_number,
        "depth": depth,
        "status": field_weld.status,
        "nde_type": field_weld.nde_type,
        "nde_result": field_weld.nde_result,
        "nde_date": field_weld.nde_date.isoformat() if field_weld.nde_date else None,
        "welder_stencil": field_weld.welder.stencil_norm if field_weld.welder else None,
        "percent_complete": float(field_weld.component.percent_complete or 0),
        "is_current": field_weld.id == current_id,
    }


def get_repair_history(field_weld_id: int) -> list[dict]:
    """The whole lineage of a weld, oldest first.

    Walks back to the root and then forward through the most recent repair of
    each weld, both bounded by the depth limit.
    """
    field_weld = db.session.get(FieldWeld, field_weld_id)
    if field_weld is None:
        raise NotFoundError("FieldWeld", field_weld_id)

    max_depth = max_repair_depth()
    lineage = list(reversed(walk_repair_chain(field_weld, max_depth=max_depth, strict=False)))
    seen = {fw.id for fw in lineage}
    current = lineage[-1]
    while len(lineage) <= max_depth:
        child = _latest_repair_of(current.id)
        if child is None or child.id in seen:
            break
        lineage.append(child)
        seen.add(child.id)
        current = child

    return [_history_entry(fw, depth, field_weld_id) for depth, fw in enumerate(lineage)]

