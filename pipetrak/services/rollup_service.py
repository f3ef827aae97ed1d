"""
Progress rollup aggregator.

Keeps ``progress_rollups`` (one row per drawing / test package / system) in
line with the components underneath it, using an explicit
invalidate-or-recompute cache:

    mutation path  → invalidate_for_component(component)   (same transaction)
    read path      → get_rollup(parent_type, parent_id)     (recompute if stale)

``ROLLUP_REFRESH_MODE = "eager"`` additionally recomputes the affected rows
right after each committed mutation (``refresh_after_commit``).

Retired components are excluded everywhere. A parent with no components has
``avg_percent_complete = None``: the mean is undefined, not zero.
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from pipetrak.core.exceptions import NotFoundError, ValidationError
from pipetrak.models import db
from pipetrak.models.component import Component
from pipetrak.models.project import Drawing, System, TestPackage
from pipetrak.models.rollup import ROLLUP_PARENTS, ProgressRollup

logger = logging.getLogger(__name__)

_PARENT_MODELS = {
    "drawing": Drawing,
    "test_package": TestPackage,
    "system": System,
}

# Refreshes per read before a still-invalidated row is served as stale
REFRESH_ATTEMPTS = 3


def _check_parent_type(parent_type: str) -> None:
    if parent_type not in ROLLUP_PARENTS:
        raise ValidationError(
            f"Unknown rollup parent type {parent_type!r}",
            details={"valid_values": sorted(ROLLUP_PARENTS)},
            field="parent_type",
        )


def parents_of(component: Component) -> list[tuple[str, int]]:
    """The (parent_type, parent_id) pairs a component counts towards."""
    pairs = []
    for parent_type, column in ROLLUP_PARENTS.items():
        parent_id = getattr(component, column)
        if parent_id is not None:
            pairs.append((parent_type, parent_id))
    return pairs


def compute_rollup(parent_type: str, parent_id: int) -> dict:
    """Aggregate live component rows for one parent (no cache involved)."""
    _check_parent_type(parent_type)
    column = getattr(Component, ROLLUP_PARENTS[parent_type])
    total, completed, avg = db.session.execute(
        select(
            func.count(Component.id),
            func.coalesce(
                func.sum(db.case((Component.percent_complete >= 100, 1), else_=0)), 0,
            ),
            func.avg(Component.percent_complete),
        ).where(column == parent_id, Component.is_retired.is_(False))
    ).one()
    return {
        "parent_type": parent_type,
        "parent_id": parent_id,
        "total_components": int(total or 0),
        "completed_components": int(completed or 0),
        "avg_percent_complete": round(float(avg), 2) if total and avg is not None else None,
    }


def mark_stale(parent_type: str, parent_id: int) -> None:
    """Flag an existing rollup row as stale and bump its invalidation counter (flush only)."""
    db.session.execute(
        update(ProgressRollup)
        .where(ProgressRollup.parent_type == parent_type, ProgressRollup.parent_id == parent_id)
        .values(
            is_stale=True,
            invalidation_seq=ProgressRollup.invalidation_seq + 1,
            invalidated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )


def invalidate_for_component(component: Component, previous_parents=()) -> None:
    """Mark every rollup the component counts towards as stale.

    ``previous_parents`` covers a component that was just moved or retired,
    so the parent it left is invalidated too.
    """
    targets = set(parents_of(component)) | set(previous_parents)
    for parent_type, parent_id in targets:
        mark_stale(parent_type, parent_id)
    if targets:
        logger.debug(
            "Rollups invalidated",
            extra={"component_id": component.id, "parents": sorted(targets)},
        )


def _lock_rollup_row(parent_type: str, parent_id: int) -> ProgressRollup:
    """Load (or create) the rollup row under a row lock, refreshed from the database."""
    row = db.session.execute(
        select(ProgressRollup)
        .where(ProgressRollup.parent_type == parent_type, ProgressRollup.parent_id == parent_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if row is None:
        row = ProgressRollup(parent_type=parent_type, parent_id=parent_id, invalidation_seq=0)
        db.session.add(row)
        db.session.flush()
    return row


def _current_invalidation_seq(row_id: int) -> int:
    return db.session.execute(
        select(ProgressRollup.invalidation_seq).where(ProgressRollup.id == row_id)
    ).scalar_one()


def refresh_rollup(parent_type: str, parent_id: int) -> ProgressRollup:
    """Recompute and upsert a rollup row (flush only).

    The row is locked before the aggregate is read, so a concurrent
    ``mark_stale`` waits for this transaction. An invalidation that still
    lands between the read and the write (same session, or a database
    without row locks) bumps ``invalidation_seq``; the row then keeps
    ``is_stale`` set and the next read recomputes it.
    """
    row = _lock_rollup_row(parent_type, parent_id)
    row_id = row.id
    seen_seq = row.invalidation_seq
    values = compute_rollup(parent_type, parent_id)
    current_seq = _current_invalidation_seq(row_id)

    row = db.session.get(ProgressRollup, row_id, populate_existing=True)
    row.total_components = values["total_components"]
    row.completed_components = values["completed_components"]
    row.avg_percent_complete = values["avg_percent_complete"]
    row.is_stale = current_seq != seen_seq
    row.refreshed_at = datetime.now(timezone.utc)
    db.session.flush()
    if row.is_stale:
        logger.info(
            "Rollup invalidated during refresh; left stale",
            extra={"parent_type": parent_type, "parent_id": parent_id},
        )
    return row


def _stored_row(parent_type: str, parent_id: int) -> ProgressRollup | None:
    return db.session.execute(
        select(ProgressRollup)
        .where(ProgressRollup.parent_type == parent_type, ProgressRollup.parent_id == parent_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def get_rollup(parent_type: str, parent_id: int) -> dict:
    """Return the rollup for a parent, recomputing it first when stale.

    A refresh that was overtaken by a newer invalidation is retried up to
    ``REFRESH_ATTEMPTS`` times. If the recompute fails on a database error
    the last stored row is served with ``is_stale: true`` rather than
    failing the read.
    """
    _check_parent_type(parent_type)
    if db.session.get(_PARENT_MODELS[parent_type], parent_id) is None:
        raise NotFoundError(_PARENT_MODELS[parent_type].__name__, parent_id)

    row = _stored_row(parent_type, parent_id)
    if row is not None and not row.is_stale:
        return row.to_dict()

    try:
        for _attempt in range(REFRESH_ATTEMPTS):
            row = refresh_rollup(parent_type, parent_id)
            db.session.commit()
            if not row.is_stale:
                break
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception(
            "Rollup refresh failed; serving stale value",
            extra={"parent_type": parent_type, "parent_id": parent_id},
        )
        stale = _stored_row(parent_type, parent_id)
        if stale is None:
            raise
        return stale.to_dict()
    return row.to_dict()


def list_project_rollups(project_id: int, parent_type: str = "drawing") -> list[dict]:
    """Rollups for every parent of one type in a project (stale rows refreshed)."""
    _check_parent_type(parent_type)
    model = _PARENT_MODELS[parent_type]
    parent_ids = db.session.execute(
        select(model.id).where(model.project_id == project_id).order_by(model.id)
    ).scalars().all()
    return [get_rollup(parent_type, pid) for pid in parent_ids]


def refresh_after_commit(parents) -> None:
    """Eager mode: recompute the given parents right after a mutation commits.

    A no-op in lazy mode. A failure here only leaves the rows stale, so it is
    logged and the already-committed mutation stands.
    """
    if current_app.config.get("ROLLUP_REFRESH_MODE", "lazy") != "eager":
        return
    try:
        for parent_type, parent_id in set(parents):
            refresh_rollup(parent_type, parent_id)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Eager rollup refresh failed; rows stay stale until next read")
