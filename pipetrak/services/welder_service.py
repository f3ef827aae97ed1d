"""
Welder registry.

Welders are project-scoped and identified by their stencil, normalised to
upper case with surrounding whitespace removed. Imports auto-create unknown
stencils as ``unverified``; verification is a separate, manual step and does
not gate the weld workflow.
"""

import logging
import re
from datetime import datetime, timezone

from sqlalchemy import func, select

from pipetrak.core.exceptions import (
    ConflictError,
    NotFoundError,
    ReferentialConflict,
    ValidationError,
)
from pipetrak.models import db
from pipetrak.models.field_weld import WELDER_STATUSES, FieldWeld, Welder
from pipetrak.models.project import Project

logger = logging.getLogger(__name__)

STENCIL_PATTERN = re.compile(r"^[A-Z0-9-]{2,12}$")


def normalize_stencil(raw: str | None) -> str:
    """``" k-07 "`` → ``"K-07"``; raises ValidationError on a bad format."""
    norm = (raw or "").strip().upper()
    if not STENCIL_PATTERN.match(norm):
        raise ValidationError(
            "Stencil must be 2-12 characters of A-Z, 0-9 or '-'",
            details={"stencil": raw},
            field="stencil",
        )
    return norm


def find_welder(project_id: int, stencil: str) -> Welder | None:
    return db.session.execute(
        select(Welder).where(
            Welder.project_id == project_id,
            Welder.stencil_norm == normalize_stencil(stencil),
        )
    ).scalar_one_or_none()


def get_welder(welder_id: int) -> Welder:
    welder = db.session.get(Welder, welder_id)
    if welder is None:
        raise NotFoundError("Welder", welder_id)
    return welder


def _add_welder(project_id: int, name: str, stencil: str, norm: str, actor_id: str) -> Welder:
    welder = Welder(
        project_id=project_id,
        name=name,
        stencil=stencil.strip(),
        stencil_norm=norm,
        status="unverified",
        created_by=actor_id,
    )
    db.session.add(welder)
    db.session.flush()
    return welder


def create_welder(project_id: int, name: str, stencil: str, actor_id: str = "system") -> Welder:
    """Register a welder.

    Raises:
        NotFoundError: unknown project.
        ValidationError: missing name or malformed stencil.
        ConflictError: stencil already registered in the project.
    """
    if db.session.get(Project, project_id) is None:
        raise NotFoundError("Project", project_id)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Welder name is required", field="name")
    norm = normalize_stencil(stencil)
    if find_welder(project_id, norm) is not None:
        raise ConflictError("Welder", "stencil", norm)

    try:
        welder = _add_welder(project_id, name, stencil, norm, actor_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Welder registered", extra={"welder_id": welder.id, "stencil": norm, "actor": actor_id})
    return welder


def get_or_create_welder(project_id: int, stencil: str, actor_id: str = "system") -> tuple[Welder, bool]:
    """Resolve a stencil, auto-creating an unverified welder (flush only).

    Returns (welder, created).
    """
    norm = normalize_stencil(stencil)
    welder = find_welder(project_id, norm)
    if welder is not None:
        return welder, False
    welder = _add_welder(project_id, norm, stencil, norm, actor_id)
    logger.info("Welder auto-created", extra={"welder_id": welder.id, "stencil": norm, "actor": actor_id})
    return welder, True


def verify_welder(welder_id: int, actor_id: str = "system") -> Welder:
    welder = get_welder(welder_id)
    if welder.status != "verified":
        welder.status = "verified"
        welder.verified_at = datetime.now(timezone.utc)
        welder.verified_by = actor_id
        db.session.commit()
        logger.info("Welder verified", extra={"welder_id": welder.id, "actor": actor_id})
    return welder


def delete_welder(welder_id: int) -> None:
    """Delete a welder that no field weld references.

    Raises:
        ReferentialConflict: the welder is still assigned to field welds.
    """
    welder = get_welder(welder_id)
    in_use = db.session.execute(
        select(func.count(FieldWeld.id)).where(FieldWeld.welder_id == welder_id)
    ).scalar()
    if in_use:
        raise ReferentialConflict(
            f"Welder {welder.stencil_norm} is assigned to {in_use} field weld(s)",
            field="welder_id",
            details={"welder_id": welder_id, "field_weld_count": in_use},
        )
    db.session.delete(welder)
    db.session.commit()
    logger.info("Welder deleted", extra={"welder_id": welder_id})


def list_welders(project_id: int, status: str | None = None) -> list[dict]:
    if status is not None and status not in WELDER_STATUSES:
        raise ValidationError(
            f"Invalid welder status {status!r}",
            details={"valid_values": sorted(WELDER_STATUSES)},
            field="status",
        )
    stmt = select(Welder).where(Welder.project_id == project_id).order_by(Welder.stencil_norm)
    if status:
        stmt = stmt.where(Welder.status == status)
    return [w.to_dict() for w in db.session.execute(stmt).scalars()]
