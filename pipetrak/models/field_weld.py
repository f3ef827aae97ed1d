"""
PipeTrak
Field weld QC domain.

Models:
    - Welder: project-scoped welder registry keyed by normalised stencil.
    - FieldWeld: QC extension of a ``field_weld`` Component (one-to-one).
    - FieldWeldEvent: append-only log of welder assignment and NDE changes.

Repairs are flat rows: a repair weld points at the weld it replaces through
``original_weld_id``. Lineage is always walked with an explicit bounded loop
(``pipetrak.services.repair_chain``), never through ORM back-references.
"""

from datetime import datetime, timezone

from pipetrak.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

WELD_STATUSES = ("active", "accepted", "rejected")
WELD_TYPES = frozenset({"BW", "SW", "FW", "TW"})   # butt, socket, fillet, tack
NDE_TYPES = frozenset({"RT", "UT", "PT", "MT", "VT"})
NDE_RESULTS = frozenset({"PASS", "FAIL", "PENDING"})
WELDER_STATUSES = frozenset({"unverified", "verified"})

WELD_EVENT_ACTIONS = frozenset({
    "assign", "update", "clear",
    "nde_record", "nde_update", "nde_clear",
})

# Spec fields a repair copies from the weld it replaces
WELD_SPEC_FIELDS = ("weld_type", "weld_size", "schedule", "base_metal", "spec")


class Welder(db.Model):
    __tablename__ = "welders"
    __table_args__ = (
        db.UniqueConstraint("project_id", "stencil_norm", name="uq_welders_project_stencil"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    stencil = db.Column(db.String(50), nullable=False, comment="Raw stencil as entered/imported")
    stencil_norm = db.Column(db.String(12), nullable=False,
                             comment="UPPER(TRIM(stencil)), matches ^[A-Z0-9-]{2,12}$")
    status = db.Column(db.String(20), nullable=False, default="unverified",
                       comment="unverified | verified (not used by the weld workflow)")
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    verified_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    created_by = db.Column(db.String(150), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "stencil": self.stencil,
            "stencil_norm": self.stencil_norm,
            "status": self.status,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "verified_by": self.verified_by,
        }

    def __repr__(self):
        return f"<Welder {self.id}: {self.stencil_norm}>"


class FieldWeld(db.Model):
    __tablename__ = "field_welds"
    __table_args__ = (
        db.CheckConstraint(
            "original_weld_id IS NULL OR original_weld_id <> id",
            name="ck_field_welds_not_self_repair",
        ),
        db.Index("ix_field_welds_original", "original_weld_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    component_id = db.Column(
        db.Integer, db.ForeignKey("components.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    # Weld specification
    weld_type = db.Column(db.String(2), nullable=False, comment="BW | SW | FW | TW")
    weld_size = db.Column(db.String(20), nullable=True)
    schedule = db.Column(db.String(20), nullable=True)
    base_metal = db.Column(db.String(50), nullable=True)
    spec = db.Column(db.String(50), nullable=True)

    # Welder assignment; Welder deletion is guarded in welder_service
    welder_id = db.Column(db.Integer, db.ForeignKey("welders.id"), nullable=True, index=True)
    date_welded = db.Column(db.Date, nullable=True)

    # NDE
    nde_required = db.Column(db.Boolean, nullable=False, default=False)
    nde_type = db.Column(db.String(5), nullable=True, comment="RT | UT | PT | MT | VT")
    nde_result = db.Column(db.String(10), nullable=True, comment="PASS | FAIL | PENDING")
    nde_date = db.Column(db.Date, nullable=True)
    nde_notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(20), nullable=False, default="active",
                       comment="active | accepted | rejected")

    # Repair lineage; SET NULL so a deleted original ends the chain
    original_weld_id = db.Column(
        db.Integer, db.ForeignKey("field_welds.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    created_by = db.Column(db.String(150), nullable=True)
    last_updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    component = db.relationship(
        "Component",
        backref=db.backref("field_weld", uselist=False, cascade="all, delete-orphan"),
    )
    welder = db.relationship("Welder", lazy="joined")

    @property
    def is_repair(self) -> bool:
        return self.original_weld_id is not None

    @property
    def weld_number(self) -> str | None:
        if self.component is None:
            return None
        return (self.component.identity_key or {}).get("weld_number")

    def spec_fields(self) -> dict:
        return {f: getattr(self, f) for f in WELD_SPEC_FIELDS}

    def to_dict(self, include_component: bool = True) -> dict:
        data = {
            "id": self.id,
            "component_id": self.component_id,
            "project_id": self.project_id,
            "weld_number": self.weld_number,
            **self.spec_fields(),
            "welder_id": self.welder_id,
            "welder_stencil": self.welder.stencil_norm if self.welder else None,
            "date_welded": self.date_welded.isoformat() if self.date_welded else None,
            "nde_required": self.nde_required,
            "nde_type": self.nde_type,
            "nde_result": self.nde_result,
            "nde_date": self.nde_date.isoformat() if self.nde_date else None,
            "nde_notes": self.nde_notes,
            "status": self.status,
            "original_weld_id": self.original_weld_id,
            "is_repair": self.is_repair,
        }
        if include_component and self.component is not None:
            data["percent_complete"] = float(self.component.percent_complete or 0)
            data["current_milestones"] = dict(self.component.current_milestones or {})
            data["drawing_id"] = self.component.drawing_id
        return data

    def __repr__(self):
        return f"<FieldWeld {self.id}: {self.weld_number} [{self.status}]>"


class FieldWeldEvent(db.Model):
    """Immutable log of welder and NDE changes on a field weld."""

    __tablename__ = "field_weld_events"

    id = db.Column(db.Integer, primary_key=True)
    field_weld_id = db.Column(
        db.Integer, db.ForeignKey("field_welds.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    action = db.Column(
        db.String(20), nullable=False,
        comment="assign | update | clear | nde_record | nde_update | nde_clear",
    )
    welder_id = db.Column(db.Integer, nullable=True)
    previous_welder_id = db.Column(db.Integer, nullable=True)
    nde_type = db.Column(db.String(5), nullable=True)
    nde_result = db.Column(db.String(10), nullable=True)
    previous_nde_type = db.Column(db.String(5), nullable=True)
    previous_nde_result = db.Column(db.String(10), nullable=True)
    actor = db.Column(db.String(150), nullable=False, default="system")
    event_metadata = db.Column("metadata", db.JSON, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "field_weld_id": self.field_weld_id,
            "action": self.action,
            "welder_id": self.welder_id,
            "previous_welder_id": self.previous_welder_id,
            "nde_type": self.nde_type,
            "nde_result": self.nde_result,
            "previous_nde_type": self.previous_nde_type,
            "previous_nde_result": self.previous_nde_result,
            "actor": self.actor,
            "metadata": self.event_metadata or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def write_weld_event(*, field_weld_id: int, action: str, actor: str = "system", **fields) -> FieldWeldEvent:
    """Append a FieldWeldEvent (flush only; caller owns the transaction)."""
    if action not in WELD_EVENT_ACTIONS:
        raise ValueError(f"Unknown field weld event action: {action}")
    metadata = fields.pop("metadata", None)
    event = FieldWeldEvent(
        field_weld_id=field_weld_id,
        action=action,
        actor=str(actor or "system"),
        event_metadata=metadata or None,
        **fields,
    )
    db.session.add(event)
    db.session.flush()
    return event
