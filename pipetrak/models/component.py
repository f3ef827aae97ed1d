"""
PipeTrak
Component model: a trackable physical item (spool, weld, valve, ...).

``current_milestones`` maps milestone name → bool (discrete) or number 0-100
(partial). Its keys are validated against the component's resolved template
on every write; ``percent_complete`` is a cached value that only the
milestone update engine (``pipetrak.services.milestone_service``) recomputes.

Components are never hard-deleted while referenced: retirement sets
``is_retired`` and removes them from rollups.
"""

from datetime import datetime, timezone

from pipetrak.models import db

COMPONENT_TYPES = (
    "spool",
    "field_weld",
    "support",
    "valve",
    "fitting",
    "flange",
    "instrument",
    "tubing",
    "hose",
    "misc_component",
    "threaded_pipe",
)

# Required identity_key fields per component type
_COMMODITY_KEY = ("drawing_norm", "commodity_code", "size", "seq")

IDENTITY_KEY_FIELDS: dict[str, tuple[str, ...]] = {
    "spool": ("spool_id",),
    "field_weld": ("weld_number",),
    **{t: _COMMODITY_KEY for t in (
        "support", "valve", "fitting", "flange", "instrument",
        "tubing", "hose", "misc_component", "threaded_pipe",
    )},
}


def identity_key_errors(component_type: str, identity_key) -> dict:
    """Return ``{field: message}`` for an invalid identity key (empty when valid)."""
    required = IDENTITY_KEY_FIELDS.get(component_type)
    if required is None:
        return {"component_type": f"Unknown component type {component_type!r}"}
    if not isinstance(identity_key, dict):
        return {"identity_key": "identity_key must be an object"}

    errors = {}
    for field in required:
        value = identity_key.get(field)
        if value is None or value == "":
            errors[field] = "required"
    if component_type in ("spool", "field_weld"):
        key = required[0]
        if key not in errors and not isinstance(identity_key[key], str):
            errors[key] = "must be a string"
    elif component_type != "threaded_pipe" and "seq" not in errors:
        seq = identity_key["seq"]
        if isinstance(seq, bool) or not isinstance(seq, (int, float)):
            errors["seq"] = "must be a number"
    return errors


class Component(db.Model):
    __tablename__ = "components"
    __table_args__ = (
        db.Index("ix_components_project_type", "project_id", "component_type"),
        db.Index("ix_components_drawing_retired", "drawing_id", "is_retired"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    drawing_id = db.Column(
        db.Integer, db.ForeignKey("drawings.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    test_package_id = db.Column(
        db.Integer, db.ForeignKey("test_packages.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    system_id = db.Column(
        db.Integer, db.ForeignKey("systems.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    component_type = db.Column(
        db.String(30), nullable=False,
        comment="spool | field_weld | support | valve | ... | threaded_pipe",
    )
    progress_template_id = db.Column(
        db.Integer, db.ForeignKey("progress_templates.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    identity_key = db.Column(db.JSON, nullable=False,
                             comment='field_weld {"weld_number": "W-001"}, spool {"spool_id": ...}')
    attributes = db.Column(db.JSON, nullable=True)

    current_milestones = db.Column(
        db.JSON, nullable=False, default=dict,
        comment='discrete {"Receive": true}, partial {"Fabricate": 85}',
    )
    percent_complete = db.Column(
        db.Numeric(5, 2, asdecimal=False), nullable=False, default=0.0,
        comment="Weighted ROC % (0.00-100.00), recomputed on every milestone write",
    )

    is_retired = db.Column(db.Boolean, nullable=False, default=False)
    retire_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    created_by = db.Column(db.String(150), nullable=True)
    last_updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    last_updated_by = db.Column(db.String(150), nullable=True)

    template = db.relationship("ProgressTemplate", lazy="joined")
    drawing = db.relationship("Drawing", lazy="select")

    @property
    def display_id(self) -> str:
        key = self.identity_key or {}
        for field in IDENTITY_KEY_FIELDS.get(self.component_type, ()):
            if field in key:
                return str(key[field])
        return str(self.id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "drawing_id": self.drawing_id,
            "test_package_id": self.test_package_id,
            "system_id": self.system_id,
            "component_type": self.component_type,
            "progress_template_id": self.progress_template_id,
            "identity_key": self.identity_key,
            "display_id": self.display_id,
            "attributes": self.attributes or {},
            "current_milestones": dict(self.current_milestones or {}),
            "percent_complete": float(self.percent_complete or 0),
            "is_retired": self.is_retired,
            "retire_reason": self.retire_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_updated_at": self.last_updated_at.isoformat() if self.last_updated_at else None,
            "last_updated_by": self.last_updated_by,
        }

    def __repr__(self):
        return f"<Component {self.id}: {self.component_type} {self.display_id}>"
