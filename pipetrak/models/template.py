"""
PipeTrak
Progress template model.

A ProgressTemplate defines, per component type and version, the ordered
milestones a component moves through and how much each is worth.

milestones_config (JSON array):
    [{"name": "Receive", "weight": 10, "order": 1,
      "is_partial": false, "requires_welder": false, "step": null}, ...]

Templates are immutable once components reference them; a change means a new
version row.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from pipetrak.models import db

WORKFLOW_TYPES = frozenset({"discrete", "partial", "hybrid"})


@dataclass(frozen=True)
class MilestoneConfig:
    """One weighted milestone inside a template."""

    name: str
    weight: int
    order: int
    is_partial: bool = False
    requires_welder: bool = False
    step: int | None = None

    @property
    def max_value(self):
        """The value that earns this milestone's full weight."""
        return 100 if self.is_partial else True

    @property
    def empty_value(self):
        return 0 if self.is_partial else False

    @classmethod
    def from_dict(cls, data: dict) -> "MilestoneConfig":
        return cls(
            name=data["name"],
            weight=data["weight"],
            order=data["order"],
            is_partial=bool(data.get("is_partial", False)),
            requires_welder=bool(data.get("requires_welder", False)),
            step=data.get("step"),
        )

    def to_dict(self) -> dict:
        return asdict(self)


class ProgressTemplate(db.Model):
    __tablename__ = "progress_templates"
    __table_args__ = (
        db.UniqueConstraint("component_type", "version", name="uq_templates_type_version"),
    )

    id = db.Column(db.Integer, primary_key=True)
    component_type = db.Column(db.String(30), nullable=False, index=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    workflow_type = db.Column(
        db.String(20), nullable=False,
        comment="discrete | partial | hybrid",
    )
    milestones_config = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def milestones(self) -> list[MilestoneConfig]:
        """Milestones sorted by display order."""
        items = [MilestoneConfig.from_dict(m) for m in (self.milestones_config or [])]
        return sorted(items, key=lambda m: m.order)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "component_type": self.component_type,
            "version": self.version,
            "workflow_type": self.workflow_type,
            "milestones": [m.to_dict() for m in self.milestones],
        }

    def __repr__(self):
        return f"<ProgressTemplate {self.component_type} v{self.version}>"
