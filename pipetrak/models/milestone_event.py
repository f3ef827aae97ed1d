"""
PipeTrak
Milestone audit trail.

Models:
    - MilestoneEvent: immutable, append-only record of every milestone change.

Every write, including a replayed identical value and every change the weld
state machine makes on its own, produces one row. Rows are never updated or
deleted; retention is the lifetime of the project.
"""

from datetime import datetime, timezone

from pipetrak.models import db

# ── Constants ────────────────────────────────────────────────────────────────

MILESTONE_ACTIONS = frozenset({"complete", "rollback", "update"})


class MilestoneEvent(db.Model):
    """
    One milestone change: which component, which milestone, old → new.

    ``value`` / ``previous_value`` are JSON so a discrete ``true`` is kept
    distinct from a partial ``100``; ``previous_value`` is null when the
    milestone had never been set.
    """

    __tablename__ = "milestone_events"
    __table_args__ = (
        db.Index("idx_events_component_created", "component_id", "created_at"),
        db.Index("idx_events_milestone", "milestone_name"),
        db.Index("idx_events_actor", "actor"),
    )

    id = db.Column(db.Integer, primary_key=True)
    component_id = db.Column(
        db.Integer,
        db.ForeignKey("components.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    milestone_name = db.Column(db.String(100), nullable=False)
    action = db.Column(
        db.String(20), nullable=False,
        comment="complete | rollback | update",
    )
    value = db.Column(db.JSON, nullable=True)
    previous_value = db.Column(db.JSON, nullable=True)
    actor = db.Column(db.String(150), nullable=False, default="system")

    # "metadata" is reserved on declarative classes
    event_metadata = db.Column(
        "metadata", db.JSON, nullable=True,
        comment='{"trigger": "nde_result"} for automated changes, {"welder_id": ...} for welds',
    )

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "component_id": self.component_id,
            "milestone_name": self.milestone_name,
            "action": self.action,
            "value": self.value,
            "previous_value": self.previous_value,
            "actor": self.actor,
            "metadata": self.event_metadata or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<MilestoneEvent {self.id}: {self.action} {self.milestone_name} on component/{self.component_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def record_milestone_event(
    *,
    component_id: int,
    milestone_name: str,
    action: str,
    value,
    previous_value,
    actor: str = "system",
    metadata: dict | None = None,
) -> MilestoneEvent:
    """
    Append a single milestone event.  Uses ``flush`` so callers keep
    transaction control: the event and the component mutation commit or
    roll back together.

    Returns the (flushed) MilestoneEvent instance.
    """
    if action not in MILESTONE_ACTIONS:
        raise ValueError(f"Unknown milestone action: {action}")

    event = MilestoneEvent(
        component_id=component_id,
        milestone_name=milestone_name,
        action=action,
        value=value,
        previous_value=previous_value,
        actor=str(actor or "system"),
        event_metadata=metadata or None,
    )
    db.session.add(event)
    db.session.flush()
    return event
