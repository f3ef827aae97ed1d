"""
PipeTrak
Progress rollup cache.

One row per (parent_type, parent_id): the counts and mean completion of the
non-retired components under a drawing, test package or system.

This table is a materialised cache, never a source of truth. Mutating code
paths flip ``is_stale`` in the same transaction as the component write, and
``pipetrak.services.rollup_service`` recomputes stale rows before serving
them.
"""

from pipetrak.models import db

# parent_type → Component column that references the parent
ROLLUP_PARENTS = {
    "drawing": "drawing_id",
    "test_package": "test_package_id",
    "system": "system_id",
}


class ProgressRollup(db.Model):
    __tablename__ = "progress_rollups"
    __table_args__ = (
        db.UniqueConstraint("parent_type", "parent_id", name="uq_rollups_parent"),
        db.CheckConstraint(
            "completed_components <= total_components",
            name="ck_rollups_completed_le_total",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    parent_type = db.Column(db.String(20), nullable=False,
                            comment="drawing | test_package | system")
    parent_id = db.Column(db.Integer, nullable=False)

    total_components = db.Column(db.Integer, nullable=False, default=0)
    completed_components = db.Column(db.Integer, nullable=False, default=0)
    avg_percent_complete = db.Column(
        db.Numeric(5, 2, asdecimal=False), nullable=True,
        comment="NULL when total_components == 0 (undefined, not zero)",
    )

    is_stale = db.Column(db.Boolean, nullable=False, default=True)
    # Bumped by every invalidation; a refresh only clears is_stale when the
    # value it read before computing is still current.
    invalidation_seq = db.Column(db.Integer, nullable=False, default=0)
    invalidated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refreshed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "parent_type": self.parent_type,
            "parent_id": self.parent_id,
            "total_components": self.total_components,
            "completed_components": self.completed_components,
            "avg_percent_complete": (
                float(self.avg_percent_complete)
                if self.avg_percent_complete is not None else None
            ),
            "is_stale": self.is_stale,
            "refreshed_at": self.refreshed_at.isoformat() if self.refreshed_at else None,
        }

    def __repr__(self):
        return f"<ProgressRollup {self.parent_type}/{self.parent_id} stale={self.is_stale}>"
