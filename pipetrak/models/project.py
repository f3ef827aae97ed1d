"""
PipeTrak
Project structure models.

Models:
    - Project: top-level container for all tracked work.
    - Drawing: isometric / P&ID sheet owning components.
    - TestPackage: components grouped for hydro/pressure testing.
    - System: process system grouping (e.g. "HC-05").

Drawings, test packages and systems are the parents that progress rollups
aggregate over (see ``pipetrak.models.rollup``).
"""

from datetime import datetime, timezone

from pipetrak.models import db


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    code = db.Column(db.String(50), nullable=True, unique=True)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    drawings = db.relationship("Drawing", backref="project", lazy="dynamic",
                               cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"


class TestPackage(db.Model):
    __tablename__ = "test_packages"
    __test__ = False  # keep pytest from collecting the model

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    target_date = db.Column(db.Date, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description,
            "target_date": self.target_date.isoformat() if self.target_date else None,
        }


class System(db.Model):
    __tablename__ = "systems"
    __table_args__ = (
        db.UniqueConstraint("project_id", "name", name="uq_systems_project_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description,
        }


class Drawing(db.Model):
    """An isometric drawing; components default their package/system from it."""

    __tablename__ = "drawings"
    __table_args__ = (
        db.UniqueConstraint("project_id", "drawing_no_norm", name="uq_drawings_project_norm"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    drawing_no_raw = db.Column(db.String(100), nullable=False,
                               comment="Drawing number as entered/imported")
    drawing_no_norm = db.Column(db.String(100), nullable=False,
                                comment="UPPER, trimmed, whitespace-collapsed")
    title = db.Column(db.String(255), nullable=True)
    rev = db.Column(db.String(20), nullable=True)
    test_package_id = db.Column(
        db.Integer, db.ForeignKey("test_packages.id", ondelete="SET NULL"), nullable=True,
    )
    system_id = db.Column(
        db.Integer, db.ForeignKey("systems.id", ondelete="SET NULL"), nullable=True,
    )
    is_retired = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "drawing_no": self.drawing_no_raw,
            "drawing_no_norm": self.drawing_no_norm,
            "title": self.title,
            "rev": self.rev,
            "test_package_id": self.test_package_id,
            "system_id": self.system_id,
            "is_retired": self.is_retired,
        }

    def __repr__(self):
        return f"<Drawing {self.id}: {self.drawing_no_norm}>"
