"""
Shared pytest fixtures for the PipeTrak test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB reseed + recreate (autouse)
    - client: Flask test client (function-scoped)
    - project / drawing / test_package / system / welder: committed rows
    - make_component / make_field_weld: factories for tracked components

Services roll the session back on any rejection, so every fixture commits.
"""

import pytest

from pipetrak import create_app
from pipetrak.models import db as _db
from pipetrak.models.field_weld import Welder
from pipetrak.models.project import Drawing, Project, System, TestPackage
from pipetrak.services import field_weld_service, milestone_service
from pipetrak.services.template_registry import invalidate_template_cache, seed_default_templates


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: seed default templates, then rollback and recreate tables."""
    with app.app_context():
        # Template ids are reused after every recreate; drop cached snapshots.
        invalidate_template_cache()
        seed_default_templates()
        _db.session.commit()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()
        invalidate_template_cache()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def project():
    proj = Project(name="Unit 200 Revamp", code="U200")
    _db.session.add(proj)
    _db.session.commit()
    return proj


@pytest.fixture()
def test_package(project):
    pkg = TestPackage(project_id=project.id, name="TP-200-01")
    _db.session.add(pkg)
    _db.session.commit()
    return pkg


@pytest.fixture()
def system(project):
    sys_ = System(project_id=project.id, name="HC-05")
    _db.session.add(sys_)
    _db.session.commit()
    return sys_


@pytest.fixture()
def drawing(project, test_package, system):
    dwg = Drawing(
        project_id=project.id,
        drawing_no_raw="P-1001",
        drawing_no_norm="P-1001",
        test_package_id=test_package.id,
        system_id=system.id,
    )
    _db.session.add(dwg)
    _db.session.commit()
    return dwg


@pytest.fixture()
def welder(project):
    w = Welder(project_id=project.id, name="Kim Lee", stencil="K-07", stencil_norm="K-07")
    _db.session.add(w)
    _db.session.commit()
    return w


@pytest.fixture()
def make_component(project, drawing):
    """Factory: create a committed non-weld component on the fixture drawing."""
    counter = {"n": 0}

    def _make(component_type="valve", identity_key=None, **kwargs):
        counter["n"] += 1
        if identity_key is None:
            if component_type == "spool":
                identity_key = {"spool_id": f"SP-{counter['n']:03d}"}
            else:
                identity_key = {
                    "drawing_norm": drawing.drawing_no_norm,
                    "commodity_code": "VGA-2",
                    "size": "2",
                    "seq": counter["n"],
                }
        kwargs.setdefault("drawing_id", drawing.id)
        kwargs.setdefault("test_package_id", drawing.test_package_id)
        kwargs.setdefault("system_id", drawing.system_id)
        return milestone_service.create_component(project.id, component_type, identity_key, **kwargs)

    return _make


@pytest.fixture()
def make_field_weld(project, drawing):
    """Factory: create a committed field weld on the fixture drawing."""
    counter = {"n": 0}

    def _make(weld_number=None, weld_type="BW", **kwargs):
        counter["n"] += 1
        weld_number = weld_number or f"W-{counter['n']:03d}"
        kwargs.setdefault("drawing_id", drawing.id)
        kwargs.setdefault("test_package_id", drawing.test_package_id)
        kwargs.setdefault("system_id", drawing.system_id)
        return field_weld_service.create_field_weld(project.id, weld_number, weld_type=weld_type, **kwargs)

    return _make


@pytest.fixture()
def field_weld(make_field_weld):
    return make_field_weld("W-001")


@pytest.fixture()
def welded_weld(field_weld, welder):
    """A weld with a welder assigned and Fit-up + Weld Complete set (95%)."""
    field_weld_service.assign_welder(field_weld.id, welder.id, "foreman")
    milestone_service.apply_milestone_update(field_weld.component_id, "Fit-up", True, "foreman")
    milestone_service.apply_milestone_update(field_weld.component_id, "Weld Complete", True, "foreman")
    return field_weld
