"""Rollup cache: invalidation on write, recompute on read, eager mode."""

import pytest
from sqlalchemy.exc import OperationalError

from pipetrak.core.exceptions import NotFoundError, ValidationError
from pipetrak.models import db
from pipetrak.models.project import Drawing
from pipetrak.models.rollup import ProgressRollup
from pipetrak.services import milestone_service, rollup_service


def _row(parent_type, parent_id):
    return ProgressRollup.query.filter_by(parent_type=parent_type, parent_id=parent_id).first()


def test_empty_parent_has_undefined_average(drawing):
    rollup = rollup_service.get_rollup("drawing", drawing.id)
    assert rollup["total_components"] == 0
    assert rollup["completed_components"] == 0
    assert rollup["avg_percent_complete"] is None
    assert rollup["is_stale"] is False


def test_rollup_aggregates_components(make_component, drawing):
    a = make_component("valve")
    b = make_component("valve")
    milestone_service.apply_milestone_update(a.id, "Receive", True, "a")
    for name in ("Receive", "Install", "Punch", "Test", "Restore"):
        milestone_service.apply_milestone_update(b.id, name, True, "a")

    rollup = rollup_service.get_rollup("drawing", drawing.id)
    assert rollup["total_components"] == 2
    assert rollup["completed_components"] == 1
    assert rollup["avg_percent_complete"] == 55.0


def test_milestone_update_marks_rollup_stale(make_component, drawing):
    valve = make_component("valve")
    rollup_service.get_rollup("drawing", drawing.id)
    assert _row("drawing", drawing.id).is_stale is False

    milestone_service.apply_milestone_update(valve.id, "Install", True, "a")
    assert _row("drawing", drawing.id).is_stale is True
    assert _row("test_package", drawing.test_package_id) is None

    rollup = rollup_service.get_rollup("drawing", drawing.id)
    assert rollup["is_stale"] is False
    assert rollup["avg_percent_complete"] == 60.0


def test_rollup_for_package_and_system(make_component, drawing):
    valve = make_component("valve")
    milestone_service.apply_milestone_update(valve.id, "Receive", True, "a")

    assert rollup_service.get_rollup("test_package", drawing.test_package_id)["avg_percent_complete"] == 10.0
    assert rollup_service.get_rollup("system", drawing.system_id)["total_components"] == 1


def test_retired_components_are_excluded(make_component, drawing):
    a = make_component("valve")
    b = make_component("valve")
    milestone_service.apply_milestone_update(a.id, "Install", True, "a")
    assert rollup_service.get_rollup("drawing", drawing.id)["total_components"] == 2

    milestone_service.retire_component(b.id, "Duplicate takeoff line", "a")
    rollup = rollup_service.get_rollup("drawing", drawing.id)
    assert rollup["total_components"] == 1
    assert rollup["avg_percent_complete"] == 60.0


def test_compute_matches_cached_value(make_component, drawing):
    for _ in range(3):
        valve = make_component("valve")
        milestone_service.apply_milestone_update(valve.id, "Receive", True, "a")
    cached = rollup_service.get_rollup("drawing", drawing.id)
    live = rollup_service.compute_rollup("drawing", drawing.id)
    for key in ("total_components", "completed_components", "avg_percent_complete"):
        assert cached[key] == live[key]


def test_unknown_parent_type_rejected():
    with pytest.raises(ValidationError):
        rollup_service.get_rollup("area", 1)


def test_unknown_parent_raises_not_found():
    with pytest.raises(NotFoundError):
        rollup_service.get_rollup("drawing", 5150)


def test_list_project_rollups(project, drawing, make_component):
    second = Drawing(project_id=project.id, drawing_no_raw="P-1002", drawing_no_norm="P-1002")
    db.session.add(second)
    db.session.commit()
    make_component("valve")

    items = rollup_service.list_project_rollups(project.id)
    assert [i["parent_id"] for i in items] == [drawing.id, second.id]
    assert [i["total_components"] for i in items] == [1, 0]


def test_eager_mode_refreshes_after_commit(app, monkeypatch, make_component, drawing):
    monkeypatch.setitem(app.config, "ROLLUP_REFRESH_MODE", "eager")
    valve = make_component("valve")
    milestone_service.apply_milestone_update(valve.id, "Install", True, "a")

    row = _row("drawing", drawing.id)
    assert row.is_stale is False
    assert row.avg_percent_complete == 60.0


def test_write_committed_during_refresh_is_not_lost(monkeypatch, make_component, drawing):
    valve = make_component("valve")
    milestone_service.apply_milestone_update(valve.id, "Receive", True, "a")
    real_compute = rollup_service.compute_rollup
    snapshots = []

    def _compute_with_concurrent_write(parent_type, parent_id):
        values = real_compute(parent_type, parent_id)
        if not snapshots:
            snapshots.append(values)
            milestone_service.apply_milestone_update(valve.id, "Install", True, "b")
        return values

    monkeypatch.setattr(rollup_service, "compute_rollup", _compute_with_concurrent_write)
    rollup = rollup_service.get_rollup("drawing", drawing.id)

    assert snapshots[0]["avg_percent_complete"] == 10.0
    assert rollup["avg_percent_complete"] == 70.0
    assert rollup["is_stale"] is False
    assert _row("drawing", drawing.id).invalidation_seq == 1


def test_refresh_keeps_row_stale_when_invalidated_midway(monkeypatch, make_component, drawing):
    valve = make_component("valve")
    real_compute = rollup_service.compute_rollup

    def _compute_then_invalidate(parent_type, parent_id):
        values = real_compute(parent_type, parent_id)
        rollup_service.mark_stale(parent_type, parent_id)
        return values

    monkeypatch.setattr(rollup_service, "compute_rollup", _compute_then_invalidate)
    row = rollup_service.refresh_rollup("drawing", drawing.id)
    db.session.commit()

    assert _row("drawing", drawing.id).is_stale is True
    assert row.total_components == 1

    rollup = rollup_service.get_rollup("drawing", drawing.id)
    assert rollup["is_stale"] is True


def test_failed_refresh_serves_stale_row(monkeypatch, make_component, drawing):
    valve = make_component("valve")
    rollup_service.get_rollup("drawing", drawing.id)
    milestone_service.apply_milestone_update(valve.id, "Install", True, "a")

    def _boom(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(rollup_service, "refresh_rollup", _boom)
    rollup = rollup_service.get_rollup("drawing", drawing.id)
    assert rollup["is_stale"] is True
    assert rollup["total_components"] == 1
    assert rollup["avg_percent_complete"] == 0.0


def test_rollup_api(client, make_component, drawing):
    make_component("valve")
    res = client.get(f"/api/v1/rollups/drawing/{drawing.id}")
    assert res.status_code == 200
    assert res.get_json()["total_components"] == 1

    res = client.post(f"/api/v1/rollups/drawing/{drawing.id}/refresh")
    assert res.status_code == 200
    assert res.get_json()["is_stale"] is False

    res = client.get("/api/v1/rollups/area/1")
    assert res.status_code == 422
