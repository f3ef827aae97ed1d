"""
Field weld bulk import: CSV parsing, per-row validation, all-or-nothing
apply and the initial progress derived from each row.
"""

import pytest

from pipetrak.core.exceptions import NotFoundError, ValidationError
from pipetrak.models.component import Component
from pipetrak.models.field_weld import FieldWeld, Welder
from pipetrak.models.milestone_event import MilestoneEvent
from pipetrak.services import field_weld_import_service as imports


def _row(weld_number, **overrides):
    row = {"drawing": "p-1001", "weld_number": weld_number, "weld_type": "BW"}
    row.update(overrides)
    return row


def _weld(weld_number):
    for fw in FieldWeld.query.all():
        if fw.weld_number == weld_number:
            return fw
    return None


# ── parse / template ─────────────────────────────────────────────────────


def test_csv_template_round_trips_through_parser():
    rows = imports.parse_csv(imports.generate_csv_template())
    assert len(rows) == 2
    assert rows[0]["welder_stencil"] == "K-07"
    assert set(rows[0]) == set(imports.IMPORT_COLUMNS)


def test_parse_csv_normalises_headers_and_bom():
    content = "\ufeff Drawing ,WELD_NUMBER,Weld_Type\nP-1001 , W-1 ,BW\n".encode("utf-8")
    rows = imports.parse_csv(content)
    assert rows == [{"drawing": "P-1001", "weld_number": "W-1", "weld_type": "BW"}]


def test_parse_csv_missing_columns():
    with pytest.raises(ValidationError) as exc:
        imports.parse_csv("drawing,weld_size\nP-1,2\n")
    assert "weld_number" in exc.value.message


# ── validation ───────────────────────────────────────────────────────────


def test_validate_reports_every_bad_row(project, drawing, field_weld):
    rows = [
        _row("W-100"),
        _row("W-100"),
        _row("W-001"),
        _row("W-101", drawing="P-9999"),
        _row("W-102", weld_type="ZZ"),
        _row("W-103", date_welded="2026-03-02"),
        _row("W-104", welder_stencil="K 07"),
        _row("W-105", welder_stencil="K-07", nde_result="PASS"),
        _row("W-106", welder_stencil="K-07", date_welded="yesterday"),
    ]
    result = imports.validate_import_rows(project.id, rows)

    assert [v["weld_number"] for v in result["valid"]] == ["W-100"]
    by_row = {e["row_num"]: e["errors"] for e in result["errors"]}
    assert by_row[2][0]["kind"] == "Conflict"
    assert by_row[3][0]["kind"] == "Conflict"
    assert by_row[4][0]["field"] == "drawing"
    assert by_row[4][0]["kind"] == "NotFound"
    assert by_row[5][0]["field"] == "weld_type"
    assert by_row[6][0]["kind"] == "WelderRequired"
    assert by_row[7][0]["field"] == "welder_stencil"
    assert by_row[8][0]["field"] == "nde_type"
    assert by_row[9][0]["field"] == "date_welded"


def test_validate_matches_drawing_by_normalised_number(project, drawing):
    result = imports.validate_import_rows(project.id, [_row("W-1", drawing="  p-1001 ")])
    assert result["errors"] == []
    assert result["valid"][0]["drawing_id"] == drawing.id


# ── import ───────────────────────────────────────────────────────────────


def test_import_is_all_or_nothing(project, drawing):
    result = imports.import_field_welds(project.id, [_row("W-1"), _row("W-2", weld_type="??")], "importer")

    assert result["status"] == "rejected"
    assert result["imported"] == 0
    assert result["errors"][0]["row_num"] == 2
    assert FieldWeld.query.count() == 0
    assert Component.query.count() == 0


def test_import_sets_initial_progress(project, drawing, welder):
    rows = [
        _row("W-1"),
        _row("W-2", welder_stencil="k-07", date_welded="2026-03-02"),
        _row("W-3", welder_stencil="K-07", date_welded="2026-03-02", nde_type="RT", nde_result="PASS"),
        _row("W-4", welder_stencil="NEW-1", date_welded="03/04/2026", nde_type="ut", nde_result="fail"),
        _row("W-5", welder_stencil="K-07", date_welded="2026-03-02", nde_type="RT", nde_result="PENDING"),
    ]
    result = imports.import_field_welds(project.id, rows, "importer")

    assert result == {"status": "completed", "total_rows": 5, "imported": 5,
                      "welders_created": 1, "errors": []}

    w1, w2, w3, w4, w5 = (_weld(n) for n in ("W-1", "W-2", "W-3", "W-4", "W-5"))
    assert w1.component.percent_complete == 0.0
    assert w1.welder_id is None

    assert w2.component.percent_complete == 95.0
    assert w2.welder_id == welder.id
    assert w2.date_welded.isoformat() == "2026-03-02"

    assert w3.status == "accepted"
    assert w3.component.percent_complete == 100.0

    assert w4.status == "rejected"
    assert w4.nde_type == "UT"
    assert w4.component.percent_complete == 100.0
    assert w4.welder.stencil_norm == "NEW-1"
    assert w4.welder.status == "unverified"

    assert w5.status == "active"
    assert w5.nde_result == "PENDING"
    assert w5.nde_required is True
    assert w5.component.percent_complete == 95.0

    assert Welder.query.count() == 2


def test_import_audits_with_import_trigger(project, drawing):
    imports.import_field_welds(
        project.id, [_row("W-1", welder_stencil="K-07", date_welded="2026-03-02")], "importer",
    )
    events = MilestoneEvent.query.filter_by(component_id=_weld("W-1").component_id).all()
    assert {e.milestone_name for e in events} == {"Fit-up", "Weld Complete"}
    assert all(e.event_metadata == {"trigger": "import"} for e in events)
    assert all(e.actor == "importer" for e in events)


def test_import_flushes_in_batches(app, monkeypatch, project, drawing):
    monkeypatch.setitem(app.config, "IMPORT_BATCH_SIZE", 2)
    rows = [_row(f"W-{i}") for i in range(1, 6)]
    assert imports.import_field_welds(project.id, rows)["imported"] == 5
    assert FieldWeld.query.count() == 5


def test_import_row_limit(app, monkeypatch, project):
    monkeypatch.setitem(app.config, "IMPORT_MAX_ROWS", 2)
    with pytest.raises(ValidationError) as exc:
        imports.import_field_welds(project.id, [_row("W-1"), _row("W-2"), _row("W-3")])
    assert exc.value.details["max_rows"] == 2


def test_import_empty_rows(project):
    with pytest.raises(ValidationError):
        imports.import_field_welds(project.id, [])


def test_import_unknown_project():
    with pytest.raises(NotFoundError):
        imports.import_field_welds(999, [_row("W-1")])


# ── API ──────────────────────────────────────────────────────────────────


def test_import_api_json_rows(client, project, drawing):
    res = client.post(
        f"/api/v1/projects/{project.id}/field-welds/import",
        json={"rows": [_row("W-1")], "actor_id": "importer"},
    )
    assert res.status_code == 200
    assert res.get_json()["imported"] == 1


def test_import_api_csv_content_rejected_rows(client, project, drawing):
    csv_content = "drawing,weld_number,weld_type\nP-1001,W-1,BW\nP-1001,W-1,BW\n"
    res = client.post(
        f"/api/v1/projects/{project.id}/field-welds/import",
        json={"csv_content": csv_content},
    )
    assert res.status_code == 422
    body = res.get_json()
    assert body["status"] == "rejected"
    assert body["errors"][0]["row_num"] == 2


def test_import_api_validate_and_template(client, project, drawing):
    res = client.post(
        f"/api/v1/projects/{project.id}/field-welds/import/validate",
        json={"rows": [_row("W-1"), _row("W-2", drawing="X-1")]},
    )
    assert res.status_code == 200
    body = res.get_json()
    assert body["valid_count"] == 1
    assert body["error_count"] == 1
    assert FieldWeld.query.count() == 0

    res = client.get(f"/api/v1/projects/{project.id}/field-welds/import/template")
    assert res.status_code == 200
    assert res.mimetype == "text/csv"
    assert res.get_data(as_text=True).startswith("drawing,weld_number,weld_type")


def test_import_api_requires_rows(client, project):
    res = client.post(f"/api/v1/projects/{project.id}/field-welds/import", json={})
    assert res.status_code == 400
