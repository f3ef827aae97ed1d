"""
HTTP contract tests: project structure, components, milestones, field welds,
welders and health endpoints.

Error bodies are ``{"error", "code", "details"}``; engine rejections carry
``details.kind``.
"""

import pytest

BASE = "/api/v1"


@pytest.fixture()
def api_project(client):
    res = client.post(f"{BASE}/projects", json={"name": "Unit 300", "code": "U300"})
    assert res.status_code == 201
    return res.get_json()


@pytest.fixture()
def api_drawing(client, api_project):
    res = client.post(f"{BASE}/projects/{api_project['id']}/drawings", json={"drawing_no": " p-2001  rev a "})
    assert res.status_code == 201
    return res.get_json()


def _create_valve(client, project_id, drawing, seq=1):
    res = client.post(f"{BASE}/projects/{project_id}/components", json={
        "component_type": "valve",
        "identity_key": {"drawing_norm": drawing["drawing_no_norm"], "commodity_code": "VGA-2",
                         "size": "2", "seq": seq},
        "drawing_id": drawing["id"],
    })
    assert res.status_code == 201, res.get_json()
    return res.get_json()


# ── Projects ─────────────────────────────────────────────────────────────


class TestProjectStructure:
    def test_create_project_requires_name(self, client):
        res = client.post(f"{BASE}/projects", json={})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_drawing_number_is_normalised(self, api_drawing):
        assert api_drawing["drawing_no"] == "p-2001  rev a"
        assert api_drawing["drawing_no_norm"] == "P-2001 REV A"

    def test_duplicate_drawing_is_409(self, client, api_project, api_drawing):
        res = client.post(f"{BASE}/projects/{api_project['id']}/drawings", json={"drawing_no": "P-2001 REV A"})
        assert res.status_code == 409

    def test_list_drawings(self, client, api_project, api_drawing):
        res = client.get(f"{BASE}/projects/{api_project['id']}/drawings")
        assert res.status_code == 200
        assert res.get_json()["total"] == 1

    def test_packages_and_systems(self, client, api_project):
        pid = api_project["id"]
        res = client.post(f"{BASE}/projects/{pid}/test-packages", json={"name": "TP-1", "target_date": "2026-11-30"})
        assert res.status_code == 201
        assert res.get_json()["target_date"] == "2026-11-30"

        res = client.post(f"{BASE}/projects/{pid}/test-packages", json={"name": "TP-2", "target_date": "soon"})
        assert res.status_code == 400

        res = client.post(f"{BASE}/projects/{pid}/systems", json={"name": "HC-05"})
        assert res.status_code == 201

    def test_unknown_project_is_404(self, client):
        res = client.get(f"{BASE}/projects/9999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ── Components & milestones ──────────────────────────────────────────────


class TestComponents:
    def test_create_and_update_milestone(self, client, api_project, api_drawing):
        valve = _create_valve(client, api_project["id"], api_drawing)
        assert valve["percent_complete"] == 0.0

        res = client.patch(
            f"{BASE}/components/{valve['id']}/milestones",
            json={"milestone_name": "Receive", "value": True},
            headers={"X-User": "jdoe"},
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["previous_value"] is None
        assert body["component"]["percent_complete"] == 10.0
        assert body["component"]["last_updated_by"] == "jdoe"

        history = client.get(f"{BASE}/components/{valve['id']}/history").get_json()
        assert history["total"] == 1
        assert history["items"][0]["id"] == body["event_id"]
        assert history["items"][0]["actor"] == "jdoe"

    def test_unknown_component_type(self, client, api_project):
        res = client.post(f"{BASE}/projects/{api_project['id']}/components",
                          json={"component_type": "pump", "identity_key": {}})
        assert res.status_code == 400

    def test_field_weld_must_use_weld_endpoint(self, client, api_project):
        res = client.post(f"{BASE}/projects/{api_project['id']}/components",
                          json={"component_type": "field_weld", "identity_key": {"weld_number": "W-1"}})
        assert res.status_code == 422

    def test_duplicate_identity_is_409(self, client, api_project, api_drawing):
        _create_valve(client, api_project["id"], api_drawing)
        res = client.post(f"{BASE}/projects/{api_project['id']}/components", json={
            "component_type": "valve",
            "identity_key": {"drawing_norm": "P-2001 REV A", "commodity_code": "VGA-2", "size": "2", "seq": 1},
        })
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    @pytest.mark.parametrize(
        "payload, status, code",
        [
            ({"milestone_name": "Paint", "value": True}, 400, "ERR_MILESTONE_NOT_IN_TEMPLATE"),
            ({"milestone_name": "Receive", "value": 1}, 400, "ERR_TYPE_MISMATCH"),
            ({"value": True}, 400, "ERR_VALIDATION_REQUIRED"),
            ({"milestone_name": "Receive"}, 400, "ERR_VALIDATION_REQUIRED"),
            ({"milestone_name": "Receive", "value": True, "metadata": "x"}, 400, "ERR_VALIDATION_INVALID"),
        ],
    )
    def test_milestone_update_errors(self, client, api_project, api_drawing, payload, status, code):
        valve = _create_valve(client, api_project["id"], api_drawing)
        res = client.patch(f"{BASE}/components/{valve['id']}/milestones", json=payload)
        assert res.status_code == status
        assert res.get_json()["code"] == code

    def test_engine_error_details_carry_kind(self, client, api_project, api_drawing):
        valve = _create_valve(client, api_project["id"], api_drawing)
        res = client.patch(f"{BASE}/components/{valve['id']}/milestones",
                           json={"milestone_name": "Paint", "value": True})
        details = res.get_json()["details"]
        assert details["kind"] == "MilestoneNotInTemplate"
        assert details["field"] == "milestone_name"

    def test_update_unknown_component_is_404(self, client):
        res = client.patch(f"{BASE}/components/123456/milestones",
                           json={"milestone_name": "Receive", "value": True})
        assert res.status_code == 404

    def test_retire_and_list(self, client, api_project, api_drawing):
        a = _create_valve(client, api_project["id"], api_drawing, seq=1)
        _create_valve(client, api_project["id"], api_drawing, seq=2)

        res = client.post(f"{BASE}/components/{a['id']}/retire", json={"reason": "nope"})
        assert res.status_code == 422
        res = client.post(f"{BASE}/components/{a['id']}/retire", json={"reason": "Superseded by rev B"})
        assert res.status_code == 200
        assert res.get_json()["is_retired"] is True

        listing = client.get(f"{BASE}/projects/{api_project['id']}/components").get_json()
        assert listing["total"] == 1
        listing = client.get(f"{BASE}/projects/{api_project['id']}/components?include_retired=true").get_json()
        assert listing["total"] == 2

    def test_list_pagination(self, client, api_project, api_drawing):
        for seq in range(1, 4):
            _create_valve(client, api_project["id"], api_drawing, seq=seq)
        res = client.get(f"{BASE}/projects/{api_project['id']}/components?limit=2&offset=1")
        body = res.get_json()
        assert body["total"] == 3
        assert len(body["items"]) == 2


# ── Field welds & welders ────────────────────────────────────────────────


class TestFieldWeldWorkflow:
    def test_full_weld_lifecycle(self, client, api_project, api_drawing):
        pid = api_project["id"]
        res = client.post(f"{BASE}/projects/{pid}/field-welds", json={
            "weld_number": "W-001", "weld_type": "BW", "drawing_id": api_drawing["id"],
        })
        assert res.status_code == 201
        weld = res.get_json()
        component_id = weld["component_id"]

        res = client.patch(f"{BASE}/components/{component_id}/milestones",
                           json={"milestone_name": "Weld Complete", "value": True})
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_WELDER_REQUIRED"

        welder = client.post(f"{BASE}/projects/{pid}/welders", json={"name": "Kim Lee", "stencil": "k-07"}).get_json()
        res = client.put(f"{BASE}/field-welds/{weld['id']}/welder", json={"welder_id": welder["id"]})
        assert res.status_code == 200
        assert res.get_json()["welder_stencil"] == "K-07"

        for name in ("Fit-up", "Weld Complete"):
            res = client.patch(f"{BASE}/components/{component_id}/milestones",
                               json={"milestone_name": name, "value": True})
            assert res.status_code == 200
        assert res.get_json()["component"]["percent_complete"] == 95.0

        res = client.patch(f"{BASE}/components/{component_id}/milestones",
                           json={"milestone_name": "Accepted", "value": True})
        assert res.status_code == 422
        assert res.get_json()["details"]["field"] == "milestone_name"

        res = client.put(f"{BASE}/field-welds/{weld['id']}/nde", json={"nde_type": "rt", "nde_result": "fail"})
        assert res.status_code == 200
        assert res.get_json()["status"] == "rejected"
        assert res.get_json()["percent_complete"] == 100.0

        res = client.patch(f"{BASE}/components/{component_id}/milestones",
                           json={"milestone_name": "Weld Complete", "value": False})
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_BUSINESS_RULE"

        res = client.post(f"{BASE}/field-welds/{weld['id']}/repairs", json={"spec_overrides": {"schedule": "80"}})
        assert res.status_code == 201
        repair = res.get_json()
        assert repair["weld_number"] == "W-001.1"
        assert repair["schedule"] == "80"
        assert repair["percent_complete"] == 30.0

        history = client.get(f"{BASE}/field-welds/{repair['id']}/repair-history").get_json()
        assert [h["weld_number"] for h in history["items"]] == ["W-001", "W-001.1"]

        res = client.put(f"{BASE}/field-welds/{weld['id']}/nde", json={"nde_type": "RT", "nde_result": "PASS"})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_REFERENTIAL_CONFLICT"

        events = client.get(f"{BASE}/field-welds/{weld['id']}/events").get_json()
        assert [e["action"] for e in events["items"]] == ["nde_record", "assign"]

        res = client.delete(f"{BASE}/welders/{welder['id']}")
        assert res.status_code == 409

        rejected = client.get(f"{BASE}/projects/{pid}/field-welds?status=rejected").get_json()
        assert [w["id"] for w in rejected["items"]] == [weld["id"]]

    def test_field_weld_validation(self, client, api_project):
        res = client.post(f"{BASE}/projects/{api_project['id']}/field-welds", json={"weld_number": "W-1"})
        assert res.status_code == 400
        assert "weld_type" in res.get_json()["details"]

        res = client.post(f"{BASE}/projects/{api_project['id']}/field-welds",
                          json={"weld_number": "W-1", "weld_type": "XX"})
        assert res.status_code == 422

    def test_nde_requires_type_and_result(self, client, api_project):
        weld = client.post(f"{BASE}/projects/{api_project['id']}/field-welds",
                           json={"weld_number": "W-1", "weld_type": "SW"}).get_json()
        res = client.put(f"{BASE}/field-welds/{weld['id']}/nde", json={"nde_type": "RT"})
        assert res.status_code == 400
        res = client.put(f"{BASE}/field-welds/{weld['id']}/nde", json={"nde_type": "RT", "nde_result": "PASS"})
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_WELDER_REQUIRED"

    def test_clear_nde_needs_reason(self, client, api_project):
        weld = client.post(f"{BASE}/projects/{api_project['id']}/field-welds",
                           json={"weld_number": "W-1", "weld_type": "SW"}).get_json()
        res = client.delete(f"{BASE}/field-welds/{weld['id']}/nde", json={})
        assert res.status_code == 422

    def test_repair_unknown_weld_is_404(self, client):
        res = client.post(f"{BASE}/field-welds/4040/repairs", json={})
        assert res.status_code == 404

    def test_welder_registry(self, client, api_project):
        pid = api_project["id"]
        res = client.post(f"{BASE}/projects/{pid}/welders", json={"name": "Kim", "stencil": "bad stencil"})
        assert res.status_code == 422
        res = client.post(f"{BASE}/projects/{pid}/welders", json={"name": "Kim"})
        assert res.status_code == 400

        welder = client.post(f"{BASE}/projects/{pid}/welders", json={"name": "Kim", "stencil": "K-1"}).get_json()
        res = client.post(f"{BASE}/projects/{pid}/welders", json={"name": "Kim 2", "stencil": "k-1"})
        assert res.status_code == 409

        res = client.post(f"{BASE}/welders/{welder['id']}/verify", json={"actor_id": "qa"})
        assert res.get_json()["status"] == "verified"
        listing = client.get(f"{BASE}/projects/{pid}/welders?status=verified").get_json()
        assert listing["total"] == 1

        res = client.delete(f"{BASE}/welders/{welder['id']}")
        assert res.status_code == 200


# ── Health & guards ──────────────────────────────────────────────────────


class TestHealth:
    def test_ready(self, client):
        assert client.get(f"{BASE}/health/ready").status_code == 200

    def test_live_reports_templates(self, client):
        res = client.get(f"{BASE}/health/live")
        assert res.status_code == 200
        body = res.get_json()
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["templates"]["missing"] == []

    def test_request_id_header(self, client):
        res = client.get(f"{BASE}/health/ready", headers={"X-Request-ID": "abc-123"})
        assert res.headers["X-Request-ID"] == "abc-123"

    def test_non_json_body_rejected(self, client, api_project):
        res = client.post(f"{BASE}/projects", data="name=x", content_type="text/plain")
        assert res.status_code == 415
