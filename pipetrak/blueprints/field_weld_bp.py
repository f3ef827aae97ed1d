"""
Field weld Blueprint.

Endpoints:
    POST   /api/v1/projects/<project_id>/field-welds          : create weld
    GET    /api/v1/projects/<project_id>/field-welds          : list (drawing_id, status)
    GET    /api/v1/field-welds/<field_weld_id>                : detail
    PUT    /api/v1/field-welds/<field_weld_id>/welder         : assign welder
    DELETE /api/v1/field-welds/<field_weld_id>/welder         : clear welder
    PUT    /api/v1/field-welds/<field_weld_id>/nde            : record / correct NDE
    DELETE /api/v1/field-welds/<field_weld_id>/nde            : clear NDE (reason)
    POST   /api/v1/field-welds/<field_weld_id>/repairs        : create repair weld
    GET    /api/v1/field-welds/<field_weld_id>/repair-history : lineage, oldest first
    GET    /api/v1/field-welds/<field_weld_id>/events         : welder/NDE event log
"""

import logging

from flask import Blueprint, jsonify, request

from pipetrak.blueprints import current_actor
from pipetrak.models.field_weld import WELD_STATUSES
from pipetrak.models.project import Project
from pipetrak.services import field_weld_service, repair_chain
from pipetrak.utils.errors import E, api_error
from pipetrak.utils.helpers import get_or_404, parse_date_input

logger = logging.getLogger(__name__)

field_weld_bp = Blueprint("field_welds", __name__, url_prefix="/api/v1")


def _date_arg(data: dict, key: str):
    """Return (date, err_response)."""
    try:
        return parse_date_input(data.get(key)), None
    except ValueError as exc:
        return None, api_error(E.VALIDATION_INVALID, str(exc), details={"field": key})


@field_weld_bp.route("/projects/<int:project_id>/field-welds", methods=["POST"])
def create_field_weld(project_id: int):
    """Create a field weld.

    Body (JSON):
        weld_number (str, required), weld_type (BW|SW|FW|TW, required),
        drawing_id, test_package_id, system_id (int, optional),
        weld_size, schedule, base_metal, spec (str, optional),
        nde_required (bool, optional)
    """
    data = request.get_json(silent=True) or {}
    errors = {}
    if not data.get("weld_number"):
        errors["weld_number"] = "weld_number is required"
    if not data.get("weld_type"):
        errors["weld_type"] = "weld_type is required"
    if errors:
        return api_error(E.VALIDATION_REQUIRED, "Validation failed", details=errors)

    field_weld = field_weld_service.create_field_weld(
        project_id,
        data["weld_number"],
        weld_type=data["weld_type"],
        drawing_id=data.get("drawing_id"),
        test_package_id=data.get("test_package_id"),
        system_id=data.get("system_id"),
        weld_size=data.get("weld_size"),
        schedule=data.get("schedule"),
        base_metal=data.get("base_metal"),
        spec=data.get("spec"),
        nde_required=bool(data.get("nde_required", False)),
        attributes=data.get("attributes"),
        actor_id=current_actor(data),
    )
    return jsonify(field_weld.to_dict()), 201


@field_weld_bp.route("/projects/<int:project_id>/field-welds", methods=["GET"])
def list_field_welds(project_id: int):
    _project, err = get_or_404(Project, project_id)
    if err:
        return err
    status = request.args.get("status")
    if status and status not in WELD_STATUSES:
        return api_error(E.VALIDATION_INVALID, f"Invalid status {status!r}",
                         details={"valid_values": list(WELD_STATUSES)})
    items = field_weld_service.list_field_welds(
        project_id, drawing_id=request.args.get("drawing_id", type=int), status=status,
    )
    return jsonify({"items": items, "total": len(items)}), 200


@field_weld_bp.route("/field-welds/<int:field_weld_id>", methods=["GET"])
def get_field_weld(field_weld_id: int):
    return jsonify(field_weld_service.get_field_weld(field_weld_id).to_dict()), 200


@field_weld_bp.route("/field-welds/<int:field_weld_id>/welder", methods=["PUT"])
def assign_welder(field_weld_id: int):
    """Body: welder_id (int, required), date_welded (date, optional)."""
    data = request.get_json(silent=True) or {}
    welder_id = data.get("welder_id")
    if not isinstance(welder_id, int) or isinstance(welder_id, bool):
        return api_error(E.VALIDATION_REQUIRED, "welder_id (integer) is required",
                         details={"field": "welder_id"})
    date_welded, err = _date_arg(data, "date_welded")
    if err:
        return err

    field_weld = field_weld_service.assign_welder(
        field_weld_id, welder_id, current_actor(data), date_welded=date_welded,
    )
    return jsonify(field_weld.to_dict()), 200


@field_weld_bp.route("/field-welds/<int:field_weld_id>/welder", methods=["DELETE"])
def clear_welder(field_weld_id: int):
    field_weld = field_weld_service.clear_welder(field_weld_id, current_actor())
    return jsonify(field_weld.to_dict()), 200


@field_weld_bp.route("/field-welds/<int:field_weld_id>/nde", methods=["PUT"])
def record_nde(field_weld_id: int):
    """Body: nde_type (RT|UT|PT|MT|VT), nde_result (PASS|FAIL|PENDING), nde_date, notes."""
    data = request.get_json(silent=True) or {}
    errors = {}
    if not data.get("nde_type"):
        errors["nde_type"] = "nde_type is required"
    if not data.get("nde_result"):
        errors["nde_result"] = "nde_result is required"
    if errors:
        return api_error(E.VALIDATION_REQUIRED, "Validation failed", details=errors)
    nde_date, err = _date_arg(data, "nde_date")
    if err:
        return err

    field_weld = field_weld_service.record_nde_result(
        field_weld_id,
        str(data["nde_type"]).upper(),
        str(data["nde_result"]).upper(),
        current_actor(data),
        nde_date=nde_date,
        notes=data.get("notes"),
    )
    return jsonify(field_weld.to_dict()), 200


@field_weld_bp.route("/field-welds/<int:field_weld_id>/nde", methods=["DELETE"])
def clear_nde(field_weld_id: int):
    """Body: reason (str, required)."""
    data = request.get_json(silent=True) or {}
    field_weld = field_weld_service.clear_nde_result(
        field_weld_id, data.get("reason", ""), current_actor(data),
    )
    return jsonify(field_weld.to_dict()), 200


@field_weld_bp.route("/field-welds/<int:field_weld_id>/repairs", methods=["POST"])
def create_repair(field_weld_id: int):
    """Body: spec_overrides (object, optional) with weld spec fields."""
    data = request.get_json(silent=True) or {}
    overrides = data.get("spec_overrides") or {}
    if not isinstance(overrides, dict):
        return api_error(E.VALIDATION_INVALID, "spec_overrides must be an object",
                         details={"field": "spec_overrides"})
    repair = repair_chain.create_repair_weld(field_weld_id, overrides, current_actor(data))
    return jsonify(repair.to_dict()), 201


@field_weld_bp.route("/field-welds/<int:field_weld_id>/repair-history", methods=["GET"])
def repair_history(field_weld_id: int):
    items = repair_chain.get_repair_history(field_weld_id)
    return jsonify({"items": items, "total": len(items)}), 200


@field_weld_bp.route("/field-welds/<int:field_weld_id>/events", methods=["GET"])
def weld_events(field_weld_id: int):
    items = field_weld_service.get_weld_events(field_weld_id)
    return jsonify({"items": items, "total": len(items)}), 200
