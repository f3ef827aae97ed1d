"""
Welder registry Blueprint.

Endpoints:
    GET    /api/v1/projects/<project_id>/welders   : list (?status=)
    POST   /api/v1/projects/<project_id>/welders   : register welder
    POST   /api/v1/welders/<welder_id>/verify      : mark verified
    DELETE /api/v1/welders/<welder_id>             : delete (blocked while assigned)
"""

from flask import Blueprint, jsonify, request

from pipetrak.blueprints import current_actor
from pipetrak.models.project import Project
from pipetrak.services import welder_service
from pipetrak.utils.errors import E, api_error
from pipetrak.utils.helpers import get_or_404

welder_bp = Blueprint("welders", __name__, url_prefix="/api/v1")


@welder_bp.route("/projects/<int:project_id>/welders", methods=["GET"])
def list_welders(project_id: int):
    _project, err = get_or_404(Project, project_id)
    if err:
        return err
    items = welder_service.list_welders(project_id, status=request.args.get("status"))
    return jsonify({"items": items, "total": len(items)}), 200


@welder_bp.route("/projects/<int:project_id>/welders", methods=["POST"])
def create_welder(project_id: int):
    """Body: name (str, required), stencil (str, required)."""
    data = request.get_json(silent=True) or {}
    if not data.get("stencil"):
        return api_error(E.VALIDATION_REQUIRED, "stencil is required", details={"field": "stencil"})
    welder = welder_service.create_welder(
        project_id, data.get("name", ""), data["stencil"], current_actor(data),
    )
    return jsonify(welder.to_dict()), 201


@welder_bp.route("/welders/<int:welder_id>/verify", methods=["POST"])
def verify_welder(welder_id: int):
    data = request.get_json(silent=True) or {}
    return jsonify(welder_service.verify_welder(welder_id, current_actor(data)).to_dict()), 200


@welder_bp.route("/welders/<int:welder_id>", methods=["DELETE"])
def delete_welder(welder_id: int):
    welder_service.delete_welder(welder_id)
    return jsonify({"deleted": True}), 200
