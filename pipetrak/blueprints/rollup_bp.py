"""
Progress rollup Blueprint.

Endpoints:
    GET  /api/v1/rollups/<parent_type>/<parent_id>          : one rollup (refreshed if stale)
    POST /api/v1/rollups/<parent_type>/<parent_id>/refresh  : force recompute
    GET  /api/v1/projects/<project_id>/rollups              : all parents of one type

parent_type: drawing | test_package | system
"""

from flask import Blueprint, jsonify, request

from pipetrak.models import db
from pipetrak.models.project import Project
from pipetrak.services import rollup_service
from pipetrak.utils.helpers import get_or_404

rollup_bp = Blueprint("rollups", __name__, url_prefix="/api/v1")


@rollup_bp.route("/rollups/<parent_type>/<int:parent_id>", methods=["GET"])
def get_rollup(parent_type: str, parent_id: int):
    return jsonify(rollup_service.get_rollup(parent_type, parent_id)), 200


@rollup_bp.route("/rollups/<parent_type>/<int:parent_id>/refresh", methods=["POST"])
def refresh_rollup(parent_type: str, parent_id: int):
    rollup_service.mark_stale(parent_type, parent_id)
    db.session.commit()
    return jsonify(rollup_service.get_rollup(parent_type, parent_id)), 200


@rollup_bp.route("/projects/<int:project_id>/rollups", methods=["GET"])
def list_rollups(project_id: int):
    """Query: parent_type (default drawing)."""
    _project, err = get_or_404(Project, project_id)
    if err:
        return err
    items = rollup_service.list_project_rollups(
        project_id, request.args.get("parent_type", "drawing"),
    )
    return jsonify({"items": items, "total": len(items)}), 200
