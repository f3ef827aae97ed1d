"""
Field weld import Blueprint.

Endpoints:
  GET  /api/v1/projects/<project_id>/field-welds/import/template  : CSV template
  POST /api/v1/projects/<project_id>/field-welds/import/validate  : dry run
  POST /api/v1/projects/<project_id>/field-welds/import           : import (all or nothing)

Rows are accepted as a JSON body ``{"rows": [...]}``, a JSON ``csv_content``
string, a multipart ``file`` upload or a raw CSV body.
"""

import logging

from flask import Blueprint, Response, jsonify, request

from pipetrak.blueprints import current_actor
from pipetrak.models.project import Project
from pipetrak.services.field_weld_import_service import (
    generate_csv_template,
    import_field_welds,
    parse_csv,
    validate_import_rows,
)
from pipetrak.utils.errors import E, api_error
from pipetrak.utils.helpers import get_or_404

logger = logging.getLogger(__name__)

import_bp = Blueprint("imports", __name__, url_prefix="/api/v1/projects/<int:project_id>/field-welds/import")


@import_bp.route("/template", methods=["GET"])
def download_template(project_id: int):
    """Download a CSV template for field weld import."""
    return Response(
        generate_csv_template(),
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=field_weld_import_template.csv"},
    )


@import_bp.route("/validate", methods=["POST"])
def validate_rows(project_id: int):
    _project, err = get_or_404(Project, project_id)
    if err:
        return err
    rows = _extract_rows()
    if rows is None:
        return api_error(E.VALIDATION_REQUIRED, "rows, csv_content or a CSV file is required")

    result = validate_import_rows(project_id, rows)
    return jsonify({
        "total_rows": len(rows),
        "valid_count": len(result["valid"]),
        "error_count": len(result["errors"]),
        "errors": result["errors"],
    }), 200


@import_bp.route("", methods=["POST"])
def import_rows(project_id: int):
    """Import field welds; 422 with per-row errors when any row is invalid."""
    rows = _extract_rows()
    if rows is None:
        return api_error(E.VALIDATION_REQUIRED, "rows, csv_content or a CSV file is required")

    data = request.get_json(silent=True) or {}
    result = import_field_welds(project_id, rows, current_actor(data))
    status_code = 200 if result["status"] == "completed" else 422
    return jsonify(result), status_code


def _extract_rows() -> list[dict] | None:
    """Row dicts from a JSON body, CSV upload or raw CSV body."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        if isinstance(data.get("rows"), list):
            return data["rows"]
        if data.get("csv_content"):
            return parse_csv(data["csv_content"])

    if request.files:
        file = request.files.get("file")
        if file:
            return parse_csv(file.read())

    if request.data and data is None:
        return parse_csv(request.data)
    return None
