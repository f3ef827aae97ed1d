"""
Project structure Blueprint.

Endpoints:
    POST /api/v1/projects                                : create project
    GET  /api/v1/projects/<project_id>                   : detail
    POST /api/v1/projects/<project_id>/drawings          : create drawing
    GET  /api/v1/projects/<project_id>/drawings          : list drawings
    POST /api/v1/projects/<project_id>/test-packages     : create test package
    POST /api/v1/projects/<project_id>/systems           : create system

Plain CRUD: views write through the session directly and commit with
``db_commit_or_error``.
"""

from flask import Blueprint, jsonify, request

from pipetrak.models import db
from pipetrak.models.project import Drawing, Project, System, TestPackage
from pipetrak.utils.errors import E, api_error
from pipetrak.utils.helpers import db_commit_or_error, get_or_404, normalize_drawing_no, parse_date_input

project_bp = Blueprint("projects", __name__, url_prefix="/api/v1")


def _required_name(data: dict, key: str = "name"):
    value = (data.get(key) or "").strip()
    if not value:
        return None, api_error(E.VALIDATION_REQUIRED, f"{key} is required", details={"field": key})
    return value, None


@project_bp.route("/projects", methods=["POST"])
def create_project():
    data = request.get_json(silent=True) or {}
    name, err = _required_name(data)
    if err:
        return err
    project = Project(name=name, code=data.get("code"), description=data.get("description"))
    db.session.add(project)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(project.to_dict()), 201


@project_bp.route("/projects/<int:project_id>", methods=["GET"])
def get_project(project_id: int):
    project, err = get_or_404(Project, project_id)
    if err:
        return err
    return jsonify(project.to_dict()), 200


@project_bp.route("/projects/<int:project_id>/drawings", methods=["POST"])
def create_drawing(project_id: int):
    """Body: drawing_no (str, required), title, rev, test_package_id, system_id."""
    _project, err = get_or_404(Project, project_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    raw, err = _required_name(data, "drawing_no")
    if err:
        return err

    drawing = Drawing(
        project_id=project_id,
        drawing_no_raw=raw,
        drawing_no_norm=normalize_drawing_no(raw),
        title=data.get("title"),
        rev=data.get("rev"),
        test_package_id=data.get("test_package_id"),
        system_id=data.get("system_id"),
    )
    db.session.add(drawing)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(drawing.to_dict()), 201


@project_bp.route("/projects/<int:project_id>/drawings", methods=["GET"])
def list_drawings(project_id: int):
    project, err = get_or_404(Project, project_id)
    if err:
        return err
    drawings = project.drawings.filter_by(is_retired=False).order_by(Drawing.drawing_no_norm).all()
    return jsonify({"items": [d.to_dict() for d in drawings], "total": len(drawings)}), 200


@project_bp.route("/projects/<int:project_id>/test-packages", methods=["POST"])
def create_test_package(project_id: int):
    _project, err = get_or_404(Project, project_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    name, err = _required_name(data)
    if err:
        return err
    try:
        target_date = parse_date_input(data.get("target_date"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc), details={"field": "target_date"})

    package = TestPackage(project_id=project_id, name=name,
                          description=data.get("description"), target_date=target_date)
    db.session.add(package)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(package.to_dict()), 201


@project_bp.route("/projects/<int:project_id>/systems", methods=["POST"])
def create_system(project_id: int):
    _project, err = get_or_404(Project, project_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    name, err = _required_name(data)
    if err:
        return err
    system = System(project_id=project_id, name=name, description=data.get("description"))
    db.session.add(system)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(system.to_dict()), 201
