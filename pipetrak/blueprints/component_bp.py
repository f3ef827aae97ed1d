"""
Component & milestone Blueprint.

Endpoints:
    POST  /api/v1/projects/<project_id>/components       : create component
    GET   /api/v1/projects/<project_id>/components       : list (filters, paginated)
    GET   /api/v1/components/<component_id>              : detail
    PATCH /api/v1/components/<component_id>/milestones   : milestone update
    POST  /api/v1/components/<component_id>/retire       : retire with reason
    GET   /api/v1/components/<component_id>/history      : milestone audit trail

Layer contract:
    - No ORM writes here; all work delegated to milestone_service.
    - Engine exceptions propagate to the handler in pipetrak.utils.errors.
"""

import logging

from flask import Blueprint, jsonify, request

from pipetrak.blueprints import current_actor, paginate_query
from pipetrak.models.component import COMPONENT_TYPES, Component
from pipetrak.models.project import Project
from pipetrak.services import milestone_service
from pipetrak.utils.errors import E, api_error
from pipetrak.utils.helpers import get_or_404

logger = logging.getLogger(__name__)

component_bp = Blueprint("components", __name__, url_prefix="/api/v1")


@component_bp.route("/projects/<int:project_id>/components", methods=["POST"])
def create_component(project_id: int):
    """Create a non-weld component bound to the latest template for its type.

    Body (JSON):
        component_type (str, required)
        identity_key (object, required)
        drawing_id, test_package_id, system_id (int, optional)
        attributes (object, optional)
    """
    data = request.get_json(silent=True) or {}
    component_type = data.get("component_type")
    if not component_type:
        return api_error(E.VALIDATION_REQUIRED, "component_type is required")
    if component_type not in COMPONENT_TYPES:
        return api_error(
            E.VALIDATION_INVALID, f"Unknown component_type {component_type!r}",
            details={"valid_values": list(COMPONENT_TYPES)},
        )

    component = milestone_service.create_component(
        project_id,
        component_type,
        data.get("identity_key"),
        drawing_id=data.get("drawing_id"),
        test_package_id=data.get("test_package_id"),
        system_id=data.get("system_id"),
        attributes=data.get("attributes"),
        actor_id=current_actor(data),
    )
    return jsonify(component.to_dict()), 201


@component_bp.route("/projects/<int:project_id>/components", methods=["GET"])
def list_components(project_id: int):
    """List components of a project.

    Query params:
        drawing_id (int), component_type (str), include_retired (bool), limit, offset
    """
    _project, err = get_or_404(Project, project_id)
    if err:
        return err

    query = Component.query.filter_by(project_id=project_id)
    drawing_id = request.args.get("drawing_id", type=int)
    if drawing_id is not None:
        query = query.filter_by(drawing_id=drawing_id)
    component_type = request.args.get("component_type")
    if component_type:
        query = query.filter_by(component_type=component_type)
    if request.args.get("include_retired", "false").lower() != "true":
        query = query.filter_by(is_retired=False)

    items, total = paginate_query(query.order_by(Component.id))
    return jsonify({"items": [c.to_dict() for c in items], "total": total}), 200


@component_bp.route("/components/<int:component_id>", methods=["GET"])
def get_component(component_id: int):
    component = milestone_service.get_component(component_id)
    data = component.to_dict()
    if component.field_weld is not None:
        data["field_weld"] = component.field_weld.to_dict(include_component=False)
    return jsonify(data), 200


@component_bp.route("/components/<int:component_id>/milestones", methods=["PATCH"])
def update_milestone(component_id: int):
    """Set one milestone.

    Body (JSON):
        milestone_name (str, required)
        value (bool | number, required): true/false for discrete, 0-100 for partial.
        actor_id (str, optional): falls back to the X-User header.
        metadata (object, optional): stored on the audit event.

    Returns {"component", "previous_value", "event_id"}.
    """
    data = request.get_json(silent=True) or {}
    milestone_name = data.get("milestone_name")
    if not milestone_name:
        return api_error(E.VALIDATION_REQUIRED, "milestone_name is required",
                         details={"field": "milestone_name"})
    if "value" not in data:
        return api_error(E.VALIDATION_REQUIRED, "value is required", details={"field": "value"})
    metadata = data.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        return api_error(E.VALIDATION_INVALID, "metadata must be an object", details={"field": "metadata"})

    result = milestone_service.apply_milestone_update(
        component_id, milestone_name, data["value"], current_actor(data), metadata=metadata,
    )
    return jsonify(result.to_dict()), 200


@component_bp.route("/components/<int:component_id>/retire", methods=["POST"])
def retire_component(component_id: int):
    data = request.get_json(silent=True) or {}
    component = milestone_service.retire_component(
        component_id, data.get("reason", ""), current_actor(data),
    )
    return jsonify(component.to_dict()), 200


@component_bp.route("/components/<int:component_id>/history", methods=["GET"])
def milestone_history(component_id: int):
    """Milestone events, newest first. Query: milestone_name, limit."""
    events = milestone_service.get_milestone_history(
        component_id,
        milestone_name=request.args.get("milestone_name"),
        limit=request.args.get("limit", type=int),
    )
    return jsonify({"items": events, "total": len(events)}), 200
