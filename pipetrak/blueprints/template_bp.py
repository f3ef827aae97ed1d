"""
Progress template Blueprint.

Endpoints:
    GET  /api/v1/templates                    : all templates and versions
    GET  /api/v1/templates/<component_type>   : latest version for a type
    POST /api/v1/templates/<component_type>   : register a new version
"""

import logging

from flask import Blueprint, jsonify, request

from pipetrak.models import db
from pipetrak.services import template_registry
from pipetrak.utils.errors import E, api_error

logger = logging.getLogger(__name__)

template_bp = Blueprint("templates", __name__, url_prefix="/api/v1/templates")


@template_bp.route("", methods=["GET"])
def list_templates():
    items = template_registry.list_templates()
    return jsonify({"items": items, "total": len(items)}), 200


@template_bp.route("/<component_type>", methods=["GET"])
def get_template(component_type: str):
    return jsonify(template_registry.resolve_template(component_type).to_dict()), 200


@template_bp.route("/<component_type>", methods=["POST"])
def register_template(component_type: str):
    """Body: milestones (list, required), workflow_type (optional).

    Existing components keep the version they were created with.
    """
    data = request.get_json(silent=True) or {}
    milestones = data.get("milestones")
    if not isinstance(milestones, list):
        return api_error(E.VALIDATION_REQUIRED, "milestones (list) is required",
                         details={"field": "milestones"})
    try:
        template = template_registry.register_template(
            component_type, milestones, workflow_type=data.get("workflow_type"),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    finally:
        template_registry.invalidate_template_cache()
    return jsonify(template.to_dict()), 201
