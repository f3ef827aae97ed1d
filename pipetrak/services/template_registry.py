"""
Progress Template Registry.

Resolves a component type (or a template id) to an immutable snapshot of its
progress template. Templates are read on every milestone write and almost
never change, so resolved snapshots are held in a process-local map:

    resolve_template("field_weld")        → latest version, O(1) after first hit
    resolve_template_by_id(component.progress_template_id)

The cache is invalidated whenever a template is registered or seeded
(``invalidate_template_cache``). Snapshots are plain frozen dataclasses, not
ORM rows, so they stay valid across sessions and threads.

Raises ``TemplateNotFound`` when nothing matches; no component may be created
or updated without a resolvable template.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from sqlalchemy import select

from pipetrak.core.exceptions import TemplateNotFound, ValidationError
from pipetrak.models import db
from pipetrak.models.component import COMPONENT_TYPES
from pipetrak.models.template import WORKFLOW_TYPES, MilestoneConfig, ProgressTemplate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedTemplate:
    id: int
    component_type: str
    version: int
    workflow_type: str
    milestones: tuple[MilestoneConfig, ...]
    _by_name: dict = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_model(cls, template: ProgressTemplate) -> "ResolvedTemplate":
        milestones = tuple(template.milestones)
        return cls(
            id=template.id,
            component_type=template.component_type,
            version=template.version,
            workflow_type=template.workflow_type,
            milestones=milestones,
            _by_name={m.name: m for m in milestones},
        )

    def get(self, name: str) -> MilestoneConfig | None:
        return self._by_name.get(name)

    @property
    def milestone_names(self) -> list[str]:
        return [m.name for m in self.milestones]

    @property
    def first_milestone(self) -> MilestoneConfig:
        return self.milestones[0]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "component_type": self.component_type,
            "version": self.version,
            "workflow_type": self.workflow_type,
            "milestones": [m.to_dict() for m in self.milestones],
        }


# ── Cache ────────────────────────────────────────────────────────────────────

_cache_lock = threading.Lock()
_by_type: dict[str, ResolvedTemplate] = {}
_by_id: dict[int, ResolvedTemplate] = {}


def invalidate_template_cache() -> None:
    """Drop every cached snapshot (call after any template write)."""
    with _cache_lock:
        _by_type.clear()
        _by_id.clear()


def _remember(resolved: ResolvedTemplate, *, latest: bool) -> ResolvedTemplate:
    with _cache_lock:
        _by_id[resolved.id] = resolved
        if latest:
            _by_type[resolved.component_type] = resolved
    return resolved


def resolve_template(component_type: str) -> ResolvedTemplate:
    """Return the latest template version for ``component_type``.

    Raises:
        TemplateNotFound: no template row exists for the type.
    """
    cached = _by_type.get(component_type)
    if cached is not None:
        return cached

    template = db.session.execute(
        select(ProgressTemplate)
        .where(ProgressTemplate.component_type == component_type)
        .order_by(ProgressTemplate.version.desc())
        .limit(1)
    ).scalar_one_or_none()
    if template is None:
        raise TemplateNotFound(component_type)
    return _remember(ResolvedTemplate.from_model(template), latest=True)


def resolve_template_by_id(template_id: int, component_type: str = "unknown") -> ResolvedTemplate:
    """Return the exact template version a component was created with."""
    cached = _by_id.get(template_id)
    if cached is not None:
        return cached

    template = db.session.get(ProgressTemplate, template_id)
    if template is None:
        raise TemplateNotFound(component_type)
    return _remember(ResolvedTemplate.from_model(template), latest=False)


def list_templates() -> list[dict]:
    """All templates, newest version first within each type."""
    rows = db.session.execute(
        select(ProgressTemplate).order_by(
            ProgressTemplate.component_type, ProgressTemplate.version.desc(),
        )
    ).scalars()
    return [t.to_dict() for t in rows]


# ── Validation & registration ────────────────────────────────────────────────

def validate_milestones_config(milestones: list[dict]) -> list[MilestoneConfig]:
    """Validate a raw milestones_config list.

    Rules: non-empty; unique names and orders; positive integer weights that
    sum to exactly 100; an optional ``step`` must be a positive integer
    dividing 100 and only applies to partial milestones.

    Raises:
        ValidationError: with a field-level ``details`` breakdown.
    """
    if not milestones:
        raise ValidationError("A template needs at least one milestone", field="milestones")

    errors: dict[str, str] = {}
    parsed: list[MilestoneConfig] = []
    for idx, raw in enumerate(milestones):
        name = (raw.get("name") or "").strip() if isinstance(raw, dict) else ""
        if not name:
            errors[f"milestones[{idx}].name"] = "required"
            continue
        weight = raw.get("weight")
        if isinstance(weight, bool) or not isinstance(weight, int) or weight <= 0:
            errors[f"{name}.weight"] = "must be a positive integer"
            continue
        order = raw.get("order", idx + 1)
        if isinstance(order, bool) or not isinstance(order, int):
            errors[f"{name}.order"] = "must be an integer"
            continue
        step = raw.get("step")
        if step is not None:
            if not raw.get("is_partial"):
                errors[f"{name}.step"] = "only partial milestones take a step"
                continue
            if isinstance(step, bool) or not isinstance(step, int) or step <= 0 or 100 % step:
                errors[f"{name}.step"] = "must be a positive integer dividing 100"
                continue
        parsed.append(MilestoneConfig.from_dict({**raw, "name": name, "order": order}))

    names = [m.name for m in parsed]
    if len(set(names)) != len(names):
        errors["milestones"] = "milestone names must be unique"
    orders = [m.order for m in parsed]
    if len(set(orders)) != len(orders):
        errors["order"] = "milestone orders must be unique"
    if not errors:
        total = sum(m.weight for m in parsed)
        if total != 100:
            errors["weight"] = f"weights must sum to 100 (got {total})"

    if errors:
        raise ValidationError("Invalid milestone configuration", details=errors, field="milestones")
    return sorted(parsed, key=lambda m: m.order)


def _workflow_for(milestones: list[MilestoneConfig]) -> str:
    partial = [m.is_partial for m in milestones]
    if all(partial):
        return "partial"
    if any(partial):
        return "hybrid"
    return "discrete"


def register_template(
    component_type: str,
    milestones: list[dict],
    *,
    workflow_type: str | None = None,
    version: int | None = None,
) -> ProgressTemplate:
    """Validate and add a template version (flush only; caller commits).

    ``version`` defaults to one past the latest existing version.
    """
    if component_type not in COMPONENT_TYPES:
        raise ValidationError(f"Unknown component type {component_type!r}", field="component_type")

    parsed = validate_milestones_config(milestones)
    workflow_type = workflow_type or _workflow_for(parsed)
    if workflow_type not in WORKFLOW_TYPES:
        raise ValidationError(f"Unknown workflow type {workflow_type!r}", field="workflow_type")

    if version is None:
        latest = db.session.execute(
            select(db.func.max(ProgressTemplate.version))
            .where(ProgressTemplate.component_type == component_type)
        ).scalar()
        version = (latest or 0) + 1

    template = ProgressTemplate(
        component_type=component_type,
        version=version,
        workflow_type=workflow_type,
        milestones_config=[m.to_dict() for m in parsed],
    )
    db.session.add(template)
    db.session.flush()
    invalidate_template_cache()
    logger.info("Registered progress template %s v%s", component_type, version)
    return template


# ── Default templates ────────────────────────────────────────────────────────

def _discrete(*pairs, welder: str | None = None) -> list[dict]:
    return [
        {"name": name, "weight": weight, "order": i, "is_partial": False,
         "requires_welder": name == welder}
        for i, (name, weight) in enumerate(pairs, start=1)
    ]


_INSTALL_FLOW = _discrete(("Receive", 10), ("Install", 60), ("Punch", 10), ("Test", 15), ("Restore", 5))

DEFAULT_TEMPLATES: dict[str, list[dict]] = {
    "spool": _discrete(
        ("Receive", 5), ("Erect", 40), ("Connect", 40), ("Punch", 5), ("Test", 5), ("Restore", 5),
    ),
    "field_weld": _discrete(
        ("Fit-up", 30), ("Weld Complete", 65), ("Accepted", 5), welder="Weld Complete",
    ),
    **{t: _INSTALL_FLOW for t in (
        "support", "valve", "fitting", "flange", "instrument", "tubing", "hose", "misc_component",
    )},
    "threaded_pipe": [
        {"name": name, "weight": 16, "order": i, "is_partial": True, "requires_welder": False, "step": 5}
        for i, name in enumerate(("Fabricate", "Install", "Erect", "Connect", "Support"), start=1)
    ] + [
        {"name": "Punch", "weight": 5, "order": 6, "is_partial": False, "requires_welder": False},
        {"name": "Test", "weight": 10, "order": 7, "is_partial": False, "requires_welder": False},
        {"name": "Restore", "weight": 5, "order": 8, "is_partial": False, "requires_welder": False},
    ],
}


def seed_default_templates() -> int:
    """Create version 1 of every default template that does not exist yet.

    Idempotent; returns the number of templates created. Flush only.
    """
    existing = set(db.session.execute(select(ProgressTemplate.component_type)).scalars())
    created = 0
    for component_type, milestones in DEFAULT_TEMPLATES.items():
        if component_type in existing:
            continue
        register_template(component_type, milestones, version=1)
        created += 1
    if created:
        logger.info("Seeded %d default progress templates", created)
    return created
