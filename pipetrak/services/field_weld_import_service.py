"""
Field weld bulk import.

Rows (JSON objects or CSV lines) describe one weld each:

    drawing, weld_number, weld_type, weld_size, schedule, base_metal, spec,
    nde_required, welder_stencil, date_welded, nde_type, nde_result

Pipeline: parse → validate every row → apply all rows in one transaction.
The import is all-or-nothing: if any row fails validation nothing is written
and the per-row error list is returned.

Initial progress per row:
  - date_welded present        → Fit-up + Weld Complete (95%)
  - NDE PASS                   → 100%, status accepted
  - NDE FAIL                   → 100%, status rejected
Unknown welder stencils are auto-created as unverified welders. Every
milestone set here is audited with ``{"trigger": "import"}``.
"""

import csv
import io
import logging

from flask import current_app
from sqlalchemy import select

from pipetrak.core.exceptions import NotFoundError, ProgressEngineError, ValidationError
from pipetrak.models import db
from pipetrak.models.component import Component
from pipetrak.models.field_weld import NDE_RESULTS, NDE_TYPES, WELD_TYPES, write_weld_event
from pipetrak.models.project import Drawing, Project
from pipetrak.services import field_weld_service, milestone_service, rollup_service, weld_state_machine
from pipetrak.services.welder_service import get_or_create_welder, normalize_stencil
from pipetrak.utils.helpers import normalize_drawing_no, parse_date_input

logger = logging.getLogger(__name__)

IMPORT_COLUMNS = [
    "drawing", "weld_number", "weld_type", "weld_size", "schedule", "base_metal", "spec",
    "nde_required", "welder_stencil", "date_welded", "nde_type", "nde_result",
]
CSV_TEMPLATE_EXAMPLE = [
    ["P-1001", "W-001", "BW", "2\"", "40", "CS", "A106", "true", "K-07", "2026-03-02", "RT", "PASS"],
    ["P-1001", "W-002", "SW", "1\"", "80", "CS", "A106", "false", "", "", "", ""],
]

_TRUE_STRINGS = {"true", "yes", "y", "1", "x"}


def generate_csv_template() -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(IMPORT_COLUMNS)
    writer.writerows(CSV_TEMPLATE_EXAMPLE)
    return output.getvalue()


def parse_csv(file_content: str | bytes) -> list[dict]:
    """Parse CSV text into row dicts with normalised headers."""
    if isinstance(file_content, bytes):
        file_content = file_content.decode("utf-8-sig")
    reader = csv.DictReader(io.StringIO(file_content))
    headers = [(f or "").strip().lower() for f in (reader.fieldnames or [])]
    missing = [c for c in ("drawing", "weld_number", "weld_type") if c not in headers]
    if missing:
        raise ValidationError(
            f"CSV missing required columns: {', '.join(missing)}",
            details={"found": headers},
            field="file",
        )
    return [
        {(k or "").strip().lower(): (v or "").strip() for k, v in row.items()}
        for row in reader
    ]


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in _TRUE_STRINGS


def _clean(value):
    return None if _blank(value) else str(value).strip()


def validate_import_rows(project_id: int, rows: list[dict]) -> dict:
    """Check every row without writing anything.

    Returns {"valid": [normalised rows], "errors": [{"row_num", "weld_number", "errors"}]}.
    """
    drawings = {
        d.drawing_no_norm: d.id
        for d in db.session.execute(
            select(Drawing).where(Drawing.project_id == project_id, Drawing.is_retired.is_(False))
        ).scalars()
    }
    existing_numbers = {
        (c.identity_key or {}).get("weld_number")
        for c in db.session.execute(
            select(Component).where(
                Component.project_id == project_id,
                Component.component_type == "field_weld",
                Component.is_retired.is_(False),
            )
        ).scalars()
    }

    valid, errors = [], []
    seen = set()
    for row_num, row in enumerate(rows, start=1):
        row_errors = []

        def fail(field, message, kind="ValidationError"):
            row_errors.append({"field": field, "kind": kind, "message": message})

        weld_number = _clean(row.get("weld_number"))
        if weld_number is None:
            fail("weld_number", "weld_number is required")
        elif weld_number in seen:
            fail("weld_number", f"Duplicate weld number in file: {weld_number}", "Conflict")
        elif weld_number in existing_numbers:
            fail("weld_number", f"Weld {weld_number} already exists in the project", "Conflict")
        seen.add(weld_number)

        drawing_norm = normalize_drawing_no(row.get("drawing"))
        drawing_id = drawings.get(drawing_norm)
        if not drawing_norm:
            fail("drawing", "drawing is required")
        elif drawing_id is None:
            fail("drawing", f"Drawing {drawing_norm} not found", "NotFound")

        weld_type = (_clean(row.get("weld_type")) or "").upper()
        if weld_type not in WELD_TYPES:
            fail("weld_type", f"weld_type must be one of {', '.join(sorted(WELD_TYPES))}")

        stencil = None
        if not _blank(row.get("welder_stencil")):
            try:
                stencil = normalize_stencil(row["welder_stencil"])
            except ProgressEngineError as exc:
                fail("welder_stencil", exc.message, exc.kind)

        date_welded = None
        try:
            date_welded = parse_date_input(_clean(row.get("date_welded")))
        except ValueError as exc:
            fail("date_welded", str(exc))

        nde_type = (_clean(row.get("nde_type")) or "").upper() or None
        if nde_type is not None and nde_type not in NDE_TYPES:
            fail("nde_type", f"nde_type must be one of {', '.join(sorted(NDE_TYPES))}")
        nde_result = (_clean(row.get("nde_result")) or "").upper() or None
        if nde_result is not None:
            if nde_result not in NDE_RESULTS:
                fail("nde_result", f"nde_result must be one of {', '.join(sorted(NDE_RESULTS))}")
            elif nde_type is None:
                fail("nde_type", "nde_type is required when nde_result is given")

        if stencil is None and (date_welded is not None or nde_result in ("PASS", "FAIL")):
            fail("welder_stencil", "A welder stencil is required for welded or inspected welds",
                 "WelderRequired")

        if row_errors:
            errors.append({"row_num": row_num, "weld_number": weld_number, "errors": row_errors})
            continue
        valid.append({
            "row_num": row_num,
            "weld_number": weld_number,
            "drawing_id": drawing_id,
            "weld_type": weld_type,
            "weld_size": _clean(row.get("weld_size")),
            "schedule": _clean(row.get("schedule")),
            "base_metal": _clean(row.get("base_metal")),
            "spec": _clean(row.get("spec")),
            "nde_required": _as_bool(row.get("nde_required")) or nde_type is not None,
            "welder_stencil": stencil,
            "date_welded": date_welded,
            "nde_type": nde_type,
            "nde_result": nde_result,
        })
    return {"valid": valid, "errors": errors}


def _apply_row(project_id: int, row: dict, actor_id: str, welders_created: set) -> Component:
    field_weld = field_weld_service.build_field_weld(
        project_id,
        row["weld_number"],
        weld_type=row["weld_type"],
        drawing_id=row["drawing_id"],
        weld_size=row["weld_size"],
        schedule=row["schedule"],
        base_metal=row["base_metal"],
        spec=row["spec"],
        nde_required=row["nde_required"],
        actor_id=actor_id,
    )
    component = field_weld.component

    if row["welder_stencil"]:
        welder, created = get_or_create_welder(project_id, row["welder_stencil"], actor_id)
        if created:
            welders_created.add(welder.id)
        field_weld.welder_id = welder.id
        field_weld.date_welded = row["date_welded"]
        write_weld_event(field_weld_id=field_weld.id, action="assign", actor=actor_id,
                         welder_id=welder.id, metadata={"trigger": "import"})

    template = milestone_service.template_for(component)
    if row["date_welded"] is not None:
        welded = {k: v for k, v in weld_state_machine.welded_values(template.milestones).items() if v}
        milestone_service.apply_milestone_values(
            component, template, welded,
            actor=actor_id, metadata={"trigger": "import"}, only_changed=True,
        )

    if row["nde_result"] is not None:
        field_weld_service.apply_nde_transition(
            field_weld, component, row["nde_result"], actor_id=actor_id, trigger="import",
        )
        field_weld.nde_type = row["nde_type"]
        field_weld.nde_result = row["nde_result"]
        write_weld_event(field_weld_id=field_weld.id, action="nde_record", actor=actor_id,
                         nde_type=row["nde_type"], nde_result=row["nde_result"],
                         metadata={"trigger": "import"})
    return component


def import_field_welds(project_id: int, rows: list[dict], actor_id: str = "system") -> dict:
    """Validate and import weld rows, all or nothing.

    Returns:
        {"status": "completed" | "rejected", "total_rows", "imported",
         "welders_created", "errors": [...]}
    """
    if db.session.get(Project, project_id) is None:
        raise NotFoundError("Project", project_id)
    if not rows:
        raise ValidationError("No rows to import", field="rows")
    max_rows = current_app.config.get("IMPORT_MAX_ROWS", 5000)
    if len(rows) > max_rows:
        raise ValidationError(
            f"Import is limited to {max_rows} rows (got {len(rows)})",
            details={"max_rows": max_rows},
            field="rows",
        )

    validation = validate_import_rows(project_id, rows)
    if validation["errors"]:
        logger.info(
            "Field weld import rejected: %d of %d rows invalid",
            len(validation["errors"]), len(rows),
            extra={"project_id": project_id, "actor": actor_id},
        )
        return {
            "status": "rejected",
            "total_rows": len(rows),
            "imported": 0,
            "welders_created": 0,
            "errors": validation["errors"],
        }

    batch_size = current_app.config.get("IMPORT_BATCH_SIZE", 100)
    welders_created: set = set()
    parents = set()
    try:
        for idx, row in enumerate(validation["valid"], start=1):
            component = _apply_row(project_id, row, actor_id, welders_created)
            parents.update(rollup_service.parents_of(component))
            if idx % batch_size == 0:
                db.session.flush()
                logger.debug("Imported %d/%d weld rows", idx, len(rows))
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Field weld import failed and was rolled back",
                         extra={"project_id": project_id, "actor": actor_id})
        raise

    logger.info(
        "Imported %d field welds (%d new welders)", len(validation["valid"]), len(welders_created),
        extra={"project_id": project_id, "actor": actor_id, "event_type": "import"},
    )
    rollup_service.refresh_after_commit(parents)
    return {
        "status": "completed",
        "total_rows": len(rows),
        "imported": len(validation["valid"]),
        "welders_created": len(welders_created),
        "errors": [],
    }
