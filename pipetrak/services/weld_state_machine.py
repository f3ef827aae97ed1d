"""
Field weld state machine.

    active ──NDE PASS──▶ accepted
       │
       └────NDE FAIL──▶ rejected   (all milestones force-completed; a repair
                                    weld carries the remaining work)

A correction back to PENDING, or a cleared result, returns the weld to
``active`` with only "Fit-up" and "Weld Complete" set (95%).

These are plain transition functions over the current weld state. Nothing
here writes to the database; ``field_weld_service`` applies the outcome
through the milestone engine so every change is audited.
"""

from dataclasses import dataclass
from datetime import date

from pipetrak.core.exceptions import ValidationError, WelderRequired
from pipetrak.models.field_weld import FieldWeld
from pipetrak.models.template import MilestoneConfig
from pipetrak.services.progress_calculator import full_completion_values

FIT_UP = "Fit-up"
WELD_COMPLETE = "Weld Complete"
ACCEPTED = "Accepted"

CLOSED_STATUSES = frozenset({"accepted", "rejected"})


@dataclass(frozen=True)
class NdeTransition:
    """Outcome of an NDE change.

    ``milestones`` is the full target map, or None when milestones stay as
    they are.
    """

    status: str
    milestones: dict | None = None
    reverted: bool = False


def requires_welder(milestone: MilestoneConfig) -> bool:
    return milestone.requires_welder or milestone.name == WELD_COMPLETE


def check_milestone_preconditions(field_weld: FieldWeld, milestone: MilestoneConfig, value) -> None:
    """Guards for a direct milestone write on a field weld.

    Accepted and rejected welds are closed: their milestones only change
    through an NDE correction or clear. "Accepted" follows from an NDE PASS
    and is never written by hand. Completing a welder-gated milestone needs
    an assigned welder.
    """
    if field_weld.status in CLOSED_STATUSES:
        raise ValidationError(
            f"Weld is {field_weld.status}; correct or clear the NDE result instead",
            details={"field_weld_id": field_weld.id, "status": field_weld.status},
            field="milestone_name",
        )
    if milestone.name == ACCEPTED:
        raise ValidationError(
            f"{ACCEPTED!r} is set by recording an NDE PASS result",
            details={"field_weld_id": field_weld.id},
            field="milestone_name",
        )
    if value is True and requires_welder(milestone) and field_weld.welder_id is None:
        raise WelderRequired(
            f"Assign a welder before marking {milestone.name!r} complete",
            details={"field_weld_id": field_weld.id, "milestone_name": milestone.name},
        )


def on_milestone_applied(field_weld: FieldWeld, milestone: MilestoneConfig, value) -> None:
    """Side effects on the weld record after a milestone write."""
    if milestone.name == WELD_COMPLETE and value is True and field_weld.date_welded is None:
        field_weld.date_welded = date.today()


def welded_values(milestones) -> dict:
    """Milestone map for a welded weld awaiting NDE: Fit-up + Weld Complete only."""
    done = {FIT_UP, WELD_COMPLETE}
    return {m.name: (m.max_value if m.name in done else m.empty_value) for m in milestones}


def evaluate_nde_transition(milestones, previous_result: str | None, new_result: str | None) -> NdeTransition:
    """Decide weld status and milestone target for an NDE result change.

    ``new_result`` of None means the result is being cleared.
    """
    if new_result == "PASS":
        return NdeTransition(status="accepted", milestones=full_completion_values(milestones))
    if new_result == "FAIL":
        return NdeTransition(status="rejected", milestones=full_completion_values(milestones))
    if previous_result in ("PASS", "FAIL"):
        return NdeTransition(status="active", milestones=welded_values(milestones), reverted=True)
    return NdeTransition(status="active")
