"""
Progress calculation: pure functions over (milestones, values).

Nothing in this module touches the database or the Flask context, so the
weighting rules can be tested on their own:

    discrete milestone → contributes ``weight`` when true, else 0
    partial milestone  → contributes ``weight * value / 100``

The sum is rounded to two decimals (half-up). Arithmetic is done in Decimal
so a template whose weights sum to 100 yields exactly 100.00 at full
completion.

Usage:
    from pipetrak.services.progress_calculator import calculate_percent_complete

    pct = calculate_percent_complete(template.milestones, {"Receive": True})
"""

from collections.abc import Iterable, Mapping
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from pipetrak.core.exceptions import OutOfRange, TypeMismatch
from pipetrak.models.template import MilestoneConfig

_TWO_PLACES = Decimal("0.01")
_HUNDRED = Decimal(100)


def _to_decimal(value) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise TypeMismatch(f"{value!r} is not a number", field="value") from exc


def milestone_contribution(milestone: MilestoneConfig, value) -> Decimal:
    """Weighted contribution of a single milestone value (unrounded)."""
    if value is None:
        return Decimal(0)
    weight = Decimal(milestone.weight)
    if milestone.is_partial:
        if isinstance(value, bool):
            return weight if value else Decimal(0)
        return weight * _to_decimal(value) / _HUNDRED
    return weight if value is True else Decimal(0)


def calculate_percent_complete(milestones: Iterable[MilestoneConfig], values: Mapping) -> float:
    """Weighted percent complete, rounded to 2 decimals.

    Keys in ``values`` that are not in ``milestones`` are ignored; the update
    engine rejects them before they can be stored.
    """
    values = values or {}
    total = sum(
        (milestone_contribution(m, values.get(m.name)) for m in milestones),
        Decimal(0),
    )
    total = min(max(total, Decimal(0)), _HUNDRED)
    return float(total.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def validate_milestone_value(milestone: MilestoneConfig, value):
    """Type- and range-check a value for a milestone; return the value to store.

    Raises:
        TypeMismatch: bool for a partial milestone, or non-bool for a discrete one.
        OutOfRange: partial value outside [0, 100] or off the step granularity.
    """
    if not milestone.is_partial:
        if not isinstance(value, bool):
            raise TypeMismatch(
                f"Milestone {milestone.name!r} is discrete and requires true/false",
                field="value",
                details={"milestone_name": milestone.name, "expected": "boolean"},
            )
        return value

    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise TypeMismatch(
            f"Milestone {milestone.name!r} is partial and requires a number 0-100",
            field="value",
            details={"milestone_name": milestone.name, "expected": "number"},
        )

    number = _to_decimal(value)
    if not number.is_finite() or number < 0 or number > _HUNDRED:
        raise OutOfRange(
            f"Milestone {milestone.name!r} value must be between 0 and 100",
            field="value",
            details={"milestone_name": milestone.name, "min": 0, "max": 100, "value": value},
        )
    if milestone.step and number % Decimal(milestone.step) != 0:
        raise OutOfRange(
            f"Milestone {milestone.name!r} value must be a multiple of {milestone.step}",
            field="value",
            details={"milestone_name": milestone.name, "step": milestone.step, "value": value},
        )

    # Store whole numbers as int so JSON reads back the same as it was sent
    if number == number.to_integral_value():
        return int(number)
    return float(number)


def _as_level(milestone: MilestoneConfig, value) -> Decimal:
    """Comparable progress level for a stored value (None = not set)."""
    if value is None:
        return Decimal(0)
    if isinstance(value, bool):
        return _HUNDRED if value else Decimal(0)
    return _to_decimal(value)


def classify_action(milestone: MilestoneConfig, previous, new) -> str:
    """Audit action for a change: ``complete`` | ``rollback`` | ``update``.

    A replay of the current value is always ``update``.
    """
    if previous == new and type(previous) is type(new):
        return "update"
    old_level = _as_level(milestone, previous)
    new_level = _as_level(milestone, new)
    if new_level < old_level:
        return "rollback"
    if new_level >= _HUNDRED:
        return "complete"
    return "update"


def full_completion_values(milestones: Iterable[MilestoneConfig]) -> dict:
    """Milestone map with every milestone at its maximum (true / 100)."""
    return {m.name: m.max_value for m in milestones}
