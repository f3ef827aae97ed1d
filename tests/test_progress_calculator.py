"""
Weighted percent-complete calculation and milestone value checks.

Pure functions; no database rows are needed beyond the autouse fixture.
"""

import random

import pytest

from pipetrak.core.exceptions import OutOfRange, TypeMismatch
from pipetrak.models.template import MilestoneConfig
from pipetrak.services.progress_calculator import (
    calculate_percent_complete,
    classify_action,
    full_completion_values,
    milestone_contribution,
    validate_milestone_value,
)
from pipetrak.services.template_registry import DEFAULT_TEMPLATES

VALVE = [MilestoneConfig.from_dict(m) for m in DEFAULT_TEMPLATES["valve"]]
WELD = [MilestoneConfig.from_dict(m) for m in DEFAULT_TEMPLATES["field_weld"]]
THREADED = [MilestoneConfig.from_dict(m) for m in DEFAULT_TEMPLATES["threaded_pipe"]]


def _by_name(milestones, name):
    return next(m for m in milestones if m.name == name)


# ── calculate_percent_complete ───────────────────────────────────────────


def test_empty_values_are_zero():
    assert calculate_percent_complete(VALVE, {}) == 0.0
    assert calculate_percent_complete(VALVE, None) == 0.0


def test_discrete_milestones_add_their_weight():
    assert calculate_percent_complete(VALVE, {"Receive": True}) == 10.0
    assert calculate_percent_complete(VALVE, {"Receive": True, "Install": True}) == 70.0
    assert calculate_percent_complete(VALVE, {"Receive": False, "Install": True}) == 60.0


def test_field_weld_fit_up_and_weld_complete_is_95():
    assert calculate_percent_complete(WELD, {"Fit-up": True, "Weld Complete": True}) == 95.0


def test_partial_milestones_scale_by_value():
    # 16 * 50% + 16 * 85% = 8 + 13.6
    assert calculate_percent_complete(THREADED, {"Fabricate": 50, "Install": 85}) == 21.6


def test_hybrid_template_mixes_partial_and_discrete():
    values = {"Fabricate": 100, "Install": 100, "Erect": 100, "Connect": 100, "Support": 100,
              "Punch": True, "Test": False, "Restore": False}
    assert calculate_percent_complete(THREADED, values) == 85.0


def test_rounding_is_half_up_to_two_places():
    milestones = [
        MilestoneConfig(name="A", weight=33, order=1, is_partial=True),
        MilestoneConfig(name="B", weight=67, order=2),
    ]
    # 33 * 50.5 / 100 = 16.665
    assert calculate_percent_complete(milestones, {"A": 50.5}) == 16.67


def test_unknown_keys_are_ignored():
    assert calculate_percent_complete(VALVE, {"Receive": True, "Paint": True}) == 10.0


@pytest.mark.parametrize("template", ["spool", "field_weld", "valve", "threaded_pipe"])
def test_full_completion_is_exactly_100(template):
    milestones = [MilestoneConfig.from_dict(m) for m in DEFAULT_TEMPLATES[template]]
    assert calculate_percent_complete(milestones, full_completion_values(milestones)) == 100.0


@pytest.mark.parametrize("seed", range(25))
def test_random_values_stay_within_bounds(seed):
    rng = random.Random(seed)
    values = {}
    for m in THREADED:
        if m.is_partial:
            values[m.name] = rng.randrange(0, 101, 5)
        else:
            values[m.name] = rng.choice([True, False])
    pct = calculate_percent_complete(THREADED, values)
    assert 0.0 <= pct <= 100.0
    assert round(pct, 2) == pct


@pytest.mark.parametrize("seed", range(10))
def test_completing_a_milestone_never_lowers_percent(seed):
    rng = random.Random(seed)
    values = {m.name: rng.choice([True, False]) for m in VALVE}
    before = calculate_percent_complete(VALVE, values)
    target = rng.choice(VALVE).name
    values[target] = True
    assert calculate_percent_complete(VALVE, values) >= before


def test_milestone_contribution_none_is_zero():
    assert milestone_contribution(_by_name(VALVE, "Install"), None) == 0


# ── validate_milestone_value ─────────────────────────────────────────────


def test_discrete_accepts_bool():
    assert validate_milestone_value(_by_name(VALVE, "Receive"), True) is True
    assert validate_milestone_value(_by_name(VALVE, "Receive"), False) is False


@pytest.mark.parametrize("value", [1, 0, 100, "true", None])
def test_discrete_rejects_non_bool(value):
    with pytest.raises(TypeMismatch) as exc:
        validate_milestone_value(_by_name(VALVE, "Receive"), value)
    assert exc.value.kind == "TypeMismatch"
    assert exc.value.details["expected"] == "boolean"


@pytest.mark.parametrize("value", [True, False, "50", None])
def test_partial_rejects_non_number(value):
    with pytest.raises(TypeMismatch):
        validate_milestone_value(_by_name(THREADED, "Fabricate"), value)


@pytest.mark.parametrize("value", [-5, 105, float("inf"), float("nan")])
def test_partial_rejects_out_of_range(value):
    with pytest.raises(OutOfRange):
        validate_milestone_value(_by_name(THREADED, "Fabricate"), value)


def test_partial_step_granularity():
    fabricate = _by_name(THREADED, "Fabricate")
    assert validate_milestone_value(fabricate, 85) == 85
    with pytest.raises(OutOfRange) as exc:
        validate_milestone_value(fabricate, 83)
    assert exc.value.details["step"] == 5


def test_partial_whole_float_is_stored_as_int():
    milestone = MilestoneConfig(name="Fab", weight=100, order=1, is_partial=True)
    value = validate_milestone_value(milestone, 40.0)
    assert value == 40 and isinstance(value, int)
    assert validate_milestone_value(milestone, 42.5) == 42.5


# ── classify_action ──────────────────────────────────────────────────────


def test_classify_discrete_actions():
    receive = _by_name(VALVE, "Receive")
    assert classify_action(receive, None, True) == "complete"
    assert classify_action(receive, True, False) == "rollback"
    assert classify_action(receive, True, True) == "update"
    assert classify_action(receive, None, False) == "update"


def test_classify_partial_actions():
    fabricate = _by_name(THREADED, "Fabricate")
    assert classify_action(fabricate, 20, 50) == "update"
    assert classify_action(fabricate, 50, 100) == "complete"
    assert classify_action(fabricate, 100, 95) == "rollback"
    assert classify_action(fabricate, 50, 50) == "update"
