from dataclasses import FrozenInstanceError, replace

import pytest

from assumptions import (
    PRESETS, FinancePosition, PlacementPosition, RagThresholds, ScenarioLevers,
    apply_preset, default_snapshot, flatten_snapshot, mtfp_labels, with_value,
)
from engine import run_model


def test_snapshot_is_immutable(snapshot):
    with pytest.raises(FrozenInstanceError):
        snapshot.finance.in_year_deficit = 1.0


def test_non_numeric_input_rejected():
    with pytest.raises(TypeError):
        FinancePosition(income="90.4", expenditure=99.2, in_year_deficit=8.8,
                        cumulative_deficit=19.7, reserve_support=3.36, opening_reserves=6.0,
                        earmarked_reserves=1.5, minimum_reserves=2.0)
    with pytest.raises(TypeError):
        PlacementPosition(budgeted=None, actual=79, cost_pressure=6.3,
                          avg_weekly_cost=4.2, benchmark_weekly_cost=3.6)


def test_bool_is_not_a_number_and_number_is_not_a_toggle():
    with pytest.raises(TypeError):
        ScenarioLevers(reduce_agency=True)
    with pytest.raises(TypeError):
        ScenarioLevers(demand_shock=1)


def test_implausible_values_are_accepted():
    """Range checks belong to the host; only types are enforced."""
    levers = ScenarioLevers(reduce_agency=250.0, step_down_rate=-10.0)
    assert levers.reduce_agency == 250.0


def test_run_model_rejects_non_snapshot():
    with pytest.raises(TypeError):
        run_model({"finance": {}})


def test_thresholds_must_be_rag_thresholds(snapshot):
    with pytest.raises(TypeError):
        replace(snapshot, thresholds={"reserves": (6, 12)})


def test_missing_threshold_family_is_skipped(snapshot):
    s = replace(snapshot, thresholds={"reserves": RagThresholds(red=6, amber=12, polarity="descending")})
    assert set(run_model(s).rag) == {"reserves", "early_warning"}


def test_mtfp_labels():
    assert mtfp_labels() == ("24/25", "25/26", "26/27", "27/28")
    assert mtfp_labels(2099, 2) == ("99/00", "00/01")
    with pytest.raises(ValueError):
        mtfp_labels(2024, 0)


def test_empty_period_labels_rejected(snapshot):
    with pytest.raises(ValueError):
        replace(snapshot, period_labels=())


def test_period_labels_must_be_a_tuple(snapshot):
    with pytest.raises(TypeError):
        replace(snapshot, period_labels=["24/25", "25/26"])


def test_thresholds_must_be_a_dict(snapshot):
    with pytest.raises(TypeError):
        replace(snapshot, thresholds=None)


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_input_rejected(snapshot, bad):
    """NaN or infinite inputs never reach the derived metrics."""
    with pytest.raises(ValueError):
        replace(snapshot.finance, in_year_deficit=bad)
    with pytest.raises(ValueError):
        with_value(snapshot, "levers.reduce_agency", bad)


def test_apply_preset_returns_new_snapshot(snapshot):
    high = apply_preset(snapshot, "High demand pressure")
    assert high.levers.pressure_rate == 8.0
    assert snapshot.levers.pressure_rate == 5.0
    assert run_model(high).demand_growth > run_model(snapshot).demand_growth


def test_core_dashboard_parks_extended_levers(snapshot):
    core = apply_preset(snapshot, "Core dashboard")
    assert core.levers.commissioning_savings == 0.0
    assert core.levers.uasc_grant_uplift == 0.0
    assert run_model(core).metrics.uplifted_grant == pytest.approx(1.4)


def test_all_presets_apply(snapshot):
    for name in PRESETS:
        run_model(apply_preset(snapshot, name))
    with pytest.raises(KeyError):
        apply_preset(snapshot, "Nonexistent")


def test_with_value_nested(snapshot):
    s = with_value(snapshot, "efficiencies.delivery.ongoing", 90)
    assert s.efficiencies.delivery.ongoing == 90
    assert snapshot.efficiencies.delivery.ongoing == 77
    assert with_value(snapshot, "levers.reduce_agency", 20.0).levers.reduce_agency == 20.0
    with pytest.raises(ValueError):
        with_value(snapshot, "levers.not_a_lever", 1)
    with pytest.raises(ValueError):
        with_value(snapshot, "finance.income.value", 1)
    with pytest.raises(TypeError):
        with_value(snapshot, "finance.income", "lots")


def test_flatten_snapshot():
    flat = flatten_snapshot(default_snapshot())
    assert flat["finance.in_year_deficit"] == 8.8
    assert flat["efficiencies.delivery.undelivered"] == 15
    assert flat["levers.market_inflation"] is True
    assert flat["thresholds.reserves"] == "descending red=6 amber=12"
    assert flat["period_labels"] == "24/25, 25/26, 26/27, 27/28"
