from dataclasses import replace

import pytest

from engine import breakdowns, derive_metrics


def test_finance_bars(snapshot):
    df = breakdowns(snapshot, derive_metrics(snapshot))["finance"]
    assert df["name"].tolist() == ["Budget", "Actual", "Forecast", "Worst Case"]
    assert df["value"].tolist() == pytest.approx([90.4, 99.2, 99.2 + 8.8 * 0.25, 99.2 + 6.3 + 1.16])


def test_uasc_waterfall_signs(snapshot):
    m = derive_metrics(snapshot)
    df = breakdowns(snapshot, m)["uasc"]
    assert df["name"].tolist() == ["Gross", "Grant", "Net", "Residual"]
    assert df["value"].tolist() == pytest.approx([2.7, -1.54, 1.16, 1.16 * 0.4])
    assert df["value"].iloc[1] == pytest.approx(-m.uplifted_grant)


def test_efficiency_stack_split(snapshot):
    df = breakdowns(snapshot, derive_metrics(snapshot))["efficiency"]
    row = df.iloc[0]
    assert row["name"] == "24/25"
    assert row["cashable"] == pytest.approx(77 * 0.7)
    assert row["non_cashable"] == pytest.approx(77 * 0.3)
    assert row["one_off"] == 8


def test_workforce_mix(snapshot):
    df = breakdowns(snapshot, derive_metrics(snapshot))["workforce_mix"]
    assert df["value"].tolist() == pytest.approx([85.3, 14.7])
    assert df["value"].sum() == pytest.approx(100)


def test_modelled_placements_round_half_up(snapshot):
    """A modelled base of 78.5 shows as 79 on the placement bars."""
    levers = replace(snapshot.levers, localities_impact=True, localities_reduction=50.0,
                     step_down=False, market_inflation=False, unit_cost_enabled=False)
    s = replace(snapshot, placements=replace(snapshot.placements, actual=157), levers=levers)
    m = derive_metrics(s)
    assert m.modelled_placement_base == pytest.approx(78.5)
    df = breakdowns(s, m)["placements"]
    assert df["value"].tolist() == [62, 157, 79]
