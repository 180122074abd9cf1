"""
engine.py: Derivation engine for the Trust finance scenario calculator

One call, run_model(snapshot), turns an immutable input Snapshot into a full
result bundle: point-in-time risk metrics, the MTFP projection, risk bands,
reserves drawdown, recovery scenarios, the Section 114 early warning and a
RAG label per metric family. Every call recomputes from scratch.
"""
import logging
from dataclasses import asdict, dataclass, field

import numpy as np
import pandas as pd

from assumptions import (
    ASCENDING, DESCENDING,
    DemandDrivers, FinancePosition, RagThresholds, ScenarioLevers, Snapshot,
    with_value,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Policy constants
# ---------------------------------------------------------------------------

AGENCY_LOADING         = 0.30   # agency cost premium over permanent staff
BREAK_EVEN_BASE        = 0.10   # share of expenditure used for break-even
DELIVERY_REFERENCE_PCT = 77.0   # current ongoing delivery %; uplift accrues above this
DELIVERED_MULTIPLIER   = 0.90
OPTIMISED_MULTIPLIER   = 1.05
RISK_BAND_LOW          = 0.85
RISK_BAND_HIGH         = 1.20
DEMAND_GROWTH_FLOOR    = 0.5
LAC_WEIGHT             = 0.4
UASC_WEIGHT            = 0.25
EDGE_OF_CARE_WEIGHT    = 0.3
INFLATION_WEIGHT       = 0.15
DIVISOR_FLOOR          = 0.1
EARLY_WARNING_MONTHS   = 3.0
DAYS_PER_MONTH         = 30.0
FORECAST_RUN_RATE      = 0.25   # share of the deficit still to land in the forecast outturn
UASC_RESIDUAL_SHARE    = 0.4

RED, AMBER, GREEN = "Red", "Amber", "Green"

SCENARIO_NAMES = ("Current Path", "Delivered Transformation", "Optimised Recovery")

PROJECTION_COLUMNS = [
    "period", "period_idx", "baseline",
    "current", "delivered", "optimised",
    "recurring", "one_off", "cashable", "non_cashable",
]


# ---------------------------------------------------------------------------
# Threshold classifier
# ---------------------------------------------------------------------------

def classify(value: float, thresholds: RagThresholds, polarity: str | None = None) -> str:
    """
    Map `value` to Red / Amber / Green.

    ascending  : value >= red -> Red, value >= amber -> Amber, else Green
    descending : value <= red -> Red, value <= amber -> Amber, else Green

    Breakpoints are not checked for ordering.
    """
    pol = polarity or thresholds.polarity
    if pol == ASCENDING:
        if value >= thresholds.red:
            return RED
        if value >= thresholds.amber:
            return AMBER
        return GREEN
    if pol == DESCENDING:
        if value <= thresholds.red:
            return RED
        if value <= thresholds.amber:
            return AMBER
        return GREEN
    raise ValueError(f"Unknown polarity {pol!r}")


# ---------------------------------------------------------------------------
# Derived metrics
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DerivedMetrics:
    # Reserves
    reserve_coverage: float
    months_to_exhaustion: float
    # Placements
    placement_delta: float
    pressure_per_unit: float
    modelled_placement_base: float
    modelled_pressure: float
    unit_cost_saving: float
    # Workforce
    effective_agency_rate: float
    permanent_rate: float
    agency_premium: float
    break_even: float
    wte_gap: float
    funded_gap: float
    time_to_fill_months: float
    # UASC
    uplifted_grant: float
    net_uasc_pressure: float
    residual_uasc: float
    # Transformation
    delivery_confidence: float
    efficiency_uplift: float
    # Exposure
    cost_driver_exposure: float
    forecast_outturn: float
    worst_case_outturn: float


def _floored(value: float, floor: float, label: str) -> float:
    if value < floor:
        logger.debug("%s %.4f below divisor floor, using %.1f", label, value, floor)
        return floor
    return value


def placement_factors(levers: ScenarioLevers) -> dict:
    """Multiplicative factors applied to the actual placement count, in order."""
    return {
        "localities":  1 - levers.localities_reduction / 100 if levers.localities_impact else 1.0,
        "step_down":   1 - levers.step_down_rate / 100 if levers.step_down else 1.0,
        "market":      1 + levers.market_inflation_rate / 100 if levers.market_inflation else 1.0,
        "unit_cost":   1 - levers.unit_cost_improvement / 100 if levers.unit_cost_enabled else 1.0,
    }


def derive_metrics(snapshot: Snapshot) -> DerivedMetrics:
    f  = snapshot.finance
    p  = snapshot.placements
    u  = snapshot.uasc
    w  = snapshot.workforce
    e  = snapshot.efficiencies
    lv = snapshot.levers

    # --- Reserves -----------------------------------------------------
    deficit_div      = _floored(f.in_year_deficit, DIVISOR_FLOOR, "in_year_deficit")
    reserve_coverage = f.reserve_support / deficit_div
    months           = reserve_coverage * 12

    # --- Placements ---------------------------------------------------
    delta    = p.actual - p.budgeted
    per_unit = p.cost_pressure / max(1, delta)
    base     = float(p.actual)
    for factor in placement_factors(lv).values():
        base *= factor
    modelled = max(0.0, (base - p.budgeted) * per_unit)
    unit_cost_saving = p.cost_pressure * (lv.unit_cost_improvement / 100) if lv.unit_cost_enabled else 0.0

    # --- Workforce ----------------------------------------------------
    eff_agency = max(0.0, w.agency_rate - lv.agency_conversion_gain)
    premium    = f.expenditure * (eff_agency / 100) * AGENCY_LOADING
    break_even = premium / _floored(f.expenditure * BREAK_EVEN_BASE, DIVISOR_FLOOR, "break-even base")

    # --- UASC ---------------------------------------------------------
    uplifted = u.grant * (1 + lv.uasc_grant_uplift / 100)
    net_uasc = u.pressure - uplifted

    return DerivedMetrics(
        reserve_coverage        = reserve_coverage,
        months_to_exhaustion    = months,
        placement_delta         = delta,
        pressure_per_unit       = per_unit,
        modelled_placement_base = base,
        modelled_pressure       = modelled,
        unit_cost_saving        = unit_cost_saving,
        effective_agency_rate   = eff_agency,
        permanent_rate          = 100 - eff_agency,
        agency_premium          = premium,
        break_even              = break_even,
        wte_gap                 = w.wte_required - w.wte_in_post,
        funded_gap              = w.wte_required - w.wte_funded,
        time_to_fill_months     = w.time_to_fill / DAYS_PER_MONTH,
        uplifted_grant          = uplifted,
        net_uasc_pressure       = net_uasc,
        residual_uasc           = net_uasc * UASC_RESIDUAL_SHARE,
        delivery_confidence     = 100 - e.delivery.undelivered,
        efficiency_uplift       = max(0.0, (lv.efficiency_rate - DELIVERY_REFERENCE_PCT) / 100) * e.target_next,
        cost_driver_exposure    = p.cost_pressure + net_uasc,
        forecast_outturn        = f.expenditure + f.in_year_deficit * FORECAST_RUN_RATE,
        worst_case_outturn      = f.expenditure + p.cost_pressure + net_uasc,
    )


# ---------------------------------------------------------------------------
# Scenario projector
# ---------------------------------------------------------------------------

def demand_growth_rate(demand: DemandDrivers, levers: ScenarioLevers) -> float:
    """Blended annual demand growth % with a floor of 0.5."""
    shock = levers.demand_shock_rate if levers.demand_shock else 0.0
    rate = (levers.pressure_rate
            + demand.lac_growth * LAC_WEIGHT
            + demand.uasc_growth * UASC_WEIGHT
            - demand.edge_of_care_improvement * EDGE_OF_CARE_WEIGHT
            + shock
            + levers.inflation_index * INFLATION_WEIGHT)
    return max(DEMAND_GROWTH_FLOOR, rate)


def inflated_baselines(deficit: float, growth_pct: float, periods: int) -> np.ndarray:
    """deficit × (1 + g)^i for i in 0..periods-1; every period compounds off `deficit`."""
    if periods < 1:
        raise ValueError("periods must be at least 1")
    return deficit * np.power(1 + growth_pct / 100, np.arange(periods))


def project(snapshot: Snapshot, demand_growth: float | None = None) -> pd.DataFrame:
    """
    Build the MTFP projection: one row per period label.

    Columns
    -------
    baseline     : inflated in-year deficit before efficiencies
    current      : deficit at the current ongoing delivery rate
    delivered    : deficit at 90% delivery of the next-year target
    optimised    : deficit at 105% delivery
    recurring / one_off         : split of the current-path efficiency total
    cashable / non_cashable     : cash vs cost-avoidance split of the same total
    """
    e = snapshot.efficiencies
    if demand_growth is None:
        demand_growth = demand_growth_rate(snapshot.demand, snapshot.levers)

    n        = snapshot.periods
    baseline = inflated_baselines(snapshot.finance.in_year_deficit, demand_growth, n)

    current_total   = e.target_next * (e.delivery.ongoing / 100)
    delivered_total = e.target_next * DELIVERED_MULTIPLIER
    optimised_total = e.target_next * OPTIMISED_MULTIPLIER

    recurring = current_total * (e.recurring_share / 100)
    one_off   = current_total * (1 - e.recurring_share / 100)
    cashable  = current_total * (e.cashable_share / 100)

    df = pd.DataFrame({
        "period":       list(snapshot.period_labels),
        "period_idx":   np.arange(n),
        "baseline":     baseline,
        "current":      np.maximum(0.0, baseline - (recurring + one_off)),
        "delivered":    np.maximum(0.0, baseline - delivered_total),
        "optimised":    np.maximum(0.0, baseline - optimised_total),
        "recurring":    recurring,
        "one_off":      one_off,
        "cashable":     cashable,
        "non_cashable": current_total - cashable,
    })
    return df[PROJECTION_COLUMNS]


def risk_bands(projection: pd.DataFrame) -> pd.DataFrame:
    cur = projection["current"]
    return pd.DataFrame({
        "period":  projection["period"],
        "low":     (cur * RISK_BAND_LOW).clip(lower=0),
        "central": cur,
        "high":    cur * RISK_BAND_HIGH,
    })


def reserves_timeline(projection: pd.DataFrame, opening_reserves: float) -> pd.DataFrame:
    """Running drawdown of reserves by the current-path deficit; exhaustion floors at 0."""
    draw = projection["current"].to_numpy()
    reserves = np.empty(len(draw))
    balance = opening_reserves
    for i, d in enumerate(draw):
        balance = max(0.0, balance - d)
        reserves[i] = balance
    return pd.DataFrame({
        "period":   projection["period"],
        "drawdown": draw,
        "reserves": reserves,
    })


def cumulative_deficit(projection: pd.DataFrame, column: str = "current") -> float:
    return float(projection[column].sum())


# ---------------------------------------------------------------------------
# Recovery scenarios
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RecoveryPlan:
    placement_saving: float
    agency_saving: float
    efficiency_saving: float
    commissioning_saving: float
    total_savings: float
    deficit: float
    cumulative_deficit: float


@dataclass(frozen=True)
class ScenarioSummary:
    name: str
    in_year_deficit: float
    cumulative_deficit: float
    reserve_months: float


def recovery_plan(snapshot: Snapshot, metrics: DerivedMetrics,
                  projection: pd.DataFrame) -> RecoveryPlan:
    lv = snapshot.levers

    placement_saving  = snapshot.placements.cost_pressure * (lv.reduce_placements / 100)
    agency_saving     = metrics.agency_premium * (lv.reduce_agency / 100)
    efficiency_saving = metrics.efficiency_uplift
    commissioning     = lv.commissioning_savings
    total = placement_saving + agency_saving + efficiency_saving + commissioning

    # Savings are spread evenly across the projection periods
    per_period = total / len(projection)
    scenario_cum = float(np.maximum(0.0, projection["current"].to_numpy() - per_period).sum())

    return RecoveryPlan(
        placement_saving     = placement_saving,
        agency_saving        = agency_saving,
        efficiency_saving    = efficiency_saving,
        commissioning_saving = commissioning,
        total_savings        = total,
        deficit              = max(0.0, snapshot.finance.in_year_deficit - total),
        cumulative_deficit   = scenario_cum,
    )


def scenario_comparison(snapshot: Snapshot, metrics: DerivedMetrics,
                        projection: pd.DataFrame, plan: RecoveryPlan) -> list:
    f = snapshot.finance
    first_delivered = float(projection["delivered"].iloc[0])
    return [
        ScenarioSummary(
            name               = SCENARIO_NAMES[0],
            in_year_deficit    = f.in_year_deficit,
            cumulative_deficit = cumulative_deficit(projection, "current"),
            reserve_months     = metrics.months_to_exhaustion,
        ),
        ScenarioSummary(
            name               = SCENARIO_NAMES[1],
            in_year_deficit    = max(0.0, f.in_year_deficit - snapshot.efficiencies.target_next * DELIVERED_MULTIPLIER),
            cumulative_deficit = cumulative_deficit(projection, "delivered"),
            reserve_months     = f.opening_reserves / max(DIVISOR_FLOOR, first_delivered) * 12,
        ),
        ScenarioSummary(
            name               = SCENARIO_NAMES[2],
            in_year_deficit    = plan.deficit,
            cumulative_deficit = plan.cumulative_deficit,
            reserve_months     = f.opening_reserves / max(DIVISOR_FLOOR, plan.deficit) * 12,
        ),
    ]


# ---------------------------------------------------------------------------
# Section 114 early warning
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EarlyWarning:
    triggered: bool
    reserves_after_first_period: float
    conditions: dict = field(default_factory=dict)


def early_warning(finance: FinancePosition, projection: pd.DataFrame,
                  months_to_exhaustion: float) -> EarlyWarning:
    first_current = float(projection["current"].iloc[0]) if len(projection) else 0.0
    after_first = finance.opening_reserves - first_current
    conditions = {
        "reserves_below_minimum_after_first_period": after_first < finance.minimum_reserves,
        "runway_below_three_months":                 months_to_exhaustion < EARLY_WARNING_MONTHS,
        "unearmarked_below_minimum":
            finance.opening_reserves - finance.earmarked_reserves < finance.minimum_reserves,
    }
    return EarlyWarning(
        triggered                   = any(conditions.values()),
        reserves_after_first_period = after_first,
        conditions                  = conditions,
    )


# ---------------------------------------------------------------------------
# RAG roll-up
# ---------------------------------------------------------------------------

def rag_status(snapshot: Snapshot, metrics: DerivedMetrics,
               plan: RecoveryPlan, warning: EarlyWarning) -> dict:
    """Label per metric family; families without configured thresholds are skipped."""
    values = {
        "reserves":       metrics.months_to_exhaustion,
        "deficit":        snapshot.finance.in_year_deficit,
        "cost_drivers":   metrics.cost_driver_exposure,
        "workforce":      metrics.effective_agency_rate,
        "transformation": snapshot.efficiencies.delivery.undelivered,
        "placements":     metrics.modelled_pressure,
        "agency_premium": metrics.agency_premium,
        "uasc":           metrics.net_uasc_pressure,
        "recovery":       plan.deficit,
    }
    rag = {}
    for family, v in values.items():
        t = snapshot.thresholds.get(family)
        if t is not None:
            rag[family] = classify(v, t)
    rag["early_warning"] = RED if warning.triggered else GREEN
    return rag


# ---------------------------------------------------------------------------
# Main engine
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EngineResult:
    snapshot: Snapshot
    metrics: DerivedMetrics
    demand_growth: float
    projection: pd.DataFrame
    risk_bands: pd.DataFrame
    reserves_timeline: pd.DataFrame
    cumulative_deficit: float
    recovery: RecoveryPlan
    scenarios: pd.DataFrame
    early_warning: EarlyWarning
    rag: dict

    def headline(self) -> dict:
        """Stable named scalars for narrative templates and exports."""
        f = self.snapshot.finance
        out = {
            "in_year_deficit":      f.in_year_deficit,
            "cumulative_deficit":   f.cumulative_deficit,
            "opening_reserves":     f.opening_reserves,
            "demand_growth":        self.demand_growth,
            "mtfp_cumulative":      self.cumulative_deficit,
            "delivered_cumulative": cumulative_deficit(self.projection, "delivered"),
            "scenario_savings":     self.recovery.total_savings,
            "scenario_deficit":     self.recovery.deficit,
            "scenario_cumulative":  self.recovery.cumulative_deficit,
            "section_114_risk":     self.early_warning.triggered,
        }
        out.update(asdict(self.metrics))
        return out


def run_model(snapshot: Snapshot) -> EngineResult:
    """
    Run the full derivation graph for one snapshot.

    Raises TypeError when `snapshot` is not a Snapshot.
    """
    if not isinstance(snapshot, Snapshot):
        raise TypeError(f"run_model expects a Snapshot, got {type(snapshot).__name__}")

    metrics = derive_metrics(snapshot)
    growth  = demand_growth_rate(snapshot.demand, snapshot.levers)
    proj    = project(snapshot, demand_growth=growth)
    plan    = recovery_plan(snapshot, metrics, proj)
    rows    = scenario_comparison(snapshot, metrics, proj, plan)
    warning = early_warning(snapshot.finance, proj, metrics.months_to_exhaustion)
    rag     = rag_status(snapshot, metrics, plan, warning)

    if warning.triggered:
        tripped = [k for k, v in warning.conditions.items() if v]
        logger.info("Section 114 early warning triggered: %s", ", ".join(tripped))
    logger.debug(
        "recomputed %d periods: growth=%.2f%% months=%.2f scenario_deficit=%.2f",
        snapshot.periods, growth, metrics.months_to_exhaustion, plan.deficit,
    )

    return EngineResult(
        snapshot           = snapshot,
        metrics            = metrics,
        demand_growth      = growth,
        projection         = proj,
        risk_bands         = risk_bands(proj),
        reserves_timeline  = reserves_timeline(proj, snapshot.finance.opening_reserves),
        cumulative_deficit = cumulative_deficit(proj),
        recovery           = plan,
        scenarios          = pd.DataFrame([asdict(r) for r in rows]),
        early_warning      = warning,
        rag                = rag,
    )


# ---------------------------------------------------------------------------
# Chart-ready breakdowns
# ---------------------------------------------------------------------------

def breakdowns(snapshot: Snapshot, metrics: DerivedMetrics) -> dict:
    f = snapshot.finance
    p = snapshot.placements
    d = snapshot.efficiencies.delivery
    cash = snapshot.efficiencies.cashable_share / 100
    return {
        "finance": pd.DataFrame({
            "name":  ["Budget", "Actual", "Forecast", "Worst Case"],
            "value": [f.income, f.expenditure, metrics.forecast_outturn, metrics.worst_case_outturn],
        }),
        "placements": pd.DataFrame({
            "name":  ["Budget", "Actual", "Modelled"],
            "value": [p.budgeted, p.actual, int(np.floor(metrics.modelled_placement_base + 0.5))],
        }),
        "workforce_mix": pd.DataFrame({
            "name":  ["Permanent", "Agency"],
            "value": [metrics.permanent_rate, metrics.effective_agency_rate],
        }),
        "efficiency": pd.DataFrame({
            "name":         [snapshot.period_labels[0]],
            "cashable":     [d.ongoing * cash],
            "non_cashable": [d.ongoing * (1 - cash)],
            "one_off":      [d.one_off],
        }),
        "uasc": pd.DataFrame({
            "name":  ["Gross", "Grant", "Net", "Residual"],
            "value": [snapshot.uasc.pressure, -metrics.uplifted_grant,
                      metrics.net_uasc_pressure, metrics.residual_uasc],
        }),
    }


# ---------------------------------------------------------------------------
# Sensitivity helper
# ---------------------------------------------------------------------------

def run_sensitivity(base: Snapshot, param: str, values: list) -> pd.DataFrame:
    """
    Run the model once per value in `values` for the dotted snapshot field
    `param` (e.g. "levers.pressure_rate"). Returns one row per value.
    """
    rows = []
    for v in values:
        res = run_model(with_value(base, param, v))
        rows.append({
            "value":                v,
            "demand_growth":        res.demand_growth,
            "months_to_exhaustion": res.metrics.months_to_exhaustion,
            "mtfp_cumulative":      res.cumulative_deficit,
            "scenario_savings":     res.recovery.total_savings,
            "scenario_deficit":     res.recovery.deficit,
            "scenario_cumulative":  res.recovery.cumulative_deficit,
            "reserves_end":         float(res.reserves_timeline["reserves"].iloc[-1]),
            "section_114_risk":     res.early_warning.triggered,
        })
    return pd.DataFrame(rows)
