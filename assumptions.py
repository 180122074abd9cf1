"""
assumptions.py: Input snapshot for the Trust finance scenario engine

Every entity here is a frozen value. Hosts build a new Snapshot on each edit
and hand it to engine.run_model(); nothing in the engine mutates it.
"""
import math
from dataclasses import dataclass, field, fields, is_dataclass, replace
from numbers import Real


ASCENDING  = "ascending"    # higher is worse
DESCENDING = "descending"   # lower is worse
POLARITIES = (ASCENDING, DESCENDING)


# ---------------------------------------------------------------------------
# Type checks
# ---------------------------------------------------------------------------

def _check_types(obj) -> None:
    """Reject values whose type does not match the declared field type."""
    for f in fields(obj):
        v = getattr(obj, f.name)
        name = f"{type(obj).__name__}.{f.name}"
        if f.type in (float, int):
            if isinstance(v, bool) or not isinstance(v, Real):
                raise TypeError(f"{name} must be numeric, got {type(v).__name__}")
            if not math.isfinite(v):
                raise ValueError(f"{name} must be finite, got {v!r}")
        elif f.type is bool:
            if not isinstance(v, bool):
                raise TypeError(f"{name} must be a bool, got {type(v).__name__}")
        elif is_dataclass(f.type):
            if not isinstance(v, f.type):
                raise TypeError(f"{name} must be a {f.type.__name__}, got {type(v).__name__}")


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FinancePosition:
    income: float
    expenditure: float
    in_year_deficit: float
    cumulative_deficit: float
    reserve_support: float
    opening_reserves: float
    earmarked_reserves: float
    minimum_reserves: float

    def __post_init__(self):
        _check_types(self)


@dataclass(frozen=True)
class PlacementPosition:
    budgeted: int
    actual: int
    cost_pressure: float
    avg_weekly_cost: float
    benchmark_weekly_cost: float

    def __post_init__(self):
        _check_types(self)


@dataclass(frozen=True)
class UascPosition:
    pressure: float
    grant: float
    arrivals: float   # per month

    def __post_init__(self):
        _check_types(self)


@dataclass(frozen=True)
class WorkforcePosition:
    vacancy_rate: float   # %
    agency_rate: float    # %
    asye: int
    wte_required: float
    wte_funded: float
    wte_in_post: float
    time_to_fill: float   # days

    def __post_init__(self):
        _check_types(self)


@dataclass(frozen=True)
class DeliveryBreakdown:
    ongoing: float
    one_off: float
    undelivered: float

    def __post_init__(self):
        _check_types(self)


@dataclass(frozen=True)
class EfficiencyProgramme:
    delivery: DeliveryBreakdown
    carried_forward: float
    target_next: float
    cashable_share: float    # %
    recurring_share: float   # %

    def __post_init__(self):
        _check_types(self)


@dataclass(frozen=True)
class DemandDrivers:
    lac_growth: float
    uasc_growth: float
    edge_of_care_improvement: float

    def __post_init__(self):
        _check_types(self)


@dataclass(frozen=True)
class ScenarioLevers:
    """
    What-if levers. Defaults are the identity / no-op setting, so a snapshot
    built with ScenarioLevers() reproduces the unmitigated position.
    """
    # Demand baseline
    pressure_rate: float = 0.0          # base demand pressure %
    inflation_index: float = 0.0
    demand_shock: bool = False
    demand_shock_rate: float = 0.0
    # Placement market
    localities_impact: bool = False
    localities_reduction: float = 0.0
    step_down: bool = False
    step_down_rate: float = 0.0
    market_inflation: bool = False
    market_inflation_rate: float = 0.0
    unit_cost_enabled: bool = True
    unit_cost_improvement: float = 0.0
    # Workforce
    agency_conversion_gain: float = 0.0
    # Recovery actions
    reduce_agency: float = 0.0
    reduce_placements: float = 0.0
    efficiency_rate: float = 77.0       # at the delivery reference, so no uplift
    commissioning_savings: float = 0.0
    # Grant
    uasc_grant_uplift: float = 0.0

    def __post_init__(self):
        _check_types(self)


@dataclass(frozen=True)
class RagThresholds:
    red: float
    amber: float
    polarity: str = ASCENDING

    def __post_init__(self):
        _check_types(self)
        if self.polarity not in POLARITIES:
            raise ValueError(f"Unknown polarity {self.polarity!r}; expected one of {POLARITIES}")


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

def mtfp_labels(first_year: int = 2024, periods: int = 4) -> tuple:
    """Financial-year labels, e.g. ('24/25', '25/26', ...)."""
    if periods < 1:
        raise ValueError("periods must be at least 1")
    return tuple(f"{(first_year + i) % 100:02d}/{(first_year + i + 1) % 100:02d}"
                 for i in range(periods))


def default_thresholds() -> dict:
    return {
        "reserves":       RagThresholds(red=6,  amber=12, polarity=DESCENDING),
        "deficit":        RagThresholds(red=8,  amber=4),
        "cost_drivers":   RagThresholds(red=8,  amber=4),
        "workforce":      RagThresholds(red=25, amber=18),
        # Undelivered % is classified low-is-worse on the dashboard; kept as is.
        "transformation": RagThresholds(red=15, amber=8,  polarity=DESCENDING),
        "placements":     RagThresholds(red=6,  amber=3),
        "agency_premium": RagThresholds(red=6,  amber=3),
        "uasc":           RagThresholds(red=2,  amber=1),
        "recovery":       RagThresholds(red=7,  amber=4),
    }


@dataclass(frozen=True)
class Snapshot:
    finance: FinancePosition
    placements: PlacementPosition
    uasc: UascPosition
    workforce: WorkforcePosition
    efficiencies: EfficiencyProgramme
    demand: DemandDrivers
    levers: ScenarioLevers = field(default_factory=ScenarioLevers)
    thresholds: dict = field(default_factory=default_thresholds)
    period_labels: tuple = field(default_factory=mtfp_labels)

    def __post_init__(self):
        _check_types(self)
        if not isinstance(self.thresholds, dict):
            raise TypeError(f"thresholds must be a dict, got {type(self.thresholds).__name__}")
        if not isinstance(self.period_labels, tuple):
            raise TypeError(f"period_labels must be a tuple, got {type(self.period_labels).__name__}")
        if not self.period_labels:
            raise ValueError("period_labels must not be empty")
        for family, t in self.thresholds.items():
            if not isinstance(t, RagThresholds):
                raise TypeError(f"thresholds[{family!r}] must be RagThresholds, got {type(t).__name__}")

    @property
    def periods(self) -> int:
        return len(self.period_labels)


def default_levers() -> ScenarioLevers:
    return ScenarioLevers(
        pressure_rate=5.0,
        inflation_index=3.4,
        demand_shock=False,
        demand_shock_rate=1.5,
        localities_impact=True,
        localities_reduction=5.0,
        step_down=False,
        step_down_rate=8.0,
        market_inflation=True,
        market_inflation_rate=6.0,
        unit_cost_enabled=True,
        unit_cost_improvement=4.0,
        agency_conversion_gain=6.0,
        reduce_agency=10.0,
        reduce_placements=8.0,
        efficiency_rate=85.0,
        commissioning_savings=1.2,
        uasc_grant_uplift=10.0,
    )


def default_snapshot() -> Snapshot:
    """Baseline Trust position (£m, counts, %)."""
    return Snapshot(
        finance=FinancePosition(
            income=90.4,
            expenditure=99.2,
            in_year_deficit=8.8,
            cumulative_deficit=19.7,
            reserve_support=3.36,
            opening_reserves=6.0,
            earmarked_reserves=1.5,
            minimum_reserves=2.0,
        ),
        placements=PlacementPosition(
            budgeted=62,
            actual=79,
            cost_pressure=6.3,
            avg_weekly_cost=4.2,
            benchmark_weekly_cost=3.6,
        ),
        uasc=UascPosition(pressure=2.7, grant=1.4, arrivals=28),
        workforce=WorkforcePosition(
            vacancy_rate=23.94,
            agency_rate=20.7,
            asye=32,
            wte_required=520,
            wte_funded=495,
            wte_in_post=420,
            time_to_fill=120,
        ),
        efficiencies=EfficiencyProgramme(
            delivery=DeliveryBreakdown(ongoing=77, one_off=8, undelivered=15),
            carried_forward=1.742,
            target_next=2.34,
            cashable_share=70,
            recurring_share=80,
        ),
        demand=DemandDrivers(lac_growth=4.0, uasc_growth=3.0, edge_of_care_improvement=2.0),
        levers=default_levers(),
    )


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------

PRESETS = {
    "Low demand pressure":     {"pressure_rate": 3.0},
    "Central demand pressure": {"pressure_rate": 5.0},
    "High demand pressure":    {"pressure_rate": 8.0},
    # Simpler dashboard: extended levers parked at their no-op values
    "Core dashboard": {
        "demand_shock": False,
        "unit_cost_improvement": 0.0,
        "commissioning_savings": 0.0,
        "uasc_grant_uplift": 0.0,
    },
    "Full recovery": {
        "localities_impact": True,
        "step_down": True,
        "reduce_agency": 25.0,
        "reduce_placements": 15.0,
        "efficiency_rate": 95.0,
        "commissioning_savings": 2.0,
    },
}


def apply_preset(snapshot: Snapshot, name: str) -> Snapshot:
    if name not in PRESETS:
        raise KeyError(f"Unknown preset {name!r}")
    return replace(snapshot, levers=replace(snapshot.levers, **PRESETS[name]))


# ---------------------------------------------------------------------------
# Field access
# ---------------------------------------------------------------------------

def with_value(snapshot: Snapshot, path: str, value) -> Snapshot:
    """
    Return a copy of `snapshot` with one dotted field replaced, e.g.
    with_value(s, "levers.reduce_agency", 20) or
    with_value(s, "efficiencies.delivery.ongoing", 80).
    """
    head, _, rest = path.partition(".")
    names = {f.name for f in fields(snapshot)}
    if head not in names:
        raise ValueError(f"Unknown field {head!r} on {type(snapshot).__name__}")
    if not rest:
        return replace(snapshot, **{head: value})
    child = getattr(snapshot, head)
    if not is_dataclass(child):
        raise ValueError(f"{head!r} has no sub-fields")
    return replace(snapshot, **{head: with_value(child, rest, value)})


def flatten_snapshot(snapshot: Snapshot) -> dict:
    """Ordered {"section.field": value} view of the full assumption set."""
    out = {}

    def _walk(obj, prefix):
        for f in fields(obj):
            v = getattr(obj, f.name)
            key = f"{prefix}{f.name}"
            if is_dataclass(v):
                _walk(v, key + ".")
            elif isinstance(v, dict):
                for family, t in v.items():
                    out[f"{key}.{family}"] = f"{t.polarity} red={t.red} amber={t.amber}"
            elif isinstance(v, tuple):
                out[key] = ", ".join(str(x) for x in v)
            else:
                out[key] = v

    _walk(snapshot, "")
    return out
