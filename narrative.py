"""
narrative.py: Governance narrative for the Trust finance scenario calculator

Formatting only: every figure comes from an already-computed EngineResult.
"""
from engine import EngineResult


TOP_RISKS = (
    "Insufficient reserve cover leading to statutory intervention risk.",
    "Market inflation in residential placements outpacing mitigation.",
    "Agency reliance sustaining a structural cost premium.",
    "Transformation benefits slipping beyond 24/25 delivery windows.",
    "UASC supported accommodation pressures not offset by grant.",
)


def fmt_currency(v) -> str:
    return f"£{float(v):.1f}m"


def fmt_pct(v) -> str:
    return f"{float(v):.1f}%"


def _fmt_number(v) -> str:
    # 15 -> "15", 12.5 -> "12.5"
    return f"{v:g}"


def board_messages(result: EngineResult) -> list:
    f = result.snapshot.finance
    p = result.snapshot.placements
    d = result.snapshot.efficiencies.delivery
    m = result.metrics
    n = result.snapshot.periods
    return [
        f"The Trust is forecasting a {fmt_currency(f.in_year_deficit)} in-year deficit with a "
        f"year-to-date cumulative position of {fmt_currency(f.cumulative_deficit)}.",
        f"Opening reserves of {fmt_currency(f.opening_reserves)} provide "
        f"{m.months_to_exhaustion:.1f} months of cover at current burn.",
        f"Residential placement volatility remains the single largest pressure at "
        f"{fmt_currency(p.cost_pressure)}.",
        f"Transformation delivery confidence is mixed: {_fmt_number(d.undelivered)}% is undelivered.",
        f"{n}-year cumulative deficits reach {fmt_currency(result.cumulative_deficit)} under the current path.",
    ]


def insights(result: EngineResult) -> dict:
    """Named one-line insights, one per dashboard panel."""
    s  = result.snapshot
    m  = result.metrics
    lv = s.levers
    rp = result.recovery
    n  = s.periods
    return {
        "executive": (
            f"At the current burn rate reserves will be depleted in {m.months_to_exhaustion:.1f} months, "
            f"triggering a {result.rag['reserves'].lower()} statutory risk profile."
        ) if "reserves" in result.rag else (
            f"At the current burn rate reserves will be depleted in {m.months_to_exhaustion:.1f} months."
        ),
        "placement": (
            f"Residential placement volatility is contributing {fmt_currency(s.placements.cost_pressure)} "
            f"to the in-year deficit. A {_fmt_number(lv.unit_cost_improvement)}% unit-cost improvement "
            f"reduces modelled pressure by {fmt_currency(m.unit_cost_saving)}."
        ),
        "workforce": (
            f"Agency premiums are estimated at {fmt_currency(m.agency_premium)}. Conversion activity "
            f"reduces the agency rate to {fmt_pct(m.effective_agency_rate)}."
        ),
        "transformation": (
            f"Transformation delivery confidence is {_fmt_number(m.delivery_confidence)}%. Improving "
            f"delivery to {_fmt_number(lv.efficiency_rate)}% would reduce the in-year gap by "
            f"£{m.efficiency_uplift:.2f}m."
        ),
        "uasc": (
            f"UASC pressures total {fmt_currency(s.uasc.pressure)} with {fmt_currency(m.uplifted_grant)} "
            f"grant offset, leaving a net pressure of {fmt_currency(m.net_uasc_pressure)}."
        ),
        "recovery": (
            f"Scenario actions reduce the in-year deficit to {fmt_currency(rp.deficit)} and reduce the "
            f"{n}-year cumulative deficit to {fmt_currency(rp.cumulative_deficit)}. Commissioning "
            f"actions contribute {fmt_currency(rp.commissioning_saving)}."
        ),
        "mtfp": (
            f"Demand-driven growth assumption is {fmt_pct(result.demand_growth)}. Delivered "
            f"transformation would reduce the {n}-year cumulative deficit to "
            f"{fmt_currency(result.headline()['delivered_cumulative'])}."
        ),
    }


def governance_summary(result: EngineResult) -> str:
    status = "Triggered" if result.early_warning.triggered else "Stable"
    lines = ["Board summary"]
    lines += [f"  - {msg}" for msg in board_messages(result)]
    lines.append("")
    lines.append("Insights")
    lines += [f"  - {text}" for text in insights(result).values()]
    lines.append("")
    lines.append("Top risks")
    lines += [f"  {i}. {r}" for i, r in enumerate(TOP_RISKS, 1)]
    lines.append("")
    lines.append(f"Section 114 early warning: {status}")
    lines.append("RAG: " + ", ".join(f"{k}={v}" for k, v in result.rag.items()))
    return "\n".join(lines)
