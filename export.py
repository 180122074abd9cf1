"""
export.py: Excel export for the Trust finance scenario calculator
"""
import io

import pandas as pd
from openpyxl.styles import Font, PatternFill, Alignment
from openpyxl.utils import get_column_letter

from assumptions import flatten_snapshot
from engine import EngineResult, breakdowns
from narrative import board_messages, insights


_HEADER_FILL = PatternFill("solid", fgColor="1F4E79")
_HEADER_FONT = Font(color="FFFFFF", bold=True)
_ALT_FILL    = PatternFill("solid", fgColor="D9E1F2")
_RAG_FILLS   = {
    "Red":   PatternFill("solid", fgColor="E05252"),
    "Amber": PatternFill("solid", fgColor="F0A843"),
    "Green": PatternFill("solid", fgColor="52D68A"),
}

SHEETS = ["Assumptions", "Metrics", "RAG", "Projection", "Risk Bands",
          "Reserves", "Scenarios", "Narrative"]


def _fmt_sheet(ws, col_widths=None):
    """Apply header formatting and auto-width to a worksheet."""
    for cell in ws[1]:
        cell.font      = _HEADER_FONT
        cell.fill      = _HEADER_FILL
        cell.alignment = Alignment(horizontal="center")

    if col_widths:
        for i, w in enumerate(col_widths, 1):
            ws.column_dimensions[get_column_letter(i)].width = w
    else:
        for col in ws.columns:
            max_len = max(
                (len(str(cell.value)) if cell.value is not None else 0)
                for cell in col
            )
            ws.column_dimensions[col[0].column_letter].width = min(max_len + 4, 40)

    # RAG labels get their band colour; other rows alternate
    for i, row in enumerate(ws.iter_rows(min_row=2), start=2):
        for cell in row:
            fill = _RAG_FILLS.get(cell.value) if isinstance(cell.value, str) else None
            if fill is not None:
                cell.fill = fill
            elif i % 2 == 0 and cell.fill.fill_type is None:
                cell.fill = _ALT_FILL


def build_excel(result: EngineResult, sensitivity_tables: dict | None = None) -> bytes:
    """
    Build an Excel workbook for one engine result and return it as bytes.

    Parameters
    ----------
    result             : output of engine.run_model
    sensitivity_tables : dict {sheet_name: pd.DataFrame}, e.g. from run_sensitivity
    """
    output = io.BytesIO()

    with pd.ExcelWriter(output, engine="openpyxl") as writer:

        # ── Assumptions (audit trail) ───────────────────────────────
        a_rows = [{"Parameter": k, "Value": v}
                  for k, v in flatten_snapshot(result.snapshot).items()]
        pd.DataFrame(a_rows).to_excel(writer, sheet_name="Assumptions", index=False)
        _fmt_sheet(writer.sheets["Assumptions"])

        # ── Metrics ─────────────────────────────────────────────────
        m_rows = [{"Metric": k, "Value": v} for k, v in result.headline().items()]
        pd.DataFrame(m_rows).to_excel(writer, sheet_name="Metrics", index=False)
        _fmt_sheet(writer.sheets["Metrics"])

        # ── RAG ─────────────────────────────────────────────────────
        rag_df = pd.DataFrame({"Family": list(result.rag), "Status": list(result.rag.values())})
        rag_df.to_excel(writer, sheet_name="RAG", index=False)
        _fmt_sheet(writer.sheets["RAG"], col_widths=[20, 12])

        # ── Projection series ───────────────────────────────────────
        for name, df in (("Projection", result.projection),
                         ("Risk Bands", result.risk_bands),
                         ("Reserves",   result.reserves_timeline),
                         ("Scenarios",  result.scenarios)):
            df.to_excel(writer, sheet_name=name, index=False)
            _fmt_sheet(writer.sheets[name])

        # ── Narrative ───────────────────────────────────────────────
        n_rows = [{"Section": "Board", "Text": msg} for msg in board_messages(result)]
        n_rows += [{"Section": k, "Text": v} for k, v in insights(result).items()]
        pd.DataFrame(n_rows).to_excel(writer, sheet_name="Narrative", index=False)
        _fmt_sheet(writer.sheets["Narrative"], col_widths=[16, 120])

        # ── Breakdowns ──────────────────────────────────────────────
        for key, df in breakdowns(result.snapshot, result.metrics).items():
            safe = f"Chart {key}"[:31]
            df.to_excel(writer, sheet_name=safe, index=False)
            _fmt_sheet(writer.sheets[safe])

        # ── Sensitivity tables ──────────────────────────────────────
        if sensitivity_tables:
            for sheet_name, sdf in sensitivity_tables.items():
                safe = sheet_name[:31]
                sdf.to_excel(writer, sheet_name=safe, index=False)
                _fmt_sheet(writer.sheets[safe])

    output.seek(0)
    return output.read()
