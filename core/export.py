# export.py
"""Excel report for a viability analysis."""

from io import BytesIO
from typing import Dict, Mapping, Optional

import pandas as pd
from openpyxl.utils import get_column_letter
from openpyxl.styles import Font, Border, Side, Alignment

from core.logging import get_logger

logger = get_logger(__name__)

ASSUMPTIONS_SHEET = "Premissas"
CASHFLOW_SHEET = "Fluxo de Caixa"
SUMMARY_SHEET = "Indicadores"


def create_excel_workbook(
    sheets: Dict[str, pd.DataFrame], index_names: Dict[str, str]
) -> bytes:
    output = BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        for sheet_name, df in sheets.items():
            idx_name = index_names.get(sheet_name, "Index")
            df_to_write = df.copy()
            for col in df_to_write.columns:
                if pd.api.types.is_numeric_dtype(df_to_write[col]):
                    df_to_write[col] = df_to_write[col].round(2)

            df_to_write.rename_axis(idx_name).to_excel(
                writer, sheet_name=sheet_name, index=True
            )
            worksheet = writer.sheets[sheet_name]

            header_font = Font(bold=True)
            thin = Side(border_style="thin", color="000000")
            border = Border(left=thin, right=thin, top=thin, bottom=thin)
            for col_idx, _ in enumerate(df_to_write.reset_index().columns.values, 1):
                cell = worksheet.cell(row=1, column=col_idx)
                cell.font = header_font
                cell.alignment = Alignment(horizontal="center")
                cell.border = border
            for i, column_cells in enumerate(worksheet.columns, 1):
                lengths = [
                    len(str(cell.value))
                    for cell in column_cells
                    if cell.value is not None
                ]
                max_length = max(lengths) if lengths else 0
                worksheet.column_dimensions[get_column_letter(i)].width = (max_length + 2) * 1.2
            for row in worksheet.iter_rows(
                min_row=2,
                max_row=worksheet.max_row,
                min_col=1,
                max_col=worksheet.max_column,
            ):
                for cell in row:
                    cell.border = border
    return output.getvalue()


def _flatten_assumptions(assumptions: Mapping) -> Dict[str, float]:
    flat: Dict[str, float] = {}
    for key, value in assumptions.items():
        if isinstance(value, Mapping):
            for item, amount in value.items():
                flat[f"{key}.{item}"] = amount
        else:
            flat[key] = value
    return flat


def build_viability_report(
    assumptions: Mapping,
    analysis: Mapping,
    labels: Optional[Mapping[str, str]] = None,
) -> bytes:
    """Builds the downloadable workbook for one analysed scenario.

    Args:
        assumptions: The assumptions the analysis was run with.
        analysis: Result of ``analyze_viability``.
        labels: Optional display names for parameters, cash-flow columns
            and indicators. Unknown keys keep their raw names.

    Returns:
        The .xlsx file contents.
    """
    labels = labels or {}
    params = {labels.get(k, k): v for k, v in _flatten_assumptions(assumptions).items()}
    params_df = pd.DataFrame.from_dict(params, orient="index", columns=["Valor"])

    summary = {
        "npv": analysis["npv"],
        "irr": analysis["irr"],
        "valuation": analysis["valuation"],
        "payback_month": analysis["payback_month"],
    }
    summary_df = pd.DataFrame.from_dict(
        {labels.get(k, k): v for k, v in summary.items()}, orient="index", columns=["Valor"]
    )

    cash_flow = analysis["cash_flow"].rename(columns=labels)
    workbook = create_excel_workbook(
        sheets={
            ASSUMPTIONS_SHEET: params_df,
            CASHFLOW_SHEET: cash_flow,
            SUMMARY_SHEET: summary_df,
        },
        index_names={
            ASSUMPTIONS_SHEET: "Parâmetro",
            CASHFLOW_SHEET: labels.get("month", "Mês"),
            SUMMARY_SHEET: "Indicador",
        },
    )
    logger.debug(
        "Viability report built",
        extra={"context": {"months": len(cash_flow), "bytes": len(workbook)}},
    )
    return workbook
