# app.py
import json
import logging
from copy import deepcopy
from typing import Dict, Any
from pathlib import Path

import pandas as pd
import streamlit as st
from jsonschema import ValidationError
import altair as alt

from core.assumptions import (
    INVESTMENT_ITEMS,
    apply_payroll_cost,
    assumptions_from_json,
    assumptions_to_json,
    calculate_payroll,
    new_assumptions,
    sync_initial_investment,
    total_fixed_assets,
    validate_assumptions,
)
from core.config import load_config, validate_config
from core.export import build_viability_report
from core.financials import analyze_viability, calculate_depreciation, calculate_first_year_revenue
from core.logging import get_logger, setup_logging

st.set_page_config(page_title="Viabilidade — Modelagem Financeira", layout="wide")

try:
    config = load_config()
except ValueError as e:
    st.error("Configuração inválida. Corrija as variáveis VIABILITY_* e recarregue a página.")
    st.caption(str(e))
    st.stop()

setup_logging(config.log_path, console_level=logging.DEBUG if config.debug else logging.INFO)
logger = get_logger("app")
for issue in validate_config(config):
    logger.warning("Config issue: %s", issue)

st.markdown(
    """
<style>
    .block-container { padding-top: 1rem !important; }
    [data-testid="stSidebar"] h2 { margin-top: -1.7rem; font-size: 24px !important; color: #0b0b45; }
    [data-testid="stDownloadButton"] { margin-bottom: 10px; }
    [data-testid="stMetricValue"] { color: #0b0b45; }
</style>
""",
    unsafe_allow_html=True,
)

for k, v in [
    ("assumptions", new_assumptions("default")),
    ("calc_result", None),
    (
        "roles",
        pd.DataFrame(
            {
                "title": pd.Series(dtype="str"),
                "salary": pd.Series(dtype="float"),
                "quantity": pd.Series(dtype="int"),
            }
        ),
    ),
    ("main_tab_selector", "cashflow"),
]:
    if k not in st.session_state:
        st.session_state[k] = v


@st.cache_data
def load_translation(lang: str = "pt") -> Dict[str, Any]:
    fname = f"{lang}.json"
    candidates = [Path(__file__).resolve().parent / "core" / "locales" / fname]
    candidates.append(Path.cwd() / "core" / "locales" / fname)
    for p in candidates:
        if p.exists():
            with p.open("r", encoding="utf-8") as f:
                return json.load(f)
    return {}


T = load_translation(config.locale)
if not T:
    st.warning("Arquivo de tradução não encontrado. Usando os nomes padrão.")


def _(key: str, default: str = "") -> str:
    parts = key.split(".")
    cur = T
    for p in parts:
        if isinstance(cur, dict) and p in cur:
            cur = cur[p]
        else:
            return default or key
    return str(cur)


def format_brl(value: Any, decimals: int = 0) -> str:
    if value is None:
        return "—"
    v = float(value)
    fmt = f"{v:,.{decimals}f}".replace(",", "X").replace(".", ",").replace("X", ".")
    return f"R$ {fmt}"


def _on_scenario_upload():
    uploaded = st.session_state.get("scenario_upload")
    if uploaded is None:
        return
    try:
        st.session_state["assumptions"] = assumptions_from_json(uploaded.getvalue())
    except (ValidationError, ValueError) as e:
        logger.warning("Rejected scenario upload", extra={"context": {"error": str(e)}})
        st.session_state["upload_error"] = str(e)


# --- Main UI ---
st.title(_("app_title", "Viabilidade — Modelagem Financeira"))

base = st.session_state["assumptions"]
breakdown_labels = T.get("parameter_names", {})

with st.sidebar:
    st.markdown(f"## {_('inputs_header', 'Premissas do projeto')}")

    st.file_uploader(
        _("upload_label", "Importar cenário (JSON)"),
        type=["json"],
        key="scenario_upload",
        on_change=_on_scenario_upload,
    )
    upload_error = st.session_state.pop("upload_error", None)
    if upload_error:
        st.error(_("errors.invalid_scenario", "Arquivo de cenário inválido."))
        st.caption(upload_error)

    base_breakdown = base.get("investment_breakdown")
    if base_breakdown:
        st.subheader(_("breakdown_header", "Detalhamento do Investimento"))
        breakdown = {
            item: float(
                st.number_input(
                    breakdown_labels.get(f"investment_breakdown.{item}", item),
                    min_value=0.0,
                    value=float(base_breakdown.get(item, 0.0)),
                    step=1000.0,
                    format="%.2f",
                )
            )
            for item in INVESTMENT_ITEMS
        }
        initial_investment = float(base["initial_investment"])
    else:
        # Scenarios without a breakdown carry the investment as a single amount.
        breakdown = None
        initial_investment = st.number_input(
            _("initial_investment_label", "Investimento Inicial (R$)"),
            min_value=0.0,
            value=float(base["initial_investment"]),
            step=1000.0,
            format="%.2f",
        )

    st.subheader(_("roles_header", "Organograma"), help=_("payroll_help", ""))
    roles = st.data_editor(
        st.session_state["roles"],
        num_rows="dynamic",
        key="roles_editor",
        column_config={
            "title": st.column_config.TextColumn(_("roles.title", "Cargo")),
            "salary": st.column_config.NumberColumn(
                _("roles.salary", "Salário (R$)"), min_value=0.0, step=100.0, format="%.2f"
            ),
            "quantity": st.column_config.NumberColumn(
                _("roles.quantity", "Quantidade"), min_value=0, step=1
            ),
        },
        use_container_width=True,
    )
    payroll_cost = calculate_payroll(
        roles.fillna({"salary": 0.0, "quantity": 0}).to_dict("records")
    )
    st.caption(f"{_('payroll_label', 'Custo de Pessoal (R$)')}: {format_brl(payroll_cost)}")

    st.subheader(_("operational_header", "Premissas Operacionais"))
    monthly_revenue = st.number_input(
        _("monthly_revenue_label", "Receita Mensal Inicial (R$)"),
        min_value=0.0,
        value=float(base["monthly_revenue"]),
        step=1000.0,
        format="%.2f",
    )
    monthly_cost = st.number_input(
        _("monthly_cost_label", "Custo Operacional Mensal (R$)"),
        min_value=0.0,
        value=float(base["monthly_cost"]),
        step=1000.0,
        format="%.2f",
    )
    annual_growth_rate = st.number_input(
        _("annual_growth_label", "Crescimento Anual (%)"),
        value=float(base["annual_growth_rate"]),
        step=0.5,
        format="%.1f",
    )
    tax_rate = st.number_input(
        _("tax_rate_label", "Alíquota Impostos (%)"),
        min_value=0.0,
        max_value=100.0,
        value=float(base["tax_rate"]),
        step=0.5,
        format="%.1f",
    )
    discount_rate = st.number_input(
        _("discount_rate_label", "TMA (Desconto %)"),
        value=float(base["discount_rate"]),
        step=0.5,
        format="%.1f",
    )

assumptions = {
    "initial_investment": float(initial_investment),
    "monthly_revenue": float(monthly_revenue),
    "monthly_cost": float(monthly_cost),
    "annual_growth_rate": float(annual_growth_rate),
    "tax_rate": float(tax_rate),
    "discount_rate": float(discount_rate),
}
if breakdown is not None:
    assumptions["investment_breakdown"] = breakdown
assumptions = sync_initial_investment(assumptions)
assumptions = apply_payroll_cost(assumptions, float(payroll_cost))

with st.sidebar:
    st.markdown(
        f"**{_('investment_total_label', 'Total Investimento')}:** "
        f"{format_brl(assumptions['initial_investment'])}"
    )
    if breakdown is not None:
        depreciation = calculate_depreciation(total_fixed_assets(breakdown), config.projection_years)
        st.markdown(
            f"**{_('depreciation_label', 'Depreciação Anual')}:** {format_brl(depreciation)}"
        )


@st.cache_data(ttl=300)
def run_calculations(inp: Dict[str, Any], years: int) -> Dict[str, Any]:
    local = deepcopy(inp)
    validate_assumptions(local)
    return analyze_viability(local, years)


try:
    with st.spinner(_("ui.calculating_spinner", "Calculando projeções...")):
        st.session_state.calc_result = run_calculations(assumptions, config.projection_years)
except (ValidationError, ValueError) as e:
    logger.warning("Invalid assumptions", extra={"context": {"error": str(e)}})
    st.error(_("errors.invalid_input", "Erro: premissas inválidas."))
    st.json({"status": "error", "code": "INVALID_INPUT", "message": str(e)})
    st.session_state.calc_result = None
except Exception as e:
    logger.exception("Viability analysis failed")
    st.error(_("errors.internal_error", "Ocorreu um erro interno."))
    with st.expander(_("ui.traceback_expander", "Detalhes técnicos do erro")):
        st.exception(e)
    st.session_state.calc_result = None

if st.session_state.calc_result:
    result = st.session_state.calc_result
    cf_df = result["cash_flow"]
    headers = T.get("table_headers", {})
    index_name = _("table_index_month", "Mês")

    for w_code in result.get("warnings", []):
        st.warning(_(f"warnings.{w_code.lower()}", w_code))

    st.header(_("indicators_header", "Indicadores"))
    c1, c2, c3, c4 = st.columns(4)
    c1.metric(_("npv_label", "VPL"), format_brl(result["npv"]))
    horizon_months = config.projection_years * 12
    if result["payback_month"] is not None:
        payback_text = _("payback_months", "{months} Meses").format(months=result["payback_month"])
    else:
        payback_text = _("payback_not_reached", "> {months} Meses").format(months=horizon_months)
    c2.metric(_("payback_label", "Payback"), payback_text)
    c3.metric(
        _("irr_label", "TIR (Anual)"),
        f"{result['irr']:.2f}%",
        delta=f"{result['irr'] - assumptions['discount_rate']:.2f} p.p.",
        delta_color="normal" if result["irr_above_discount"] else "inverse",
    )
    c4.metric(_("valuation_label", "Valuation"), format_brl(result["valuation"]))
    c5, c6 = st.columns(4)[:2]
    c5.metric(
        _("first_year_revenue_label", "Receita do 1º Ano"),
        format_brl(calculate_first_year_revenue(assumptions)),
    )
    c6.metric(_("payroll_label", "Custo de Pessoal (R$)"), format_brl(payroll_cost))

    tab_options = {
        "cashflow": _("cashflow_tab", "Fluxo de Caixa"),
        "charts": _("charts_tab", "Gráficos"),
        "export": _("export_tab", "Exportar"),
        "how_calc": _("how_calc_tab", "Como é calculado"),
    }

    selected_tab_key = st.radio(
        "tabs",
        options=list(tab_options.keys()),
        format_func=lambda key: tab_options[key],
        label_visibility="collapsed",
        horizontal=True,
        key="main_tab_selector",
    )

    if selected_tab_key == "cashflow":
        st.dataframe(
            cf_df.rename(columns=headers).rename_axis(index_name),
            use_container_width=True,
        )

    elif selected_tab_key == "charts":
        st.subheader(_("charts.cashflow", "Fluxo de Caixa Projetado"))
        value_title = _("charts.value_axis", "Valor (R$)")
        series_title = _("charts.series", "Série")
        sampled = cf_df.iloc[::6][["net_income", "revenue"]]
        chart_data = (
            sampled.reset_index()
            .rename(columns={"month": index_name, **headers})
            .melt(id_vars=index_name, var_name=series_title, value_name=value_title)
        )
        chart = (
            alt.Chart(chart_data)
            .mark_area(opacity=0.4, line=True)
            .encode(
                x=alt.X(f"{index_name}:Q", title=index_name),
                y=alt.Y(f"{value_title}:Q", title=value_title, stack=None, axis=alt.Axis(format="~s")),
                color=alt.Color(
                    f"{series_title}:N",
                    scale=alt.Scale(range=["#0b0b45", "#ff9933"]),
                    legend=alt.Legend(orient="right", offset=15),
                ),
                tooltip=[index_name, series_title, alt.Tooltip(value_title, format=",.0f")],
            )
            .interactive()
            .properties(height=420)
        )
        st.altair_chart(chart, use_container_width=True, theme="streamlit")

    elif selected_tab_key == "export":
        labels = {**T.get("parameter_names", {}), **headers}
        st.download_button(
            _("ui.download_full_report", "Baixar relatório completo (Excel)"),
            build_viability_report(assumptions, result, labels),
            _("ui.full_report_filename", "viabilidade.xlsx"),
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )
        st.download_button(
            _("ui.download_scenario_json", "Baixar cenário (JSON)"),
            assumptions_to_json(assumptions),
            _("ui.scenario_filename", "cenario.json"),
            "application/json",
        )

    elif selected_tab_key == "how_calc":
        st.subheader(_("how_calc_tab", "Como é calculado"))
        st.latex(r"\mathrm{VPL} = -I_0 + \sum_{t=1}^{n} \frac{FC_t}{(1 + i_m)^t}, \quad i_m = (1 + TMA)^{1/12} - 1")
        st.latex(r"VT = \frac{12 \cdot FC_n \cdot (1 + g)}{TMA - g}")
        st.write(_("formulas_description", ""))

