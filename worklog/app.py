"""
Forestry Work-Log Dashboard
===========================
Streamlit app over the work-log KPI engine.

Structure:
1. Data source (work-log CSV + optional cost ledger CSV)
2. Month / task filters and rate settings
3. KPI cards
4. Daily series + site productivity charts
5. Site summary table
6. Monthly P&L by site
7. Exports
"""

import logging
from datetime import date

import altair as alt
import pandas as pd
import streamlit as st

from analysis import (
    ALL_TASKS,
    available_months, build_monthly_pnl, compute_kpi, filter_records,
    pnl_frame, site_summary_frame, summarize_pnl,
)
from csv_codec import NotUtf8, SchemaMismatch, text_from_bytes
from etl import DEFAULT_RATES, TASK_OPTIONS, RateConfig, read_ledger_csv, read_worklog_csv
from exports import (
    billing_detail_csv, export_filename, site_daily_hours_csv, timesheet_csv, worklog_csv,
)

logging.basicConfig(level=logging.INFO)

# =============================================================================
# PAGE CONFIGURATION
# =============================================================================

st.set_page_config(
    page_title="Forestry Work-Log Dashboard",
    page_icon="🌲",
    layout="wide",
    initial_sidebar_state="expanded"
)

# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def fmt_currency(val):
    if val is None or pd.isna(val):
        return "-"
    return f"¥{val:,.0f}"

def fmt_ratio(val):
    if val is None or pd.isna(val):
        return "-"
    return f"{val * 100:.1f}%"

def fmt_hours(val):
    if val is None or pd.isna(val):
        return "0"
    return f"{val:,.1f}"

def series_frame(points):
    return pd.DataFrame([{"label": p.label, "value": p.value} for p in points], columns=["label", "value"])

def bar_chart(points, x_title, y_title):
    data = series_frame(points)
    return alt.Chart(data).mark_bar(color="#0ea5e9").encode(
        x=alt.X("label:N", title=x_title, sort=None),
        y=alt.Y("value:Q", title=y_title),
        tooltip=["label", alt.Tooltip("value:Q", format=",.2f")]
    ).properties(height=260)


# =============================================================================
# DATA LOADING
# =============================================================================

def load_uploads(worklog_file, ledger_file):
    records = read_worklog_csv(text_from_bytes(worklog_file.getvalue()))
    ledger = []
    if ledger_file is not None:
        ledger = read_ledger_csv(text_from_bytes(ledger_file.getvalue()))
    return records, ledger

def rate_inputs():
    """Sidebar rate editor; values live in session state between reruns."""
    base = st.session_state.get("rates", DEFAULT_RATES)
    hourly = st.sidebar.number_input("Hourly wage (¥/h)", min_value=0.0, value=float(base.hourly_wage), step=100.0)
    machine = st.sidebar.number_input("Machine rate (¥/h)", min_value=0.0, value=float(base.machine_rate), step=100.0)

    units = sorted(set(TASK_OPTIONS.values()) | set(base.unit_prices))
    prices = {}
    with st.sidebar.expander("Unit prices", expanded=False):
        for unit in units:
            prices[unit] = st.number_input(
                f"¥ per {unit}", min_value=0.0, value=float(base.price_for(unit)), step=100.0, key=f"price_{unit}"
            )

    rates = RateConfig.from_mapping({"hourly_wage": hourly, "machine_rate": machine, "unit_prices": prices})
    st.session_state["rates"] = rates
    return rates


# =============================================================================
# MAIN APPLICATION
# =============================================================================

def main():
    # -------------------------------------------------------------------------
    # HEADER
    # -------------------------------------------------------------------------
    st.title("🌲 Forestry Work-Log Dashboard")
    st.markdown("*Daily reports → productivity KPIs → site P&L*")

    # -------------------------------------------------------------------------
    # SIDEBAR: DATA & FILTERS
    # -------------------------------------------------------------------------
    st.sidebar.header("📁 Data Source")
    worklog_file = st.sidebar.file_uploader("Work-log CSV", type=["csv"])
    ledger_file = st.sidebar.file_uploader("Cost ledger CSV (optional)", type=["csv"])

    if worklog_file is None:
        st.warning("⚠️ Upload a work-log CSV exported from the entry form")
        st.stop()

    try:
        records, ledger = load_uploads(worklog_file, ledger_file)
    except SchemaMismatch as e:
        st.error(f"Header does not match the expected columns. Use the app's own CSV export. ({e})")
        st.stop()
    except NotUtf8:
        st.error("File is not UTF-8 text. Re-save it as CSV UTF-8 (e.g. Excel's \"CSV UTF-8\" format) and upload again.")
        st.stop()
    st.sidebar.success(f"✅ {len(records):,} records loaded")

    st.sidebar.header("🎛️ Filters")
    months = available_months(records) or [date.today().strftime("%Y-%m")]
    month = st.sidebar.selectbox("Month", months, index=len(months) - 1)
    task_options = [ALL_TASKS] + list(TASK_OPTIONS)
    task = st.sidebar.selectbox("Task", task_options, format_func=lambda t: "All tasks" if t == ALL_TASKS else t)

    st.sidebar.header("💴 Rates")
    rates = rate_inputs()

    filtered, rep = filter_records(records, month=month, task=task)
    kpi = compute_kpi(filtered)

    # =========================================================================
    # SECTION 1: KPI CARDS
    # =========================================================================
    st.markdown(f"### 📅 Period: **{month}** — {rep.final_records:,} records")

    c1, c2, c3 = st.columns(3)
    c1.metric("Total output", kpi.total_output_label)
    c2.metric("Worker hours", fmt_hours(kpi.worker_hours))
    c3.metric("Machine hours", fmt_hours(kpi.machine_hours))

    c1, c2, c3 = st.columns(3)
    c1.metric("Productivity (output / worker hour)", kpi.productivity_label)
    c2.metric("Machine utilization (machine h / worker h)",
              f"{kpi.machine_utilization:.2f}" if kpi.machine_utilization is not None else "-")
    c3.metric("KY briefing rate", f"{kpi.ky_rate * 100:.0f}%", delta=f"{kpi.ky_count} / {kpi.count}", delta_color="off")

    c1, c2, c3 = st.columns(3)
    c1.metric("Incidents (minor)", str(kpi.incident_minor_count))
    c2.metric("Incidents (severe)", str(kpi.incident_severe_count))
    c3.metric("Workers / Teams / Sites", f"{kpi.worker_count} / {kpi.team_count} / {kpi.site_count}")

    st.markdown("---")

    # =========================================================================
    # SECTION 2: CHARTS
    # =========================================================================
    col1, col2 = st.columns(2)
    with col1:
        if kpi.single_unit:
            st.subheader(f"Daily output ({kpi.single_unit})")
            y_title = kpi.single_unit
        else:
            st.subheader("Daily worker hours")
            y_title = "Worker hours"
        if kpi.daily_series:
            st.altair_chart(bar_chart(kpi.daily_series, "Date", y_title), use_container_width=True)
        else:
            st.info("No data")
    with col2:
        st.subheader("Productivity by site")
        if kpi.site_summaries:
            st.altair_chart(bar_chart(kpi.site_productivity_series, "Site", "Output / worker hour"),
                            use_container_width=True)
        else:
            st.info("No data")

    # =========================================================================
    # SECTION 3: SITE SUMMARY
    # =========================================================================
    st.header("📋 Site Summary")
    site_disp = site_summary_frame(kpi)
    if len(site_disp) > 0:
        st.dataframe(site_disp.style.format({
            "Worker_Hours": "{:,.1f}", "Machine_Hours": "{:,.1f}", "KY_Rate": "{:.0%}"
        }), use_container_width=True)
    else:
        st.info("No records match current filters.")

    st.markdown("---")

    # =========================================================================
    # SECTION 4: P&L
    # =========================================================================
    st.header("💰 Site P&L")
    pnl_rows = build_monthly_pnl(records, rates, ledger, month, task=task)
    totals = summarize_pnl(pnl_rows)

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Revenue", fmt_currency(totals["revenue"]))
    c2.metric("Cost", fmt_currency(totals["total_cost"]))
    c3.metric("Gross", fmt_currency(totals["gross"]))
    c4.metric("Margin", fmt_ratio(totals["margin_ratio"]))

    if pnl_rows:
        st.dataframe(pnl_frame(pnl_rows).style.format({
            "Revenue": "¥{:,.0f}", "Labor_Cost": "¥{:,.0f}", "Machine_Cost": "¥{:,.0f}",
            "Other_Cost": "¥{:,.0f}", "Total_Cost": "¥{:,.0f}", "Gross": "¥{:,.0f}", "Margin_Ratio": "{:.1%}"
        }, na_rep="-"), use_container_width=True)
        if totals["sites_at_loss"] > 0:
            st.warning(f"⚠️ {totals['sites_at_loss']} site(s) are loss-making in {month}")
    else:
        st.info("No sites with logged work this month.")

    st.markdown("---")

    # =========================================================================
    # SECTION 5: EXPORTS
    # =========================================================================
    st.header("⬇️ Exports")
    c1, c2, c3, c4 = st.columns(4)
    c1.download_button("Billing detail", billing_detail_csv(filtered, rates),
                       file_name=export_filename("billing", month), mime="text/csv")
    c2.download_button("Timesheet", timesheet_csv(filtered),
                       file_name=export_filename("timesheet", month), mime="text/csv")
    c3.download_button("Site daily hours", site_daily_hours_csv(filtered),
                       file_name=export_filename("site_daily_hours", month), mime="text/csv")
    c4.download_button(f"Work log ({len(records)} rows)", worklog_csv(records),
                       file_name=export_filename("worklog"), mime="text/csv")

    st.caption(
        "**Forestry Work-Log Dashboard** | "
        "Productivity is shown only when the selection has a single output unit | "
        "Built with Streamlit"
    )


if __name__ == "__main__":
    main()
