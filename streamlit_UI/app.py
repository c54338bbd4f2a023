"""Streamlit front-end for the wish planner."""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Sequence
from datetime import date, timedelta
from pathlib import Path
from typing import Optional

import altair as alt
import numpy as np
import pandas as pd
import streamlit as st

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from pity_core import (
    BANNER_LABELS,
    BANNER_TYPES,
    ConfigurationError,
    InputValidationError,
    SimulationCancelled,
    SimulationConfig,
    SimulationFailed,
    SimulationHost,
    SimulationInput,
    SimulationResult,
    SimulationTarget,
    bucket_primogem_entries,
    calculate_required_income,
    calculate_single_target,
    get_available_pulls,
    income_per_day_from_wishes,
    ledger_from_dict,
    load_banner_rules,
    load_settings,
)

PRIORITY_LABELS = {
    1: "1 - must have",
    2: "2 - want",
    3: "3 - nice to have",
    4: "4 - maybe",
    5: "5 - skip if short",
}
TARGET_COLUMNS = ["character", "start_date", "banner", "priority", "max_pulls", "copies"]
POLL_SECONDS = 0.1


def default_targets() -> pd.DataFrame:
    """Return a two-row example plan starting two and five weeks from today."""

    today = date.today()
    return pd.DataFrame(
        [
            {
                "character": "Featured A",
                "start_date": today + timedelta(days=14),
                "banner": "character",
                "priority": 1,
                "max_pulls": None,
                "copies": 1,
            },
            {
                "character": "Signature Weapon",
                "start_date": today + timedelta(days=35),
                "banner": "weapon",
                "priority": 3,
                "max_pulls": 80,
                "copies": 1,
            },
        ],
        columns=TARGET_COLUMNS,
    )


def reset_simulation_results() -> None:
    """Clear cached results so the page reflects new inputs."""

    st.session_state.simulation_result = None
    st.session_state.simulation_error = None


def ensure_session_state_defaults() -> None:
    """Populate Streamlit session state with expected default entries."""

    settings = load_settings()
    if "targets_frame" not in st.session_state:
        st.session_state.targets_frame = default_targets()
    if "host" not in st.session_state:
        st.session_state.host = SimulationHost(workers=settings.workers)
    if "rules_table" not in st.session_state:
        st.session_state.rules_table = load_banner_rules(settings.rules_path)

    st.session_state.setdefault("simulation_result", None)
    st.session_state.setdefault("simulation_error", None)
    st.session_state.setdefault("snapshot_banner", "character")
    st.session_state.setdefault("starting_pity", 0)
    st.session_state.setdefault("starting_guaranteed", False)
    st.session_state.setdefault("starting_radiant_streak", 0)
    st.session_state.setdefault("starting_fate_points", 0)
    st.session_state.setdefault("budget_mode", "Manual")
    st.session_state.setdefault("starting_pulls", 0)
    st.session_state.setdefault("income_per_day", 0.5)
    st.session_state.setdefault("iterations_input", min(settings.iterations, 100_000))
    st.session_state.setdefault("seed_input", 42)
    st.session_state.setdefault("timeout_input", float(settings.timeout or 0.0))


def render_snapshot_inputs() -> None:
    """Render the current pity snapshot controls."""

    with st.container(border=True):
        st.markdown("**Current pity**")
        banner_col, pity_col = st.columns(2)
        banner_col.selectbox(
            "Snapshot banner",
            options=list(BANNER_TYPES),
            format_func=lambda value: BANNER_LABELS.get(value, value),
            key="snapshot_banner",
            on_change=reset_simulation_results,
        )
        rules = st.session_state.rules_table[st.session_state.snapshot_banner]
        pity_col.number_input(
            "Pity",
            min_value=0,
            max_value=rules.hard_pity - 1,
            step=1,
            key="starting_pity",
            on_change=reset_simulation_results,
        )
        flags_col, streak_col, fate_col = st.columns(3)
        flags_col.checkbox(
            "Guaranteed", key="starting_guaranteed", on_change=reset_simulation_results
        )
        streak_col.number_input(
            "Radiant streak",
            min_value=0,
            step=1,
            key="starting_radiant_streak",
            disabled=not rules.has_capturing_radiance,
            on_change=reset_simulation_results,
        )
        fate_col.number_input(
            "Fate points",
            min_value=0,
            max_value=st.session_state.rules_table["weapon"].max_fate_points,
            step=1,
            key="starting_fate_points",
            on_change=reset_simulation_results,
        )


def render_income_chart(buckets: pd.DataFrame) -> None:
    """Render weekly primogem income as stacked earned/purchased/spent bars."""

    if buckets.empty:
        st.caption("No primogem entries to chart.")
        return
    long_form = buckets.melt(
        id_vars=["label"],
        value_vars=["earned", "purchased", "spent"],
        var_name="category",
        value_name="primogems",
    )
    chart = alt.Chart(long_form).mark_bar(opacity=0.9).encode(
        x=alt.X("label:N", title="Week of", sort=None),
        y=alt.Y("primogems:Q", title="Primogems"),
        color=alt.Color("category:N", title=None),
        tooltip=[
            alt.Tooltip("label:N", title="Week of"),
            alt.Tooltip("category:N", title="Category"),
            alt.Tooltip("primogems:Q", title="Primogems", format=",d"),
        ],
    ).properties(height=220)
    st.altair_chart(chart.configure_view(strokeOpacity=0), use_container_width=True)


def render_budget_inputs() -> None:
    """Render the pull budget controls, either typed in or derived from a ledger export."""

    with st.container(border=True):
        st.markdown("**Budget**")
        mode = st.radio(
            "Budget source",
            options=["Manual", "Ledger export"],
            key="budget_mode",
            horizontal=True,
            on_change=reset_simulation_results,
        )
        if mode == "Ledger export":
            upload = st.file_uploader("Ledger JSON", type=["json"])
            if upload is not None:
                try:
                    ledger = ledger_from_dict(json.loads(upload.getvalue().decode("utf-8")))
                except (ValueError, InputValidationError) as exc:
                    st.error(f"Could not read ledger: {exc}")
                else:
                    available = get_available_pulls(ledger)
                    st.session_state.starting_pulls = available.available_pulls
                    st.session_state.income_per_day = round(
                        income_per_day_from_wishes(ledger.wishes), 2
                    )
                    cols = st.columns(3)
                    cols[0].metric("Available pulls", available.available_pulls)
                    cols[1].metric("Primogems", f"{available.resources.primogems:,}")
                    cols[2].metric("Intertwined fates", available.resources.intertwined)
                    render_income_chart(bucket_primogem_entries(ledger.primogem_entries))

        pulls_col, income_col = st.columns(2)
        pulls_col.number_input(
            "Starting pulls",
            min_value=0,
            step=1,
            key="starting_pulls",
            on_change=reset_simulation_results,
        )
        income_col.number_input(
            "Pulls per day",
            min_value=0.0,
            step=0.05,
            format="%.2f",
            key="income_per_day",
            on_change=reset_simulation_results,
        )


def render_target_editor() -> pd.DataFrame:
    """Render the editable target table and return its current contents."""

    with st.container(border=True):
        st.markdown("**Targets**")
        edited = st.data_editor(
            st.session_state.targets_frame,
            num_rows="dynamic",
            use_container_width=True,
            column_config={
                "character": st.column_config.TextColumn("Target", required=True),
                "start_date": st.column_config.DateColumn("Banner start", required=True),
                "banner": st.column_config.SelectboxColumn(
                    "Banner", options=list(BANNER_TYPES), required=True, default="character"
                ),
                "priority": st.column_config.SelectboxColumn(
                    "Priority", options=list(PRIORITY_LABELS), required=True, default=3
                ),
                "max_pulls": st.column_config.NumberColumn("Pull cap", min_value=0, step=1),
                "copies": st.column_config.NumberColumn(
                    "Copies", min_value=1, max_value=7, step=1, default=1
                ),
            },
            key="targets_editor",
            on_change=reset_simulation_results,
        )
        st.caption("Priority 1 targets count toward the must-have probability.")
    return edited


def targets_from_frame(frame: pd.DataFrame) -> list[SimulationTarget]:
    """Convert editor rows into simulation targets, skipping incomplete rows."""

    targets: list[SimulationTarget] = []
    for index, row in frame.reset_index(drop=True).iterrows():
        if not row["character"] or pd.isna(row["start_date"]):
            continue
        max_pulls = None if pd.isna(row["max_pulls"]) else int(row["max_pulls"])
        copies = 1 if pd.isna(row["copies"]) else int(row["copies"])
        targets.append(
            SimulationTarget(
                character_key=str(row["character"]),
                expected_start_date=pd.Timestamp(row["start_date"]).date().isoformat(),
                priority=int(row["priority"]),
                max_pull_budget=max_pulls,
                banner_type=str(row["banner"]),
                copies_needed=copies,
                target_id=str(index),
            )
        )
    return targets


def render_simulation_settings() -> bool:
    """Render Monte Carlo settings and return whether the run button was pressed."""

    with st.container(border=True):
        st.markdown("**Monte Carlo settings**")
        iter_col, seed_col, timeout_col = st.columns(3)
        iter_col.number_input(
            "Iterations", min_value=1_000, max_value=1_000_000, step=10_000, key="iterations_input"
        )
        seed_col.number_input("Seed", min_value=0, step=1, key="seed_input")
        timeout_col.number_input(
            "Time limit (s, 0 = none)", min_value=0.0, step=5.0, key="timeout_input"
        )
        return st.button("Run simulation", type="primary")


def build_simulation_input(targets: Sequence[SimulationTarget]) -> SimulationInput:
    """Assemble the simulation request from the current widget values."""

    table = st.session_state.rules_table
    timeout = float(st.session_state.timeout_input) or None
    return SimulationInput(
        targets=tuple(targets),
        config=SimulationConfig(
            iterations=int(st.session_state.iterations_input),
            seed=int(st.session_state.seed_input),
            progress_step=load_settings().progress_step,
            timeout=timeout,
        ),
        starting_pity=int(st.session_state.starting_pity),
        starting_guaranteed=bool(st.session_state.starting_guaranteed),
        starting_radiant_streak=int(st.session_state.starting_radiant_streak),
        starting_fate_points=int(st.session_state.starting_fate_points),
        starting_pulls=int(st.session_state.starting_pulls),
        income_per_day=float(st.session_state.income_per_day),
        rules=table[st.session_state.snapshot_banner],
        rules_table=table,
    )


def run_simulation_with_progress(sim_input: SimulationInput) -> None:
    """Submit ``sim_input`` to the session host and poll it with a progress bar."""

    reset_simulation_results()
    host: SimulationHost = st.session_state.host
    handle = host.submit(sim_input)
    bar = st.progress(0.0, text="Simulating…")
    while not handle.done():
        bar.progress(handle.progress, text=f"Simulating… {handle.progress:.0%}")
        time.sleep(POLL_SECONDS)
    bar.empty()
    try:
        st.session_state.simulation_result = handle.result()
    except (ConfigurationError, InputValidationError, SimulationCancelled, SimulationFailed) as exc:
        st.session_state.simulation_error = str(exc)


def render_simulation_summary(result: SimulationResult) -> None:
    """Render headline metrics, the per-target table and charts for ``result``."""

    with st.container(border=True):
        st.markdown("**Simulation results**")
        cols = st.columns(3)
        cols[0].metric("All must-haves", f"{result.all_must_haves_probability:.1%}")
        cols[1].metric("Nothing obtained", f"{result.nothing_probability:.1%}")
        cols[2].metric("Trials", f"{result.iterations_completed:,}")
        if result.timed_out:
            st.warning("Time limit reached; results use the trials completed so far.")

        if not result.per_character:
            st.caption("No targets to report.")
            return

        rows = []
        for target in result.per_character:
            for level in target.constellations:
                rows.append(
                    {
                        "target": target.character_key,
                        "banner": BANNER_LABELS.get(target.banner_type, target.banner_type),
                        "copy": level.label,
                        "probability": level.probability,
                        "avg pulls": round(level.average_pulls_used, 1),
                        "median pulls": level.median_pulls_used,
                    }
                )
        table = pd.DataFrame(rows)
        st.dataframe(
            table.style.format({"probability": "{:.1%}"}),
            hide_index=True,
            use_container_width=True,
        )

        chart_data = pd.DataFrame(
            {
                "target": [target.character_key for target in result.per_character],
                "probability": [target.probability for target in result.per_character],
            }
        )
        bars = alt.Chart(chart_data).mark_bar(color="#6366f1", opacity=0.9).encode(
            x=alt.X("probability:Q", title="Probability", scale=alt.Scale(domain=(0, 1)),
                    axis=alt.Axis(format=".0%")),
            y=alt.Y("target:N", title=None, sort=None),
            tooltip=[
                alt.Tooltip("target:N", title="Target"),
                alt.Tooltip("probability:Q", title="Probability", format=".2%"),
            ],
        ).properties(height=40 * len(chart_data) + 20)
        st.altair_chart(bars.configure_view(strokeOpacity=0), use_container_width=True)

        timeline = pd.DataFrame(
            {
                "date": pd.to_datetime([point.date for point in result.pull_timeline]),
                "event": [point.event for point in result.pull_timeline],
                "pulls": [point.projected_pulls for point in result.pull_timeline],
            }
        )
        line = alt.Chart(timeline).mark_line(point=True, color="#0ea5e9").encode(
            x=alt.X("date:T", title="Banner start"),
            y=alt.Y("pulls:Q", title="Projected pulls"),
            tooltip=[
                alt.Tooltip("event:N", title="Event"),
                alt.Tooltip("date:T", title="Date"),
                alt.Tooltip("pulls:Q", title="Pulls"),
            ],
        ).properties(height=220)
        st.altair_chart(line.configure_axis(gridColor="#e2e8f0"), use_container_width=True)


def render_analytical_panel() -> None:
    """Render exact single-target odds from the current snapshot and budget."""

    with st.expander("Exact single-target odds"):
        rules = st.session_state.rules_table[st.session_state.snapshot_banner]
        pulls = int(st.session_state.starting_pulls)
        analytical = calculate_single_target(
            int(st.session_state.starting_pity),
            bool(st.session_state.starting_guaranteed),
            pulls,
            rules,
            fate_points=int(st.session_state.starting_fate_points),
        )
        st.metric(
            f"Chance with {pulls} pulls", f"{analytical.probability_with_current_pulls:.1%}"
        )
        level_cols = st.columns(len(analytical.pulls_for))
        for col, (level, needed) in zip(level_cols, analytical.pulls_for.items()):
            col.metric(f"{level:.0%} confidence", f"{needed} pulls")

        curve = pd.DataFrame(
            {
                "pulls": np.array([point.pulls for point in analytical.distribution]),
                "probability": [point.cumulative_probability for point in analytical.distribution],
            }
        )
        area = alt.Chart(curve).mark_area(opacity=0.4, line=True).encode(
            x=alt.X("pulls:Q", title="Pulls"),
            y=alt.Y("probability:Q", title="Cumulative chance", axis=alt.Axis(format=".0%")),
        ).properties(height=200)
        st.altair_chart(area, use_container_width=True)

        st.markdown("**Required income**")
        count_col, prob_col, days_col = st.columns(3)
        count = count_col.number_input("Targets", min_value=1, value=1, step=1)
        probability = prob_col.slider("Confidence", 0.5, 0.99, 0.8, 0.01)
        days = days_col.number_input("Days available", min_value=1, value=42, step=1)
        income = calculate_required_income(
            int(count),
            float(probability),
            float(days),
            int(st.session_state.starting_pity),
            bool(st.session_state.starting_guaranteed),
            rules,
            fate_points=int(st.session_state.starting_fate_points),
        )
        st.caption(
            f"{income.required_primos_per_day:.0f} primogems/day "
            f"({income.required_pulls_per_day:.2f} pulls/day): {income.feasibility}"
        )


def apply_page_styling() -> None:
    """Inject CSS tweaks that style the Streamlit app."""

    st.set_page_config(page_title="Wish Planner", layout="centered")
    st.markdown(
        """
        <style>
        div[data-testid="stVerticalBlockBorderWrapper"] {
            border: 1px solid #e3e6eb;
            border-radius: 12px;
            padding: 1.25rem;
            background-color: #ffffff;
            box-shadow: 0 4px 10px rgba(15, 23, 42, 0.06);
            margin-bottom: 1.25rem;
        }
        div[data-testid="stMetricValue"] {
            font-size: 1.8rem;
            font-weight: 600;
            color: #0f172a;
        }
        div[data-testid="stMetricLabel"] {
            font-size: 0.95rem;
            color: #475569;
        }
        </style>
        """,
        unsafe_allow_html=True,
    )


def main() -> None:
    """Entry point used by Streamlit."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    apply_page_styling()
    try:
        ensure_session_state_defaults()
    except ConfigurationError as exc:
        st.error(f"Configuration error: {exc}")
        return

    st.title("Wish Planner")
    render_snapshot_inputs()
    render_budget_inputs()
    frame = render_target_editor()
    run_button = render_simulation_settings()
    if run_button:
        st.session_state.targets_frame = frame
        run_simulation_with_progress(build_simulation_input(targets_from_frame(frame)))

    if st.session_state.simulation_error:
        st.error(f"Simulation failed: {st.session_state.simulation_error}")
    elif isinstance(st.session_state.simulation_result, SimulationResult):
        render_simulation_summary(st.session_state.simulation_result)

    st.divider()
    render_analytical_panel()


if __name__ == "__main__":
    main()
