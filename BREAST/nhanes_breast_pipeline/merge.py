"""Analytic frame construction: gated merge, collapsed categories, complete cases."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

import pandas as pd

from .recode import apply_collapse, collapse_rule_from_config


@dataclass
class MergeResult:
    cohort_flow: pd.DataFrame
    merged_df: pd.DataFrame
    analytic_df: pd.DataFrame
    duplicate_ids: int


def count_duplicate_ids(df: pd.DataFrame, id_col: str = "SEQN") -> int:
    """Number of identifiers that appear on more than one row."""
    if df.empty:
        return 0
    sizes = df.groupby(id_col, dropna=False).size()
    return int((sizes > 1).sum())


def complete_case_filter(df: pd.DataFrame, columns: list[str]) -> pd.DataFrame:
    missing_cols = [c for c in columns if c not in df.columns]
    if missing_cols:
        raise KeyError(f"Complete-case columns not in frame: {', '.join(missing_cols)}")
    return df.dropna(subset=columns).copy()


def with_collapsed_categories(
    df: pd.DataFrame,
    collapses: Mapping[str, Mapping[str, object]],
    notes: list[str] | None = None,
) -> pd.DataFrame:
    """Return a new frame with each configured collapsed category added."""
    out = df.copy()
    for name, spec in collapses.items():
        rule = collapse_rule_from_config(spec)
        out[name] = apply_collapse(out[rule.source], rule, notes=notes)
    return out


def _flow_row(step: str, n: int) -> dict[str, object]:
    return {"step": step, "n": int(n)}


def build_analytic_frame(
    tables: Mapping[str, pd.DataFrame],
    config: dict,
    collapses: Mapping[str, Mapping[str, object]],
    notes: list[str] | None = None,
) -> MergeResult:
    id_col = config["id_column"]
    demo_name = config["demographic_extract"]
    dx_name = config["diagnosis_extract"]
    flow: list[dict[str, object]] = []

    demo = tables[demo_name]
    flow.append(_flow_row("01_demographic_rows", len(demo)))
    demo = demo.loc[demo[config["sex_column"]] == config["target_sex_code"]].copy()
    flow.append(_flow_row("02_target_sex", len(demo)))

    dx = tables[dx_name]
    flow.append(_flow_row("03_diagnosis_rows", len(dx)))
    dx = dx.loc[dx[config["diagnosis_gate_column"]].notna()].copy()
    flow.append(_flow_row("04_diagnosis_response_recorded", len(dx)))

    merged = demo.merge(dx, on=id_col, how="inner")
    flow.append(_flow_row("05_demographic_x_diagnosis", len(merged)))

    for name, table in tables.items():
        if name in (demo_name, dx_name):
            continue
        overlap = [c for c in table.columns if c != id_col and c in merged.columns]
        if overlap:
            raise ValueError(f"Extract {name} repeats merged columns: {', '.join(overlap)}")
        merged = merged.merge(table, on=id_col, how="left")
    logging.info("Merged %s extracts: rows=%s columns=%s", len(tables), len(merged), len(merged.columns))

    duplicates = count_duplicate_ids(merged, id_col)
    flow.append(_flow_row("06_duplicate_identifiers", duplicates))
    if duplicates:
        msg = f"Merged frame has {duplicates} duplicated {id_col} values; review the source extracts."
        logging.error(msg)
        if notes is not None:
            notes.append(msg)

    extended = with_collapsed_categories(merged, collapses, notes=notes)
    analytic = complete_case_filter(extended, list(config["complete_case_columns"]))
    flow.append(_flow_row("07_complete_cases", len(analytic)))
    logging.info("Complete-case analytic frame: rows=%s (dropped %s)", len(analytic), len(extended) - len(analytic))

    return MergeResult(
        cohort_flow=pd.DataFrame(flow),
        merged_df=extended,
        analytic_df=analytic.reset_index(drop=True),
        duplicate_ids=duplicates,
    )
