"""Report generation utilities for the breast cancer survey analyses."""

from __future__ import annotations

from pathlib import Path

import pandas as pd


def _fmt_num(x: float | int | None, digits: int = 3) -> str:
    if x is None or pd.isna(x):
        return "NA"
    return f"{float(x):.{digits}f}"


def _fmt_p(x: float | None) -> str:
    if x is None or pd.isna(x):
        return "NA"
    if float(x) < 0.001:
        return "<0.001"
    return f"{float(x):.3f}"


def format_estimates(df: pd.DataFrame, *, max_rows: int = 30, digits: int = 3) -> str:
    """Fixed-width text rendering of a results table."""
    if df.empty:
        return "[empty]"
    shown = df.head(max_rows).copy()
    for col in shown.columns:
        if col == "p_value":
            shown[col] = shown[col].map(_fmt_p)
        elif pd.api.types.is_float_dtype(shown[col]):
            shown[col] = shown[col].map(lambda v: _fmt_num(v, digits))
    text = shown.to_string(index=False)
    if len(df) > max_rows:
        text += f"\n... ({len(df)} rows total)"
    return text


def _chisq_lines(chisq_tests: pd.DataFrame) -> list[str]:
    if chisq_tests.empty:
        return ["- No chi-square tests completed."]
    lines: list[str] = []
    for _, row in chisq_tests.iterrows():
        lines.append(
            f"- {row['row_var']} x {row['col_var']}: Rao-Scott F={_fmt_num(row['f_value'], 2)} "
            f"(df {int(row['df_num'])}, {int(row['df_den'])}), p={_fmt_p(row['p_value'])}"
        )
    return lines


def _odds_ratio_lines(label: str, table: pd.DataFrame) -> list[str]:
    if table.empty or "or" not in table.columns:
        return [f"- `{label}`: not estimated."]
    lines = [f"- `{label}`:"]
    for _, row in table.loc[table["term"] != "Intercept"].iterrows():
        lines.append(
            f"  - {row['term']}: OR {_fmt_num(row['or'], 2)} "
            f"({_fmt_num(row['ci_low'], 2)}-{_fmt_num(row['ci_high'], 2)}), p={_fmt_p(row['p_value'])}"
        )
    return lines


def write_report(
    *,
    output_dir: Path,
    change_log: list[str],
    assumptions: list[str],
    cohort_flow: pd.DataFrame,
    generated_files: list[str],
    chisq_tests: pd.DataFrame,
    logistic_models: dict[str, pd.DataFrame],
    failures: pd.DataFrame,
    flagged_estimates: int,
    notes: list[str],
) -> Path:
    report_path = output_dir / "REPORT.md"

    lines: list[str] = []
    lines.append("# NHANES 2017-March 2020: Breast Cancer Survey Analysis")
    lines.append("")

    lines.append("## Change Log")
    for entry in change_log:
        lines.append(f"- {entry}")
    lines.append("")

    lines.append("## Assumptions")
    for entry in assumptions:
        lines.append(f"- {entry}")
    lines.append("")

    lines.append("## Cohort Flow")
    if cohort_flow.empty:
        lines.append("- Cohort flow unavailable.")
    else:
        for _, row in cohort_flow.iterrows():
            lines.append(f"- {row.get('step', 'step')}: {row.get('n', 'NA')}")
    lines.append("")

    lines.append("## Bivariate Tests (design-adjusted)")
    lines.extend(_chisq_lines(chisq_tests))
    lines.append("")

    lines.append("## Multivariable Logistic Models")
    if not logistic_models:
        lines.append("- None.")
    for label, table in logistic_models.items():
        lines.extend(_odds_ratio_lines(label, table))
    lines.append("")

    lines.append("## Generated Artifacts")
    for fp in sorted(generated_files):
        lines.append(f"- `{fp}`")
    lines.append("")

    lines.append("## Failed Analyses")
    if failures.empty:
        lines.append("- None.")
    else:
        for _, row in failures.iterrows():
            lines.append(f"- `{row['analysis']}` ({row['kind']}): {row['error']}")
    lines.append("")

    lines.append("## Reliability")
    if flagged_estimates:
        lines.append(
            f"- {flagged_estimates} estimates flagged under NCHS presentation standards; see `reliability_note` columns."
        )
    else:
        lines.append("- No estimates flagged under NCHS presentation standards.")
    lines.append("")

    lines.append("## Notes")
    if not notes:
        lines.append("- None.")
    else:
        for note in notes:
            lines.append(f"- {note}")
    lines.append("")

    lines.append("## Interpretation Guardrails")
    lines.append("- Breast cancer status is self-reported and cross-sectional; associations are not causal.")
    lines.append("- Standard errors reflect the NHANES stratified, clustered design; unweighted counts are shown for context only.")
    lines.append("- Estimates flagged as unreliable should not be interpreted.")

    report_path.write_text("\n".join(lines), encoding="utf-8")
    return report_path
