"""Main entrypoint for the NHANES breast cancer survey pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from .analysis import AnalysisBundle, run_all_analyses
from .config import (
    ASSUMPTIONS,
    CHANGE_LOG,
    COLLAPSES,
    CONFIG,
    KEEP_RAW,
    RECODES,
    REQUIRED_OUTPUT_FILES,
    SOURCE_FILES,
    ensure_output_dir,
    validate_config,
)
from .loader import ExtractArtifact, load_all_extracts
from .merge import MergeResult, build_analytic_frame
from .recode import derive_all, recode_audit
from .reliability import count_flagged
from .reporting import format_estimates, write_report


@dataclass
class PipelineRunResult:
    output_dir: Path
    generated_files: list[str]
    extracts: list[ExtractArtifact]
    merge: MergeResult
    recode_audit: pd.DataFrame
    analyses: AnalysisBundle
    notes: list[str]


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
    )


def _save_table(
    *,
    file_name: str,
    df: pd.DataFrame,
    output_dir: Path,
    print_tables: bool = False,
    print_max_rows: int = 30,
) -> Path:
    out_path = output_dir / file_name
    df.to_csv(out_path, index=False)
    logging.info("Saved %s (%s rows)", file_name, len(df))
    if logging.getLogger().isEnabledFor(logging.DEBUG) and not df.empty:
        logging.debug("%s preview:\n%s", file_name, df.head(20).to_string(index=False))
    if print_tables:
        print(f"\n===== {file_name} =====")
        print(format_estimates(df, max_rows=print_max_rows))
    return out_path


def _verify_outputs(output_dir: Path, notes: list[str]) -> None:
    for file_name in REQUIRED_OUTPUT_FILES:
        if file_name == "REPORT.md":
            continue
        if not (output_dir / file_name).exists():
            notes.append(f"Missing expected output artifact: {file_name}")


def main(config: dict | None = None) -> PipelineRunResult:
    cfg = dict(CONFIG if config is None else config)
    _configure_logging()
    validate_config(cfg)

    output_dir = ensure_output_dir(cfg)
    print_tables = bool(cfg.get("print_tables", False))
    print_max_rows = int(cfg.get("print_table_max_rows", 30))
    id_col = cfg["id_column"]

    logging.info("Starting NHANES breast cancer pipeline. data_dir=%s", cfg["data_dir"])
    logging.info("Output directory: %s", output_dir)

    notes: list[str] = []
    extracts: list[ExtractArtifact] = []
    raw_tables = load_all_extracts(cfg["data_dir"], SOURCE_FILES, id_col=id_col, artifacts=extracts)
    derived_tables = derive_all(raw_tables, RECODES, KEEP_RAW, id_col=id_col, notes=notes)
    audit = recode_audit(raw_tables, derived_tables, RECODES, id_col=id_col)

    merge = build_analytic_frame(derived_tables, cfg, COLLAPSES, notes=notes)
    level_labels = {name: dict(spec.get("labels", {})) for name, spec in COLLAPSES.items()}
    analyses = run_all_analyses(merge.analytic_df, cfg, level_labels=level_labels)

    output_map: list[tuple[str, pd.DataFrame]] = [
        ("cohort_flow.csv", merge.cohort_flow),
        ("recode_audit.csv", audit),
        ("descriptive_overall.csv", analyses.descriptive_overall),
        ("descriptive_by_outcome.csv", analyses.descriptive_by_outcome),
        ("crosstabs.csv", analyses.crosstabs),
        ("chisq_tests.csv", analyses.chisq_tests),
        ("domain_means.csv", analyses.domain_means),
        ("linear_regressions.csv", analyses.linear_regressions),
        *[(f"{label}.csv", table) for label, table in analyses.logistic_models.items()],
        ("wald_tests.csv", analyses.wald_tests),
        ("logit_model_diagnostics.csv", analyses.logit_diagnostics),
        ("analysis_failures.csv", analyses.failures),
    ]

    generated_files: list[str] = []
    for file_name, df in output_map:
        path = _save_table(
            file_name=file_name,
            df=df,
            output_dir=output_dir,
            print_tables=print_tables,
            print_max_rows=print_max_rows,
        )
        generated_files.append(path.name)

    notes.extend(analyses.notes)
    flagged = count_flagged(
        [analyses.descriptive_overall, analyses.descriptive_by_outcome, analyses.crosstabs, analyses.domain_means]
    )
    _verify_outputs(output_dir, notes)

    report_path = write_report(
        output_dir=output_dir,
        change_log=CHANGE_LOG,
        assumptions=ASSUMPTIONS,
        cohort_flow=merge.cohort_flow,
        generated_files=generated_files,
        chisq_tests=analyses.chisq_tests,
        logistic_models=analyses.logistic_models,
        failures=analyses.failures,
        flagged_estimates=flagged,
        notes=notes,
    )
    generated_files.append(report_path.name)

    logging.info("Pipeline complete. Generated files:")
    for fp in sorted(generated_files):
        logging.info("- %s", fp)

    return PipelineRunResult(
        output_dir=output_dir,
        generated_files=sorted(generated_files),
        extracts=extracts,
        merge=merge,
        recode_audit=audit,
        analyses=analyses,
        notes=notes,
    )


if __name__ == "__main__":
    main()
