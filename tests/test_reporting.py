from __future__ import annotations

import numpy as np
import pandas as pd

from nhanes_breast_pipeline.reporting import format_estimates, write_report


def test_format_estimates_formats_p_values_and_truncates():
    df = pd.DataFrame({"term": ["a", "b", "c"], "coef": [0.12345, np.nan, 2.0], "p_value": [0.0001, 0.2, np.nan]})
    text = format_estimates(df, max_rows=2)
    assert "<0.001" in text
    assert "0.123" in text
    assert "NA" in text
    assert "(3 rows total)" in text
    assert format_estimates(pd.DataFrame()) == "[empty]"


def test_write_report_sections(tmp_path):
    chisq = pd.DataFrame(
        [{"row_var": "smoker", "col_var": "breast_cancer", "f_value": 3.2, "df_num": 1, "df_den": 15, "p_value": 0.09}]
    )
    logistic = {
        "logistic_reduced": pd.DataFrame(
            [
                {"term": "Intercept", "or": 0.01, "ci_low": 0.001, "ci_high": 0.1, "p_value": 0.0},
                {"term": "age", "or": 1.05, "ci_low": 1.02, "ci_high": 1.08, "p_value": 0.0004},
            ]
        ),
        "logistic_full": pd.DataFrame(),
    }
    failures = pd.DataFrame([{"analysis": "logistic_full", "kind": "logistic", "error": "singular information matrix"}])
    path = write_report(
        output_dir=tmp_path,
        change_log=["2026-10-12: change"],
        assumptions=["Women only."],
        cohort_flow=pd.DataFrame([{"step": "01_demographic_rows", "n": 15560}]),
        generated_files=["cohort_flow.csv"],
        chisq_tests=chisq,
        logistic_models=logistic,
        failures=failures,
        flagged_estimates=4,
        notes=["note one"],
    )
    text = path.read_text(encoding="utf-8")
    assert path.name == "REPORT.md"
    assert "- smoker x breast_cancer: Rao-Scott F=3.20 (df 1, 15), p=0.090" in text
    assert "  - age: OR 1.05 (1.02-1.08), p=<0.001" in text
    assert "Intercept: OR" not in text
    assert "- `logistic_full`: not estimated." in text
    assert "- `logistic_full` (logistic): singular information matrix" in text
    assert "- 01_demographic_rows: 15560" in text
    assert "4 estimates flagged" in text
    assert "- note one" in text
