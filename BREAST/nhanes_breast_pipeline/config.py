"""Configuration for the NHANES 2017-March 2020 breast cancer survey analyses."""

from __future__ import annotations

import os
from pathlib import Path

CHANGE_LOG = [
    "2026-10-17: Model matrices now come from the statsmodels formula API with treatment-coded categorical terms.",
    "2026-10-17: Binary recode rules must use raw code 1 for yes; unexpected analysis errors are recorded, not raised.",
    "2026-10-12: Added NCHS reliability flags (n<30 or RSE>30%) to every estimate table.",
    "2026-10-12: Added design-adjusted Wald F tests for the age x race3 interaction and each categorical effect.",
    "2026-10-09: Replaced the per-predictor procedure calls with a declarative analysis checklist.",
    "2026-10-09: Moved race/ethnicity and education collapses into configuration data.",
    "2026-10-08: Every recode rule now enumerates its refusal/don't-know sentinels; unlisted codes are logged and set missing.",
    "2026-10-08: Merged extracts now fail loudly (count + ERROR log) on duplicate SEQN instead of deduplicating.",
    "2026-10-07: Logistic fits report non-convergence and singular information as named failures.",
    "2026-10-06: Ported the data-step recodes and survey procedures into a modular pandas/statsmodels pipeline.",
]

ASSUMPTIONS = [
    "Inputs are the public NHANES 2017-March 2020 pre-pandemic SAS transport (XPT) files in NHANES_DATA_DIR.",
    "The analytic population is women (RIAGENDR=2) with a recorded answer to MCQ220 (ever told cancer).",
    "Breast cancer is MCQ230A=14 among women ever told they had cancer; women never told are coded 0.",
    "The MEC pre-pandemic weight WTMECPRP is used for every estimate because exam and lab variables are analyzed.",
    "Variance uses Taylor linearization with PSUs sampled with replacement within strata (SDMVSTRA/SDMVPSU).",
    "Strata with a single PSU are centered on the grand mean of PSU totals.",
    "Confidence intervals and p-values use Student t with design degrees of freedom (#PSU - #strata).",
    "Pregnancy count is analyzed descriptively only; it is structurally missing for never-pregnant women.",
]

# Extract name -> file name and raw columns kept from the file.
SOURCE_FILES = {
    "P_DEMO": {
        "file": "P_DEMO.XPT",
        "columns": ["SEQN", "RIAGENDR", "RIDAGEYR", "RIDRETH3", "DMDEDUC2", "INDFMPIR", "SDMVSTRA", "SDMVPSU", "WTMECPRP"],
    },
    "P_MCQ": {"file": "P_MCQ.XPT", "columns": ["SEQN", "MCQ220", "MCQ230A"]},
    "P_SMQ": {"file": "P_SMQ.XPT", "columns": ["SEQN", "SMQ020"]},
    "P_ALQ": {"file": "P_ALQ.XPT", "columns": ["SEQN", "ALQ111"]},
    "P_DIQ": {"file": "P_DIQ.XPT", "columns": ["SEQN", "DIQ010"]},
    "P_BPQ": {"file": "P_BPQ.XPT", "columns": ["SEQN", "BPQ020"]},
    "P_RHQ": {"file": "P_RHQ.XPT", "columns": ["SEQN", "RHQ010", "RHQ160", "RHQ420", "RHQ540"]},
    "P_BMX": {"file": "P_BMX.XPT", "columns": ["SEQN", "BMXBMI", "BMXWAIST"]},
    "P_BPXO": {"file": "P_BPXO.XPT", "columns": ["SEQN", "BPXOSY1"]},
    "P_GHB": {"file": "P_GHB.XPT", "columns": ["SEQN", "LBXGH"]},
    "P_TCHOL": {"file": "P_TCHOL.XPT", "columns": ["SEQN", "LBXTC"]},
}

# Derived column -> rule spec. "kind" is one of binary, sentinel, cancer_two_stage.
RECODES = {
    "P_DEMO": {
        "age": {"kind": "sentinel", "source": "RIDAGEYR", "missing_codes": []},
        "pir": {"kind": "sentinel", "source": "INDFMPIR", "missing_codes": []},
        "race_raw": {"kind": "sentinel", "source": "RIDRETH3", "missing_codes": []},
        "educ_raw": {"kind": "sentinel", "source": "DMDEDUC2", "missing_codes": [7, 9]},
    },
    "P_MCQ": {
        "cancer_ever": {"kind": "binary", "source": "MCQ220", "yes_code": 1, "no_codes": [2], "missing_codes": [7, 9]},
        "breast_cancer": {
            "kind": "cancer_two_stage",
            "gate": "cancer_ever",
            "source": "MCQ230A",
            "yes_code": 14,
            "missing_codes": [77, 99],
        },
    },
    "P_SMQ": {
        "smoker": {"kind": "binary", "source": "SMQ020", "yes_code": 1, "no_codes": [2], "missing_codes": [7, 9]},
    },
    "P_ALQ": {
        "drinker": {"kind": "binary", "source": "ALQ111", "yes_code": 1, "no_codes": [2], "missing_codes": [7, 9]},
    },
    "P_DIQ": {
        # 3 = borderline, grouped with "no".
        "diabetes": {"kind": "binary", "source": "DIQ010", "yes_code": 1, "no_codes": [2, 3], "missing_codes": [7, 9]},
    },
    "P_BPQ": {
        "hypertension": {"kind": "binary", "source": "BPQ020", "yes_code": 1, "no_codes": [2], "missing_codes": [7, 9]},
    },
    "P_RHQ": {
        "menarche_age": {"kind": "sentinel", "source": "RHQ010", "missing_codes": [777, 999]},
        "pregnancies": {"kind": "sentinel", "source": "RHQ160", "missing_codes": [77, 99]},
        "oral_contraceptive": {"kind": "binary", "source": "RHQ420", "yes_code": 1, "no_codes": [2], "missing_codes": [7, 9]},
        "hormone_therapy": {"kind": "binary", "source": "RHQ540", "yes_code": 1, "no_codes": [2], "missing_codes": [7, 9]},
    },
    "P_BMX": {
        "bmi": {"kind": "sentinel", "source": "BMXBMI", "missing_codes": []},
        "waist": {"kind": "sentinel", "source": "BMXWAIST", "missing_codes": []},
    },
    "P_BPXO": {
        "sbp": {"kind": "sentinel", "source": "BPXOSY1", "missing_codes": []},
    },
    "P_GHB": {
        "hba1c": {"kind": "sentinel", "source": "LBXGH", "missing_codes": []},
    },
    "P_TCHOL": {
        "total_chol": {"kind": "sentinel", "source": "LBXTC", "missing_codes": []},
    },
}

# Raw columns carried into the derived tables next to the derived ones.
KEEP_RAW = {
    "P_DEMO": ["RIAGENDR", "SDMVSTRA", "SDMVPSU", "WTMECPRP"],
    "P_MCQ": ["MCQ230A"],
}

# Collapsed categories applied after the merge. Level order = reference first.
COLLAPSES = {
    "race3": {
        "source": "race_raw",
        "groups": {1: [3], 2: [4], 3: [1, 2, 6, 7]},
        "missing_codes": [],
        "labels": {1: "Non-Hispanic White", 2: "Non-Hispanic Black", 3: "Hispanic/Other"},
    },
    "educ3": {
        "source": "educ_raw",
        "groups": {1: [1, 2], 2: [3], 3: [4, 5]},
        "missing_codes": [7, 9],
        "labels": {1: "Less than high school", 2: "High school/GED", 3: "Some college or more"},
    },
}

BINARY_PREDICTORS = [
    "smoker",
    "drinker",
    "diabetes",
    "hypertension",
    "oral_contraceptive",
    "hormone_therapy",
]

MULTILEVEL_PREDICTORS = ["race3", "educ3"]

CONTINUOUS_VARIABLES = [
    "age",
    "pir",
    "bmi",
    "waist",
    "menarche_age",
    "pregnancies",
    "sbp",
    "hba1c",
    "total_chol",
]

CONFIG = {
    "data_dir": os.environ.get("NHANES_DATA_DIR", "").strip(),
    "output_dir": os.environ.get(
        "NHANES_OUTPUT_DIR",
        str(Path(__file__).resolve().parents[1] / "breast_outputs"),
    ),
    "id_column": "SEQN",
    "demographic_extract": "P_DEMO",
    "diagnosis_extract": "P_MCQ",
    "sex_column": "RIAGENDR",
    "target_sex_code": 2,
    "diagnosis_gate_column": "cancer_ever",
    "strata_column": "SDMVSTRA",
    "psu_column": "SDMVPSU",
    "weight_column": "WTMECPRP",
    "outcome": "breast_cancer",
    "binary_predictors": BINARY_PREDICTORS,
    "multilevel_predictors": MULTILEVEL_PREDICTORS,
    "continuous_variables": CONTINUOUS_VARIABLES,
    "complete_case_columns": [
        "breast_cancer",
        "age",
        "pir",
        "race3",
        "educ3",
        "smoker",
        "drinker",
        "diabetes",
        "hypertension",
        "oral_contraceptive",
        "hormone_therapy",
        "menarche_age",
        "bmi",
        "waist",
        "sbp",
        "hba1c",
        "total_chol",
    ],
    "categorical_levels": {
        "race3": [1, 2, 3],
        "educ3": [1, 2, 3],
        "breast_cancer": [0, 1],
    },
    "logistic_models": {
        "logistic_full": {
            "categorical": ["race3", "educ3"],
            "continuous": [
                "age",
                "pir",
                "smoker",
                "drinker",
                "diabetes",
                "hypertension",
                "oral_contraceptive",
                "hormone_therapy",
                "menarche_age",
                "bmi",
                "waist",
                "sbp",
                "hba1c",
                "total_chol",
            ],
            "interactions": [],
        },
        "logistic_reduced": {
            "categorical": ["race3"],
            "continuous": ["age", "bmi", "smoker", "oral_contraceptive", "hormone_therapy"],
            "interactions": [],
        },
        "logistic_interaction_age_race": {
            "categorical": ["race3"],
            "continuous": ["age", "bmi", "smoker", "oral_contraceptive", "hormone_therapy"],
            "interactions": [("age", "race3")],
        },
    },
    "irls_maxiter": 100,
    "irls_tol": 1e-8,
    "singular_condition_limit": 1e12,
    "alpha": 0.05,
    "reliability_min_n": 30,
    "reliability_max_rse": 0.30,
    "logit_events_per_parameter_warn_threshold": 10.0,
    "print_tables": False,
    "print_table_max_rows": 30,
}

REQUIRED_OUTPUT_FILES = [
    "cohort_flow.csv",
    "recode_audit.csv",
    "descriptive_overall.csv",
    "descriptive_by_outcome.csv",
    "crosstabs.csv",
    "chisq_tests.csv",
    "domain_means.csv",
    "linear_regressions.csv",
    "logistic_full.csv",
    "logistic_reduced.csv",
    "logistic_interaction_age_race.csv",
    "wald_tests.csv",
    "logit_model_diagnostics.csv",
    "analysis_failures.csv",
    "REPORT.md",
]


def validate_config(config: dict | None = None) -> None:
    cfg = CONFIG if config is None else config
    if not cfg["data_dir"]:
        raise ValueError("NHANES_DATA_DIR is empty. Set NHANES_DATA_DIR before running.")
    missing_sources = [
        name for name in (cfg["demographic_extract"], cfg["diagnosis_extract"]) if name not in SOURCE_FILES
    ]
    if missing_sources:
        raise ValueError(f"Gating extracts not configured in SOURCE_FILES: {', '.join(missing_sources)}")
    derived = {col for rules in RECODES.values() for col in rules} | set(COLLAPSES)
    unknown = [col for col in cfg["complete_case_columns"] if col not in derived]
    if unknown:
        raise ValueError(f"Complete-case columns without a recode rule: {', '.join(unknown)}")


def ensure_output_dir(config: dict | None = None) -> Path:
    cfg = CONFIG if config is None else config
    out_dir = Path(cfg["output_dir"]).resolve()
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir
