"""Synthetic NHANES-shaped extracts for smoke runs and tests."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Mapping

import numpy as np
import pandas as pd

N_STRATA = 15
PSU_PER_STRATUM = 2
OTHER_CANCER_CODES = [10, 11, 12, 13, 15, 16, 17, 18, 19, 20, 21, 22, 23, 25, 26, 27, 28, 30, 31, 32, 36, 37, 38, 39]


def _with_sentinels(rng: np.random.Generator, values: np.ndarray, codes: list[int], rate: float) -> np.ndarray:
    out = values.astype(float).copy()
    hit = rng.random(len(out)) < rate
    out[hit] = rng.choice(codes, size=int(hit.sum()))
    return out


def _yes_no(rng: np.random.Generator, p_yes: np.ndarray | float, n: int, *, sentinel_rate: float = 0.01) -> np.ndarray:
    values = np.where(rng.random(n) < p_yes, 1, 2)
    return _with_sentinels(rng, values, [7, 9], sentinel_rate)


def _subset(rng: np.random.Generator, df: pd.DataFrame, keep_rate: float) -> pd.DataFrame:
    return df.loc[rng.random(len(df)) < keep_rate].reset_index(drop=True)


def make_raw_extracts(n: int = 4000, seed: int = 42) -> dict[str, pd.DataFrame]:
    """Raw extracts keyed like ``config.SOURCE_FILES`` with NHANES codes and sentinels."""
    rng = np.random.default_rng(seed)
    seqn = np.arange(109263, 109263 + n)

    stratum = rng.integers(0, N_STRATA, size=n) + 173
    psu = rng.integers(1, PSU_PER_STRATUM + 1, size=n)
    psu_effect = {(s, p): rng.normal(0, 0.35) for s in range(173, 173 + N_STRATA) for p in (1, 2)}
    cluster = np.array([psu_effect[(s, p)] for s, p in zip(stratum, psu)])

    sex = rng.choice([1, 2], size=n)
    age = rng.integers(20, 81, size=n)
    race = rng.choice([1, 2, 3, 4, 6, 7], size=n, p=[0.14, 0.10, 0.36, 0.24, 0.11, 0.05])
    educ = rng.choice([1, 2, 3, 4, 5], size=n, p=[0.08, 0.10, 0.24, 0.31, 0.27])
    educ = _with_sentinels(rng, educ, [7, 9], 0.01)
    pir = np.round(np.clip(rng.gamma(2.2, 1.1, size=n) + 0.3 * cluster, 0, 5), 2)
    pir[rng.random(n) < 0.03] = np.nan
    weight = np.round(rng.lognormal(mean=9.8, sigma=0.6, size=n), 1)

    demo = pd.DataFrame(
        {
            "SEQN": seqn.astype(float),
            "RIAGENDR": sex.astype(float),
            "RIDAGEYR": age.astype(float),
            "RIDRETH3": race.astype(float),
            "DMDEDUC2": educ,
            "INDFMPIR": pir,
            "SDMVSTRA": stratum.astype(float),
            "SDMVPSU": psu.astype(float),
            "WTMECPRP": weight,
        }
    )

    hormone_p = np.where(sex == 2, 0.12 + 0.003 * (age - 20), 0.0)
    hormone = _yes_no(rng, hormone_p, n)
    oral = _yes_no(rng, np.where(sex == 2, 0.78, 0.0), n)
    smoker = _yes_no(rng, 0.38 + 0.05 * cluster, n)
    drinker = _yes_no(rng, 0.86, n)
    diabetes = np.where(rng.random(n) < 0.03, 3, np.where(rng.random(n) < 0.12 + 0.002 * (age - 20), 1, 2))
    diabetes = _with_sentinels(rng, diabetes, [7, 9], 0.005)
    hypertension = _yes_no(rng, 0.18 + 0.006 * (age - 20), n)

    risk = -4.2 + 0.045 * (age - 20) + 0.6 * (hormone == 1) + 0.2 * cluster
    cancer = np.where(rng.random(n) < 1.0 / (1.0 + np.exp(-risk)), 1, 2)
    cancer = _with_sentinels(rng, cancer, [7, 9], 0.004)
    breast_p = np.where(sex == 2, 0.42, 0.01)
    cancer_type = np.where(rng.random(n) < breast_p, 14, rng.choice(OTHER_CANCER_CODES, size=n)).astype(float)
    cancer_type = _with_sentinels(rng, cancer_type, [77, 99], 0.01)
    cancer_type[cancer != 1] = np.nan

    menarche = np.clip(np.round(rng.normal(12.6, 1.4, size=n)), 8, 18)
    menarche = _with_sentinels(rng, menarche, [777, 999], 0.01)
    ever_pregnant = rng.random(n) < 0.85
    pregnancies = np.where(ever_pregnant, rng.integers(1, 8, size=n), np.nan)
    pregnancies = np.where(ever_pregnant, _with_sentinels(rng, pregnancies, [77, 99], 0.01), np.nan)

    bmi = np.round(np.clip(rng.normal(29.5, 7.0, size=n) + 2.0 * cluster, 14, 80), 1)
    waist = np.round(np.clip(bmi * 3.2 + rng.normal(4, 6, size=n), 55, 180), 1)
    sbp = np.round(np.clip(rng.normal(108, 12, size=n) + 0.45 * age, 80, 230))
    hba1c = np.round(np.clip(rng.normal(5.5, 0.5, size=n) + 1.3 * (diabetes == 1), 4, 14), 1)
    chol = np.round(np.clip(rng.normal(190, 38, size=n), 80, 400))

    tables = {
        "P_DEMO": demo,
        "P_MCQ": pd.DataFrame({"SEQN": demo["SEQN"], "MCQ220": cancer, "MCQ230A": cancer_type}),
        "P_SMQ": pd.DataFrame({"SEQN": demo["SEQN"], "SMQ020": smoker}),
        "P_ALQ": pd.DataFrame({"SEQN": demo["SEQN"], "ALQ111": drinker}),
        "P_DIQ": pd.DataFrame({"SEQN": demo["SEQN"], "DIQ010": diabetes}),
        "P_BPQ": pd.DataFrame({"SEQN": demo["SEQN"], "BPQ020": hypertension}),
        "P_RHQ": pd.DataFrame(
            {
                "SEQN": demo["SEQN"],
                "RHQ010": menarche,
                "RHQ160": pregnancies,
                "RHQ420": oral,
                "RHQ540": hormone,
            }
        ).loc[sex == 2],
        "P_BMX": pd.DataFrame({"SEQN": demo["SEQN"], "BMXBMI": bmi, "BMXWAIST": waist}),
        "P_BPXO": pd.DataFrame({"SEQN": demo["SEQN"], "BPXOSY1": sbp}),
        "P_GHB": pd.DataFrame({"SEQN": demo["SEQN"], "LBXGH": hba1c}),
        "P_TCHOL": pd.DataFrame({"SEQN": demo["SEQN"], "LBXTC": chol}),
    }
    # Exam and lab components are not completed by every interviewed participant.
    for name in ("P_BMX", "P_BPXO", "P_GHB", "P_TCHOL"):
        tables[name] = _subset(rng, tables[name], 0.97)
    tables["P_RHQ"] = tables["P_RHQ"].reset_index(drop=True)
    return tables


def fake_read_sas_factory(
    tables: Mapping[str, pd.DataFrame],
    sources: Mapping[str, Mapping[str, object]],
    data_dir: str | Path,
) -> Callable[..., pd.DataFrame]:
    """Write placeholder files into ``data_dir`` and return a ``pandas.read_sas`` stand-in serving ``tables``."""
    root = Path(data_dir)
    root.mkdir(parents=True, exist_ok=True)
    by_file: dict[str, pd.DataFrame] = {}
    for name, spec in sources.items():
        file_name = str(spec["file"])
        (root / file_name).write_bytes(b"")
        by_file[file_name] = tables[name]

    def fake_read_sas(path, *args, **kwargs) -> pd.DataFrame:
        file_name = Path(path).name
        if file_name not in by_file:
            raise FileNotFoundError(f"Unexpected read_sas call for {path}")
        return by_file[file_name].copy()

    return fake_read_sas
