"""NCHS presentation-standard reliability flags for survey estimates."""

from __future__ import annotations

import logging
from typing import Iterable

import numpy as np
import pandas as pd

SMALL_N_NOTE = "Unreliable: unweighted n below NCHS minimum."
HIGH_RSE_NOTE = "Unreliable: relative standard error above NCHS maximum."


def _infer_estimate_column(df: pd.DataFrame) -> str | None:
    for col in ("mean", "percent", "coef"):
        if col in df.columns:
            return col
    return None


def flag_unreliable(
    df: pd.DataFrame,
    *,
    min_n: int = 30,
    max_rse: float = 0.30,
    n_column: str = "n",
    estimate_column: str | None = None,
    se_column: str = "std_error",
) -> pd.DataFrame:
    """Return a copy with ``rse`` and ``reliability_note`` columns; rows are never dropped."""
    out = df.copy()
    if out.empty:
        out["reliability_note"] = pd.Series(dtype=object)
        return out

    est_col = estimate_column or _infer_estimate_column(out)
    notes = pd.Series("", index=out.index, dtype=object)

    if n_column in out.columns:
        small = pd.to_numeric(out[n_column], errors="coerce").fillna(0) < min_n
        notes = notes.mask(small, SMALL_N_NOTE)

    if est_col is not None and se_column in out.columns:
        est = pd.to_numeric(out[est_col], errors="coerce").abs()
        se = pd.to_numeric(out[se_column], errors="coerce")
        rse = (se / est).replace([np.inf, -np.inf], np.nan)
        out["rse"] = rse
        high = rse > max_rse
        notes = notes.mask(high & notes.eq(""), HIGH_RSE_NOTE)
        notes = notes.mask(high & notes.eq(SMALL_N_NOTE), f"{SMALL_N_NOTE} {HIGH_RSE_NOTE}")

    out["reliability_note"] = notes
    flagged = int(notes.ne("").sum())
    if flagged:
        logging.warning("Flagged %s estimates as unreliable (n<%s or RSE>%.0f%%).", flagged, min_n, 100 * max_rse)
    return out


def model_is_estimable(n: int, events: int, min_n: int) -> tuple[bool, str]:
    nonevents = n - events
    if n < min_n:
        return False, f"only {n} complete cases (< {min_n})"
    if events < 1 or nonevents < 1:
        return False, f"outcome has {events} events and {nonevents} non-events"
    return True, ""


def count_flagged(frames: Iterable[pd.DataFrame]) -> int:
    total = 0
    for df in frames:
        if "reliability_note" in df.columns:
            total += int(df["reliability_note"].fillna("").ne("").sum())
    return total
