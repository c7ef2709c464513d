"""Helpers for reading NHANES SAS transport extracts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import numpy as np
import pandas as pd

# pandas' XPT reader returns IBM-float zeros as ~5.4e-79.
XPT_ZERO_EPSILON = 1e-70


@dataclass
class ExtractArtifact:
    name: str
    row_count: int
    path: str


def validate_data_dir(data_dir: str | Path) -> Path:
    if not str(data_dir).strip():
        raise ValueError("NHANES_DATA_DIR is empty.")
    path = Path(data_dir).expanduser().resolve()
    if not path.is_dir():
        raise ValueError(f"NHANES data directory does not exist: {path}")
    return path


def _repair_xpt_zeros(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    for col in out.columns:
        if pd.api.types.is_float_dtype(out[col]):
            tiny = out[col].notna() & (out[col].abs() < XPT_ZERO_EPSILON)
            if tiny.any():
                out.loc[tiny, col] = 0.0
    return out


def load_extract(
    name: str,
    data_dir: str | Path,
    *,
    file_name: str,
    columns: list[str],
    id_col: str = "SEQN",
    artifacts: list[ExtractArtifact] | None = None,
) -> pd.DataFrame:
    path = Path(data_dir) / file_name
    logging.info("Reading extract: %s (%s)", name, path)
    if not path.exists():
        raise RuntimeError(f"Extract {name} not found at {path}")
    try:
        raw = pd.read_sas(path, format="xport")
    except (OSError, ValueError) as exc:
        logging.exception("Failed to read extract: %s", name)
        raise RuntimeError(f"Could not read extract {name} ({path}): {exc}") from exc

    raw.columns = [str(c).upper() for c in raw.columns]
    missing = [c for c in columns if c not in raw.columns]
    if missing:
        raise RuntimeError(f"Extract {name} is missing columns: {', '.join(missing)}")

    out = _repair_xpt_zeros(raw[columns])
    out = out.loc[out[id_col].notna()].copy()
    out[id_col] = out[id_col].round().astype(np.int64)
    logging.info("Finished extract: %s | rows=%s", name, len(out))

    if artifacts is not None:
        artifacts.append(ExtractArtifact(name=name, row_count=int(len(out)), path=str(path)))
    return out


def load_all_extracts(
    data_dir: str | Path,
    sources: Mapping[str, Mapping[str, object]],
    *,
    id_col: str = "SEQN",
    artifacts: list[ExtractArtifact] | None = None,
) -> dict[str, pd.DataFrame]:
    root = validate_data_dir(data_dir)
    tables: dict[str, pd.DataFrame] = {}
    for name, spec in sources.items():
        tables[name] = load_extract(
            name,
            root,
            file_name=str(spec["file"]),
            columns=[str(c) for c in spec["columns"]],
            id_col=id_col,
            artifacts=artifacts,
        )
    return tables
