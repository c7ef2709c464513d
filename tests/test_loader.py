from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from nhanes_breast_pipeline.config import SOURCE_FILES
from nhanes_breast_pipeline.loader import (
    ExtractArtifact,
    load_all_extracts,
    load_extract,
    validate_data_dir,
)
from nhanes_breast_pipeline.synthetic import fake_read_sas_factory


def test_load_all_extracts_returns_every_source(loaded_tables, raw_tables):
    assert set(loaded_tables) == set(SOURCE_FILES)
    for name, df in loaded_tables.items():
        assert df["SEQN"].dtype == np.int64
        assert list(df.columns) == SOURCE_FILES[name]["columns"]
        assert len(df) == len(raw_tables[name])


def test_load_records_artifacts(pipeline_config):
    artifacts: list[ExtractArtifact] = []
    load_all_extracts(pipeline_config["data_dir"], SOURCE_FILES, artifacts=artifacts)
    assert [a.name for a in artifacts] == list(SOURCE_FILES)
    assert all(a.row_count > 0 for a in artifacts)


def test_missing_file_raises_runtime_error(tmp_path):
    with pytest.raises(RuntimeError, match="P_SMQ"):
        load_extract("P_SMQ", tmp_path, file_name="P_SMQ.XPT", columns=["SEQN", "SMQ020"])


def test_missing_column_raises_runtime_error(tmp_path, monkeypatch):
    tables = {"P_SMQ": pd.DataFrame({"SEQN": [1.0, 2.0], "SMQ040": [1.0, 3.0]})}
    sources = {"P_SMQ": SOURCE_FILES["P_SMQ"]}
    monkeypatch.setattr(pd, "read_sas", fake_read_sas_factory(tables, sources, tmp_path))
    with pytest.raises(RuntimeError, match="SMQ020"):
        load_extract("P_SMQ", tmp_path, file_name="P_SMQ.XPT", columns=["SEQN", "SMQ020"])


def test_unreadable_file_is_wrapped(tmp_path, monkeypatch):
    (tmp_path / "P_SMQ.XPT").write_bytes(b"not a transport file")

    def broken_read_sas(path, *args, **kwargs):
        raise ValueError("Header record is not an XPORT file.")

    monkeypatch.setattr(pd, "read_sas", broken_read_sas)
    with pytest.raises(RuntimeError, match="Could not read extract P_SMQ") as excinfo:
        load_extract("P_SMQ", tmp_path, file_name="P_SMQ.XPT", columns=["SEQN", "SMQ020"])
    assert isinstance(excinfo.value.__cause__, ValueError)


def test_xpt_zero_artifact_and_lowercase_columns_are_repaired(tmp_path, monkeypatch):
    tables = {
        "P_BPQ": pd.DataFrame(
            {"seqn": [10.0, 11.0, np.nan], "bpq020": [5.397605346934028e-79, 1.0, 2.0]}
        )
    }
    sources = {"P_BPQ": SOURCE_FILES["P_BPQ"]}
    monkeypatch.setattr(pd, "read_sas", fake_read_sas_factory(tables, sources, tmp_path))
    out = load_extract("P_BPQ", tmp_path, file_name="P_BPQ.XPT", columns=["SEQN", "BPQ020"])
    assert out["SEQN"].tolist() == [10, 11]
    assert out["BPQ020"].iloc[0] == 0.0
    assert out["BPQ020"].iloc[1] == 1.0


def test_validate_data_dir(tmp_path):
    assert validate_data_dir(tmp_path) == tmp_path.resolve()
    with pytest.raises(ValueError, match="empty"):
        validate_data_dir("  ")
    with pytest.raises(ValueError, match="does not exist"):
        validate_data_dir(tmp_path / "nope")
