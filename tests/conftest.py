from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from nhanes_breast_pipeline.config import COLLAPSES, CONFIG, KEEP_RAW, RECODES, SOURCE_FILES
from nhanes_breast_pipeline.loader import load_all_extracts
from nhanes_breast_pipeline.merge import build_analytic_frame
from nhanes_breast_pipeline.recode import derive_all
from nhanes_breast_pipeline.survey import SurveyDesign
from nhanes_breast_pipeline.synthetic import fake_read_sas_factory, make_raw_extracts


@pytest.fixture(scope="session")
def raw_tables() -> dict[str, pd.DataFrame]:
    return make_raw_extracts(n=3000, seed=7)


@pytest.fixture
def design() -> SurveyDesign:
    return SurveyDesign(strata="SDMVSTRA", psu="SDMVPSU", weight="WTMECPRP")


@pytest.fixture
def pipeline_config(tmp_path, raw_tables, monkeypatch) -> dict:
    data_dir = tmp_path / "xpt"
    monkeypatch.setattr(pd, "read_sas", fake_read_sas_factory(raw_tables, SOURCE_FILES, data_dir))
    config = dict(CONFIG)
    config["data_dir"] = str(data_dir)
    config["output_dir"] = str(tmp_path / "outputs")
    config["print_tables"] = False
    return config


@pytest.fixture
def loaded_tables(pipeline_config) -> dict[str, pd.DataFrame]:
    return load_all_extracts(pipeline_config["data_dir"], SOURCE_FILES)


@pytest.fixture
def derived_tables(loaded_tables) -> dict[str, pd.DataFrame]:
    return derive_all(loaded_tables, RECODES, KEEP_RAW)


@pytest.fixture
def merge_result(derived_tables, pipeline_config):
    return build_analytic_frame(derived_tables, pipeline_config, COLLAPSES)


def make_design_frame(
    values: dict[str, list[float]],
    *,
    strata: list[int],
    psu: list[int],
    weights: list[float] | None = None,
) -> pd.DataFrame:
    n = len(strata)
    frame = pd.DataFrame(values)
    frame["SDMVSTRA"] = strata
    frame["SDMVPSU"] = psu
    frame["WTMECPRP"] = weights if weights is not None else np.ones(n)
    return frame
