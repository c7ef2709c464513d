from __future__ import annotations

import logging

import numpy as np
import pandas as pd
import pytest
from conftest import make_design_frame
from scipy import stats

from nhanes_breast_pipeline.survey import (
    SurveyDesign,
    SurveyFitError,
    build_formula,
    categorical_term,
    coef_table,
    design_degrees_of_freedom,
    domain_means,
    linearized_covariance,
    survey_linear_regression,
    survey_logistic_regression,
    wald_test,
    weighted_crosstab,
    weighted_proportions,
)


def _clustered_frame() -> pd.DataFrame:
    # Two strata, two PSUs each; every PSU is internally homogeneous.
    y = [1.0] * 4 + [5.0] * 4 + [2.0] * 4 + [6.0] * 4
    return make_design_frame(
        {"y": y},
        strata=[1] * 8 + [2] * 8,
        psu=[1] * 4 + [2] * 4 + [1] * 4 + [2] * 4,
    )


def _logistic_frame(seed: int = 11) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    n = 400
    x = rng.integers(0, 2, size=n)
    y = (rng.random(n) < np.where(x == 1, 0.6, 0.3)).astype(float)
    return make_design_frame(
        {"x": x, "y": y},
        strata=np.repeat([1, 2, 3, 4], 100).tolist(),
        psu=np.tile(np.repeat([1, 2], 50), 4).tolist(),
        weights=rng.uniform(500, 1500, size=n).tolist(),
    )


def test_design_degrees_of_freedom(design, caplog):
    assert design_degrees_of_freedom(_clustered_frame(), design) == 2
    single = make_design_frame({"y": [1.0, 2.0]}, strata=[1, 1], psu=[1, 1])
    with caplog.at_level(logging.WARNING):
        assert design_degrees_of_freedom(single, design) == 1
    assert "using 1 degree of freedom" in caplog.text


def test_linearized_covariance_with_lonely_psu(design):
    df = make_design_frame({"z": [1.0, 3.0, 8.0]}, strata=[1, 1, 2], psu=[1, 2, 1])
    # Stratum 1: 2/(2-1) * (1 + 1); lonely stratum 2: (8 - 4)^2 around the grand mean.
    assert linearized_covariance(df["z"].to_numpy(), df, design)[0, 0] == pytest.approx(20.0)


def test_clustered_domain_mean_has_large_design_effect(design):
    out = domain_means(_clustered_frame(), "y", design)
    row = out.iloc[0]
    assert row["mean"] == pytest.approx(3.5)
    assert row["std_error"] == pytest.approx(np.sqrt(2.0))
    assert row["naive_std_error"] == pytest.approx(0.5323, abs=1e-4)
    assert row["std_error"] > row["naive_std_error"]
    assert row["design_effect"] == pytest.approx(2.0 / row["naive_std_error"] ** 2)
    crit = stats.t.ppf(0.975, 2)
    assert row["ci_low"] == pytest.approx(3.5 - crit * np.sqrt(2.0))
    assert row["ci_high"] == pytest.approx(3.5 + crit * np.sqrt(2.0))


def test_domain_means_with_singleton_stratum_is_finite(design):
    df = make_design_frame(
        {"y": [1.0, 2.0, 3.0, 4.0, 5.0]},
        strata=[1, 1, 1, 1, 2],
        psu=[1, 1, 2, 2, 1],
    )
    row = domain_means(df, "y", design).iloc[0]
    assert row["mean"] == pytest.approx(3.0)
    assert np.isfinite(row["std_error"]) and row["std_error"] > 0


def test_domain_means_with_one_cluster_per_stratum(design, caplog):
    df = make_design_frame(
        {"y": [1.0, 2.0, 5.0, 7.0], "g": [0.0, 1.0, 0.0, 1.0]},
        strata=[1, 1, 2, 2],
        psu=[1, 1, 1, 1],
    )
    with caplog.at_level(logging.WARNING):
        overall = domain_means(df, "y", design).iloc[0]
        by_group = domain_means(df, "y", design, domain="g", levels=[0.0, 1.0]).set_index("level")

    assert overall["mean"] == pytest.approx(np.average(df["y"], weights=df["WTMECPRP"]))
    # Both lonely PSUs sit 1.125 away from the grand mean of PSU totals.
    assert overall["std_error"] == pytest.approx(np.sqrt(2.0 * 1.125**2))
    assert overall["naive_std_error"] == pytest.approx(np.std(df["y"], ddof=1) / 2.0)
    assert overall["std_error"] > overall["naive_std_error"]
    assert overall["df"] == 1
    assert "using 1 degree of freedom" in caplog.text

    for level, expected in ((0.0, 3.0), (1.0, 4.5)):
        row = by_group.loc[level]
        sub = df.loc[df["g"] == level]
        assert row["mean"] == pytest.approx(expected)
        assert row["mean"] == pytest.approx(np.average(sub["y"], weights=sub["WTMECPRP"]))
        assert np.isfinite(row["std_error"]) and row["std_error"] > 0


def test_domain_means_match_weighted_means_by_level(design):
    rng = np.random.default_rng(3)
    n = 200
    df = make_design_frame(
        {"y": rng.normal(50, 10, n), "g": rng.integers(0, 2, n).astype(float)},
        strata=np.repeat([1, 2, 3, 4], 50).tolist(),
        psu=np.tile([1, 2], 100).tolist(),
        weights=rng.uniform(1, 5, n).tolist(),
    )
    df.loc[:9, "y"] = np.nan
    out = domain_means(df, "y", design, domain="g", levels=[0.0, 1.0]).set_index("level")
    for level in (0.0, 1.0):
        sub = df.loc[(df["g"] == level) & df["y"].notna()]
        assert out.loc[level, "mean"] == pytest.approx(np.average(sub["y"], weights=sub["WTMECPRP"]))
        assert out.loc[level, "n"] == len(sub)
        assert out.loc[level, "ci_low"] < out.loc[level, "mean"] < out.loc[level, "ci_high"]


def test_weighted_proportions_sum_to_one_hundred(design):
    df = make_design_frame(
        {"v": [0.0, 1.0, 1.0, np.nan, 0.0, 1.0]},
        strata=[1, 1, 1, 2, 2, 2],
        psu=[1, 2, 2, 1, 2, 2],
        weights=[1.0, 2.0, 1.0, 5.0, 1.0, 3.0],
    )
    out = weighted_proportions(df, "v", design, levels=[0.0, 1.0])
    assert out["percent"].sum() == pytest.approx(100.0)
    # Missing row excluded from the denominator.
    assert out.loc[out["level"] == 1.0, "percent"].iloc[0] == pytest.approx(100.0 * 6.0 / 8.0)


def test_design_validation(design):
    df = _clustered_frame()
    df.loc[0, "WTMECPRP"] = -1.0
    with pytest.raises(ValueError, match="Negative"):
        domain_means(df, "y", design)
    df.loc[0, "WTMECPRP"] = np.nan
    with pytest.raises(ValueError, match="missing"):
        domain_means(df, "y", design)
    with pytest.raises(KeyError):
        domain_means(df.drop(columns=["SDMVPSU"]), "y", design)


def _independent_table() -> pd.DataFrame:
    x = [0.0] * 40 + [1.0] * 80
    y = [0.0] * 30 + [1.0] * 10 + [0.0] * 60 + [1.0] * 20
    n = len(x)
    return make_design_frame({"x": x, "y": y}, strata=[1] * n, psu=list(range(1, n + 1)))


def test_crosstab_on_exactly_independent_table(design):
    result = weighted_crosstab(_independent_table(), "x", "y", design, row_levels=[0.0, 1.0], col_levels=[0.0, 1.0])
    test = result.test
    assert test["pearson_chisq"] == pytest.approx(0.0, abs=1e-10)
    # With one observation per PSU every cell design effect is n/(n-1).
    assert test["design_effect"] == pytest.approx(120.0 / 119.0)
    assert test["p_value"] == pytest.approx(1.0)
    assert (test["df_num"], test["df_den"]) == (1, 119)

    cells = result.cells.set_index(["row_level", "col_level"])
    assert cells.loc[(0.0, 1.0), "row_percent"] == pytest.approx(25.0)
    assert cells.loc[(1.0, 1.0), "row_percent"] == pytest.approx(25.0)
    assert result.cells["percent"].sum() == pytest.approx(100.0)
    assert result.cells["n"].sum() == 120


def test_crosstab_detects_strong_association(design):
    df = _independent_table()
    df["y"] = df["x"]
    df.loc[:4, "y"] = 1.0
    test = weighted_crosstab(df, "x", "y", design).test
    assert test["f_value"] > 50
    assert test["p_value"] < 0.001
    assert test["rao_scott_chisq"] == pytest.approx(test["pearson_chisq"] / test["design_effect"])


def test_crosstab_needs_two_levels(design):
    df = _independent_table()
    df["y"] = 0.0
    with pytest.raises(SurveyFitError, match="at least two levels"):
        weighted_crosstab(df, "x", "y", design)


def test_build_formula_with_interaction():
    race = categorical_term("race3", [1, 2, 3])
    assert race == "C(race3, Treatment(reference=1))"
    formula = build_formula("y", continuous=["age"], categorical={"race3": race}, interactions=[("age", "race3")])
    assert formula == "y ~ age + C(race3, Treatment(reference=1)) + age:C(race3, Treatment(reference=1))"
    assert build_formula("y") == "y ~ 1"
    assert categorical_term("x", [0, 1, 2], explicit_levels=True) == "C(x, Treatment(reference=0), levels=[0, 1, 2])"


def test_linear_regression_recovers_interaction_slopes(design):
    age = np.tile(np.arange(20.0, 80.0, 3.0), 3)
    race3 = np.repeat([1.0, 2.0, 3.0], 20)
    y = 1.0 + 0.5 * age + 2.0 * (race3 == 2) + 0.1 * age * (race3 == 3)
    df = make_design_frame(
        {"y": y, "age": age, "race3": race3},
        strata=np.tile(np.repeat([1, 2, 3], 2), 10).tolist(),
        psu=np.tile([1, 2], 30).tolist(),
    )
    df.loc[0, "race3"] = np.nan
    fit = survey_linear_regression(
        df,
        "y",
        design,
        continuous=["age"],
        categorical=["race3"],
        interactions=[("age", "race3")],
        levels={"race3": [1.0, 2.0, 3.0]},
    )
    effects = fit.extra["effects"]
    assert effects["race3"] == ["C(race3, Treatment(reference=1))[T.2]", "C(race3, Treatment(reference=1))[T.3]"]
    assert effects["age*race3"] == [
        "age:C(race3, Treatment(reference=1))[T.2]",
        "age:C(race3, Treatment(reference=1))[T.3]",
    ]
    assert fit.n == 59
    assert fit.params["age"] == pytest.approx(0.5)
    assert fit.params[effects["race3"][0]] == pytest.approx(2.0)
    assert fit.params[effects["age*race3"][0]] == pytest.approx(0.0, abs=1e-8)
    assert fit.params[effects["age*race3"][1]] == pytest.approx(0.1)


def test_interaction_without_main_effect_raises(design):
    df = _logistic_frame()
    df["age"] = np.linspace(20.0, 80.0, len(df))
    with pytest.raises(SurveyFitError, match="needs its main effect"):
        survey_logistic_regression(df, "y", design, continuous=["age"], interactions=[("age", "x")])


def test_linear_regression_on_binary_predictor_recovers_weighted_means(design):
    rng = np.random.default_rng(5)
    n = 300
    g = rng.integers(0, 2, n).astype(float)
    df = make_design_frame(
        {"y": 10 + 3 * g + rng.normal(0, 2, n), "g": g},
        strata=np.repeat([1, 2, 3], 100).tolist(),
        psu=np.tile([1, 2], 150).tolist(),
        weights=rng.uniform(100, 300, n).tolist(),
    )
    fit = survey_linear_regression(df, "y", design, categorical=["g"], levels={"g": [0.0, 1.0]})
    assert fit.extra["effects"]["g"] == ["C(g, Treatment(reference=0))[T.1]"]
    means = {lvl: np.average(df.loc[df["g"] == lvl, "y"], weights=df.loc[df["g"] == lvl, "WTMECPRP"]) for lvl in (0.0, 1.0)}
    assert fit.params["Intercept"] == pytest.approx(means[0.0])
    assert fit.params[fit.extra["effects"]["g"][0]] == pytest.approx(means[1.0] - means[0.0])
    assert fit.df_design == 3
    assert np.all(fit.std_errors > 0)
    np.testing.assert_allclose(fit.cov.to_numpy(), fit.cov.to_numpy().T)


def test_intercept_only_regression_matches_domain_mean(design):
    df = _clustered_frame()
    df["WTMECPRP"] = np.linspace(1.0, 4.0, len(df))
    fit = survey_linear_regression(df, "y", design)
    mean_row = domain_means(df, "y", design).iloc[0]
    assert fit.params["Intercept"] == pytest.approx(mean_row["mean"])
    assert fit.std_errors["Intercept"] == pytest.approx(mean_row["std_error"])


def test_logistic_matches_closed_form_odds_ratio(design):
    df = _logistic_frame()
    w = df["WTMECPRP"]
    a = w[(df["x"] == 1) & (df["y"] == 1)].sum()
    b = w[(df["x"] == 1) & (df["y"] == 0)].sum()
    c = w[(df["x"] == 0) & (df["y"] == 1)].sum()
    d = w[(df["x"] == 0) & (df["y"] == 0)].sum()

    fit = survey_logistic_regression(df, "y", design, categorical=["x"], label="closed_form")
    term = fit.extra["effects"]["x"][0]
    assert fit.params[term] == pytest.approx(np.log(a * d / (b * c)), rel=1e-6, abs=1e-8)
    assert fit.params["Intercept"] == pytest.approx(np.log(c / d), rel=1e-6, abs=1e-8)
    assert fit.converged
    assert fit.extra["events"] == int(df["y"].sum())

    table = coef_table(fit).set_index("term")
    assert table.loc[term, "or"] == pytest.approx(a * d / (b * c), rel=1e-6)
    assert table.loc[term, "ci_low"] < table.loc[term, "or"] < table.loc[term, "ci_high"]
    assert (table["effect_type"] == "OR").all()
    assert (table["df"] == 4).all()


def test_wald_test_single_term_matches_t_test(design):
    fit = survey_logistic_regression(_logistic_frame(), "y", design, categorical=["x"])
    table = coef_table(fit).set_index("term")
    term = fit.extra["effects"]["x"][0]
    result = wald_test(fit, [term])
    assert result["wald_chisq"] == pytest.approx(table.loc[term, "t_value"] ** 2)
    assert result["p_value"] == pytest.approx(table.loc[term, "p_value"])
    assert (result["df_num"], result["df_den"]) == (1, 4)
    with pytest.raises(SurveyFitError, match="not in model"):
        wald_test(fit, ["z[T.1]"])


def test_logistic_perfect_separation_raises(design):
    df = _logistic_frame()
    df["y"] = df["x"].astype(float)
    with pytest.raises(SurveyFitError) as excinfo:
        survey_logistic_regression(df, "y", design, categorical=["x"], label="separated")
    assert excinfo.value.label == "separated"


def test_logistic_rank_deficient_design_raises(design):
    df = _logistic_frame()
    with pytest.raises(SurveyFitError, match="rank deficient"):
        survey_logistic_regression(df, "y", design, categorical=["x"], levels={"x": [0, 1, 2]})


def test_logistic_non_convergence_raises(design):
    with pytest.raises(SurveyFitError, match="did not converge"):
        survey_logistic_regression(_logistic_frame(), "y", design, categorical=["x"], maxiter=1)


def test_logistic_rejects_non_binary_outcome(design):
    df = _logistic_frame()
    df.loc[0, "y"] = 2.0
    with pytest.raises(SurveyFitError, match="0/1"):
        survey_logistic_regression(df, "y", design, categorical=["x"])
