"""Analysis checklist for the breast cancer survey analyses."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping

import numpy as np
import pandas as pd

from .reliability import flag_unreliable, model_is_estimable
from .survey import (
    SurveyDesign,
    SurveyFit,
    SurveyFitError,
    coef_table,
    domain_means,
    survey_linear_regression,
    survey_logistic_regression,
    wald_test,
    weighted_crosstab,
    weighted_proportions,
)

BINARY_LABELS = {0: "No", 1: "Yes"}


@dataclass(frozen=True)
class AnalysisSpec:
    label: str
    kind: str
    variables: tuple[str, ...]
    options: Mapping[str, object] = field(default_factory=dict)


@dataclass
class AnalysisBundle:
    descriptive_overall: pd.DataFrame
    descriptive_by_outcome: pd.DataFrame
    crosstabs: pd.DataFrame
    chisq_tests: pd.DataFrame
    domain_means: pd.DataFrame
    linear_regressions: pd.DataFrame
    logistic_models: dict[str, pd.DataFrame]
    wald_tests: pd.DataFrame
    logit_diagnostics: pd.DataFrame
    failures: pd.DataFrame
    notes: list[str]
    artifacts: dict[str, object]


def build_checklist(config: dict) -> list[AnalysisSpec]:
    outcome = config["outcome"]
    categorical = [*config["binary_predictors"], *config["multilevel_predictors"]]
    continuous = list(config["continuous_variables"])
    specs: list[AnalysisSpec] = [
        AnalysisSpec(
            label="descriptive_overall",
            kind="descriptive",
            variables=(outcome, *categorical, *continuous),
        ),
        AnalysisSpec(
            label="descriptive_by_outcome",
            kind="descriptive",
            variables=(*categorical, *continuous),
            options={"domain": outcome},
        ),
    ]
    for predictor in categorical:
        specs.append(
            AnalysisSpec(
                label=f"chisq_{predictor}",
                kind="crosstab",
                variables=(predictor, outcome),
            )
        )
    specs.append(
        AnalysisSpec(
            label="domain_means",
            kind="domain_means",
            variables=tuple(continuous),
            options={"domain": outcome},
        )
    )
    for var in continuous:
        specs.append(
            AnalysisSpec(
                label=f"linear_{var}",
                kind="linear",
                variables=(var,),
                options={"categorical": [outcome]},
            )
        )
    for label, model in config["logistic_models"].items():
        specs.append(
            AnalysisSpec(
                label=label,
                kind="logistic",
                variables=(outcome,),
                options={
                    "categorical": list(model.get("categorical", [])),
                    "continuous": list(model.get("continuous", [])),
                    "interactions": [tuple(x) for x in model.get("interactions", [])],
                },
            )
        )
    return specs


def _level_label(var: str, level: object, labels: Mapping[str, Mapping[int, str]]) -> str:
    if pd.isna(level):
        return "Missing"
    try:
        code = int(level)
    except (TypeError, ValueError):
        return str(level)
    if var in labels and code in labels[var]:
        return labels[var][code]
    return BINARY_LABELS.get(code, str(level))


def _levels_for(var: str, df: pd.DataFrame, config: dict) -> list[object]:
    configured = config.get("categorical_levels", {}).get(var)
    if configured:
        return [float(x) for x in configured]
    if var in config["binary_predictors"] or var == config["outcome"]:
        return [0.0, 1.0]
    return sorted(df[var].dropna().unique().tolist())


def _run_descriptive(spec: AnalysisSpec, df: pd.DataFrame, design: SurveyDesign, config: dict) -> dict[str, pd.DataFrame]:
    domain = spec.options.get("domain")
    domain_levels = _levels_for(str(domain), df, config) if domain else None
    alpha = float(config["alpha"])
    labels = config.get("level_labels", {})
    continuous = set(config["continuous_variables"])

    frames: list[pd.DataFrame] = []
    for var in spec.variables:
        if var in continuous:
            tab = domain_means(df, var, design, domain=domain, levels=domain_levels, alpha=alpha)
            tab = tab.rename(columns={"level": "domain_level"})
            tab["stat"] = "mean"
            tab["level"] = ""
            tab["estimate"] = tab["mean"]
        else:
            tab = weighted_proportions(
                df,
                var,
                design,
                domain=domain,
                domain_levels=domain_levels,
                levels=_levels_for(var, df, config),
                alpha=alpha,
            )
            tab["stat"] = "percent"
            tab["estimate"] = tab["percent"]
            tab["level"] = [_level_label(var, lvl, labels) for lvl in tab["level"]]
        frames.append(tab)

    cols = ["variable", "domain", "domain_level", "level", "stat", "n", "weighted_n", "estimate", "std_error", "ci_low", "ci_high"]
    out = pd.concat(frames, ignore_index=True, sort=False)[cols]
    out.insert(0, "analysis", spec.label)
    out = flag_unreliable(
        out,
        min_n=int(config["reliability_min_n"]),
        max_rse=float(config["reliability_max_rse"]),
        estimate_column="estimate",
    )
    return {spec.label: out}


def _run_crosstab(spec: AnalysisSpec, df: pd.DataFrame, design: SurveyDesign, config: dict) -> dict[str, pd.DataFrame]:
    row, col = spec.variables
    result = weighted_crosstab(
        df,
        row,
        col,
        design,
        label=spec.label,
        row_levels=_levels_for(row, df, config),
        col_levels=_levels_for(col, df, config),
    )
    labels = config.get("level_labels", {})
    cells = result.cells.copy()
    cells["row_label"] = [_level_label(row, lvl, labels) for lvl in cells["row_level"]]
    cells["col_label"] = [_level_label(col, lvl, labels) for lvl in cells["col_level"]]
    cells = flag_unreliable(
        cells,
        min_n=int(config["reliability_min_n"]),
        max_rse=float(config["reliability_max_rse"]),
        estimate_column="row_percent",
        se_column="row_percent_se",
    )
    return {"crosstabs": cells, "chisq_tests": pd.DataFrame([result.test])}


def _run_domain_means(spec: AnalysisSpec, df: pd.DataFrame, design: SurveyDesign, config: dict) -> dict[str, pd.DataFrame]:
    domain = str(spec.options["domain"])
    levels = _levels_for(domain, df, config)
    frames = [
        domain_means(df, var, design, domain=domain, levels=levels, alpha=float(config["alpha"]))
        for var in spec.variables
    ]
    out = pd.concat(frames, ignore_index=True, sort=False)
    out.insert(0, "analysis", spec.label)
    out = flag_unreliable(
        out,
        min_n=int(config["reliability_min_n"]),
        max_rse=float(config["reliability_max_rse"]),
        estimate_column="mean",
    )
    return {"domain_means": out}


def _run_linear(spec: AnalysisSpec, df: pd.DataFrame, design: SurveyDesign, config: dict) -> dict[str, pd.DataFrame]:
    (outcome,) = spec.variables
    categorical = [str(x) for x in spec.options.get("categorical", [])]
    fit = survey_linear_regression(
        df,
        outcome,
        design,
        categorical=categorical,
        levels={var: _levels_for(var, df, config) for var in categorical},
        label=spec.label,
        condition_limit=float(config["singular_condition_limit"]),
    )
    tab = coef_table(fit, alpha=float(config["alpha"]))
    tab.insert(1, "outcome", outcome)
    tab["r_squared"] = fit.extra.get("r_squared", np.nan)
    return {"linear_regressions": tab}


def _logit_diagnostics(fit: SurveyFit, config: dict) -> pd.DataFrame:
    events = int(fit.extra.get("events", 0))
    n_params = int(len(fit.params))
    epv = min(events, fit.n - events) / max(n_params - 1, 1)
    epv_warn = float(config.get("logit_events_per_parameter_warn_threshold", 10.0))
    logging.info("%s: n=%s events=%s parameters=%s EPV=%.3f", fit.label, fit.n, events, n_params, epv)
    if epv < epv_warn:
        logging.warning("%s: low events-per-parameter (%.3f < %.3f)", fit.label, epv, epv_warn)
    return pd.DataFrame(
        [
            {
                "analysis": fit.label,
                "n": fit.n,
                "events": events,
                "nonevents": fit.n - events,
                "event_rate": events / fit.n if fit.n else np.nan,
                "weighted_event_rate": float(fit.extra.get("weighted_events", np.nan)) / fit.weighted_n
                if fit.weighted_n
                else np.nan,
                "n_parameters": n_params,
                "events_per_parameter": epv,
                "iterations": fit.iterations,
                "df_design": fit.df_design,
            }
        ]
    )


def _effect_wald_tests(fit: SurveyFit) -> pd.DataFrame:
    """Joint Wald test for every categorical effect and interaction recorded on the fit."""
    rows: list[dict[str, object]] = []
    for name, effect in dict(fit.extra.get("effects", {})).items():
        label = f"{fit.label}:{name}"
        if not effect:
            continue
        try:
            rows.append(wald_test(fit, effect, label=label))
        except SurveyFitError as exc:
            logging.error("Wald test failed: %s", exc)
            rows.append({"analysis": label, "model": fit.label, "terms": ", ".join(effect), "error": exc.reason})
    return pd.DataFrame(rows)


def _run_logistic(spec: AnalysisSpec, df: pd.DataFrame, design: SurveyDesign, config: dict) -> dict[str, pd.DataFrame]:
    (outcome,) = spec.variables
    categorical = [str(x) for x in spec.options.get("categorical", [])]
    continuous = [str(x) for x in spec.options.get("continuous", [])]
    interactions = [(str(a), str(b)) for a, b in spec.options.get("interactions", [])]

    n = int(df[outcome].notna().sum())
    events = int((df[outcome] == 1).sum())
    ok, reason = model_is_estimable(n, events, int(config["reliability_min_n"]))
    if not ok:
        raise SurveyFitError(spec.label, reason)

    fit = survey_logistic_regression(
        df,
        outcome,
        design,
        continuous=continuous,
        categorical=categorical,
        interactions=interactions,
        levels={var: _levels_for(var, df, config) for var in categorical},
        label=spec.label,
        maxiter=int(config["irls_maxiter"]),
        tol=float(config["irls_tol"]),
        condition_limit=float(config["singular_condition_limit"]),
    )
    return {
        spec.label: coef_table(fit, alpha=float(config["alpha"])),
        "wald_tests": _effect_wald_tests(fit),
        "logit_model_diagnostics": _logit_diagnostics(fit, config),
    }


RUNNERS: dict[str, Callable[[AnalysisSpec, pd.DataFrame, SurveyDesign, dict], dict[str, pd.DataFrame]]] = {
    "descriptive": _run_descriptive,
    "crosstab": _run_crosstab,
    "domain_means": _run_domain_means,
    "linear": _run_linear,
    "logistic": _run_logistic,
}


def run_analysis(spec: AnalysisSpec, df: pd.DataFrame, design: SurveyDesign, config: dict) -> dict[str, pd.DataFrame]:
    runner = RUNNERS.get(spec.kind)
    if runner is None:
        raise ValueError(f"Unknown analysis kind: {spec.kind}")
    logging.info("Running analysis: %s (%s)", spec.label, spec.kind)
    return runner(spec, df, design, config)


def _concat(frames: list[pd.DataFrame]) -> pd.DataFrame:
    frames = [f for f in frames if not f.empty]
    if not frames:
        return pd.DataFrame()
    return pd.concat(frames, ignore_index=True, sort=False)


def run_all_analyses(
    analytic_df: pd.DataFrame,
    config: dict,
    *,
    checklist: list[AnalysisSpec] | None = None,
    level_labels: Mapping[str, Mapping[int, str]] | None = None,
) -> AnalysisBundle:
    cfg = dict(config)
    if level_labels is not None:
        cfg["level_labels"] = level_labels
    design = SurveyDesign.from_config(cfg)
    specs = checklist if checklist is not None else build_checklist(cfg)

    notes: list[str] = []
    tables: dict[str, list[pd.DataFrame]] = {}
    failures: list[dict[str, object]] = []
    for spec in specs:
        try:
            produced = run_analysis(spec, analytic_df, design, cfg)
        except Exception as exc:
            logging.error("Analysis failed: %s (%s)", spec.label, exc)
            failures.append({"analysis": spec.label, "kind": spec.kind, "error": str(exc)})
            notes.append(f"{spec.label}: analysis failed ({exc}).")
            continue
        for name, table in produced.items():
            tables.setdefault(name, []).append(table)

    logistic_models = {
        spec.label: _concat(tables.get(spec.label, []))
        for spec in specs
        if spec.kind == "logistic"
    }
    if failures:
        logging.warning("%s of %s analyses failed; see analysis_failures.csv.", len(failures), len(specs))

    return AnalysisBundle(
        descriptive_overall=_concat(tables.get("descriptive_overall", [])),
        descriptive_by_outcome=_concat(tables.get("descriptive_by_outcome", [])),
        crosstabs=_concat(tables.get("crosstabs", [])),
        chisq_tests=_concat(tables.get("chisq_tests", [])),
        domain_means=_concat(tables.get("domain_means", [])),
        linear_regressions=_concat(tables.get("linear_regressions", [])),
        logistic_models=logistic_models,
        wald_tests=_concat(tables.get("wald_tests", [])),
        logit_diagnostics=_concat(tables.get("logit_model_diagnostics", [])),
        failures=pd.DataFrame(failures, columns=["analysis", "kind", "error"]),
        notes=notes,
        artifacts={"analysis_df": analytic_df, "checklist": specs, "design": design},
    )
