"""Design-based (Taylor linearization) estimators for stratified, clustered, weighted samples.

Every estimator reduces to per-observation linearized scores ``z_i``. Their
design variance is the between-PSU, within-stratum variance of PSU totals,

    V = sum_h n_h / (n_h - 1) * sum_j (z_hj - zbar_h)(z_hj - zbar_h)'

with PSUs treated as sampled with replacement. Rows that fall outside a
domain (or are missing the analysis variable) keep their place in the design
with zero scores, so strata and PSUs are never silently dropped.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

import numpy as np
import pandas as pd
import statsmodels.api as sm
import statsmodels.formula.api as smf
from scipy import stats
from statsmodels.tools.sm_exceptions import ConvergenceWarning, PerfectSeparationError, PerfectSeparationWarning


class SurveyFitError(RuntimeError):
    """A model or test could not be estimated (non-convergence, singular information, degenerate table)."""

    def __init__(self, label: str, reason: str):
        super().__init__(f"{label}: {reason}")
        self.label = label
        self.reason = reason


@dataclass(frozen=True)
class SurveyDesign:
    strata: str
    psu: str
    weight: str

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> "SurveyDesign":
        return cls(
            strata=str(config["strata_column"]),
            psu=str(config["psu_column"]),
            weight=str(config["weight_column"]),
        )

    def validate(self, df: pd.DataFrame) -> None:
        cols = [self.strata, self.psu, self.weight]
        absent = [c for c in cols if c not in df.columns]
        if absent:
            raise KeyError(f"Design columns not in frame: {', '.join(absent)}")
        if df[cols].isna().any().any():
            raise ValueError("Design columns contain missing values.")
        if (df[self.weight] < 0).any():
            raise ValueError(f"Negative values in weight column {self.weight}.")

    def weights(self, df: pd.DataFrame) -> np.ndarray:
        return df[self.weight].to_numpy(dtype=float)


@dataclass
class SurveyFit:
    label: str
    kind: str
    params: pd.Series
    cov: pd.DataFrame
    df_design: int
    n: int
    weighted_n: float
    iterations: int | None = None
    converged: bool = True
    extra: dict[str, object] = field(default_factory=dict)

    @property
    def std_errors(self) -> pd.Series:
        return pd.Series(np.sqrt(np.diag(self.cov.to_numpy())), index=self.params.index)


def design_degrees_of_freedom(df: pd.DataFrame, design: SurveyDesign) -> int:
    """Number of PSUs minus number of strata, floored at 1."""
    n_psu = int(df[[design.strata, design.psu]].drop_duplicates().shape[0])
    n_strata = int(df[design.strata].nunique())
    dof = n_psu - n_strata
    if dof < 1:
        logging.warning("Design has %s PSUs in %s strata; using 1 degree of freedom.", n_psu, n_strata)
        return 1
    return dof


def linearized_covariance(scores: np.ndarray, df: pd.DataFrame, design: SurveyDesign) -> np.ndarray:
    z = np.asarray(scores, dtype=float)
    if z.ndim == 1:
        z = z[:, None]
    k = z.shape[1]
    frame = pd.DataFrame(z, columns=[f"z{i}" for i in range(k)])
    frame["_stratum"] = df[design.strata].to_numpy()
    frame["_psu"] = df[design.psu].to_numpy()
    totals = frame.groupby(["_stratum", "_psu"], sort=True).sum()

    grand_mean = totals.to_numpy().mean(axis=0)
    cov = np.zeros((k, k))
    for _, block in totals.groupby(level="_stratum", sort=True):
        psu_totals = block.to_numpy()
        n_h = psu_totals.shape[0]
        if n_h > 1:
            dev = psu_totals - psu_totals.mean(axis=0)
            cov += (n_h / (n_h - 1.0)) * dev.T @ dev
        else:
            # Lonely PSU: center on the mean of all PSU totals.
            dev = psu_totals - grand_mean
            cov += dev.T @ dev
    return cov


def _t_interval(estimate: float, se: float, dof: int, alpha: float) -> tuple[float, float]:
    if not np.isfinite(se):
        return np.nan, np.nan
    crit = float(stats.t.ppf(1.0 - alpha / 2.0, dof))
    return estimate - crit * se, estimate + crit * se


def _two_sided_p_from_t(t_value: float, dof: int) -> float:
    if not np.isfinite(t_value):
        return np.nan
    return float(2.0 * stats.t.sf(abs(t_value), dof))


def _ratio_se(
    numerator_ind: np.ndarray,
    denominator_ind: np.ndarray,
    w: np.ndarray,
    df: pd.DataFrame,
    design: SurveyDesign,
) -> tuple[float, float]:
    """Estimate and linearized SE of sum(w * num) / sum(w * den)."""
    den_total = float(np.sum(w * denominator_ind))
    if den_total <= 0:
        return np.nan, np.nan
    ratio = float(np.sum(w * numerator_ind)) / den_total
    z = w * (numerator_ind - ratio * denominator_ind) / den_total
    var = float(linearized_covariance(z, df, design)[0, 0])
    return ratio, float(np.sqrt(max(var, 0.0)))


# ---------------------------------------------------------------------------
# Means and proportions
# ---------------------------------------------------------------------------


def domain_means(
    df: pd.DataFrame,
    variable: str,
    design: SurveyDesign,
    *,
    domain: str | None = None,
    levels: Sequence[object] | None = None,
    alpha: float = 0.05,
) -> pd.DataFrame:
    """Weighted mean of ``variable`` within each level of ``domain`` (or overall).

    Standard errors come from the full-sample design; ``naive_std_error`` is
    the unweighted independent-observation SE for comparison.
    """
    design.validate(df)
    w = design.weights(df)
    y = pd.to_numeric(df[variable], errors="coerce").to_numpy(dtype=float)
    has_y = ~np.isnan(y)
    y0 = np.where(has_y, y, 0.0)
    dof = design_degrees_of_freedom(df, design)

    if domain is None:
        groups: list[tuple[object, np.ndarray]] = [("overall", has_y)]
    else:
        dom = df[domain]
        lvls = list(levels) if levels is not None else sorted(dom.dropna().unique().tolist())
        groups = [(lvl, has_y & dom.eq(lvl).to_numpy()) for lvl in lvls]

    rows: list[dict[str, object]] = []
    for level, mask in groups:
        ind = mask.astype(float)
        n = int(mask.sum())
        row: dict[str, object] = {
            "variable": variable,
            "domain": domain or "overall",
            "level": level,
            "n": n,
            "weighted_n": float(np.sum(w * ind)),
        }
        if n == 0:
            row.update(
                mean=np.nan,
                std_error=np.nan,
                ci_low=np.nan,
                ci_high=np.nan,
                naive_std_error=np.nan,
                design_effect=np.nan,
                df=dof,
            )
            rows.append(row)
            continue
        mean, se = _ratio_se(y0 * ind, ind, w, df, design)
        ci_low, ci_high = _t_interval(mean, se, dof, alpha)
        naive_se = float(np.std(y[mask], ddof=1) / np.sqrt(n)) if n > 1 else np.nan
        row.update(
            mean=mean,
            std_error=se,
            ci_low=ci_low,
            ci_high=ci_high,
            naive_std_error=naive_se,
            design_effect=(se / naive_se) ** 2 if naive_se and np.isfinite(naive_se) else np.nan,
            df=dof,
        )
        rows.append(row)
    return pd.DataFrame(rows)


def weighted_proportions(
    df: pd.DataFrame,
    variable: str,
    design: SurveyDesign,
    *,
    domain: str | None = None,
    domain_levels: Sequence[object] | None = None,
    levels: Sequence[object] | None = None,
    alpha: float = 0.05,
) -> pd.DataFrame:
    """Weighted percent of each level of ``variable`` (optionally within domains)."""
    design.validate(df)
    w = design.weights(df)
    var = df[variable]
    has_var = var.notna().to_numpy()
    lvls = list(levels) if levels is not None else sorted(var.dropna().unique().tolist())
    dof = design_degrees_of_freedom(df, design)

    if domain is None:
        domains: list[tuple[object, np.ndarray]] = [("overall", has_var)]
    else:
        dom = df[domain]
        dlvls = list(domain_levels) if domain_levels is not None else sorted(dom.dropna().unique().tolist())
        domains = [(d, has_var & dom.eq(d).to_numpy()) for d in dlvls]

    rows: list[dict[str, object]] = []
    for dlevel, dmask in domains:
        den = dmask.astype(float)
        for lvl in lvls:
            num = (dmask & var.eq(lvl).to_numpy()).astype(float)
            p, se = _ratio_se(num, den, w, df, design)
            ci_low, ci_high = _t_interval(p, se, dof, alpha)
            rows.append(
                {
                    "variable": variable,
                    "domain": domain or "overall",
                    "domain_level": dlevel,
                    "level": lvl,
                    "n": int(num.sum()),
                    "weighted_n": float(np.sum(w * num)),
                    "percent": 100.0 * p,
                    "std_error": 100.0 * se,
                    "ci_low": 100.0 * ci_low,
                    "ci_high": 100.0 * ci_high,
                    "df": dof,
                }
            )
    return pd.DataFrame(rows)


# ---------------------------------------------------------------------------
# Two-way tables
# ---------------------------------------------------------------------------


@dataclass
class CrosstabResult:
    cells: pd.DataFrame
    test: dict[str, object]


def weighted_crosstab(
    df: pd.DataFrame,
    row: str,
    col: str,
    design: SurveyDesign,
    *,
    label: str | None = None,
    row_levels: Sequence[object] | None = None,
    col_levels: Sequence[object] | None = None,
) -> CrosstabResult:
    """Weighted R x C table with a first-order Rao-Scott corrected F test of independence."""
    label = label or f"{row}_x_{col}"
    design.validate(df)
    w_all = design.weights(df)
    valid = (df[row].notna() & df[col].notna()).to_numpy()
    w = np.where(valid, w_all, 0.0)
    n = int(valid.sum())
    rl = list(row_levels) if row_levels is not None else sorted(df.loc[valid, row].unique().tolist())
    cl = list(col_levels) if col_levels is not None else sorted(df.loc[valid, col].unique().tolist())
    if len(rl) < 2 or len(cl) < 2:
        raise SurveyFitError(label, f"need at least two levels per margin (got {len(rl)} x {len(cl)})")
    total_w = float(w.sum())
    if total_w <= 0:
        raise SurveyFitError(label, "no positive weight in table")

    valid_f = valid.astype(float)
    row_ind = {r: (valid & df[row].eq(r).to_numpy()).astype(float) for r in rl}
    col_ind = {c: (valid & df[col].eq(c).to_numpy()).astype(float) for c in cl}

    def _deff(ind: np.ndarray) -> tuple[float, float]:
        p, se = _ratio_se(ind, valid_f, w, df, design)
        srs_var = p * (1.0 - p) / n
        return p, (se * se / srs_var) if srs_var > 0 else np.nan

    p_r: dict[object, float] = {}
    d_r: dict[object, float] = {}
    for r in rl:
        p_r[r], d_r[r] = _deff(row_ind[r])
    p_c: dict[object, float] = {}
    d_c: dict[object, float] = {}
    for c in cl:
        p_c[c], d_c[c] = _deff(col_ind[c])
    if min(p_r.values()) <= 0 or min(p_c.values()) <= 0:
        raise SurveyFitError(label, "a table margin has zero weighted count")

    cells: list[dict[str, object]] = []
    pearson = 0.0
    deff_sum = 0.0
    for r in rl:
        for c in cl:
            ind = row_ind[r] * col_ind[c]
            p_rc, d_rc = _deff(ind)
            expected = p_r[r] * p_c[c]
            pearson += (p_rc - expected) ** 2 / expected
            if np.isfinite(d_rc):
                deff_sum += (1.0 - p_rc) * d_rc * p_rc / expected
            row_pct, row_pct_se = _ratio_se(ind, row_ind[r], w, df, design)
            _, cell_se = _ratio_se(ind, valid_f, w, df, design)
            cells.append(
                {
                    "analysis": label,
                    "row_var": row,
                    "row_level": r,
                    "col_var": col,
                    "col_level": c,
                    "n": int(ind.sum()),
                    "weighted_n": float(np.sum(w * ind)),
                    "percent": 100.0 * p_rc,
                    "percent_se": 100.0 * cell_se,
                    "row_percent": 100.0 * row_pct,
                    "row_percent_se": 100.0 * row_pct_se,
                }
            )
    pearson *= n
    deff_sum -= sum((1.0 - p_r[r]) * d_r[r] for r in rl if np.isfinite(d_r[r]))
    deff_sum -= sum((1.0 - p_c[c]) * d_c[c] for c in cl if np.isfinite(d_c[c]))

    df_num = (len(rl) - 1) * (len(cl) - 1)
    mean_deff = deff_sum / df_num
    if not np.isfinite(mean_deff) or mean_deff <= 0:
        raise SurveyFitError(label, f"non-positive mean design effect ({mean_deff:.4g})")
    dof = design_degrees_of_freedom(df, design)
    rao_scott = pearson / mean_deff
    f_value = rao_scott / df_num
    df_den = df_num * dof
    test = {
        "analysis": label,
        "row_var": row,
        "col_var": col,
        "n": n,
        "pearson_chisq": pearson,
        "design_effect": mean_deff,
        "rao_scott_chisq": rao_scott,
        "f_value": f_value,
        "df_num": df_num,
        "df_den": df_den,
        "p_value": float(stats.f.sf(f_value, df_num, df_den)),
    }
    logging.info("%s: F=%.3f on (%s, %s) df, p=%.4g", label, f_value, df_num, df_den, test["p_value"])
    return CrosstabResult(cells=pd.DataFrame(cells), test=test)


# ---------------------------------------------------------------------------
# Regression
# ---------------------------------------------------------------------------


def _integer_codes(values: pd.Series, wanted: list[object]) -> tuple[pd.Series, list[object]]:
    """Cast integer-valued numeric codes to int so formula terms read ``[T.2]`` rather than ``[T.2.0]``."""
    if not pd.api.types.is_numeric_dtype(values):
        return values, wanted
    numeric_levels = all(isinstance(lvl, (int, float, np.number)) and float(lvl).is_integer() for lvl in wanted)
    if numeric_levels and np.all(np.mod(values.to_numpy(dtype=float), 1.0) == 0):
        return values.astype(np.int64), [int(lvl) for lvl in wanted]
    return values, wanted


def categorical_term(var: str, levels: Sequence[object], *, explicit_levels: bool = False) -> str:
    """Treatment-coded formula term with the first level as reference."""
    ref = levels[0]
    if explicit_levels:
        return f"C({var}, Treatment(reference={ref!r}), levels={list(levels)!r})"
    return f"C({var}, Treatment(reference={ref!r}))"


def build_formula(
    outcome: str,
    *,
    continuous: Iterable[str] = (),
    categorical: Mapping[str, str] | None = None,
    interactions: Iterable[tuple[str, str]] = (),
) -> str:
    """Formula for ``outcome`` given numeric terms and ready-made categorical terms.

    Each interaction pairs a numeric variable with a key of ``categorical``
    and multiplies it by that variable's non-reference indicators.
    """
    cat_terms = dict(categorical or {})
    rhs = [*continuous, *cat_terms.values()]
    rhs += [f"{num}:{cat_terms[cat]}" for num, cat in interactions]
    return f"{outcome} ~ {' + '.join(rhs) if rhs else '1'}"


def effect_columns(
    names: Sequence[str],
    categorical: Iterable[str],
    interactions: Iterable[tuple[str, str]] = (),
) -> dict[str, list[str]]:
    """Group model columns into the categorical effects and interactions that produced them."""
    effects: dict[str, list[str]] = {}
    for var in categorical:
        effects[var] = [n for n in names if n.startswith(f"C({var},")]
    for num, cat in interactions:
        effects[f"{num}*{cat}"] = [n for n in names if n.startswith(f"{num}:C({cat},")]
    return effects


@dataclass
class _ModelInputs:
    data: pd.DataFrame
    formula: str
    weights: np.ndarray
    used: np.ndarray


def _prepare_regression(
    df: pd.DataFrame,
    outcome: str,
    design: SurveyDesign,
    *,
    label: str,
    continuous: Iterable[str],
    categorical: Iterable[str],
    interactions: Iterable[tuple[str, str]],
    levels: Mapping[str, Sequence[object]] | None,
) -> _ModelInputs:
    design.validate(df)
    continuous = list(continuous)
    categorical = list(categorical)
    interactions = [(str(num), str(cat)) for num, cat in interactions]
    missing_main = [cat for _, cat in interactions if cat not in categorical]
    if missing_main:
        raise SurveyFitError(label, f"interaction with {', '.join(missing_main)} needs its main effect")

    numeric_vars = list(dict.fromkeys([outcome, *continuous, *(num for num, _ in interactions)]))
    frame = pd.DataFrame(index=df.index)
    for var in numeric_vars:
        frame[var] = pd.to_numeric(df[var], errors="coerce").astype(float)
    for var in categorical:
        frame[var] = df[var]

    w_raw = design.weights(df)
    used = frame.notna().all(axis=1).to_numpy() & (w_raw > 0)
    if used.sum() < 2:
        raise SurveyFitError(label, f"only {int(used.sum())} usable rows")
    data = frame.loc[used].copy()

    cat_terms: dict[str, str] = {}
    for var in categorical:
        wanted = list(levels[var]) if levels and var in levels else sorted(data[var].unique().tolist())
        data[var], wanted = _integer_codes(data[var], wanted)
        observed = sorted(data[var].unique().tolist())
        outside = [lvl for lvl in observed if lvl not in wanted]
        if outside:
            raise SurveyFitError(label, f"{var} has levels outside {wanted}: {outside}")
        cat_terms[var] = categorical_term(var, wanted, explicit_levels=wanted != observed)

    formula = build_formula(outcome, continuous=continuous, categorical=cat_terms, interactions=interactions)
    # Rescaling weights leaves both the estimates and the sandwich covariance unchanged.
    w = np.where(used, w_raw / w_raw[used].mean(), 0.0)
    logging.debug("%s: %s", label, formula)
    return _ModelInputs(data=data, formula=formula, weights=w, used=used)


def _check_design(exog: np.ndarray, label: str) -> None:
    n, k = exog.shape
    if n <= k:
        raise SurveyFitError(label, f"only {n} usable rows for {k} parameters")
    rank = int(np.linalg.matrix_rank(exog))
    if rank < k:
        raise SurveyFitError(label, f"design matrix is rank deficient (rank {rank} < {k} columns)")


def _full_rows(values: np.ndarray, used: np.ndarray) -> np.ndarray:
    """Scatter model rows back to full-sample positions; unused rows are zero."""
    out = np.zeros((len(used), *values.shape[1:]))
    out[used] = values
    return out


def _invert_information(info: np.ndarray, label: str, condition_limit: float) -> np.ndarray:
    cond = float(np.linalg.cond(info))
    if not np.isfinite(cond) or cond > condition_limit:
        raise SurveyFitError(label, f"singular information matrix (condition number {cond:.3g})")
    try:
        return np.linalg.inv(info)
    except np.linalg.LinAlgError as exc:
        raise SurveyFitError(label, f"singular information matrix ({exc})") from exc


def _sandwich(
    scores: np.ndarray,
    info: np.ndarray,
    df: pd.DataFrame,
    design: SurveyDesign,
    label: str,
    condition_limit: float,
) -> np.ndarray:
    info_inv = _invert_information(info, label, condition_limit)
    meat = linearized_covariance(scores, df, design)
    return info_inv @ meat @ info_inv


def survey_linear_regression(
    df: pd.DataFrame,
    outcome: str,
    design: SurveyDesign,
    *,
    continuous: Iterable[str] = (),
    categorical: Iterable[str] = (),
    interactions: Iterable[tuple[str, str]] = (),
    levels: Mapping[str, Sequence[object]] | None = None,
    label: str | None = None,
    condition_limit: float = 1e12,
) -> SurveyFit:
    label = label or f"linear_{outcome}"
    categorical = list(categorical)
    interactions = list(interactions)
    inputs = _prepare_regression(
        df,
        outcome,
        design,
        label=label,
        continuous=continuous,
        categorical=categorical,
        interactions=interactions,
        levels=levels,
    )
    used, w = inputs.used, inputs.weights
    model = smf.wls(inputs.formula, data=inputs.data, weights=w[used])
    _check_design(model.exog, label)
    fit = model.fit()
    beta = fit.params.to_numpy()

    Xa = _full_rows(model.exog, used)
    y = _full_rows(model.endog, used)
    resid = np.where(used, y - Xa @ beta, 0.0)
    scores = (w * resid)[:, None] * Xa
    info = (Xa * w[:, None]).T @ Xa
    cov = _sandwich(scores, info, df, design, label, condition_limit)
    names = list(model.exog_names)
    return SurveyFit(
        label=label,
        kind="linear",
        params=pd.Series(beta, index=names),
        cov=pd.DataFrame(cov, index=names, columns=names),
        df_design=design_degrees_of_freedom(df, design),
        n=int(used.sum()),
        weighted_n=float(design.weights(df)[used].sum()),
        extra={
            "r_squared": float(fit.rsquared),
            "formula": inputs.formula,
            "effects": effect_columns(names, categorical, interactions),
        },
    )


def survey_logistic_regression(
    df: pd.DataFrame,
    outcome: str,
    design: SurveyDesign,
    *,
    continuous: Iterable[str] = (),
    categorical: Iterable[str] = (),
    interactions: Iterable[tuple[str, str]] = (),
    levels: Mapping[str, Sequence[object]] | None = None,
    label: str | None = None,
    maxiter: int = 100,
    tol: float = 1e-8,
    condition_limit: float = 1e12,
) -> SurveyFit:
    """Weighted maximum-likelihood logistic regression (IRLS) with linearized covariance.

    Raises ``SurveyFitError`` on non-convergence, perfect separation or a
    singular information matrix; no placeholder estimates are returned.
    """
    label = label or f"logistic_{outcome}"
    categorical = list(categorical)
    interactions = list(interactions)
    inputs = _prepare_regression(
        df,
        outcome,
        design,
        label=label,
        continuous=continuous,
        categorical=categorical,
        interactions=interactions,
        levels=levels,
    )
    used, w = inputs.used, inputs.weights
    y_used = inputs.data[outcome]
    if not y_used.isin([0.0, 1.0]).all():
        raise SurveyFitError(label, f"outcome {outcome} must be coded 0/1")
    if y_used.nunique() < 2:
        raise SurveyFitError(label, f"outcome {outcome} has a single observed value")

    model = smf.glm(inputs.formula, data=inputs.data, family=sm.families.Binomial(), var_weights=w[used])
    _check_design(model.exog, label)
    try:
        with warnings.catch_warnings():
            warnings.filterwarnings("error", category=PerfectSeparationWarning)
            warnings.filterwarnings("error", category=ConvergenceWarning)
            fit = model.fit(maxiter=maxiter, tol=tol)
    except (PerfectSeparationError, PerfectSeparationWarning) as exc:
        raise SurveyFitError(label, f"perfect separation ({exc})") from exc
    except ConvergenceWarning as exc:
        raise SurveyFitError(label, f"IRLS did not converge in {maxiter} iterations ({exc})") from exc
    except np.linalg.LinAlgError as exc:
        raise SurveyFitError(label, f"singular information matrix ({exc})") from exc
    if not bool(getattr(fit, "converged", True)):
        raise SurveyFitError(label, f"IRLS did not converge in {maxiter} iterations")

    beta = fit.params.to_numpy()
    if not np.all(np.isfinite(beta)):
        raise SurveyFitError(label, "non-finite coefficient estimates")
    if np.allclose(np.asarray(fit.predict()), y_used.to_numpy(), atol=1e-6):
        raise SurveyFitError(label, "perfect separation (fitted probabilities reproduce the outcome)")

    Xa = _full_rows(model.exog, used)
    y = _full_rows(model.endog, used)
    mu = 1.0 / (1.0 + np.exp(-(Xa @ beta)))
    resid = np.where(used, y - mu, 0.0)
    scores = (w * resid)[:, None] * Xa
    info = (Xa * (w * mu * (1.0 - mu))[:, None]).T @ Xa
    cov = _sandwich(scores, info, df, design, label, condition_limit)
    names = list(model.exog_names)
    iterations = fit.fit_history.get("iteration") if hasattr(fit, "fit_history") else None
    return SurveyFit(
        label=label,
        kind="logistic",
        params=pd.Series(beta, index=names),
        cov=pd.DataFrame(cov, index=names, columns=names),
        df_design=design_degrees_of_freedom(df, design),
        n=int(used.sum()),
        weighted_n=float(design.weights(df)[used].sum()),
        iterations=int(iterations) if iterations is not None else None,
        converged=True,
        extra={
            "events": int(y_used.sum()),
            "weighted_events": float((design.weights(df)[used] * y_used.to_numpy()).sum()),
            "formula": inputs.formula,
            "effects": effect_columns(names, categorical, interactions),
        },
    )


def coef_table(fit: SurveyFit, *, alpha: float = 0.05) -> pd.DataFrame:
    se = fit.std_errors
    crit = float(stats.t.ppf(1.0 - alpha / 2.0, fit.df_design))
    coef = fit.params
    t_values = coef / se
    out = pd.DataFrame(
        {
            "term": coef.index,
            "coef": coef.values,
            "std_error": se.values,
            "t_value": t_values.values,
            "p_value": [_two_sided_p_from_t(float(t), fit.df_design) for t in t_values.values],
            "coef_ci_low": (coef - crit * se).values,
            "coef_ci_high": (coef + crit * se).values,
            "model": fit.label,
            "n": fit.n,
            "df": fit.df_design,
        }
    )
    if fit.kind == "logistic":
        out["or"] = np.exp(out["coef"])
        out["ci_low"] = np.exp(out["coef_ci_low"])
        out["ci_high"] = np.exp(out["coef_ci_high"])
        out["effect_type"] = "OR"
    else:
        out["ci_low"] = out["coef_ci_low"]
        out["ci_high"] = out["coef_ci_high"]
        out["effect_type"] = "beta"
    return out


def wald_test(fit: SurveyFit, terms: Sequence[str], *, label: str | None = None) -> dict[str, object]:
    """Design-adjusted Wald F test that all ``terms`` are zero."""
    label = label or f"{fit.label}_wald"
    absent = [t for t in terms if t not in fit.params.index]
    if absent:
        raise SurveyFitError(label, f"terms not in model: {', '.join(absent)}")
    b = fit.params.loc[list(terms)].to_numpy()
    V = fit.cov.loc[list(terms), list(terms)].to_numpy()
    try:
        wald = float(b @ np.linalg.solve(V, b))
    except np.linalg.LinAlgError as exc:
        raise SurveyFitError(label, f"singular covariance for Wald test ({exc})") from exc
    k = len(terms)
    d = fit.df_design
    if d - k + 1 >= 1:
        f_value = (d - k + 1) / (d * k) * wald
        df_den = d - k + 1
    else:
        f_value = wald / k
        df_den = d
    return {
        "analysis": label,
        "model": fit.label,
        "terms": ", ".join(terms),
        "wald_chisq": wald,
        "f_value": f_value,
        "df_num": k,
        "df_den": df_den,
        "p_value": float(stats.f.sf(f_value, k, df_den)),
    }
