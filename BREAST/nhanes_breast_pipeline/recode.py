"""Recode rules that turn raw NHANES codes into analysis variables."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping

import numpy as np
import pandas as pd

YES = 1
NO = 0


@dataclass(frozen=True)
class BinaryRule:
    """One "yes" code -> 1, listed "no" codes -> 0, everything else -> missing.

    The derived codes 0 and 1 map to themselves, so applying a rule to its own
    output leaves it unchanged. That makes raw 1 and raw 0 readable only as
    yes and no: a rule must use 1 as its yes code, and a source column that
    uses 0 for anything other than "no" cannot be recoded with a binary rule.
    """

    source: str
    yes_code: float
    no_codes: tuple[float, ...]
    missing_codes: tuple[float, ...] = ()

    def __post_init__(self) -> None:
        if self.yes_code in self.no_codes:
            raise ValueError(f"{self.source}: yes code {self.yes_code} also listed as a no code")
        if self.yes_code != YES or NO in self.missing_codes:
            raise ValueError(f"{self.source}: raw codes collide with the derived 0/1 domain")
        overlap = set(self.missing_codes) & ({self.yes_code, NO, YES} | set(self.no_codes))
        if overlap:
            raise ValueError(f"{self.source}: missing codes overlap valid codes: {sorted(overlap)}")


@dataclass(frozen=True)
class CollapseRule:
    source: str
    groups: Mapping[int, tuple[float, ...]]
    missing_codes: tuple[float, ...] = ()
    labels: Mapping[int, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        seen: dict[float, int] = {}
        for group, codes in self.groups.items():
            for code in codes:
                if code in seen:
                    raise ValueError(f"{self.source}: code {code} assigned to groups {seen[code]} and {group}")
                seen[code] = group


@dataclass(frozen=True)
class SentinelRule:
    source: str
    missing_codes: tuple[float, ...] = ()


@dataclass(frozen=True)
class TwoStageRule:
    """Specific-diagnosis flag evaluated only for respondents whose gate flag is 1."""

    gate: str
    source: str
    yes_code: float
    missing_codes: tuple[float, ...] = ()


RecodeRule = BinaryRule | CollapseRule | SentinelRule | TwoStageRule


def _log_unexpected(series: pd.Series, mask: pd.Series, label: str, notes: list[str] | None) -> None:
    count = int(mask.sum())
    if not count:
        return
    bad_values = sorted({float(x) for x in series.loc[mask].tolist()})
    preview = ", ".join(f"{x:g}" for x in bad_values[:5])
    msg = f"{label}: {count} rows with unexpected codes ({preview}); setting them to missing."
    logging.warning(msg)
    if notes is not None:
        notes.append(msg)


def apply_binary(series: pd.Series, rule: BinaryRule, notes: list[str] | None = None) -> pd.Series:
    values = pd.to_numeric(series, errors="coerce")
    yes = values.eq(rule.yes_code) | values.eq(YES)
    no = values.isin(rule.no_codes) | values.eq(NO)
    out = pd.Series(np.nan, index=series.index, dtype=float)
    out[yes] = float(YES)
    out[no] = float(NO)

    unexpected = values.notna() & ~yes & ~no & ~values.isin(rule.missing_codes)
    _log_unexpected(values, unexpected, rule.source, notes)
    return out


def apply_collapse(series: pd.Series, rule: CollapseRule, notes: list[str] | None = None) -> pd.Series:
    values = pd.to_numeric(series, errors="coerce")
    out = pd.Series(np.nan, index=series.index, dtype=float)
    assigned = pd.Series(False, index=series.index)
    for group, codes in rule.groups.items():
        mask = values.isin(codes)
        out[mask] = float(group)
        assigned |= mask

    unexpected = values.notna() & ~assigned & ~values.isin(rule.missing_codes)
    _log_unexpected(values, unexpected, rule.source, notes)
    return out


def apply_sentinel(series: pd.Series, rule: SentinelRule) -> pd.Series:
    values = pd.to_numeric(series, errors="coerce").astype(float)
    return values.mask(values.isin(rule.missing_codes))


def apply_two_stage(
    gate: pd.Series,
    specific: pd.Series,
    rule: TwoStageRule,
) -> pd.Series:
    gate_values = pd.to_numeric(gate, errors="coerce")
    specific_values = pd.to_numeric(specific, errors="coerce")
    specific_valid = specific_values.notna() & ~specific_values.isin(rule.missing_codes)

    out = pd.Series(np.nan, index=gate.index, dtype=float)
    # Not asked when the gate is "no"; still a valid 0.
    out[gate_values.eq(NO)] = float(NO)
    asked = gate_values.eq(YES) & specific_valid
    out[asked & specific_values.eq(rule.yes_code)] = float(YES)
    out[asked & ~specific_values.eq(rule.yes_code)] = float(NO)
    return out


def rule_from_config(spec: Mapping[str, object]) -> RecodeRule:
    kind = str(spec["kind"])
    missing = tuple(float(x) for x in spec.get("missing_codes", []))
    if kind == "binary":
        return BinaryRule(
            source=str(spec["source"]),
            yes_code=float(spec["yes_code"]),
            no_codes=tuple(float(x) for x in spec["no_codes"]),
            missing_codes=missing,
        )
    if kind == "sentinel":
        return SentinelRule(source=str(spec["source"]), missing_codes=missing)
    if kind == "cancer_two_stage":
        return TwoStageRule(
            gate=str(spec["gate"]),
            source=str(spec["source"]),
            yes_code=float(spec["yes_code"]),
            missing_codes=missing,
        )
    if kind == "collapse":
        return collapse_rule_from_config(spec)
    raise ValueError(f"Unknown recode kind: {kind}")


def collapse_rule_from_config(spec: Mapping[str, object]) -> CollapseRule:
    groups = {int(k): tuple(float(x) for x in v) for k, v in dict(spec["groups"]).items()}
    return CollapseRule(
        source=str(spec["source"]),
        groups=groups,
        missing_codes=tuple(float(x) for x in spec.get("missing_codes", [])),
        labels={int(k): str(v) for k, v in dict(spec.get("labels", {})).items()},
    )


def apply_rules(
    raw: pd.DataFrame,
    rules: Mapping[str, RecodeRule],
    notes: list[str] | None = None,
) -> pd.DataFrame:
    """Return a frame with one derived column per rule, index-aligned to ``raw``.

    Rules are applied in dictionary order so a two-stage rule can reference a
    gate derived earlier in the same mapping.
    """
    derived = pd.DataFrame(index=raw.index)
    for name, rule in rules.items():
        if isinstance(rule, TwoStageRule):
            gate = derived[rule.gate] if rule.gate in derived.columns else raw[rule.gate]
            derived[name] = apply_two_stage(gate, raw[rule.source], rule)
        elif isinstance(rule, BinaryRule):
            derived[name] = apply_binary(raw[rule.source], rule, notes=notes)
        elif isinstance(rule, CollapseRule):
            derived[name] = apply_collapse(raw[rule.source], rule, notes=notes)
        else:
            derived[name] = apply_sentinel(raw[rule.source], rule)
    return derived


def derive_extract(
    name: str,
    raw: pd.DataFrame,
    recodes: Mapping[str, Mapping[str, Mapping[str, object]]],
    keep_raw: Mapping[str, list[str]],
    *,
    id_col: str = "SEQN",
    notes: list[str] | None = None,
) -> pd.DataFrame:
    rules = {col: rule_from_config(spec) for col, spec in recodes.get(name, {}).items()}
    derived = apply_rules(raw, rules, notes=notes)
    kept = [c for c in keep_raw.get(name, []) if c in raw.columns]
    out = pd.concat([raw[[id_col, *kept]], derived], axis=1)
    return out.reset_index(drop=True)


def derive_all(
    tables: Mapping[str, pd.DataFrame],
    recodes: Mapping[str, Mapping[str, Mapping[str, object]]],
    keep_raw: Mapping[str, list[str]],
    *,
    id_col: str = "SEQN",
    notes: list[str] | None = None,
) -> dict[str, pd.DataFrame]:
    out: dict[str, pd.DataFrame] = {}
    for name, raw in tables.items():
        out[name] = derive_extract(name, raw, recodes, keep_raw, id_col=id_col, notes=notes)
        logging.info("Derived %s: %s columns", name, len(out[name].columns) - 1)
    return out


def recode_audit(
    tables: Mapping[str, pd.DataFrame],
    derived: Mapping[str, pd.DataFrame],
    recodes: Mapping[str, Mapping[str, Mapping[str, object]]],
    *,
    id_col: str = "SEQN",
) -> pd.DataFrame:
    """Unweighted raw-code by derived-value counts for each categorical rule."""
    rows: list[dict[str, object]] = []
    for name, specs in recodes.items():
        if name not in tables or name not in derived:
            continue
        merged = tables[name].merge(derived[name], on=id_col, how="inner", suffixes=("", "_derived"))
        for col, spec in specs.items():
            if spec["kind"] not in {"binary", "cancer_two_stage"}:
                continue
            source = str(spec["source"])
            keys = [source]
            if spec["kind"] == "cancer_two_stage":
                keys = [str(spec["gate"]), source]
            counts = merged.groupby([*keys, col], dropna=False).size().reset_index(name="n")
            for _, row in counts.iterrows():
                rows.append(
                    {
                        "extract": name,
                        "variable": col,
                        "source": " x ".join(keys),
                        "raw_code": " / ".join("." if pd.isna(row[k]) else f"{row[k]:g}" for k in keys),
                        "derived_value": "." if pd.isna(row[col]) else f"{row[col]:g}",
                        "n": int(row["n"]),
                    }
                )
    return pd.DataFrame(rows, columns=["extract", "variable", "source", "raw_code", "derived_value", "n"])
