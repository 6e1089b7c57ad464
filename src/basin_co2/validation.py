"""
Reach table validation - check registry and built-in checks.

Checks are plain functions taking a reach table and returning a
``CheckResult``. They are registered with ``register_check`` and run together
by ``run_checks``:

    R001  negative discharge             ERROR
    R002  duplicate reach identifiers    ERROR
    R003  unknown waterbody tag          WARNING
    R004  cyclic reach node graph        ERROR
    R005  River reaches missing AHG      WARNING
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

import duckdb
import networkx as nx
import pandas as pd

from .reach import REQUIRED_COLUMNS, ReachTableError, is_lake, is_river


class Severity(Enum):
    """Severity levels for reach table checks."""
    ERROR = "error"      # Model cannot run
    WARNING = "warning"  # Results degraded
    INFO = "info"


@dataclass
class CheckResult:
    """Result of one check execution."""
    check_id: str
    name: str
    severity: Severity
    passed: bool
    total_checked: int
    issues_found: int
    details: pd.DataFrame   # offending rows
    description: str
    elapsed_ms: float = 0.0

    @property
    def issue_pct(self) -> float:
        return 100 * self.issues_found / self.total_checked if self.total_checked > 0 else 0.0

    def __repr__(self) -> str:
        status = "PASS" if self.passed else "FAIL"
        return f"CheckResult({self.check_id} {self.name}: {status}, {self.issues_found}/{self.total_checked} issues)"


@dataclass
class CheckSpec:
    """Registered check metadata."""
    check_id: str
    name: str
    severity: Severity
    description: str
    check_fn: Callable


_CHECK_REGISTRY: Dict[str, CheckSpec] = {}


def register_check(check_id: str, severity: Severity, description: str) -> Callable:
    """
    Decorator registering a reach table check.

    Usage:
        @register_check("R001", Severity.ERROR, "Discharge must be non-negative")
        def check_negative_discharge(df):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        name = fn.__name__
        if name.startswith("check_"):
            name = name[6:]
        if check_id in _CHECK_REGISTRY:
            raise ValueError(f"Check ID {check_id} already registered")
        _CHECK_REGISTRY[check_id] = CheckSpec(check_id, name, severity, description, fn)
        return fn

    return decorator


def get_registry() -> Dict[str, CheckSpec]:
    """Return a copy of the check registry."""
    return dict(_CHECK_REGISTRY)


def list_check_ids() -> List[str]:
    return sorted(_CHECK_REGISTRY.keys())


def _result(check_id: str, total: int, issues: pd.DataFrame) -> CheckResult:
    spec = _CHECK_REGISTRY[check_id]
    return CheckResult(
        check_id=check_id,
        name=spec.name,
        severity=spec.severity,
        passed=len(issues) == 0,
        total_checked=total,
        issues_found=len(issues),
        details=issues,
        description=spec.description,
    )


def _query(df: pd.DataFrame, sql: str) -> pd.DataFrame:
    con = duckdb.connect()
    try:
        con.register("reaches", df)
        return con.execute(sql).fetchdf()
    finally:
        con.close()


# =============================================================================
# Checks
# =============================================================================


@register_check("R001", Severity.ERROR, "Discharge must be non-negative")
def check_negative_discharge(df: pd.DataFrame) -> CheckResult:
    issues = _query(
        df[["reach_id", "Q_m3_s"]],
        "SELECT reach_id, Q_m3_s FROM reaches WHERE Q_m3_s < 0 ORDER BY Q_m3_s",
    )
    return _result("R001", len(df), issues)


@register_check("R002", Severity.ERROR, "Reach identifiers must be unique")
def check_duplicate_reach_ids(df: pd.DataFrame) -> CheckResult:
    issues = _query(
        df[["reach_id"]],
        """
        SELECT reach_id, COUNT(*) AS n_rows
        FROM reaches
        GROUP BY reach_id
        HAVING COUNT(*) > 1
        ORDER BY reach_id
        """,
    )
    return _result("R002", len(df), issues)


@register_check("R003", Severity.WARNING, "Waterbody should be River or Lake/Reservoir")
def check_unknown_waterbody(df: pd.DataFrame) -> CheckResult:
    # Unknown tags run through the model with missing derived values
    unknown = ~(is_river(df) | is_lake(df))
    issues = df.loc[unknown, ["reach_id", "waterbody"]].reset_index(drop=True)
    return _result("R003", len(df), issues)


@register_check("R004", Severity.ERROR, "Reach node graph must be acyclic")
def check_node_cycles(df: pd.DataFrame) -> CheckResult:
    g = nx.DiGraph()
    edges = df[["from_node", "to_node"]].dropna()
    g.add_edges_from(zip(edges["from_node"], edges["to_node"]))
    try:
        cycle = nx.find_cycle(g)
    except nx.NetworkXNoCycle:
        cycle = []
    issues = pd.DataFrame(cycle, columns=["from_node", "to_node"])
    return _result("R004", len(edges), issues)


@register_check("R005", Severity.WARNING, "River reaches need AHG coefficients a, b, c, f")
def check_missing_ahg(df: pd.DataFrame) -> CheckResult:
    river = pd.Series(is_river(df), index=df.index)
    cols = [c for c in ("a", "b", "c", "f") if c in df.columns]
    if len(cols) < 4:
        missing = river.copy()
    else:
        missing = river & df[cols].isna().any(axis=1)
    issues = df.loc[missing, ["reach_id", *cols]].reset_index(drop=True)
    return _result("R005", int(river.sum()), issues)


# =============================================================================
# Runner
# =============================================================================


def run_checks(df: pd.DataFrame, checks: Optional[Iterable[str]] = None) -> List[CheckResult]:
    """Run the given check ids (all registered checks by default) in id order."""
    ids = sorted(checks) if checks is not None else list_check_ids()
    results = []
    for check_id in ids:
        if check_id not in _CHECK_REGISTRY:
            raise ValueError(f"Unknown check ID: {check_id}")
        start = time.perf_counter()
        result = _CHECK_REGISTRY[check_id].check_fn(df)
        result.elapsed_ms = (time.perf_counter() - start) * 1000
        results.append(result)
    return results


def validate_reach_table(df: pd.DataFrame) -> List[CheckResult]:
    """
    Run every check and raise on failed ERROR checks.

    Returns
    -------
    list of CheckResult
        All results, when no ERROR check failed.

    Raises
    ------
    ReachTableError
        Listing every failed ERROR check.
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ReachTableError(f"Reach table is missing required columns: {missing}")

    results = run_checks(df)
    failed = [r for r in results if r.severity is Severity.ERROR and not r.passed]
    if failed:
        summary = ", ".join(f"{r.check_id} {r.name} ({r.issues_found})" for r in failed)
        raise ReachTableError(f"Reach table failed validation: {summary}")
    return results
