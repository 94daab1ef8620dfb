"""Fatal init-time errors for a reconciliation run.

Every class here aborts the run. Per-record misses (no team resolved, no game
found) are never exceptions; they surface as None results plus an audit entry.
"""
from dataclasses import dataclass
from typing import List, Sequence


class ReconciliationConfigError(RuntimeError):
    """Base class for errors that must stop a batch run before it starts."""


class AliasResourceNotFoundError(ReconciliationConfigError):
    """team_aliases.yml was not found in any candidate location."""

    def __init__(self, attempted: Sequence[str]):
        self.attempted = list(attempted)
        locations = "\n".join(f"  - {location}" for location in self.attempted)
        super().__init__(f"team_aliases.yml not found in any of these locations:\n{locations}")


class AliasResourceParseError(ReconciliationConfigError):
    """The alias resource exists but is not well-formed."""

    def __init__(self, source: str, problems: Sequence[str]):
        self.source = source
        self.problems = list(problems)
        details = "\n".join(f"  - {problem}" for problem in self.problems)
        super().__init__(f"Invalid alias resource {source}:\n{details}")


@dataclass(frozen=True)
class AliasViolation:
    """One alias-table entry whose target is unusable."""
    section: str          # 'aliases', 'provider_aliases.cfbd', 'parity_exceptions'
    provider_string: str
    target: str
    problem: str          # 'denylisted', 'not_in_index'

    def __str__(self):
        return f"[{self.section}] '{self.provider_string}' -> '{self.target}': {self.problem}"


class AliasValidationError(ReconciliationConfigError):
    """One or more alias targets are outside the canonical index or denylisted."""

    def __init__(self, violations: List[AliasViolation], source: str = ""):
        self.violations = list(violations)
        self.source = source
        details = "\n".join(f"  - {violation}" for violation in self.violations)
        where = f" in {source}" if source else ""
        super().__init__(
            f"{len(self.violations)} invalid alias target(s){where}; no aliases were loaded:\n{details}"
        )


class CanonicalIndexTooSmallError(ReconciliationConfigError):
    """The built index is below the size floor, treated as data corruption."""

    def __init__(self, season: int, size: int, floor: int, source_counts: dict):
        self.season = season
        self.size = size
        self.floor = floor
        self.source_counts = dict(source_counts)
        super().__init__(
            f"Canonical index for {season} has {size} teams, below the floor of {floor} "
            f"(per-source counts: {self.source_counts})"
        )


class InitLoadTimeoutError(ReconciliationConfigError):
    """The one-time index/alias load did not finish in time."""

    def __init__(self, season: int, timeout_seconds: float):
        self.season = season
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Loading canonical index and alias table for {season} exceeded {timeout_seconds:.0f}s"
        )
