"""Match statistics and the per-batch audit report.

Observational only: nothing here changes a resolution or match result. The
report answers the questions asked after every weekly run - which pass
resolved what, which provider strings fell through, and which games could
not be located.
"""
import json
import logging
import threading
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

REPORT_FILENAME = "team_matching_{season}_w{week}_{run_id}.json"


def _key(value: Union[Enum, str]) -> str:
    return value.value if isinstance(value, Enum) else str(value)


@dataclass
class UnmatchedTeam:
    """A provider string that no pass resolved, deduplicated per league."""
    raw_name: str
    league: str
    reason: str
    occurrences: int = 1
    candidates: List[Dict[str, Any]] = field(default_factory=list)
    provider: Optional[str] = None


@dataclass
class UnmatchedGame:
    """A (season, week, home, away) lookup that found no canonical game."""
    season: int
    week: Optional[int]
    home_team_id: str
    away_team_id: str
    reason: str
    event_time: Optional[str] = None


class MatchStatsAccumulator:
    """
    Counters for one batch run.

    Increments are guarded by a lock. The orchestrator gives each concurrent
    task its own accumulator and merges them at the end, so the lock is only
    contended when callers share one instance directly.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.pass_counts: Counter = Counter()
        self.strategy_counts: Counter = Counter()
        self.teams_failed = 0
        self.games_failed = 0
        self._unmatched_teams: Dict[Tuple[str, str], UnmatchedTeam] = {}
        self.unmatched_games: List[UnmatchedGame] = []

    # =========================================================================
    # RECORDING
    # =========================================================================

    def record_resolution(self, pass_used: Union[Enum, str]) -> None:
        with self._lock:
            self.pass_counts[_key(pass_used)] += 1

    def record_match(self, strategy: Union[Enum, str]) -> None:
        with self._lock:
            self.strategy_counts[_key(strategy)] += 1

    def record_unmatched_team(
        self,
        raw_name: str,
        league: str,
        reason: str,
        candidates: Sequence[Any] = (),
        provider: Optional[str] = None
    ) -> None:
        """
        Record a provider string that failed to resolve.

        Repeated failures of the same (raw name, league) bump the occurrence
        count instead of adding a new entry.
        """
        key = (raw_name.strip().lower(), league.strip().lower())
        serialized = [c if isinstance(c, dict) else asdict(c) for c in candidates]
        with self._lock:
            self.teams_failed += 1
            existing = self._unmatched_teams.get(key)
            if existing is not None:
                existing.occurrences += 1
                return
            self._unmatched_teams[key] = UnmatchedTeam(
                raw_name=raw_name,
                league=league,
                reason=reason,
                candidates=serialized,
                provider=provider,
            )

    def record_unmatched_game(
        self,
        season: int,
        week: Optional[int],
        home_team_id: str,
        away_team_id: str,
        reason: str,
        event_time: Optional[datetime] = None
    ) -> None:
        with self._lock:
            self.games_failed += 1
            self.unmatched_games.append(UnmatchedGame(
                season=season,
                week=week,
                home_team_id=home_team_id,
                away_team_id=away_team_id,
                reason=reason,
                event_time=event_time.isoformat() if event_time else None,
            ))

    # =========================================================================
    # AGGREGATION
    # =========================================================================

    @property
    def unmatched_teams(self) -> List[UnmatchedTeam]:
        with self._lock:
            return list(self._unmatched_teams.values())

    def merge(self, other: "MatchStatsAccumulator") -> None:
        """Fold another accumulator's counts into this one."""
        if other is self:
            return
        with other._lock:
            pass_counts = Counter(other.pass_counts)
            strategy_counts = Counter(other.strategy_counts)
            teams_failed = other.teams_failed
            games_failed = other.games_failed
            teams = [UnmatchedTeam(**asdict(t)) for t in other._unmatched_teams.values()]
            games = list(other.unmatched_games)

        with self._lock:
            self.pass_counts.update(pass_counts)
            self.strategy_counts.update(strategy_counts)
            self.teams_failed += teams_failed
            self.games_failed += games_failed
            for team in teams:
                key = (team.raw_name.strip().lower(), team.league.strip().lower())
                existing = self._unmatched_teams.get(key)
                if existing is not None:
                    existing.occurrences += team.occurrences
                else:
                    self._unmatched_teams[key] = team
            self.unmatched_games.extend(games)

    def reset(self) -> None:
        """Clear everything; called at the start of each batch."""
        with self._lock:
            self.pass_counts.clear()
            self.strategy_counts.clear()
            self.teams_failed = 0
            self.games_failed = 0
            self._unmatched_teams.clear()
            self.unmatched_games.clear()

    def snapshot(self) -> Dict[str, Any]:
        """Point-in-time copy of every counter, safe to serialize."""
        with self._lock:
            return {
                'passes': dict(self.pass_counts),
                'strategies': dict(self.strategy_counts),
                'teams_resolved': sum(self.pass_counts.values()),
                'teams_failed': self.teams_failed,
                'games_matched': sum(self.strategy_counts.values()),
                'games_failed': self.games_failed,
                'unmatched_teams': [asdict(t) for t in self._unmatched_teams.values()],
                'unmatched_games': [asdict(g) for g in self.unmatched_games],
            }


@dataclass
class AuditReport:
    """Serialized outcome of one batch run."""
    season: int
    week: int
    run_id: str
    pass_order_version: str
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    passes: Dict[str, int] = field(default_factory=dict)
    strategies: Dict[str, int] = field(default_factory=dict)
    teams_resolved: int = 0
    teams_failed: int = 0
    games_matched: int = 0
    games_failed: int = 0
    unmatched_teams: List[Dict[str, Any]] = field(default_factory=list)
    unmatched_games: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_stats(
        cls,
        stats: MatchStatsAccumulator,
        season: int,
        week: int,
        run_id: str,
        pass_order_version: str
    ) -> "AuditReport":
        snapshot = stats.snapshot()
        unmatched_teams = sorted(
            snapshot['unmatched_teams'],
            key=lambda t: (-t['occurrences'], t['raw_name'].lower()),
        )
        return cls(
            season=season,
            week=week,
            run_id=run_id,
            pass_order_version=pass_order_version,
            passes=snapshot['passes'],
            strategies=snapshot['strategies'],
            teams_resolved=snapshot['teams_resolved'],
            teams_failed=snapshot['teams_failed'],
            games_matched=snapshot['games_matched'],
            games_failed=snapshot['games_failed'],
            unmatched_teams=unmatched_teams,
            unmatched_games=snapshot['unmatched_games'],
        )

    @property
    def filename(self) -> str:
        return REPORT_FILENAME.format(season=self.season, week=self.week, run_id=self.run_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'season': self.season,
            'week': self.week,
            'run_id': self.run_id,
            'generated_at': self.generated_at.isoformat(),
            'pass_order_version': self.pass_order_version,
            'totals': {
                'teams_resolved': self.teams_resolved,
                'teams_failed': self.teams_failed,
                'games_matched': self.games_matched,
                'games_failed': self.games_failed,
            },
            'by_pass': dict(self.passes),
            'by_strategy': dict(self.strategies),
            'unmatched_teams': self.unmatched_teams,
            'unmatched_games': self.unmatched_games,
        }


def write_report(report: AuditReport, reports_dir: Union[str, Path]) -> Path:
    """
    Write the report as JSON under reports_dir.

    Returns:
        Path of the written file
    """
    directory = Path(reports_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / report.filename
    with path.open('w', encoding='utf-8') as f:
        json.dump(report.to_dict(), f, indent=2, sort_keys=False)
    logger.info(f"Wrote team matching report to {path}")
    return path


def log_summary(report: AuditReport) -> None:
    """Emit the human-readable run summary."""
    logger.info(
        f"Team matching {report.season} week {report.week}: "
        f"{report.teams_resolved} resolved, {report.teams_failed} failed; "
        f"games {report.games_matched} matched, {report.games_failed} failed"
    )
    for name, count in sorted(report.passes.items(), key=lambda item: -item[1]):
        logger.info(f"  pass {name}: {count}")
    for name, count in sorted(report.strategies.items(), key=lambda item: -item[1]):
        logger.info(f"  strategy {name}: {count}")

    if report.unmatched_teams:
        logger.warning(f"{len(report.unmatched_teams)} distinct unmatched team names")
        for team in report.unmatched_teams[:20]:
            candidates = ', '.join(
                f"{c['id']} ({c['score']:.2f})" for c in team['candidates']
            ) or 'none'
            logger.warning(
                f"  '{team['raw_name']}' [{team['league']}] x{team['occurrences']} "
                f"{team['reason']}; candidates: {candidates}"
            )
    if report.unmatched_games:
        logger.warning(f"{len(report.unmatched_games)} unmatched games")
