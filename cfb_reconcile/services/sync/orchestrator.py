"""Reconciliation orchestrator for one weekly batch of provider events.

This orchestrator coordinates:
- One-time load of the alias resource, denylist and canonical index
- Team resolution via TeamResolver
- Game lookup via GameMatcher
- Audit report and run summary

A run is season scoped. The index and alias table are built once, under a
timeout, and shared read-only by every lookup in the batch. Any failure in
that load aborts the run before a single event is processed.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from cfb_reconcile.core.logging import run_scope
from cfb_reconcile.services.sync.alias_table import (
    AliasTable,
    load_alias_config,
    validate_alias_config,
)
from cfb_reconcile.services.sync.audit import (
    AuditReport,
    MatchStatsAccumulator,
    log_summary,
    write_report,
)
from cfb_reconcile.services.sync.canonical_index import (
    CanonicalIndex,
    build_canonical_index,
    load_snapshot_ids,
)
from cfb_reconcile.services.sync.errors import InitLoadTimeoutError
from cfb_reconcile.services.sync.matchers.game_matcher import GameMatcher, GameMatchOutcome, to_naive_utc
from cfb_reconcile.services.sync.matchers.team_resolver import ResolutionOutcome, TeamResolver
from cfb_reconcile.services.sync.utils.denylist import Denylist

logger = logging.getLogger(__name__)

DEFAULT_LEAGUE = 'americanfootball_ncaaf'
DEFAULT_PROVIDER = 'odds_api'


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp ('2024-09-21T19:30:00Z') to naive UTC."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return to_naive_utc(datetime.fromisoformat(text))


@dataclass(frozen=True)
class ProviderEvent:
    """A provider's view of one game, before reconciliation."""
    event_id: str
    home_team: str
    away_team: str
    commence_time: Optional[datetime] = None
    week: Optional[int] = None
    league: str = DEFAULT_LEAGUE
    provider: Optional[str] = DEFAULT_PROVIDER

    @classmethod
    def from_odds_api(
        cls,
        payload: Dict[str, Any],
        week: Optional[int] = None,
        provider: Optional[str] = DEFAULT_PROVIDER
    ) -> "ProviderEvent":
        """
        Build from an Odds API event dict.

        Args:
            payload: Dict with id, sport_key, home_team, away_team, commence_time
            week: Week the batch is being run for
            provider: Provider name used for provider-specific aliases
        """
        event_id = str(payload.get('id') or '')
        try:
            commence_time = parse_timestamp(payload.get('commence_time'))
        except ValueError:
            # Game lookup falls back to the week alone
            logger.warning(
                f"Event {event_id} has unparsable commence_time {payload.get('commence_time')!r}, ignoring it"
            )
            commence_time = None

        return cls(
            event_id=event_id,
            home_team=payload.get('home_team') or '',
            away_team=payload.get('away_team') or '',
            commence_time=commence_time,
            week=payload.get('week', week),
            league=payload.get('sport_key') or DEFAULT_LEAGUE,
            provider=provider,
        )


@dataclass(frozen=True)
class ReconciliationContext:
    """Immutable per-season inputs shared by every lookup in a run."""
    season: int
    index: CanonicalIndex
    alias_table: AliasTable
    denylist: Denylist


@dataclass(frozen=True)
class EventReconciliation:
    event: ProviderEvent
    home: ResolutionOutcome
    away: ResolutionOutcome
    game: Optional[GameMatchOutcome] = None

    @property
    def game_id(self) -> Optional[str]:
        return self.game.game_id if self.game else None


@dataclass
class ReconciliationResult:
    run_id: str
    season: int
    week: int
    events: List[EventReconciliation] = field(default_factory=list)
    report: Optional[AuditReport] = None
    report_path: Optional[Path] = None

    @property
    def matched_count(self) -> int:
        return sum(1 for e in self.events if e.game_id is not None)


class ReconciliationService:
    """
    Entry point for reconciliation batches.

    All batch runs should go through this service so that the index, alias
    table and denylist are loaded and validated exactly once per run.
    """

    def __init__(self, session_factory: Callable[[], Session], settings=None):
        """
        Initialize the reconciliation service.

        Args:
            session_factory: Callable returning a new session on the canonical store
            settings: Settings instance; defaults to the module-level settings
        """
        if settings is None:
            from cfb_reconcile.core.config import settings
        self.session_factory = session_factory
        self.settings = settings

    # =========================================================================
    # ONE-TIME LOAD
    # =========================================================================

    async def prepare(self, season: int) -> ReconciliationContext:
        """
        Load and validate the per-season context under the init timeout.

        Raises:
            InitLoadTimeoutError: load exceeded INIT_LOAD_TIMEOUT_SECONDS
            ReconciliationConfigError: any other fatal configuration problem
        """
        timeout = self.settings.INIT_LOAD_TIMEOUT_SECONDS
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._load_context, season),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            logger.critical(f"Init load for {season} timed out after {timeout}s")
            raise InitLoadTimeoutError(season, timeout) from e

    def _load_context(self, season: int) -> ReconciliationContext:
        config = load_alias_config(
            inline_yaml=self.settings.TEAM_ALIASES_YAML,
            candidate_paths=self.settings.candidate_alias_paths(),
        )
        patterns = list(config.denylist_patterns) if config.denylist_patterns is not None else None
        denylist = Denylist.from_config(config.denylist, patterns)
        snapshot_ids = load_snapshot_ids(self.settings.FBS_SNAPSHOT_PATH)

        db = self.session_factory()
        try:
            index = build_canonical_index(
                db,
                season,
                denylist,
                snapshot_ids,
                min_size=self.settings.CANONICAL_INDEX_MIN_SIZE,
                lookback_seasons=self.settings.HISTORY_LOOKBACK_SEASONS,
            )
        finally:
            db.close()

        alias_table = validate_alias_config(config, index, denylist)
        return ReconciliationContext(
            season=season,
            index=index,
            alias_table=alias_table,
            denylist=denylist,
        )

    # =========================================================================
    # BATCH
    # =========================================================================

    async def reconcile(
        self,
        season: int,
        week: int,
        events: Sequence[ProviderEvent],
        context: Optional[ReconciliationContext] = None,
        write: bool = True
    ) -> ReconciliationResult:
        """
        Resolve teams and match games for a batch of provider events.

        Args:
            season: Season year
            week: Week being reconciled; events without their own week use it
            events: Provider events
            context: Pre-built context; loaded via prepare() when omitted
            write: Write the JSON audit report to REPORTS_DIR

        Returns:
            ReconciliationResult with per-event outcomes and the audit report
        """
        run_id = uuid.uuid4().hex[:12]
        with run_scope(run_id):
            if context is None:
                context = await self.prepare(season)

            logger.info(f"Reconciling {len(events)} events for {season} week {week}")
            stats = MatchStatsAccumulator()
            resolver = TeamResolver(
                context.index,
                context.alias_table,
                context.denylist,
                stats=stats,
                pass_order=self.settings.RESOLVER_PASS_ORDER,
                fuzzy_threshold=self.settings.FUZZY_THRESHOLD,
                candidate_floor=self.settings.FUZZY_CANDIDATE_FLOOR,
                max_candidates=self.settings.MAX_AUDIT_CANDIDATES,
                supported_leagues=self.settings.SUPPORTED_LEAGUES,
            )

            db = self.session_factory()
            try:
                matcher = GameMatcher(
                    db,
                    stats=stats,
                    narrow_days=self.settings.NARROW_WINDOW_DAYS,
                    wide_days=self.settings.WIDE_WINDOW_DAYS,
                    season_only_enabled=self.settings.SEASON_ONLY_FALLBACK_ENABLED,
                    season_only_max_days=self.settings.SEASON_ONLY_MAX_DAYS,
                    transitional_max_days=self.settings.TRANSITIONAL_MAX_DAYS,
                    transitional_teams=context.alias_table.transitional_teams,
                )
                semaphore = asyncio.Semaphore(self.settings.MAX_CONCURRENT_LOOKUPS)

                async def reconcile_one(event: ProviderEvent) -> Tuple[EventReconciliation, MatchStatsAccumulator]:
                    async with semaphore:
                        return await self._reconcile_event(resolver, matcher, season, week, event)

                pairs = await asyncio.gather(*(reconcile_one(event) for event in events))
            finally:
                db.close()

            for _, local_stats in pairs:
                stats.merge(local_stats)

            report = AuditReport.from_stats(
                stats, season, week, run_id, resolver.pass_order_version
            )
            report_path = write_report(report, self.settings.REPORTS_DIR) if write else None
            log_summary(report)

            return ReconciliationResult(
                run_id=run_id,
                season=season,
                week=week,
                events=[reconciliation for reconciliation, _ in pairs],
                report=report,
                report_path=report_path,
            )

    async def _reconcile_event(
        self,
        resolver: TeamResolver,
        matcher: GameMatcher,
        season: int,
        week: int,
        event: ProviderEvent
    ) -> Tuple[EventReconciliation, MatchStatsAccumulator]:
        local_stats = MatchStatsAccumulator()
        home = resolver.resolve(event.home_team, event.league, event.provider, stats=local_stats)
        away = resolver.resolve(event.away_team, event.league, event.provider, stats=local_stats)

        game = None
        if home.matched and away.matched:
            game = await matcher.lookup(
                season,
                event.week if event.week is not None else week,
                home.team_id,
                away.team_id,
                event.commence_time,
                stats=local_stats,
            )
        else:
            logger.info(f"Skipping game lookup for event {event.event_id}: unresolved team")

        return EventReconciliation(event=event, home=home, away=away, game=game), local_stats
