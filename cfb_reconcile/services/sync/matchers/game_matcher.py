"""Game matcher for locating the canonical game behind a provider event.

Providers disagree with the canonical store on week numbering (week 0 vs
week 1, bowl weeks) and occasionally on which side is home (neutral sites).
A strict (season, week, home, away) lookup therefore misses real games, so
the matcher tries progressively looser strategies and stops at the first hit.

Matching priority:
1. EXACT         - (season, week, home, away)
2. WINDOW_NARROW - same teams and venue, kickoff within ±2 days, week ignored
3. WINDOW_WIDE   - same, within ±6 days
4. SWAPPED_VENUE - strategies 2 and 3 with home/away swapped
5. SEASON_ONLY   - feature-flagged: the only meeting of the two teams in the
                   season, within 8 days (14 for transitional programs)

All timestamps are compared as naive UTC.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional, Sequence

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cfb_reconcile.models import Game
from cfb_reconcile.services.sync.audit import MatchStatsAccumulator

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0

REASON_NO_CANDIDATES = 'no_candidate_games'
REASON_OUTSIDE_TOLERANCE = 'outside_tolerance'
REASON_NO_EVENT_TIME = 'no_event_time'
REASON_STORE_ERROR = 'store_error'


class MatchStrategy(str, Enum):
    EXACT = 'exact'
    WINDOW_NARROW = 'window_narrow'
    WINDOW_WIDE = 'window_wide'
    SWAPPED_VENUE = 'swapped_venue'
    SEASON_ONLY = 'season_only'
    NONE = 'none'


@dataclass(frozen=True)
class GameMatchOutcome:
    game_id: Optional[str]
    strategy_used: MatchStrategy
    day_delta: Optional[float] = None
    reason: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.game_id is not None


@dataclass(frozen=True)
class GameLookupRequest:
    """One lookup for batch_lookup()."""
    season: int
    week: Optional[int]
    home_team_id: str
    away_team_id: str
    event_time: Optional[datetime] = None


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def day_delta(kickoff: Optional[datetime], event_time: Optional[datetime]) -> Optional[float]:
    """Absolute difference in fractional days, None if either side is unknown."""
    if kickoff is None or event_time is None:
        return None
    return abs((kickoff - event_time).total_seconds()) / SECONDS_PER_DAY


class GameMatcher:
    """
    Match provider events to canonical games.

    Read only: the canonical store is never written. Store errors are logged
    and reported as a failed outcome so one bad lookup does not stop a batch.
    """

    def __init__(
        self,
        db: Session,
        stats: Optional[MatchStatsAccumulator] = None,
        narrow_days: Optional[float] = None,
        wide_days: Optional[float] = None,
        season_only_enabled: Optional[bool] = None,
        season_only_max_days: Optional[float] = None,
        transitional_max_days: Optional[float] = None,
        transitional_teams: Iterable[str] = ()
    ):
        """
        Initialize the game matcher.

        Args:
            db: SQLAlchemy session on the canonical store
            stats: Accumulator receiving strategy counts and failures
            narrow_days: Half-width of the narrow window
            wide_days: Half-width of the wide window
            season_only_enabled: Enables the SEASON_ONLY fallback
            season_only_max_days: SEASON_ONLY tolerance
            transitional_max_days: SEASON_ONLY tolerance when either team is transitional
            transitional_teams: Programs mid-transition to FBS
        """
        from cfb_reconcile.core.config import settings

        self.db = db
        self.stats = stats if stats is not None else MatchStatsAccumulator()
        self.narrow_days = narrow_days if narrow_days is not None else settings.NARROW_WINDOW_DAYS
        self.wide_days = wide_days if wide_days is not None else settings.WIDE_WINDOW_DAYS
        self.season_only_enabled = (
            season_only_enabled if season_only_enabled is not None
            else settings.SEASON_ONLY_FALLBACK_ENABLED
        )
        self.season_only_max_days = (
            season_only_max_days if season_only_max_days is not None
            else settings.SEASON_ONLY_MAX_DAYS
        )
        self.transitional_max_days = (
            transitional_max_days if transitional_max_days is not None
            else settings.TRANSITIONAL_MAX_DAYS
        )
        self.transitional_teams: FrozenSet[str] = frozenset(transitional_teams)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def lookup(
        self,
        season: int,
        week: Optional[int],
        home_team_id: str,
        away_team_id: str,
        event_time: Optional[datetime] = None,
        stats: Optional[MatchStatsAccumulator] = None
    ) -> GameMatchOutcome:
        """
        Find the canonical game for a matchup.

        Args:
            season: Season year
            week: Provider week, may disagree with the store
            home_team_id: Canonical home team id
            away_team_id: Canonical away team id
            event_time: Provider kickoff, any timezone
            stats: Accumulator override (per-task accumulators in batches)

        Returns:
            GameMatchOutcome; game_id is None when nothing matched
        """
        stats = stats if stats is not None else self.stats
        event_time = to_naive_utc(event_time)

        try:
            outcome = self._cascade(season, week, home_team_id, away_team_id, event_time)
        except SQLAlchemyError as e:
            logger.error(
                f"Database error looking up {away_team_id} @ {home_team_id} "
                f"({season} week {week}): {e}"
            )
            outcome = GameMatchOutcome(None, MatchStrategy.NONE, reason=REASON_STORE_ERROR)

        if outcome.matched:
            stats.record_match(outcome.strategy_used)
            logger.debug(
                f"Matched {away_team_id} @ {home_team_id} -> {outcome.game_id} "
                f"via {outcome.strategy_used.value}"
            )
        else:
            stats.record_unmatched_game(
                season, week, home_team_id, away_team_id, outcome.reason, event_time
            )
            logger.warning(
                f"No game for {away_team_id} @ {home_team_id} ({season} week {week}): {outcome.reason}"
            )
        return outcome

    async def lookup_id(
        self,
        season: int,
        week: Optional[int],
        home_team_id: str,
        away_team_id: str,
        event_time: Optional[datetime] = None
    ) -> Optional[str]:
        """Look up and return only the canonical game id, or None."""
        outcome = await self.lookup(season, week, home_team_id, away_team_id, event_time)
        return outcome.game_id

    async def batch_lookup(self, requests: Sequence[GameLookupRequest]) -> List[GameMatchOutcome]:
        """Look up several games in order; one session, one request at a time."""
        outcomes = []
        for request in requests:
            outcomes.append(await self.lookup(
                request.season,
                request.week,
                request.home_team_id,
                request.away_team_id,
                request.event_time,
            ))
        return outcomes

    # =========================================================================
    # CASCADE
    # =========================================================================

    def _cascade(
        self,
        season: int,
        week: Optional[int],
        home_team_id: str,
        away_team_id: str,
        event_time: Optional[datetime]
    ) -> GameMatchOutcome:
        if week is not None:
            exact = self._exact(season, week, home_team_id, away_team_id, event_time)
            if exact is not None:
                return exact

        meetings = self._season_meetings(season, home_team_id, away_team_id)
        if not meetings:
            return GameMatchOutcome(None, MatchStrategy.NONE, reason=REASON_NO_CANDIDATES)
        if event_time is None:
            return GameMatchOutcome(None, MatchStrategy.NONE, reason=REASON_NO_EVENT_TIME)

        windows = (
            (MatchStrategy.WINDOW_NARROW, self.narrow_days),
            (MatchStrategy.WINDOW_WIDE, self.wide_days),
        )
        for strategy, days in windows:
            game = self._nearest_in_window(meetings, home_team_id, away_team_id, event_time, days)
            if game is not None:
                return self._outcome(game, strategy, event_time)

        for _, days in windows:
            game = self._nearest_in_window(meetings, away_team_id, home_team_id, event_time, days)
            if game is not None:
                logger.info(
                    f"Venue swapped for {away_team_id} @ {home_team_id}: stored as "
                    f"{game.away_team_id} @ {game.home_team_id}"
                )
                return self._outcome(game, MatchStrategy.SWAPPED_VENUE, event_time)

        if self.season_only_enabled:
            season_only = self._season_only(meetings, home_team_id, away_team_id, event_time)
            if season_only is not None:
                return season_only

        return GameMatchOutcome(None, MatchStrategy.NONE, reason=REASON_OUTSIDE_TOLERANCE)

    def _exact(
        self,
        season: int,
        week: int,
        home_team_id: str,
        away_team_id: str,
        event_time: Optional[datetime]
    ) -> Optional[GameMatchOutcome]:
        games = self.db.query(Game).filter(
            Game.season == season,
            Game.week == week,
            Game.home_team_id == home_team_id,
            Game.away_team_id == away_team_id,
        ).order_by(Game.kickoff_time, Game.id).all()

        if not games:
            return None
        if len(games) == 1:
            return self._outcome(games[0], MatchStrategy.EXACT, event_time)

        if event_time is not None:
            timed = [g for g in games if g.kickoff_time is not None]
            if timed:
                return self._outcome(self._nearest(timed, event_time), MatchStrategy.EXACT, event_time)

        # Two stored games for one (season, week, home, away) is a data problem
        logger.warning(
            f"{len(games)} games stored for {away_team_id} @ {home_team_id} "
            f"({season} week {week}) and no event time to choose; using {games[0].id}"
        )
        return self._outcome(games[0], MatchStrategy.EXACT, event_time)

    def _season_meetings(self, season: int, team_a: str, team_b: str) -> List[Game]:
        """Every game between the two teams in the season, either venue."""
        return self.db.query(Game).filter(
            Game.season == season,
            or_(
                and_(Game.home_team_id == team_a, Game.away_team_id == team_b),
                and_(Game.home_team_id == team_b, Game.away_team_id == team_a),
            ),
        ).order_by(Game.kickoff_time, Game.id).all()

    def _nearest_in_window(
        self,
        meetings: List[Game],
        home_team_id: str,
        away_team_id: str,
        event_time: datetime,
        days: float
    ) -> Optional[Game]:
        window = timedelta(days=days)
        in_window = [
            g for g in meetings
            if g.home_team_id == home_team_id
            and g.away_team_id == away_team_id
            and g.kickoff_time is not None
            and abs(g.kickoff_time - event_time) <= window
        ]
        return self._nearest(in_window, event_time) if in_window else None

    def _season_only(
        self,
        meetings: List[Game],
        home_team_id: str,
        away_team_id: str,
        event_time: datetime
    ) -> Optional[GameMatchOutcome]:
        if len(meetings) != 1:
            logger.debug(
                f"Season-only fallback skipped for {away_team_id} @ {home_team_id}: "
                f"{len(meetings)} meetings"
            )
            return None

        game = meetings[0]
        delta = day_delta(game.kickoff_time, event_time)
        transitional = home_team_id in self.transitional_teams or away_team_id in self.transitional_teams
        max_days = self.transitional_max_days if transitional else self.season_only_max_days
        if delta is None or delta > max_days:
            return None

        logger.info(
            f"Season-only match for {away_team_id} @ {home_team_id}: {game.id} "
            f"({delta:.1f} days, limit {max_days:.0f})"
        )
        return GameMatchOutcome(game.id, MatchStrategy.SEASON_ONLY, day_delta=delta)

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _nearest(games: List[Game], event_time: datetime) -> Game:
        return min(
            games,
            key=lambda g: (abs((g.kickoff_time - event_time).total_seconds()), g.kickoff_time, g.id),
        )

    @staticmethod
    def _outcome(
        game: Game,
        strategy: MatchStrategy,
        event_time: Optional[datetime]
    ) -> GameMatchOutcome:
        return GameMatchOutcome(
            game_id=game.id,
            strategy_used=strategy,
            day_delta=day_delta(game.kickoff_time, event_time),
        )
