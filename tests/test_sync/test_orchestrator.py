"""Integration tests for ReconciliationService.

Test Strategy:
1. Test prepare() loads and validates the per-season context
2. Test prepare() aborts on timeout and on bad configuration
3. Test reconcile() resolves teams, matches games and writes the audit report
4. Test ProviderEvent parsing of Odds API payloads

Each test follows the pattern:
- Given: Canonical store with sample teams and games
- When: ReconciliationService method is called
- Then: Correct outcomes, counters and report on disk
"""
import json
import time
from datetime import datetime

import pytest

from cfb_reconcile.core.logging import run_id_var
from cfb_reconcile.services.sync.errors import (
    AliasValidationError,
    CanonicalIndexTooSmallError,
    InitLoadTimeoutError,
)
from cfb_reconcile.services.sync.matchers.game_matcher import MatchStrategy
from cfb_reconcile.services.sync.matchers.team_resolver import ResolutionPass
from cfb_reconcile.services.sync.orchestrator import (
    ProviderEvent,
    ReconciliationService,
    parse_timestamp,
)

ODDS_API_EVENTS = [
    {
        "id": "evt-bama-uga",
        "sport_key": "americanfootball_ncaaf",
        "commence_time": "2024-09-21T19:30:00Z",
        "home_team": "Georgia Bulldogs",
        "away_team": "Alabama Crimson Tide",
    },
    {
        # Provider lists the Egg Bowl with home and away flipped
        "id": "evt-egg-bowl",
        "sport_key": "americanfootball_ncaaf",
        "commence_time": "2024-11-29T19:00:00Z",
        "home_team": "Ole Miss Rebels",
        "away_team": "Mississippi State Bulldogs",
        "week": 14,
    },
    {
        "id": "evt-podunk",
        "sport_key": "americanfootball_ncaaf",
        "commence_time": "2024-09-21T16:00:00Z",
        "home_team": "Georgia Bulldogs",
        "away_team": "Podunk Tech",
    },
]


class TestReconciliationService:
    """Integration tests for batch reconciliation."""

    # prepare() Tests
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_prepare_builds_context(self, session_factory, sample_games, test_settings):
        """Should load aliases, denylist and index for the season."""
        service = ReconciliationService(session_factory, test_settings)

        context = await service.prepare(2024)

        assert context.season == 2024
        assert "georgia" in context.index
        assert "mississippi-college" not in context.index
        assert context.alias_table.lookup("ole miss") == "mississippi"
        assert context.denylist.is_denylisted("missouri-state")

    @pytest.mark.asyncio
    async def test_prepare_timeout(self, session_factory, sample_games, test_settings, monkeypatch):
        """Should raise InitLoadTimeoutError when the load runs too long."""
        settings = test_settings.model_copy(update={"INIT_LOAD_TIMEOUT_SECONDS": 0.01})
        service = ReconciliationService(session_factory, settings)

        def slow_load(season):
            time.sleep(0.5)

        monkeypatch.setattr(service, "_load_context", slow_load)

        with pytest.raises(InitLoadTimeoutError) as exc_info:
            await service.prepare(2024)

        assert exc_info.value.season == 2024

    @pytest.mark.asyncio
    async def test_prepare_rejects_alias_outside_index(self, session_factory, sample_games, test_settings):
        """Should fail the whole run when an alias targets an unknown team."""
        bad_yaml = "aliases:\n  podunk: podunk-tech\n  ole miss: mississippi\n"
        settings = test_settings.model_copy(update={"TEAM_ALIASES_YAML": bad_yaml})
        service = ReconciliationService(session_factory, settings)

        with pytest.raises(AliasValidationError) as exc_info:
            await service.prepare(2024)

        problems = [v.problem for v in exc_info.value.violations]
        assert problems == ["not_in_index"]

    @pytest.mark.asyncio
    async def test_prepare_rejects_small_index(self, session_factory, sample_games, test_settings):
        """Should refuse to run against a truncated canonical store."""
        settings = test_settings.model_copy(update={"CANONICAL_INDEX_MIN_SIZE": 50})
        service = ReconciliationService(session_factory, settings)

        with pytest.raises(CanonicalIndexTooSmallError):
            await service.prepare(2024)

    # reconcile() Tests
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_reconcile_batch(self, session_factory, sample_games, test_settings):
        """Should resolve, match and report a mixed batch."""
        service = ReconciliationService(session_factory, test_settings)
        events = [ProviderEvent.from_odds_api(e, week=3) for e in ODDS_API_EVENTS]

        result = await service.reconcile(2024, 3, events)

        by_id = {r.event.event_id: r for r in result.events}
        uga = by_id["evt-bama-uga"]
        assert uga.home.team_id == "georgia"
        assert uga.away.team_id == "alabama"
        assert uga.game.strategy_used == MatchStrategy.EXACT
        assert uga.game_id == "2024-w3-alabama-georgia"

        egg_bowl = by_id["evt-egg-bowl"]
        assert egg_bowl.home.pass_used == ResolutionPass.ALIAS
        assert egg_bowl.game.strategy_used == MatchStrategy.SWAPPED_VENUE
        assert egg_bowl.game_id == "2024-w14-mississippi-mississippi-state"

        podunk = by_id["evt-podunk"]
        assert podunk.away.team_id is None
        assert podunk.game is None

        assert result.matched_count == 2

    @pytest.mark.asyncio
    async def test_reconcile_survives_bad_commence_time(self, session_factory, sample_games, test_settings):
        """Should match by week alone when one event carries an unparsable time."""
        service = ReconciliationService(session_factory, test_settings)
        payloads = [dict(ODDS_API_EVENTS[0], commence_time="TBD"), ODDS_API_EVENTS[1]]
        events = [ProviderEvent.from_odds_api(p, week=3) for p in payloads]

        result = await service.reconcile(2024, 3, events, write=False)

        by_id = {r.event.event_id: r for r in result.events}
        assert by_id["evt-bama-uga"].game.strategy_used == MatchStrategy.EXACT
        assert by_id["evt-bama-uga"].game.day_delta is None
        assert result.matched_count == 2

    @pytest.mark.asyncio
    async def test_reconcile_report(self, session_factory, sample_games, test_settings):
        """Should write the audit report named after season, week and run id."""
        service = ReconciliationService(session_factory, test_settings)
        events = [ProviderEvent.from_odds_api(e, week=3) for e in ODDS_API_EVENTS]

        result = await service.reconcile(2024, 3, events)

        assert result.report_path.name == f"team_matching_2024_w3_{result.run_id}.json"
        data = json.loads(result.report_path.read_text(encoding="utf-8"))
        assert data["totals"] == {
            "teams_resolved": 5,
            "teams_failed": 1,
            "games_matched": 2,
            "games_failed": 0,
        }
        assert data["unmatched_teams"][0]["raw_name"] == "Podunk Tech"
        assert data["pass_order_version"] == "v1"

    @pytest.mark.asyncio
    async def test_reconcile_without_write(self, session_factory, sample_games, test_settings):
        service = ReconciliationService(session_factory, test_settings)
        events = [ProviderEvent.from_odds_api(ODDS_API_EVENTS[0], week=3)]

        result = await service.reconcile(2024, 3, events, write=False)

        assert result.report_path is None
        assert result.report.games_matched == 1

    @pytest.mark.asyncio
    async def test_reconcile_reuses_context(self, session_factory, sample_games, test_settings, monkeypatch):
        """Should skip the load when a context is passed in."""
        service = ReconciliationService(session_factory, test_settings)
        context = await service.prepare(2024)

        def fail_load(season):
            raise AssertionError("context should not be reloaded")

        monkeypatch.setattr(service, "_load_context", fail_load)
        events = [ProviderEvent.from_odds_api(ODDS_API_EVENTS[0], week=3)]

        result = await service.reconcile(2024, 3, events, context=context, write=False)

        assert result.matched_count == 1

    @pytest.mark.asyncio
    async def test_run_id_cleared_after_run(self, session_factory, sample_games, test_settings):
        """Should scope the run id to the batch."""
        service = ReconciliationService(session_factory, test_settings)

        result = await service.reconcile(2024, 3, [], write=False)

        assert result.run_id
        assert run_id_var.get() == ""

    @pytest.mark.asyncio
    async def test_unmatched_game_reported(self, session_factory, sample_games, test_settings):
        """Should report resolved matchups with no canonical game."""
        service = ReconciliationService(session_factory, test_settings)
        event = ProviderEvent(
            event_id="evt-osu-bama",
            home_team="Ohio State Buckeyes",
            away_team="Alabama Crimson Tide",
            commence_time=datetime(2024, 9, 21, 19, 30),
        )

        result = await service.reconcile(2024, 3, [event], write=False)

        assert result.matched_count == 0
        assert result.report.unmatched_games[0]["reason"] == "no_candidate_games"


class TestProviderEvent:
    """Odds API payload parsing."""

    def test_from_odds_api(self):
        event = ProviderEvent.from_odds_api(ODDS_API_EVENTS[0], week=3)

        assert event.event_id == "evt-bama-uga"
        assert event.home_team == "Georgia Bulldogs"
        assert event.commence_time == datetime(2024, 9, 21, 19, 30)
        assert event.week == 3
        assert event.league == "americanfootball_ncaaf"
        assert event.provider == "odds_api"

    def test_payload_week_wins(self):
        event = ProviderEvent.from_odds_api(ODDS_API_EVENTS[1], week=3)

        assert event.week == 14

    def test_missing_commence_time(self):
        event = ProviderEvent.from_odds_api({"id": 7, "home_team": "Texas", "away_team": "Georgia"})

        assert event.event_id == "7"
        assert event.commence_time is None

    def test_unparsable_commence_time(self, caplog):
        """Should drop a bad kickoff time with a warning instead of failing the batch."""
        payload = dict(ODDS_API_EVENTS[0], commence_time="TBD")

        with caplog.at_level("WARNING"):
            event = ProviderEvent.from_odds_api(payload, week=3)

        assert event.commence_time is None
        assert event.home_team == "Georgia Bulldogs"
        assert "TBD" in caplog.text

    def test_parse_timestamp_offsets(self):
        """Should normalize offsets to naive UTC."""
        assert parse_timestamp("2024-09-21T15:30:00-04:00") == datetime(2024, 9, 21, 19, 30)
        assert parse_timestamp("") is None
