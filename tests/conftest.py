"""Shared pytest fixtures for cfb-reconcile tests."""
import sys
from pathlib import Path
from datetime import datetime
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

LEAGUE = "americanfootball_ncaaf"

SAMPLE_TEAMS = [
    # id, name, mascot, classification, first_fbs_season
    ("alabama", "Alabama", "Crimson Tide", "fbs", None),
    ("georgia", "Georgia", "Bulldogs", "fbs", None),
    ("mississippi", "Mississippi", "Rebels", "fbs", None),
    ("mississippi-state", "Mississippi State", "Bulldogs", "fbs", None),
    ("texas", "Texas", "Longhorns", "fbs", None),
    ("texas-tech", "Texas Tech", "Red Raiders", "fbs", None),
    ("texas-a-m", "Texas A&M", "Aggies", "fbs", None),
    ("ohio-state", "Ohio State", "Buckeyes", "fbs", None),
    ("miami", "Miami", "Hurricanes", "fbs", None),
    ("miami-oh", "Miami (OH)", "RedHawks", "fbs", None),
    ("sam-houston", "Sam Houston", "Bearkats", "fbs", 2023),
    ("kennesaw-state", "Kennesaw State", "Owls", "fbs", 2024),
    ("boston-college", "Boston College", "Eagles", "fbs", None),
    # Lower division rows share the table
    ("mississippi-college", "Mississippi College", "Choctaws", "iii", None),
    ("missouri-state", "Missouri State", "Bears", "fcs", None),
]

SAMPLE_GAMES = [
    # id, season, week, home, away, kickoff (naive UTC)
    ("2024-w3-alabama-georgia", 2024, 3, "georgia", "alabama", datetime(2024, 9, 21, 19, 0)),
    ("2024-w8-georgia-texas", 2024, 8, "texas", "georgia", datetime(2024, 10, 19, 23, 30)),
    ("2024-w15-texas-georgia", 2024, 15, "georgia", "texas", datetime(2024, 12, 7, 20, 0)),
    ("2024-w14-mississippi-mississippi-state", 2024, 14, "mississippi-state", "mississippi", datetime(2024, 11, 29, 19, 0)),
    ("2024-w8-sam-houston-kennesaw-state", 2024, 8, "kennesaw-state", "sam-houston", datetime(2024, 10, 19, 20, 0)),
    ("2023-w1-mississippi-college-mississippi", 2023, 1, "mississippi", "mississippi-college", datetime(2023, 9, 2, 23, 0)),
]

ALIAS_YAML = """
aliases:
  ole miss: mississippi
  ole miss rebels: mississippi
  miami redhawks: miami-oh
  "texas a&m": texas-a-m
  um: miami

provider_aliases:
  cfbd:
    shsu: sam-houston
    um: miami-oh

parity_exceptions:
  sam houston state: sam-houston

denylist:
  - mississippi-college
  - missouri-state

renames:
  sam-houston-state: sam-houston

transitional_teams:
  - kennesaw-state
"""


@pytest.fixture(scope="function")
def engine() -> Generator[Engine, None, None]:
    """In-memory database shared by every session (and thread) of one test."""
    from cfb_reconcile.models import Base

    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    yield engine

    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Create fresh test database session with isolated in-memory database."""
    session = session_factory()

    yield session

    session.close()


@pytest.fixture
def sample_teams(db_session: Session):
    """Insert canonical teams, including two lower-division lookalikes."""
    from cfb_reconcile.models import Team

    now = datetime.utcnow()
    teams = [
        Team(
            id=team_id,
            name=name,
            mascot=mascot,
            classification=classification,
            first_fbs_season=first_fbs_season,
            created_at=now,
            updated_at=now,
        )
        for team_id, name, mascot, classification, first_fbs_season in SAMPLE_TEAMS
    ]
    db_session.add_all(teams)
    db_session.commit()
    return teams


@pytest.fixture
def sample_games(db_session: Session, sample_teams):
    """Insert canonical 2024 games plus one 2023 game against a denylisted opponent."""
    from cfb_reconcile.models import Game

    games = [
        Game(
            id=game_id,
            season=season,
            week=week,
            home_team_id=home,
            away_team_id=away,
            kickoff_time=kickoff,
        )
        for game_id, season, week, home, away, kickoff in SAMPLE_GAMES
    ]
    db_session.add_all(games)
    db_session.commit()
    return games


@pytest.fixture
def denylist():
    from cfb_reconcile.services.sync.utils.denylist import Denylist

    return Denylist.from_config(["mississippi-college", "missouri-state"])


@pytest.fixture
def canonical_index(db_session: Session, sample_games, denylist):
    """2024 index built from the sample rows, with a floor small enough for them."""
    from cfb_reconcile.services.sync.canonical_index import build_canonical_index

    return build_canonical_index(
        db_session,
        2024,
        denylist,
        snapshot_ids=[],
        min_size=5,
        lookback_seasons=2,
        must_have=("alabama", "georgia"),
    )


@pytest.fixture
def alias_yaml() -> str:
    return ALIAS_YAML


@pytest.fixture
def alias_config(alias_yaml):
    from cfb_reconcile.services.sync.alias_table import parse_alias_resource

    return parse_alias_resource(alias_yaml, "test fixture")


@pytest.fixture
def alias_table(alias_config, canonical_index, denylist):
    from cfb_reconcile.services.sync.alias_table import validate_alias_config

    return validate_alias_config(alias_config, canonical_index, denylist)


@pytest.fixture
def stats():
    from cfb_reconcile.services.sync.audit import MatchStatsAccumulator

    return MatchStatsAccumulator()


@pytest.fixture
def resolver(canonical_index, alias_table, denylist, stats):
    from cfb_reconcile.services.sync.matchers.team_resolver import TeamResolver

    return TeamResolver(
        canonical_index,
        alias_table,
        denylist,
        stats=stats,
        pass_order="v1",
        fuzzy_threshold=0.9,
        candidate_floor=0.5,
        max_candidates=3,
        supported_leagues=[LEAGUE, "ncaaf"],
    )


@pytest.fixture
def game_matcher(db_session: Session, sample_games, stats):
    from cfb_reconcile.services.sync.matchers.game_matcher import GameMatcher

    return GameMatcher(
        db_session,
        stats=stats,
        narrow_days=2,
        wide_days=6,
        season_only_enabled=False,
        season_only_max_days=8,
        transitional_max_days=14,
        transitional_teams=["kennesaw-state"],
    )


@pytest.fixture
def test_settings(tmp_path, alias_yaml):
    """Settings pointing at the fixture alias resource and a temp reports dir."""
    from cfb_reconcile.core.config import Settings

    return Settings(
        ENVIRONMENT="test",
        DATABASE_URL="sqlite:///:memory:",
        TEAM_ALIASES_YAML=alias_yaml,
        FBS_SNAPSHOT_PATH=str(tmp_path / "missing_snapshot.yml"),
        REPORTS_DIR=str(tmp_path / "reports"),
        CANONICAL_INDEX_MIN_SIZE=5,
        SUPPORTED_LEAGUES=[LEAGUE, "ncaaf"],
    )
