"""Canonical team index for one season.

The index is the authoritative set of valid canonical team ids. Every alias
target is validated against it and every resolver pass looks up through it,
so it is built from several independent sources and refuses to come up
undersized.

Sources (unioned):
1. Primary registry - FBS rows of the teams table covering the season
2. Historical games - teams appearing in games over the recent season range
3. Static snapshot - checked-in config/fbs_teams.yml

Every candidate passes the denylist before admission. A fixed canary list of
perennial programs is injected afterwards so that one broken source cannot
silently drop them.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

import yaml
from sqlalchemy import or_
from sqlalchemy.orm import Session

from cfb_reconcile.models import Game, Team
from cfb_reconcile.services.sync.errors import CanonicalIndexTooSmallError
from cfb_reconcile.services.sync.utils.denylist import Denylist
from cfb_reconcile.services.sync.utils.name_normalizer import normalize, slugify

logger = logging.getLogger(__name__)

SOURCE_REGISTRY = 'registry'
SOURCE_HISTORICAL = 'historical_games'
SOURCE_SNAPSHOT = 'snapshot'

# Perennial FBS programs; present in every season the index is built for
MUST_HAVE_TEAMS: Tuple[str, ...] = (
    'alabama', 'auburn', 'clemson', 'florida', 'florida-state', 'georgia',
    'iowa', 'lsu', 'miami', 'michigan', 'nebraska', 'notre-dame',
    'ohio-state', 'oklahoma', 'oregon', 'penn-state', 'tennessee', 'texas',
    'usc', 'wisconsin',
)


@dataclass(frozen=True)
class IndexedTeam:
    """Normalized naming data for one canonical team."""
    id: str
    name: str                 # normalized institution name
    mascot: str = ''          # normalized mascot, '' when unknown

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.mascot}".strip()


@dataclass(frozen=True)
class CanonicalIndex:
    """
    Immutable set of valid canonical team ids for a season plus lookup maps.

    Safe for concurrent read-only use once built.
    """
    season: int
    team_ids: FrozenSet[str]
    teams: Mapping[str, IndexedTeam]
    by_name_slug: Mapping[str, str]
    by_mascot_slug: Mapping[str, FrozenSet[str]]
    by_name_mascot_slug: Mapping[str, str]
    source_counts: Mapping[str, int] = field(default_factory=dict)
    filtered: FrozenSet[str] = field(default_factory=frozenset)
    canaries_injected: Tuple[str, ...] = ()

    def __contains__(self, team_id: object) -> bool:
        return team_id in self.team_ids

    def __len__(self) -> int:
        return len(self.team_ids)

    def lookup_name_slug(self, slug: str) -> Optional[str]:
        """Team id whose normalized name slugs to `slug`."""
        return self.by_name_slug.get(slug)

    def lookup_name_mascot_slug(self, slug: str) -> Optional[str]:
        """Team id whose normalized "name mascot" slugs to `slug`."""
        return self.by_name_mascot_slug.get(slug)

    def mascot_owners(self, mascot: str) -> FrozenSet[str]:
        """Ids of indexed teams whose mascot is `mascot`."""
        return self.by_mascot_slug.get(slugify(mascot), frozenset())

    @property
    def mascot_names(self) -> FrozenSet[str]:
        """Normalized (space separated) mascots of every indexed team."""
        return frozenset(team.mascot for team in self.teams.values() if team.mascot)


def load_snapshot_ids(path: str) -> List[str]:
    """
    Read the checked-in FBS snapshot list.

    Accepts either a bare YAML list or a mapping with a 'teams' list. A
    missing file contributes nothing; the index floor decides whether the
    remaining sources suffice.
    """
    snapshot_path = Path(path)
    if not snapshot_path.exists():
        logger.warning(f"FBS snapshot not found at {snapshot_path}, continuing without it")
        return []

    with snapshot_path.open(encoding='utf-8') as f:
        data = yaml.safe_load(f) or []

    if isinstance(data, dict):
        data = data.get('teams') or []
    if not isinstance(data, list):
        raise ValueError(f"FBS snapshot {snapshot_path} must be a list of team ids")

    return [str(team_id).strip() for team_id in data if str(team_id).strip()]


def collect_registry_ids(db: Session, season: int) -> Set[str]:
    """FBS teams from the primary registry whose membership covers the season."""
    rows = db.query(Team.id).filter(
        Team.classification == 'fbs',
        or_(Team.first_fbs_season.is_(None), Team.first_fbs_season <= season),
        or_(Team.last_fbs_season.is_(None), Team.last_fbs_season >= season),
    ).all()
    return {row.id for row in rows}


def collect_historical_ids(db: Session, season: int, lookback_seasons: int) -> Set[str]:
    """Teams appearing on either side of games in [season - lookback, season]."""
    rows = db.query(Game.home_team_id, Game.away_team_id).filter(
        Game.season >= season - lookback_seasons,
        Game.season <= season,
    ).all()
    ids: Set[str] = set()
    for home_team_id, away_team_id in rows:
        ids.add(home_team_id)
        ids.add(away_team_id)
    return ids


def _admit(
    candidates: Iterable[str],
    denylist: Denylist,
    admitted: Set[str],
    filtered: Set[str]
) -> int:
    """Add non-rejected candidates to `admitted`; return how many the source offered."""
    offered = 0
    for candidate in candidates:
        candidate = candidate.strip().lower()
        if not candidate:
            continue
        offered += 1
        if denylist.is_rejected(candidate):
            filtered.add(candidate)
            continue
        admitted.add(candidate)
    return offered


def _build_lookup_maps(
    team_ids: FrozenSet[str],
    rows: Dict[str, Team]
) -> Tuple[Dict[str, IndexedTeam], Dict[str, str], Dict[str, FrozenSet[str]], Dict[str, str]]:
    teams: Dict[str, IndexedTeam] = {}
    by_name: Dict[str, str] = {}
    by_mascot: Dict[str, Set[str]] = {}
    by_name_mascot: Dict[str, str] = {}

    # Sorted so collisions resolve the same way on every run
    for team_id in sorted(team_ids):
        row = rows.get(team_id)
        if row is not None:
            indexed = IndexedTeam(
                id=team_id,
                name=normalize(row.name),
                mascot=normalize(row.mascot or ''),
            )
        else:
            indexed = IndexedTeam(id=team_id, name=normalize(team_id.replace('-', ' ')))
        teams[team_id] = indexed

        name_slug = slugify(indexed.name)
        existing = by_name.get(name_slug)
        if existing and existing != team_id:
            logger.warning(
                f"Name slug collision '{name_slug}': keeping {existing}, ignoring {team_id}"
            )
        elif name_slug:
            by_name[name_slug] = team_id

        if indexed.mascot:
            by_mascot.setdefault(slugify(indexed.mascot), set()).add(team_id)
            full_slug = slugify(indexed.full_name)
            by_name_mascot.setdefault(full_slug, team_id)

    frozen_mascots = {slug: frozenset(ids) for slug, ids in by_mascot.items()}
    return teams, by_name, frozen_mascots, by_name_mascot


def build_canonical_index(
    db: Session,
    season: int,
    denylist: Denylist,
    snapshot_ids: Iterable[str],
    min_size: Optional[int] = None,
    lookback_seasons: Optional[int] = None,
    must_have: Iterable[str] = MUST_HAVE_TEAMS
) -> CanonicalIndex:
    """
    Build the canonical index for a season.

    Args:
        db: Session on the canonical store (read only)
        season: Season year
        denylist: Rejection rules applied to every candidate
        snapshot_ids: Ids from the static snapshot list
        min_size: Size floor; defaults to settings.CANONICAL_INDEX_MIN_SIZE
        lookback_seasons: Historical game range; defaults to settings
        must_have: Canary ids injected after the union

    Returns:
        CanonicalIndex

    Raises:
        CanonicalIndexTooSmallError: when the result is below the floor
    """
    from cfb_reconcile.core.config import settings

    if min_size is None:
        min_size = settings.CANONICAL_INDEX_MIN_SIZE
    if lookback_seasons is None:
        lookback_seasons = settings.HISTORY_LOOKBACK_SEASONS

    admitted: Set[str] = set()
    filtered: Set[str] = set()
    source_counts = {
        SOURCE_REGISTRY: _admit(collect_registry_ids(db, season), denylist, admitted, filtered),
        SOURCE_HISTORICAL: _admit(
            collect_historical_ids(db, season, lookback_seasons), denylist, admitted, filtered
        ),
        SOURCE_SNAPSHOT: _admit(snapshot_ids, denylist, admitted, filtered),
    }

    injected: List[str] = []
    for canary in must_have:
        if canary in admitted:
            continue
        if denylist.is_rejected(canary):
            logger.error(f"Canary team '{canary}' is denylisted; not injecting it")
            continue
        admitted.add(canary)
        injected.append(canary)

    if injected:
        logger.warning(f"Canary teams missing from every source, injected: {', '.join(injected)}")

    logger.info(
        f"Canonical index sources for {season}: "
        f"registry={source_counts[SOURCE_REGISTRY]}, "
        f"historical_games={source_counts[SOURCE_HISTORICAL]}, "
        f"snapshot={source_counts[SOURCE_SNAPSHOT]}, "
        f"filtered={len(filtered)}"
    )
    if filtered:
        logger.info(f"Denylist rejected: {', '.join(sorted(filtered))}")

    if len(admitted) < min_size:
        logger.critical(
            f"Canonical index for {season} has {len(admitted)} teams (floor {min_size}); aborting"
        )
        raise CanonicalIndexTooSmallError(season, len(admitted), min_size, source_counts)

    team_ids = frozenset(admitted)
    rows = {
        team.id: team
        for team in db.query(Team).filter(Team.id.in_(sorted(team_ids))).all()
    }
    teams, by_name, by_mascot, by_name_mascot = _build_lookup_maps(team_ids, rows)

    index = CanonicalIndex(
        season=season,
        team_ids=team_ids,
        teams=MappingProxyType(teams),
        by_name_slug=MappingProxyType(by_name),
        by_mascot_slug=MappingProxyType(by_mascot),
        by_name_mascot_slug=MappingProxyType(by_name_mascot),
        source_counts=MappingProxyType(source_counts),
        filtered=frozenset(filtered),
        canaries_injected=tuple(injected),
    )
    logger.info(f"Built canonical index for {season} with {len(index)} teams")
    return index
