"""Team resolver for mapping provider team strings onto canonical team ids.

Handles the ways providers name a program:
- Canonical ids passed straight through: "ohio-state"
- Institution names: "Ohio State", "University of Alabama"
- Name plus mascot: "Ohio State Buckeyes"
- Nicknames and abbreviations: "Ole Miss Rebels", "UL Monroe", "UCF"
- Near misses: "San Jose St Spartans"

Pipeline (pass order is versioned, see RESOLVER_PASS_ORDERS):
1. Exact canonical id
2. Parity exception - curated names that break the State/Tech/A&M convention
3. Exact name slug (guarded)
4. Alias table - human curated, authoritative; full name unguarded, the
   mascot-stripped form guarded
5. Mascot-stripped name slug (guarded)
6. Name + mascot slug (guarded)
7. Fuzzy token-set similarity (guarded, strict winner required)

"Guarded" passes are rejected when the candidate disagrees with the raw name
on a State/Tech/A&M token. A failed resolution is never an exception; it
returns an outcome without team_id and is recorded for the audit report.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from rapidfuzz import process

from cfb_reconcile.services.sync.alias_table import AliasTable
from cfb_reconcile.services.sync.audit import MatchStatsAccumulator
from cfb_reconcile.services.sync.canonical_index import CanonicalIndex
from cfb_reconcile.services.sync.errors import ReconciliationConfigError
from cfb_reconcile.services.sync.utils.denylist import Denylist
from cfb_reconcile.services.sync.utils.name_normalizer import (
    KNOWN_MASCOTS,
    id_slug,
    normalize,
    slugify,
    strip_last_token,
    strip_mascot,
)
from cfb_reconcile.services.sync.utils.token_parity import violates_parity

logger = logging.getLogger(__name__)


class ResolutionPass(str, Enum):
    EXACT_ID = 'exact_id'
    PARITY_EXCEPTION = 'parity_exception'
    EXACT_SLUG = 'exact_slug'
    ALIAS = 'alias'
    STRIP_MASCOT = 'strip_mascot'
    NAME_MASCOT = 'name_mascot'
    FUZZY = 'fuzzy'
    NONE = 'none'


RESOLVER_PASS_ORDERS: Dict[str, Tuple[ResolutionPass, ...]] = {
    'v1': (
        ResolutionPass.EXACT_ID,
        ResolutionPass.PARITY_EXCEPTION,
        ResolutionPass.EXACT_SLUG,
        ResolutionPass.ALIAS,
        ResolutionPass.STRIP_MASCOT,
        ResolutionPass.NAME_MASCOT,
        ResolutionPass.FUZZY,
    ),
}

# Passes whose candidate must agree with the raw name on State/Tech/A&M
GUARDED_PASSES = frozenset({
    ResolutionPass.EXACT_SLUG,
    ResolutionPass.STRIP_MASCOT,
    ResolutionPass.NAME_MASCOT,
    ResolutionPass.FUZZY,
})

REASON_EMPTY_NAME = 'empty_name'
REASON_UNSUPPORTED_LEAGUE = 'unsupported_league'
REASON_DENYLISTED = 'denylisted'
REASON_AMBIGUOUS = 'ambiguous'
REASON_NO_MATCH = 'no_match'


@dataclass(frozen=True)
class Candidate:
    """A scored near-miss kept for the audit report."""
    id: str
    score: float


@dataclass(frozen=True)
class ResolutionOutcome:
    team_id: Optional[str]
    pass_used: ResolutionPass
    candidates: Tuple[Candidate, ...] = ()
    reason: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.team_id is not None


def _token_set(text: str) -> FrozenSet[str]:
    return frozenset(text.replace('-', ' ').split())


def _jaccard_scorer(s1: str, s2: str, **kwargs) -> float:
    """Jaccard similarity of the whitespace token sets of two normalized names."""
    a = _token_set(s1)
    b = _token_set(s2)
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


class TeamResolver:
    """
    Resolve provider team strings to canonical team ids.

    Immutable inputs (index, alias table, denylist) are built once per run
    and shared read-only, so one resolver may serve concurrent tasks; only
    the stats accumulator is written.
    """

    def __init__(
        self,
        index: CanonicalIndex,
        alias_table: AliasTable,
        denylist: Denylist,
        stats: Optional[MatchStatsAccumulator] = None,
        pass_order: Optional[str] = None,
        fuzzy_threshold: Optional[float] = None,
        candidate_floor: Optional[float] = None,
        max_candidates: Optional[int] = None,
        supported_leagues: Optional[Iterable[str]] = None
    ):
        """
        Initialize the team resolver.

        Args:
            index: Canonical index for the run's season
            alias_table: Validated alias table
            denylist: Rejection rules, re-checked on every accepted id
            stats: Accumulator receiving pass counts and failures
            pass_order: Key into RESOLVER_PASS_ORDERS
            fuzzy_threshold: Minimum similarity accepted by the fuzzy pass
            candidate_floor: Minimum similarity kept as an audit candidate
            max_candidates: Audit candidates kept per failure
            supported_leagues: League keys this resolver accepts
        """
        from cfb_reconcile.core.config import settings

        self.index = index
        self.alias_table = alias_table
        self.denylist = denylist
        self.stats = stats if stats is not None else MatchStatsAccumulator()

        self.pass_order_version = pass_order or settings.RESOLVER_PASS_ORDER
        if self.pass_order_version not in RESOLVER_PASS_ORDERS:
            raise ReconciliationConfigError(
                f"Unknown resolver pass order '{self.pass_order_version}' "
                f"(known: {', '.join(sorted(RESOLVER_PASS_ORDERS))})"
            )
        self.pass_order = RESOLVER_PASS_ORDERS[self.pass_order_version]

        self.fuzzy_threshold = fuzzy_threshold if fuzzy_threshold is not None else settings.FUZZY_THRESHOLD
        self.candidate_floor = candidate_floor if candidate_floor is not None else settings.FUZZY_CANDIDATE_FLOOR
        self.max_candidates = max_candidates if max_candidates is not None else settings.MAX_AUDIT_CANDIDATES
        leagues = supported_leagues if supported_leagues is not None else settings.SUPPORTED_LEAGUES
        self.supported_leagues = frozenset(league.lower() for league in leagues)

        self._mascots: Set[str] = set(KNOWN_MASCOTS) | set(index.mascot_names)
        self._fuzzy_choices = self._build_fuzzy_choices()

    def _build_fuzzy_choices(self) -> Dict[Tuple[str, str], str]:
        choices: Dict[Tuple[str, str], str] = {}
        for team_id, team in self.index.teams.items():
            choices[(team_id, 'id')] = team_id.replace('-', ' ')
            if team.name:
                choices[(team_id, 'name')] = team.name
            if team.mascot:
                choices[(team_id, 'full')] = team.full_name
        return choices

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def resolve(
        self,
        raw_name: Optional[str],
        league: str,
        provider: Optional[str] = None,
        stats: Optional[MatchStatsAccumulator] = None
    ) -> ResolutionOutcome:
        """
        Resolve a provider team string.

        Args:
            raw_name: Team string as the provider sent it
            league: Provider league key (e.g. 'americanfootball_ncaaf')
            provider: Provider name, selects provider-specific aliases
            stats: Accumulator override (per-task accumulators in batches)

        Returns:
            ResolutionOutcome; team_id is None when nothing matched
        """
        stats = stats if stats is not None else self.stats
        outcome = self._resolve(raw_name, league, provider)

        if outcome.matched:
            stats.record_resolution(outcome.pass_used)
            logger.debug(f"Resolved '{raw_name}' -> {outcome.team_id} via {outcome.pass_used.value}")
        else:
            stats.record_unmatched_team(
                raw_name or '',
                league or '',
                outcome.reason or REASON_NO_MATCH,
                candidates=outcome.candidates,
                provider=provider,
            )
            logger.warning(
                f"No team match for '{raw_name}' (league: {league}, reason: {outcome.reason})"
            )
        return outcome

    def resolve_id(
        self,
        raw_name: Optional[str],
        league: str,
        provider: Optional[str] = None
    ) -> Optional[str]:
        """Resolve and return only the canonical id, or None."""
        return self.resolve(raw_name, league, provider).team_id

    def batch_resolve(
        self,
        names: Iterable[str],
        league: str,
        provider: Optional[str] = None
    ) -> Dict[str, ResolutionOutcome]:
        """Resolve many names; each distinct name is resolved once."""
        results: Dict[str, ResolutionOutcome] = {}
        for name in names:
            if name not in results:
                results[name] = self.resolve(name, league, provider)
        return results

    # =========================================================================
    # PIPELINE
    # =========================================================================

    def _resolve(
        self,
        raw_name: Optional[str],
        league: str,
        provider: Optional[str]
    ) -> ResolutionOutcome:
        if not raw_name or not raw_name.strip():
            return ResolutionOutcome(None, ResolutionPass.NONE, reason=REASON_EMPTY_NAME)

        if (league or '').strip().lower() not in self.supported_leagues:
            return ResolutionOutcome(None, ResolutionPass.NONE, reason=REASON_UNSUPPORTED_LEAGUE)

        if self._raw_is_denylisted(raw_name):
            return ResolutionOutcome(None, ResolutionPass.NONE, reason=REASON_DENYLISTED)

        normalized = normalize(raw_name)
        candidates: Tuple[Candidate, ...] = ()
        ambiguous = False

        for pass_used in self.pass_order:
            if pass_used == ResolutionPass.FUZZY:
                team_id, candidates, ambiguous = self._fuzzy(normalized)
            else:
                team_id = self._run_pass(pass_used, raw_name, normalized, provider)

            if team_id is None:
                continue

            if pass_used in GUARDED_PASSES and violates_parity(normalized, team_id):
                logger.debug(
                    f"Parity guard rejected '{raw_name}' -> {team_id} ({pass_used.value})"
                )
                continue

            if not self._is_acceptable(team_id):
                logger.warning(
                    f"Pass {pass_used.value} produced unusable id '{team_id}' for '{raw_name}'"
                )
                continue

            return ResolutionOutcome(team_id, pass_used)

        reason = REASON_AMBIGUOUS if ambiguous else REASON_NO_MATCH
        return ResolutionOutcome(None, ResolutionPass.NONE, candidates=candidates, reason=reason)

    def _run_pass(
        self,
        pass_used: ResolutionPass,
        raw_name: str,
        normalized: str,
        provider: Optional[str]
    ) -> Optional[str]:
        if pass_used == ResolutionPass.EXACT_ID:
            return self._exact_id(raw_name)
        if pass_used == ResolutionPass.PARITY_EXCEPTION:
            return self._first_hit(self._name_forms(normalized), self.alias_table.parity_exception)
        if pass_used == ResolutionPass.EXACT_SLUG:
            return self._slug_lookup(slugify(normalized))
        if pass_used == ResolutionPass.ALIAS:
            return self._alias(normalized, provider)
        if pass_used == ResolutionPass.STRIP_MASCOT:
            return self._strip_mascot(normalized)
        if pass_used == ResolutionPass.NAME_MASCOT:
            return self.index.lookup_name_mascot_slug(slugify(normalized))
        raise ValueError(f"Unhandled resolution pass: {pass_used}")

    # =========================================================================
    # PASSES
    # =========================================================================

    def _exact_id(self, raw_name: str) -> Optional[str]:
        candidate = raw_name.strip().lower()
        return candidate if candidate in self.index else None

    def _alias(self, normalized: str, provider: Optional[str]) -> Optional[str]:
        for form in self._name_forms(normalized):
            team_id = self.alias_table.lookup(form, provider)
            if team_id is None:
                continue
            # Only the full name is a curated decision; a cut form still answers to the guard
            if form != normalized and violates_parity(normalized, team_id):
                logger.debug(f"Parity guard rejected alias '{form}' -> {team_id} for '{normalized}'")
                continue
            return team_id
        return None

    def _slug_lookup(self, slug: str) -> Optional[str]:
        if not slug:
            return None
        team_id = self.index.lookup_name_slug(slug)
        if team_id is not None:
            return team_id
        return slug if slug in self.index else None

    def _strip_mascot(self, normalized: str) -> Optional[str]:
        for stripped in (strip_mascot(normalized, self._mascots), strip_last_token(normalized)):
            if stripped:
                team_id = self._slug_lookup(slugify(stripped))
                if team_id is not None and self._mascot_fits(team_id, normalized[len(stripped):]):
                    return team_id
        return None

    def _mascot_fits(self, team_id: str, dropped: str) -> bool:
        """
        Check that the words cut from the name are not another program's mascot.

        "Miami RedHawks" strips to "miami", but the RedHawks belong to
        miami-oh. Teams without a known mascot are given the benefit of the doubt.
        """
        owners = self.index.mascot_owners(dropped.strip())
        if not owners or team_id in owners:
            return True
        team = self.index.teams.get(team_id)
        if team is not None and not team.mascot:
            return True
        logger.debug(f"Mascot '{dropped.strip()}' belongs to {', '.join(sorted(owners))}, not {team_id}")
        return False

    def _fuzzy(self, normalized: str) -> Tuple[Optional[str], Tuple[Candidate, ...], bool]:
        """
        Jaccard similarity against every index entry.

        Returns:
            (accepted id or None, audit candidates, whether the top was tied)
        """
        if not normalized or not self._fuzzy_choices:
            return None, (), False

        matches = process.extract(
            normalized,
            self._fuzzy_choices,
            scorer=_jaccard_scorer,
            limit=None,
            score_cutoff=self.candidate_floor,
        )

        best: Dict[str, float] = {}
        for _, score, (team_id, _variant) in matches:
            if score < self.candidate_floor:
                continue
            if score > best.get(team_id, 0.0):
                best[team_id] = score

        ordered = sorted(best.items(), key=lambda item: (-item[1], item[0]))
        # Near misses across a State/Tech/A&M boundary stay in the audit list
        # but are never accepted
        candidates = tuple(
            Candidate(id=team_id, score=round(score, 4))
            for team_id, score in ordered[:self.max_candidates]
        )
        ranked = [(team_id, score) for team_id, score in ordered if not violates_parity(normalized, team_id)]
        if not ranked:
            return None, candidates, False

        top_id, top_score = ranked[0]
        runner_up = ranked[1][1] if len(ranked) > 1 else 0.0

        if top_score < self.fuzzy_threshold:
            return None, candidates, False
        if top_score <= runner_up:
            logger.info(
                f"Fuzzy tie for '{normalized}' at {top_score:.2f}: "
                f"{', '.join(team_id for team_id, score in ranked if score == top_score)}"
            )
            return None, candidates, True
        return top_id, candidates, False

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _name_forms(self, normalized: str) -> List[str]:
        """
        Forms looked up in the curated tables: the normalized name, then the
        name with a known mascot removed.

        Curated entries are exempt from the parity guard, so only cuts that
        leave the State/Tech/A&M tokens untouched are tried here. Dropping an
        arbitrary trailing token is left to the guarded STRIP_MASCOT pass.
        """
        forms = [normalized]
        stripped = strip_mascot(normalized, self._mascots)
        if stripped and stripped not in forms:
            forms.append(stripped)
        return forms

    @staticmethod
    def _first_hit(forms: Iterable[str], lookup) -> Optional[str]:
        for form in forms:
            team_id = lookup(form)
            if team_id is not None:
                return team_id
        return None

    def _raw_is_denylisted(self, raw_name: str) -> bool:
        literal = id_slug(raw_name)
        if self.denylist.is_rejected(literal):
            return True
        # "Mississippi College Choctaws" -> mississippi-college
        head, _, _ = literal.rpartition('-')
        return bool(head) and self.denylist.is_denylisted(head)

    def _is_acceptable(self, team_id: str) -> bool:
        return team_id in self.index and not self.denylist.is_rejected(team_id)
