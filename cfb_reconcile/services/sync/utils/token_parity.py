"""Token-parity guard for heuristic team matches.

Two programs that differ only by a "State", "Tech" or "A&M" token are
distinct programs ("Mississippi" vs "Mississippi State", "Texas" vs
"Texas Tech" vs "Texas A&M"). High-similarity heuristics collapse them
easily, so every heuristic pass must agree with the raw name on the presence
of each of these markers.

Exact-id and curated-exception passes never consult this guard.
"""
from typing import FrozenSet, List

from cfb_reconcile.services.sync.utils.name_normalizer import tokens, slug_tokens

STATE = 'state'
TECH = 'tech'
A_AND_M = 'a&m'

PARITY_MARKERS = (STATE, TECH, A_AND_M)


def _markers_in(token_list: List[str]) -> FrozenSet[str]:
    found = set()
    if STATE in token_list:
        found.add(STATE)
    if TECH in token_list:
        found.add(TECH)
    # "A&M" normalizes to the adjacent tokens a, m
    for left, right in zip(token_list, token_list[1:]):
        if left == 'a' and right == 'm':
            found.add(A_AND_M)
            break
    return frozenset(found)


def parity_markers(raw_name: str) -> FrozenSet[str]:
    """Structural markers present in a provider string."""
    return _markers_in(tokens(raw_name))


def candidate_markers(candidate_id: str) -> FrozenSet[str]:
    """Structural markers present in a canonical id slug."""
    return _markers_in(slug_tokens(candidate_id))


def violates_parity(raw_name: str, candidate_id: str) -> bool:
    """
    Check whether a candidate disagrees with the raw name on any marker.

    Args:
        raw_name: Provider team string (raw or normalized)
        candidate_id: Canonical team id being considered

    Returns:
        True if a marker is present on one side but not the other

    Examples:
        >>> violates_parity("Mississippi State Bulldogs", "mississippi")
        True
        >>> violates_parity("Texas A&M Aggies", "texas-a-m")
        False
        >>> violates_parity("Texas", "texas-tech")
        True
    """
    return parity_markers(raw_name) != candidate_markers(candidate_id)
