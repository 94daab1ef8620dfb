"""Denylist for non-FBS team slugs.

These slugs are rejected from the canonical index and from alias targets.
Lower-division programs whose names collide with FBS programs
("mississippi-college" vs "mississippi", "missouri-state" vs "missouri")
otherwise leak into resolution through historical game rows and fuzzy
matching.

Two independent checks, OR'd:
1. Exact membership in a maintained rejection set
2. Suffix pattern (e.g. "-college") with an explicit exception list for the
   rare FBS program carrying that suffix ("boston-college")

New collisions belong in the exact set; broadening a pattern rejects
legitimate programs as collateral.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class SuffixPattern:
    """A suffix that signals a non-FBS program, with named exceptions."""
    suffix: str
    exceptions: FrozenSet[str] = field(default_factory=frozenset)

    def matches(self, slug: str) -> bool:
        return slug.endswith(self.suffix) and slug not in self.exceptions


DEFAULT_PATTERNS: Tuple[SuffixPattern, ...] = (
    SuffixPattern(suffix='-college', exceptions=frozenset({'boston-college'})),
)


@dataclass(frozen=True)
class Denylist:
    """Immutable rejection rules for candidate team ids."""
    exact: FrozenSet[str] = field(default_factory=frozenset)
    patterns: Tuple[SuffixPattern, ...] = DEFAULT_PATTERNS

    @classmethod
    def from_config(
        cls,
        denylist: Optional[Iterable[str]] = None,
        patterns: Optional[List[Dict[str, Any]]] = None
    ) -> "Denylist":
        """
        Build the denylist from the alias resource's sections.

        Args:
            denylist: Exact slugs to reject
            patterns: List of {'suffix': str, 'exceptions': [str]} dicts;
                falls back to DEFAULT_PATTERNS when not given

        Returns:
            Denylist instance
        """
        exact = frozenset(s.strip().lower() for s in (denylist or []) if s and s.strip())
        if patterns is None:
            return cls(exact=exact)

        built = tuple(
            SuffixPattern(
                suffix=p['suffix'].strip().lower(),
                exceptions=frozenset(e.strip().lower() for e in p.get('exceptions') or []),
            )
            for p in patterns
        )
        return cls(exact=exact, patterns=built)

    def is_denylisted(self, slug: str) -> bool:
        """Check if a slug is explicitly denied."""
        return slug in self.exact

    def matches_pattern(self, slug: str) -> bool:
        """Check if a slug matches a known non-FBS pattern."""
        return any(p.matches(slug) for p in self.patterns)

    def is_rejected(self, slug: str) -> bool:
        """Combined check: is this slug rejected?"""
        return self.is_denylisted(slug) or self.matches_pattern(slug)

    def reason(self, slug: str) -> Optional[str]:
        """Which rule rejects the slug, or None."""
        if self.is_denylisted(slug):
            return 'exact'
        for pattern in self.patterns:
            if pattern.matches(slug):
                return f'pattern:*{pattern.suffix}'
        return None

    def __len__(self) -> int:
        return len(self.exact)
