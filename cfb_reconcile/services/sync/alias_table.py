"""Alias table loader and validator.

team_aliases.yml is edited by hand over time. A typo there silently
redirects a program's odds into a wrong or non-existent canonical bucket, so
loading is split in two phases:

1. Parse - read the YAML (duplicate keys rejected), normalize every key and
   return an AliasConfig. Succeeds whenever the resource is well-formed.
2. Validate - check every target against the canonical index and the
   denylist. Any violation fails the whole load, enumerating every offending
   entry; a partially loaded table is never returned.

Resource layout:

    aliases:            {provider string: canonical id}
    provider_aliases:   {provider: {provider string: canonical id}}
    denylist:           [canonical id, ...]
    denylist_patterns:  [{suffix: "-college", exceptions: [boston-college]}]
    renames:            {old canonical id: new canonical id}
    parity_exceptions:  {provider string: canonical id}
    transitional_teams: [canonical id, ...]
"""
import logging
from collections.abc import Hashable
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

import yaml

from cfb_reconcile.services.sync.canonical_index import CanonicalIndex
from cfb_reconcile.services.sync.errors import (
    AliasResourceNotFoundError,
    AliasResourceParseError,
    AliasValidationError,
    AliasViolation,
)
from cfb_reconcile.services.sync.utils.denylist import Denylist
from cfb_reconcile.services.sync.utils.name_normalizer import id_slug, normalize

logger = logging.getLogger(__name__)

INLINE_SOURCE = 'environment variable TEAM_ALIASES_YAML'
MAX_RENAME_HOPS = 5


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that refuses duplicate mapping keys instead of keeping the last."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if not isinstance(key, Hashable):
                continue
            if key in seen:
                raise yaml.constructor.ConstructorError(
                    "while constructing a mapping", node.start_mark,
                    f"found duplicate key {key!r}", key_node.start_mark
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


@dataclass(frozen=True)
class AliasEntry:
    """One provider string -> canonical target mapping."""
    section: str
    provider_string: str
    normalized: str
    target: str


@dataclass(frozen=True)
class AliasConfig:
    """Parsed (not yet validated) alias resource."""
    source: str
    entries: Tuple[AliasEntry, ...] = ()
    denylist: Tuple[str, ...] = ()
    denylist_patterns: Optional[Tuple[Dict[str, Any], ...]] = None
    renames: Mapping[str, str] = field(default_factory=dict)
    transitional_teams: FrozenSet[str] = field(default_factory=frozenset)

    def section(self, name: str) -> List[AliasEntry]:
        return [entry for entry in self.entries if entry.section == name]


@dataclass(frozen=True)
class AliasTable:
    """
    Validated, immutable alias table.

    Every target is guaranteed to be in the canonical index the table was
    validated against and not denylisted.
    """
    source: str
    aliases: Mapping[str, str]
    provider_aliases: Mapping[str, Mapping[str, str]]
    parity_exceptions: Mapping[str, str]
    transitional_teams: FrozenSet[str] = field(default_factory=frozenset)

    def lookup(self, normalized: str, provider: Optional[str] = None) -> Optional[str]:
        """
        Look up a normalized provider string.

        Provider-specific aliases are consulted first when a provider is given.
        """
        if provider:
            provider_map = self.provider_aliases.get(provider.lower())
            if provider_map and normalized in provider_map:
                return provider_map[normalized]
        return self.aliases.get(normalized)

    def parity_exception(self, normalized: str) -> Optional[str]:
        """Curated target for names that break the State/Tech/A&M convention."""
        return self.parity_exceptions.get(normalized)

    def is_transitional(self, team_id: str) -> bool:
        return team_id in self.transitional_teams

    def is_transitional_matchup(self, home_team_id: str, away_team_id: str) -> bool:
        """Check if either team in a matchup is transitional."""
        return self.is_transitional(home_team_id) or self.is_transitional(away_team_id)

    def __len__(self) -> int:
        return len(self.aliases) + sum(len(m) for m in self.provider_aliases.values())


# =============================================================================
# PHASE 0: LOCATE
# =============================================================================

def locate_alias_resource(
    inline_yaml: Optional[str],
    candidate_paths: Sequence[Path]
) -> Tuple[str, str]:
    """
    Find the alias resource.

    Priority:
    1. Inline YAML (useful for quick hotfixes)
    2. Candidate paths in order (explicit override first)

    Returns:
        (yaml text, source label)

    Raises:
        AliasResourceNotFoundError: when nothing is found anywhere
    """
    if inline_yaml:
        return inline_yaml, INLINE_SOURCE

    for path in candidate_paths:
        if path.exists():
            return path.read_text(encoding='utf-8'), str(path)
        logger.debug(f"No alias resource at {path}")

    attempted = [f"{INLINE_SOURCE} (unset)"] + [str(p) for p in candidate_paths]
    logger.critical("Cannot proceed without team aliases")
    raise AliasResourceNotFoundError(attempted)


# =============================================================================
# PHASE 1: PARSE
# =============================================================================

def _parse_mapping_section(
    section: str,
    raw: Any,
    problems: List[str]
) -> List[AliasEntry]:
    if raw is None:
        return []
    if not isinstance(raw, dict):
        problems.append(f"'{section}' must be a mapping of provider string to canonical id")
        return []

    entries: List[AliasEntry] = []
    by_key: Dict[str, AliasEntry] = {}
    for provider_string, target in raw.items():
        provider_string = str(provider_string)
        if not isinstance(target, str) or not target.strip():
            problems.append(f"[{section}] '{provider_string}' has an empty or non-string target")
            continue

        entry = AliasEntry(
            section=section,
            provider_string=provider_string,
            normalized=normalize(provider_string),
            target=target.strip().lower(),
        )
        if not entry.normalized:
            problems.append(f"[{section}] '{provider_string}' normalizes to an empty string")
            continue

        previous = by_key.get(entry.normalized)
        if previous is not None:
            if previous.target != entry.target:
                problems.append(
                    f"[{section}] '{previous.provider_string}' and '{provider_string}' both normalize "
                    f"to '{entry.normalized}' but target '{previous.target}' vs '{entry.target}'"
                )
            continue

        by_key[entry.normalized] = entry
        entries.append(entry)
    return entries


def _parse_id_list(section: str, raw: Any, problems: List[str]) -> List[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        problems.append(f"'{section}' must be a list of canonical ids")
        return []
    return [str(item).strip().lower() for item in raw if str(item).strip()]


def _parse_patterns(raw: Any, problems: List[str]) -> Optional[Tuple[Dict[str, Any], ...]]:
    if raw is None:
        return None
    if not isinstance(raw, list):
        problems.append("'denylist_patterns' must be a list of {suffix, exceptions}")
        return None

    patterns = []
    for item in raw:
        if not isinstance(item, dict) or not isinstance(item.get('suffix'), str) or not item['suffix'].strip():
            problems.append(f"denylist pattern {item!r} needs a non-empty 'suffix'")
            continue
        exceptions = item.get('exceptions') or []
        if not isinstance(exceptions, list):
            problems.append(f"denylist pattern '{item['suffix']}' exceptions must be a list")
            continue
        patterns.append({'suffix': item['suffix'], 'exceptions': [str(e) for e in exceptions]})
    return tuple(patterns)


def parse_alias_resource(text: str, source: str) -> AliasConfig:
    """
    Parse the alias resource (phase 1).

    Args:
        text: YAML text
        source: Label used in logs and errors

    Returns:
        AliasConfig with normalized keys

    Raises:
        AliasResourceParseError: unparsable YAML, duplicate keys, or bad structure
    """
    try:
        data = yaml.load(text, Loader=_UniqueKeyLoader)
    except yaml.YAMLError as e:
        raise AliasResourceParseError(source, [str(e)]) from e

    if not isinstance(data, dict):
        raise AliasResourceParseError(source, ["expected a mapping with 'aliases' and 'denylist' sections"])
    if not isinstance(data.get('aliases'), dict):
        raise AliasResourceParseError(source, ["missing or invalid 'aliases' section"])

    problems: List[str] = []
    entries = _parse_mapping_section('aliases', data['aliases'], problems)
    entries += _parse_mapping_section('parity_exceptions', data.get('parity_exceptions'), problems)

    provider_aliases = data.get('provider_aliases')
    if provider_aliases is not None:
        if not isinstance(provider_aliases, dict):
            problems.append("'provider_aliases' must map provider name to an alias mapping")
        else:
            for provider, mapping in provider_aliases.items():
                entries += _parse_mapping_section(
                    f"provider_aliases.{str(provider).lower()}", mapping, problems
                )

    renames_raw = data.get('renames') or {}
    renames: Dict[str, str] = {}
    if not isinstance(renames_raw, dict):
        problems.append("'renames' must map old canonical id to new canonical id")
    else:
        for old_id, new_id in renames_raw.items():
            if not isinstance(new_id, str) or not new_id.strip():
                problems.append(f"rename '{old_id}' has an empty or non-string target")
                continue
            renames[str(old_id).strip().lower()] = new_id.strip().lower()

    denylist = _parse_id_list('denylist', data.get('denylist'), problems)
    transitional = _parse_id_list('transitional_teams', data.get('transitional_teams'), problems)
    patterns = _parse_patterns(data.get('denylist_patterns'), problems)

    if problems:
        raise AliasResourceParseError(source, problems)

    config = AliasConfig(
        source=source,
        entries=tuple(entries),
        denylist=tuple(denylist),
        denylist_patterns=patterns,
        renames=MappingProxyType(renames),
        transitional_teams=frozenset(transitional),
    )
    logger.info(
        f"Parsed {len(config.entries)} alias entries and {len(config.denylist)} denylisted "
        f"teams from {source}"
    )
    return config


def load_alias_config(
    inline_yaml: Optional[str] = None,
    candidate_paths: Optional[Sequence[Path]] = None
) -> AliasConfig:
    """Locate and parse the alias resource using settings defaults."""
    from cfb_reconcile.core.config import settings

    if inline_yaml is None:
        inline_yaml = settings.TEAM_ALIASES_YAML
    if candidate_paths is None:
        candidate_paths = settings.candidate_alias_paths()
        if settings.TEAM_ALIASES_PATH and not Path(settings.TEAM_ALIASES_PATH).exists():
            logger.warning(
                f"TEAM_ALIASES_PATH={settings.TEAM_ALIASES_PATH} does not exist, "
                f"falling back to conventional locations"
            )

    text, source = locate_alias_resource(inline_yaml, candidate_paths)
    return parse_alias_resource(text, source)


# =============================================================================
# PHASE 2: VALIDATE
# =============================================================================

def _effective_target(
    target: str,
    index: CanonicalIndex,
    renames: Mapping[str, str]
) -> Optional[str]:
    """
    Map a target onto an id present in the index.

    Tries the target itself, its ASCII-folded slug, then follows the rename
    table. Returns None when every attempt misses.
    """
    if target in index:
        return target

    folded = id_slug(target)
    if folded in index:
        logger.info(f"Alias target '{target}' matched index as ASCII-folded '{folded}'")
        return folded

    current = folded
    for _ in range(MAX_RENAME_HOPS):
        renamed = renames.get(current) or renames.get(target)
        if renamed is None or renamed == current:
            return None
        if renamed in index:
            logger.info(f"Alias target '{target}' follows rename to '{renamed}'")
            return renamed
        target, current = renamed, renamed
    return None


def validate_alias_config(
    config: AliasConfig,
    index: CanonicalIndex,
    denylist: Denylist
) -> AliasTable:
    """
    Validate every alias target (phase 2).

    Args:
        config: Parsed alias resource
        index: Canonical index for the run's season
        denylist: Rejection rules

    Returns:
        AliasTable containing every entry

    Raises:
        AliasValidationError: if any target is denylisted or outside the index
    """
    violations: List[AliasViolation] = []
    resolved: Dict[str, Dict[str, str]] = {}

    for entry in config.entries:
        if denylist.is_rejected(entry.target):
            violations.append(AliasViolation(entry.section, entry.provider_string, entry.target, 'denylisted'))
            continue

        effective = _effective_target(entry.target, index, config.renames)
        if effective is None:
            violations.append(AliasViolation(entry.section, entry.provider_string, entry.target, 'not_in_index'))
            continue
        if denylist.is_rejected(effective):
            violations.append(AliasViolation(entry.section, entry.provider_string, effective, 'denylisted'))
            continue

        resolved.setdefault(entry.section, {})[entry.normalized] = effective

        if id_slug(entry.provider_string) in denylist.exact:
            logger.warning(
                f"Alias key '{entry.provider_string}' is itself denylisted; it will never resolve"
            )

    if violations:
        for violation in violations:
            logger.error(f"Invalid alias entry {violation}")
        raise AliasValidationError(violations, config.source)

    for team_id in sorted(config.transitional_teams):
        if team_id not in index:
            logger.warning(f"Transitional team '{team_id}' is not in the {index.season} index")

    provider_aliases = {
        section.split('.', 1)[1]: MappingProxyType(mapping)
        for section, mapping in resolved.items()
        if section.startswith('provider_aliases.')
    }
    table = AliasTable(
        source=config.source,
        aliases=MappingProxyType(resolved.get('aliases', {})),
        provider_aliases=MappingProxyType(provider_aliases),
        parity_exceptions=MappingProxyType(resolved.get('parity_exceptions', {})),
        transitional_teams=config.transitional_teams,
    )
    logger.info(f"Loaded {len(table)} validated team aliases from {config.source}")
    return table


def load_alias_table(
    index: CanonicalIndex,
    denylist: Denylist,
    inline_yaml: Optional[str] = None,
    candidate_paths: Optional[Sequence[Path]] = None
) -> AliasTable:
    """Locate, parse and validate the alias resource in one call."""
    config = load_alias_config(inline_yaml, candidate_paths)
    return validate_alias_config(config, index, denylist)
