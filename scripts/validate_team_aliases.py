#!/usr/bin/env python3
"""
Validate config/team_aliases.yml against the canonical index.

Intended for CI and for checking hand edits before they ship. Parses the
alias resource, builds the season's canonical index and checks every alias
target. Every violation is printed, not just the first.

Checks:
- YAML is well-formed, no duplicate keys, no conflicting normalized keys
- Every target is in the canonical index (after ASCII folding and renames)
- No target is denylisted

Usage:
    python scripts/validate_team_aliases.py --season 2024
    python scripts/validate_team_aliases.py --season 2024 --aliases path/to/team_aliases.yml

Exit status: 0 when valid, 1 otherwise.
"""
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from cfb_reconcile.core.config import settings
from cfb_reconcile.core.database import get_session_factory
from cfb_reconcile.core.logging import configure_logging
from cfb_reconcile.services.sync.alias_table import (
    locate_alias_resource,
    parse_alias_resource,
    validate_alias_config,
)
from cfb_reconcile.services.sync.canonical_index import build_canonical_index, load_snapshot_ids
from cfb_reconcile.services.sync.errors import (
    AliasResourceParseError,
    AliasValidationError,
    ReconciliationConfigError,
)
from cfb_reconcile.services.sync.utils.denylist import Denylist

logger = logging.getLogger(__name__)


def validate(season: int, aliases_path: Path = None) -> bool:
    """
    Run every check for one season.

    Returns:
        True when the resource is valid
    """
    candidates = [aliases_path] if aliases_path else settings.candidate_alias_paths()
    inline = None if aliases_path else settings.TEAM_ALIASES_YAML
    text, source = locate_alias_resource(inline, candidates)
    print(f"Validating {source} for season {season}")

    try:
        config = parse_alias_resource(text, source)
    except AliasResourceParseError as e:
        print(f"\n❌ {len(e.problems)} structural problem(s):")
        for problem in e.problems:
            print(f"  - {problem}")
        return False

    patterns = list(config.denylist_patterns) if config.denylist_patterns is not None else None
    denylist = Denylist.from_config(config.denylist, patterns)

    db = get_session_factory()()
    try:
        index = build_canonical_index(
            db,
            season,
            denylist,
            load_snapshot_ids(settings.FBS_SNAPSHOT_PATH),
        )
    finally:
        db.close()

    try:
        table = validate_alias_config(config, index, denylist)
    except AliasValidationError as e:
        print(f"\n❌ {len(e.violations)} invalid alias target(s):")
        for violation in e.violations:
            print(f"  - {violation}")
        return False

    print(f"\n✅ {len(table)} aliases valid against {len(index)} canonical teams")
    print(f"   denylist: {len(denylist)} exact, {len(denylist.patterns)} pattern(s)")
    return True


def main():
    """Main entry point for the script."""
    import argparse

    parser = argparse.ArgumentParser(description="Validate team aliases against the canonical index")
    parser.add_argument('--season', type=int, required=True, help='Season whose index is used')
    parser.add_argument('--aliases', type=Path, default=None, help='Alias resource to check')
    args = parser.parse_args()

    configure_logging(level="WARNING", json_output=False)

    try:
        ok = validate(args.season, args.aliases)
    except ReconciliationConfigError as e:
        print(f"\n❌ {e}")
        sys.exit(1)

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
