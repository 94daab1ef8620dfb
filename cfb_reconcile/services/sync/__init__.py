"""
Provider Reconciliation Service

Maps provider team names and game references onto canonical teams and games.

Key components:
- Canonical index: Season-scoped set of valid team ids plus lookup maps
- Alias table: Human-curated provider string -> canonical id mappings
- Matchers: Multi-pass team resolver and temporal game matcher
- Audit: Per-run match counters and unmatched entities for curation
- Orchestrator: Coordinate one batch run end to end
"""
