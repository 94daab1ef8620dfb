"""
Services module for reconciliation logic.

This module organizes services into:
- sync: Canonical index, alias table, team resolver, game matcher and the
  batch orchestrator that ties them together per run
"""
