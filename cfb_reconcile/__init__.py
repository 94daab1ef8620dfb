"""
Provider-to-canonical reconciliation for college football data feeds.

Maps free-text provider team names and game references onto canonical team
ids and game rows before any ratings or grading run.
"""
__version__ = "1.0.0"
