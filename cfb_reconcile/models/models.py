"""
Canonical team and game models.

Rows are owned by the external schedule store. The reconciliation layer reads
them to build the canonical index and to run game lookups; it never writes
team or game rows.
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Boolean, Index
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


class Team(Base):
    """
    Canonical team registry.

    The primary key is the canonical slug (e.g. 'ohio-state', 'mississippi').
    Renamed programs get a new row plus an entry in the alias resource's
    rename table; ids are never mutated in place.
    """
    __tablename__ = "teams"

    id = Column(String(100), primary_key=True)
    name = Column(String(255), nullable=False)          # "Ole Miss" / "Ohio State"
    mascot = Column(String(100), nullable=True)         # "Rebels" / "Buckeyes"
    abbreviation = Column(String(10), nullable=True)
    conference = Column(String(100), nullable=True)
    classification = Column(String(10), nullable=False, default="fbs", index=True)  # fbs, fcs, ii, iii
    first_fbs_season = Column(Integer, nullable=True)   # NULL = always FBS
    last_fbs_season = Column(Integer, nullable=True)    # NULL = still FBS
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Team(id={self.id}, name={self.name}, mascot={self.mascot})>"


class Game(Base):
    """
    Canonical scheduled game.

    At most one row per (season, home_team_id, away_team_id) in the normal
    case; the occasional rematch in one season is disambiguated by kickoff.
    kickoff_time is stored as naive UTC.
    """
    __tablename__ = "games"

    id = Column(String(100), primary_key=True)
    season = Column(Integer, nullable=False, index=True)
    week = Column(Integer, nullable=False)
    season_type = Column(String(10), nullable=False, default="regular")  # regular, postseason
    home_team_id = Column(String(100), ForeignKey("teams.id"), nullable=False)
    away_team_id = Column(String(100), ForeignKey("teams.id"), nullable=False)
    kickoff_time = Column(DateTime, nullable=False)
    neutral_site = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    home_team = relationship("Team", foreign_keys=[home_team_id])
    away_team = relationship("Team", foreign_keys=[away_team_id])

    __table_args__ = (
        Index('ix_games_season_week_teams', 'season', 'week', 'home_team_id', 'away_team_id'),
        Index('ix_games_season_teams', 'season', 'home_team_id', 'away_team_id'),
    )

    def __repr__(self):
        return (f"<Game(id={self.id}, {self.season} W{self.week}: "
                f"{self.away_team_id} @ {self.home_team_id}, {self.kickoff_time})>")
