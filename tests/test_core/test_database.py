"""Tests for engine and session helpers."""
from sqlalchemy import text
from sqlalchemy.orm import sessionmaker

from cfb_reconcile.core import database
from cfb_reconcile.core.database import _connect_args, create_store_engine, get_db


class TestConnectArgs:
    """Driver-specific timeout arguments."""

    def test_sqlite(self):
        assert _connect_args("sqlite:///store.db", 5) == {"timeout": 5, "check_same_thread": False}

    def test_postgres(self):
        assert _connect_args("postgresql://u:p@localhost/cfb", 5) == {"connect_timeout": 5}

    def test_other_backend(self):
        assert _connect_args("mysql://u:p@localhost/cfb", 5) == {}


class TestSessions:
    """Engine creation and session lifecycle."""

    def test_create_store_engine_sqlite(self, tmp_path):
        engine = create_store_engine(f"sqlite:///{tmp_path / 'store.db'}", connect_timeout=3)
        try:
            with engine.connect() as conn:
                assert conn.execute(text("SELECT 1")).scalar() == 1
        finally:
            engine.dispose()

    def test_get_db_closes_session(self, engine, monkeypatch):
        """Should yield a session on the configured engine and close it afterwards."""
        monkeypatch.setattr(database, "_engine", engine)
        monkeypatch.setattr(database, "_SessionLocal", sessionmaker(bind=engine))

        gen = get_db()
        session = next(gen)
        assert session.execute(text("SELECT 1")).scalar() == 1

        gen.close()
        assert database.get_session_factory().kw["bind"] is engine
