import tempfile
import unittest
from pathlib import Path

from pomotrack.database import Base, make_engine, make_session_factory


class DatabaseTestCase(unittest.TestCase):
    """Gives each test a fresh SQLite file and a session factory bound to it."""

    def setUp(self) -> None:
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.db_path = Path(self.tmp_dir.name) / "test.db"
        self.engine = make_engine(str(self.db_path))
        self.SessionLocal = make_session_factory(self.engine)
        Base.metadata.create_all(bind=self.engine)
        self.db = self.SessionLocal()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()
        self.tmp_dir.cleanup()
