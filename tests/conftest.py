import os
import sys
import tempfile
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="crosspost-tests-"))

os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test_app.db'}"
os.environ["UPLOAD_DIR"] = str(_TMP / "uploads")
os.environ["SEGMENT_DIR"] = str(_TMP / "segments")
os.environ["APP_URL"] = "https://media.example.com"
os.environ["RUN_SCHEDULER"] = "0"
os.environ["META_APP_ID"] = "meta-app"
os.environ["GOOGLE_CLIENT_ID"] = "google-client"
os.environ["GOOGLE_CLIENT_SECRET"] = "google-secret"
os.environ.pop("ADMIN_USER", None)
os.environ.pop("ADMIN_PASS", None)

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest  # noqa: E402

from crosspost import db  # noqa: E402
from crosspost.models import Base  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(db.engine)
    db.init_db()
    yield


@pytest.fixture
def session():
    with db.get_session() as session:
        yield session
