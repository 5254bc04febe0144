import os
import tempfile

# Keep the default SQLite file and model directory out of the source tree
_tmp = tempfile.mkdtemp(prefix="facefind-tests-")
os.environ.setdefault("FACEFIND_DATA_DIR", os.path.join(_tmp, "data"))
os.environ.setdefault("FACEFIND_MODELS_DIR", os.path.join(_tmp, "models"))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from facefind.database import init_db


@pytest.fixture
def session_factory():
    """Sessions bound to a fresh in-memory database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
