import os
import tempfile

# Settings and the engine are built at import time, so configure them first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_INIT_MODE", "create_all")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("LOG_FILE", os.path.join(tempfile.gettempdir(), "workout-planner-tests.log"))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.database import Base
from app.core.security import generate_rsa_key_pair


@pytest.fixture(scope="session")
def rsa_keys():
    return generate_rsa_key_pair()


@pytest.fixture(scope="session")
def other_rsa_keys():
    return generate_rsa_key_pair()


@pytest.fixture
def db():
    engine = create_engine("sqlite:///:memory:")
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
