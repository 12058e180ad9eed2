"""
Shared fixtures: an isolated in-memory SQLite database per test.
"""

import os
import sys

import pytest
from sqlalchemy.orm import sessionmaker

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


@pytest.fixture
def session_factory():
    from academy_bff.database import make_engine, create_tables

    engine = make_engine("sqlite://")
    create_tables(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def add_user(session_factory):
    from academy_bff.models.user import User

    def _add(email: str, name: str = "Student", first_free_class: bool = False, role: str = "student"):
        db = session_factory()
        try:
            user = User(email=email, name=name, role=role, first_free_class=first_free_class)
            db.add(user)
            db.commit()
            db.refresh(user)
            return user.id
        finally:
            db.close()

    return _add
