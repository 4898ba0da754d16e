"""
Shared pytest fixtures for fixture generation tests.

Running tests:
    pytest tests/
"""
import pytest
import sys
import os

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from competition.models import Participant
from competition.service import FixtureService
from competition.store import FixtureStore


@pytest.fixture
def players():
    """Eight individual players, p1..p8."""
    return [Participant.individual(f"p{i}") for i in range(1, 9)]


@pytest.fixture
def teams():
    """Four doubles teams."""
    return [Participant.team(f"t{i}", [f"t{i}a", f"t{i}b"]) for i in range(1, 5)]


@pytest.fixture
def store(tmp_path):
    return FixtureStore(str(tmp_path), lock_timeout=0.2)


@pytest.fixture
def service(store):
    return FixtureService(store)


@pytest.fixture
def singles_registrations():
    """Six confirmed singles registrations."""
    return [{'id': f"r{i}", 'category': 'singles', 'player_id': f"p{i}"} for i in range(1, 7)]


@pytest.fixture
def temp_data_dir(tmp_path, monkeypatch):
    """Point the Flask app at a temporary data directory."""
    import app as app_module
    monkeypatch.setattr(app_module, 'DATA_DIR', str(tmp_path))
    monkeypatch.setattr(app_module, 'FIXTURE_LOCK_TIMEOUT', 0.2)
    return str(tmp_path)


@pytest.fixture
def client(temp_data_dir):
    """Create a test client backed by the temporary data directory."""
    from app import app
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client
