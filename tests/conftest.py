import os
import tempfile
import threading

# Keep the module-level app in main.py away from the working directory
_IMPORT_DIR = tempfile.mkdtemp(prefix="sitegen-tests-")
os.environ.setdefault("SITEGEN_DB_PATH", os.path.join(_IMPORT_DIR, "sitegen.db"))
os.environ.setdefault("SITEGEN_USERS_DB_PATH", os.path.join(_IMPORT_DIR, "users.db"))

import pytest

from sitegen_website.backend.cache import GenerationCache
from sitegen_website.backend.config import TestingConfig
from sitegen_website.backend.generator import ContentGenerator
from sitegen_website.backend.services import (
    ArtifactStore,
    AuthService,
    Database,
    ForkEngine,
    VariationEngine,
    VersionStore,
)


class FakeGenerator(ContentGenerator):
    """Records every call and returns markup that echoes its input."""

    def __init__(self):
        self.calls = []
        self.fail_with = None
        self.fail_on_call = None
        self.lock = threading.Lock()

    def generate(self, instruction, content_type):
        with self.lock:
            self.calls.append((instruction, content_type))
            number = len(self.calls)
        if self.fail_with is not None and (self.fail_on_call is None or self.fail_on_call == number):
            raise self.fail_with
        return f"<html><!-- {content_type} #{number} -->{instruction[:40]}</html>"


class ManualClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def config(tmp_path):
    config = TestingConfig()
    config.DB_PATH = str(tmp_path / "sitegen.db")
    config.USERS_DB_PATH = str(tmp_path / "users.db")
    return config


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def cache(generator, clock, config):
    return GenerationCache(generator, config.CACHE_TTL_SECONDS, clock=clock)


@pytest.fixture
def auth(config):
    return AuthService(config.USERS_DB_PATH)


@pytest.fixture
def alice(auth):
    return auth.add_user("alice@example.com", "password1")


@pytest.fixture
def bob(auth):
    return auth.add_user("bob@example.com", "password2")


@pytest.fixture
def db(config):
    return Database(config.DB_PATH)


@pytest.fixture
def versions(db):
    return VersionStore(db)


@pytest.fixture
def store(db, versions, cache, auth, config):
    return ArtifactStore(db, versions, cache, auth, config)


@pytest.fixture
def forks(store):
    return ForkEngine(store)


@pytest.fixture
def variations(cache, config):
    return VariationEngine(cache, config)


@pytest.fixture
def make_site(store, alice):
    """Create a website for alice (or another owner) with sensible defaults."""

    def _make(owner_id=None, instruction="A bakery landing page", content_type="landing",
              visibility="public", **metadata):
        metadata.setdefault("display_name", "Bakery")
        metadata["visibility"] = visibility
        return store.create(owner_id or alice, metadata,
                            {"instruction": instruction, "content_type": content_type})

    return _make
