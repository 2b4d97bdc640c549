import pytest

import database
from catalog import CatalogStore
from config import settings
from identity import IdentityStore
from lifecycle import LifecycleEngine


@pytest.fixture(autouse=True)
def db_file(tmp_path, request, monkeypatch):
    # Every test gets its own SQLite file
    path = str(tmp_path / f"test_{request.node.name}.db")
    monkeypatch.setattr(database, "DATABASE_FILE", path)
    # Minimum bcrypt cost keeps account-heavy tests fast
    monkeypatch.setattr(settings, "bcrypt_rounds", 4)
    # CLI output mode lives in the environment; restore it after each test
    monkeypatch.setenv("LIB_CLI_OUTPUT", "plain")
    database.initialize_database()
    yield path


@pytest.fixture
def catalog():
    return CatalogStore()


@pytest.fixture
def identity():
    return IdentityStore()


@pytest.fixture
def engine(catalog, identity):
    return LifecycleEngine(catalog=catalog, identity=identity)


@pytest.fixture
def student(identity):
    return identity.create_student("Asha Rao", "asha@example.com", "CSE", "secret-a")


@pytest.fixture
def other_student(identity):
    return identity.create_student("Bilal Khan", "bilal@example.com", "ECE", "secret-b")


@pytest.fixture
def admin(identity):
    return identity.create_admin("Ada Admin", "admin@example.com", "admin-pass")


@pytest.fixture
def book(catalog):
    return catalog.create("Dune", "Frank Herbert", genre="fiction", sub_genre="sci-fi",
                          publisher="Chilton", height=24, quantity=1)
