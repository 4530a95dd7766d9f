"""
Tests that the baseline Alembic migration matches the ORM models.
"""

import importlib.util
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

from database.models import Base

MIGRATION_FILE = Path(__file__).parent.parent / "alembic" / "versions" / "001_initial.py"


@pytest.fixture
def migration():
    spec = importlib.util.spec_from_file_location("migration_001_initial", MIGRATION_FILE)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'migrated.db'}")
    yield engine
    engine.dispose()


def run(engine, step):
    with engine.begin() as conn:
        context = MigrationContext.configure(conn)
        with Operations.context(context):
            step()


class TestBaselineMigration:
    """Upgrade and downgrade on SQLite."""

    def test_revision_is_baseline(self, migration):
        assert migration.revision == "001_initial"
        assert migration.down_revision is None

    def test_upgrade_creates_model_tables(self, migration, engine):
        run(engine, migration.upgrade)
        assert set(inspect(engine).get_table_names()) == set(Base.metadata.tables)

    def test_columns_match_models(self, migration, engine):
        run(engine, migration.upgrade)
        inspector = inspect(engine)
        for name, table in Base.metadata.tables.items():
            migrated = {column["name"] for column in inspector.get_columns(name)}
            assert migrated == set(table.columns.keys()), name

    def test_unique_reference_number(self, migration, engine):
        run(engine, migration.upgrade)
        inspector = inspect(engine)
        unique_columns = [tuple(c["column_names"]) for c in inspector.get_unique_constraints("lost_documents")]
        unique_columns += [
            tuple(i["column_names"]) for i in inspector.get_indexes("lost_documents") if i["unique"]
        ]
        assert ("reference_number",) in unique_columns

    def test_downgrade_drops_everything(self, migration, engine):
        run(engine, migration.upgrade)
        run(engine, migration.downgrade)
        assert inspect(engine).get_table_names() == []
