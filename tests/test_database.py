from sqlalchemy import inspect, text

from database import SQLITE_BUSY_TIMEOUT_MS, build_engine, create_schema


def test_sqlite_engine_uses_wal_and_busy_timeout(tmp_path) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")

    with engine.connect() as conn:
        assert conn.execute(text("PRAGMA journal_mode")).scalar() == "wal"
        assert conn.execute(text("PRAGMA busy_timeout")).scalar() == (
            SQLITE_BUSY_TIMEOUT_MS
        )


def test_create_schema_builds_all_tables(tmp_path) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")

    create_schema(engine)

    assert set(inspect(engine).get_table_names()) == {
        "owners",
        "categories",
        "transactions",
    }
