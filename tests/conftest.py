import logging

import pytest

from evmtap.adapters.duckdb_store import DuckDBStore


# Configure logging for tests
@pytest.fixture(autouse=True)
def configure_logging():
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    yield


@pytest.fixture
def store():
    s = DuckDBStore.open(":memory:")
    yield s
    s.conn.close()
