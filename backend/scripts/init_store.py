"""Prepare the storage backend selected by STORE_BACKEND.

sqlite: creates the database file and its tables at SQLITE_PATH.
dynamodb: creates the single pk/sk table named by DDB_TABLE_NAME.
"""

from __future__ import annotations

import logging
import os

from ranker.dynamodb_store import DynamoDBStore
from ranker.sqlite_store import SqliteStore


def prepare(backend: str) -> str:
    if backend == "dynamodb":
        store = DynamoDBStore.from_env()
        created = store.ensure_table()
        return f"{'created' if created else 'found'} table {store.table_name}"
    if backend == "sqlite":
        store = SqliteStore.from_env()
        store.close()
        return f"schema ready at {store.path}"
    return "in-memory store needs no setup"


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    backend = os.environ.get("STORE_BACKEND", "inmemory").strip().lower()
    try:
        print(prepare(backend))
    except RuntimeError as exc:
        raise SystemExit(str(exc))


if __name__ == "__main__":
    main()
