import sqlite3
from sqlite3 import Connection
from typing import Iterable, List, Sequence, Tuple


class SqliteClient:
    """SQLite database client with connection management."""

    def __init__(self, connection_string: str):
        self.connection_string = connection_string
        self._connection = sqlite3.connect(self.connection_string)
        self._connection.row_factory = sqlite3.Row

    @property
    def connection(self) -> Connection:
        """Get the database connection."""
        return self._connection

    def execute_query(self, query: str, params=None) -> List[sqlite3.Row]:
        """Execute a query and return all results."""
        cursor = self._connection.cursor()
        if params:
            cursor.execute(query, params)
        else:
            cursor.execute(query)

        # Commit for write operations (INSERT, UPDATE, DELETE)
        if query.strip().upper().startswith(("INSERT", "UPDATE", "DELETE")):
            self._connection.commit()

        results = cursor.fetchall()
        cursor.close()
        return results

    def execute_update(self, query: str, params=None) -> int:
        """Execute a write statement and return the number of affected rows."""
        cursor = self._connection.cursor()
        cursor.execute(query, params or ())
        self._connection.commit()
        affected = cursor.rowcount
        cursor.close()
        return affected

    def insert_each(
        self,
        query: str,
        rows: Iterable[Sequence],
    ) -> Tuple[List[int], List[Tuple[int, str]]]:
        """Insert every row in one transaction without stopping on constraint errors.

        Returns:
            Tuple of (indexes inserted, [(index, error message)] for rows rejected
            by an integrity constraint).
        """
        inserted: List[int] = []
        failed: List[Tuple[int, str]] = []
        cursor = self._connection.cursor()
        try:
            for index, row in enumerate(rows):
                try:
                    cursor.execute(query, row)
                    inserted.append(index)
                except sqlite3.IntegrityError as e:
                    failed.append((index, str(e)))
            self._connection.commit()
        except sqlite3.Error:
            self._connection.rollback()
            raise
        finally:
            cursor.close()
        return inserted, failed

    def execute_script(self, script: str) -> None:
        """Execute several DDL statements at once."""
        self._connection.executescript(script)

    def close(self):
        """Close the database connection."""
        self._connection.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit with cleanup."""
        self.close()
        return False
