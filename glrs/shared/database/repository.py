"""Base repository pattern for PostgreSQL-backed entities.

Provides insert, lookup and conditional update. Conditional updates are the
optimistic-concurrency primitive: a write names the column values it expects
and affects zero rows when a concurrent writer got there first.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, List, Optional, TypeVar

from .connection import ConnectionManager

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class NotFoundError(RepositoryError):
    """Entity not found in database."""
    pass


class DuplicateError(RepositoryError):
    """Duplicate entity already exists."""
    pass


class BaseRepository(ABC, Generic[T]):
    """Abstract base repository with common operations.

    Subclasses implement row/entity conversion and inherit connection
    handling, error wrapping and logging.
    """

    def __init__(
        self,
        connection_manager: ConnectionManager,
        table_name: str,
    ):
        self.connection_manager = connection_manager
        self.table_name = table_name

        logger.info(
            "REPOSITORY_INITIALIZED",
            extra={"table_name": table_name}
        )

    @abstractmethod
    def _row_to_entity(self, row: tuple) -> T:
        """Convert database row to entity."""
        pass

    @abstractmethod
    def _entity_to_params(self, entity: T) -> Dict[str, Any]:
        """Convert entity to a column -> value mapping."""
        pass

    def _fetch_one(self, query: str, params: tuple) -> Optional[T]:
        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                row = cur.fetchone()
                return self._row_to_entity(row) if row is not None else None

    def _fetch_all(self, query: str, params: tuple) -> List[T]:
        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return [self._row_to_entity(row) for row in cur.fetchall()]

    def find_by_id(self, entity_id: str) -> Optional[T]:
        """Find entity by ID, or None."""
        return self._fetch_one(
            f"SELECT * FROM {self.table_name} WHERE id = %s",
            (entity_id,),
        )

    def insert(self, entity: T) -> T:
        """Insert a new entity.

        Raises:
            DuplicateError: If an entity with the same id exists
            RepositoryError: On any other database failure
        """
        params = self._entity_to_params(entity)
        columns = list(params.keys())
        placeholders = ", ".join(["%s"] * len(columns))

        query = f"""
            INSERT INTO {self.table_name} ({", ".join(columns)})
            VALUES ({placeholders})
            ON CONFLICT (id) DO NOTHING
            RETURNING *
        """

        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, list(params.values()))
                    row = cur.fetchone()
                    conn.commit()
        except Exception as e:
            logger.error(
                "REPOSITORY_INSERT_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise RepositoryError(f"Insert into {self.table_name} failed: {e}") from e

        if row is None:
            raise DuplicateError(f"{self.table_name} entity {params.get('id')} already exists")
        return self._row_to_entity(row)

    def update_where(
        self,
        entity_id: str,
        expected: Dict[str, Any],
        changes: Dict[str, Any],
    ) -> Optional[T]:
        """Apply changes only if the row still holds the expected values.

        Args:
            entity_id: Entity identifier
            expected: Column -> value guards (compare-and-set)
            changes: Column -> new value

        Returns:
            Updated entity, or None if the guard did not hold (or no row)
        """
        set_clause = ", ".join(f"{col} = %s" for col in changes)
        guards = "".join(f" AND {col} = %s" for col in expected)

        query = f"""
            UPDATE {self.table_name}
            SET {set_clause}
            WHERE id = %s{guards}
            RETURNING *
        """
        params = list(changes.values()) + [entity_id] + list(expected.values())

        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    row = cur.fetchone()
                    conn.commit()
        except Exception as e:
            logger.error(
                "REPOSITORY_UPDATE_FAILED",
                extra={"table_name": self.table_name, "entity_id": entity_id, "error": str(e)}
            )
            raise RepositoryError(f"Update of {self.table_name} failed: {e}") from e

        return self._row_to_entity(row) if row is not None else None

    def count(self) -> int:
        """Count total entities."""
        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT COUNT(*) FROM {self.table_name}")
                row = cur.fetchone()
                return row[0] if row else 0
