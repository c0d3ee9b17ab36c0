"""PostgreSQL connection pool for the crisis alert store.

Every pooled connection carries a statement timeout. A failed transaction is
rolled back before its connection goes back to the pool.
"""
import json
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

import boto3
from psycopg2 import pool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatabaseConfig:
    """Alert store connection settings.

    Production reads credentials from Secrets Manager (DB_SECRET_ARN);
    development uses plain DB_* variables.
    """
    host: str
    port: int = 5432
    database: str = "glrs"
    username: str = ""
    password: str = ""
    min_connections: int = 2
    max_connections: int = 10
    connect_timeout: int = 5
    statement_timeout_ms: int = 2000
    ssl_mode: str = "require"
    application_name: str = "glrs-crisis"

    def pool_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for psycopg2's ThreadedConnectionPool."""
        return {
            "minconn": self.min_connections,
            "maxconn": self.max_connections,
            "host": self.host,
            "port": self.port,
            "dbname": self.database,
            "user": self.username,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
            "sslmode": self.ssl_mode,
            "application_name": self.application_name,
            "options": f"-c statement_timeout={self.statement_timeout_ms}",
        }

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Create config from environment variables.

        Environment variables:
            DB_SECRET_ARN: Secrets Manager secret; when set, credentials come from it
            DB_HOST / DB_PORT / DB_NAME: Location (default localhost:5432/glrs)
            DB_USER / DB_PASSWORD: Credentials
            DB_MAX_CONN: Pool ceiling (default 10)
            DB_STATEMENT_TIMEOUT_MS: Per-statement limit (default 2000)
            DB_SSL_MODE: libpq sslmode (default require)
        """
        secret_arn = os.getenv("DB_SECRET_ARN")
        if secret_arn:
            return cls.from_secrets_manager(secret_arn, os.getenv("AWS_REGION", "us-west-2"))

        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "glrs"),
            username=os.getenv("DB_USER", ""),
            password=os.getenv("DB_PASSWORD", ""),
            max_connections=int(os.getenv("DB_MAX_CONN", "10")),
            statement_timeout_ms=int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "2000")),
            ssl_mode=os.getenv("DB_SSL_MODE", "require"),
        )

    @classmethod
    def from_secrets_manager(cls, secret_arn: str, region: str = "us-west-2") -> "DatabaseConfig":
        """Load credentials from an RDS-style Secrets Manager secret.

        Raises:
            The boto3 error from the secret lookup, after logging it
        """
        try:
            client = boto3.client("secretsmanager", region_name=region)
            secret = json.loads(client.get_secret_value(SecretId=secret_arn)["SecretString"])
        except Exception as e:
            logger.error(
                "DB_SECRET_LOAD_FAILED",
                extra={"error": str(e), "secret_arn": secret_arn}
            )
            raise

        return cls(
            host=secret.get("host", "localhost"),
            port=int(secret.get("port", 5432)),
            database=secret.get("dbname", "glrs"),
            username=secret.get("username", ""),
            password=secret.get("password", ""),
        )


class ConnectionManager:
    """Lazily created psycopg2 ThreadedConnectionPool.

    Flask handlers and dispatcher worker threads share one pool per process.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool: Optional[pool.ThreadedConnectionPool] = None

    @property
    def initialized(self) -> bool:
        return self._pool is not None

    def initialize(self) -> None:
        """Open the pool. A second call is a no-op."""
        if self._pool is not None:
            return

        try:
            self._pool = pool.ThreadedConnectionPool(**self.config.pool_kwargs())
        except Exception as e:
            logger.critical(
                "ALERT_STORE_POOL_FAILED",
                extra={"host": self.config.host, "error": str(e)}
            )
            raise

        logger.info(
            "ALERT_STORE_POOL_OPENED",
            extra={
                "host": self.config.host,
                "database": self.config.database,
                "max_connections": self.config.max_connections,
            }
        )

    @contextmanager
    def get_connection(self):
        """Borrow a connection; callers commit their own writes.

        On an exception the open transaction is rolled back before the
        connection is returned to the pool.
        """
        if self._pool is None:
            self.initialize()

        conn = self._pool.getconn()
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def health_check(self) -> Dict[str, Any]:
        """Readiness probe for the alert store."""
        if self._pool is None:
            return {"status": "not_initialized", "healthy": False}

        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    cur.fetchone()
        except Exception as e:
            logger.error("ALERT_STORE_HEALTH_CHECK_FAILED", extra={"error": str(e)})
            return {"status": "error", "healthy": False, "error": str(e)}

        return {"status": "connected", "healthy": True, "database": self.config.database}

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info("ALERT_STORE_POOL_CLOSED")


_connection_manager: Optional[ConnectionManager] = None


def get_connection_manager() -> ConnectionManager:
    """Process-wide connection manager, configured from the environment."""
    global _connection_manager

    if _connection_manager is None:
        _connection_manager = ConnectionManager(DatabaseConfig.from_env())

    return _connection_manager
