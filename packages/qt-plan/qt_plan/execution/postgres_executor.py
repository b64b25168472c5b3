"""PostgreSQL executor for plan capture."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

try:
    import psycopg2
    from psycopg2 import pool, sql as pgsql
    from psycopg2.extensions import TRANSACTION_STATUS_INERROR
    from psycopg2.extras import RealDictCursor
except ImportError as e:
    raise ImportError(
        "psycopg2 is not installed. Install with: pip install psycopg2-binary"
    ) from e

from ..exceptions import DatabaseConnectionError, QueryExecutionError

logger = logging.getLogger(__name__)

EXPLAIN_FORMATS = ("text", "json")


@contextmanager
def planner_overrides(cur: Any, overrides: dict[str, str]) -> Iterator[dict[str, str]]:
    """Apply planner settings for the current transaction only.

    Prior values are read first and written back on every exit path. The
    settings are also transaction-local (set_config(..., true)), so a
    rollback reverts them even if the restore cannot run.

    Yields:
        The prior values, keyed by setting name.
    """
    prior: dict[str, str] = {}
    try:
        for name, value in overrides.items():
            cur.execute("SELECT current_setting(%s)", (name,))
            prior[name] = cur.fetchone()[0]
            cur.execute("SELECT set_config(%s, %s, true)", (name, str(value)))
            logger.debug(f"planner override {name}={value} (was {prior[name]})")
        yield prior
    finally:
        conn = cur.connection
        if prior and not conn.closed and conn.get_transaction_status() != TRANSACTION_STATUS_INERROR:
            for name, value in prior.items():
                cur.execute("SELECT set_config(%s, %s, true)", (name, value))


class PostgresExecutor:
    """PostgreSQL executor for bound EXPLAIN capture and statistics refresh.

    With pool_size > 1 connections come from a psycopg2 ThreadedConnectionPool,
    whose getconn/putconn are lock-protected; statements on different pooled
    connections run concurrently.

    Usage:
        with PostgresExecutor(host="localhost", database="workshop") as db:
            plan = db.explain("SELECT * FROM t WHERE x = %s", ("a",))

    Args:
        host: PostgreSQL server hostname.
        port: PostgreSQL server port.
        database: Database name.
        user: Username for authentication.
        password: Password for authentication.
        schema: Schema placed first on the search path.
        pool_size: Number of pooled connections (1 = single connection).
        statement_timeout_ms: Per-statement timeout (0 = no limit).
        connect_timeout: Seconds to wait for a new connection.
        connect_options: Extra libpq parameters (sslmode, application_name, ...).
            An "options" entry is appended to the search_path setting.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "postgres",
        user: str = "postgres",
        password: str = "",
        schema: str = "public",
        pool_size: int = 1,
        statement_timeout_ms: int = 0,
        connect_timeout: int = 10,
        connect_options: Optional[dict[str, str]] = None,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.schema = schema
        self.pool_size = max(1, pool_size)
        self.statement_timeout_ms = statement_timeout_ms
        self.connect_timeout = connect_timeout
        self.connect_options = dict(connect_options or {})
        self._conn: Optional[psycopg2.extensions.connection] = None
        self._pool: Optional[pool.ThreadedConnectionPool] = None

    def _connect_kwargs(self) -> dict[str, Any]:
        extra = dict(self.connect_options)
        server_options = f"-c search_path={self.schema},public {extra.pop('options', '')}".strip()
        return {
            "host": self.host,
            "port": self.port,
            "dbname": self.database,
            "user": self.user,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
            **extra,
            "options": server_options,
        }

    def connect(self) -> None:
        """Open the connection (or pool) to PostgreSQL."""
        if self._pool is not None or (self._conn is not None and not self._conn.closed):
            return  # Already connected

        try:
            if self.pool_size > 1:
                self._pool = pool.ThreadedConnectionPool(1, self.pool_size, **self._connect_kwargs())
            else:
                self._conn = psycopg2.connect(**self._connect_kwargs())
        except psycopg2.OperationalError as e:
            raise DatabaseConnectionError(
                f"Cannot connect to PostgreSQL: {str(e).strip()}",
                host=f"{self.host}:{self.port}",
                database=self.database,
            ) from e
        logger.debug(
            f"connected to {self.host}:{self.port}/{self.database} (pool_size={self.pool_size})"
        )

    def close(self) -> None:
        """Close the connection or pool."""
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "PostgresExecutor":
        """Context manager entry - opens connection."""
        self.connect()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit - closes connection."""
        self.close()

    @contextmanager
    def _connection(self) -> Iterator[psycopg2.extensions.connection]:
        """Borrow a connection; pooled connections are always returned."""
        if self._pool is None and (self._conn is None or self._conn.closed):
            self.connect()

        if self._pool is not None:
            try:
                conn = self._pool.getconn()
            except psycopg2.Error as e:
                # PoolError when exhausted, OperationalError when a new connection fails
                raise DatabaseConnectionError(
                    f"Cannot get a pooled connection: {str(e).strip()}",
                    host=f"{self.host}:{self.port}",
                    database=self.database,
                    pool_size=self.pool_size,
                ) from e
            try:
                yield conn
            finally:
                self._pool.putconn(conn, close=bool(conn.closed))
        else:
            assert self._conn is not None
            yield self._conn

    def _translate_error(
        self, conn: psycopg2.extensions.connection, error: psycopg2.Error, statement: str
    ) -> Exception:
        if conn.closed:
            return DatabaseConnectionError(
                f"Connection lost: {str(error).strip()}",
                host=f"{self.host}:{self.port}",
                database=self.database,
            )
        return QueryExecutionError(
            str(error).strip() or type(error).__name__,
            sqlstate=getattr(error, "pgcode", None),
            statement=statement,
        )

    @staticmethod
    def _rollback(conn: psycopg2.extensions.connection) -> None:
        if not conn.closed:
            conn.rollback()

    def _apply_timeout(self, cur: Any, timeout_ms: Optional[int]) -> None:
        timeout = self.statement_timeout_ms if timeout_ms is None else timeout_ms
        if timeout > 0:
            # Transaction-local, reverts on commit/rollback
            cur.execute("SELECT set_config('statement_timeout', %s, true)", (str(timeout),))

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        """Execute SQL and return results as list of dicts."""
        with self._connection() as conn:
            try:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    self._apply_timeout(cur, None)
                    if params:
                        cur.execute(sql, params)
                    else:
                        cur.execute(sql)
                    rows = [dict(row) for row in cur.fetchall()] if cur.description else []
                conn.commit()
                return rows
            except psycopg2.Error as e:
                self._rollback(conn)
                raise self._translate_error(conn, e, sql) from e

    def explain(
        self,
        sql: str,
        params: tuple[Any, ...] = (),
        fmt: str = "json",
        analyze: bool = False,
        overrides: Optional[dict[str, str]] = None,
        timeout_ms: Optional[int] = None,
    ) -> Any:
        """Run EXPLAIN on a bound statement.

        Planner overrides apply to this statement only and are restored
        before the transaction is rolled back.

        Args:
            sql: Statement in psycopg2 pyformat style (%s placeholders).
            params: Bound parameter values.
            fmt: 'text' or 'json'.
            analyze: Run EXPLAIN ANALYZE (executes the statement).
            overrides: Planner settings, e.g. {"enable_seqscan": "off"}.
            timeout_ms: Statement timeout; None uses the executor default.

        Returns:
            For 'text', the list of plan lines. For 'json', the decoded
            EXPLAIN document (a one-element list).

        Raises:
            QueryExecutionError: if the database rejects the statement.
            DatabaseConnectionError: if the connection is lost.
        """
        fmt = fmt.lower()
        if fmt not in EXPLAIN_FORMATS:
            raise ValueError(f"Unsupported EXPLAIN format: {fmt!r}")

        options = ["ANALYZE"] if analyze else []
        options.append(f"FORMAT {fmt.upper()}")
        statement = f"EXPLAIN ({', '.join(options)}) {sql}"

        with self._connection() as conn:
            try:
                with conn.cursor() as cur:
                    self._apply_timeout(cur, timeout_ms)
                    with planner_overrides(cur, overrides or {}):
                        logger.debug(f"{statement} params={params!r}")
                        if params:
                            cur.execute(statement, params)
                        else:
                            cur.execute(statement)
                        rows = cur.fetchall()
                # EXPLAIN ANALYZE runs the statement; never keep its effects
                conn.rollback()
            except psycopg2.Error as e:
                self._rollback(conn)
                raise self._translate_error(conn, e, statement) from e

        if fmt == "json":
            return rows[0][0] if rows else []
        return [row[0] for row in rows]

    def count_rows(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Return the number of rows a bound statement matches."""
        statement = f"SELECT count(*) AS matched FROM ({sql}) AS matched_rows"
        rows = self.execute(statement, params)
        return int(rows[0]["matched"]) if rows else 0

    def refresh_statistics(self, tables: Optional[Sequence[str]] = None) -> None:
        """Run ANALYZE (whole database, or the given tables) and commit.

        Table names may be schema-qualified; each part is quoted as an
        identifier.
        """
        if tables:
            statements = [
                (name, pgsql.SQL("ANALYZE {}").format(pgsql.Identifier(*name.split("."))))
                for name in tables
            ]
        else:
            statements = [("*", pgsql.SQL("ANALYZE"))]

        with self._connection() as conn:
            try:
                with conn.cursor() as cur:
                    for name, statement in statements:
                        logger.debug(f"ANALYZE {name}")
                        cur.execute(statement)
                conn.commit()
            except psycopg2.Error as e:
                self._rollback(conn)
                raise self._translate_error(conn, e, "ANALYZE") from e
        logger.info(f"Statistics refreshed ({', '.join(tables) if tables else 'all tables'})")
