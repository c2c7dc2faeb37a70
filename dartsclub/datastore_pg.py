import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2 import sql
from psycopg2.extras import RealDictCursor, execute_values

from .errors import BatchInsertError
from .ingest import SCHEMAS


_POOL: Optional[pg_pool.AbstractConnectionPool] = None

SCHEMA_FILE = Path(__file__).resolve().parent / "schema.sql"

# Statistic tables and the columns callers may filter or order by
_STAT_COLUMNS: Dict[str, List[str]] = {name: ["id"] + schema.fields for name, schema in SCHEMAS.items()}
_STAT_COLUMNS["vikings_members"] = _STAT_COLUMNS["vikings_members"] + ["user_id"]
_STAT_COLUMNS["jda_members"] = ["id", "name", "surname", "user_id"]

MEMBER_TABLES = ("vikings_members", "jda_members")


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _connect_kwargs() -> Dict[str, Any]:
    """Connection kwargs shared by the pool and direct connects.

    connect_timeout defaults to 10 seconds (DB_CONNECT_TIMEOUT); TCP keepalives
    are on unless DB_KEEPALIVES is 0/false, with optional IDLE/INTERVAL/COUNT
    tunables.
    """
    kwargs: Dict[str, Any] = {}
    ct_env = _env_int("DB_CONNECT_TIMEOUT")
    kwargs["connect_timeout"] = ct_env if ct_env is not None else 10

    ka_env = os.environ.get("DB_KEEPALIVES")
    if ka_env is None:
        kwargs["keepalives"] = 1
    else:
        kwargs["keepalives"] = 0 if str(ka_env).lower() in ("0", "false") else 1

    for env_name, key in (
        ("DB_KEEPALIVES_IDLE", "keepalives_idle"),
        ("DB_KEEPALIVES_INTERVAL", "keepalives_interval"),
        ("DB_KEEPALIVES_COUNT", "keepalives_count"),
    ):
        value = _env_int(env_name)
        if value is not None:
            kwargs[key] = value
    return kwargs


def init_pool(minconn: int = 1, maxconn: int = 10) -> None:
    """Initialize the global connection pool from DATABASE_URL.

    Subsequent calls are ignored once a pool exists.
    """
    global _POOL
    if _POOL is not None:
        return
    url = os.environ.get("DATABASE_URL")
    if not url:
        return
    _POOL = pg_pool.ThreadedConnectionPool(minconn, maxconn, dsn=url, **_connect_kwargs())


def _rollback_quietly(conn) -> None:
    try:
        conn.rollback()
    except psycopg2.Error:
        pass


def _ping(conn) -> bool:
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
        if not getattr(conn, "autocommit", False):
            _rollback_quietly(conn)
        return True
    except (psycopg2.OperationalError, psycopg2.InterfaceError):
        return False


@contextmanager
def _get_conn():
    """Yield a pooled connection, or a direct one when no pool exists.

    A pooled connection that fails a ``SELECT 1`` probe is discarded and one
    more is tried before giving up.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set; configure a PostgreSQL connection string")
    if _POOL is None:
        conn = psycopg2.connect(url, **_connect_kwargs())
        try:
            try:
                yield conn
            except Exception:
                _rollback_quietly(conn)
                raise
        finally:
            conn.close()
        return

    conn = None
    for _attempt in range(2):
        candidate = _POOL.getconn()
        if _ping(candidate):
            conn = candidate
            break
        _POOL.putconn(candidate, close=True)
    if conn is None:
        raise psycopg2.OperationalError("Failed to acquire healthy DB connection after retry")

    try:
        try:
            yield conn
        except Exception:
            _rollback_quietly(conn)
            raise
    finally:
        # status 1/2/3 = active, in transaction, in error
        if getattr(conn, "closed", 0) == 0 and not getattr(conn, "autocommit", False):
            if getattr(conn, "status", 0) in (1, 2, 3):
                _rollback_quietly(conn)
        _POOL.putconn(conn)


def _fetchall(query, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(query, params)
        return [dict(r) for r in cur.fetchall()]


def _fetchone(query, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(query, params)
        row = cur.fetchone()
        return dict(row) if row else None


def _execute(query, params: Sequence[Any] = ()) -> int:
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute(query, params)
        count = cur.rowcount or 0
        conn.commit()
    return count


def _check_table(table: str, columns: Iterable[str] = ()) -> List[str]:
    allowed = _STAT_COLUMNS.get(table)
    if allowed is None:
        raise ValueError(f"Unknown table: {table}")
    cols = list(columns)
    bad = [c for c in cols if c not in allowed]
    if bad:
        raise ValueError(f"Unknown column(s) for {table}: {', '.join(bad)}")
    return cols


def apply_schema() -> None:
    """Create any missing tables and indexes from schema.sql."""
    ddl = SCHEMA_FILE.read_text()
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute(ddl)
        conn.commit()


# ---------------------------------------------------------------------------
# Statistic tables
# ---------------------------------------------------------------------------

def fetch_rows(
    table: str,
    filters: Optional[Dict[str, Any]] = None,
    order_by: Optional[str] = "date",
    descending: bool = False,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Return rows of a statistic table with equality filters applied."""
    filters = filters or {}
    _check_table(table, list(filters) + ([order_by] if order_by else []))
    query = sql.SQL("SELECT * FROM {}").format(sql.Identifier(table))
    params: List[Any] = []
    if filters:
        clauses = []
        for col, value in filters.items():
            clauses.append(sql.SQL("{} = %s").format(sql.Identifier(col)))
            params.append(value)
        query += sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses)
    if order_by:
        direction = sql.SQL("DESC") if descending else sql.SQL("ASC")
        query += sql.SQL(" ORDER BY {} {} NULLS LAST, id").format(sql.Identifier(order_by), direction)
    if limit is not None:
        query += sql.SQL(" LIMIT %s")
        params.append(int(limit))
    return _fetchall(query, params)


def list_seasons(table: str) -> List[Any]:
    """Distinct non-null season tags present in ``table``."""
    _check_table(table, ["season"])
    rows = _fetchall(
        sql.SQL("SELECT DISTINCT season FROM {} WHERE season IS NOT NULL").format(sql.Identifier(table))
    )
    return [r["season"] for r in rows]


def count_rows(table: str) -> int:
    if table not in _STAT_COLUMNS and table not in ("profiles", "clubs", "club_memberships", "admin_notifications"):
        raise ValueError(f"Unknown table: {table}")
    row = _fetchone(sql.SQL("SELECT COUNT(*) AS n FROM {}").format(sql.Identifier(table)))
    return int(row["n"]) if row else 0


def insert_rows(table: str, rows: List[Dict[str, Any]]) -> int:
    """Insert one batch of normalized rows in a single transaction.

    Raises:
        BatchInsertError: the store rejected the batch; nothing from it is kept.
    """
    if not rows:
        return 0
    columns = _check_table(table, SCHEMAS[table].fields if table in SCHEMAS else rows[0].keys())
    values = [tuple(r.get(c) for c in columns) for r in rows]
    query = sql.SQL("INSERT INTO {} ({}) VALUES %s").format(
        sql.Identifier(table),
        sql.SQL(", ").join(sql.Identifier(c) for c in columns),
    )
    try:
        with _get_conn() as conn, conn.cursor() as cur:
            execute_values(cur, query, values, page_size=len(values))
            conn.commit()
    except psycopg2.Error as exc:
        message = (getattr(exc, "pgerror", None) or str(exc)).strip()
        raise BatchInsertError(message, table=table, size=len(rows)) from exc
    return len(rows)


# ---------------------------------------------------------------------------
# Member links
# ---------------------------------------------------------------------------

def _split_name(player_name: str) -> List[str]:
    parts = (player_name or "").strip().split(" ", 1)
    return [parts[0], parts[1] if len(parts) > 1 else ""]


def link_member(table: str, player_name: str, user_id: str) -> Dict[str, Any]:
    """Point the member row for ``player_name`` at ``user_id``, creating it if absent."""
    if table not in MEMBER_TABLES:
        raise ValueError(f"Not a member table: {table}")
    first, rest = _split_name(player_name)
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            sql.SQL(
                "SELECT id FROM {} WHERE lower(name) = lower(%s) AND lower(coalesce(surname, '')) = lower(%s) "
                "ORDER BY id LIMIT 1"
            ).format(sql.Identifier(table)),
            (first, rest),
        )
        existing = cur.fetchone()
        if existing:
            cur.execute(
                sql.SQL("UPDATE {} SET user_id = %s WHERE id = %s RETURNING *").format(sql.Identifier(table)),
                (user_id, existing["id"]),
            )
        else:
            cur.execute(
                sql.SQL("INSERT INTO {} (name, surname, user_id) VALUES (%s, %s, %s) RETURNING *").format(
                    sql.Identifier(table)
                ),
                (first, rest or None, user_id),
            )
        row = dict(cur.fetchone())
        conn.commit()
    return row


def unlink_member(table: str, member_id: int) -> int:
    if table not in MEMBER_TABLES:
        raise ValueError(f"Not a member table: {table}")
    return _execute(sql.SQL("UPDATE {} SET user_id = NULL WHERE id = %s").format(sql.Identifier(table)), (member_id,))


def list_member_links(table: str) -> List[Dict[str, Any]]:
    if table not in MEMBER_TABLES:
        raise ValueError(f"Not a member table: {table}")
    return _fetchall(
        sql.SQL(
            """
            SELECT m.id, m.name, m.surname, m.user_id, p.full_name, p.email
            FROM {} m
            LEFT JOIN profiles p ON p.id = m.user_id
            ORDER BY m.name, m.surname, m.id
            """
        ).format(sql.Identifier(table))
    )


# ---------------------------------------------------------------------------
# Profiles, clubs and memberships
# ---------------------------------------------------------------------------

def create_profile(
    user_id: str, email: str, full_name: Optional[str] = None, role: str = "user"
) -> Tuple[Dict[str, Any], bool]:
    """Insert or refresh a profile; the flag is True only when the row is new."""
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO profiles (id, email, full_name, role)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (id) DO UPDATE SET email = EXCLUDED.email
            RETURNING *, (xmax = 0) AS inserted
            """,
            (user_id, email, full_name, role),
        )
        row = dict(cur.fetchone())
        conn.commit()
    inserted = bool(row.pop("inserted", False))
    return row, inserted


def get_profile(user_id: str) -> Optional[Dict[str, Any]]:
    return _fetchone("SELECT * FROM profiles WHERE id = %s", (user_id,))


def list_profiles() -> List[Dict[str, Any]]:
    return _fetchall("SELECT * FROM profiles ORDER BY created_at, id")


def update_profile(user_id: str, fields: Dict[str, Any]) -> int:
    allowed = {k: v for k, v in fields.items() if k in ("full_name", "role")}
    if not allowed:
        return 0
    assignments = sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(k)) for k in allowed)
    return _execute(
        sql.SQL("UPDATE profiles SET {} WHERE id = %s").format(assignments),
        list(allowed.values()) + [user_id],
    )


def list_clubs() -> List[Dict[str, Any]]:
    return _fetchall("SELECT * FROM clubs ORDER BY name, id")


def get_club(club_id: str) -> Optional[Dict[str, Any]]:
    return _fetchone("SELECT * FROM clubs WHERE id = %s", (club_id,))


def create_club(name: str, description: Optional[str], database_prefix: str) -> Dict[str, Any]:
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            "INSERT INTO clubs (name, description, database_prefix) VALUES (%s, %s, %s) RETURNING *",
            (name, description, database_prefix),
        )
        row = dict(cur.fetchone())
        conn.commit()
    return row


def delete_club(club_id: str) -> int:
    return _execute("DELETE FROM clubs WHERE id = %s", (club_id,))


def list_user_clubs(user_id: str) -> List[Dict[str, Any]]:
    return _fetchall(
        """
        SELECT c.*, m.joined_at
        FROM club_memberships m
        JOIN clubs c ON c.id = m.club_id
        WHERE m.user_id = %s
        ORDER BY c.name
        """,
        (user_id,),
    )


def add_membership(user_id: str, club_id: str) -> bool:
    """Add a membership; returns False when it already existed."""
    return _execute(
        "INSERT INTO club_memberships (user_id, club_id) VALUES (%s, %s) ON CONFLICT (user_id, club_id) DO NOTHING",
        (user_id, club_id),
    ) > 0


def remove_membership(user_id: str, club_id: str) -> int:
    return _execute("DELETE FROM club_memberships WHERE user_id = %s AND club_id = %s", (user_id, club_id))


def replace_memberships(user_id: str, club_ids: List[str]) -> int:
    """Make ``club_ids`` the complete set of clubs for ``user_id``."""
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute("DELETE FROM club_memberships WHERE user_id = %s", (user_id,))
        unique_ids = list(dict.fromkeys(club_ids))
        if unique_ids:
            execute_values(
                cur,
                "INSERT INTO club_memberships (user_id, club_id) VALUES %s ON CONFLICT (user_id, club_id) DO NOTHING",
                [(user_id, cid) for cid in unique_ids],
            )
        conn.commit()
    return len(unique_ids)


# ---------------------------------------------------------------------------
# Admin notifications
# ---------------------------------------------------------------------------

def recent_notifications(limit: int = 10) -> List[Dict[str, Any]]:
    return _fetchall("SELECT * FROM admin_notifications ORDER BY created_at DESC, id DESC LIMIT %s", (int(limit),))


def insert_notification(
    type_: str,
    message: str,
    user_id: Optional[str] = None,
    user_email: Optional[str] = None,
    user_name: Optional[str] = None,
) -> Dict[str, Any]:
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO admin_notifications (type, message, user_id, user_email, user_name)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING *
            """,
            (type_, message, user_id, user_email, user_name),
        )
        row = dict(cur.fetchone())
        conn.commit()
    return row


def mark_notifications_read(ids: List[Any]) -> int:
    if not ids:
        return 0
    return _execute("UPDATE admin_notifications SET read = TRUE WHERE id::text = ANY(%s) AND read = FALSE", ([str(i) for i in ids],))
