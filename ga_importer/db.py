"""
Database persistence functions using psycopg2: the key-value option store,
the site registry and the archive record writer.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, Optional

import psycopg2
from psycopg2.extras import execute_values

from .config import get_config
from .metrics import get_readable_column_name

logger = logging.getLogger(__name__)


def get_connection():
    """
    Return a new database connection using DATABASE_URL from config/environment.
    """
    url = get_config().get('database_url')
    if not url:
        raise EnvironmentError('DATABASE_URL is not set')
    return psycopg2.connect(url)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS option (
    option_name TEXT PRIMARY KEY,
    option_value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS site (
    idsite INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    ts_created TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS archive_blob (
    idsite INTEGER NOT NULL,
    date1 DATE NOT NULL,
    name TEXT NOT NULL,
    value TEXT,
    ts_archived TIMESTAMPTZ DEFAULT NOW(),
    PRIMARY KEY (idsite, date1, name)
);

CREATE TABLE IF NOT EXISTS archive_numeric (
    idsite INTEGER NOT NULL,
    date1 DATE NOT NULL,
    name TEXT NOT NULL,
    value NUMERIC,
    ts_archived TIMESTAMPTZ DEFAULT NOW(),
    PRIMARY KEY (idsite, date1, name)
);
"""


def ensure_schema(connection_factory=get_connection):
    """
    Create the option, site and archive tables if they do not exist yet.
    """
    conn = connection_factory()
    try:
        cur = conn.cursor()
        cur.execute(SCHEMA_SQL)
        conn.commit()
        cur.close()
        logger.info("Database schema is up to date")
    except Exception as e:
        conn.rollback()
        logger.error(f"Error creating schema: {e}")
        raise
    finally:
        conn.close()


def escape_like(value: str) -> str:
    return value.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


class OptionStore:
    """
    Key-value store over the `option` table.
    Every call runs in its own short transaction.
    """

    def __init__(self, connection_factory=get_connection):
        self._connect = connection_factory

    def _execute(self, sql: str, params: tuple = (), fetch: str = None):
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            if fetch == 'one':
                result = cur.fetchone()
            elif fetch == 'all':
                result = cur.fetchall()
            else:
                result = cur.rowcount
            conn.commit()
            cur.close()
            return result
        except Exception as e:
            conn.rollback()
            logger.error(f"Option store query failed: {e}")
            raise
        finally:
            conn.close()

    def get(self, name: str) -> Optional[str]:
        row = self._execute("SELECT option_value FROM option WHERE option_name = %s", (name,), fetch='one')
        return row[0] if row else None

    def set(self, name: str, value: str):
        sql = """
        INSERT INTO option(option_name, option_value) VALUES (%s, %s)
        ON CONFLICT (option_name) DO UPDATE SET option_value = EXCLUDED.option_value;
        """
        self._execute(sql, (name, value))

    def add(self, name: str, value: str) -> bool:
        """Insert only if the option does not exist yet. Returns True if inserted."""
        sql = """
        INSERT INTO option(option_name, option_value) VALUES (%s, %s)
        ON CONFLICT (option_name) DO NOTHING;
        """
        return self._execute(sql, (name, value)) == 1

    def compare_and_set(self, name: str, expected: str, value: str) -> bool:
        """Replace the value only if it still equals `expected`. Returns True on success."""
        sql = "UPDATE option SET option_value = %s WHERE option_name = %s AND option_value = %s"
        return self._execute(sql, (value, name, expected)) == 1

    def delete(self, name: str):
        self._execute("DELETE FROM option WHERE option_name = %s", (name,))

    def get_like(self, prefix: str) -> Dict[str, str]:
        """All options whose name starts with `prefix`, ordered by name."""
        sql = "SELECT option_name, option_value FROM option WHERE option_name LIKE %s ORDER BY option_name"
        rows = self._execute(sql, (escape_like(prefix) + '%',), fetch='all')
        return {name: value for name, value in rows}


class UnexpectedWebsiteFound(Exception):
    """The requested site does not exist."""


class Site:

    def __init__(self, id_site: int, name: str, ts_created: datetime):
        self.id_site = id_site
        self.name = name
        self.ts_created = ts_created

    @property
    def creation_date(self) -> date:
        if isinstance(self.ts_created, datetime):
            return self.ts_created.date()
        return self.ts_created

    def to_dict(self) -> Dict[str, Any]:
        return {
            'idsite': self.id_site,
            'name': self.name,
            'ts_created': self.ts_created.isoformat() if self.ts_created else None,
        }

    def __repr__(self):
        return f"Site({self.id_site!r}, {self.name!r})"


class SiteRegistry:

    def __init__(self, connection_factory=get_connection):
        self._connect = connection_factory

    def get(self, id_site: int) -> Site:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("SELECT idsite, name, ts_created FROM site WHERE idsite = %s", (id_site,))
            row = cur.fetchone()
            cur.close()
        finally:
            conn.close()
        if not row:
            raise UnexpectedWebsiteFound(f"An unexpected website was found in the request: website id was set to '{id_site}'")
        return Site(*row)

    def get_creation_date(self, id_site: int) -> date:
        return self.get(id_site).creation_date

    def exists(self, id_site: int) -> bool:
        try:
            self.get(id_site)
            return True
        except UnexpectedWebsiteFound:
            return False


class ArchiveWriter:
    """
    Writes report records for one site and day.
    Records are buffered and flushed in one transaction on close().

    Usage:
        with ArchiveWriter(id_site, day) as writer:
            writer.insert_blob_record(name, blob)
    """

    def __init__(self, id_site: int, day: date, connection_factory=get_connection):
        self.id_site = id_site
        self.day = day
        self._connect = connection_factory
        self._blobs: Dict[str, str] = {}
        self._numerics: Dict[str, float] = {}

    def insert_blob_record(self, name: str, blob: str):
        self._blobs[name] = blob

    def insert_record(self, name: str, value):
        self._numerics[name] = value

    def insert_numeric_records(self, values: Dict[Any, Any]):
        for name, value in values.items():
            if isinstance(name, int):
                name = get_readable_column_name(name)
            self.insert_record(name, value)

    def close(self):
        """Flush buffered records to archive_blob / archive_numeric."""
        if not self._blobs and not self._numerics:
            return

        conn = self._connect()
        try:
            cur = conn.cursor()
            if self._blobs:
                execute_values(cur, """
                INSERT INTO archive_blob(idsite, date1, name, value) VALUES %s
                ON CONFLICT (idsite, date1, name) DO UPDATE SET
                    value = EXCLUDED.value,
                    ts_archived = NOW();
                """, [(self.id_site, self.day, name, blob) for name, blob in self._blobs.items()])
            if self._numerics:
                execute_values(cur, """
                INSERT INTO archive_numeric(idsite, date1, name, value) VALUES %s
                ON CONFLICT (idsite, date1, name) DO UPDATE SET
                    value = EXCLUDED.value,
                    ts_archived = NOW();
                """, [(self.id_site, self.day, name, value) for name, value in self._numerics.items()])
            conn.commit()
            cur.close()
            logger.info(f"Archived {len(self._blobs)} blob and {len(self._numerics)} numeric records "
                        f"for site {self.id_site} on {self.day}")
        except Exception as e:
            conn.rollback()
            logger.error(f"Error writing archive for site {self.id_site} on {self.day}: {e}")
            raise
        finally:
            conn.close()
            self._blobs = {}
            self._numerics = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
        else:
            # не сохраняем частично импортированный день
            self._blobs = {}
            self._numerics = {}
        return False
