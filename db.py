import csv
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parent
DEFAULT_DB_PATH = str(ROOT / "data" / "db" / "app.db")
DB_PATH = Path(os.environ.get("APP_DB_PATH", DEFAULT_DB_PATH))
DB_PATH.parent.mkdir(parents=True, exist_ok=True)
SEED_DIR = Path(os.environ.get("APP_SEED_DIR", str(ROOT / "data" / "seed")))

CONSIGNMENT_COLUMNS = [
    "id",
    "customer_name_raw",
    "customer_key",
    "destination_raw",
    "destination_key",
    "postcode",
    "delivery_location_id",
    "pallets_from_site",
    "weight_from_site",
    "eta_iso",
    "status",
    "last_seen_at",
    "archived_at",
]

CUSTOMER_PROFILE_COLUMNS = ["customer_key", "display_name", "default_pallets"]

DELIVERY_LOCATION_COLUMNS = [
    "display_name",
    "destination_key",
    "address",
    "postcode",
    "notes",
]

LORRY_UPDATE_COLUMNS = ["name", "truck_class", "capacity_pallets", "capacity_weight_kg"]


def _now_iso():
    return datetime.utcnow().isoformat(timespec="seconds")


def get_connection():
    timeout_sec_raw = os.environ.get("SQLITE_BUSY_TIMEOUT_SEC", "30")
    try:
        timeout_sec = max(float(timeout_sec_raw), 1.0)
    except (TypeError, ValueError):
        timeout_sec = 30.0
    timeout_ms = int(timeout_sec * 1000)

    connection = sqlite3.connect(DB_PATH, timeout=timeout_sec)
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA journal_mode=WAL")
    connection.execute("PRAGMA synchronous=NORMAL")
    connection.execute("PRAGMA foreign_keys=ON")
    connection.execute(f"PRAGMA busy_timeout={timeout_ms}")
    return connection


@contextmanager
def _use_connection(connection=None):
    if connection is not None:
        yield connection
        return
    inner_connection = get_connection()
    try:
        with inner_connection:
            yield inner_connection
    finally:
        inner_connection.close()


@contextmanager
def transaction():
    """Open a write transaction that holds the database lock until commit.

    Everything executed on the yielded connection is committed together or
    rolled back together.
    """

    connection = get_connection()
    try:
        connection.execute("BEGIN IMMEDIATE")
        yield connection
        connection.commit()
    except BaseException:
        connection.rollback()
        raise
    finally:
        connection.close()


def _chunked(values, size=900):
    if not values:
        return []
    return [values[i : i + size] for i in range(0, len(values), size)]


def _coerce_seed_value(value):
    if value is None:
        return None
    text = str(value)
    if text == "":
        return None
    return value


def _seed_table_from_csv(connection, table_name, filename, columns):
    path = SEED_DIR / filename
    if not path.exists():
        return False
    existing = connection.execute(f"SELECT COUNT(*) FROM {table_name}").fetchone()
    if existing and existing[0]:
        return False

    with path.open("r", newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        rows = [[_coerce_seed_value(row.get(col)) for col in columns] for row in reader]

    if not rows:
        return False

    placeholders = ", ".join("?" for _ in columns)
    column_list = ", ".join(columns)
    connection.executemany(
        f"INSERT INTO {table_name} ({column_list}) VALUES ({placeholders})",
        rows,
    )
    return True


def _seed_reference_data(connection):
    seeds = [
        ("customer_profiles", "customer_profiles.csv", CUSTOMER_PROFILE_COLUMNS),
        ("delivery_locations", "delivery_locations.csv", DELIVERY_LOCATION_COLUMNS),
    ]
    for table_name, filename, columns in seeds:
        _seed_table_from_csv(connection, table_name, filename, columns)


def init_db():
    with _use_connection() as connection:
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS consignments (
                id TEXT PRIMARY KEY,
                customer_name_raw TEXT,
                customer_key TEXT,
                destination_raw TEXT,
                destination_key TEXT,
                postcode TEXT,
                delivery_location_id INTEGER,
                pallets_from_site INTEGER,
                weight_from_site REAL,
                eta_iso TEXT,
                status TEXT,
                last_seen_at TEXT NOT NULL,
                archived_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_consignments_customer_key ON consignments(customer_key)"
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_consignments_destination_key ON consignments(destination_key)"
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_consignments_archived_at ON consignments(archived_at)"
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS pallet_overrides (
                consignment_id TEXT PRIMARY KEY
                    REFERENCES consignments(id) ON DELETE CASCADE,
                pallets INTEGER NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS customer_profiles (
                customer_key TEXT PRIMARY KEY,
                display_name TEXT NOT NULL,
                default_pallets INTEGER NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS lorries (
                id INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                truck_class TEXT NOT NULL DEFAULT 'Class1',
                capacity_pallets INTEGER NOT NULL,
                capacity_weight_kg REAL,
                status TEXT NOT NULL DEFAULT 'on',
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS assignments (
                id INTEGER PRIMARY KEY,
                lorry_id INTEGER NOT NULL
                    REFERENCES lorries(id) ON DELETE CASCADE,
                consignment_id TEXT NOT NULL
                    REFERENCES consignments(id) ON DELETE CASCADE,
                sort_order INTEGER NOT NULL,
                effective_pallets INTEGER,
                effective_weight REAL,
                is_reload INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_assignments_consignment
            ON assignments(consignment_id)
            """
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_assignments_lorry_order ON assignments(lorry_id, sort_order)"
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS delivery_locations (
                id INTEGER PRIMARY KEY,
                display_name TEXT NOT NULL,
                destination_key TEXT,
                address TEXT,
                postcode TEXT,
                notes TEXT,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS planning_settings (
                key TEXT PRIMARY KEY,
                value_text TEXT,
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
        _seed_reference_data(connection)


# ---------------------------------------------------------------------------
# Consignments
# ---------------------------------------------------------------------------


def _consignment_from_row(row):
    if row is None:
        return None
    consignment = dict(row)
    if "is_assigned" in consignment:
        consignment["is_assigned"] = bool(consignment["is_assigned"])
    return consignment


def get_consignment(consignment_id, connection=None):
    with _use_connection(connection) as active:
        row = active.execute(
            f"""
            SELECT {", ".join(CONSIGNMENT_COLUMNS)}, created_at, updated_at
            FROM consignments
            WHERE id = ?
            """,
            (consignment_id,),
        ).fetchone()
        return _consignment_from_row(row)


def list_consignments(filters=None):
    filters = filters or {}
    clauses = []
    params = []

    if filters.get("active"):
        clauses.append("c.archived_at IS NULL")
    elif filters.get("archived"):
        clauses.append("c.archived_at IS NOT NULL")
    if filters.get("unassigned"):
        clauses.append("a.id IS NULL")
    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        clauses.append(
            "(c.id LIKE ? OR c.customer_name_raw LIKE ? OR c.destination_raw LIKE ?)"
        )
        params.extend([like, like, like])
    date_value = (filters.get("date") or "").strip()
    if date_value:
        clauses.append("c.eta_iso LIKE ?")
        params.append(f"{date_value}%")

    where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    columns = ", ".join(f"c.{column}" for column in CONSIGNMENT_COLUMNS)
    with _use_connection() as connection:
        rows = connection.execute(
            f"""
            SELECT {columns},
                   o.pallets AS pallet_override,
                   a.lorry_id AS lorry_id,
                   CASE WHEN a.id IS NULL THEN 0 ELSE 1 END AS is_assigned
            FROM consignments c
            LEFT JOIN pallet_overrides o ON o.consignment_id = c.id
            LEFT JOIN assignments a ON a.consignment_id = c.id
            {where_sql}
            ORDER BY COALESCE(c.eta_iso, '') ASC, c.id ASC
            """,
            params,
        ).fetchall()
        return [_consignment_from_row(row) for row in rows]


def upsert_consignments(consignments):
    if not consignments:
        return 0
    timestamp = _now_iso()
    rows = []
    for consignment in consignments:
        rows.append(
            [consignment.get(column) for column in CONSIGNMENT_COLUMNS[:-2]]
            + [consignment.get("last_seen_at") or timestamp, timestamp, timestamp]
        )
    insert_columns = CONSIGNMENT_COLUMNS[:-2] + ["last_seen_at", "created_at", "updated_at"]
    update_columns = [column for column in CONSIGNMENT_COLUMNS[1:-2]] + ["last_seen_at"]
    placeholders = ", ".join("?" for _ in insert_columns)
    with _use_connection() as connection:
        connection.executemany(
            f"""
            INSERT INTO consignments ({", ".join(insert_columns)})
            VALUES ({placeholders})
            ON CONFLICT(id) DO UPDATE SET
                {", ".join(f"{column} = excluded.{column}" for column in update_columns)},
                archived_at = NULL,
                updated_at = excluded.updated_at
            """,
            rows,
        )
    return len(rows)


def archive_consignments(consignment_ids, archived_at=None):
    cleaned = [str(value).strip() for value in consignment_ids or [] if str(value or "").strip()]
    if not cleaned:
        return
    timestamp = archived_at or _now_iso()
    with _use_connection() as connection:
        for chunk in _chunked(cleaned):
            placeholders = ", ".join("?" for _ in chunk)
            connection.execute(
                f"""
                UPDATE consignments
                SET archived_at = ?, updated_at = ?
                WHERE id IN ({placeholders})
                """,
                [timestamp, timestamp] + chunk,
            )


def archive_stale_consignments(seen_before, archived_at=None):
    """Archive active, unassigned consignments last seen before ``seen_before``."""

    timestamp = archived_at or _now_iso()
    with _use_connection() as connection:
        cursor = connection.execute(
            """
            UPDATE consignments
            SET archived_at = ?, updated_at = ?
            WHERE archived_at IS NULL
              AND last_seen_at < ?
              AND NOT EXISTS (
                  SELECT 1 FROM assignments a WHERE a.consignment_id = consignments.id
              )
            """,
            (timestamp, timestamp, seen_before),
        )
        return cursor.rowcount


def unarchive_consignment(consignment_id):
    with _use_connection() as connection:
        connection.execute(
            "UPDATE consignments SET archived_at = NULL, updated_at = ? WHERE id = ?",
            (_now_iso(), consignment_id),
        )


def update_consignment_delivery_location(consignment_id, location_id):
    with _use_connection() as connection:
        connection.execute(
            "UPDATE consignments SET delivery_location_id = ?, updated_at = ? WHERE id = ?",
            (location_id, _now_iso(), consignment_id),
        )


# ---------------------------------------------------------------------------
# Pallet overrides and customer profiles
# ---------------------------------------------------------------------------


def get_pallet_override(consignment_id, connection=None):
    with _use_connection(connection) as active:
        row = active.execute(
            "SELECT consignment_id, pallets, updated_at FROM pallet_overrides WHERE consignment_id = ?",
            (consignment_id,),
        ).fetchone()
        return dict(row) if row else None


def upsert_pallet_override(consignment_id, pallets, connection=None):
    with _use_connection(connection) as active:
        active.execute(
            """
            INSERT INTO pallet_overrides (consignment_id, pallets, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(consignment_id) DO UPDATE SET
                pallets = excluded.pallets,
                updated_at = excluded.updated_at
            """,
            (consignment_id, pallets, _now_iso()),
        )


def delete_pallet_override(consignment_id, connection=None):
    with _use_connection(connection) as active:
        cursor = active.execute(
            "DELETE FROM pallet_overrides WHERE consignment_id = ?",
            (consignment_id,),
        )
        return cursor.rowcount


def get_customer_profile(customer_key, connection=None):
    with _use_connection(connection) as active:
        row = active.execute(
            f"SELECT {', '.join(CUSTOMER_PROFILE_COLUMNS)} FROM customer_profiles WHERE customer_key = ?",
            (customer_key,),
        ).fetchone()
        return dict(row) if row else None


def list_customer_profiles():
    with _use_connection() as connection:
        rows = connection.execute(
            f"SELECT {', '.join(CUSTOMER_PROFILE_COLUMNS)} FROM customer_profiles ORDER BY display_name ASC"
        ).fetchall()
        return [dict(row) for row in rows]


def upsert_customer_profile(profile):
    with _use_connection() as connection:
        connection.execute(
            """
            INSERT INTO customer_profiles (customer_key, display_name, default_pallets)
            VALUES (?, ?, ?)
            ON CONFLICT(customer_key) DO UPDATE SET
                display_name = excluded.display_name,
                default_pallets = excluded.default_pallets
            """,
            (
                profile.get("customer_key"),
                profile.get("display_name"),
                profile.get("default_pallets"),
            ),
        )


# ---------------------------------------------------------------------------
# Lorries
# ---------------------------------------------------------------------------


def create_lorry(lorry):
    with _use_connection() as connection:
        cursor = connection.execute(
            """
            INSERT INTO lorries (
                name,
                truck_class,
                capacity_pallets,
                capacity_weight_kg,
                status,
                created_at
            )
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                lorry.get("name"),
                lorry.get("truck_class") or "Class1",
                lorry.get("capacity_pallets"),
                lorry.get("capacity_weight_kg"),
                lorry.get("status") or "on",
                _now_iso(),
            ),
        )
        return cursor.lastrowid


def get_lorry(lorry_id, connection=None):
    with _use_connection(connection) as active:
        row = active.execute("SELECT * FROM lorries WHERE id = ?", (lorry_id,)).fetchone()
        return dict(row) if row else None


def list_lorries():
    with _use_connection() as connection:
        rows = connection.execute(
            "SELECT * FROM lorries ORDER BY created_at ASC, id ASC"
        ).fetchall()
        return [dict(row) for row in rows]


def update_lorry(lorry_id, updates):
    assignments = [
        (column, updates[column]) for column in LORRY_UPDATE_COLUMNS if column in updates
    ]
    if not assignments:
        return
    set_sql = ", ".join(f"{column} = ?" for column, _ in assignments)
    with _use_connection() as connection:
        connection.execute(
            f"UPDATE lorries SET {set_sql} WHERE id = ?",
            [value for _, value in assignments] + [lorry_id],
        )


def update_lorry_status(lorry_id, status):
    with _use_connection() as connection:
        connection.execute("UPDATE lorries SET status = ? WHERE id = ?", (status, lorry_id))


def delete_lorry(lorry_id):
    with _use_connection() as connection:
        connection.execute("DELETE FROM assignments WHERE lorry_id = ?", (lorry_id,))
        connection.execute("DELETE FROM lorries WHERE id = ?", (lorry_id,))


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------

_ASSIGNMENT_SELECT = f"""
    SELECT a.id,
           a.lorry_id,
           a.consignment_id,
           a.sort_order,
           a.effective_pallets,
           a.effective_weight,
           a.is_reload,
           a.created_at,
           {", ".join(f"c.{column} AS c_{column}" for column in CONSIGNMENT_COLUMNS)},
           o.pallets AS c_pallet_override
    FROM assignments a
    JOIN consignments c ON c.id = a.consignment_id
    LEFT JOIN pallet_overrides o ON o.consignment_id = a.consignment_id
"""


def _assignment_from_row(row):
    if row is None:
        return None
    data = dict(row)
    consignment = {}
    for key in list(data.keys()):
        if key.startswith("c_"):
            consignment[key[2:]] = data.pop(key)
    data["is_reload"] = bool(data.get("is_reload"))
    data["consignment"] = consignment
    return data


def list_assignments_for_lorry(lorry_id, connection=None):
    with _use_connection(connection) as active:
        rows = active.execute(
            _ASSIGNMENT_SELECT + " WHERE a.lorry_id = ? ORDER BY a.sort_order ASC, a.id ASC",
            (lorry_id,),
        ).fetchall()
        return [_assignment_from_row(row) for row in rows]


def get_assignment(assignment_id, connection=None):
    with _use_connection(connection) as active:
        row = active.execute(_ASSIGNMENT_SELECT + " WHERE a.id = ?", (assignment_id,)).fetchone()
        return _assignment_from_row(row)


def get_assignment_for_consignment(consignment_id, connection=None):
    with _use_connection(connection) as active:
        row = active.execute(
            _ASSIGNMENT_SELECT + " WHERE a.consignment_id = ?",
            (consignment_id,),
        ).fetchone()
        return _assignment_from_row(row)


def insert_assignment(connection, assignment):
    cursor = connection.execute(
        """
        INSERT INTO assignments (
            lorry_id,
            consignment_id,
            sort_order,
            effective_pallets,
            effective_weight,
            is_reload,
            created_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            assignment["lorry_id"],
            assignment["consignment_id"],
            assignment["sort_order"],
            assignment.get("effective_pallets"),
            assignment.get("effective_weight"),
            1 if assignment.get("is_reload") else 0,
            _now_iso(),
        ),
    )
    return cursor.lastrowid


def delete_assignment_for_consignment(connection, consignment_id):
    cursor = connection.execute(
        "DELETE FROM assignments WHERE consignment_id = ?",
        (consignment_id,),
    )
    return cursor.rowcount


def update_assignment_positions(connection, positions):
    """Persist ``(assignment_id, sort_order, is_reload)`` tuples."""

    connection.executemany(
        "UPDATE assignments SET sort_order = ?, is_reload = ? WHERE id = ?",
        [
            (sort_order, 1 if is_reload else 0, assignment_id)
            for assignment_id, sort_order, is_reload in positions
        ],
    )


def update_assignment_effective_pallets(consignment_id, pallets, connection=None):
    with _use_connection(connection) as active:
        active.execute(
            "UPDATE assignments SET effective_pallets = ? WHERE consignment_id = ?",
            (pallets, consignment_id),
        )


# ---------------------------------------------------------------------------
# Delivery locations
# ---------------------------------------------------------------------------


def list_delivery_locations():
    with _use_connection() as connection:
        rows = connection.execute(
            "SELECT * FROM delivery_locations ORDER BY display_name ASC, id ASC"
        ).fetchall()
        return [dict(row) for row in rows]


def get_delivery_location(location_id):
    with _use_connection() as connection:
        row = connection.execute(
            "SELECT * FROM delivery_locations WHERE id = ?", (location_id,)
        ).fetchone()
        return dict(row) if row else None


def create_delivery_location(location):
    with _use_connection() as connection:
        cursor = connection.execute(
            f"""
            INSERT INTO delivery_locations ({", ".join(DELIVERY_LOCATION_COLUMNS)})
            VALUES ({", ".join("?" for _ in DELIVERY_LOCATION_COLUMNS)})
            """,
            [location.get(column) for column in DELIVERY_LOCATION_COLUMNS],
        )
        return cursor.lastrowid


def update_delivery_location(location_id, updates):
    assignments = [
        (column, updates[column]) for column in DELIVERY_LOCATION_COLUMNS if column in updates
    ]
    if not assignments:
        return
    set_sql = ", ".join(f"{column} = ?" for column, _ in assignments)
    with _use_connection() as connection:
        connection.execute(
            f"UPDATE delivery_locations SET {set_sql} WHERE id = ?",
            [value for _, value in assignments] + [location_id],
        )


def delete_delivery_location(location_id):
    with _use_connection() as connection:
        connection.execute(
            "UPDATE consignments SET delivery_location_id = NULL WHERE delivery_location_id = ?",
            (location_id,),
        )
        connection.execute("DELETE FROM delivery_locations WHERE id = ?", (location_id,))


# ---------------------------------------------------------------------------
# Planning settings
# ---------------------------------------------------------------------------


def get_planning_setting(key):
    key = (key or "").strip()
    if not key:
        return None
    with _use_connection() as connection:
        row = connection.execute(
            "SELECT key, value_text, updated_at FROM planning_settings WHERE key = ?",
            (key,),
        ).fetchone()
        return dict(row) if row else None


def upsert_planning_setting(key, value_text):
    key = (key or "").strip()
    if not key:
        raise ValueError("Setting key is required.")
    value_text = None if value_text is None else str(value_text)
    with _use_connection() as connection:
        connection.execute(
            """
            INSERT INTO planning_settings (key, value_text, updated_at)
            VALUES (?, ?, datetime('now'))
            ON CONFLICT(key) DO UPDATE SET
                value_text = excluded.value_text,
                updated_at = excluded.updated_at
            """,
            (key, value_text),
        )
