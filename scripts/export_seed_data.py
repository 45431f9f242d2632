import argparse
import csv
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db

# Reference tables that db.init_db() seeds from CSV on a fresh database.
SEED_TABLES = {
    "customer_profiles": ("customer_profiles.csv", db.CUSTOMER_PROFILE_COLUMNS, "customer_key"),
    "delivery_locations": ("delivery_locations.csv", db.DELIVERY_LOCATION_COLUMNS, "display_name, id"),
}


def export_table(connection, table_name, out_dir):
    filename, columns, order_by = SEED_TABLES[table_name]
    rows = connection.execute(
        f"SELECT {', '.join(columns)} FROM {table_name} ORDER BY {order_by}"
    ).fetchall()
    path = Path(out_dir) / filename
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(columns)
        writer.writerows([list(row) for row in rows])
    return len(rows)


def main():
    parser = argparse.ArgumentParser(description="Dump reference tables to seed CSV files.")
    parser.add_argument("--out", default=str(db.SEED_DIR), help="Directory for the CSV files")
    parser.add_argument(
        "--table",
        action="append",
        choices=sorted(SEED_TABLES),
        help="Limit the export to one table (repeatable)",
    )
    args = parser.parse_args()

    if not Path(db.DB_PATH).exists():
        raise SystemExit(f"Database not found at {db.DB_PATH}")
    Path(args.out).mkdir(parents=True, exist_ok=True)

    connection = db.get_connection()
    try:
        for table_name in args.table or sorted(SEED_TABLES):
            count = export_table(connection, table_name, args.out)
            print(f"{table_name}: {count} rows")
    finally:
        connection.close()


if __name__ == "__main__":
    main()
