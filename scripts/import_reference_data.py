import argparse
import sys
from pathlib import Path

import pandas as pd

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db
from services import consignments, customers, locations


def _read_table(path, sheet_name=0):
    suffix = Path(path).suffix.lower()
    if suffix in {".xlsx", ".xlsm", ".xls"}:
        df = pd.read_excel(path, sheet_name=sheet_name, dtype=str)
    else:
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
    return df.fillna("")


def import_customer_profiles(path):
    df = _read_table(path)
    imported = 0
    for _, row in df.iterrows():
        name = str(row.get("Customer", "")).strip()
        if not name:
            continue
        customers.save_customer_profile(
            {
                "display_name": name,
                "customer_key": str(row.get("Key", "")).strip() or None,
                "default_pallets": str(row.get("DefaultPallets", "")).strip() or 1,
            }
        )
        imported += 1
    return imported


def import_delivery_locations(path):
    df = _read_table(path)
    imported = 0
    for _, row in df.iterrows():
        name = str(row.get("Location", "")).strip()
        if not name:
            continue
        locations.create_location(
            {
                "display_name": name,
                "destination_key": str(row.get("DestinationKey", "")).strip() or name,
                "address": str(row.get("Address", "")).strip(),
                "postcode": str(row.get("Postcode", "")).strip(),
                "notes": str(row.get("Notes", "")).strip(),
            }
        )
        imported += 1
    return imported


CONSIGNMENT_COLUMN_MAP = {
    "Job": "id",
    "Customer": "customer_name_raw",
    "Destination": "destination_raw",
    "Postcode": "postcode",
    "Pallets": "pallets_from_site",
    "Weight": "weight_from_site",
    "ETA": "eta_iso",
    "Status": "status",
}


def import_consignments(path):
    df = _read_table(path)
    rows = []
    for _, row in df.iterrows():
        record = {
            field: str(row.get(column, "")).strip() or None
            for column, field in CONSIGNMENT_COLUMN_MAP.items()
        }
        if not record["id"]:
            continue
        rows.append(record)
    return consignments.ingest_consignments(rows)


def main():
    parser = argparse.ArgumentParser(description="Import reference data and consignment extracts.")
    parser.add_argument("--customers", help="CSV or Excel file with Customer, Key, DefaultPallets columns")
    parser.add_argument(
        "--locations",
        help="CSV or Excel file with Location, DestinationKey, Address, Postcode, Notes columns",
    )
    parser.add_argument(
        "--consignments",
        help="CSV or Excel file with Job, Customer, Destination, Postcode, Pallets, Weight, ETA, Status columns",
    )
    args = parser.parse_args()
    if not (args.customers or args.locations or args.consignments):
        parser.error("Nothing to import: pass --customers, --locations or --consignments.")

    db.init_db()
    if args.customers:
        print(f"customer_profiles: {import_customer_profiles(args.customers)} rows")
    if args.locations:
        print(f"delivery_locations: {import_delivery_locations(args.locations)} rows")
    if args.consignments:
        print(f"consignments: {import_consignments(args.consignments)} rows")


if __name__ == "__main__":
    main()
