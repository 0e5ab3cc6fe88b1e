#!/usr/bin/env python3
"""Ledger overview and integrity checks for RentalManagement."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine


EXPECTED_TABLES = [
    "InventoryItems",
    "Customers",
    "Rentals",
    "RentalItems",
    "Payments",
    "AuditLogs",
]

EXPECTED_COLUMNS: dict[str, list[str]] = {
    "InventoryItems": ["ItemID", "Name", "Category", "Quantity", "AvailableQty", "PricePerDay", "Status"],
    "Rentals": ["RentalID", "RentalNumber", "CustomerID", "Status", "TotalAmount", "InventoryReleasedAt"],
    "RentalItems": ["RentalItemID", "RentalID", "ItemID", "Quantity", "PricePerUnit", "Subtotal"],
    "Payments": ["PaymentID", "RentalID", "Amount", "PaymentStatus", "CreatedAt"],
    "AuditLogs": ["AuditID", "EntityType", "EntityID", "Action", "Details", "UserID", "CreatedAt"],
}

# The ledger must hold at least what unreleased rental lines hold; any extra
# is stock taken out of circulation by an administrative correction.
HELD_BY_RENTALS_SQL = """
    SELECT i."ItemID",
           i."Name",
           i."Quantity" - i."AvailableQty" AS held_by_ledger,
           COALESCE(SUM(CASE WHEN r."InventoryReleasedAt" IS NULL THEN ri."Quantity" ELSE 0 END), 0) AS held_by_rentals
    FROM "InventoryItems" i
    LEFT JOIN "RentalItems" ri ON ri."ItemID" = i."ItemID"
    LEFT JOIN "Rentals" r ON r."RentalID" = ri."RentalID"
    GROUP BY i."ItemID", i."Name", i."Quantity", i."AvailableQty"
"""


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _get_engine(db_url: str) -> Engine:
    return create_engine(db_url, pool_pre_ping=True, future=True)


def _scalar(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).scalar()


def _rows(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).all()


def _run_existence_checks(engine: Engine) -> list[CheckResult]:
    present = set(inspect(engine).get_table_names())
    return [
        CheckResult(f"table:{table}", table in present, "present" if table in present else "missing")
        for table in EXPECTED_TABLES
    ]


def _run_column_checks(engine: Engine) -> list[CheckResult]:
    inspector = inspect(engine)
    present = set(inspector.get_table_names())
    results: list[CheckResult] = []
    for table, expected in EXPECTED_COLUMNS.items():
        if table not in present:
            results.append(CheckResult(f"columns:{table}", False, "table missing"))
            continue
        actual = {column["name"] for column in inspector.get_columns(table)}
        missing = [name for name in expected if name not in actual]
        results.append(
            CheckResult(
                f"columns:{table}",
                not missing,
                "ok" if not missing else f"missing={','.join(missing)}",
            )
        )
    return results


def run_ledger_checks(engine: Engine) -> list[CheckResult]:
    checks: list[CheckResult] = []

    out_of_bounds = _scalar(
        engine,
        'SELECT COUNT(*) FROM "InventoryItems" WHERE "AvailableQty" < 0 OR "AvailableQty" > "Quantity"',
    )
    checks.append(
        CheckResult(
            "inventory:available_within_bounds",
            int(out_of_bounds or 0) == 0,
            f"count={int(out_of_bounds or 0)}",
        )
    )

    for item_id, name, held_by_ledger, held_by_rentals in _rows(engine, HELD_BY_RENTALS_SQL):
        ok = int(held_by_ledger or 0) >= int(held_by_rentals or 0)
        if ok:
            continue
        checks.append(
            CheckResult(
                f"inventory:ledger_covers_rentals:{item_id}",
                False,
                f"name={name} ledger={int(held_by_ledger or 0)} rentals={int(held_by_rentals or 0)}",
            )
        )

    orphan_lines = _scalar(
        engine,
        """
        SELECT COUNT(*)
        FROM "RentalItems" ri
        LEFT JOIN "Rentals" r ON r."RentalID" = ri."RentalID"
        WHERE r."RentalID" IS NULL
        """,
    )
    checks.append(
        CheckResult(
            "rentalitems:orphan_rentalid",
            int(orphan_lines or 0) == 0,
            f"count={int(orphan_lines or 0)}",
        )
    )

    bad_subtotals = _scalar(
        engine,
        'SELECT COUNT(*) FROM "RentalItems" WHERE ABS("Subtotal" - "Quantity" * "PricePerUnit") > 0.005',
    )
    checks.append(
        CheckResult(
            "rentalitems:subtotal_matches_price",
            int(bad_subtotals or 0) == 0,
            f"count={int(bad_subtotals or 0)}",
        )
    )
    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_row_counts(engine: Engine) -> None:
    _print_section("Row Counts")
    present = set(inspect(engine).get_table_names())
    for table in EXPECTED_TABLES:
        if table not in present:
            print(f"{table}: missing")
            continue
        count = _scalar(engine, f'SELECT COUNT(*) FROM "{table}"')
        print(f"{table}: {int(count or 0)}")


def _print_samples(engine: Engine, sample_size: int) -> None:
    _print_section("Recent Stock Adjustments")
    rows = _rows(
        engine,
        """
        SELECT "AuditID", "EntityID", "UserID", "Details", "CreatedAt"
        FROM "AuditLogs"
        WHERE "Action" = 'StockAdjustment'
        ORDER BY "AuditID" DESC
        LIMIT :n
        """,
        {"n": max(1, sample_size)},
    )
    for row in rows:
        print(f"  - {tuple(row)}")


def main() -> int:
    parser = argparse.ArgumentParser(description="RentalManagement ledger overview")
    parser.add_argument("--db-url", default=os.environ.get("RENTAL_DB_URL", ""))
    parser.add_argument("--samples", type=int, default=5)
    args = parser.parse_args()

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("RENTAL_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        engine = _get_engine(db_url)
        # Force a quick connectivity check first.
        _scalar(engine, "SELECT 1")
    except Exception as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    existence = _run_existence_checks(engine)
    _print_results("Table Existence", existence)
    _print_results("Column Checks", _run_column_checks(engine))
    if not all(check.ok for check in existence):
        return 1

    ledger = run_ledger_checks(engine)
    _print_results("Ledger Checks", ledger)
    _print_row_counts(engine)
    _print_samples(engine, args.samples)
    return 0 if all(check.ok for check in ledger) else 1


if __name__ == "__main__":
    sys.exit(main())
