"""
Seed data generator -- creates the roster and machine tables in the SQLite
database the chatbot queries.

Generates:
  - dws_tas_roster      (~600 monthly engineer snapshots over 6 months)
  - dws_wisdom_machine  (~120 machines across product lines and customers)

Row attributes cycle deterministically through products / orgs / months so
counts are predictable; names and serial numbers come from Faker.
Run:  python -m pipelines.seed.seed_data
"""
from __future__ import annotations

import random

from faker import Faker
from sqlalchemy import text
from sqlalchemy.engine import Engine

from kpichat.core.config import get_settings
from kpichat.db.connection import create_sqlite_engine

# ── Tunables ─────────────────────────────────────────────
NUM_EMPLOYEES = 100
NUM_MACHINES = 120

MONTHS = ["202505", "202508", "202510", "202511", "202512", "202601"]
PRODUCTS = ["CT", "SPS", "ES", "3DI", "CERTAS"]
ORGS = ["PSM", "非PSM"]
CLASSES = ["FE", "FE", "FE", "SE"]
CUSTOMERS = ["BYD", "CATL", "Tesla", "NIO"]
MODELS = ["X-100", "X-200", "Z-5", "Z-9"]
CLUSTER_FLAGS = ["R", "R", "R", "T"]

# ── Schema ───────────────────────────────────────────────

_DDL = [
    "DROP TABLE IF EXISTS dws_tas_roster",
    """CREATE TABLE dws_tas_roster (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        st_WrMonth TEXT NOT NULL,
        st_EmpID TEXT NOT NULL,
        st_EmpNameCN TEXT,
        st_EmpNameEN TEXT,
        st_DeptName TEXT NOT NULL,
        st_OrgName TEXT NOT NULL,
        st_ClassName TEXT NOT NULL,
        st_EmpAvailable TEXT NOT NULL
    )""",
    "CREATE INDEX ix_roster_month ON dws_tas_roster (st_WrMonth)",
    "DROP TABLE IF EXISTS dws_wisdom_machine",
    """CREATE TABLE dws_wisdom_machine (
        st_SN TEXT PRIMARY KEY,
        st_ProductLine TEXT NOT NULL,
        st_BP TEXT,
        st_MachineModelName TEXT,
        st_MachineClusterFlag TEXT NOT NULL,
        st_ShippingDate TEXT
    )""",
]


# ── Generators ───────────────────────────────────────────

def gen_roster(num_employees: int = NUM_EMPLOYEES, months: list[str] | None = None) -> list[dict]:
    """One row per employee per month; attributes cycle so every bucket is populated."""
    fake_cn = Faker("zh_CN")
    fake_en = Faker("en_US")
    fake_cn.seed_instance(42)
    fake_en.seed_instance(42)

    employees = []
    for i in range(num_employees):
        employees.append({
            "st_EmpID": f"E{1000 + i}",
            "st_EmpNameCN": fake_cn.name(),
            "st_EmpNameEN": fake_en.name(),
            "st_DeptName": PRODUCTS[i % len(PRODUCTS)],
            "st_OrgName": ORGS[i % len(ORGS)],
            "st_ClassName": CLASSES[i % len(CLASSES)],
            "st_EmpAvailable": "0" if i % 10 == 9 else "1",
        })

    rows = []
    for month in months or MONTHS:
        for emp in employees:
            rows.append({"st_WrMonth": month, **emp})
    return rows


def gen_machines(num_machines: int = NUM_MACHINES) -> list[dict]:
    fake = Faker()
    fake.seed_instance(7)
    rng = random.Random(7)

    rows = []
    for i in range(num_machines):
        rows.append({
            "st_SN": f"SN{fake.unique.bothify('??####').upper()}",
            "st_ProductLine": PRODUCTS[i % len(PRODUCTS)],
            "st_BP": CUSTOMERS[i % len(CUSTOMERS)],
            "st_MachineModelName": rng.choice(MODELS),
            "st_MachineClusterFlag": CLUSTER_FLAGS[i % len(CLUSTER_FLAGS)],
            "st_ShippingDate": fake.date_between(start_date="-3y", end_date="today").isoformat(),
        })
    return rows


# ── Bulk insert helper ───────────────────────────────────

def _bulk_insert(engine: Engine, table: str, rows: list[dict], batch_size: int = 2000) -> None:
    """Insert rows into *table* in batches using executemany-style VALUES."""
    if not rows:
        return
    cols = list(rows[0].keys())
    col_list = ", ".join(cols)
    param_list = ", ".join(f":{c}" for c in cols)
    sql = text(f"INSERT INTO {table} ({col_list}) VALUES ({param_list})")
    with engine.begin() as conn:
        for i in range(0, len(rows), batch_size):
            conn.execute(sql, rows[i : i + batch_size])


def seed(
    engine: Engine,
    num_employees: int = NUM_EMPLOYEES,
    num_machines: int = NUM_MACHINES,
    months: list[str] | None = None,
) -> dict[str, int]:
    """(Re)create both tables on *engine* and fill them. Returns row counts."""
    with engine.begin() as conn:
        for stmt in _DDL:
            conn.execute(text(stmt))

    roster = gen_roster(num_employees, months)
    machines = gen_machines(num_machines)
    _bulk_insert(engine, "dws_tas_roster", roster)
    _bulk_insert(engine, "dws_wisdom_machine", machines)
    return {"dws_tas_roster": len(roster), "dws_wisdom_machine": len(machines)}


# ── Main ─────────────────────────────────────────────────

def main():
    print("═══ Seed Data Generator ═══")
    url = get_settings().database_url
    engine = create_sqlite_engine(url)
    print(f"Target: {url}")

    counts = seed(engine)
    for table, n in counts.items():
        print(f"  ✓ {table}: {n:,} rows")
    print("\nDone.")


if __name__ == "__main__":
    main()
