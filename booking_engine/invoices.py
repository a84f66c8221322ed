import datetime

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from . import models


def upsert(db: Session, table):
    """Dialect-specific INSERT supporting ON CONFLICT for the bound database."""
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert(table)
    return sqlite.insert(table)


def next_sequence(db: Session, day: datetime.date) -> int:
    """
    Atomically claims the next invoice sequence number for ``day``.

    A single INSERT .. ON CONFLICT DO UPDATE .. RETURNING statement, so two
    concurrent bookings can never read the same value.
    """
    counter = models.InvoiceCounter.__table__
    stmt = upsert(db, counter).values(day=day, last_value=1)
    stmt = stmt.on_conflict_do_update(
        index_elements=[counter.c.day],
        set_={"last_value": counter.c.last_value + 1},
    ).returning(counter.c.last_value)
    return db.execute(stmt).scalar_one()


def format_invoice_number(day: datetime.date, sequence: int) -> str:
    return f"INV-{day:%Y%m%d}-{sequence:04d}"


def generate_invoice_number(db: Session, day: datetime.date | None = None) -> str:
    day = day or datetime.date.today()
    return format_invoice_number(day, next_sequence(db, day))
