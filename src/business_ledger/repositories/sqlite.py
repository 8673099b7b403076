"""SQLite implementations of repository interfaces."""

from __future__ import annotations

import contextlib
import json
import sqlite3
import threading
from collections.abc import Callable, Iterable, Iterator, Sequence
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any
from uuid import UUID

from business_ledger.domain.accounts import Account
from business_ledger.domain.audit import AuditAction, AuditEntityType, AuditEntry
from business_ledger.domain.exchange_rates import Currency, ExchangeRate, ExchangeRateSource
from business_ledger.domain.fiscal_periods import FiscalPeriod
from business_ledger.domain.invoices import (
    ARAPInvoice,
    ARAPPayment,
    InvoiceLine,
    PaymentApplication,
)
from business_ledger.domain.journal import Dimensions, JournalEntry, JournalEntryLine
from business_ledger.domain.taxes import TaxBracket, TaxJurisdiction, TaxRate
from business_ledger.domain.value_objects import (
    AccountType,
    CalculationMethod,
    EntryStatus,
    EntryType,
    InvoiceStatus,
    InvoiceType,
    JurisdictionType,
    Money,
    NormalBalance,
    PaymentMethod,
    PeriodStatus,
    ReconciliationStatus,
    TaxType,
)
from business_ledger.exceptions import ConcurrentModificationError
from business_ledger.repositories.interfaces import (
    AccountRepository,
    AuditLogRepository,
    CurrencyRepository,
    ExchangeRateRepository,
    FiscalPeriodRepository,
    InvoiceRepository,
    JournalEntryRepository,
    PaymentRepository,
    TaxRepository,
    UnitOfWork,
)

# Posted entries keep contributing to balances after they are reversed;
# the reversing entry carries the offset.
_BALANCE_STATUSES = (EntryStatus.POSTED.value, EntryStatus.REVERSED.value)

_SCHEMA = """
-- Chart of accounts
CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    code TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    account_type TEXT NOT NULL,
    normal_balance TEXT NOT NULL,
    currency TEXT NOT NULL DEFAULT 'USD',
    foreign_currency TEXT,
    parent_id TEXT,
    description TEXT NOT NULL DEFAULT '',
    is_active INTEGER NOT NULL DEFAULT 1,
    created_by TEXT,
    updated_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (parent_id) REFERENCES accounts(id)
);

-- Journal entry headers
CREATE TABLE IF NOT EXISTS journal_entries (
    id TEXT PRIMARY KEY,
    entry_date TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    reference TEXT NOT NULL DEFAULT '',
    entry_type TEXT NOT NULL,
    status TEXT NOT NULL,
    currency TEXT NOT NULL,
    tenant_id TEXT NOT NULL DEFAULT 'default',
    sequence_number INTEGER UNIQUE,
    posted_date TEXT,
    posted_by TEXT,
    reversal_of_entry_id TEXT,
    reversed_by_entry_id TEXT,
    reversal_reason TEXT NOT NULL DEFAULT '',
    created_by TEXT,
    updated_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (reversal_of_entry_id) REFERENCES journal_entries(id)
);
CREATE INDEX IF NOT EXISTS idx_journal_entries_date ON journal_entries(entry_date);
CREATE INDEX IF NOT EXISTS idx_journal_entries_status ON journal_entries(status);
CREATE UNIQUE INDEX IF NOT EXISTS idx_journal_entries_reversal_of
    ON journal_entries(reversal_of_entry_id) WHERE reversal_of_entry_id IS NOT NULL;

-- Journal entry lines
CREATE TABLE IF NOT EXISTS journal_lines (
    id TEXT PRIMARY KEY,
    entry_id TEXT NOT NULL,
    line_number INTEGER NOT NULL,
    account_id TEXT NOT NULL,
    debit_amount TEXT NOT NULL,
    credit_amount TEXT NOT NULL,
    currency TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    department TEXT,
    project TEXT,
    location TEXT,
    customer_id TEXT,
    supplier_id TEXT,
    reconciliation_status TEXT,
    foreign_amount TEXT,
    foreign_currency TEXT,
    exchange_rate TEXT,
    FOREIGN KEY (entry_id) REFERENCES journal_entries(id),
    FOREIGN KEY (account_id) REFERENCES accounts(id)
);
CREATE INDEX IF NOT EXISTS idx_journal_lines_entry ON journal_lines(entry_id);
CREATE INDEX IF NOT EXISTS idx_journal_lines_account ON journal_lines(account_id);

-- Fiscal periods
CREATE TABLE IF NOT EXISTS fiscal_periods (
    id TEXT PRIMARY KEY,
    fiscal_year INTEGER NOT NULL,
    period_number INTEGER NOT NULL,
    name TEXT NOT NULL,
    start_date TEXT NOT NULL,
    end_date TEXT NOT NULL,
    status TEXT NOT NULL,
    closed_at TEXT,
    closed_by TEXT,
    summary_currency TEXT,
    total_revenue TEXT,
    total_expenses TEXT,
    net_income TEXT,
    closing_entry_id TEXT,
    notes TEXT NOT NULL DEFAULT '',
    created_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 0,
    UNIQUE(fiscal_year, period_number)
);
CREATE INDEX IF NOT EXISTS idx_fiscal_periods_dates ON fiscal_periods(start_date, end_date);

-- Tax jurisdictions and rates
CREATE TABLE IF NOT EXISTS tax_jurisdictions (
    id TEXT PRIMARY KEY,
    code TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    jurisdiction_type TEXT NOT NULL,
    country TEXT NOT NULL,
    state_province TEXT,
    county TEXT,
    city TEXT,
    postal_code TEXT,
    tax_authority_name TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_by TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tax_rates (
    id TEXT PRIMARY KEY,
    jurisdiction_code TEXT NOT NULL,
    tax_type TEXT NOT NULL,
    method TEXT NOT NULL,
    rate TEXT NOT NULL,
    flat_amount TEXT,
    brackets TEXT,
    rate_name TEXT NOT NULL,
    effective_date TEXT NOT NULL,
    expiration_date TEXT,
    minimum_amount TEXT,
    maximum_amount TEXT,
    product_category TEXT,
    gl_account_id TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_by TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (jurisdiction_code) REFERENCES tax_jurisdictions(code)
);
CREATE INDEX IF NOT EXISTS idx_tax_rates_lookup ON tax_rates(jurisdiction_code, tax_type);

-- Currencies and exchange rates
CREATE TABLE IF NOT EXISTS currencies (
    code TEXT PRIMARY KEY,
    id TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    decimal_places INTEGER NOT NULL DEFAULT 2,
    symbol TEXT NOT NULL DEFAULT '',
    is_base_currency INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_currencies_single_base
    ON currencies(is_base_currency) WHERE is_base_currency = 1;

CREATE TABLE IF NOT EXISTS exchange_rates (
    id TEXT PRIMARY KEY,
    from_currency TEXT NOT NULL,
    to_currency TEXT NOT NULL,
    rate TEXT NOT NULL,
    effective_date TEXT NOT NULL,
    expiration_date TEXT,
    source TEXT NOT NULL DEFAULT 'manual',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_exchange_rates_pair ON exchange_rates(from_currency, to_currency);

-- Receivables and payables
CREATE TABLE IF NOT EXISTS invoices (
    id TEXT PRIMARY KEY,
    invoice_number TEXT NOT NULL UNIQUE,
    invoice_type TEXT NOT NULL,
    customer_id TEXT,
    supplier_id TEXT,
    invoice_date TEXT NOT NULL,
    due_date TEXT NOT NULL,
    currency TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    jurisdiction_codes TEXT NOT NULL DEFAULT '[]',
    subtotal TEXT NOT NULL,
    tax_amount TEXT NOT NULL,
    total_amount TEXT NOT NULL,
    paid_amount TEXT NOT NULL,
    status TEXT NOT NULL,
    journal_entry_id TEXT,
    void_reason TEXT NOT NULL DEFAULT '',
    tenant_id TEXT NOT NULL DEFAULT 'default',
    created_by TEXT,
    updated_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 0,
    CHECK ((customer_id IS NULL) != (supplier_id IS NULL))
);
CREATE INDEX IF NOT EXISTS idx_invoices_status ON invoices(status);

CREATE TABLE IF NOT EXISTS invoice_lines (
    id TEXT PRIMARY KEY,
    invoice_id TEXT NOT NULL,
    line_number INTEGER NOT NULL,
    description TEXT NOT NULL,
    quantity TEXT NOT NULL,
    unit_price TEXT NOT NULL,
    tax_code TEXT,
    tax_amount TEXT NOT NULL,
    FOREIGN KEY (invoice_id) REFERENCES invoices(id)
);
CREATE INDEX IF NOT EXISTS idx_invoice_lines_invoice ON invoice_lines(invoice_id);

CREATE TABLE IF NOT EXISTS payments (
    id TEXT PRIMARY KEY,
    payment_number TEXT NOT NULL UNIQUE,
    payment_type TEXT NOT NULL,
    customer_id TEXT,
    supplier_id TEXT,
    payment_date TEXT NOT NULL,
    amount TEXT NOT NULL,
    currency TEXT NOT NULL,
    method TEXT NOT NULL,
    method_reference TEXT,
    description TEXT NOT NULL DEFAULT '',
    journal_entry_id TEXT,
    tenant_id TEXT NOT NULL DEFAULT 'default',
    created_by TEXT,
    updated_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS payment_applications (
    id TEXT PRIMARY KEY,
    payment_id TEXT NOT NULL,
    invoice_id TEXT NOT NULL,
    amount TEXT NOT NULL,
    applied_date TEXT NOT NULL,
    applied_by TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (payment_id) REFERENCES payments(id),
    FOREIGN KEY (invoice_id) REFERENCES invoices(id)
);
CREATE INDEX IF NOT EXISTS idx_payment_applications_invoice ON payment_applications(invoice_id);
CREATE INDEX IF NOT EXISTS idx_payment_applications_payment ON payment_applications(payment_id);

-- Audit trail
CREATE TABLE IF NOT EXISTS audit_log (
    id TEXT PRIMARY KEY,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    action TEXT NOT NULL,
    actor TEXT,
    tenant_id TEXT NOT NULL DEFAULT 'default',
    timestamp TEXT NOT NULL,
    old_values TEXT,
    new_values TEXT,
    change_summary TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_audit_log_entity ON audit_log(entity_type, entity_id);
CREATE INDEX IF NOT EXISTS idx_audit_log_timestamp ON audit_log(timestamp);

-- Named counters (journal sequence, invoice and payment numbers)
CREATE TABLE IF NOT EXISTS sequences (
    name TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);
"""


def _money(text: str, currency: str) -> Money:
    """Rebuild Money from its canonical fixed string; the scale is the digit count."""
    value = Decimal(text)
    return Money(value, currency, max(0, -value.as_tuple().exponent))


def _opt_money(text: str | None, currency: str | None) -> Money | None:
    if text is None or currency is None:
        return None
    return _money(text, currency)


def _opt_decimal(text: str | None) -> Decimal | None:
    return Decimal(text) if text is not None else None


def _opt_str(value: Any) -> str | None:
    return str(value) if value is not None else None


def _opt_uuid(text: str | None) -> UUID | None:
    return UUID(text) if text else None


def _opt_date(text: str | None) -> date | None:
    return date.fromisoformat(text) if text else None


def _opt_datetime(text: str | None) -> datetime | None:
    return datetime.fromisoformat(text) if text else None


class SQLiteDatabase(UnitOfWork):
    """SQLite connection manager and unit of work.

    A single connection in autocommit mode is shared by every repository.
    All access goes through a re-entrant lock; ``transaction()`` holds the
    lock until commit or rollback, so concurrent commands are serialized
    and always see the state committed by the previous one.
    """

    def __init__(self, path: str | Path = ":memory:", busy_timeout: float = 30.0) -> None:
        self._path = str(path)
        self._busy_timeout = busy_timeout
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._depth = 0
        self._pending: list[list[Callable[[], None]]] = []

    def get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        with self._lock:
            if self._connection is None:
                self._connection = sqlite3.connect(
                    self._path,
                    timeout=self._busy_timeout,
                    check_same_thread=False,
                    isolation_level=None,
                )
                self._connection.row_factory = sqlite3.Row
                self._connection.execute("PRAGMA foreign_keys = ON")
            return self._connection

    def initialize(self) -> None:
        """Create all database tables."""
        with self._lock:
            self.get_connection().executescript(_SCHEMA)

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def after_commit(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._depth > 0:
                self._pending[-1].append(callback)
                return
        callback()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self.get_connection().execute(sql, params)

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        with self._lock:
            return self.get_connection().execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.get_connection().execute(sql, params).fetchall()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            conn = self.get_connection()
            depth = self._depth
            savepoint = f"sp_{depth}"
            if depth == 0:
                conn.execute("BEGIN IMMEDIATE")
            else:
                conn.execute(f"SAVEPOINT {savepoint}")
            self._depth = depth + 1
            self._pending.append([])
            try:
                yield
            except BaseException:
                self._depth = depth
                self._pending.pop()
                if depth == 0:
                    conn.execute("ROLLBACK")
                else:
                    conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                    conn.execute(f"RELEASE SAVEPOINT {savepoint}")
                raise
            self._depth = depth
            callbacks = self._pending.pop()
            if depth == 0:
                conn.execute("COMMIT")
            else:
                conn.execute(f"RELEASE SAVEPOINT {savepoint}")
                self._pending[-1].extend(callbacks)
                callbacks = []
        for callback in callbacks:
            callback()

    def next_sequence(self, name: str) -> int:
        with self.transaction():
            self.execute("INSERT OR IGNORE INTO sequences (name, value) VALUES (?, 0)", (name,))
            self.execute("UPDATE sequences SET value = value + 1 WHERE name = ?", (name,))
            row = self.fetchone("SELECT value FROM sequences WHERE name = ?", (name,))
        return int(row["value"])

    def update_versioned(
        self,
        table: str,
        entity_type: str,
        entity_id: UUID,
        version: int,
        assignments: str,
        params: Sequence[Any],
    ) -> int:
        """Optimistic update: bump ``version`` only if it still matches."""
        cursor = self.execute(
            f"UPDATE {table} SET {assignments}, version = version + 1 "
            "WHERE id = ? AND version = ?",
            (*params, str(entity_id), version),
        )
        if cursor.rowcount == 0:
            raise ConcurrentModificationError(entity_type, entity_id, version)
        return version + 1


class SQLiteAccountRepository(AccountRepository):
    """SQLite implementation of AccountRepository."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def add(self, account: Account) -> None:
        self._db.execute(
            """
            INSERT INTO accounts (id, code, name, account_type, normal_balance, currency,
                                  foreign_currency, parent_id, description, is_active,
                                  created_by, updated_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(account.id),
                account.code,
                account.name,
                account.account_type.value,
                account.normal_balance.value,
                account.currency,
                account.foreign_currency,
                _opt_str(account.parent_id),
                account.description,
                1 if account.is_active else 0,
                account.created_by,
                account.updated_by,
                account.created_at.isoformat(),
                account.updated_at.isoformat(),
            ),
        )

    def get(self, account_id: UUID) -> Account | None:
        row = self._db.fetchone("SELECT * FROM accounts WHERE id = ?", (str(account_id),))
        if row is None:
            return None
        return self._row_to_account(row)

    def get_by_code(self, code: str) -> Account | None:
        row = self._db.fetchone("SELECT * FROM accounts WHERE code = ?", (code,))
        if row is None:
            return None
        return self._row_to_account(row)

    def list_all(self, active_only: bool = False) -> Iterable[Account]:
        query = "SELECT * FROM accounts"
        if active_only:
            query += " WHERE is_active = 1"
        rows = self._db.fetchall(query + " ORDER BY code")
        return [self._row_to_account(row) for row in rows]

    def list_by_type(self, account_type: AccountType) -> Iterable[Account]:
        rows = self._db.fetchall(
            "SELECT * FROM accounts WHERE account_type = ? ORDER BY code",
            (account_type.value,),
        )
        return [self._row_to_account(row) for row in rows]

    def update(self, account: Account) -> None:
        self._db.execute(
            """
            UPDATE accounts SET
                code = ?,
                name = ?,
                account_type = ?,
                normal_balance = ?,
                currency = ?,
                foreign_currency = ?,
                parent_id = ?,
                description = ?,
                is_active = ?,
                updated_by = ?,
                updated_at = ?
            WHERE id = ?
            """,
            (
                account.code,
                account.name,
                account.account_type.value,
                account.normal_balance.value,
                account.currency,
                account.foreign_currency,
                _opt_str(account.parent_id),
                account.description,
                1 if account.is_active else 0,
                account.updated_by,
                account.updated_at.isoformat(),
                str(account.id),
            ),
        )

    def _row_to_account(self, row: sqlite3.Row) -> Account:
        return Account(
            code=row["code"],
            name=row["name"],
            account_type=AccountType(row["account_type"]),
            id=UUID(row["id"]),
            normal_balance=NormalBalance(row["normal_balance"]),
            currency=row["currency"],
            foreign_currency=row["foreign_currency"],
            parent_id=_opt_uuid(row["parent_id"]),
            description=row["description"],
            is_active=bool(row["is_active"]),
            created_by=row["created_by"],
            updated_by=row["updated_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


class SQLiteJournalEntryRepository(JournalEntryRepository):
    """SQLite implementation of JournalEntryRepository."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def add(self, entry: JournalEntry) -> None:
        with self._db.transaction():
            self._db.execute(
                """
                INSERT INTO journal_entries (id, entry_date, description, reference, entry_type,
                                             status, currency, tenant_id, sequence_number,
                                             posted_date, posted_by, reversal_of_entry_id,
                                             reversed_by_entry_id, reversal_reason, created_by,
                                             updated_by, created_at, updated_at, version)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(entry.id),
                    entry.entry_date.isoformat(),
                    entry.description,
                    entry.reference,
                    entry.entry_type.value,
                    entry.status.value,
                    entry.currency,
                    entry.tenant_id,
                    entry.sequence_number,
                    entry.posted_date.isoformat() if entry.posted_date else None,
                    entry.posted_by,
                    _opt_str(entry.reversal_of_entry_id),
                    _opt_str(entry.reversed_by_entry_id),
                    entry.reversal_reason,
                    entry.created_by,
                    entry.updated_by,
                    entry.created_at.isoformat(),
                    entry.updated_at.isoformat(),
                    entry.version,
                ),
            )
            self._insert_lines(entry)

    def _insert_lines(self, entry: JournalEntry) -> None:
        for line in entry.lines:
            self._db.execute(
                """
                INSERT INTO journal_lines (id, entry_id, line_number, account_id, debit_amount,
                                           credit_amount, currency, description, department,
                                           project, location, customer_id, supplier_id,
                                           reconciliation_status, foreign_amount,
                                           foreign_currency, exchange_rate)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(line.id),
                    str(entry.id),
                    line.line_number,
                    str(line.account_id),
                    str(line.debit_amount),
                    str(line.credit_amount),
                    line.currency,
                    line.description,
                    line.dimensions.department,
                    line.dimensions.project,
                    line.dimensions.location,
                    line.dimensions.customer_id,
                    line.dimensions.supplier_id,
                    line.reconciliation_status.value if line.reconciliation_status else None,
                    _opt_str(line.foreign_amount),
                    line.foreign_amount.currency if line.foreign_amount else None,
                    _opt_str(line.exchange_rate),
                ),
            )

    def get(self, entry_id: UUID) -> JournalEntry | None:
        row = self._db.fetchone("SELECT * FROM journal_entries WHERE id = ?", (str(entry_id),))
        if row is None:
            return None
        return self._row_to_entry(row)

    def update(self, entry: JournalEntry) -> None:
        with self._db.transaction():
            entry.version = self._db.update_versioned(
                "journal_entries",
                "JournalEntry",
                entry.id,
                entry.version,
                """
                entry_date = ?, description = ?, reference = ?, entry_type = ?, status = ?,
                currency = ?, sequence_number = ?, posted_date = ?, posted_by = ?,
                reversal_of_entry_id = ?, reversed_by_entry_id = ?, reversal_reason = ?,
                updated_by = ?, updated_at = ?
                """,
                (
                    entry.entry_date.isoformat(),
                    entry.description,
                    entry.reference,
                    entry.entry_type.value,
                    entry.status.value,
                    entry.currency,
                    entry.sequence_number,
                    entry.posted_date.isoformat() if entry.posted_date else None,
                    entry.posted_by,
                    _opt_str(entry.reversal_of_entry_id),
                    _opt_str(entry.reversed_by_entry_id),
                    entry.reversal_reason,
                    entry.updated_by,
                    entry.updated_at.isoformat(),
                ),
            )
            self._db.execute("DELETE FROM journal_lines WHERE entry_id = ?", (str(entry.id),))
            self._insert_lines(entry)

    def list(
        self,
        status: EntryStatus | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        entry_type: EntryType | None = None,
    ) -> Iterable[JournalEntry]:
        query = "SELECT * FROM journal_entries WHERE 1 = 1"
        params: list[str] = []
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        if entry_type is not None:
            query += " AND entry_type = ?"
            params.append(entry_type.value)
        if start_date is not None:
            query += " AND entry_date >= ?"
            params.append(start_date.isoformat())
        if end_date is not None:
            query += " AND entry_date <= ?"
            params.append(end_date.isoformat())
        query += " ORDER BY entry_date, sequence_number, created_at"
        rows = self._db.fetchall(query, params)
        return [self._row_to_entry(row) for row in rows]

    def list_posted_for_account(
        self,
        account_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> Iterable[JournalEntry]:
        query = """
            SELECT DISTINCT e.* FROM journal_entries e
            JOIN journal_lines l ON e.id = l.entry_id
            WHERE l.account_id = ? AND e.status IN (?, ?)
        """
        params: list[str] = [str(account_id), *_BALANCE_STATUSES]
        if start_date is not None:
            query += " AND e.entry_date >= ?"
            params.append(start_date.isoformat())
        if end_date is not None:
            query += " AND e.entry_date <= ?"
            params.append(end_date.isoformat())
        query += " ORDER BY e.entry_date, e.sequence_number"
        rows = self._db.fetchall(query, params)
        return [self._row_to_entry(row) for row in rows]

    def get_reversal_of(self, entry_id: UUID) -> JournalEntry | None:
        row = self._db.fetchone(
            "SELECT * FROM journal_entries WHERE reversal_of_entry_id = ?", (str(entry_id),)
        )
        if row is None:
            return None
        return self._row_to_entry(row)

    def _posted_line_rows(
        self,
        columns: str,
        account_id: UUID | None,
        end_date: date | None,
        start_date: date | None,
    ) -> list[sqlite3.Row]:
        query = f"""
            SELECT {columns} FROM journal_lines l
            JOIN journal_entries e ON e.id = l.entry_id
            WHERE e.status IN (?, ?)
        """
        params: list[str] = list(_BALANCE_STATUSES)
        if account_id is not None:
            query += " AND l.account_id = ?"
            params.append(str(account_id))
        if start_date is not None:
            query += " AND e.entry_date >= ?"
            params.append(start_date.isoformat())
        if end_date is not None:
            query += " AND e.entry_date <= ?"
            params.append(end_date.isoformat())
        return self._db.fetchall(query, params)

    def sum_posted(
        self,
        account_id: UUID,
        end_date: date | None = None,
        start_date: date | None = None,
    ) -> tuple[Decimal, Decimal]:
        # Amounts are TEXT; summing in SQL would go through REAL.
        debits = Decimal("0")
        credits = Decimal("0")
        for row in self._posted_line_rows(
            "l.debit_amount, l.credit_amount", account_id, end_date, start_date
        ):
            debits += Decimal(row["debit_amount"])
            credits += Decimal(row["credit_amount"])
        return debits, credits

    def sum_posted_by_account(
        self,
        end_date: date | None = None,
        start_date: date | None = None,
    ) -> dict[UUID, tuple[Decimal, Decimal]]:
        totals: dict[UUID, tuple[Decimal, Decimal]] = {}
        for row in self._posted_line_rows(
            "l.account_id, l.debit_amount, l.credit_amount", None, end_date, start_date
        ):
            account_id = UUID(row["account_id"])
            debits, credits = totals.get(account_id, (Decimal("0"), Decimal("0")))
            totals[account_id] = (
                debits + Decimal(row["debit_amount"]),
                credits + Decimal(row["credit_amount"]),
            )
        return totals

    def sum_foreign_posted(self, account_id: UUID, end_date: date | None = None) -> Decimal:
        total = Decimal("0")
        for row in self._posted_line_rows("l.foreign_amount", account_id, end_date, None):
            if row["foreign_amount"] is not None:
                total += Decimal(row["foreign_amount"])
        return total

    def account_has_posted_lines(self, account_id: UUID) -> bool:
        row = self._db.fetchone(
            """
            SELECT 1 FROM journal_lines l
            JOIN journal_entries e ON e.id = l.entry_id
            WHERE l.account_id = ? AND e.status IN (?, ?)
            LIMIT 1
            """,
            (str(account_id), *_BALANCE_STATUSES),
        )
        return row is not None

    def _row_to_entry(self, row: sqlite3.Row) -> JournalEntry:
        line_rows = self._db.fetchall(
            "SELECT * FROM journal_lines WHERE entry_id = ? ORDER BY line_number", (row["id"],)
        )
        return JournalEntry(
            entry_date=date.fromisoformat(row["entry_date"]),
            description=row["description"],
            lines=[self._row_to_line(line_row) for line_row in line_rows],
            id=UUID(row["id"]),
            reference=row["reference"],
            entry_type=EntryType(row["entry_type"]),
            status=EntryStatus(row["status"]),
            currency=row["currency"],
            tenant_id=row["tenant_id"],
            sequence_number=row["sequence_number"],
            posted_date=_opt_date(row["posted_date"]),
            posted_by=row["posted_by"],
            reversal_of_entry_id=_opt_uuid(row["reversal_of_entry_id"]),
            reversed_by_entry_id=_opt_uuid(row["reversed_by_entry_id"]),
            reversal_reason=row["reversal_reason"],
            created_by=row["created_by"],
            updated_by=row["updated_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            version=row["version"],
        )

    def _row_to_line(self, row: sqlite3.Row) -> JournalEntryLine:
        return JournalEntryLine(
            account_id=UUID(row["account_id"]),
            debit_amount=_money(row["debit_amount"], row["currency"]),
            credit_amount=_money(row["credit_amount"], row["currency"]),
            id=UUID(row["id"]),
            description=row["description"],
            line_number=row["line_number"],
            dimensions=Dimensions(
                department=row["department"],
                project=row["project"],
                location=row["location"],
                customer_id=row["customer_id"],
                supplier_id=row["supplier_id"],
            ),
            reconciliation_status=ReconciliationStatus(row["reconciliation_status"])
            if row["reconciliation_status"]
            else None,
            foreign_amount=_opt_money(row["foreign_amount"], row["foreign_currency"]),
            exchange_rate=_opt_decimal(row["exchange_rate"]),
        )


class SQLiteFiscalPeriodRepository(FiscalPeriodRepository):
    """SQLite implementation of FiscalPeriodRepository."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def add(self, period: FiscalPeriod) -> None:
        self._db.execute(
            """
            INSERT INTO fiscal_periods (id, fiscal_year, period_number, name, start_date,
                                        end_date, status, closed_at, closed_by, summary_currency,
                                        total_revenue, total_expenses, net_income,
                                        closing_entry_id, notes, created_by, created_at,
                                        updated_at, version)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(period.id),
                period.fiscal_year,
                period.period_number,
                period.name,
                period.start_date.isoformat(),
                period.end_date.isoformat(),
                period.status.value,
                period.closed_at.isoformat() if period.closed_at else None,
                period.closed_by,
                *self._summary_params(period),
                _opt_str(period.closing_entry_id),
                period.notes,
                period.created_by,
                period.created_at.isoformat(),
                period.updated_at.isoformat(),
                period.version,
            ),
        )

    def _summary_params(self, period: FiscalPeriod) -> tuple[str | None, ...]:
        currency = period.total_revenue.currency if period.total_revenue else None
        return (
            currency,
            _opt_str(period.total_revenue),
            _opt_str(period.total_expenses),
            _opt_str(period.net_income),
        )

    def get(self, period_id: UUID) -> FiscalPeriod | None:
        row = self._db.fetchone("SELECT * FROM fiscal_periods WHERE id = ?", (str(period_id),))
        if row is None:
            return None
        return self._row_to_period(row)

    def get_for_date(self, day: date) -> FiscalPeriod | None:
        row = self._db.fetchone(
            """
            SELECT * FROM fiscal_periods
            WHERE start_date <= ? AND end_date >= ?
            ORDER BY start_date
            LIMIT 1
            """,
            (day.isoformat(), day.isoformat()),
        )
        if row is None:
            return None
        return self._row_to_period(row)

    def list_by_year(self, fiscal_year: int) -> Iterable[FiscalPeriod]:
        rows = self._db.fetchall(
            "SELECT * FROM fiscal_periods WHERE fiscal_year = ? ORDER BY period_number",
            (fiscal_year,),
        )
        return [self._row_to_period(row) for row in rows]

    def list_all(self) -> Iterable[FiscalPeriod]:
        rows = self._db.fetchall("SELECT * FROM fiscal_periods ORDER BY start_date")
        return [self._row_to_period(row) for row in rows]

    def update(self, period: FiscalPeriod) -> None:
        period.version = self._db.update_versioned(
            "fiscal_periods",
            "FiscalPeriod",
            period.id,
            period.version,
            """
            name = ?, status = ?, closed_at = ?, closed_by = ?, summary_currency = ?,
            total_revenue = ?, total_expenses = ?, net_income = ?, closing_entry_id = ?,
            notes = ?, updated_at = ?
            """,
            (
                period.name,
                period.status.value,
                period.closed_at.isoformat() if period.closed_at else None,
                period.closed_by,
                *self._summary_params(period),
                _opt_str(period.closing_entry_id),
                period.notes,
                period.updated_at.isoformat(),
            ),
        )

    def _row_to_period(self, row: sqlite3.Row) -> FiscalPeriod:
        currency = row["summary_currency"]
        return FiscalPeriod(
            fiscal_year=row["fiscal_year"],
            period_number=row["period_number"],
            start_date=date.fromisoformat(row["start_date"]),
            end_date=date.fromisoformat(row["end_date"]),
            id=UUID(row["id"]),
            name=row["name"],
            status=PeriodStatus(row["status"]),
            closed_at=_opt_datetime(row["closed_at"]),
            closed_by=row["closed_by"],
            total_revenue=_opt_money(row["total_revenue"], currency),
            total_expenses=_opt_money(row["total_expenses"], currency),
            net_income=_opt_money(row["net_income"], currency),
            closing_entry_id=_opt_uuid(row["closing_entry_id"]),
            notes=row["notes"],
            created_by=row["created_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            version=row["version"],
        )


class SQLiteTaxRepository(TaxRepository):
    """SQLite implementation of TaxRepository."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def add_jurisdiction(self, jurisdiction: TaxJurisdiction) -> None:
        self._db.execute(
            """
            INSERT INTO tax_jurisdictions (id, code, name, jurisdiction_type, country,
                                           state_province, county, city, postal_code,
                                           tax_authority_name, is_active, created_by,
                                           created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(jurisdiction.id),
                jurisdiction.code,
                jurisdiction.name,
                jurisdiction.jurisdiction_type.value,
                jurisdiction.country,
                jurisdiction.state_province,
                jurisdiction.county,
                jurisdiction.city,
                jurisdiction.postal_code,
                jurisdiction.tax_authority_name,
                1 if jurisdiction.is_active else 0,
                jurisdiction.created_by,
                jurisdiction.created_at.isoformat(),
            ),
        )

    def get_jurisdiction(self, code: str) -> TaxJurisdiction | None:
        row = self._db.fetchone("SELECT * FROM tax_jurisdictions WHERE code = ?", (code,))
        if row is None:
            return None
        return self._row_to_jurisdiction(row)

    def list_jurisdictions(self, active_only: bool = False) -> Iterable[TaxJurisdiction]:
        query = "SELECT * FROM tax_jurisdictions"
        if active_only:
            query += " WHERE is_active = 1"
        rows = self._db.fetchall(query + " ORDER BY code")
        return [self._row_to_jurisdiction(row) for row in rows]

    def add_rate(self, rate: TaxRate) -> None:
        self._db.execute(
            """
            INSERT INTO tax_rates (id, jurisdiction_code, tax_type, method, rate, flat_amount,
                                   brackets, rate_name, effective_date, expiration_date,
                                   minimum_amount, maximum_amount, product_category,
                                   gl_account_id, is_active, created_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(rate.id),
                rate.jurisdiction_code,
                rate.tax_type.value,
                rate.method.value,
                str(rate.rate),
                _opt_str(rate.flat_amount),
                self._brackets_to_json(rate.brackets),
                rate.rate_name,
                rate.effective_date.isoformat(),
                rate.expiration_date.isoformat() if rate.expiration_date else None,
                _opt_str(rate.minimum_amount),
                _opt_str(rate.maximum_amount),
                rate.product_category,
                _opt_str(rate.gl_account_id),
                1 if rate.is_active else 0,
                rate.created_by,
                rate.created_at.isoformat(),
            ),
        )

    def get_rate(self, rate_id: UUID) -> TaxRate | None:
        row = self._db.fetchone("SELECT * FROM tax_rates WHERE id = ?", (str(rate_id),))
        if row is None:
            return None
        return self._row_to_rate(row)

    def list_rates(
        self, jurisdiction_code: str, tax_type: TaxType | None = None
    ) -> Iterable[TaxRate]:
        query = "SELECT * FROM tax_rates WHERE jurisdiction_code = ?"
        params: list[str] = [jurisdiction_code]
        if tax_type is not None:
            query += " AND tax_type = ?"
            params.append(tax_type.value)
        rows = self._db.fetchall(query + " ORDER BY effective_date", params)
        return [self._row_to_rate(row) for row in rows]

    def update_rate(self, rate: TaxRate) -> None:
        self._db.execute(
            """
            UPDATE tax_rates SET
                rate_name = ?,
                expiration_date = ?,
                is_active = ?,
                gl_account_id = ?
            WHERE id = ?
            """,
            (
                rate.rate_name,
                rate.expiration_date.isoformat() if rate.expiration_date else None,
                1 if rate.is_active else 0,
                _opt_str(rate.gl_account_id),
                str(rate.id),
            ),
        )

    def _brackets_to_json(self, brackets: tuple[TaxBracket, ...]) -> str | None:
        if not brackets:
            return None
        return json.dumps(
            [
                {"lower": str(b.lower), "upper": _opt_str(b.upper), "rate": str(b.rate)}
                for b in brackets
            ]
        )

    def _row_to_jurisdiction(self, row: sqlite3.Row) -> TaxJurisdiction:
        return TaxJurisdiction(
            code=row["code"],
            name=row["name"],
            jurisdiction_type=JurisdictionType(row["jurisdiction_type"]),
            country=row["country"],
            id=UUID(row["id"]),
            state_province=row["state_province"],
            county=row["county"],
            city=row["city"],
            postal_code=row["postal_code"],
            tax_authority_name=row["tax_authority_name"],
            is_active=bool(row["is_active"]),
            created_by=row["created_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_rate(self, row: sqlite3.Row) -> TaxRate:
        brackets_json = row["brackets"]
        brackets = tuple(
            TaxBracket(
                lower=Decimal(item["lower"]),
                rate=Decimal(item["rate"]),
                upper=_opt_decimal(item["upper"]),
            )
            for item in (json.loads(brackets_json) if brackets_json else [])
        )
        return TaxRate(
            jurisdiction_code=row["jurisdiction_code"],
            tax_type=TaxType(row["tax_type"]),
            effective_date=date.fromisoformat(row["effective_date"]),
            method=CalculationMethod(row["method"]),
            rate=Decimal(row["rate"]),
            flat_amount=_opt_decimal(row["flat_amount"]),
            brackets=brackets,
            rate_name=row["rate_name"],
            id=UUID(row["id"]),
            expiration_date=_opt_date(row["expiration_date"]),
            minimum_amount=_opt_decimal(row["minimum_amount"]),
            maximum_amount=_opt_decimal(row["maximum_amount"]),
            product_category=row["product_category"],
            gl_account_id=_opt_uuid(row["gl_account_id"]),
            is_active=bool(row["is_active"]),
            created_by=row["created_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )


class SQLiteCurrencyRepository(CurrencyRepository):
    """SQLite implementation of CurrencyRepository."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def add(self, currency: Currency) -> None:
        self._db.execute(
            """
            INSERT INTO currencies (code, id, name, decimal_places, symbol, is_base_currency,
                                    is_active, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                currency.code,
                str(currency.id),
                currency.name,
                currency.decimal_places,
                currency.symbol,
                1 if currency.is_base_currency else 0,
                1 if currency.is_active else 0,
                currency.created_at.isoformat(),
            ),
        )

    def get(self, code: str) -> Currency | None:
        row = self._db.fetchone("SELECT * FROM currencies WHERE code = ?", (code.upper(),))
        if row is None:
            return None
        return self._row_to_currency(row)

    def get_base(self) -> Currency | None:
        row = self._db.fetchone("SELECT * FROM currencies WHERE is_base_currency = 1")
        if row is None:
            return None
        return self._row_to_currency(row)

    def list_all(self) -> Iterable[Currency]:
        rows = self._db.fetchall("SELECT * FROM currencies ORDER BY code")
        return [self._row_to_currency(row) for row in rows]

    def update(self, currency: Currency) -> None:
        self._db.execute(
            """
            UPDATE currencies SET
                name = ?,
                decimal_places = ?,
                symbol = ?,
                is_base_currency = ?,
                is_active = ?
            WHERE code = ?
            """,
            (
                currency.name,
                currency.decimal_places,
                currency.symbol,
                1 if currency.is_base_currency else 0,
                1 if currency.is_active else 0,
                currency.code,
            ),
        )

    def _row_to_currency(self, row: sqlite3.Row) -> Currency:
        return Currency(
            code=row["code"],
            name=row["name"],
            decimal_places=row["decimal_places"],
            symbol=row["symbol"],
            is_base_currency=bool(row["is_base_currency"]),
            is_active=bool(row["is_active"]),
            id=UUID(row["id"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )


class SQLiteExchangeRateRepository(ExchangeRateRepository):
    def __init__(self, db: SQLiteDatabase) -> None:
        self._db = db

    def add(self, rate: ExchangeRate) -> None:
        self._db.execute(
            """
            INSERT INTO exchange_rates (id, from_currency, to_currency, rate,
                                        effective_date, expiration_date, source, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(rate.id),
                rate.from_currency,
                rate.to_currency,
                str(rate.rate),
                rate.effective_date.isoformat(),
                rate.expiration_date.isoformat() if rate.expiration_date else None,
                rate.source.value,
                rate.created_at.isoformat(),
            ),
        )

    def get(self, rate_id: UUID) -> ExchangeRate | None:
        row = self._db.fetchone("SELECT * FROM exchange_rates WHERE id = ?", (str(rate_id),))
        if row is None:
            return None
        return self._row_to_exchange_rate(row)

    def list_by_currency_pair(
        self, from_currency: str, to_currency: str
    ) -> Iterable[ExchangeRate]:
        rows = self._db.fetchall(
            """
            SELECT * FROM exchange_rates
            WHERE from_currency = ? AND to_currency = ?
            ORDER BY effective_date DESC, created_at DESC
            """,
            (from_currency.upper(), to_currency.upper()),
        )
        return [self._row_to_exchange_rate(row) for row in rows]

    def update(self, rate: ExchangeRate) -> None:
        self._db.execute(
            "UPDATE exchange_rates SET expiration_date = ?, source = ? WHERE id = ?",
            (
                rate.expiration_date.isoformat() if rate.expiration_date else None,
                rate.source.value,
                str(rate.id),
            ),
        )

    def _row_to_exchange_rate(self, row: sqlite3.Row) -> ExchangeRate:
        return ExchangeRate(
            from_currency=row["from_currency"],
            to_currency=row["to_currency"],
            rate=Decimal(row["rate"]),
            effective_date=date.fromisoformat(row["effective_date"]),
            expiration_date=_opt_date(row["expiration_date"]),
            id=UUID(row["id"]),
            source=ExchangeRateSource(row["source"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )


class SQLiteInvoiceRepository(InvoiceRepository):
    """SQLite implementation of InvoiceRepository."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def add(self, invoice: ARAPInvoice) -> None:
        with self._db.transaction():
            self._db.execute(
                """
                INSERT INTO invoices (id, invoice_number, invoice_type, customer_id, supplier_id,
                                      invoice_date, due_date, currency, description,
                                      jurisdiction_codes, subtotal, tax_amount, total_amount,
                                      paid_amount, status, journal_entry_id, void_reason,
                                      tenant_id, created_by, updated_by, created_at,
                                      updated_at, version)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(invoice.id),
                    invoice.invoice_number,
                    invoice.invoice_type.value,
                    invoice.customer_id,
                    invoice.supplier_id,
                    invoice.invoice_date.isoformat(),
                    invoice.due_date.isoformat(),
                    invoice.currency,
                    invoice.description,
                    json.dumps(invoice.jurisdiction_codes),
                    str(invoice.subtotal),
                    str(invoice.tax_amount),
                    str(invoice.total_amount),
                    str(invoice.paid_amount),
                    invoice.status.value,
                    _opt_str(invoice.journal_entry_id),
                    invoice.void_reason,
                    invoice.tenant_id,
                    invoice.created_by,
                    invoice.updated_by,
                    invoice.created_at.isoformat(),
                    invoice.updated_at.isoformat(),
                    invoice.version,
                ),
            )
            for line in invoice.lines:
                self._db.execute(
                    """
                    INSERT INTO invoice_lines (id, invoice_id, line_number, description,
                                               quantity, unit_price, tax_code, tax_amount)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(line.id),
                        str(invoice.id),
                        line.line_number,
                        line.description,
                        str(line.quantity),
                        str(line.unit_price),
                        line.tax_code,
                        str(line.tax_amount),
                    ),
                )

    def get(self, invoice_id: UUID) -> ARAPInvoice | None:
        row = self._db.fetchone("SELECT * FROM invoices WHERE id = ?", (str(invoice_id),))
        if row is None:
            return None
        return self._row_to_invoice(row)

    def update(self, invoice: ARAPInvoice) -> None:
        invoice.version = self._db.update_versioned(
            "invoices",
            "ARAPInvoice",
            invoice.id,
            invoice.version,
            """
            paid_amount = ?, status = ?, journal_entry_id = ?, void_reason = ?,
            updated_by = ?, updated_at = ?
            """,
            (
                str(invoice.paid_amount),
                invoice.status.value,
                _opt_str(invoice.journal_entry_id),
                invoice.void_reason,
                invoice.updated_by,
                invoice.updated_at.isoformat(),
            ),
        )

    def list(
        self,
        invoice_type: InvoiceType | None = None,
        status: InvoiceStatus | None = None,
        currency: str | None = None,
        counterparty_id: str | None = None,
    ) -> Iterable[ARAPInvoice]:
        query = "SELECT * FROM invoices WHERE 1 = 1"
        params: list[str] = []
        if invoice_type is not None:
            query += " AND invoice_type = ?"
            params.append(invoice_type.value)
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        if currency is not None:
            query += " AND currency = ?"
            params.append(currency.upper())
        if counterparty_id is not None:
            query += " AND (customer_id = ? OR supplier_id = ?)"
            params.extend([counterparty_id, counterparty_id])
        rows = self._db.fetchall(query + " ORDER BY invoice_date, invoice_number", params)
        return [self._row_to_invoice(row) for row in rows]

    def _row_to_invoice(self, row: sqlite3.Row) -> ARAPInvoice:
        currency = row["currency"]
        line_rows = self._db.fetchall(
            "SELECT * FROM invoice_lines WHERE invoice_id = ? ORDER BY line_number",
            (row["id"],),
        )
        lines = [
            InvoiceLine(
                description=line_row["description"],
                quantity=Decimal(line_row["quantity"]),
                unit_price=_money(line_row["unit_price"], currency),
                tax_code=line_row["tax_code"],
                id=UUID(line_row["id"]),
                line_number=line_row["line_number"],
                tax_amount=_money(line_row["tax_amount"], currency),
            )
            for line_row in line_rows
        ]
        return ARAPInvoice(
            invoice_date=date.fromisoformat(row["invoice_date"]),
            due_date=date.fromisoformat(row["due_date"]),
            currency=currency,
            customer_id=row["customer_id"],
            supplier_id=row["supplier_id"],
            lines=lines,
            jurisdiction_codes=json.loads(row["jurisdiction_codes"]),
            id=UUID(row["id"]),
            invoice_number=row["invoice_number"],
            description=row["description"],
            subtotal=_money(row["subtotal"], currency),
            tax_amount=_money(row["tax_amount"], currency),
            total_amount=_money(row["total_amount"], currency),
            paid_amount=_money(row["paid_amount"], currency),
            status=InvoiceStatus(row["status"]),
            journal_entry_id=_opt_uuid(row["journal_entry_id"]),
            void_reason=row["void_reason"],
            tenant_id=row["tenant_id"],
            created_by=row["created_by"],
            updated_by=row["updated_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            version=row["version"],
        )


class SQLitePaymentRepository(PaymentRepository):
    """SQLite implementation of PaymentRepository."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def add(self, payment: ARAPPayment) -> None:
        with self._db.transaction():
            self._db.execute(
                """
                INSERT INTO payments (id, payment_number, payment_type, customer_id, supplier_id,
                                      payment_date, amount, currency, method, method_reference,
                                      description, journal_entry_id, tenant_id, created_by,
                                      updated_by, created_at, updated_at, version)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(payment.id),
                    payment.payment_number,
                    payment.payment_type.value,
                    payment.customer_id,
                    payment.supplier_id,
                    payment.payment_date.isoformat(),
                    str(payment.amount),
                    payment.currency,
                    payment.method.value,
                    payment.method_reference,
                    payment.description,
                    _opt_str(payment.journal_entry_id),
                    payment.tenant_id,
                    payment.created_by,
                    payment.updated_by,
                    payment.created_at.isoformat(),
                    payment.updated_at.isoformat(),
                    payment.version,
                ),
            )
            self._insert_applications(payment)

    def _insert_applications(self, payment: ARAPPayment) -> None:
        for application in payment.applications:
            self._db.execute(
                """
                INSERT OR IGNORE INTO payment_applications (id, payment_id, invoice_id, amount,
                                                            applied_date, applied_by, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(application.id),
                    str(payment.id),
                    str(application.invoice_id),
                    str(application.amount),
                    application.applied_date.isoformat(),
                    application.applied_by,
                    application.created_at.isoformat(),
                ),
            )

    def get(self, payment_id: UUID) -> ARAPPayment | None:
        row = self._db.fetchone("SELECT * FROM payments WHERE id = ?", (str(payment_id),))
        if row is None:
            return None
        return self._row_to_payment(row)

    def update(self, payment: ARAPPayment) -> None:
        with self._db.transaction():
            payment.version = self._db.update_versioned(
                "payments",
                "ARAPPayment",
                payment.id,
                payment.version,
                "journal_entry_id = ?, description = ?, updated_by = ?, updated_at = ?",
                (
                    _opt_str(payment.journal_entry_id),
                    payment.description,
                    payment.updated_by,
                    payment.updated_at.isoformat(),
                ),
            )
            self._insert_applications(payment)

    def list_applications_for_invoice(self, invoice_id: UUID) -> Iterable[PaymentApplication]:
        rows = self._db.fetchall(
            """
            SELECT a.*, p.currency FROM payment_applications a
            JOIN payments p ON p.id = a.payment_id
            WHERE a.invoice_id = ?
            ORDER BY a.applied_date, a.created_at
            """,
            (str(invoice_id),),
        )
        return [self._row_to_application(row, row["currency"]) for row in rows]

    def _row_to_application(self, row: sqlite3.Row, currency: str) -> PaymentApplication:
        return PaymentApplication(
            payment_id=UUID(row["payment_id"]),
            invoice_id=UUID(row["invoice_id"]),
            amount=_money(row["amount"], currency),
            applied_date=date.fromisoformat(row["applied_date"]),
            id=UUID(row["id"]),
            applied_by=row["applied_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_payment(self, row: sqlite3.Row) -> ARAPPayment:
        currency = row["currency"]
        application_rows = self._db.fetchall(
            """
            SELECT * FROM payment_applications
            WHERE payment_id = ?
            ORDER BY applied_date, created_at
            """,
            (row["id"],),
        )
        return ARAPPayment(
            payment_date=date.fromisoformat(row["payment_date"]),
            amount=_money(row["amount"], currency),
            method=PaymentMethod(row["method"]),
            method_reference=row["method_reference"],
            customer_id=row["customer_id"],
            supplier_id=row["supplier_id"],
            applications=[
                self._row_to_application(application_row, currency)
                for application_row in application_rows
            ],
            id=UUID(row["id"]),
            payment_number=row["payment_number"],
            description=row["description"],
            journal_entry_id=_opt_uuid(row["journal_entry_id"]),
            tenant_id=row["tenant_id"],
            created_by=row["created_by"],
            updated_by=row["updated_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            version=row["version"],
        )


class SQLiteAuditLogRepository(AuditLogRepository):
    """SQLite implementation of AuditLogRepository."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def add(self, entry: AuditEntry) -> None:
        self._db.execute(
            """
            INSERT INTO audit_log (id, entity_type, entity_id, action, actor, tenant_id,
                                   timestamp, old_values, new_values, change_summary)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(entry.id),
                entry.entity_type.value,
                str(entry.entity_id),
                entry.action.value,
                entry.actor,
                entry.tenant_id,
                entry.timestamp.isoformat(),
                json.dumps(entry.old_values) if entry.old_values is not None else None,
                json.dumps(entry.new_values) if entry.new_values is not None else None,
                entry.change_summary,
            ),
        )

    def list_for_entity(
        self, entity_type: AuditEntityType, entity_id: UUID, limit: int = 100
    ) -> Iterable[AuditEntry]:
        rows = self._db.fetchall(
            """
            SELECT * FROM audit_log
            WHERE entity_type = ? AND entity_id = ?
            ORDER BY timestamp DESC
            LIMIT ?
            """,
            (entity_type.value, str(entity_id), limit),
        )
        return [self._row_to_entry(row) for row in rows]

    def list_recent(self, limit: int = 100) -> Iterable[AuditEntry]:
        rows = self._db.fetchall(
            "SELECT * FROM audit_log ORDER BY timestamp DESC LIMIT ?", (limit,)
        )
        return [self._row_to_entry(row) for row in rows]

    def iter_all(self) -> Iterator[AuditEntry]:
        for row in self._db.fetchall("SELECT * FROM audit_log ORDER BY timestamp"):
            yield self._row_to_entry(row)

    def _row_to_entry(self, row: sqlite3.Row) -> AuditEntry:
        return AuditEntry(
            entity_type=AuditEntityType(row["entity_type"]),
            entity_id=UUID(row["entity_id"]),
            action=AuditAction(row["action"]),
            id=UUID(row["id"]),
            actor=row["actor"],
            tenant_id=row["tenant_id"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            old_values=json.loads(row["old_values"]) if row["old_values"] else None,
            new_values=json.loads(row["new_values"]) if row["new_values"] else None,
            change_summary=row["change_summary"],
        )
