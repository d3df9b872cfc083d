"""SQLite database operations for HouseSplit."""

import logging
import sqlite3
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

from pydantic import TypeAdapter

from .exceptions import (
    ConcurrentMaterializationConflict,
    InvalidPaymentTransition,
    RecordNotFoundError,
)
from .models import (
    Expense,
    Participant,
    ParticipantId,
    Payment,
    PaymentStatus,
    RecurringTemplate,
    SplitPolicy,
    SplitShare,
)

logger = logging.getLogger(__name__)

_policy_adapter: TypeAdapter[SplitPolicy] = TypeAdapter(SplitPolicy)


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS participants (
                id TEXT PRIMARY KEY,
                display_name TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expenses (
                id TEXT PRIMARY KEY,
                description TEXT NOT NULL,
                total_amount TEXT NOT NULL,
                payer TEXT NOT NULL,
                date DATE NOT NULL,
                recurring_template_id TEXT,
                notes TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        # Splits keep their input position: the first one is the remainder holder
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expense_splits (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                expense_id TEXT NOT NULL REFERENCES expenses(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                participant TEXT NOT NULL,
                amount TEXT NOT NULL
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS payments (
                id TEXT PRIMARY KEY,
                from_participant TEXT NOT NULL,
                to_participant TEXT NOT NULL,
                amount TEXT NOT NULL,
                status TEXT NOT NULL,
                date TIMESTAMP NOT NULL,
                description TEXT
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS recurring_templates (
                id TEXT PRIMARY KEY,
                description TEXT NOT NULL,
                amount TEXT NOT NULL,
                payer TEXT NOT NULL,
                frequency TEXT NOT NULL,
                start_date DATE NOT NULL,
                next_due_date DATE NOT NULL,
                end_date DATE,
                max_occurrences INTEGER,
                occurrences_created INTEGER NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1,
                split_policy TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 0
            )
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    # ========================================================================
    # Participant operations
    # ========================================================================

    def add_participant(self, participant: Participant) -> Participant:
        """Insert or update a participant."""
        self.conn.execute(
            """
            INSERT INTO participants (id, display_name, is_active)
            VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                display_name = excluded.display_name,
                is_active = excluded.is_active
            """,
            (participant.id, participant.display_name, int(participant.is_active)),
        )
        self.conn.commit()
        return participant

    def list_participants(self, active_only: bool = False) -> list[Participant]:
        """List participants in enumeration (creation) order."""
        query = "SELECT id, display_name, is_active FROM participants"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY created_at, rowid"
        return [
            Participant(
                id=row["id"],
                display_name=row["display_name"],
                is_active=bool(row["is_active"]),
            )
            for row in self.conn.execute(query).fetchall()
        ]

    # ========================================================================
    # Expense operations
    # ========================================================================

    def _insert_expense(self, cursor: sqlite3.Cursor, expense: Expense):
        cursor.execute(
            """
            INSERT INTO expenses (
                id, description, total_amount, payer, date,
                recurring_template_id, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                expense.id,
                expense.description,
                str(expense.total_amount),
                expense.payer,
                expense.date.isoformat(),
                expense.recurring_template_id,
                expense.notes,
            ),
        )
        self._insert_splits(cursor, expense)

    def _insert_splits(self, cursor: sqlite3.Cursor, expense: Expense):
        cursor.executemany(
            """
            INSERT INTO expense_splits (expense_id, position, participant, amount)
            VALUES (?, ?, ?, ?)
            """,
            [
                (expense.id, position, split.participant, str(split.amount))
                for position, split in enumerate(expense.splits)
            ],
        )

    def save_expense(self, expense: Expense) -> Expense:
        """Save an expense together with its splits (all or nothing)."""
        with self.conn:
            self._insert_expense(self.conn.cursor(), expense)
        return expense

    def update_expense(self, expense: Expense) -> Expense:
        """Replace an expense's fields and splits in one transaction.

        Raises:
            RecordNotFoundError: If the expense does not exist
        """
        with self.conn:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                UPDATE expenses
                SET description = ?, total_amount = ?, payer = ?, date = ?, notes = ?
                WHERE id = ?
                """,
                (
                    expense.description,
                    str(expense.total_amount),
                    expense.payer,
                    expense.date.isoformat(),
                    expense.notes,
                    expense.id,
                ),
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError("Expense", expense.id)
            cursor.execute("DELETE FROM expense_splits WHERE expense_id = ?", (expense.id,))
            self._insert_splits(cursor, expense)
        return expense

    def _splits_for(self, expense_ids: list[str]) -> dict[str, list[SplitShare]]:
        splits: dict[str, list[SplitShare]] = {expense_id: [] for expense_id in expense_ids}
        if not expense_ids:
            return splits
        placeholders = ",".join("?" for _ in expense_ids)
        rows = self.conn.execute(
            f"""
            SELECT expense_id, participant, amount
            FROM expense_splits
            WHERE expense_id IN ({placeholders})
            ORDER BY expense_id, position
            """,
            expense_ids,
        ).fetchall()
        for row in rows:
            splits[row["expense_id"]].append(
                SplitShare(participant=row["participant"], amount=Decimal(row["amount"]))
            )
        return splits

    def _rows_to_expenses(self, rows: list[sqlite3.Row]) -> list[Expense]:
        splits = self._splits_for([row["id"] for row in rows])
        return [
            Expense(
                id=row["id"],
                description=row["description"],
                total_amount=Decimal(row["total_amount"]),
                payer=row["payer"],
                date=date.fromisoformat(row["date"]),
                splits=splits[row["id"]],
                recurring_template_id=row["recurring_template_id"],
                notes=row["notes"],
            )
            for row in rows
        ]

    def get_expense(self, expense_id: str) -> Expense | None:
        """Get an expense by id."""
        row = self.conn.execute(
            "SELECT * FROM expenses WHERE id = ?", (expense_id,)
        ).fetchone()
        if not row:
            return None
        return self._rows_to_expenses([row])[0]

    def list_expenses(
        self,
        start: date | None = None,
        end: date | None = None,
        participant: ParticipantId | None = None,
    ) -> list[Expense]:
        """
        List expenses ordered by date.

        Args:
            start: Inclusive lower date bound
            end: Inclusive upper date bound
            participant: Only expenses this participant paid or holds a split in
        """
        clauses = []
        params: list[str] = []
        if start:
            clauses.append("date >= ?")
            params.append(start.isoformat())
        if end:
            clauses.append("date <= ?")
            params.append(end.isoformat())
        if participant:
            clauses.append(
                "(payer = ? OR id IN "
                "(SELECT expense_id FROM expense_splits WHERE participant = ?))"
            )
            params.extend([participant, participant])

        query = "SELECT * FROM expenses"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY date, created_at, rowid"

        return self._rows_to_expenses(self.conn.execute(query, params).fetchall())

    # ========================================================================
    # Payment operations
    # ========================================================================

    def save_payment(self, payment: Payment) -> Payment:
        """Save a payment record."""
        self.conn.execute(
            """
            INSERT INTO payments (
                id, from_participant, to_participant, amount, status,
                date, description
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                payment.id,
                payment.from_participant,
                payment.to_participant,
                str(payment.amount),
                payment.status,
                payment.date.isoformat(),
                payment.description,
            ),
        )
        self.conn.commit()
        return payment

    def _row_to_payment(self, row: sqlite3.Row) -> Payment:
        return Payment(
            id=row["id"],
            from_participant=row["from_participant"],
            to_participant=row["to_participant"],
            amount=Decimal(row["amount"]),
            status=row["status"],
            date=datetime.fromisoformat(row["date"]),
            description=row["description"],
        )

    def get_payment(self, payment_id: str) -> Payment | None:
        """Get a payment by id."""
        row = self.conn.execute(
            "SELECT * FROM payments WHERE id = ?", (payment_id,)
        ).fetchone()
        return self._row_to_payment(row) if row else None

    def list_payments(
        self,
        status: PaymentStatus | None = None,
        participant: ParticipantId | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Payment]:
        """List payments ordered by date, optionally filtered."""
        clauses = []
        params: list[str] = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if participant:
            clauses.append("(from_participant = ? OR to_participant = ?)")
            params.extend([participant, participant])
        if start:
            clauses.append("date >= ?")
            params.append(start.isoformat())
        if end:
            # Timestamps compare as text; everything on the end day is included
            clauses.append("date < ?")
            params.append(date.fromordinal(end.toordinal() + 1).isoformat())

        query = "SELECT * FROM payments"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY date, rowid"

        return [
            self._row_to_payment(row)
            for row in self.conn.execute(query, params).fetchall()
        ]

    def update_payment_status(self, payment: Payment) -> Payment:
        """Persist a payment's new status.

        The update only applies while the stored row is still pending, so two
        concurrent confirm/reject calls cannot both succeed.
        """
        cursor = self.conn.execute(
            "UPDATE payments SET status = ? WHERE id = ? AND status = 'pending'",
            (payment.status, payment.id),
        )
        self.conn.commit()
        if cursor.rowcount == 0:
            raise InvalidPaymentTransition(f"Payment {payment.id} is no longer pending")
        return payment

    # ========================================================================
    # Snapshot
    # ========================================================================

    def snapshot(
        self,
        start: date | None = None,
        end: date | None = None,
    ) -> tuple[list[Expense], list[Payment]]:
        """Read expenses and confirmed payments inside one read transaction."""
        self.conn.execute("BEGIN")
        try:
            expenses = self.list_expenses(start=start, end=end)
            payments = self.list_payments(status="confirmed", start=start, end=end)
        finally:
            self.conn.commit()
        return expenses, payments

    # ========================================================================
    # Recurring template operations
    # ========================================================================

    def save_template(self, template: RecurringTemplate) -> RecurringTemplate:
        """Insert a new recurring template."""
        self.conn.execute(
            """
            INSERT INTO recurring_templates (
                id, description, amount, payer, frequency, start_date,
                next_due_date, end_date, max_occurrences, occurrences_created,
                is_active, split_policy, version
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                template.id,
                template.description,
                str(template.amount),
                template.payer,
                template.frequency,
                template.start_date.isoformat(),
                template.next_due_date.isoformat(),
                template.end_date.isoformat() if template.end_date else None,
                template.max_occurrences,
                template.occurrences_created,
                int(template.is_active),
                _policy_adapter.dump_json(template.split_policy).decode(),
                template.version,
            ),
        )
        self.conn.commit()
        return template

    def _row_to_template(self, row: sqlite3.Row) -> RecurringTemplate:
        return RecurringTemplate(
            id=row["id"],
            description=row["description"],
            amount=Decimal(row["amount"]),
            payer=row["payer"],
            frequency=row["frequency"],
            start_date=date.fromisoformat(row["start_date"]),
            next_due_date=date.fromisoformat(row["next_due_date"]),
            end_date=date.fromisoformat(row["end_date"]) if row["end_date"] else None,
            max_occurrences=row["max_occurrences"],
            occurrences_created=row["occurrences_created"],
            is_active=bool(row["is_active"]),
            split_policy=_policy_adapter.validate_json(row["split_policy"]),
            version=row["version"],
        )

    def get_template(self, template_id: str) -> RecurringTemplate | None:
        """Get a recurring template by id."""
        row = self.conn.execute(
            "SELECT * FROM recurring_templates WHERE id = ?", (template_id,)
        ).fetchone()
        return self._row_to_template(row) if row else None

    def list_templates(self, active_only: bool = False) -> list[RecurringTemplate]:
        """List recurring templates ordered by next due date."""
        query = "SELECT * FROM recurring_templates"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY next_due_date, rowid"
        return [
            self._row_to_template(row) for row in self.conn.execute(query).fetchall()
        ]

    def _update_template_state(
        self, cursor: sqlite3.Cursor, template: RecurringTemplate, expected_version: int
    ):
        cursor.execute(
            """
            UPDATE recurring_templates
            SET next_due_date = ?, occurrences_created = ?, is_active = ?,
                version = version + 1
            WHERE id = ? AND version = ?
            """,
            (
                template.next_due_date.isoformat(),
                template.occurrences_created,
                int(template.is_active),
                template.id,
                expected_version,
            ),
        )
        if cursor.rowcount == 0:
            raise ConcurrentMaterializationConflict(template.id, expected_version)

    def update_template(
        self, template: RecurringTemplate, expected_version: int
    ) -> RecurringTemplate:
        """
        Replace every editable field of a template.

        Raises:
            ConcurrentMaterializationConflict: If the stored version moved on
        """
        with self.conn:
            cursor = self.conn.execute(
                """
                UPDATE recurring_templates
                SET description = ?, amount = ?, payer = ?, frequency = ?,
                    start_date = ?, next_due_date = ?, end_date = ?,
                    max_occurrences = ?, is_active = ?, split_policy = ?,
                    version = version + 1
                WHERE id = ? AND version = ?
                """,
                (
                    template.description,
                    str(template.amount),
                    template.payer,
                    template.frequency,
                    template.start_date.isoformat(),
                    template.next_due_date.isoformat(),
                    template.end_date.isoformat() if template.end_date else None,
                    template.max_occurrences,
                    int(template.is_active),
                    _policy_adapter.dump_json(template.split_policy).decode(),
                    template.id,
                    expected_version,
                ),
            )
            if cursor.rowcount == 0:
                raise ConcurrentMaterializationConflict(template.id, expected_version)
        return template.model_copy(update={"version": expected_version + 1})

    def update_template_state(
        self, template: RecurringTemplate, expected_version: int
    ) -> RecurringTemplate:
        """
        Persist due date / occurrence count / active flag changes.

        Raises:
            ConcurrentMaterializationConflict: If the stored version moved on
        """
        with self.conn:
            self._update_template_state(self.conn.cursor(), template, expected_version)
        return template.model_copy(update={"version": expected_version + 1})

    def record_occurrence(
        self,
        expense: Expense,
        template: RecurringTemplate,
        expected_version: int,
    ) -> RecurringTemplate:
        """
        Write a materialized expense and the advanced template in one transaction.

        The template update is version-checked first; on a mismatch nothing is
        written and the template stays due for the next pass.

        Args:
            expense: The new occurrence with its splits
            template: The advanced template
            expected_version: Version the template had when it was read

        Returns:
            The advanced template with its new version

        Raises:
            ConcurrentMaterializationConflict: If another pass advanced it first
        """
        with self.conn:
            cursor = self.conn.cursor()
            self._update_template_state(cursor, template, expected_version)
            self._insert_expense(cursor, expense)

        logger.debug(
            f"Recorded occurrence {expense.id} for template {template.id} "
            f"(version {expected_version} -> {expected_version + 1})"
        )
        return template.model_copy(update={"version": expected_version + 1})
