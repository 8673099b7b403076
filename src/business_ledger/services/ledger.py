"""LedgerService implementation for double-entry accounting operations."""

import threading
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from business_ledger.domain.accounts import Account
from business_ledger.domain.audit import AuditAction, AuditEntityType
from business_ledger.domain.journal import JournalEntry, JournalEntryLine
from business_ledger.domain.value_objects import (
    SYSTEM_CONTEXT,
    AccountType,
    CommandContext,
    EntryStatus,
    EntryType,
    Money,
    ReconciliationStatus,
    default_scale,
)
from business_ledger.exceptions import (
    AccountLockedError,
    AccountNotFoundError,
    CurrencyMismatchError,
    DuplicateAccountError,
    EntryAlreadyReversedError,
    InactiveAccountError,
    InvalidEntryTransitionError,
    InvalidJournalLineError,
    JournalEntryNotFoundError,
    LedgerError,
    ValidationError,
)
from business_ledger.logging_config import command_scope, get_logger
from business_ledger.repositories.interfaces import (
    AccountRepository,
    JournalEntryRepository,
    UnitOfWork,
)
from business_ledger.services.audit import (
    EventSink,
    NullEventSink,
    build_event,
    publish_after_commit,
)
from business_ledger.services.interfaces import (
    FiscalPeriodService,
    GeneralLedger,
    GeneralLedgerLine,
    LedgerService,
    TrialBalance,
    TrialBalanceLine,
)

logger = get_logger(__name__)


def to_money(value: Decimal, currency: str) -> Money:
    """Wrap an exact sum of stored amounts without rounding it."""
    exponent = value.as_tuple().exponent
    digits = -exponent if isinstance(exponent, int) and exponent < 0 else 0
    return Money(value, currency, max(default_scale(currency), digits))


class BalanceCache:
    """Derived account balances keyed by (account, as-of date).

    Never authoritative: every entry can be recomputed from posted lines.
    Each account has a generation counter bumped on invalidation; a value
    computed under an older generation is not stored.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[tuple[UUID, date | None], Money] = {}
        self._generations: dict[UUID, int] = {}

    def generation(self, account_id: UUID) -> int:
        with self._lock:
            return self._generations.get(account_id, 0)

    def get(self, account_id: UUID, as_of_date: date | None) -> Money | None:
        with self._lock:
            return self._values.get((account_id, as_of_date))

    def store(
        self, account_id: UUID, as_of_date: date | None, balance: Money, generation: int
    ) -> bool:
        with self._lock:
            if self._generations.get(account_id, 0) != generation:
                return False
            self._values[(account_id, as_of_date)] = balance
            return True

    def invalidate(self, account_ids: set[UUID]) -> None:
        with self._lock:
            for account_id in account_ids:
                self._generations[account_id] = self._generations.get(account_id, 0) + 1
            stale = [key for key in self._values if key[0] in account_ids]
            for key in stale:
                del self._values[key]

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
            for account_id in self._generations:
                self._generations[account_id] += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)


class LedgerServiceImpl(LedgerService):
    """Implementation of LedgerService for double-entry accounting."""

    def __init__(
        self,
        uow: UnitOfWork,
        account_repo: AccountRepository,
        journal_repo: JournalEntryRepository,
        period_service: FiscalPeriodService,
        event_sink: EventSink | None = None,
        base_currency: str = "USD",
        balance_cache: BalanceCache | None = None,
    ) -> None:
        self._uow = uow
        self._account_repo = account_repo
        self._journal_repo = journal_repo
        self._periods = period_service
        self._events = event_sink or NullEventSink()
        self._base_currency = base_currency.upper()
        self._cache = balance_cache if balance_cache is not None else BalanceCache()

    @property
    def balance_cache(self) -> BalanceCache:
        return self._cache

    # Chart of accounts

    def create_account(
        self,
        code: str,
        name: str,
        account_type: AccountType,
        currency: str | None = None,
        foreign_currency: str | None = None,
        parent_id: UUID | None = None,
        description: str = "",
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> Account:
        account = Account(
            code=code,
            name=name,
            account_type=account_type,
            currency=currency or self._base_currency,
            foreign_currency=foreign_currency,
            parent_id=parent_id,
            description=description,
            created_by=context.actor,
            updated_by=context.actor,
        )
        with self._uow.transaction():
            if self._account_repo.get_by_code(code) is not None:
                raise DuplicateAccountError(code)
            if parent_id is not None and self._account_repo.get(parent_id) is None:
                raise AccountNotFoundError(parent_id)
            self._account_repo.add(account)
            publish_after_commit(
                self._uow,
                self._events,
                build_event(
                    AuditEntityType.ACCOUNT,
                    account.id,
                    AuditAction.CREATE,
                    context,
                    new_values={
                        "code": account.code,
                        "account_type": account.account_type.value,
                        "currency": account.currency,
                    },
                ),
            )
        logger.info(
            "account_created",
            account_id=str(account.id),
            code=account.code,
            account_type=account.account_type.value,
        )
        return account

    def get_account(self, account_id: UUID) -> Account:
        account = self._account_repo.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def get_account_by_code(self, code: str) -> Account:
        account = self._account_repo.get_by_code(code)
        if account is None:
            raise AccountNotFoundError(code)
        return account

    def list_accounts(self, active_only: bool = False) -> list[Account]:
        return list(self._account_repo.list_all(active_only=active_only))

    def update_account(
        self, account: Account, context: CommandContext = SYSTEM_CONTEXT
    ) -> Account:
        """Save changes to an account.

        Code, type, normal balance side and currency are frozen once any
        posted line references the account.
        """
        with self._uow.transaction():
            existing = self.get_account(account.id)
            changed = existing.identity_changes(account)
            if changed and self._journal_repo.account_has_posted_lines(account.id):
                logger.warning(
                    "account_update_rejected_locked",
                    account_id=str(account.id),
                    fields=",".join(changed),
                )
                raise AccountLockedError(account.id, changed)
            if account.code != existing.code:
                clash = self._account_repo.get_by_code(account.code)
                if clash is not None and clash.id != account.id:
                    raise DuplicateAccountError(account.code)
            account.updated_by = context.actor
            account.updated_at = datetime.now(UTC)
            self._account_repo.update(account)
            self._cache.invalidate({account.id})
            publish_after_commit(
                self._uow,
                self._events,
                build_event(
                    AuditEntityType.ACCOUNT,
                    account.id,
                    AuditAction.UPDATE,
                    context,
                    old_values={"code": existing.code, "name": existing.name},
                    new_values={"code": account.code, "name": account.name},
                ),
            )
        logger.info("account_updated", account_id=str(account.id), code=account.code)
        return account

    def deactivate_account(
        self, account_id: UUID, context: CommandContext = SYSTEM_CONTEXT
    ) -> Account:
        with self._uow.transaction():
            account = self.get_account(account_id)
            account.deactivate(context.actor)
            self._account_repo.update(account)
            publish_after_commit(
                self._uow,
                self._events,
                build_event(
                    AuditEntityType.ACCOUNT,
                    account.id,
                    AuditAction.UPDATE,
                    context,
                    old_values={"is_active": True},
                    new_values={"is_active": False},
                    change_summary="deactivate account",
                ),
            )
        logger.info("account_deactivated", account_id=str(account_id), code=account.code)
        return account

    # Entry lifecycle

    def _load(self, entry_id: UUID) -> JournalEntry:
        entry = self._journal_repo.get(entry_id)
        if entry is None:
            raise JournalEntryNotFoundError(entry_id)
        return entry

    def _require_accounts(self, entry: JournalEntry) -> None:
        for account_id in entry.account_ids:
            if self._account_repo.get(account_id) is None:
                raise AccountNotFoundError(account_id)

    def create_entry(
        self, entry: JournalEntry, context: CommandContext = SYSTEM_CONTEXT
    ) -> JournalEntry:
        if not entry.status.is_editable:
            raise InvalidEntryTransitionError(entry.id, entry.status.value, EntryStatus.DRAFT.value)
        with self._uow.transaction():
            self._require_accounts(entry)
            entry.tenant_id = context.tenant_id
            entry.created_by = entry.created_by or context.actor
            entry.updated_by = context.actor
            self._journal_repo.add(entry)
            publish_after_commit(
                self._uow,
                self._events,
                build_event(
                    AuditEntityType.JOURNAL_ENTRY,
                    entry.id,
                    AuditAction.CREATE,
                    context,
                    new_values={
                        "entry_type": entry.entry_type.value,
                        "entry_date": entry.entry_date.isoformat(),
                        "line_count": len(entry.lines),
                    },
                ),
            )
        logger.debug(
            "journal_entry_created",
            entry_id=str(entry.id),
            entry_type=entry.entry_type.value,
            line_count=len(entry.lines),
        )
        return entry

    def add_line(
        self,
        entry_id: UUID,
        line: JournalEntryLine,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> JournalEntry:
        with self._uow.transaction():
            entry = self._load(entry_id)
            self.get_account(line.account_id)
            entry.add_line(line)
            entry.updated_by = context.actor
            self._journal_repo.update(entry)
        return entry

    def remove_line(
        self, entry_id: UUID, line_id: UUID, context: CommandContext = SYSTEM_CONTEXT
    ) -> JournalEntry:
        with self._uow.transaction():
            entry = self._load(entry_id)
            entry.remove_line(line_id)
            entry.updated_by = context.actor
            self._journal_repo.update(entry)
        return entry

    def submit_for_approval(
        self, entry_id: UUID, context: CommandContext = SYSTEM_CONTEXT
    ) -> JournalEntry:
        with self._uow.transaction():
            entry = self._load(entry_id)
            entry.submit_for_approval(context.actor)
            self._journal_repo.update(entry)
        logger.info("journal_entry_submitted", entry_id=str(entry_id))
        return entry

    def validate_entry(self, entry: JournalEntry) -> None:
        """Balanced, at least two lines, every account present and active.

        Each line must be in its account's currency; foreign amounts travel
        in ``foreign_amount`` and never in the booked amount.
        """
        entry.validate()
        accounts = {account_id: self.get_account(account_id) for account_id in entry.account_ids}
        for account in accounts.values():
            if not account.is_active:
                raise InactiveAccountError(account.id)
        for line in entry.lines:
            account = accounts[line.account_id]
            if line.currency != account.currency:
                raise CurrencyMismatchError("post", account.currency, line.currency)

    def _post_loaded(
        self, entry: JournalEntry, context: CommandContext, posted_date: date | None
    ) -> JournalEntry:
        """Validate and post ``entry``; caller holds the period and the transaction."""
        try:
            self.validate_entry(entry)
        except LedgerError as exc:
            logger.warning(
                "journal_entry_rejected",
                entry_id=str(entry.id),
                error_code=exc.error_code,
                reason=exc.message,
            )
            raise
        sequence_number = self._uow.next_sequence("journal_entry")
        entry.mark_posted(sequence_number, posted_date or date.today(), context.actor)
        self._journal_repo.update(entry)

        account_ids = entry.account_ids
        self._cache.invalidate(account_ids)
        self._uow.after_commit(lambda: self._cache.invalidate(account_ids))
        publish_after_commit(
            self._uow,
            self._events,
            build_event(
                AuditEntityType.JOURNAL_ENTRY,
                entry.id,
                AuditAction.POST,
                context,
                old_values={"status": EntryStatus.DRAFT.value},
                new_values={
                    "status": entry.status.value,
                    "sequence_number": sequence_number,
                    "total_debits": str(entry.total_debits),
                    "total_credits": str(entry.total_credits),
                },
            ),
        )
        return entry

    def post_entry(
        self,
        entry_id: UUID,
        context: CommandContext = SYSTEM_CONTEXT,
        posted_date: date | None = None,
    ) -> JournalEntry:
        """Post a draft or pending entry; posting an already posted entry is a no-op."""
        entry = self._load(entry_id)
        if entry.status in (EntryStatus.POSTED, EntryStatus.REVERSED):
            logger.info("journal_entry_already_posted", entry_id=str(entry_id))
            return entry

        with command_scope(context, entry_id=str(entry_id)):
            with self._periods.hold_open_period(entry.entry_date):
                with self._uow.transaction():
                    entry = self._load(entry_id)
                    if entry.status in (EntryStatus.POSTED, EntryStatus.REVERSED):
                        return entry
                    self._post_loaded(entry, context, posted_date)
            logger.info(
                "journal_entry_posted",
                sequence_number=entry.sequence_number,
                entry_date=entry.entry_date.isoformat(),
                total=str(entry.total_debits),
            )
        return entry

    def record_entry(
        self, entry: JournalEntry, context: CommandContext = SYSTEM_CONTEXT
    ) -> JournalEntry:
        existing = self._journal_repo.get(entry.id)
        if existing is not None:
            return self.post_entry(entry.id, context)

        with command_scope(context, entry_id=str(entry.id)):
            with self._periods.hold_open_period(entry.entry_date):
                with self._uow.transaction():
                    self.create_entry(entry, context)
                    self._post_loaded(entry, context, None)
            logger.info(
                "journal_entry_posted",
                sequence_number=entry.sequence_number,
                entry_type=entry.entry_type.value,
                entry_date=entry.entry_date.isoformat(),
                total=str(entry.total_debits),
            )
        return entry

    def _check_reversible(self, entry: JournalEntry) -> None:
        if entry.reversed_by_entry_id is not None or entry.status == EntryStatus.REVERSED:
            logger.warning("reversal_rejected_already_reversed", entry_id=str(entry.id))
            raise EntryAlreadyReversedError(entry.id, entry.reversed_by_entry_id or "unknown")
        if entry.status != EntryStatus.POSTED:
            raise InvalidEntryTransitionError(
                entry.id, entry.status.value, EntryStatus.REVERSED.value
            )

    def reverse_entry(
        self,
        entry_id: UUID,
        reason: str,
        reversal_date: date | None = None,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> JournalEntry:
        """Post the mirror image of a posted entry and link the two.

        The reversal is dated ``reversal_date`` (the original's date when
        omitted) and must fall in an open period.
        """
        original = self._load(entry_id)
        self._check_reversible(original)
        when = reversal_date or original.entry_date

        with command_scope(context, entry_id=str(entry_id)):
            with self._periods.hold_open_period(when):
                with self._uow.transaction():
                    original = self._load(entry_id)
                    self._check_reversible(original)
                    reversal = original.build_reversal(when, reason, context.actor)
                    self.create_entry(reversal, context)
                    self._post_loaded(reversal, context, None)
                    original.mark_reversed(reversal.id, context.actor)
                    self._journal_repo.update(original)
                    publish_after_commit(
                        self._uow,
                        self._events,
                        build_event(
                            AuditEntityType.JOURNAL_ENTRY,
                            original.id,
                            AuditAction.REVERSE,
                            context,
                            old_values={"status": EntryStatus.POSTED.value},
                            new_values={
                                "status": original.status.value,
                                "reversed_by_entry_id": str(reversal.id),
                                "reason": reason,
                            },
                        ),
                    )
            logger.info(
                "journal_entry_reversed",
                reversal_entry_id=str(reversal.id),
                reversal_date=when.isoformat(),
                reason=reason,
            )
        return reversal

    def get_entry(self, entry_id: UUID) -> JournalEntry:
        return self._load(entry_id)

    def list_entries(
        self,
        status: EntryStatus | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        entry_type: EntryType | None = None,
    ) -> list[JournalEntry]:
        return list(self._journal_repo.list(status, start_date, end_date, entry_type))

    def set_reconciliation_status(
        self,
        entry_id: UUID,
        line_id: UUID,
        status: ReconciliationStatus,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> JournalEntry:
        """Record the outcome of an external reconciliation on one line."""
        with self._uow.transaction():
            entry = self._load(entry_id)
            if entry.status not in (EntryStatus.POSTED, EntryStatus.REVERSED):
                raise InvalidEntryTransitionError(entry.id, entry.status.value, status.value)
            for line in entry.lines:
                if line.id == line_id:
                    line.reconciliation_status = status
                    break
            else:
                raise InvalidJournalLineError("line not found on entry", line_id=line_id)
            entry.updated_by = context.actor
            entry.updated_at = datetime.now(UTC)
            self._journal_repo.update(entry)
        logger.info(
            "reconciliation_status_set",
            entry_id=str(entry_id),
            line_id=str(line_id),
            status=status.value,
        )
        return entry

    # Balances and reports

    def get_account_balance(self, account_id: UUID, as_of_date: date | None = None) -> Money:
        """Posted debits and credits up to ``as_of_date`` netted on the normal side."""
        cached = self._cache.get(account_id, as_of_date)
        if cached is not None:
            return cached

        account = self.get_account(account_id)
        generation = self._cache.generation(account_id)
        debits, credits = self._journal_repo.sum_posted(account_id, end_date=as_of_date)
        balance = to_money(account.signed_balance(debits, credits), account.currency)
        if not self._uow.in_transaction:
            self._cache.store(account_id, as_of_date, balance, generation)
        return balance

    def get_foreign_balance(self, account_id: UUID, as_of_date: date | None = None) -> Money:
        account = self.get_account(account_id)
        if account.foreign_currency is None:
            raise ValidationError(
                f"Account {account.code} does not carry a foreign currency",
                context={"account_id": str(account_id)},
            )
        total = self._journal_repo.sum_foreign_posted(account_id, end_date=as_of_date)
        signed = total if account.is_debit_normal else -total
        return to_money(signed, account.foreign_currency)

    def get_trial_balance(
        self, as_of_date: date | None = None, start_date: date | None = None
    ) -> TrialBalance:
        sums = self._journal_repo.sum_posted_by_account(end_date=as_of_date, start_date=start_date)
        trial_balance = TrialBalance(as_of_date=as_of_date, start_date=start_date)
        for account in sorted(self._account_repo.list_all(), key=lambda a: a.code):
            if account.id not in sums:
                continue
            debits, credits = sums[account.id]
            net = debits - credits
            scale = to_money(net, account.currency).scale
            zero = Money.zero(account.currency, scale)
            trial_balance.lines.append(
                TrialBalanceLine(
                    account_id=account.id,
                    account_code=account.code,
                    account_name=account.name,
                    account_type=account.account_type,
                    debit_balance=Money(net, account.currency, scale) if net > 0 else zero,
                    credit_balance=Money(-net, account.currency, scale) if net < 0 else zero,
                )
            )
        return trial_balance

    def get_general_ledger(
        self,
        account_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> GeneralLedger:
        account = self.get_account(account_id)
        if start_date is not None:
            opening = self.get_account_balance(account_id, start_date - timedelta(days=1))
        else:
            opening = Money.zero(account.currency)

        running = opening.amount
        ledger = GeneralLedger(
            account=account,
            start_date=start_date,
            end_date=end_date,
            opening_balance=opening,
        )
        for entry in self._journal_repo.list_posted_for_account(account_id, start_date, end_date):
            for line in entry.lines:
                if line.account_id != account_id:
                    continue
                running += account.signed_balance(
                    line.debit_amount.amount, line.credit_amount.amount
                )
                ledger.lines.append(
                    GeneralLedgerLine(
                        entry_id=entry.id,
                        entry_date=entry.entry_date,
                        sequence_number=entry.sequence_number,
                        reference=entry.reference,
                        description=line.description or entry.description,
                        debit_amount=line.debit_amount,
                        credit_amount=line.credit_amount,
                        running_balance=to_money(running, account.currency),
                    )
                )
        return ledger
