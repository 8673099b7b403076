from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from business_ledger.domain.value_objects import AccountType, NormalBalance


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class Account:
    code: str
    name: str
    account_type: AccountType
    id: UUID = field(default_factory=uuid4)
    normal_balance: NormalBalance | None = None
    currency: str = "USD"
    foreign_currency: str | None = None
    parent_id: UUID | None = None
    description: str = ""
    is_active: bool = True
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        if self.normal_balance is None:
            self.normal_balance = self.account_type.normal_balance
        self.currency = self.currency.upper()
        if self.foreign_currency is not None:
            self.foreign_currency = self.foreign_currency.upper()

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT

    @property
    def is_foreign_currency(self) -> bool:
        return self.foreign_currency is not None and self.foreign_currency != self.currency

    def signed_balance(self, debits: Decimal, credits: Decimal) -> Decimal:
        """Net debits and credits on the account's normal side."""
        if self.is_debit_normal:
            return debits - credits
        return credits - debits

    def deactivate(self, actor: str | None = None) -> None:
        self.is_active = False
        self.updated_by = actor
        self.updated_at = _utc_now()

    def identity_changes(self, other: "Account") -> list[str]:
        """Fields frozen once the account carries posted lines."""
        changed = []
        if self.code != other.code:
            changed.append("code")
        if self.account_type != other.account_type:
            changed.append("account_type")
        if self.normal_balance != other.normal_balance:
            changed.append("normal_balance")
        if self.currency != other.currency:
            changed.append("currency")
        return changed
