"""
Group, Expense and Post Models

A Group exclusively owns its Expenses and Posts. Both are kept in keyed
collections (id -> entity) so storage backends can apply targeted upserts
to a single expense instead of rewriting the whole list.

DESIGN DECISION: Money is Decimal quantized to 0.01 everywhere. The model
validators re-check the expense invariants as a last line of defence; the
ledger validates first and raises the proper SplitLedgerError kinds, so a
pydantic ValidationError from here indicates a programming error.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from splitledger.validation import format_date, new_id, to_money


class DistributionType(str, Enum):
    """How an expense's cost is split among its payers."""
    EVENLY = "evenly"
    SPECIFIC = "specific"


class PayerShare(BaseModel):
    """Explicit owed amount for one payer of a `specific` expense."""

    payer: str
    owed: Decimal = Field(..., gt=0, decimal_places=2)


class Payment(BaseModel):
    """Cumulative amount a payer has paid back on one expense."""

    payer: str
    paid: Decimal = Field(default=Decimal("0.00"), ge=0)

    @field_validator('paid')
    @classmethod
    def quantize_paid(cls, v: Decimal) -> Decimal:
        return to_money(v)


class FileInfo(BaseModel):
    """Metadata of a file attached to an expense (the file itself lives elsewhere)."""

    filename: str
    original_name: str
    mimetype: str
    size: int = Field(..., ge=0)
    upload_date: datetime = Field(default_factory=datetime.utcnow)


class Expense(BaseModel):
    """
    A single shared expense inside a group.

    The payee fronted `cost`; every payer other than the payee owes their
    share back to the payee. The payee may appear in `payers` (they carry
    a share of the cost) but never owes themself.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    group: str = Field(..., description="Owning group id")
    name: str = Field(..., min_length=1)
    cost: Decimal = Field(..., gt=0, decimal_places=2)
    deadline: date
    payee: str
    payers: list[str] = Field(..., min_length=1)
    distribution_type: DistributionType = Field(default=DistributionType.EVENLY)
    payer_shares: Optional[list[PayerShare]] = Field(
        default=None,
        description="Required for `specific`, absent for `evenly`"
    )
    payments: list[Payment] = Field(default_factory=list)
    archived: bool = False
    file: Optional[FileInfo] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def check_invariants(self) -> 'Expense':
        """Shares must cover every payer exactly; payments may not exceed shares."""
        if self.distribution_type == DistributionType.SPECIFIC:
            if not self.payer_shares:
                raise ValueError("Specific expenses need payer shares")
            share_payers = [share.payer for share in self.payer_shares]
            if sorted(share_payers) != sorted(set(self.payers)):
                raise ValueError("Payer shares must cover each payer exactly once")
            total = sum((share.owed for share in self.payer_shares), Decimal("0"))
            if to_money(total) != to_money(self.cost):
                raise ValueError("Sum of payer shares must equal cost")
        elif self.payer_shares is not None:
            raise ValueError("Evenly split expenses cannot carry payer shares")

        for payment in self.payments:
            if payment.payer in self.payers and payment.paid > self.share_for(payment.payer):
                raise ValueError(f"Payment by {payment.payer} exceeds owed share")
        return self

    @property
    def amount_per_payer(self) -> Decimal:
        """Even split of the cost, rounded to cents."""
        return to_money(self.cost / len(self.payers))

    def share_for(self, payer: str) -> Decimal:
        """
        Amount `payer` owes on this expense.

        Raises:
            KeyError: If a `specific` expense has no share for the payer
        """
        if self.distribution_type == DistributionType.SPECIFIC:
            for share in self.payer_shares or []:
                if share.payer == payer:
                    return to_money(share.owed)
            raise KeyError(payer)
        return self.amount_per_payer

    def payment_for(self, payer: str) -> Optional[Payment]:
        for payment in self.payments:
            if payment.payer == payer:
                return payment
        return None

    def paid_by(self, payer: str) -> Decimal:
        payment = self.payment_for(payer)
        return to_money(payment.paid) if payment else Decimal("0.00")

    def remaining_for(self, payer: str) -> Decimal:
        """What `payer` still owes (never negative)."""
        return max(Decimal("0.00"), self.share_for(payer) - self.paid_by(payer))

    def to_snapshot(self, name_map: Optional[dict[str, str]] = None) -> dict[str, Any]:
        """
        Full JSON-safe copy of the expense for change-log details.

        Display names are stored next to the ids so a snapshot stays
        readable after the users it mentions are renamed or deleted.
        """
        name_map = name_map or {}
        data = self.model_dump(mode="json")
        data["deadline"] = format_date(self.deadline)
        data["payee_name"] = name_map.get(self.payee, self.payee)
        data["payer_names"] = [name_map.get(p, p) for p in self.payers]
        return data


class Post(BaseModel):
    """A message posted on a group's board."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    group: str
    poster: str = Field(..., description="User id of the author")
    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    posted_at: datetime = Field(default_factory=datetime.utcnow)
    edited_at: Optional[datetime] = None


class Group(BaseModel):
    """
    A group of users sharing expenses.

    Members are an ordered list of unique user ids.
    Expenses and posts are keyed by their id, in insertion order.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=5, max_length=50)
    description: str = Field(..., max_length=20000)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    members: list[str] = Field(default_factory=list)
    expenses: dict[str, Expense] = Field(default_factory=dict)
    posts: dict[str, Post] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('members')
    @classmethod
    def members_unique(cls, v: list[str]) -> list[str]:
        if len(v) != len(set(v)):
            raise ValueError("Group members must be unique")
        return v

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    def expense_list(self) -> list[Expense]:
        return list(self.expenses.values())

    def to_summary(self) -> dict[str, str]:
        """Short description attached to per-user expense listings."""
        return {
            "id": self.id,
            "group_name": self.name,
            "group_description": self.description,
        }
