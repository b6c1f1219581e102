"""Request/response models for the Yappy QR flow."""

import enum
import time
from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from yappypay.common.config import settings
from yappypay.common.errors import ValidationError

AMOUNT_TOLERANCE = Decimal("0.001")


class TransactionStatus(str, enum.Enum):
    """Transaction states reported by `GET /transaction/{id}`."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    DECLINED = "DECLINED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"
    VOIDED = "VOIDED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_vendor(cls, value: object) -> "TransactionStatus":
        """Case-insensitive lookup; anything unrecognised is UNKNOWN."""

        if not isinstance(value, str) or not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_success(self) -> bool:
        return self is TransactionStatus.COMPLETED


TERMINAL_STATUSES = frozenset(
    {
        TransactionStatus.COMPLETED,
        TransactionStatus.DECLINED,
        TransactionStatus.EXPIRED,
        TransactionStatus.FAILED,
        TransactionStatus.VOIDED,
        TransactionStatus.CANCELLED,
    }
)


class Credentials(BaseModel):
    """Everything needed to talk to the Yappy API for one device."""

    model_config = ConfigDict(frozen=True)

    api_key: str
    secret_key: str
    device_id: str
    group_id: str
    device_name: str = "DefaultDevice"
    device_user: str = "DefaultUser"
    base_url: str = Field(default_factory=lambda: settings.yappy_base_url)

    @field_validator("api_key", "secret_key", "device_id", "group_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("base_url")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return (value or settings.yappy_base_url).rstrip("/")


class ChargeAmount(BaseModel):
    """Breakdown of a charge; `sub_total + tax + tip - discount` must equal `total`."""

    sub_total: Decimal
    tax: Decimal = Decimal("0")
    tip: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    total: Decimal

    @property
    def computed_total(self) -> Decimal:
        return self.sub_total + self.tax + self.tip - self.discount

    def is_valid(self) -> bool:
        return abs(self.computed_total - self.total) <= AMOUNT_TOLERANCE

    def validate_totals(self) -> None:
        """Raise `ValidationError` when the breakdown does not add up."""

        if self.total <= 0:
            raise ValidationError(f"total must be positive, got {self.total}")
        if not self.is_valid():
            raise ValidationError(
                f"amount mismatch: sub_total({self.sub_total}) + tax({self.tax}) + tip({self.tip}) "
                f"- discount({self.discount}) = {self.computed_total}, expected total({self.total})"
            )

    def to_body(self) -> dict[str, float]:
        return {
            "sub_total": float(self.sub_total),
            "tax": float(self.tax),
            "tip": float(self.tip),
            "discount": float(self.discount),
            "total": float(self.total),
        }


def generate_order_id() -> str:
    """Local order id: current time in milliseconds."""

    return str(int(time.time() * 1000))


class PaymentRequest(BaseModel):
    """One charge to collect through a Yappy QR."""

    amount: Decimal = Field(gt=0)
    order_id: str = Field(default_factory=generate_order_id, min_length=1)
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    tip: Decimal = Field(default=Decimal("0"), ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    total: Decimal | None = None
    description: str = "Pago con Yappy"

    @model_validator(mode="after")
    def _discount_within_charge(self) -> "PaymentRequest":
        if self.discount >= self.amount + self.tax + self.tip:
            raise ValueError("discount must be smaller than amount + tax + tip")
        return self

    def charge_amount(self) -> ChargeAmount:
        computed = self.amount + self.tax + self.tip - self.discount
        return ChargeAmount(
            sub_total=self.amount,
            tax=self.tax,
            tip=self.tip,
            discount=self.discount,
            total=self.total if self.total is not None else computed,
        )


class Session(BaseModel):
    token: str
    opened_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class QrResult(BaseModel):
    transaction_id: str
    hash: str
    order_id: str
    date: str | None = None


class Transaction(BaseModel):
    """A charge the vendor knows about, created once a QR was issued."""

    yappy_transaction_id: str
    local_order_id: str
    hash: str
    amount: Decimal
    status: TransactionStatus = TransactionStatus.PENDING
