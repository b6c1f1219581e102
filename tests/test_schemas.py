"""Charge arithmetic, status mapping and credential validation."""

from decimal import Decimal

import pydantic
import pytest

from yappypay.common.errors import ValidationError
from yappypay.services.yappy.schemas import (
    ChargeAmount,
    Credentials,
    PaymentRequest,
    TransactionStatus,
)


def test_charge_with_tax_adds_up():
    """10.00 + 0.70 tax against a 10.70 total is accepted."""

    charge = ChargeAmount(sub_total=Decimal("10.00"), tax=Decimal("0.7"), total=Decimal("10.70"))

    assert charge.is_valid()
    charge.validate_totals()


def test_charge_tolerance_boundary():
    within = ChargeAmount(sub_total=Decimal("10.00"), tax=Decimal("0.7"), total=Decimal("10.7009"))
    outside = ChargeAmount(sub_total=Decimal("10.00"), tax=Decimal("0.7"), total=Decimal("10.702"))

    assert within.is_valid()
    assert not outside.is_valid()
    with pytest.raises(ValidationError):
        outside.validate_totals()


def test_discount_and_tip_are_applied():
    charge = ChargeAmount(
        sub_total=Decimal("20"),
        tax=Decimal("1.40"),
        tip=Decimal("2"),
        discount=Decimal("3.40"),
        total=Decimal("20.00"),
    )

    assert charge.computed_total == Decimal("20.00")
    assert charge.to_body() == {"sub_total": 20.0, "tax": 1.4, "tip": 2.0, "discount": 3.4, "total": 20.0}


def test_payment_request_computes_total_when_missing():
    request = PaymentRequest(amount=Decimal("5.25"), tax=Decimal("0.37"))

    charge = request.charge_amount()

    assert charge.sub_total == Decimal("5.25")
    assert charge.total == Decimal("5.62")
    assert request.order_id.isdigit()
    assert request.description == "Pago con Yappy"


def test_payment_request_keeps_explicit_total():
    """An explicit total is validated, not overwritten."""

    request = PaymentRequest(amount=Decimal("10"), tax=Decimal("0.7"), total=Decimal("11"))

    assert not request.charge_amount().is_valid()


def test_payment_request_rejects_non_positive_amount():
    with pytest.raises(pydantic.ValidationError):
        PaymentRequest(amount=Decimal("0"))
    with pytest.raises(pydantic.ValidationError):
        PaymentRequest(amount=Decimal("1"), tax=Decimal("-1"))


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("COMPLETED", TransactionStatus.COMPLETED),
        ("completed", TransactionStatus.COMPLETED),
        (" Pending ", TransactionStatus.PENDING),
        ("voided", TransactionStatus.VOIDED),
        ("SOMETHING_NEW", TransactionStatus.UNKNOWN),
        ("", TransactionStatus.UNKNOWN),
        (None, TransactionStatus.UNKNOWN),
        ({"code": "YP-0000"}, TransactionStatus.UNKNOWN),
    ],
)
def test_status_from_vendor(raw, expected):
    assert TransactionStatus.from_vendor(raw) is expected


def test_terminal_statuses():
    assert TransactionStatus.COMPLETED.is_terminal and TransactionStatus.COMPLETED.is_success
    assert TransactionStatus.EXPIRED.is_terminal and not TransactionStatus.EXPIRED.is_success
    assert not TransactionStatus.PENDING.is_terminal
    assert not TransactionStatus.UNKNOWN.is_terminal


def test_credentials_strip_and_reject_blank():
    creds = Credentials(
        api_key=" key ",
        secret_key="secret",
        device_id="CAJA-1",
        group_id="GROUP",
        base_url="https://api.yappy.test/v1/",
    )

    assert creds.api_key == "key"
    assert creds.base_url == "https://api.yappy.test/v1"
    assert creds.device_name == "DefaultDevice"
    with pytest.raises(pydantic.ValidationError):
        Credentials(api_key="key", secret_key="  ", device_id="CAJA-1", group_id="GROUP")


def test_discount_cannot_swallow_the_charge():
    """A discount at or above the rest of the charge would send a non-positive total."""

    with pytest.raises(pydantic.ValidationError):
        PaymentRequest(amount=Decimal("1.00"), discount=Decimal("5.00"))
    with pytest.raises(pydantic.ValidationError):
        PaymentRequest(amount=Decimal("1.00"), tax=Decimal("0.07"), discount=Decimal("1.07"))


def test_non_positive_total_is_rejected():
    negative = ChargeAmount(sub_total=Decimal("1.00"), discount=Decimal("5.00"), total=Decimal("-4.00"))
    zero = ChargeAmount(sub_total=Decimal("1.00"), discount=Decimal("1.00"), total=Decimal("0"))

    assert negative.is_valid()
    with pytest.raises(ValidationError):
        negative.validate_totals()
    with pytest.raises(ValidationError):
        zero.validate_totals()
