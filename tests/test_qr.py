"""QR generation: validation, request body and response extraction."""

import asyncio
import json
from decimal import Decimal

import pytest

from yappypay.common.errors import QrError, ValidationError, VendorError
from yappypay.services.yappy.qr import QrGenerator
from yappypay.services.yappy.qr_image import render_qr_png
from yappypay.services.yappy.schemas import PaymentRequest


def test_generate_sends_charge_and_extracts_ids(credentials, fake_api):
    request = PaymentRequest(amount=Decimal("10.00"), tax=Decimal("0.70"), order_id="ORDER-1")

    qr = asyncio.run(QrGenerator(fake_api.client(credentials)).generate("TOKEN-1", request))

    assert (qr.transaction_id, qr.hash, qr.order_id) == ("TX-1", "HASH-1", "ORDER-1")
    sent = fake_api.requests[0]
    assert sent.url.path.endswith("/qr/generate/DYN")
    assert sent.headers["Authorization"] == "Bearer TOKEN-1"
    assert json.loads(sent.content) == {
        "charge_amount": {"sub_total": 10.0, "tax": 0.7, "tip": 0.0, "discount": 0.0, "total": 10.7},
        "order_id": "ORDER-1",
        "description": "Pago con Yappy",
    }


def test_mismatched_totals_never_reach_the_wire(credentials, fake_api):
    request = PaymentRequest(amount=Decimal("10.00"), tax=Decimal("0.70"), total=Decimal("11.00"))

    with pytest.raises(ValidationError):
        asyncio.run(QrGenerator(fake_api.client(credentials)).generate("TOKEN-1", request))

    assert fake_api.requests == []


def test_flat_response_shape_is_accepted(credentials, fake_api):
    fake_api.qr_response = (200, {"transaction_id": "TX-FLAT", "hash": "H"})

    qr = asyncio.run(QrGenerator(fake_api.client(credentials)).generate("T", PaymentRequest(amount=Decimal("1"))))

    assert qr.transaction_id == "TX-FLAT"


def test_missing_hash_is_a_qr_error(credentials, fake_api):
    fake_api.qr_response = (200, {"body": {"transactionId": "TX-1"}})

    with pytest.raises(QrError):
        asyncio.run(QrGenerator(fake_api.client(credentials)).generate("T", PaymentRequest(amount=Decimal("1"))))


def test_vendor_rejection_propagates(credentials, fake_api):
    fake_api.qr_response = (400, {"code": "YP-0405", "message": "Amounts do not match"})

    with pytest.raises(VendorError) as exc_info:
        asyncio.run(QrGenerator(fake_api.client(credentials)).generate("T", PaymentRequest(amount=Decimal("1"))))

    assert exc_info.value.code == "YP-0405"


def test_render_qr_png():
    png = render_qr_png("HASH-1")

    assert png.startswith(b"\x89PNG\r\n\x1a\n")
    with pytest.raises(ValueError):
        render_qr_png("")


def test_numeric_date_is_kept_as_text(credentials, fake_api):
    fake_api.qr_response = (200, {"body": {"transactionId": "TX-1", "hash": "HASH-1", "date": 1700000000}})

    qr = asyncio.run(QrGenerator(fake_api.client(credentials)).generate("T", PaymentRequest(amount=Decimal("1"))))

    assert qr.date == "1700000000"


def test_missing_date_stays_empty(credentials, fake_api):
    fake_api.qr_response = (200, {"body": {"transactionId": "TX-1", "hash": "HASH-1"}})

    qr = asyncio.run(QrGenerator(fake_api.client(credentials)).generate("T", PaymentRequest(amount=Decimal("1"))))

    assert qr.date is None
