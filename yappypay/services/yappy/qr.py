"""Dynamic QR generation against `/qr/generate/DYN`."""

from yappypay.common.errors import QrError
from yappypay.common.logging import logger
from yappypay.services.yappy.client import YappyClient
from yappypay.services.yappy.schemas import PaymentRequest, QrResult


class QrGenerator:
    """Requests a charge QR for one order."""

    def __init__(self, client: YappyClient) -> None:
        self.client = client

    async def generate(self, token: str, request: PaymentRequest) -> QrResult:
        """Validate the charge, request the QR and extract id + hash."""

        charge = request.charge_amount()
        # Raises ValidationError before anything goes on the wire.
        charge.validate_totals()

        body = {
            "charge_amount": charge.to_body(),
            "order_id": request.order_id,
            "description": request.description,
        }
        logger.info("qr_generate order_id=%s total=%s", request.order_id, charge.total)
        resp = await self.client.request("POST", "/qr/generate/DYN", token=token, body=body)

        transaction_id = resp.field("transactionId", "transaction_id", "id")
        qr_hash = resp.field("hash")
        date = resp.field("date")
        if not transaction_id:
            raise QrError(str(resp.body.get("message") or "QR response did not include a transaction id"))
        if not qr_hash:
            raise QrError("QR response did not include a hash")

        logger.info("qr_generated order_id=%s transaction_id=%s", request.order_id, transaction_id)
        return QrResult(
            transaction_id=str(transaction_id),
            hash=str(qr_hash),
            order_id=request.order_id,
            date=str(date) if date is not None else None,
        )
