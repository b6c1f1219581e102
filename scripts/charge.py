"""Collect one Yappy QR payment from the command line.

Prints the QR hash and every flow event; Ctrl+C cancels (voids) the charge.
"""

import argparse
import asyncio
import json
import signal
from decimal import Decimal

from yappypay.common.db import SessionLocal, engine, init_db
from yappypay.common.logging import configure_logging
from yappypay.services.storage.service import LocalStorage
from yappypay.services.yappy.client import YappyClient
from yappypay.services.yappy.flow import FlowResult, PaymentFlow
from yappypay.services.yappy.schemas import PaymentRequest


async def print_events(flow: PaymentFlow) -> None:
    while True:
        event = await flow.events.get()
        print(json.dumps(event.model_dump(mode="json")))
        if event.is_final:
            return


async def collect(flow: PaymentFlow, request: PaymentRequest) -> FlowResult:
    """Run `flow` while printing its events.

    SIGINT cancels the flow (void, then close) instead of tearing the loop down.
    """

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, flow.cancel)
    try:
        task = flow.start(request)
        printer = asyncio.create_task(print_events(flow))
        result = await task
        await printer
    finally:
        loop.remove_signal_handler(signal.SIGINT)
    return result


async def charge(request: PaymentRequest) -> int:
    """Run one flow with stored credentials; exit code 0 only on success."""

    init_db(engine)
    storage = LocalStorage.from_settings(SessionLocal)
    async with YappyClient(storage.credentials()) as client:
        result = await collect(PaymentFlow(client, token_store=storage), request)
    print(json.dumps(result.model_dump(mode="json"), indent=2))
    return 0 if result.outcome.value == "SUCCEEDED" else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Collect a Yappy QR payment.")
    parser.add_argument("--amount", type=Decimal, required=True)
    parser.add_argument("--tax", type=Decimal, default=Decimal("0"))
    parser.add_argument("--tip", type=Decimal, default=Decimal("0"))
    parser.add_argument("--discount", type=Decimal, default=Decimal("0"))
    parser.add_argument("--total", type=Decimal, default=None)
    parser.add_argument("--order-id", default=None)
    parser.add_argument("--description", default="Pago con Yappy")
    args = parser.parse_args()

    fields = {
        "amount": args.amount,
        "tax": args.tax,
        "tip": args.tip,
        "discount": args.discount,
        "total": args.total,
        "description": args.description,
    }
    if args.order_id:
        fields["order_id"] = args.order_id

    configure_logging()
    raise SystemExit(asyncio.run(charge(PaymentRequest(**fields))))


if __name__ == "__main__":
    main()
