"""HTTP surface a checkout host uses to configure Yappy and collect payments."""

from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, Response

from yappypay.common.config import settings
from yappypay.common.db import SessionLocal, engine, init_db
from yappypay.common.errors import ConfigurationError
from yappypay.common.logging import configure_logging, logger, mask
from yappypay.common.metrics import metrics_response
from yappypay.common.startup import log_startup_config
from yappypay.common.tracing import instrument_app, setup_tracing
from yappypay.services.config_manager.service import ConfigManager
from yappypay.services.storage.service import (
    KEY_API_KEY,
    KEY_DEVICE_ID,
    KEY_DEVICE_NAME,
    KEY_DEVICE_USER,
    KEY_ENDPOINT,
    KEY_GROUP_ID,
    LocalStorage,
)
from yappypay.services.terminal.schemas import ConfigFetchRequest, ConfigView, CredentialsUpdate, PaymentStarted
from yappypay.services.terminal.service import FlowConflictError, TerminalService
from yappypay.services.yappy.credentials import StoredCredentialsProvider
from yappypay.services.yappy.qr_image import render_qr_png
from yappypay.services.yappy.schemas import PaymentRequest


def build_terminal() -> TerminalService:
    """Terminal wired to the settings-configured store."""

    init_db(engine)
    storage = LocalStorage.from_settings(SessionLocal)
    return TerminalService(storage, StoredCredentialsProvider(storage))


def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """Reject requests without the configured API key (when one is configured)."""

    if settings.api_key and x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


def get_terminal(request: Request) -> TerminalService:
    return request.app.state.terminal


router = APIRouter(dependencies=[Depends(require_api_key)])


def _config_view(terminal: TerminalService) -> ConfigView:
    config = terminal.storage.get_config()
    return ConfigView(
        configured=terminal.storage.is_configured(),
        username=terminal.storage.get_current_username(),
        endpoint=config[KEY_ENDPOINT],
        device_id=config[KEY_DEVICE_ID],
        device_name=config[KEY_DEVICE_NAME],
        device_user=config[KEY_DEVICE_USER],
        group_id=config[KEY_GROUP_ID],
        api_key=mask(config[KEY_API_KEY]) if config[KEY_API_KEY] else "",
    )


@router.get("/config", response_model=ConfigView)
def get_config(terminal: TerminalService = Depends(get_terminal)):
    return _config_view(terminal)


@router.put("/config/credentials", response_model=ConfigView)
def put_credentials(body: CredentialsUpdate, terminal: TerminalService = Depends(get_terminal)):
    """Store credentials typed in by an operator."""

    terminal.storage.save_config(
        endpoint=body.endpoint or settings.yappy_base_url,
        api_key=body.api_key,
        secret_key=body.secret_key,
        device_id=body.device_id,
        device_name=body.device_name,
        device_user=body.device_user,
        group_id=body.group_id,
    )
    return _config_view(terminal)


@router.post("/config/fetch")
async def fetch_config(body: ConfigFetchRequest, terminal: TerminalService = Depends(get_terminal)):
    """Fetch configuration from the config server, falling back when it fails."""

    config_url = body.config_url or settings.config_server_url
    if not config_url:
        raise HTTPException(status_code=400, detail="no config server URL given or configured")
    result = await ConfigManager(terminal.storage).fetch_and_save(config_url, body.username, body.password)
    return result.model_dump(mode="json")


@router.delete("/config")
def clear_config(terminal: TerminalService = Depends(get_terminal)):
    terminal.storage.clear()
    return {"ok": True}


@router.post("/payments", response_model=PaymentStarted, status_code=202)
async def create_payment(req: PaymentRequest, terminal: TerminalService = Depends(get_terminal)):
    """Start collecting a payment; progress is read from `GET /payments/{order_id}`."""

    try:
        flow = terminal.start_payment(req)
    except FlowConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ConfigurationError as exc:
        raise HTTPException(status_code=412, detail=str(exc)) from exc
    return PaymentStarted(order_id=req.order_id, phase=flow.phase)


@router.get("/payments/{order_id}")
async def get_payment(order_id: str, terminal: TerminalService = Depends(get_terminal)):
    flow = terminal.get(order_id)
    if flow is None:
        raise HTTPException(status_code=404, detail="payment not found")
    return flow.snapshot()


@router.get("/payments/{order_id}/qr.png")
async def get_payment_qr(order_id: str, terminal: TerminalService = Depends(get_terminal)):
    flow = terminal.get(order_id)
    if flow is None or flow.transaction is None:
        raise HTTPException(status_code=404, detail="QR not available")
    return Response(content=render_qr_png(flow.transaction.hash), media_type="image/png")


@router.post("/payments/{order_id}/cancel")
async def cancel_payment(order_id: str, terminal: TerminalService = Depends(get_terminal)):
    if terminal.get(order_id) is None:
        raise HTTPException(status_code=404, detail="payment not found")
    if not terminal.cancel(order_id):
        raise HTTPException(status_code=409, detail="payment is not active")
    return {"cancelled": True}


def create_app(terminal: TerminalService | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Own the terminal for the app lifetime; cancel running flows on shutdown."""

        app.state.terminal = terminal or build_terminal()
        yield
        await app.state.terminal.shutdown()
        logger.info("terminal_shutdown")

    app = FastAPI(title="Yappy Terminal", lifespan=lifespan)
    instrument_app(app)
    app.include_router(router)

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    return app


configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings,
    ["yappy_base_url", "storage_dsn", "storage_key_file", "config_server_url", "api_key", "tracing_enabled"],
)
app = create_app()
