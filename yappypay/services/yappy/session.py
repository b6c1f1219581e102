"""Device session open/close against `/session/device`."""

from yappypay.common.errors import (
    ERROR_SESSION_ALREADY_CLOSED,
    ERROR_SESSION_ALREADY_OPEN,
    SessionAlreadyOpenError,
    SessionError,
    VendorError,
    YappyError,
)
from yappypay.common.logging import logger, mask
from yappypay.common.metrics import sessions_closed_total, sessions_opened_total
from yappypay.services.yappy.client import YappyClient
from yappypay.services.yappy.schemas import Credentials, Session


def open_session_body(credentials: Credentials) -> dict:
    device = {"id": credentials.device_id}
    if credentials.device_name.strip():
        device["name"] = credentials.device_name
    if credentials.device_user.strip():
        device["user"] = credentials.device_user
    return {"device": device, "group_id": credentials.group_id}


class SessionManager:
    """Opens and closes the vendor device session used by one flow."""

    def __init__(self, client: YappyClient) -> None:
        self.client = client

    async def open(self) -> Session:
        """Open a device session and return its bearer token.

        Raises `SessionAlreadyOpenError` for YP-0004 and `SessionError` for any
        other vendor failure or a response without a token. Network failures
        propagate as `NetworkError`.
        """

        credentials = self.client.credentials
        logger.info(
            "session_open device_id=%s group_id=%s api_key=%s",
            credentials.device_id,
            credentials.group_id,
            mask(credentials.api_key),
        )
        try:
            resp = await self.client.request("POST", "/session/device", body=open_session_body(credentials))
        except VendorError as exc:
            sessions_opened_total.labels(result="vendor_error").inc()
            if exc.code == ERROR_SESSION_ALREADY_OPEN:
                logger.warning("session_already_open device_id=%s", credentials.device_id)
                raise SessionAlreadyOpenError(exc.message, code=exc.code) from exc
            raise SessionError(exc.message, code=exc.code) from exc

        token = resp.field("token")
        if not token:
            sessions_opened_total.labels(result="missing_token").inc()
            raise SessionError("session response did not include a token")

        sessions_opened_total.labels(result="ok").inc()
        logger.info(
            "session_opened token=%s status=%s opened_date=%s",
            mask(token),
            resp.field("status"),
            resp.field("opened_date"),
        )
        return Session(token=str(token))

    async def close(self, token: str) -> bool:
        """Close the session; never raises.

        Returns True when the vendor confirmed the close or reported it was
        already closed (YP-0001), False for any other failure.
        """

        try:
            await self.client.request("DELETE", "/session/device", token=token)
        except VendorError as exc:
            if exc.code == ERROR_SESSION_ALREADY_CLOSED:
                sessions_closed_total.labels(result="already_closed").inc()
                logger.warning("session_already_closed token=%s", mask(token))
                return True
            sessions_closed_total.labels(result="error").inc()
            logger.error("session_close_failed token=%s code=%s error=%s", mask(token), exc.code, exc)
            return False
        except YappyError as exc:
            sessions_closed_total.labels(result="error").inc()
            logger.error("session_close_failed token=%s error=%s", mask(token), exc)
            return False
        sessions_closed_total.labels(result="ok").inc()
        logger.info("session_closed token=%s", mask(token))
        return True
