"""Remote Yappy configuration fetch with decryption and fallback.

The config server answers a `{username, password}` POST with either an
encrypted envelope `{encrypted_data, encryption_key}` (AES/ECB + PKCS5,
base64url) or a flat plaintext object. Any network or format problem falls
back to the configured default so the terminal keeps working offline.
"""

import base64
import enum
import json
from typing import Any

import httpx
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from pydantic import BaseModel

from yappypay.common.config import settings
from yappypay.common.errors import ConfigurationError, NetworkError
from yappypay.common.logging import logger
from yappypay.common.metrics import config_fetch_total


class ConfigSource(str, enum.Enum):
    REMOTE_ENCRYPTED = "REMOTE_ENCRYPTED"
    REMOTE_PLAIN = "REMOTE_PLAIN"
    FALLBACK = "FALLBACK"


class ConfigResult(BaseModel):
    success: bool
    username: str
    source: ConfigSource | None = None
    error_message: str | None = None


def _b64url_decode(value: str) -> bytes:
    value = value.strip()
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def decrypt_aes_ecb(encrypted_data_b64: str, encryption_key_b64: str) -> str:
    """Decrypt the vendor's AES/ECB/PKCS5 envelope into a UTF-8 string."""

    try:
        key = _b64url_decode(encryption_key_b64)
        data = _b64url_decode(encrypted_data_b64)
        decryptor = Cipher(algorithms.AES(key), modes.ECB()).decryptor()
        padded = decryptor.update(data) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
    except ValueError as exc:
        raise ConfigurationError(f"could not decrypt configuration: {exc}") from exc


def parse_full_config(payload: dict[str, Any]) -> dict[str, str]:
    """Map `{body: {device, group_id}, config: {endpoint, api-key, secret-key}}` to store fields."""

    try:
        config = payload["config"]
        body = payload["body"]
        device = body["device"]
        return {
            "endpoint": str(config["endpoint"]),
            "api_key": str(config["api-key"]),
            "secret_key": str(config["secret-key"]),
            "device_id": str(device["id"]),
            "device_name": str(device.get("name") or "DefaultDevice"),
            "device_user": str(device.get("user") or "DefaultUser"),
            "group_id": str(body["group_id"]),
        }
    except (KeyError, TypeError, AttributeError) as exc:
        raise ConfigurationError(f"configuration is missing field {exc}") from exc


def parse_plain_config(payload: dict[str, Any]) -> dict[str, str]:
    """Map the legacy flat `yappy_*` response to store fields."""

    try:
        return {
            "endpoint": str(payload["yappy_endpoint"]),
            "api_key": str(payload["yappy_api_key"]),
            "secret_key": str(payload["yappy_secret_key"]),
            "device_id": str(payload["yappy_device_id"]),
            "device_name": str(payload.get("yappy_device_name") or "DefaultDevice"),
            "device_user": str(payload.get("yappy_device_user") or "DefaultUser"),
            "group_id": str(payload["yappy_group_id"]),
        }
    except KeyError as exc:
        raise ConfigurationError(f"plaintext configuration is missing field {exc}") from exc


class ConfigManager:
    """Fetches, decrypts and persists Yappy configuration."""

    def __init__(
        self,
        storage,
        http_client: httpx.AsyncClient | None = None,
        fallback_config_json: str | None = None,
        fallback_username: str | None = None,
    ) -> None:
        self.storage = storage
        self._http = http_client
        self.fallback_config_json = (
            fallback_config_json if fallback_config_json is not None else settings.fallback_config_json
        )
        self.fallback_username = fallback_username or settings.fallback_username

    def _save(self, fields: dict[str, str], username: str) -> None:
        self.storage.save_config(**fields)
        self.storage.save_current_username(username)

    def use_fallback(self, reason: str) -> ConfigResult:
        """Store the fallback configuration; the result carries `reason` either way."""

        logger.warning("config_fallback reason=%s", reason)
        if not self.fallback_config_json:
            config_fetch_total.labels(source="none").inc()
            return ConfigResult(
                success=False,
                username=self.fallback_username,
                error_message=f"{reason}. No fallback configuration is available.",
            )
        try:
            fields = parse_full_config(json.loads(self.fallback_config_json))
        except (ValueError, ConfigurationError) as exc:
            logger.error("config_fallback_invalid error=%s", exc)
            config_fetch_total.labels(source="none").inc()
            return ConfigResult(
                success=False,
                username=self.fallback_username,
                error_message=f"{reason}. Fallback configuration is invalid: {exc}",
            )
        self._save(fields, self.fallback_username)
        config_fetch_total.labels(source=ConfigSource.FALLBACK.value).inc()
        return ConfigResult(
            success=True,
            username=self.fallback_username,
            source=ConfigSource.FALLBACK,
            error_message=f"{reason}. Using the default configuration.",
        )

    async def _post(self, config_url: str, username: str, password: str) -> httpx.Response:
        client = self._http or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        try:
            return await client.post(
                config_url,
                json={"username": username, "password": password},
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException as exc:
            raise NetworkError(f"timed out contacting config server: {exc}") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"config server unreachable: {exc}") from exc
        finally:
            if self._http is None:
                await client.aclose()

    async def fetch_and_save(self, config_url: str, username: str, password: str) -> ConfigResult:
        """Fetch config for `username` and persist it, falling back on failure."""

        logger.info("config_fetch url=%s username=%s", config_url, username)
        try:
            resp = await self._post(config_url, username, password)
        except NetworkError as exc:
            return self.use_fallback(f"Connection error: {exc}")

        if not resp.is_success:
            logger.error("config_fetch_http_error status_code=%s body=%s", resp.status_code, resp.text[:200])
            return self.use_fallback(f"Server error ({resp.status_code})")
        if not resp.content:
            return self.use_fallback("Empty response from config server")
        try:
            payload = resp.json()
        except ValueError:
            return self.use_fallback("Config server returned malformed JSON")
        if not isinstance(payload, dict):
            return self.use_fallback("Config server returned malformed JSON")

        encrypted_data = payload.get("encrypted_data") or ""
        encryption_key = payload.get("encryption_key") or ""
        if encrypted_data and encryption_key:
            try:
                decrypted = decrypt_aes_ecb(encrypted_data, encryption_key)
            except ConfigurationError as exc:
                logger.error("config_decrypt_failed error=%s", exc)
                return self.use_fallback("Could not decrypt configuration")
            try:
                fields = parse_full_config(json.loads(decrypted))
            except (ValueError, ConfigurationError) as exc:
                logger.error("config_decrypted_invalid error=%s", exc)
                config_fetch_total.labels(source="none").inc()
                return ConfigResult(
                    success=False, username=username, error_message="Decrypted configuration could not be processed"
                )
            self._save(fields, username)
            config_fetch_total.labels(source=ConfigSource.REMOTE_ENCRYPTED.value).inc()
            logger.info("config_saved source=encrypted username=%s device_id=%s", username, fields["device_id"])
            return ConfigResult(success=True, username=username, source=ConfigSource.REMOTE_ENCRYPTED)

        try:
            fields = parse_plain_config(payload)
        except ConfigurationError as exc:
            logger.error("config_plain_invalid error=%s", exc)
            return self.use_fallback("Unexpected configuration format")
        self._save(fields, username)
        config_fetch_total.labels(source=ConfigSource.REMOTE_PLAIN.value).inc()
        logger.info("config_saved source=plain username=%s device_id=%s", username, fields["device_id"])
        return ConfigResult(success=True, username=username, source=ConfigSource.REMOTE_PLAIN)
