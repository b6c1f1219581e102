"""Credential sources for a payment flow."""

from typing import Protocol

from yappypay.common.errors import ConfigurationError
from yappypay.common.logging import logger
from yappypay.services.yappy.schemas import Credentials


class CredentialsProvider(Protocol):
    def load(self) -> Credentials: ...


class StoredCredentialsProvider:
    """Reads credentials from the encrypted local store."""

    def __init__(self, storage) -> None:
        self.storage = storage

    def load(self) -> Credentials:
        return self.storage.credentials()


class StaticCredentialsProvider:
    """Credentials handed in by the host application."""

    def __init__(self, credentials: Credentials | None = None) -> None:
        self._credentials = credentials

    def set_credentials(self, credentials: Credentials) -> None:
        self._credentials = credentials

    def load(self) -> Credentials:
        if self._credentials is None:
            raise ConfigurationError("no custom Yappy credentials were provided")
        return self._credentials


class FlexibleCredentialsProvider:
    """Switches between stored and host-supplied credentials."""

    def __init__(self, stored: StoredCredentialsProvider, custom: StaticCredentialsProvider | None = None) -> None:
        self.stored = stored
        self.custom = custom or StaticCredentialsProvider()
        self.use_custom = False

    def use_custom_credentials(self, credentials: Credentials) -> None:
        self.custom.set_credentials(credentials)
        self.use_custom = True
        logger.info("credentials_source source=custom device_id=%s", credentials.device_id)

    def use_stored_credentials(self) -> None:
        self.use_custom = False
        logger.info("credentials_source source=stored")

    def load(self) -> Credentials:
        return (self.custom if self.use_custom else self.stored).load()
