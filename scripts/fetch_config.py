"""Fetch Yappy configuration from the config server into the local store."""

import argparse
import asyncio
import getpass
import json

from yappypay.common.config import settings
from yappypay.common.db import SessionLocal, engine, init_db
from yappypay.common.logging import configure_logging
from yappypay.services.config_manager.service import ConfigManager
from yappypay.services.storage.service import LocalStorage


def main() -> None:
    """CLI entrypoint for provisioning a terminal."""

    parser = argparse.ArgumentParser(description="Fetch and store Yappy configuration.")
    parser.add_argument("--config-url", default=settings.config_server_url)
    parser.add_argument("--username", required=True)
    parser.add_argument("--password", default=None, help="Prompted for when omitted")
    args = parser.parse_args()

    if not args.config_url:
        raise SystemExit("Provide --config-url or set CONFIG_SERVER_URL")
    password = args.password or getpass.getpass("Password: ")

    configure_logging()
    init_db(engine)
    storage = LocalStorage.from_settings(SessionLocal)
    result = asyncio.run(ConfigManager(storage).fetch_and_save(args.config_url, args.username, password))
    print(json.dumps(result.model_dump(mode="json"), indent=2))
    if not result.success:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
