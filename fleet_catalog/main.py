import asyncio
import os
import sys
import logging
from dotenv import load_dotenv

from fleet_catalog.application.provider import FleetEntityProvider
from fleet_catalog.domain.exceptions import FleetCatalogException
from fleet_catalog.infrastructure.catalog_store import PostgresCatalogStore
from fleet_catalog.infrastructure.config import load_config_file

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)

async def main():
    # Load environment variables from .env file
    load_dotenv()

    # Get the config file path and database URL from environment variables
    config_path = os.getenv("FLEET_CATALOG_CONFIG", "app-config.yaml")
    db_url = os.getenv("DATABASE_URL")

    if not db_url:
        logger.error("DATABASE_URL is not set in the environment.")
        sys.exit(1)

    try:
        providers = FleetEntityProvider.from_config(load_config_file(config_path))
    except FleetCatalogException as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    if not providers:
        logger.warning(f"No Fleet providers configured in {config_path}; nothing to sync.")
        return

    store = PostgresCatalogStore(db_url=db_url)

    failed = False
    for provider in providers:
        await provider.connect(store.connection(provider.get_provider_name()))
        timeout = provider.get_schedule().timeout.total_seconds()
        try:
            await asyncio.wait_for(provider.run(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"{provider.get_provider_name()} did not finish within {timeout:.0f}s.")
            failed = True
        except KeyboardInterrupt:
            logger.info("Sync interrupted by user. Exiting gracefully.")
            return
        except Exception as e:
            logger.exception(f"An unexpected error occurred: {e}")
            failed = True

    if failed:
        sys.exit(1)

def run():
    asyncio.run(main())

if __name__ == "__main__":
    run()
