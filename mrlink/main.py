# mrlink/main.py
import asyncio
import logging

from mrlink.gateway import ServiceGateway
from mrlink.nucleus.registry import ServiceRecord
from mrlink.settings import settings


async def main():
    """
    The main entry point: connects to the remote process and logs its
    services as they come and go.
    """
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s [%(levelname)s] (%(name)s) %(message)s"
    )
    logger = logging.getLogger("mrlink_Main")

    gateway = ServiceGateway(settings)

    def on_connected(connected: bool) -> None:
        logger.info(f"Connection to {settings.REMOTE_URL} is {'up' if connected else 'down'}.")

    def on_registered(record: ServiceRecord) -> None:
        logger.info(f"+ {record.full_name} ({record.simple_type or 'unknown type'})")

    def on_released(record: ServiceRecord) -> None:
        logger.info(f"- {record.full_name}")

    gateway.subscribe_connected(on_connected)
    gateway.subscribe_to_registrations(on_registered)
    gateway.subscribe_to_releases(on_released)

    logger.info(f"Starting endpoint '{gateway.get_id()}', connecting to {settings.REMOTE_URL}...")
    await gateway.connect()
    try:
        await asyncio.Future()  # Run forever
    finally:
        await gateway.close()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nClient is shutting down.")


if __name__ == "__main__":
    run()
