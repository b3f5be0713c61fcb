import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

# Load configuration from single .env file
load_dotenv("tibber.env")

from tibber_sdk.client import TibberApiClient
from tibber_sdk.config import ListenerSettings
from tibber_sdk.errors import TibberApiError
from tibber_sdk.registry import HomeStream

logger = logging.getLogger(__name__)


def get_client() -> TibberApiClient:
    """Initialize the API client with hard fail on misconfiguration"""
    token = os.getenv("TIBBER_TOKEN")
    if not token:
        logger.error("Tibber: TIBBER_TOKEN not configured in tibber.env")
        sys.exit(1)
    return TibberApiClient(token=token, settings=ListenerSettings.from_env())


def parse_fields(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [f.strip() for f in value.split(",") if f.strip()]


async def log_measurements(stream: HomeStream):
    async for reading in stream.measurements():
        logger.info(f"[{reading.timestamp}] {stream.home_id} Power: {reading.power} W")


async def main(home_ids: list[str], fields: list[str] | None):
    async with get_client() as client:
        try:
            device = await client.validate_realtime_device()
        except TibberApiError as e:
            logger.error(f"Tibber API: {e}")
            sys.exit(1)

        homes = home_ids or list(device.home_ids)
        streams = []
        for home_id in homes:
            try:
                streams.append(await client.start_real_time_measurement_listener(home_id, fields=fields))
            except TibberApiError as e:
                logger.error(f"Tibber API: {e}")
                sys.exit(1)

        # Each stream ends when the server completes it or the client closes
        async with asyncio.TaskGroup() as tg:
            for stream in streams:
                tg.create_task(log_measurements(stream))


if __name__ == "__main__":
    # Parse command line arguments
    parser = argparse.ArgumentParser(description="Tibber real-time measurement stream")
    parser.add_argument(
        "--home",
        dest="homes",
        action="append",
        default=[],
        help="Home id to subscribe; repeatable (default: every home with real-time metering)"
    )
    parser.add_argument(
        "--fields",
        type=str,
        default=None,
        help="Comma separated liveMeasurement fields (default: all)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)"
    )
    args = parser.parse_args()

    # Setup logging
    logging.basicConfig(
        level=args.log_level,
        format='%(asctime)s %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    try:
        asyncio.run(main(args.homes, parse_fields(args.fields)))
    except KeyboardInterrupt:
        logger.info("Script stopped by user.")
