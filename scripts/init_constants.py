"""Seed data/config/global_constants.json in the configured document store."""

import argparse
import asyncio

from dotenv import load_dotenv
from fiber.logging_utils import get_logger

from interfaces.types import GlobalConstants
from monitor.config import Config
from monitor.document_storage import DocumentStorage
from monitor.phrase_store import CONSTANTS_PATH, PhraseStore

logger = get_logger(__name__)


def parse_args():
    defaults = GlobalConstants()
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--first-phrase-start-epoch", type=int, default=defaults.first_phrase_start_epoch
    )
    parser.add_argument(
        "--phrase-duration-epochs", type=int, default=defaults.phrase_duration_epochs
    )
    parser.add_argument(
        "--avg-block-time-seconds", type=int, default=defaults.avg_block_time_seconds
    )
    parser.add_argument(
        "--epoch-fail-threshold-seconds",
        type=int,
        default=defaults.epoch_fail_threshold_seconds,
    )
    parser.add_argument(
        "--recap-week-epochs", type=int, default=defaults.recap_week_epochs
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing constants document",
    )
    return parser.parse_args()


async def init_constants(args) -> None:
    load_dotenv()
    config = Config()
    storage = DocumentStorage(db_path=config.STORAGE_DB_PATH)
    store = PhraseStore(storage)

    try:
        existing = await store.load_raw_constants()
        if existing is not None and not args.force:
            logger.info(f"Constants already stored at {CONSTANTS_PATH}, skipping: {existing}")
            return

        constants = GlobalConstants(
            first_phrase_start_epoch=args.first_phrase_start_epoch,
            phrase_duration_epochs=args.phrase_duration_epochs,
            avg_block_time_seconds=args.avg_block_time_seconds,
            epoch_fail_threshold_seconds=args.epoch_fail_threshold_seconds,
            recap_week_epochs=args.recap_week_epochs,
        )
        await store.save_constants(constants)
        logger.info(f"✅ Constants written to {CONSTANTS_PATH}: {constants.to_dict()}")
    finally:
        await storage.close()


if __name__ == "__main__":
    asyncio.run(init_constants(parse_args()))
