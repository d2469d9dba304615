import argparse
import asyncio
import logging
import sys

import asyncpg

from config import RecoveryConfig
from db_layer import DatabaseLayer, JsonFileSink
from errors import ConfigurationError, FeedRecoveryError, PersistenceError
from RecoveryEngine import RecoveryController, RecoveryResult
from transport import TransportSession

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Recover a gap-free packet sequence from the feed server."
    )
    parser.add_argument("--host", help="Feed server host")
    parser.add_argument("--port", type=int, help="Feed server port")
    parser.add_argument("--known-total", type=int, help="Number of sequences expected")
    parser.add_argument("--timeout-ms", type=int, dest="request_timeout_ms",
                        help="Per-request timeout for single-packet requests")
    parser.add_argument("--max-attempts", type=int, help="Maximum gap-fill passes")
    parser.add_argument("--gap-concurrency", type=int,
                        help="Gap requests in flight at once (1 = sequential)")
    parser.add_argument("--output", dest="output_path", help="JSON output file")
    parser.add_argument("--database-url", help="PostgreSQL DSN to also store packets")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> RecoveryConfig:
    """Environment first, then any flag given on the command line."""
    config = RecoveryConfig.from_env()
    for name, value in vars(args).items():
        if value is not None:
            setattr(config, name, value)
    config.validate()
    return config


# Failures from the driver when connecting, creating the schema or inserting
DB_ERRORS = (OSError, asyncpg.PostgresError, asyncpg.InterfaceError)


async def persist(result: RecoveryResult, config: RecoveryConfig) -> None:
    try:
        path = await JsonFileSink(config.output_path).save_packets(result.packets)
    except OSError as e:
        raise PersistenceError(f"Cannot write {config.output_path}: {e}") from e
    logger.info("Packets saved to %s", path)

    if not config.database_url:
        return

    try:
        db_pool = await asyncpg.create_pool(dsn=config.database_url)
    except DB_ERRORS as e:
        raise PersistenceError(f"Cannot connect to database: {e}") from e

    try:
        db_layer = DatabaseLayer(db_pool)
        await db_layer.initialize_schema()
        saved = await db_layer.save_packets(result.packets)
        logger.info("Stored %d packets in database", saved)
    except DB_ERRORS as e:
        raise PersistenceError(f"Cannot store packets in database: {e}") from e
    finally:
        await db_pool.close()


async def main(config: RecoveryConfig) -> RecoveryResult:
    transport = TransportSession(
        config.host, config.port, connect_timeout_ms=config.connect_timeout_ms
    )
    controller = RecoveryController(
        transport,
        known_total=config.known_total,
        request_timeout_ms=config.request_timeout_ms,
        max_attempts=config.max_attempts,
        gap_concurrency=config.gap_concurrency,
    )

    result = await controller.run()
    await persist(result, config)
    return result


def run(argv=None) -> int:
    try:
        config = build_config(parse_args(argv))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        result = asyncio.run(main(config))
    except FeedRecoveryError as e:
        logger.error("Error running client: %s", e)
        return 1

    return 0 if result.complete else 3


if __name__ == "__main__":
    sys.exit(run())
