"""
StudyQuest - command line entry point
=====================================

Bootstraps the infrastructure and runs one administrative command:

    python -m studyquest.main init-db
    python -m studyquest.main seed-achievements
    python -m studyquest.main update-streaks
    python -m studyquest.main check-achievements

Scheduling (cron, a task runner) stays outside the process: each trigger
runs the command once and exits.

Bootstrap
---------
1. Config validation
2. DatabaseService
3. RedisService (optional; without it jobs run unlocked and the catalog is
   read uncached)
4. ConfigManager
5. EventBus + ServiceContainer
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from redis.exceptions import RedisError

from studyquest.core.config.config import Config
from studyquest.core.config.manager import ConfigManager
from studyquest.core.database.service import DatabaseService
from studyquest.core.event.bus import EventBus
from studyquest.core.logging.logger import get_logger, shutdown_logging
from studyquest.core.redis.service import RedisService
from studyquest.core.services.container import ServiceContainer
from studyquest.jobs import run_check_achievements, run_update_streaks
from studyquest.modules.store.sqlalchemy_store import SqlAlchemyProgressionStore

logger = get_logger(__name__)


@dataclass
class Runtime:
    database: DatabaseService
    redis: Optional[RedisService]
    container: ServiceContainer


# ============================================================================
# Bootstrap / shutdown
# ============================================================================


async def _startup(use_redis: bool) -> Runtime:
    logger.info("========== STUDYQUEST INITIALIZATION START ==========")

    try:
        Config.validate()
        logger.info("Configuration validated")
    except Exception as exc:
        logger.critical(f"Configuration validation failed: {exc}")
        raise

    database = DatabaseService()
    try:
        await database.initialize()
        logger.info("Database service initialized")
    except Exception as exc:
        logger.critical(f"Database initialization failed: {exc}", exc_info=True)
        raise

    redis: Optional[RedisService] = None
    if use_redis:
        redis = RedisService()
        try:
            await redis.initialize()
            logger.info("Redis service initialized")
        except (RedisError, RuntimeError, OSError) as exc:
            logger.warning(f"Redis unavailable, continuing without it: {exc}")
            redis = None

    config_manager = ConfigManager()
    await config_manager.initialize()
    logger.info("Config manager initialized")

    event_bus = EventBus(config_manager)
    container = ServiceContainer(
        config_manager=config_manager,
        event_bus=event_bus,
        logger=get_logger("studyquest.core.services.container"),
        store=SqlAlchemyProgressionStore(database),
        redis=redis,
    )
    await container.initialize()

    logger.info("========== INFRASTRUCTURE INITIALIZED ==========")
    return Runtime(database=database, redis=redis, container=container)


async def _shutdown(runtime: Optional[Runtime]) -> None:
    if runtime is None:
        return

    try:
        await runtime.container.shutdown()
    except Exception as exc:
        logger.error(f"Service container shutdown error: {exc}", exc_info=True)

    if runtime.redis is not None:
        try:
            await runtime.redis.shutdown()
        except (RedisError, OSError) as exc:
            logger.error(f"Redis shutdown error: {exc}", exc_info=True)

    try:
        await runtime.database.shutdown()
    except Exception as exc:
        logger.error(f"Database shutdown error: {exc}", exc_info=True)

    logger.info("========== SHUTDOWN COMPLETE ==========")


# ============================================================================
# Commands
# ============================================================================


async def _init_db(runtime: Runtime) -> Dict[str, Any]:
    await runtime.database.create_all()
    return {"status": "ok"}


async def _seed_achievements(runtime: Runtime) -> Dict[str, Any]:
    return await runtime.container.catalog.seed_catalog()


async def _update_streaks(runtime: Runtime) -> Dict[str, Any]:
    result = await run_update_streaks(runtime.container)
    return result.to_dict() if result is not None else {"status": "skipped"}


async def _check_achievements(runtime: Runtime) -> Dict[str, Any]:
    result = await run_check_achievements(runtime.container)
    return result.to_dict() if result is not None else {"status": "skipped"}


COMMANDS: Dict[str, Callable[[Runtime], Awaitable[Dict[str, Any]]]] = {
    "init-db": _init_db,
    "seed-achievements": _seed_achievements,
    "update-streaks": _update_streaks,
    "check-achievements": _check_achievements,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="studyquest", description="StudyQuest progression engine")
    parser.add_argument("command", choices=sorted(COMMANDS))
    parser.add_argument(
        "--no-redis",
        action="store_true",
        help="skip Redis (no job lock, no catalog cache)",
    )
    return parser


async def run(command: str, use_redis: bool = True) -> Dict[str, Any]:
    runtime: Optional[Runtime] = None
    try:
        runtime = await _startup(use_redis)
        summary = await COMMANDS[command](runtime)
        logger.info(f"Command {command} finished", extra={"command": command, **summary})
        return summary
    finally:
        await _shutdown(runtime)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        asyncio.run(run(args.command, use_redis=not args.no_redis))
    except KeyboardInterrupt:
        logger.info("Stopped via keyboard interrupt")
        return 130
    except Exception as exc:
        logger.critical(f"Command {args.command} failed: {exc}", exc_info=True)
        return 1
    finally:
        shutdown_logging()
    return 0


if __name__ == "__main__":
    sys.exit(main())
