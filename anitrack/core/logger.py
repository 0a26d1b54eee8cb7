import sys

from loguru import logger

from anitrack.core.log_levels import CUSTOM_LOG_LEVELS, STANDARD_LOG_LEVELS
from anitrack.core.models import settings


def setupLogger(level: str):
    # Configure custom log levels
    for level_name, level_config in CUSTOM_LOG_LEVELS.items():
        logger.level(
            level_name,
            no=level_config["no"],
            icon=level_config["icon"],
            color=level_config["loguru_color"],
        )

    # Configure standard log levels (override defaults)
    for level_name, level_config in STANDARD_LOG_LEVELS.items():
        logger.level(
            level_name, icon=level_config["icon"], color=level_config["loguru_color"]
        )

    log_format = (
        "<white>{time:YYYY-MM-DD}</white> <magenta>{time:HH:mm:ss}</magenta> | "
        "<level>{level.icon}</level> <level>{level}</level> | "
        "<cyan>{module}</cyan>.<cyan>{function}</cyan> - <level>{message}</level>"
    )

    logger.configure(
        handlers=[
            {
                "sink": sys.stderr,
                "level": level,
                "format": log_format,
                "backtrace": False,
                "diagnose": False,
                "enqueue": True,
            }
        ]
    )


setupLogger(settings.LOG_LEVEL)


def log_extraction_error(title: str, url: str, error: Exception):
    logger.warning(
        f"Exception while extracting details for {title} ({url}), skipping item: {error}"
    )


def log_startup_info(settings):
    logger.log("ANITRACK", f"Source: {settings.BASE_URL}")
    logger.log(
        "ANITRACK",
        f"Database ({settings.DATABASE_TYPE}): {settings.DATABASE_PATH if settings.DATABASE_TYPE == 'sqlite' else settings.DATABASE_URL}",
    )
    logger.log(
        "ANITRACK",
        f"Fetch Retries: {settings.FETCH_RETRIES} - Rate Limit Delay: {settings.RATELIMIT_RETRY_DELAY}s - Network Error Delay: {settings.NETWORK_RETRY_DELAY}s",
    )
    logger.log(
        "ANITRACK",
        f"Unchanged Limit: {settings.UNCHANGED_LIMIT} - Item Delay: {settings.ITEM_DELAY}s - Page Delay: {settings.PAGE_DELAY}s - Page Failure Retries: {settings.PAGE_FAILURE_RETRIES}",
    )
    logger.log("ANITRACK", f"Scan Interval: {settings.SCAN_INTERVAL}s")
