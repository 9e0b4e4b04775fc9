import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import replace
from datetime import datetime

from colorama import init, Fore, Style

from config import BotConfig, ConfigError, load_config
from pair_screener import (
    DexScreenerAPI,
    FileTracker,
    MemoryTracker,
    PairAlertScheduler,
    PairFilter,
)
from telegram_notifier import TelegramNotifier

init(autoreset=True)

logger = logging.getLogger("pair_alerts")


class ColorFormatter(logging.Formatter):
    """[HH:MM:SS] [LEVEL] message, colored by level."""

    LEVEL_COLORS = {
        logging.DEBUG: Style.DIM,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.RED + Style.BRIGHT,
    }

    def format(self, record):
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        message = record.getMessage()
        if record.levelno != logging.INFO:
            message = f"[{record.levelname}] {message}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        color = self.LEVEL_COLORS.get(record.levelno, "")
        return f"{color}[{timestamp}] {message}{Style.RESET_ALL if color else ''}"


def setup_logging(debug: bool = False):
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColorFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    # Third-party clients are chatty at DEBUG
    for name in ("httpx", "telegram", "aiohttp"):
        logging.getLogger(name).setLevel(logging.WARNING)


def build_tracker(config: BotConfig):
    if config.tracker_mode == "memory":
        return MemoryTracker(retention_seconds=config.tracker_retention_seconds)
    return FileTracker(
        file_path=config.tracker_file,
        retention_seconds=config.tracker_retention_seconds,
    )


def build_scheduler(config: BotConfig, screener: DexScreenerAPI,
                    notifier: TelegramNotifier, tracker) -> PairAlertScheduler:
    async def fetch():
        return await screener.fetch_new_pairs(
            chain=config.chain_id,
            source=config.pair_source,
            query=config.dexscreener_query,
        )

    pair_filter = PairFilter(
        max_age_seconds=config.max_token_age_seconds,
        min_liquidity_usd=config.min_liquidity_usd,
        max_results=config.max_tokens_per_batch,
        debug=config.debug_mode,
    )

    return PairAlertScheduler(
        fetch=fetch,
        dispatch=notifier.send_pair_alert,
        tracker=tracker,
        pair_filter=pair_filter,
        interval_seconds=config.check_interval,
        send_delay_seconds=config.send_delay_seconds,
        cleanup_interval_seconds=config.tracker_cleanup_interval,
    )


async def run(args, config: BotConfig) -> int:
    screener = DexScreenerAPI()
    notifier = TelegramNotifier(
        config.telegram_bot_token,
        config.telegram_chat_id,
        min_liquidity_usd=config.min_liquidity_usd,
    )
    tracker = build_tracker(config)
    scheduler = build_scheduler(config, screener, notifier, tracker)

    if args.clear_history:
        tracker.clear()

    try:
        if not await notifier.test_connection():
            logger.error("Failed to connect to Telegram. Please check your bot token and try again.")
            return 1

        if args.once:
            await scheduler.run_cycle()
            await scheduler.stop()
            return 0

        loop = asyncio.get_running_loop()

        stop_tasks = []

        def request_stop(sig_name):
            logger.info(f"📛 Received {sig_name} signal")
            stop_tasks.append(asyncio.ensure_future(scheduler.stop()))

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, request_stop, sig.name)
            except (NotImplementedError, RuntimeError):
                # Windows: fall back to KeyboardInterrupt
                pass

        print(f"{Fore.GREEN}🚀 Starting {config.chain_id.capitalize()} DexScreener Token Bot...")
        logger.info(f"Checking every {config.check_interval:g}s")
        await scheduler.run_forever()
        if stop_tasks:
            await asyncio.gather(*stop_tasks)
        return 0

    finally:
        await screener.close()
        await notifier.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Alert newly created DexScreener pairs to Telegram")
    parser.add_argument("--once", action="store_true", help="Run a single check and exit")
    parser.add_argument("--debug", action="store_true", help="Log every pair's filter verdict")
    parser.add_argument("--config", help="YAML config file (overrides defaults, env still wins)")
    parser.add_argument("--clear-history", action="store_true", help="Forget all previously sent tokens")
    args = parser.parse_args(argv)

    setup_logging(args.debug)

    try:
        config = load_config(config_path=args.config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    if args.debug and not config.debug_mode:
        config = replace(config, debug_mode=True)
    if config.debug_mode:
        setup_logging(True)

    logger.info(f"Bot initialized with {config.check_interval:g}s check interval")
    logger.info(config.describe())

    try:
        return asyncio.run(run(args, config))
    except KeyboardInterrupt:
        logger.info("📛 Interrupted")
        return 0


if __name__ == "__main__":
    sys.exit(main())
