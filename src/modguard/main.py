"""
ModGuard Discord Bot
====================

Anti-nuke and automod enforcement for Discord guilds: watches destructive
guild activity and message bursts, applies the configured auto-response when a
rate threshold is crossed, and keeps a reversible violation ledger for appeals.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. MODGUARD_HOME environment variable, if set.
    2. If running in a frozen/compiled context, use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("MODGUARD_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
import discord
from dotenv import load_dotenv

from modguard.bot.cogs.gateway_listener import GatewayListenerCog
from modguard.bot.discord_adapters import DiscordNotifier, DiscordPlatformActions
from modguard.configuration.app_configuration import app_config
from modguard.database.db_connection import db_connection
from modguard.database.sqlite_store import SqliteModerationStore
from modguard.runtime import ModGuardRuntime
from modguard.util.logger import get_logger, handle_exception, quiet_noisy_loggers


logger = get_logger("main")


def load_environment() -> str:
    """Load environment variables and return the Discord bot token.

    Raises
    ------
    SystemExit
        If the required ``DISCORD_BOT_TOKEN`` variable is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.critical("'DISCORD_BOT_TOKEN' environment variable not set. Bot cannot start.")
        sys.exit(1)
    return token


def build_intents() -> discord.Intents:
    """Intents for guild structure, audit-driven member events and message bursts."""
    intents = discord.Intents.default()
    intents.guilds = True
    intents.members = True
    intents.messages = True
    intents.message_content = True
    return intents


def create_bot() -> tuple[discord.Bot, ModGuardRuntime]:
    """Instantiate the bot and wire the engine around its adapters."""
    bot = discord.Bot(intents=build_intents())
    notifier = DiscordNotifier(bot)
    runtime = ModGuardRuntime.build(
        app_config,
        DiscordPlatformActions(bot),
        notifier,
        SqliteModerationStore(db_connection),
    )
    notifier.policy_lookup = runtime.policies.get_policy
    bot.add_cog(GatewayListenerCog(bot, runtime.queue, runtime.policies, runtime.tracker, runtime.normalizer))
    logger.info("Gateway listener registered.")
    return bot, runtime


async def start_bot(bot: discord.Bot, token: str) -> None:
    logger.info("Attempting to connect to Discord…")
    try:
        await bot.start(token)
    except asyncio.CancelledError:
        logger.info("Discord bot start cancelled; shutting down")
    finally:
        logger.info("Discord bot start routine finished.")


async def shutdown_runtime(bot: discord.Bot | None, runtime: ModGuardRuntime | None) -> None:
    """Gracefully stop background tasks, the bot and the database."""
    if runtime is not None:
        try:
            await runtime.shutdown()
        except Exception as exc:
            logger.exception("Error during engine shutdown: %s", exc)

    if bot is not None and not bot.is_closed():
        await bot.close()

    await db_connection.close()
    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Bootstrap database, engine and bot, returning an exit code."""
    token = load_environment()

    try:
        logger.info("Opening database at %s", app_config.database_path)
        await db_connection.open(app_config.database_path)
    except Exception as exc:
        logger.critical("Failed to initialize database: %s", exc)
        return 1

    try:
        bot, runtime = create_bot()
    except Exception as exc:
        logger.critical("Failed to initialize Discord bot: %s", exc)
        await shutdown_runtime(None, None)
        return 1

    try:
        await runtime.load()
        runtime.scheduler.start()
    except Exception as exc:
        logger.critical("Failed to load moderation state: %s", exc)
        await shutdown_runtime(bot, runtime)
        return 1

    exit_code = 0
    try:
        await start_bot(bot, token)
    except Exception as exc:
        logger.critical("Discord bot runtime error: %s", exc)
        exit_code = 1
    finally:
        await shutdown_runtime(bot, runtime)

    return exit_code


def main() -> int:
    """Entrypoint that runs the async runtime and returns the process exit code."""
    sys.excepthook = handle_exception
    quiet_noisy_loggers()
    logger.info("Starting ModGuard…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except SystemExit as exit_exc:
        code = exit_exc.code
        if isinstance(code, int):
            return code
        return 1
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the bot: %s", exc)
        return 1


if __name__ == "__main__":
    print(f"Exited with code: {main()}")
