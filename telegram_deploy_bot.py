#!/usr/bin/env python3
"""
Clank & Claw Telegram bot
Button-first token configuration and deployment on Base
"""

import sys
import signal
import asyncio

from dotenv import load_dotenv

# Load environment variables FIRST
load_dotenv()

from clankclaw import __version__
from clankclaw.bot import ConversationEngine, FatalPollingError, UpdatePoller
from clankclaw.database import DraftStore
from clankclaw.services import (
    InstanceLock,
    InstanceLockError,
    IPFSService,
    SessionManager,
    SessionStore,
    TelegramApiClient,
    TelegramError,
    TelegramMessenger,
    TokenDeployer,
)
from clankclaw.services.health import list_enabled_ipfs_providers
from clankclaw.settings import FATAL_CONFIG_EXIT_CODE, BotSettings, private_key_error, setup_logging

logger = setup_logging()

PERMANENT_STARTUP_MARKERS = ('token', 'unauthorized', 'lock')


def is_permanent_startup_error(error) -> bool:
    message = str(error or '').lower()
    return any(marker in message for marker in PERMANENT_STARTUP_MARKERS)


def print_banner(settings: BotSettings, username: str, ipfs: IPFSService, store_stats: dict):
    """Startup status lines"""
    key_error = private_key_error(settings.private_key)
    ipfs_status = ipfs.provider_status()
    providers = list_enabled_ipfs_providers(ipfs_status)

    print(f"✅ Bot: @{username}")
    print(f"{'❌' if key_error else '✅'} Wallet: {key_error or 'Ready'}")
    if settings.dry_run:
        print("🧪 DRY_RUN enabled: no transactions will be sent")
    print(f"{'✅' if providers else '⚠️'} IPFS: {', '.join(providers) if providers else 'Not configured'}")
    print(f"📍 Admins: {', '.join(settings.admin_ids) if settings.admin_ids else 'All allowed'}")
    if settings.skipped_admin_placeholders:
        print(f"⚠️ Ignored {settings.skipped_admin_placeholders} placeholder admin ID(s) from TELEGRAM_ADMIN_IDS")
    print(f"💾 Config DB: {store_stats['path']} ({store_stats['users']} chats, {store_stats['presets']} presets)")
    print(f"🌐 Telegram API: {' | '.join(settings.api_origins)}")
    if settings.file_base:
        print(f"🌐 Telegram File Base: {settings.file_base}")
    print("")


async def run_bot(settings: BotSettings) -> int:
    """Verify the token, clear any webhook, then poll until a signal or a fatal error"""
    client = TelegramApiClient(settings.bot_token, settings.api_origins, settings.file_base)
    try:
        me = await client.call('getMe')
        if not me.ok:
            print(f"❌ Invalid bot token ({me.description or 'unknown error'})")
            return FATAL_CONFIG_EXIT_CODE

        try:
            webhook = await client.call('getWebhookInfo', {}, max_attempts=1)
        except TelegramError as e:
            logger.warning(f"getWebhookInfo failed: {e}")
        else:
            webhook_url = (webhook.result or {}).get('url') if webhook.ok else None
            if webhook_url:
                print(f"ℹ️ Webhook detected ({webhook_url}). Clearing webhook for polling mode...")
                await client.call('deleteWebhook', {'drop_pending_updates': False}, max_attempts=2)

        draft_store = DraftStore(settings.config_store_path)
        ipfs = IPFSService()
        engine = ConversationEngine(
            settings=settings,
            messenger=TelegramMessenger(client),
            session_store=SessionStore(SessionManager(), draft_store),
            draft_store=draft_store,
            ipfs=ipfs,
            deployer=TokenDeployer(private_key=settings.private_key, rpc_url=settings.rpc_url or None,
                                   dry_run=settings.dry_run),
            client=client,
        )
        print_banner(settings, (me.result or {}).get('username', 'unknown'), ipfs, draft_store.get_stats())

        poller = UpdatePoller.from_settings(client, engine.handle_update, settings)
        poll_task = asyncio.ensure_future(poller.run())

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, poll_task.cancel)

        try:
            await poll_task
        except asyncio.CancelledError:
            print("\n🛑 Received shutdown signal. Shutting down gracefully...")
            return 0
        except FatalPollingError as e:
            logger.error(f"❌ Fatal polling error: {e.reason}")
            return e.exit_code
        return 0
    finally:
        await client.close()


def main():
    """Start the bot"""
    print("")
    print(f"🐾 Clank & Claw Telegram Bot v{__version__}")
    print("━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━")

    settings = BotSettings.from_env()
    if not settings.bot_token:
        print("❌ TELEGRAM_BOT_TOKEN not set")
        sys.exit(FATAL_CONFIG_EXIT_CODE)

    lock = InstanceLock(settings.lock_file)
    try:
        lock.acquire()
    except InstanceLockError as e:
        print(f"❌ {e}")
        sys.exit(FATAL_CONFIG_EXIT_CODE)
    print(f"🔒 Instance lock: {settings.lock_file}")

    try:
        code = asyncio.run(run_bot(settings))
    except KeyboardInterrupt:
        print("\n🛑 Interrupted during startup.")
        code = 0
    except Exception as e:
        logger.error(f"❌ Fatal Startup Error: {e}", exc_info=True)
        code = FATAL_CONFIG_EXIT_CODE if is_permanent_startup_error(e) else 1
    finally:
        lock.release()

    sys.exit(code)


if __name__ == '__main__':
    main()
