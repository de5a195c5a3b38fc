#!/usr/bin/env python3
"""
CoinLaunch service
Mint a token when someone tags the bot, then reply with the token address.

Usage:
  Tweet: "@coinlaunchnow launch $Bitcoin $BTC"
  Result: token created from the requester's escrow wallet, bot replies with the address

  python coinlaunch_service.py                                 run poller + mention stream
  python coinlaunch_service.py --authorize                     connect the bot's X account (OAuth2)
  python coinlaunch_service.py --status                        intent counts per state
  python coinlaunch_service.py --claim-fees <username> <addr>  sweep a creator's escrow wallet
"""

import asyncio
import signal
import sys

from coinlaunch.config import Settings
from coinlaunch.context import AppContext, build_context
from coinlaunch.errors import CoinLaunchError, redact
from coinlaunch.logger import setup_logging


def print_header(settings: Settings):
    print("=" * 60)
    print("🚀 COINLAUNCH SERVICE")
    print("=" * 60)
    print(f"📱 Monitoring: @{settings.bot_username}")
    print(f"🗄️  Database: {settings.db_path}")
    print(f"⏱️  Poll every {settings.poll_interval_seconds:.0f}s, batch {settings.poll_batch_size}")
    if settings.mock_mode:
        print("🎭 MOCK MODE enabled")
    print("=" * 60)


def check_environment(settings: Settings) -> bool:
    """Print what is missing; False if nothing could run at all"""
    ok = True
    missing_chain = settings.missing_for_chain()
    if missing_chain:
        print(f"⚠️  Minting disabled, missing: {', '.join(missing_chain)}")
        ok = False
    if not settings.escrow_encryption_key and not settings.mock_mode:
        print("⚠️  Minting disabled, missing: ESCROW_ENCRYPTION_KEY")
        ok = False
    if not settings.funding_private_key and not settings.mock_mode:
        print("⚠️  FUNDING_PRIVATE_KEY not set - escrow wallets cannot be topped up")
    missing_oauth = settings.missing_for_oauth()
    if missing_oauth and not settings.mock_mode:
        print(f"⚠️  Confirmations disabled, missing: {', '.join(missing_oauth)}")
    return ok or settings.mock_mode


async def run(ctx: AppContext):
    """Run poller and stream until SIGINT/SIGTERM"""
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass  # Windows: KeyboardInterrupt handles Ctrl+C

    if not ctx.commenter.is_configured and not ctx.settings.mock_mode:
        print("💡 Run with --authorize to connect the bot's X account")

    tasks = [asyncio.create_task(ctx.poller.run_forever())]
    if ctx.stream is not None:
        tasks.append(asyncio.create_task(ctx.stream.run()))
    print("Press Ctrl+C to stop\n")

    stopper = asyncio.create_task(stop_event.wait())
    done, _ = await asyncio.wait(tasks + [stopper], return_when=asyncio.FIRST_COMPLETED)
    for task in done:
        if task is not stopper and task.exception():
            ctx.poller.stop()
            print(f"❌ {task.get_name()} crashed: {task.exception()}")

    print("\n👋 Shutting down gracefully...")
    if ctx.stream is not None:
        ctx.stream.stop()
    await ctx.poller.shutdown(ctx.settings.shutdown_grace_seconds)
    for task in tasks + [stopper]:
        task.cancel()
    await asyncio.gather(*tasks, stopper, return_exceptions=True)


def authorize(ctx: AppContext):
    """Interactive OAuth2 PKCE flow for the bot's posting account"""
    handler = ctx.oauth.authorization_handler()
    print("\n🔑 Open this URL, approve the app, then paste the full redirect URL here:\n")
    print(handler.get_authorization_url())
    response_url = input("\nRedirect URL: ").strip()
    token = ctx.oauth.exchange_code(handler, response_url)
    print(f"✅ X credential stored (scope: {token.scope})")


def show_status(ctx: AppContext):
    counts = ctx.intents.count_by_state()
    print("\n📊 INTENTS BY STATE:")
    for state, count in counts.items():
        print(f"   {state:<15} {count}")
    print(f"   {'TOTAL':<15} {sum(counts.values())}")


async def claim_fees(ctx: AppContext, username: str, destination: str):
    identity = ctx.intents.requester_id_for(username)
    if identity is None:
        print(f"❌ No launches found for @{username.lstrip('@')}")
        return
    claimable = await ctx.vault.claimable_fees(identity)
    print(f"💰 Escrow wallet {claimable['escrow_wallet']}: {claimable['total_claimable_eth']} ETH")
    result = await ctx.vault.claim_fees(identity, destination)
    print(f"✅ Claimed {result['amount_claimed_eth']} ETH -> {result['destination_address']}")
    print(f"   Tx: {result['transaction_hash']}")


def main(argv=None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    settings = Settings.from_env()
    setup_logging(settings.log_level)

    mode = argv[0] if argv else '--run'
    if mode not in ('--run', '--authorize', '--status', '--claim-fees'):
        print(__doc__)
        return 2

    try:
        ctx = build_context(settings, with_stream=(mode == '--run'))

        if mode == '--authorize':
            authorize(ctx)
        elif mode == '--status':
            show_status(ctx)
        elif mode == '--claim-fees':
            if len(argv) != 3:
                print("Usage: coinlaunch_service.py --claim-fees <username> <address>")
                return 2
            asyncio.run(claim_fees(ctx, argv[1], argv[2]))
        else:
            print_header(settings)
            if not check_environment(settings):
                print("Please set the missing variables in .env")
            asyncio.run(run(ctx))
    except KeyboardInterrupt:
        print("\n👋 Bot stopped by user")
    except (CoinLaunchError, ValueError) as e:
        print(f"❌ Error: {redact(str(e), settings.secrets())}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
