#!/usr/bin/env python3
"""
Deploy a single token from .env settings
"""

import sys
import asyncio

from dotenv import load_dotenv

load_dotenv()

from clankclaw.deploy_config import load_config
from clankclaw.services import TokenDeployer
from clankclaw.settings import setup_logging
from clankclaw.validator import ConfigValidationError, validate_config

logger = setup_logging('deploy.log')


def print_events(events):
    for event in events:
        prefix = '⚠️ ' if event.level == 'warning' else 'ℹ️ '
        print(f"{prefix} {event.message}")


async def main() -> int:
    print("\n🦞 Clank & Claw - CLI Deploy")
    print("=" * 40)

    try:
        config, events = validate_config(load_config())
    except ConfigValidationError as e:
        print(f"❌ Invalid config: {e}")
        return 1
    print_events(events)

    fees = config['fees']
    print(f"\n📛 {config['name']} ({config['symbol']})")
    print(f"💰 Fees: {(fees['clankerFee'] + fees['pairedFee']) / 100}% "
          f"({fees['clankerFee']}/{fees['pairedFee']} bps)")
    print(f"🔗 Context: {config['context']['platform']} {config['context']['messageId'] or '(none)'}")

    deployer = TokenDeployer()
    result = await deployer.deploy_token(config)
    if not result.success:
        print(f"\n❌ Deployment failed: {result.error}")
        return 1

    if result.dry_run:
        print("\n🧪 Dry run complete, no transaction sent")
    else:
        print("\n✅ Token deployed!")
    print(f"📍 Address: {result.address or 'not detected'}")
    if result.tx_hash:
        print(f"📝 TX: {result.tx_hash}")
    print(f"🔗 {result.scan_url}")
    return 0


if __name__ == '__main__':
    sys.exit(asyncio.run(main()))
