#!/usr/bin/env python3
"""
JSON-in / JSON-out deploy entry point for automation agents

Input (first match wins):
    echo '{"name": "Test", "symbol": "TST"}' | python agent_deploy.py
    python agent_deploy.py --file config.json
    python agent_deploy.py '{"name": "Test"}'
    OPENCLAW_INPUT='{"name": "Test"}' python agent_deploy.py

Prints one JSON object on stdout; logging goes to stderr and logs/agent.log.
"""

import os
import re
import sys
import json
import asyncio
import logging
from typing import Dict, List, Optional

from dotenv import load_dotenv

from clankclaw.deploy_config import load_config
from clankclaw.services import TokenDeployer
from clankclaw.settings import parse_bool, setup_logging
from clankclaw.validator import DEFAULT_IMAGE, ConfigValidationError, log_events, validate_config

INPUT_ENV_KEY = 'OPENCLAW_INPUT'
DEFAULT_AGENT_NAME = 'Clank Token'
DEFAULT_AGENT_SYMBOL = 'CLAW'

# Cleared before every run so leftovers from .env never leak into a payload
SPOOF_ENV_KEYS = (
    'ADMIN_SPOOF', 'REWARD_CREATOR', 'REWARD_INTERFACE',
    'REWARD_CREATOR_ADMIN', 'REWARD_INTERFACE_ADMIN', 'REWARD_RECIPIENT', 'REWARDS_JSON',
)

TRUE_WORDS = ('1', 'true', 'yes', 'on')
FALSE_WORDS = ('0', 'false', 'no', 'off')

logger = logging.getLogger('clankclaw')


class AgentInputError(ValueError):
    """Payload is missing, unreadable, or incomplete"""


def to_bool(value) -> Optional[bool]:
    """True/False for recognizable flags, None when unset or unrecognized"""
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    text = str(value).strip().strip('"\'').lower()
    if text in TRUE_WORDS:
        return True
    if text in FALSE_WORDS:
        return False
    return None


def to_number(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def pick(data: Dict, keys):
    """First non-empty value under any of `keys`"""
    for key in keys:
        value = data.get(key)
        if value is not None and value != '':
            return value
    return None


def _section(data: Dict, *keys) -> Dict:
    value = pick(data, keys)
    return value if isinstance(value, dict) else {}


def _parse_json(raw: str, label: str) -> Dict:
    try:
        parsed = json.loads(raw)
    except ValueError as e:
        raise AgentInputError(f"Invalid JSON in {label}: {e}")
    if not isinstance(parsed, dict):
        raise AgentInputError(f"Input in {label} must be a JSON object")
    return parsed


def load_input(argv: List[str], stdin=None, env=None) -> Dict:
    """Read the payload. Priority: stdin > --file > argv JSON > OPENCLAW_INPUT"""
    stdin = sys.stdin if stdin is None else stdin
    env = os.environ if env is None else env

    if stdin is not None and not stdin.isatty():
        raw = stdin.read()
        if raw.strip():
            return _parse_json(raw, 'stdin')

    if argv and argv[0] == '--file':
        if len(argv) < 2 or not argv[1]:
            raise AgentInputError('Missing path after --file')
        path = argv[1]
        if not os.path.exists(path):
            raise AgentInputError(f"File not found: {path}")
        with open(path, 'r', encoding='utf-8') as f:
            return _parse_json(f.read(), path)

    if argv and argv[0].lstrip().startswith('{'):
        return _parse_json(argv[0], 'argv')

    if env.get(INPUT_ENV_KEY):
        return _parse_json(env[INPUT_ENV_KEY], INPUT_ENV_KEY)

    raise AgentInputError(f"No input provided. Use: stdin, --file <path>, or {INPUT_ENV_KEY} env var.")


def derive_symbol(name) -> str:
    normalized = re.sub(r'[^A-Z0-9]', '', str(name or '').upper())
    if len(normalized) >= 2:
        return normalized[:15]
    if len(normalized) == 1:
        return f"{normalized}X"
    return DEFAULT_AGENT_SYMBOL


def prepare_input(data: Dict, env=None) -> Dict:
    """Fill gaps in the payload. Smart validation (default on) heals instead of failing."""
    env = os.environ if env is None else env
    data = dict(data)

    smart = to_bool(pick(data, ['smartValidation', 'SMART_VALIDATION']))
    if smart is None:
        smart = to_bool(env.get('SMART_VALIDATION')) is not False

    name = pick(data, ['name', 'TOKEN_NAME', 'tokenName'])
    symbol = pick(data, ['symbol', 'TOKEN_SYMBOL', 'tokenSymbol'])
    if not name and not symbol:
        if not smart:
            raise AgentInputError('Missing required field: name or symbol')
        data['name'] = DEFAULT_AGENT_NAME
        data['symbol'] = DEFAULT_AGENT_SYMBOL
    else:
        if not name:
            data['name'] = str(symbol).strip()
        if not symbol:
            data['symbol'] = derive_symbol(name)

    if not pick(data, ['image', 'TOKEN_IMAGE', 'tokenImage']):
        if not smart:
            raise AgentInputError('Missing required field: image')
        data['image'] = str(env.get('DEFAULT_IMAGE_URL') or '').strip() or DEFAULT_IMAGE

    if to_bool(pick(data, ['strictMode', 'STRICT_MODE'])):
        description = pick(data, ['description', 'METADATA_DESCRIPTION'])
        context = _section(data, 'context', 'CONTEXT')
        message_id = pick(data, ['CONTEXT_MESSAGE_ID', 'CONTEXT_URL']) or context.get('messageId') or context.get('url')
        platform = str(pick(data, ['CONTEXT_PLATFORM']) or context.get('platform') or 'farcaster').lower()
        dev_buy = to_number(pick(data, ['devBuy', 'DEV_BUY_ETH_AMOUNT']))

        problems = []
        if not description:
            problems.append('description')
        if not message_id:
            problems.append('context.messageId')
        if platform != 'farcaster':
            problems.append('context.platform = "farcaster"')
        if not dev_buy or dev_buy <= 0:
            problems.append('devBuy > 0')

        if problems and smart:
            logger.warning(f"STRICT_MODE relaxed, missing: {', '.join(problems)}")
            data['strictMode'] = False
            data.pop('STRICT_MODE', None)
        elif problems:
            raise AgentInputError(f"STRICT_MODE requires: {problems[0]}")

    return data


def input_to_env(data: Dict, base_env=None) -> Dict[str, str]:
    """Overlay the payload on a copy of the environment, under the keys load_config reads"""
    env = dict(os.environ if base_env is None else base_env)

    def set_if(key, value):
        if value is None or value == '':
            return
        env[key] = str(value).lower() if isinstance(value, bool) else str(value)

    socials = _section(data, 'socials', 'SOCIALS')
    context = _section(data, 'context', 'CONTEXT')
    fees = _section(data, 'fees', 'FEES')
    static_fees = fees['static'] if isinstance(fees.get('static'), dict) else fees
    spoof = _section(data, 'spoof', 'SPOOF')

    set_if('TOKEN_NAME', pick(data, ['name', 'TOKEN_NAME', 'tokenName']))
    set_if('TOKEN_SYMBOL', pick(data, ['symbol', 'TOKEN_SYMBOL', 'tokenSymbol']))
    set_if('TOKEN_IMAGE', pick(data, ['image', 'TOKEN_IMAGE', 'tokenImage']))
    set_if('METADATA_DESCRIPTION', pick(data, ['description', 'METADATA_DESCRIPTION']))
    set_if('TOKEN_ADMIN', pick(data, ['admin', 'TOKEN_ADMIN', 'tokenAdmin']))

    for key in SPOOF_ENV_KEYS:
        env.pop(key, None)

    spoof_values = pick(data, [
        'adminSpoof', 'ADMIN_SPOOF', 'rewardCreator', 'REWARD_CREATOR', 'rewardInterface', 'REWARD_INTERFACE',
        'rewardCreatorAdmin', 'REWARD_CREATOR_ADMIN', 'rewardInterfaceAdmin', 'REWARD_INTERFACE_ADMIN',
    ]) or spoof.get('ourWallet') or spoof.get('targetAddress')
    if spoof_values and to_bool(spoof.get('enabled')) is not False:
        our_wallet = spoof.get('ourWallet')
        target = spoof.get('targetAddress')
        set_if('REWARD_CREATOR', pick(data, ['rewardCreator', 'REWARD_CREATOR']) or our_wallet)
        set_if('REWARD_INTERFACE', pick(data, ['rewardInterface', 'REWARD_INTERFACE']) or target)
        set_if('REWARD_CREATOR_ADMIN', pick(data, ['rewardCreatorAdmin', 'REWARD_CREATOR_ADMIN']) or our_wallet)
        set_if('REWARD_INTERFACE_ADMIN', pick(data, ['rewardInterfaceAdmin', 'REWARD_INTERFACE_ADMIN']) or target)
        set_if('ADMIN_SPOOF', pick(data, ['adminSpoof', 'ADMIN_SPOOF'])
               or (target if to_bool(spoof.get('enabled')) else None))

    for platform in ('x', 'telegram', 'farcaster', 'website'):
        key = f"SOCIAL_{platform.upper()}"
        set_if(key, pick(data, [key]) or socials.get(platform))

    set_if('CONTEXT_PLATFORM', pick(data, ['CONTEXT_PLATFORM']) or context.get('platform'))
    set_if('CONTEXT_MESSAGE_ID', pick(data, ['CONTEXT_MESSAGE_ID']) or context.get('messageId') or context.get('url'))

    strict_mode = to_bool(pick(data, ['strictMode', 'STRICT_MODE']))
    vanity = to_bool(pick(data, ['vanity', 'VANITY']))
    require_context = to_bool(pick(data, ['requireContext', 'REQUIRE_CONTEXT']))
    env['STRICT_MODE'] = 'true' if strict_mode else 'false'
    set_if('DRY_RUN', to_bool(pick(data, ['dryRun', 'DRY_RUN'])))
    env['VANITY'] = 'false' if vanity is False else 'true'
    env['REQUIRE_CONTEXT'] = 'false' if require_context is False else 'true'

    set_if('RPC_URL', pick(data, ['rpcUrl', 'RPC_URL']))
    set_if('PRIVATE_KEY', pick(data, ['privateKey', 'PRIVATE_KEY']))

    set_if('FEE_CLANKER_BPS', pick(static_fees, ['clankerFeeBps', 'clankerFee']))
    set_if('FEE_PAIRED_BPS', pick(static_fees, ['pairedFeeBps', 'pairedFee']))
    set_if('DEV_BUY_ETH_AMOUNT', pick(data, ['devBuy', 'DEV_BUY_ETH_AMOUNT', 'devBuyEthAmount']))

    return env


class LogCollector(logging.Handler):
    """Keeps log records emitted during a run for the JSON output"""

    LEVELS = {'WARNING': 'warn', 'ERROR': 'error', 'CRITICAL': 'error'}

    def __init__(self):
        super().__init__(logging.INFO)
        self.entries: List[Dict[str, str]] = []

    def emit(self, record):
        self.entries.append({'level': self.LEVELS.get(record.levelname, 'info'), 'message': record.getMessage()})


async def run(data: Dict, base_env=None, deployer_factory=TokenDeployer) -> Dict:
    """Validate and deploy one payload; never raises for bad input"""
    base_env = os.environ if base_env is None else base_env
    collector = LogCollector()
    previous_level = logger.level
    if logger.getEffectiveLevel() > logging.INFO:
        logger.setLevel(logging.INFO)
    logger.addHandler(collector)

    try:
        prepared = prepare_input(data, base_env)
        env = input_to_env(prepared, base_env)
        config, events = validate_config(load_config(env))
        log_events(events, logger)

        deployer = deployer_factory(
            private_key=env.get('PRIVATE_KEY', ''),
            rpc_url=env.get('RPC_URL'),
            dry_run=parse_bool(env.get('DRY_RUN')),
        )
        result = await deployer.deploy_token(config)
    except (AgentInputError, ConfigValidationError) as e:
        return {'success': False, 'error': str(e), 'logs': collector.entries}
    finally:
        logger.removeHandler(collector)
        logger.setLevel(previous_level)

    return {
        'success': result.success,
        'dryRun': bool(result.dry_run),
        'address': result.address,
        'txHash': result.tx_hash,
        'scanUrl': result.scan_url,
        'error': result.error,
        'logs': collector.entries,
    }


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    setup_logging('agent.log')

    try:
        data = load_input(sys.argv[1:] if argv is None else argv)
    except AgentInputError as e:
        output = {'success': False, 'error': str(e), 'logs': []}
    else:
        output = asyncio.run(run(data))

    print(json.dumps(output, indent=2))
    return 0 if output['success'] else 1


if __name__ == '__main__':
    sys.exit(main())
