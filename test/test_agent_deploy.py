import io
import json
import asyncio
import logging

import pytest

import agent_deploy
from agent_deploy import (
    AgentInputError,
    derive_symbol,
    input_to_env,
    load_input,
    prepare_input,
    run,
)
from clankclaw.deploy_config import SPOOF_DEPLOYER_BPS, SPOOF_TARGET_BPS, load_config
from clankclaw.services import DeployResult
from clankclaw.validator import DEFAULT_IMAGE

OURS = '0x19E7E376E7C213B7E7e7e46cc70A5dD086DAff2A'
TARGET = '0x52908400098527886E0F7030069857D2E4169EE7'


class RecordingDeployer:
    """Captures the config instead of sending a transaction"""
    created = []

    def __init__(self, private_key='', rpc_url=None, dry_run=False):
        self.private_key = private_key
        self.rpc_url = rpc_url
        self.dry_run = dry_run
        self.config = None
        RecordingDeployer.created.append(self)

    async def deploy_token(self, config):
        self.config = config
        return DeployResult(success=True, address='0xabc', tx_hash='0xdead',
                            scan_url='https://basescan.org/token/0xabc')


@pytest.fixture
def deployer():
    RecordingDeployer.created = []
    return RecordingDeployer


# ─── input loading ───

def test_stdin_wins_over_other_sources(tmp_path):
    path = tmp_path / 'input.json'
    path.write_text('{"name": "FromFile"}')

    data = load_input(['--file', str(path)], stdin=io.StringIO('{"name": "FromStdin"}'),
                      env={'OPENCLAW_INPUT': '{"name": "FromEnv"}'})

    assert data == {'name': 'FromStdin'}


def test_file_then_argv_then_env(tmp_path):
    path = tmp_path / 'input.json'
    path.write_text('{"name": "FromFile"}')
    env = {'OPENCLAW_INPUT': '{"name": "FromEnv"}'}

    assert load_input(['--file', str(path)], stdin=io.StringIO(''), env=env)['name'] == 'FromFile'
    assert load_input(['{"name": "FromArgv"}'], stdin=io.StringIO(''), env=env)['name'] == 'FromArgv'
    assert load_input([], stdin=io.StringIO('  '), env=env)['name'] == 'FromEnv'


def test_missing_input_is_reported():
    with pytest.raises(AgentInputError, match='No input provided'):
        load_input([], stdin=io.StringIO(''), env={})


def test_bad_input_names_its_source(tmp_path):
    with pytest.raises(AgentInputError, match='Invalid JSON in stdin'):
        load_input([], stdin=io.StringIO('{oops'), env={})
    with pytest.raises(AgentInputError, match='Missing path'):
        load_input(['--file'], stdin=io.StringIO(''), env={})
    with pytest.raises(AgentInputError, match='File not found'):
        load_input(['--file', str(tmp_path / 'nope.json')], stdin=io.StringIO(''), env={})
    with pytest.raises(AgentInputError, match='JSON object'):
        load_input(['[1, 2]'], stdin=io.StringIO(''), env={})


# ─── smart validation ───

def test_empty_payload_gets_defaults():
    data = prepare_input({}, env={})

    assert data['name'] == 'Clank Token'
    assert data['symbol'] == 'CLAW'
    assert data['image'] == DEFAULT_IMAGE


def test_symbol_derived_from_name_and_name_from_symbol():
    assert prepare_input({'name': 'Pepe the Frog!'}, env={})['symbol'] == 'PEPETHEFROG'
    assert prepare_input({'symbol': ' FROG '}, env={})['name'] == 'FROG'
    assert derive_symbol('a') == 'AX'
    assert derive_symbol('!!') == 'CLAW'
    assert derive_symbol('x' * 30) == 'X' * 15


def test_image_fallback_prefers_configured_default():
    data = prepare_input({'symbol': 'PEPE'}, env={'DEFAULT_IMAGE_URL': 'https://img.example/a.png'})

    assert data['image'] == 'https://img.example/a.png'


def test_smart_validation_off_rejects_gaps():
    with pytest.raises(AgentInputError, match='name or symbol'):
        prepare_input({'smartValidation': False}, env={})
    with pytest.raises(AgentInputError, match='image'):
        prepare_input({'symbol': 'PEPE'}, env={'SMART_VALIDATION': 'false'})


def test_incomplete_strict_mode_is_relaxed_or_rejected():
    relaxed = prepare_input({'symbol': 'PEPE', 'strictMode': True}, env={})
    assert relaxed['strictMode'] is False

    with pytest.raises(AgentInputError, match='description'):
        prepare_input({'symbol': 'PEPE', 'image': 'x', 'strictMode': 'true', 'smartValidation': 'false'}, env={})


def test_complete_strict_mode_is_kept():
    data = prepare_input({
        'symbol': 'PEPE', 'strictMode': True, 'description': 'frog coin', 'devBuy': 0.01,
        'context': {'platform': 'farcaster', 'messageId': '0xcast'},
    }, env={})

    assert data['strictMode'] is True


# ─── env mapping ───

def test_payload_clears_spoof_residue_from_environment():
    env = input_to_env({'symbol': 'PEPE'}, {'ADMIN_SPOOF': TARGET, 'REWARDS_JSON': '[{"bps": 1}]', 'KEEP': '1'})

    assert 'ADMIN_SPOOF' not in env
    assert 'REWARDS_JSON' not in env
    assert env['KEEP'] == '1'
    assert env['STRICT_MODE'] == 'false'
    assert env['VANITY'] == 'true'
    assert env['REQUIRE_CONTEXT'] == 'true'


def test_spoof_section_maps_to_reward_split():
    env = input_to_env({
        'symbol': 'PEPE',
        'spoof': {'enabled': True, 'ourWallet': OURS, 'targetAddress': TARGET},
        'fees': {'static': {'clankerFeeBps': 100, 'pairedFeeBps': 200}},
        'socials': {'x': 'https://x.com/pepe'},
        'context': {'platform': 'farcaster', 'url': 'https://warpcast.com/a/0x1'},
    }, {})

    config = load_config(env)

    assert config['tokenAdmin'] == TARGET
    assert [r['bps'] for r in config['rewards']['recipients']] == [SPOOF_DEPLOYER_BPS, SPOOF_TARGET_BPS]
    assert config['rewards']['recipients'][0]['recipient'] == OURS
    assert config['fees']['clankerFee'] == 100
    assert config['fees']['pairedFee'] == 200
    assert config['metadata']['socialMediaUrls'] == [{'platform': 'x', 'url': 'https://x.com/pepe'}]
    assert config['context']['messageId'] == 'https://warpcast.com/a/0x1'


def test_disabled_spoof_is_ignored():
    env = input_to_env({'symbol': 'PEPE', 'spoof': {'enabled': False, 'targetAddress': TARGET}}, {})

    assert 'REWARD_INTERFACE' not in env
    assert 'ADMIN_SPOOF' not in env


def test_load_config_reads_given_mapping(monkeypatch):
    monkeypatch.setenv('TOKEN_SYMBOL', 'FROMPROCESS')

    config = load_config({'TOKEN_SYMBOL': 'FROMMAP', 'REQUIRE_CONTEXT': 'false'})

    assert config['symbol'] == 'FROMMAP'
    assert config['_meta']['requireContext'] is False


# ─── run ───

def test_run_deploys_with_payload_credentials(deployer):
    result = asyncio.run(run({
        'name': 'Pepe', 'symbol': 'PEPE', 'privateKey': 'ab' * 32, 'rpcUrl': 'https://rpc.example',
        'context': {'platform': 'farcaster', 'messageId': '0xcast'},
    }, base_env={}, deployer_factory=deployer))

    assert result['success'] is True
    assert result['address'] == '0xabc'
    assert result['txHash'] == '0xdead'
    assert result['dryRun'] is False

    created = deployer.created[0]
    assert created.private_key == 'ab' * 32
    assert created.rpc_url == 'https://rpc.example'
    assert created.config['symbol'] == 'PEPE'
    assert created.config['context']['messageId'] == '0xcast'


def test_run_fills_missing_context_when_required(deployer):
    result = asyncio.run(run({'symbol': 'PEPE'}, base_env={}, deployer_factory=deployer))

    assert result['success'] is True
    assert deployer.created[0].config['context']['messageId'].isdigit()
    assert any('synthetic id' in entry['message'] for entry in result['logs'])


def test_run_dry_run_needs_no_chain():
    result = asyncio.run(run({'symbol': 'PEPE', 'dryRun': True}, base_env={}))

    assert result['success'] is True
    assert result['dryRun'] is True
    assert any(entry['message'].startswith('DRY RUN') for entry in result['logs'])


def test_run_reports_bad_payload_without_deploying(deployer):
    result = asyncio.run(run({'smartValidation': False}, base_env={}, deployer_factory=deployer))

    assert result['success'] is False
    assert 'name or symbol' in result['error']
    assert deployer.created == []


def test_run_leaves_logger_as_it_was(deployer):
    logger = logging.getLogger('clankclaw')
    handlers = list(logger.handlers)
    level = logger.level

    asyncio.run(run({'symbol': 'PEPE'}, base_env={}, deployer_factory=deployer))

    assert logger.handlers == handlers
    assert logger.level == level


# ─── main ───

@pytest.fixture
def quiet_main(monkeypatch):
    monkeypatch.setattr(agent_deploy, 'load_dotenv', lambda: None)
    monkeypatch.setattr(agent_deploy, 'setup_logging', lambda *args, **kwargs: logging.getLogger('clankclaw'))
    monkeypatch.setattr('sys.stdin', io.StringIO(''))
    monkeypatch.delenv('OPENCLAW_INPUT', raising=False)
    return monkeypatch


def test_main_prints_json_and_exits_zero(quiet_main, capsys):
    code = agent_deploy.main(['{"symbol": "PEPE", "dryRun": true}'])

    output = json.loads(capsys.readouterr().out)
    assert code == 0
    assert output['success'] is True
    assert output['dryRun'] is True


def test_main_without_input_exits_one(quiet_main, capsys):
    code = agent_deploy.main([])

    output = json.loads(capsys.readouterr().out)
    assert code == 1
    assert output['success'] is False
    assert 'No input provided' in output['error']
