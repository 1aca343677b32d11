import pytest

from clankclaw.deploy_config import (
    DEFAULT_DESCRIPTION,
    SPOOF_DEPLOYER_BPS,
    SPOOF_TARGET_BPS,
    build_social_media_urls,
    create_config_from_session,
    load_config,
    normalize_social_url,
    process_image,
)
from clankclaw.models import FeeConfig, TokenContext, TokenDraft
from clankclaw.validator import DEFAULT_IMAGE, ConfigValidationError, validate_config

DEPLOYER = '0x19E7E376E7C213B7E7e7e46cc70A5dD086DAff2A'
TARGET = '0x52908400098527886E0F7030069857D2E4169EE7'
CID = 'bafkreibk3covs5ltyqxa272uodhculbr6kea6betidfwy3ajsav2vjzyum'

ENV_KEYS = (
    'TOKEN_NAME', 'TOKEN_SYMBOL', 'TOKEN_IMAGE', 'TOKEN_ADMIN', 'REWARD_INTERFACE_ADMIN',
    'REWARDS_JSON', 'REWARD_CREATOR', 'REWARD_INTERFACE', 'ADMIN_SPOOF', 'REWARD_RECIPIENT',
    'FEE_CLANKER_BPS', 'FEE_PAIRED_BPS', 'CONTEXT_PLATFORM', 'CONTEXT_MESSAGE_ID',
    'STRICT_MODE', 'REQUIRE_CONTEXT', 'DEV_BUY_ETH_AMOUNT', 'VANITY', 'METADATA_DESCRIPTION',
    'SOCIAL_X', 'SOCIAL_TELEGRAM', 'SOCIAL_FARCASTER', 'SOCIAL_WEBSITE',
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_session_config_uses_deployer_as_admin():
    draft = TokenDraft(name='Pepe', symbol='PEPE', image=CID, fees=FeeConfig(250, 350),
                       context=TokenContext('twitter', '123'), socials={'twitter': '@pepe'})
    config = create_config_from_session(draft, DEPLOYER)

    assert config['tokenAdmin'] == DEPLOYER
    assert config['image'].endswith(CID)
    assert config['fees'] == {'type': 'static', 'clankerFee': 250, 'pairedFee': 350}
    assert config['context']['messageId'] == '123'
    assert config['metadata']['socialMediaUrls'] == [{'platform': 'x', 'url': 'https://x.com/pepe'}]
    assert 'rewards' not in config


def test_spoof_splits_rewards_and_hands_admin_to_target():
    config = create_config_from_session(TokenDraft(symbol='PEPE', spoof_to=TARGET), DEPLOYER)

    assert config['tokenAdmin'] == TARGET
    recipients = config['rewards']['recipients']
    assert [r['recipient'] for r in recipients] == [DEPLOYER, TARGET]
    assert [r['bps'] for r in recipients] == [SPOOF_DEPLOYER_BPS, SPOOF_TARGET_BPS]
    assert sum(r['bps'] for r in recipients) == 10000


def test_spoof_to_self_is_ignored():
    config = create_config_from_session(TokenDraft(symbol='PEPE', spoof_to=DEPLOYER.lower()), DEPLOYER)

    assert config['tokenAdmin'] == DEPLOYER
    assert not config['_meta']['spoofEnabled']


def test_process_image_variants():
    assert process_image(f'ipfs://{CID}') == f'https://gateway.pinata.cloud/ipfs/{CID}'
    assert process_image('https://example.com/a.png') == 'https://example.com/a.png'
    assert process_image('') == ''


def test_social_url_normalization():
    assert normalize_social_url('website', 'example.com') == 'https://example.com'
    assert normalize_social_url('telegram', '@grp') is None
    assert build_social_media_urls({'website': '  '}) == []


def test_validator_heals_missing_identity(clean_env):
    config, events = validate_config({'name': 'Moon Cat', 'symbol': '', 'image': ''})

    assert config['symbol'] == 'MOONCAT'
    assert config['image'] == DEFAULT_IMAGE
    assert config['metadata']['description'] == DEFAULT_DESCRIPTION
    assert any('Symbol missing' in event.message for event in events)


def test_validator_resets_fees_over_cap(clean_env):
    config, events = validate_config({'symbol': 'X', 'fees': {'type': 'static', 'clankerFee': 500, 'pairedFee': 500}})

    assert config['fees']['clankerFee'] == 300
    assert config['fees']['pairedFee'] == 300
    assert any(event.level == 'warning' and 'cap' in event.message for event in events)


def test_validator_extracts_tweet_id(clean_env):
    config, _ = validate_config({
        'symbol': 'X',
        'context': {'platform': 'X', 'messageId': 'https://x.com/a/status/998877'},
    })

    assert config['context']['platform'] == 'x'
    assert config['context']['messageId'] == '998877'


def test_validator_warns_on_profile_context(clean_env):
    _, events = validate_config({'symbol': 'X', 'context': {'platform': 'twitter', 'messageId': 'https://x.com/a'}})

    assert any('profile URL' in event.message for event in events)


def test_required_context_gets_synthetic_id(clean_env):
    clean_env.setenv('REQUIRE_CONTEXT', 'true')
    config, _ = validate_config({'symbol': 'X'})

    assert config['context']['messageId'].isdigit()


def test_reward_bps_are_clamped(clean_env):
    config, events = validate_config({
        'symbol': 'X',
        'rewards': {'recipients': [{'recipient': DEPLOYER, 'bps': 12000}, {'recipient': TARGET, 'bps': -5}]},
    })

    assert [r['bps'] for r in config['rewards']['recipients']] == [10000, 0]
    assert len([event for event in events if 'clamped' in event.message]) == 2


def test_validator_does_not_mutate_input(clean_env):
    original = {'symbol': 'x', 'fees': {'type': 'static', 'clankerFee': 900, 'pairedFee': 0}}
    validate_config(original)

    assert original['symbol'] == 'x'
    assert original['fees']['clankerFee'] == 900


def test_strict_mode_requires_farcaster_context(clean_env):
    with pytest.raises(ConfigValidationError):
        validate_config({'symbol': 'X', '_meta': {'strictMode': True},
                         'context': {'platform': 'twitter', 'messageId': '1'}})

    config, _ = validate_config({
        'symbol': 'X',
        '_meta': {'strictMode': True},
        'context': {'platform': 'farcaster', 'messageId': '0xabc123'},
        'metadata': {'description': 'A real description'},
    })
    assert config['context']['platform'] == 'farcaster'


def test_load_config_from_env(clean_env):
    clean_env.setenv('TOKEN_NAME', 'Env Token')
    clean_env.setenv('TOKEN_SYMBOL', 'ENV')
    clean_env.setenv('TOKEN_ADMIN', DEPLOYER)
    clean_env.setenv('FEE_CLANKER_BPS', '100')
    clean_env.setenv('SOCIAL_WEBSITE', 'https://example.com')
    clean_env.setenv('DEV_BUY_ETH_AMOUNT', '0.01')

    config = load_config()

    assert config['name'] == 'Env Token'
    assert config['fees']['clankerFee'] == 100
    assert config['fees']['pairedFee'] == 300
    assert config['rewards']['recipients'][0] == {'recipient': DEPLOYER, 'admin': DEPLOYER,
                                                  'bps': 10000, 'token': 'Both'}
    assert config['metadata']['socialMediaUrls'] == [{'platform': 'website', 'url': 'https://example.com'}]
    assert config['devBuy'] == {'ethAmount': 0.01}


def test_load_config_reward_split_from_env(clean_env):
    clean_env.setenv('REWARD_CREATOR', DEPLOYER)
    clean_env.setenv('REWARD_INTERFACE', TARGET)

    recipients = load_config()['rewards']['recipients']

    assert [r['bps'] for r in recipients] == [SPOOF_DEPLOYER_BPS, SPOOF_TARGET_BPS]
