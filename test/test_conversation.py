import asyncio

from conftest import FakeDeployer, callback_update, text_update
from clankclaw.bot.panel import UIAction, get_ready_status
from clankclaw.models import SessionState
from clankclaw.services import DeployResult

CHAT = 4242


def run_texts(engine, *texts):
    async def _run():
        for index, text in enumerate(texts, 1):
            await engine.handle_update(text_update(CHAT, text, update_id=index))
    asyncio.run(_run())


def test_wizard_walks_name_symbol_fees_and_skips_to_ready(engine):
    run_texts(engine, '/deploy', 'Pepe Token', 'PEPE', '6%', '/skip', '/skip')

    session = engine.get_session(CHAT)
    assert session.token.name == 'Pepe Token'
    assert session.token.symbol == 'PEPE'
    assert session.token.fees.clanker_fee == 300
    assert session.token.fees.paired_fee == 300
    assert get_ready_status(session.token).ready
    assert session.state == SessionState.CONFIRMING


def test_wizard_rejects_bad_fee_text_without_advancing(engine, messenger):
    run_texts(engine, '/deploy', 'Pepe Token', 'PEPE', 'lots')

    session = engine.get_session(CHAT)
    assert session.state == SessionState.WIZARD_FEES
    assert 'Invalid format' in messenger.texts()[-1]


def test_wizard_fee_skip_uses_defaults(engine):
    run_texts(engine, '/deploy', 'Dog', 'DOG', '/skip')

    session = engine.get_session(CHAT)
    assert session.state == SessionState.WIZARD_IMAGE
    assert session.token.fees.total_bps == 600


def test_wizard_image_accepts_cid(engine):
    cid = 'bafkreibk3covs5ltyqxa272uodhculbr6kea6betidfwy3ajsav2vjzyum'
    run_texts(engine, '/deploy', 'Dog', 'DOG', '/skip', f'ipfs://{cid}')

    session = engine.get_session(CHAT)
    assert session.token.image == cid
    assert session.state == SessionState.WIZARD_CONTEXT


def test_wizard_persists_every_step(engine, draft_store):
    run_texts(engine, '/deploy', 'Pepe Token', 'PEPE')

    stored = draft_store.get_draft(CHAT)
    assert stored.name == 'Pepe Token'
    assert stored.symbol == 'PEPE'


def test_link_is_merged_in_collecting(engine, messenger):
    run_texts(engine, '/go PEPE', 'https://x.com/someone/status/1234567890')

    session = engine.get_session(CHAT)
    assert session.token.context.platform == 'twitter'
    assert session.token.context.message_id == '1234567890'
    assert any('Context set' in text for text in messenger.texts())


def test_go_command_configures_token(engine, messenger):
    run_texts(engine, '/go DOGE "Dogecoin 2" 5%')

    session = engine.get_session(CHAT)
    assert session.token.symbol == 'DOGE'
    assert session.token.name == 'Dogecoin 2'
    assert session.token.fees.total_bps == 500
    assert session.state == SessionState.CONFIRMING
    assert any('Token Configured' in text for text in messenger.texts())


def test_cid_outside_image_states_is_rejected(engine, messenger):
    run_texts(engine, 'QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG')

    assert 'allowed only after choosing' in messenger.texts()[-1]
    assert engine.get_session(CHAT).token.image is None


def test_photo_outside_image_states_is_deleted(engine, messenger, ipfs):
    update = {
        'update_id': 1,
        'message': {
            'message_id': 77,
            'chat': {'id': CHAT},
            'from': {'id': CHAT},
            'photo': [{'file_id': 'small'}, {'file_id': 'large'}],
        },
    }
    asyncio.run(engine.handle_update(update))

    assert messenger.deleted == [(CHAT, 77)]
    assert ipfs.inputs == []
    assert any('Image ignored' in text for text in messenger.texts())


def test_photo_in_menu_image_uploads_largest_size(engine, messenger, ipfs):
    async def _run():
        await engine.handle_update(callback_update(CHAT, UIAction.SET_IMAGE))
        await engine.handle_update({
            'update_id': 2,
            'message': {
                'message_id': 78,
                'chat': {'id': CHAT},
                'from': {'id': CHAT},
                'photo': [{'file_id': 'small'}, {'file_id': 'large'}],
            },
        })
    asyncio.run(_run())

    session = engine.get_session(CHAT)
    assert ipfs.inputs == ['https://files.example/large.png']
    assert session.token.image == 'bafkreiuploadedcid'
    assert session.state == SessionState.COLLECTING


def test_menu_fees_rejects_garbage(engine, messenger):
    async def _run():
        await engine.handle_update(callback_update(CHAT, UIAction.SET_FEES))
        await engine.handle_update(text_update(CHAT, 'free please', update_id=2))
    asyncio.run(_run())

    assert engine.get_session(CHAT).state == SessionState.MENU_FEES
    assert 'Invalid fee format' in messenger.texts()[-1]


def test_menu_spoof_validates_address(engine, messenger):
    target = '0x52908400098527886E0F7030069857D2E4169EE7'

    async def _run():
        await engine.handle_update(callback_update(CHAT, UIAction.SET_SPOOF))
        await engine.handle_update(text_update(CHAT, '0x1234', update_id=2))
        await engine.handle_update(text_update(CHAT, target, update_id=3))
    asyncio.run(_run())

    session = engine.get_session(CHAT)
    assert any('Invalid address' in text for text in messenger.texts())
    assert session.token.spoof_to == target
    assert session.state == SessionState.COLLECTING


def test_spoof_command_off_clears_target(engine, messenger):
    run_texts(engine, '/spoof 0x52908400098527886E0F7030069857D2E4169EE7', '/spoof off')

    assert engine.get_session(CHAT).token.spoof_to is None
    assert 'Spoof disabled' in messenger.texts()[-1]


def test_confirm_runs_deploy_and_resets(engine, deployer, draft_store, messenger):
    run_texts(engine, '/go PEPE "Pepe Token" 6%', 'yes')

    assert len(deployer.configs) == 1
    config = deployer.configs[0]
    assert config['symbol'] == 'PEPE'
    assert config['tokenAdmin'] == deployer.deployer_address()
    assert any('DEPLOYED SUCCESSFULLY' in text for text in messenger.texts())

    session = engine.get_session(CHAT)
    assert session.token.symbol is None
    assert draft_store.load_preset(CHAT, 'last-used')['token'].symbol == 'PEPE'


def test_failed_deploy_still_resets_session(engine, messenger):
    engine.deployer = FakeDeployer(DeployResult(success=False, error='Insufficient ETH for gas'))
    run_texts(engine, '/go PEPE 6%', '/confirm')

    assert any('Deployment Failed' in text for text in messenger.texts())
    assert engine.get_session(CHAT).token.symbol is None


def test_deploy_guard_blocks_reentry(engine, deployer):
    session = engine.get_session(CHAT)
    session.is_deploying = True
    asyncio.run(engine.execute_deploy(CHAT, session))

    assert deployer.configs == []


def test_missing_private_key_blocks_deploy(engine, deployer, messenger):
    deployer.private_key = ''
    run_texts(engine, '/go PEPE 6%', 'yes')

    assert deployer.configs == []
    assert any('PRIVATE_KEY not configured' in text for text in messenger.texts())


def test_confirming_abort_words_cancel(engine, messenger):
    run_texts(engine, '/go PEPE 6%', 'no')

    assert 'Cancelled.' in messenger.texts()
    assert engine.get_session(CHAT).token.symbol is None


def test_unauthorized_user_sees_ids(engine, messenger):
    engine.settings.admin_ids = ['1']
    asyncio.run(engine.handle_update(text_update(CHAT, '/start', user_id=99)))

    assert 'Unauthorized' in messenger.texts()[-1]
    assert '99' in messenger.texts()[-1]


def test_callback_is_answered_and_unknown_action_hinted(engine, messenger):
    asyncio.run(engine.handle_update(callback_update(CHAT, 'bogus')))

    assert messenger.answered == ['cb1']
    assert 'Unknown button action' in messenger.texts()[-1]


def test_wizard_skip_button_only_in_its_step(engine, messenger):
    asyncio.run(engine.handle_update(callback_update(CHAT, UIAction.WIZ_SKIP_IMAGE)))

    assert engine.get_session(CHAT).state == SessionState.IDLE
    assert 'Control Panel' in messenger.texts()[-1]


def test_deploy_button_requires_ready_draft(engine, messenger):
    asyncio.run(engine.handle_update(callback_update(CHAT, UIAction.DEPLOY)))

    assert any('not ready yet' in text for text in messenger.texts())
    assert engine.get_session(CHAT).state != SessionState.CONFIRMING


def test_autofill_fills_blank_symbol(engine):
    session = engine.get_session(CHAT)
    session.token.name = 'Moon Cat'
    asyncio.run(engine.handle_menu_action(CHAT, UIAction.FB_AUTOFILL))

    assert session.token.symbol == 'MOONCAT'
    assert session.token.image


def test_presets_save_load_via_profile_states(engine, messenger):
    async def _run():
        await engine.handle_update(text_update(CHAT, '/go PEPE "Pepe" 6%', update_id=1))
        await engine.handle_update(callback_update(CHAT, UIAction.PROFILE_SAVE, update_id=2))
        await engine.handle_update(text_update(CHAT, 'Main', update_id=3))
        await engine.handle_update(text_update(CHAT, '/cancel', update_id=4))
        await engine.handle_update(text_update(CHAT, '/load main', update_id=5))
    asyncio.run(_run())

    session = engine.get_session(CHAT)
    assert session.token.symbol == 'PEPE'
    assert 'Preset loaded: *Main*' in messenger.texts()


def test_session_hydrates_from_stored_draft(engine, draft_store):
    from clankclaw.models import TokenDraft
    draft_store.save_draft(CHAT, TokenDraft(name='Stored', symbol='STO'))

    session = engine.get_session(CHAT)
    assert session.token.symbol == 'STO'
    assert session.state == SessionState.COLLECTING
