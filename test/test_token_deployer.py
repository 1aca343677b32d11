import asyncio

from clankclaw.services import TokenDeployer
from clankclaw.services.token_deployer import TRANSFER_TOPIC, ZERO_TOPIC, describe_deploy_error

KEY = '0x' + '11' * 32
TOKEN = '0x52908400098527886e0f7030069857d2e4169ee7'


def test_dry_run_sends_nothing():
    deployer = TokenDeployer(private_key='', rpc_url='http://127.0.0.1:1', dry_run=True)
    result = asyncio.run(deployer.deploy_token({'name': 'Pepe', 'symbol': 'PEPE',
                                                'fees': {'clankerFee': 300, 'pairedFee': 300}}))

    assert result.success
    assert result.dry_run
    assert result.tx_hash is None


def test_invalid_key_fails_without_network():
    deployer = TokenDeployer(private_key='0x1234', rpc_url='http://127.0.0.1:1', dry_run=False)
    result = asyncio.run(deployer.deploy_token({'symbol': 'PEPE'}))

    assert not result.success
    assert 'PRIVATE_KEY' in result.error


def test_deployer_address_from_key():
    address = TokenDeployer(private_key=KEY[2:], dry_run=False).deployer_address()

    assert address.startswith('0x')
    assert len(address) == 42
    assert TokenDeployer(private_key='', dry_run=False).deployer_address() is None


def test_error_descriptions():
    assert describe_deploy_error(ValueError('insufficient funds for gas * price')) == 'Insufficient ETH for gas'
    assert describe_deploy_error(ValueError('nonce too low')).startswith('Nonce mismatch')
    assert describe_deploy_error(RuntimeError('boom')) == 'boom'


def test_token_address_is_first_mint_transfer():
    deployer = TokenDeployer(private_key=KEY, dry_run=False)
    receipt = {'logs': [
        {'address': '0x19e7e376e7c213b7e7e7e46cc70a5dd086daff2a', 'topics': ['0x' + '00' * 32]},
        {'address': TOKEN, 'topics': [TRANSFER_TOPIC, ZERO_TOPIC, '0x' + '00' * 12 + '11' * 20]},
    ]}

    assert deployer._extract_token_address(receipt).lower() == TOKEN
