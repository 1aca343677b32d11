"""
Token deployment against the Clanker factory on Base
"""

import os
import json
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from eth_account import Account
from eth_utils import to_checksum_address
from web3 import Web3

from ..settings import DEFAULT_RPC_URL, normalize_private_key, parse_bool

BASE_CHAIN_ID = 8453
MIN_BALANCE_ETH = 0.005
HIGH_GAS_GWEI = 2.0
RECEIPT_TIMEOUT = 300
DEFAULT_GAS_LIMIT = 8000000
TRANSFER_TOPIC = '0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef'
ZERO_TOPIC = '0x' + '0' * 64
SCAN_BASE = 'https://basescan.org'

# deployToken(tokenConfig, feeConfig, rewardConfig)
FACTORY_ABI = [
    {
        "inputs": [
            {
                "name": "tokenConfig",
                "type": "tuple",
                "components": [
                    {"name": "tokenAdmin", "type": "address"},
                    {"name": "name", "type": "string"},
                    {"name": "symbol", "type": "string"},
                    {"name": "salt", "type": "bytes32"},
                    {"name": "image", "type": "string"},
                    {"name": "metadata", "type": "string"},
                    {"name": "context", "type": "string"},
                    {"name": "originatingChainId", "type": "uint256"}
                ]
            },
            {
                "name": "feeConfig",
                "type": "tuple",
                "components": [
                    {"name": "clankerFee", "type": "uint24"},
                    {"name": "pairedFee", "type": "uint24"}
                ]
            },
            {
                "name": "rewardConfig",
                "type": "tuple",
                "components": [
                    {"name": "recipients", "type": "address[]"},
                    {"name": "admins", "type": "address[]"},
                    {"name": "bps", "type": "uint16[]"}
                ]
            }
        ],
        "name": "deployToken",
        "outputs": [{"name": "tokenAddress", "type": "address"}],
        "stateMutability": "payable",
        "type": "function"
    }
]


@dataclass
class DeployResult:
    """Outcome of a deploy attempt; failures are returned, not raised"""
    success: bool
    dry_run: bool = False
    address: Optional[str] = None
    tx_hash: Optional[str] = None
    scan_url: Optional[str] = None
    deployer: Optional[str] = None
    error: Optional[str] = None


def describe_deploy_error(error) -> str:
    """Map chain client errors to operator-facing messages"""
    message = str(error) or type(error).__name__
    lowered = message.lower()
    if 'insufficient funds' in lowered:
        return 'Insufficient ETH for gas'
    if 'nonce' in lowered:
        return 'Nonce mismatch (retry after pending transactions confirm)'
    if 'user rejected' in lowered:
        return 'User rejected transaction'
    return message


def _hex(value) -> str:
    text = value.hex() if hasattr(value, 'hex') and not isinstance(value, str) else str(value)
    return text if text.startswith('0x') else f'0x{text}'


class TokenDeployer:
    """Sends deployToken transactions; blocking web3 calls run in the executor"""

    def __init__(self, private_key: str = None, rpc_url: str = None, factory_address: str = None,
                 dry_run: Optional[bool] = None):
        self.private_key = private_key if private_key is not None else os.getenv('PRIVATE_KEY', '')
        self.rpc_url = rpc_url or os.getenv('RPC_URL') or DEFAULT_RPC_URL
        self.factory_address = factory_address or os.getenv('CLANKER_FACTORY_ADDRESS', '')
        self.dry_run = parse_bool(os.getenv('DRY_RUN')) if dry_run is None else dry_run
        self.gas_limit = int(os.getenv('GAS_LIMIT', DEFAULT_GAS_LIMIT))
        self.logger = logging.getLogger('clankclaw')

    def deployer_address(self) -> Optional[str]:
        key = normalize_private_key(self.private_key)
        if not key:
            return None
        return Account.from_key(key).address

    def _dry_run_result(self, config: Dict) -> DeployResult:
        fees = config.get('fees') or {}
        total = (fees.get('clankerFee') or 0) + (fees.get('pairedFee') or 0)
        self.logger.info(f"DRY RUN: \"{config.get('name')}\" ({config.get('symbol')}), fees {total / 100}%")
        return DeployResult(
            success=True,
            dry_run=True,
            address='0x(dry-run-address)',
            scan_url=f'{SCAN_BASE}/address/0x(dry-run)',
            deployer='0x(dry-run-deployer)',
        )

    def _extract_token_address(self, receipt) -> Optional[str]:
        """First mint Transfer (from the zero address) in the receipt"""
        for log in receipt['logs']:
            topics = log['topics']
            if len(topics) >= 2 and _hex(topics[0]) == TRANSFER_TOPIC and _hex(topics[1]) == ZERO_TOPIC:
                return to_checksum_address(log['address'])
        return None

    def _deploy_sync(self, config: Dict, key: str) -> DeployResult:
        w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={'timeout': 60}))
        account = Account.from_key(key)

        chain_id = w3.eth.chain_id
        if chain_id != BASE_CHAIN_ID:
            raise ValueError(f"Connected to wrong chain ID: {chain_id}. Expected {BASE_CHAIN_ID} (Base Mainnet).")

        balance_wei = w3.eth.get_balance(account.address)
        balance = float(w3.from_wei(balance_wei, 'ether'))
        if balance < MIN_BALANCE_ETH:
            raise ValueError(f"Insufficient Balance: {balance:.4f} ETH (Need ~{MIN_BALANCE_ETH} ETH)")

        gas_gwei = w3.eth.gas_price / 1e9
        if gas_gwei > HIGH_GAS_GWEI:
            self.logger.warning(f"High gas: {gas_gwei:.4f} gwei. Deployment might be expensive.")
        self.logger.info(f"Deployer: {account.address} (Base: {gas_gwei:.4f} gwei)")

        if not self.factory_address:
            raise ValueError('CLANKER_FACTORY_ADDRESS is missing')
        factory = w3.eth.contract(address=to_checksum_address(self.factory_address), abi=FACTORY_ABI)

        metadata = config.get('metadata') or {}
        context = config.get('context') or {}
        fees = config.get('fees') or {}
        recipients = (config.get('rewards') or {}).get('recipients') or []

        token_config = (
            to_checksum_address(config['tokenAdmin']),
            config['name'],
            config['symbol'],
            b'\x00' * 32,
            config.get('image') or '',
            json.dumps(metadata),
            json.dumps(context),
            BASE_CHAIN_ID,
        )
        fee_config = (int(fees.get('clankerFee') or 0), int(fees.get('pairedFee') or 0))
        reward_config = (
            [to_checksum_address(item['recipient']) for item in recipients],
            [to_checksum_address(item.get('admin') or item['recipient']) for item in recipients],
            [int(item['bps']) for item in recipients],
        )

        latest_block = w3.eth.get_block('latest')
        base_fee = latest_block['baseFeePerGas']
        max_priority_fee = w3.to_wei(0.001, 'gwei')
        max_fee_per_gas = int(base_fee * 1.2) + max_priority_fee

        dev_buy_eth = float((config.get('devBuy') or {}).get('ethAmount') or 0)

        tx = factory.functions.deployToken(token_config, fee_config, reward_config).build_transaction({
            'from': account.address,
            'value': w3.to_wei(dev_buy_eth, 'ether'),
            'gas': self.gas_limit,
            'maxFeePerGas': max_fee_per_gas,
            'maxPriorityFeePerGas': max_priority_fee,
            'nonce': w3.eth.get_transaction_count(account.address, 'pending'),
            'chainId': BASE_CHAIN_ID,
            'type': 2,
        })

        signed_tx = account.sign_transaction(tx)
        tx_hash = w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        tx_hash_hex = _hex(tx_hash)
        self.logger.info(f"📝 Transaction sent: {tx_hash_hex}")

        receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=RECEIPT_TIMEOUT)
        if receipt['status'] != 1:
            raise ValueError(f"Transaction failed: reverted on-chain ({tx_hash_hex})")

        address = self._extract_token_address(receipt)
        if not address:
            self.logger.warning("Token address not found in receipt logs, check the explorer")

        return DeployResult(
            success=True,
            address=address,
            tx_hash=tx_hash_hex,
            scan_url=f"{SCAN_BASE}/address/{address}" if address else f"{SCAN_BASE}/tx/{tx_hash_hex}",
            deployer=account.address,
        )

    async def deploy_token(self, config: Dict) -> DeployResult:
        """Deploy once; every failure comes back as success=False"""
        if self.dry_run:
            return self._dry_run_result(config)

        key = normalize_private_key(self.private_key)
        if not key:
            return DeployResult(success=False, error='Invalid or missing PRIVATE_KEY (must be 64 hex chars)')

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._deploy_sync, config, key)
        except Exception as e:
            # web3 raises provider, contract and value errors from unrelated hierarchies
            message = describe_deploy_error(e)
            self.logger.error(f"Deployment failed: {message}")
            return DeployResult(success=False, error=message)
