"""
EVM backend for the bridge counterparty.

- EVMBlockClock: block height from eth_blockNumber
- EVMMintingAuthority: grant / mint / revoke on a mintable ERC20

Transactions are signed locally with eth_account keys looked up in a keyring
(address -> private key), so credentials are plain addresses.
"""

import logging
from typing import Dict

from web3 import Web3
from eth_account import Account

from ..minting import MintingAuthority
from ..errors import Unauthorized, MintingError

log = logging.getLogger(__name__)

# Base Sepolia defaults
RPC_URL = "https://sepolia.base.org"
CHAIN_ID = 84532

# Bridged token ABI (minimal - only functions we use)
MINTABLE_TOKEN_ABI = [
    {
        "name": "grantMinter",
        "type": "function",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": []
    },
    {
        "name": "revokeMinter",
        "type": "function",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": []
    },
    {
        "name": "mint",
        "type": "function",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"}
        ],
        "outputs": []
    },
    {
        "name": "isMinter",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "bool"}]
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}]
    }
]

GAS_LIMITS = {
    "grantMinter": 80000,
    "revokeMinter": 60000,
    "mint": 120000,
}


def _connect(rpc_url: str) -> Web3:
    return Web3(Web3.HTTPProvider(rpc_url))


class EVMBlockClock:
    """Current block number of an EVM chain."""

    def __init__(self, rpc_url: str = RPC_URL, web3: Web3 = None):
        self.rpc_url = rpc_url
        self._web3 = web3

    @property
    def web3(self) -> Web3:
        """Lazy-load web3 instance."""
        if self._web3 is None:
            self._web3 = _connect(self.rpc_url)
        return self._web3

    def now(self) -> int:
        return int(self.web3.eth.block_number)


class EVMMintingAuthority(MintingAuthority):
    """
    Minting authority backed by a mintable ERC20 contract.

    Args:
        token_address: Bridged token contract
        keys: Keyring, address -> hex private key
        rpc_url: Ethereum JSON-RPC URL
        chain_id: Chain ID
        receipt_timeout: Seconds to wait for each receipt
    """

    def __init__(
        self,
        token_address: str,
        keys: Dict[str, str],
        rpc_url: str = RPC_URL,
        chain_id: int = CHAIN_ID,
        receipt_timeout: int = 120,
        web3: Web3 = None
    ):
        self.token_address = Web3.to_checksum_address(token_address)
        self.keys = {addr.lower(): key for addr, key in keys.items()}
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self._web3 = web3
        self._contract = None

    @property
    def web3(self) -> Web3:
        """Lazy-load web3 instance."""
        if self._web3 is None:
            self._web3 = _connect(self.rpc_url)
        return self._web3

    @property
    def contract(self):
        if self._contract is None:
            self._contract = self.web3.eth.contract(
                address=self.token_address,
                abi=MINTABLE_TOKEN_ABI
            )
        return self._contract

    def _account(self, credential: str):
        key = self.keys.get(credential.lower())
        if not key:
            raise Unauthorized(f"No signing key for {credential}")
        if not key.startswith("0x"):
            key = "0x" + key
        return Account.from_key(key)

    def _transact(self, credential: str, function_name: str, *args) -> str:
        """Sign, send and wait for a token transaction. Returns tx hash hex."""
        account = self._account(credential)
        w3 = self.web3

        nonce = w3.eth.get_transaction_count(account.address, 'pending')
        gas_price = int(w3.eth.gas_price * 1.1)

        tx = getattr(self.contract.functions, function_name)(*args).build_transaction({
            'from': account.address,
            'nonce': nonce,
            'gas': GAS_LIMITS[function_name],
            'gasPrice': gas_price,
            'chainId': self.chain_id
        })

        signed = account.sign_transaction(tx)
        tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
        log.info(f"{function_name} TX: {tx_hash.hex()}")

        receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt['status'] != 1:
            raise MintingError(f"{function_name} reverted (tx={tx_hash.hex()})")

        return tx_hash.hex()

    def grant_minter(self, admin_credential: str, account: str):
        self._transact(admin_credential, "grantMinter", Web3.to_checksum_address(account))

    def revoke_minter(self, admin_credential: str, account: str):
        self._transact(admin_credential, "revokeMinter", Web3.to_checksum_address(account))

    def mint(self, minter_credential: str, recipient: str, amount: int):
        self._transact(minter_credential, "mint", Web3.to_checksum_address(recipient), amount)

    def is_minter(self, account: str) -> bool:
        return bool(self.contract.functions.isMinter(
            Web3.to_checksum_address(account)
        ).call())

    def balance_of(self, account: str) -> int:
        return int(self.contract.functions.balanceOf(
            Web3.to_checksum_address(account)
        ).call())
