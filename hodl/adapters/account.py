"""
Account-based (EVM) chain adapter.
"""
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from eth_account import Account as EthAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TimeExhausted

from ..config import (
    AdapterType,
    ERC20_ABI,
    EVM_NATIVE_GAS_LIMIT,
    EVM_TOKEN_GAS_LIMIT,
    MULTICALL_ABI,
    NetworkConfig,
    RECEIPT_TIMEOUT,
    RPC_TIMEOUT,
    TokenDescriptor,
)
from ..exceptions import AddressValidationError, BlockchainWalletError, BroadcastFailure, NetworkError
from ..models import Account, Receipt, SignedTransaction, UnsignedTransaction
from ..transactions import normalize_receipt
from ..utils import AmountLike, from_base_units, to_base_units, to_decimal, validate_evm_address, with_timeout
from .. import wallets
from .base import Capability, ChainAdapter

NATIVE_DECIMALS = 18


class AccountBasedAdapter(ChainAdapter):
    """EVM-style chains: ETH, BSC, Polygon and friends.

    Transactions are legacy (gasPrice) transactions signed locally with
    eth-account. Token balances are batched through Multicall3 when the network
    names one.
    """

    adapter_type = AdapterType.ACCOUNT
    capabilities = frozenset({
        Capability.NATIVE_BALANCE,
        Capability.TOKEN_BALANCE,
        Capability.ACCOUNTS,
        Capability.NATIVE_TRANSFER,
        Capability.TOKEN_TRANSFER,
        Capability.BROADCAST,
        Capability.GAS,
    })

    def __init__(self, config: NetworkConfig, w3: Optional[AsyncWeb3] = None,
                 timeout: float = RPC_TIMEOUT, receipt_timeout: float = RECEIPT_TIMEOUT):
        super().__init__(config)
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(config.endpoint_url))
        self.timeout = timeout
        self.receipt_timeout = receipt_timeout
        self._decimals: Dict[str, int] = {}
        self._contracts = {}

        self.multicall = None
        if config.multicall_address:
            self.multicall = self.w3.eth.contract(
                address=Web3.to_checksum_address(config.multicall_address),
                abi=MULTICALL_ABI,
            )

    async def close(self):
        provider = self.w3.provider
        disconnect = getattr(provider, 'disconnect', None)
        if disconnect is not None:
            await disconnect()

    async def _rpc(self, awaitable, operation: str):
        """Await an RPC call under the adapter timeout, with chain context on failure."""
        try:
            return await with_timeout(awaitable, self.timeout, chain=self.name, operation=operation)
        except BlockchainWalletError:
            raise
        except Exception as e:
            raise NetworkError(str(e), chain=self.name, operation=operation, cause=e) from e

    def _checksum(self, address: str, operation: str) -> str:
        if not validate_evm_address(address):
            raise AddressValidationError(f"Invalid address: {address!r}", chain=self.name, operation=operation)
        return Web3.to_checksum_address(address)

    def token_contract(self, address: str):
        """Get or create a cached ERC-20 contract instance."""
        address = Web3.to_checksum_address(address)
        if address not in self._contracts:
            self._contracts[address] = self.w3.eth.contract(address=address, abi=ERC20_ABI)
        return self._contracts[address]

    # ------------------------------------------------------------------
    # Chain state
    # ------------------------------------------------------------------

    async def get_gas_price(self) -> int:
        """Current gas price in wei."""
        return await self._rpc(self.w3.eth.gas_price, "get_gas_price")

    async def estimate_gas(self, transaction: dict) -> int:
        return await self._rpc(self.w3.eth.estimate_gas(transaction), "estimate_gas")

    async def get_nonce(self, address: str) -> int:
        """Next nonce for an address, counting pending transactions."""
        return await self._rpc(
            self.w3.eth.get_transaction_count(self._checksum(address, "get_nonce"), 'pending'),
            "get_nonce",
        )

    async def get_chain_id(self) -> int:
        if self.config.chain_id is not None:
            return self.config.chain_id
        return await self._rpc(self.w3.eth.chain_id, "get_chain_id")

    async def get_token_decimals(self, token: TokenDescriptor) -> int:
        """Token decimals from the registry, otherwise from the contract (cached)."""
        if token.decimals is not None:
            return token.decimals
        if token.address not in self._decimals:
            contract = self.token_contract(token.address)
            self._decimals[token.address] = int(
                await self._rpc(contract.functions.decimals().call(), "get_token_decimals")
            )
        return self._decimals[token.address]

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    async def get_balance(self, address: str) -> Decimal:
        wei = await self._rpc(self.w3.eth.get_balance(self._checksum(address, "get_balance")), "get_balance")
        return from_base_units(wei, NATIVE_DECIMALS)

    async def get_raw_token_balance(self, address: str, token: TokenDescriptor) -> Tuple[int, int]:
        owner = self._checksum(address, "get_token_balance")
        contract = self.token_contract(token.address)
        raw = await self._rpc(contract.functions.balanceOf(owner).call(), "get_token_balance")
        return int(raw), await self.get_token_decimals(token)

    async def get_raw_token_balances(self, address: str,
                                     tokens: Iterable[TokenDescriptor]) -> List[Tuple[int, int]]:
        """Get raw balances using multicall with fallback to individual calls."""
        tokens = list(tokens)
        if not tokens:
            return []
        if self.multicall is None:
            return await super().get_raw_token_balances(address, tokens)

        owner = self._checksum(address, "get_token_balances")
        calls = []
        for token in tokens:
            contract = self.token_contract(token.address)
            calls.append({
                'target': contract.address,
                'callData': contract.encode_abi('balanceOf', args=[owner]),
            })
        # Decimals only for tokens the registry leaves open
        unknown = [t for t in tokens if t.decimals is None and t.address not in self._decimals]
        for token in unknown:
            contract = self.token_contract(token.address)
            calls.append({'target': contract.address, 'callData': contract.encode_abi('decimals')})

        try:
            _, return_data = await self._rpc(
                self.multicall.functions.aggregate(calls).call(), "get_token_balances"
            )
        except NetworkError as e:
            self.logger.warning(f"Multicall failed on {self.name}: {e}. Falling back to individual calls")
            return await super().get_raw_token_balances(address, tokens)

        codec = self.w3.codec
        for i, token in enumerate(unknown):
            self._decimals[token.address] = int(codec.decode(['uint8'], return_data[len(tokens) + i])[0])

        results = []
        for i, token in enumerate(tokens):
            raw = codec.decode(['uint256'], return_data[i])[0]
            results.append((int(raw), await self.get_token_decimals(token)))
        return results

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self) -> Account:
        return wallets.create_evm_account()

    def account_from_mnemonic(self, mnemonic: str) -> Account:
        return wallets.derive_evm_account(mnemonic)

    def generate_mnemonic(self, word_count: int = 12) -> str:
        return wallets.generate_mnemonic(word_count)

    def validate_mnemonic(self, mnemonic: str) -> bool:
        return wallets.validate_mnemonic(mnemonic)

    def private_key_to_account(self, private_key: str) -> Account:
        return wallets.evm_account_from_key(private_key)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def _sign(self, account: Account, transaction: dict, unsigned: UnsignedTransaction) -> SignedTransaction:
        signed = EthAccount.sign_transaction(transaction, account.private_key.text())
        return SignedTransaction(
            chain=self.name,
            raw=signed.raw_transaction.to_0x_hex(),
            unsigned=unsigned,
            transaction_hash=signed.hash.to_0x_hex(),
            details=dict(transaction),
        )

    async def handle_native_transfer(self, account: Account, to: str, amount: AmountLike) -> SignedTransaction:
        """
        Build and sign a native coin transfer.

        Args:
            account (Account): Sender
            to (str): Recipient address
            amount: Amount in whole coins

        Returns:
            SignedTransaction: Signed legacy transaction
        """
        to = self._checksum(to, "handle_native_transfer")
        value = to_decimal(amount)
        gas_price = await self.get_gas_price()
        transaction = {
            'from': account.address,
            'to': to,
            'value': to_base_units(value, NATIVE_DECIMALS),
            'gas': EVM_NATIVE_GAS_LIMIT,
            'gasPrice': gas_price,
            'nonce': await self.get_nonce(account.address),
            'chainId': await self.get_chain_id(),
        }
        self.logger.info(f"Signing {value} {self.config.native_token_symbol} transfer to {to} "
                         f"(nonce={transaction['nonce']}, gasPrice={Web3.from_wei(gas_price, 'gwei')} Gwei)")
        unsigned = UnsignedTransaction(
            kind='native', from_address=account.address, to=to, amount=value,
            fee_parameters={'gas': transaction['gas'], 'gasPrice': gas_price},
            symbol=self.config.native_token_symbol,
        )
        return self._sign(account, transaction, unsigned)

    async def handle_token_transfer(self, account: Account, symbol: str, to: str,
                                    amount: AmountLike) -> SignedTransaction:
        """
        Build and sign an ERC-20 `transfer(to, rawAmount)` call.

        The raw amount is floor(amount * 10**decimals) in exact decimal
        arithmetic.
        """
        token = self.resolve_token(symbol)
        to = self._checksum(to, "handle_token_transfer")
        value = to_decimal(amount)
        decimals = await self.get_token_decimals(token)
        raw_amount = to_base_units(value, decimals)

        contract = self.token_contract(token.address)
        gas_price = await self.get_gas_price()
        transaction = {
            'from': account.address,
            'to': contract.address,
            'value': 0,
            'data': contract.encode_abi('transfer', args=[to, raw_amount]),
            'gas': EVM_TOKEN_GAS_LIMIT,
            'gasPrice': gas_price,
            'nonce': await self.get_nonce(account.address),
            'chainId': await self.get_chain_id(),
        }
        self.logger.info(f"Signing {value} {symbol} transfer to {to} (raw={raw_amount}, nonce={transaction['nonce']})")
        unsigned = UnsignedTransaction(
            kind='token', from_address=account.address, to=to, amount=value,
            fee_parameters={'gas': transaction['gas'], 'gasPrice': gas_price},
            symbol=symbol, details={'rawAmount': raw_amount, 'decimals': decimals},
        )
        signed = self._sign(account, transaction, unsigned)
        signed.details['rawAmount'] = raw_amount
        return signed

    async def send_signed_transaction(self, signed: SignedTransaction) -> Receipt:
        """
        Broadcast a signed transaction and wait for its receipt.

        A receipt wait that runs out or errors after the node accepted the
        transaction returns an uncertain receipt carrying its hash; the
        transaction may still be mined.
        """
        self._check_signed(signed, "send_signed_transaction")
        try:
            tx_hash = await with_timeout(self.w3.eth.send_raw_transaction(signed.raw), self.timeout,
                                         chain=self.name, operation="send_signed_transaction")
            tx_hash = tx_hash.to_0x_hex()
        except NetworkError as e:
            raise BroadcastFailure(str(e), chain=self.name, operation="send_signed_transaction", cause=e) from e
        except Exception as e:
            # Already in the mempool is not an error
            if "already known" not in str(e):
                raise BroadcastFailure(str(e), chain=self.name, operation="send_signed_transaction", cause=e) from e
            self.logger.warning(f"Transaction {signed.transaction_hash} is already in the mempool")
            tx_hash = signed.transaction_hash

        self.logger.info(f"Broadcast {tx_hash} on {self.name}, waiting for receipt")
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted:
            self.logger.warning(f"No receipt for {tx_hash} after {self.receipt_timeout}s")
            return normalize_receipt(None, success=True, uncertain=True, transaction_hash=tx_hash)
        except Exception as e:
            # Broadcast already accepted; the outcome is unknown, not failed
            self.logger.warning(f"Receipt lookup for {tx_hash} failed: {e}")
            return normalize_receipt(None, success=True, uncertain=True, transaction_hash=tx_hash)

        success = receipt.get('status') == 1
        if not success:
            self.logger.error(f"Transaction {tx_hash} reverted on {self.name}")
        return normalize_receipt(receipt, success=success, transaction_hash=tx_hash)
