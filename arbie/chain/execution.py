"""
Execution sinks.

An execution sink turns an opportunity into an on-chain transaction
(buy on the source venue, sell on the target venue, one atomic contract
call) and reports its confirmation. The engine only sees the two-call
interface defined by ExecutionSink.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from arbie.chain.connection import ConnectionManager
from arbie.core.errors import ConnectionFailure, ExecutionRejected, ExecutionTimeout
from arbie.core.logging import LoggerMixin
from arbie.domain.models import ArbitrageOpportunity, Token, Venue, format_price

# Gas limit for the arbitrage contract call
DEFAULT_GAS_LIMIT = 300_000

ARBITRAGE_CONTRACT_ABI = [
    {
        "inputs": [
            {"internalType": "address", "name": "token", "type": "address"},
            {"internalType": "address", "name": "quoteToken", "type": "address"},
            {"internalType": "address", "name": "buyRouter", "type": "address"},
            {"internalType": "address", "name": "sellRouter", "type": "address"},
            {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
            {"internalType": "uint256", "name": "minReturn", "type": "uint256"},
        ],
        "name": "executeArbitrage",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


@dataclass
class ConfirmationResult:
    """Outcome of waiting for a transaction receipt."""
    confirmed: bool
    block_number: Optional[int] = None


class ExecutionSink(ABC):
    """Interface the ExecutionScheduler drives."""

    @abstractmethod
    async def submit(self, opportunity: ArbitrageOpportunity, amount: Decimal) -> str:
        """
        Hand a trade to the chain.

        Args:
            opportunity: The opportunity to execute
            amount: Trade size in quote-token units

        Returns:
            Transaction hash

        Raises:
            ExecutionRejected: If the attempt is refused before broadcast
        """

    @abstractmethod
    async def await_confirmation(self, tx_hash: str, timeout: float) -> ConfirmationResult:
        """
        Wait for on-chain confirmation.

        Raises:
            ExecutionTimeout: If no receipt is observed within `timeout`
        """


class DryRunExecutionSink(ExecutionSink, LoggerMixin):
    """Paper trading: nothing is broadcast, every attempt confirms."""

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.submitted: list[ArbitrageOpportunity] = []

    async def submit(self, opportunity: ArbitrageOpportunity, amount: Decimal) -> str:
        if self.latency:
            await asyncio.sleep(self.latency)
        self.submitted.append(opportunity)
        tx_hash = "0x" + uuid.uuid4().hex + uuid.uuid4().hex
        self.logger.info(
            f"DRY RUN: {opportunity.token.symbol} buy {opportunity.source_venue} "
            f"-> sell {opportunity.target_venue} | amount {amount} | "
            f"est. profit/unit {format_price(opportunity.potential_profit)}"
        )
        return tx_hash

    async def await_confirmation(self, tx_hash: str, timeout: float) -> ConfirmationResult:
        if self.latency:
            await asyncio.sleep(min(self.latency, timeout))
        return ConfirmationResult(confirmed=True)


class Web3ExecutionSink(ExecutionSink, LoggerMixin):
    """
    Executes through the deployed arbitrage contract.

    Flow: build call -> wallet balance check -> eth_call simulation ->
    sign -> broadcast -> wait for receipt. Anything failing before
    broadcast is a rejection.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        contract_address: str,
        private_key: str,
        quote_token: Token,
        venues: Mapping[str, Venue],
        gas_limit: int = DEFAULT_GAS_LIMIT,
    ):
        self.connection = connection
        self.contract_address = Web3.to_checksum_address(contract_address)
        self._account = Account.from_key(private_key)
        self.quote_token = quote_token
        self.venues = venues
        self.gas_limit = gas_limit

    def _router_for(self, venue_name: str) -> str:
        venue = self.venues.get(venue_name)
        router = venue.addresses.get("router") if venue else None
        if not router:
            raise ExecutionRejected(
                f"Venue {venue_name} has no router configured",
                details={"venue": venue_name},
            )
        return router

    def to_base_units(self, amount: Decimal) -> int:
        """Quote-token amount -> integer base units."""
        return int(amount * (10 ** self.quote_token.decimals))

    async def _check_balance(self, sender: str, amount_in: int) -> None:
        """Reject up front when the wallet cannot fund the trade."""
        try:
            balance = await self.connection.token_balance(self.quote_token.address, sender)
        except ConnectionFailure as e:
            raise ExecutionRejected(f"Balance check failed: {e.message}") from e

        if balance < amount_in:
            raise ExecutionRejected(
                f"Insufficient {self.quote_token.symbol} balance",
                details={"balance": balance, "required": amount_in},
            )

    async def submit(self, opportunity: ArbitrageOpportunity, amount: Decimal) -> str:
        w3 = self.connection.w3
        amount_in = self.to_base_units(amount)
        # Never accept less than the capital put in
        min_return = amount_in

        contract = w3.eth.contract(address=self.contract_address, abi=ARBITRAGE_CONTRACT_ABI)
        call = contract.functions.executeArbitrage(
            opportunity.token.address,
            self.quote_token.address,
            self._router_for(opportunity.source_venue),
            self._router_for(opportunity.target_venue),
            amount_in,
            min_return,
        )
        sender = self._account.address

        await self._check_balance(sender, amount_in)

        try:
            await call.call({"from": sender})
        except ContractLogicError as e:
            raise ExecutionRejected(f"Simulation reverted: {e}") from e
        except (Web3Exception, ValueError, OSError) as e:
            raise ExecutionRejected(f"Simulation failed: {e}") from e

        try:
            tx = await call.build_transaction({
                "from": sender,
                "nonce": await w3.eth.get_transaction_count(sender, "pending"),
                "gas": self.gas_limit,
                "gasPrice": await w3.eth.gas_price,
                "chainId": await w3.eth.chain_id,
            })
            signed = self._account.sign_transaction(tx)
            tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        except (Web3Exception, ValueError, OSError) as e:
            raise ExecutionRejected(f"Broadcast refused: {e}") from e

        tx_hex = Web3.to_hex(tx_hash)
        self.logger.info(
            f"TX SENT {tx_hex} | {opportunity.token.symbol} "
            f"{opportunity.source_venue} -> {opportunity.target_venue}"
        )
        return tx_hex

    async def await_confirmation(self, tx_hash: str, timeout: float) -> ConfirmationResult:
        w3 = self.connection.w3
        try:
            receipt = await w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=timeout, poll_latency=1.0
            )
        except (TimeExhausted, asyncio.TimeoutError) as e:
            raise ExecutionTimeout(
                f"No receipt for {tx_hash} within {timeout}s",
                tx_hash=tx_hash,
            ) from e

        return ConfirmationResult(
            confirmed=receipt["status"] == 1,
            block_number=receipt["blockNumber"],
        )
