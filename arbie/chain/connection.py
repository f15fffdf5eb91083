"""
Blockchain connection management.

Owns the AsyncWeb3 client for the configured RPC endpoint and tracks
connection health. Connecting is retried with exponential backoff at
startup only; during polling, an unreachable RPC surfaces as
ConnectionFailure on the affected calls and is retried next cycle.
The per-cycle gas price read reports back through record_success() /
record_failure(), so describe() always reflects the latest RPC call.
"""

import asyncio
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional

from eth_account import Account
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from web3 import AsyncWeb3

from arbie.core.errors import ConnectionFailure
from arbie.core.logging import LoggerMixin
from arbie.domain.models import Token

RPC_VENUE = "rpc"

ERC20_BALANCE_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]


class ConnectionStatus(str, Enum):
    """Current state of the blockchain connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class ConnectionManager(LoggerMixin):
    """
    Blockchain connection with health tracking.

    The underlying AsyncWeb3 object is created lazily and shared by
    every on-chain price source and the execution sink.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 10.0,
        private_key: Optional[str] = None,
        network: str = "Base Network",
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.network = network
        self._private_key = private_key

        self._w3: Optional[AsyncWeb3] = None
        self._status = ConnectionStatus.DISCONNECTED
        self._last_error: Optional[str] = None
        self._chain_id: Optional[int] = None

    @property
    def w3(self) -> AsyncWeb3:
        """Lazy-initialized AsyncWeb3 client."""
        if self._w3 is None:
            self._w3 = AsyncWeb3(
                AsyncWeb3.AsyncHTTPProvider(
                    self.rpc_url,
                    request_kwargs={"timeout": self.timeout},
                )
            )
        return self._w3

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def chain_id(self) -> Optional[int]:
        return self._chain_id

    @property
    def wallet_address(self) -> Optional[str]:
        if not self._private_key:
            return None
        return Account.from_key(self._private_key).address

    @retry(
        retry=retry_if_exception_type(ConnectionFailure),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def connect(self) -> None:
        """
        Establish and verify the RPC connection.

        Raises:
            ConnectionFailure: If the endpoint is unreachable after retries
        """
        self._status = ConnectionStatus.CONNECTING
        self.logger.info(f"Connecting to {self.network} at {self.rpc_url}")
        try:
            connected = await asyncio.wait_for(self.w3.is_connected(), timeout=self.timeout)
            if not connected:
                raise ConnectionFailure(f"RPC not reachable: {self.rpc_url}", venue=RPC_VENUE)
            self._chain_id = await asyncio.wait_for(self.w3.eth.chain_id, timeout=self.timeout)
        except ConnectionFailure as e:
            self._mark_error(e)
            raise
        except (asyncio.TimeoutError, OSError) as e:
            self._mark_error(e)
            raise ConnectionFailure(f"RPC connection failed: {e}", venue=RPC_VENUE) from e

        self._status = ConnectionStatus.CONNECTED
        self._last_error = None
        self.logger.info(f"Connected to {self.network} (chain id {self._chain_id})")

    def record_success(self) -> None:
        """A call over this connection succeeded; mark it healthy."""
        if self._status != ConnectionStatus.CONNECTED:
            self.logger.info(f"RPC connection healthy ({self.network})")
        self._status = ConnectionStatus.CONNECTED
        self._last_error = None

    def record_failure(self, error: Exception) -> None:
        """A call over this connection failed; mark it unhealthy."""
        if self._status != ConnectionStatus.ERROR:
            self.logger.warning(f"RPC connection unhealthy: {error}")
        self._mark_error(error)

    async def token_balance(self, token_address: str, owner: Optional[str] = None) -> int:
        """
        ERC-20 balance of `owner` (default: the configured wallet) in base units.

        Raises:
            ValueError: No owner given and no wallet configured
            ConnectionFailure: RPC error or timeout
        """
        owner = owner or self.wallet_address
        if owner is None:
            raise ValueError("No wallet configured for balance lookup")

        contract = self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(token_address),
            abi=ERC20_BALANCE_ABI,
        )
        try:
            balance = await asyncio.wait_for(
                contract.functions.balanceOf(AsyncWeb3.to_checksum_address(owner)).call(),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConnectionFailure(
                f"Balance of {token_address} timed out after {self.timeout}s",
                venue=RPC_VENUE,
                token=token_address,
            ) from e
        except Exception as e:
            raise ConnectionFailure(
                f"Balance of {token_address} unavailable: {e}",
                venue=RPC_VENUE,
                token=token_address,
            ) from e
        return int(balance)

    async def wallet_balances(self, tokens: Iterable[Token]) -> dict[str, Optional[Decimal]]:
        """Wallet balance per token symbol in whole units; None where the lookup failed."""
        balances: dict[str, Optional[Decimal]] = {}
        for token in tokens:
            try:
                raw = await self.token_balance(token.address)
            except ConnectionFailure as e:
                self.logger.warning(f"Balance lookup failed for {token.symbol}: {e.message}")
                balances[token.symbol] = None
                continue
            balances[token.symbol] = Decimal(raw) / (Decimal(10) ** token.decimals)
        return balances

    def _mark_error(self, error: Exception) -> None:
        self._status = ConnectionStatus.ERROR
        self._last_error = str(error)

    def describe(self) -> dict[str, Any]:
        """Connection status for telemetry and the CLI."""
        result: dict[str, Any] = {
            "connected": self._status == ConnectionStatus.CONNECTED,
            "network": self.network,
            "status": self._status.value,
        }
        if self._last_error:
            result["error"] = self._last_error
        if self._status == ConnectionStatus.CONNECTED:
            if self._chain_id is not None:
                result["chain_id"] = self._chain_id
            if self.wallet_address:
                result["wallet_address"] = self.wallet_address
        return result

    async def close(self) -> None:
        """Close the provider session."""
        if self._w3 is not None:
            await self._w3.provider.disconnect()
            self._w3 = None
        self._status = ConnectionStatus.DISCONNECTED
