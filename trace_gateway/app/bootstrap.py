"""
bootstrap.py - One-time chain initialisation per process.

  UNINITIALIZED -> INITIALIZING -> READY | DEGRADED

ensure_ready() is awaited at the start of every request. READY and
DEGRADED both return immediately; DEGRADED is permanent until the process
restarts, so an outage costs one failed connection attempt, not one per request.

Nothing escapes from initialisation: a missing secret, a bad key or an
unreachable RPC endpoint all end in DEGRADED with the reason logged.
"""
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from .config import LOW_BALANCE_ETH, NETWORK_NAME, load_secrets, rpc_url
from .ledger.client import ChainClient
from .ledger.submitter import TransactionSubmitter
from .store.adapter import DocumentStore, get_store

log = logging.getLogger("trace.bootstrap")


class Phase(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING  = "initializing"
    READY         = "ready"
    DEGRADED      = "degraded"


@dataclass(frozen=True)
class BootstrapState:
    phase: Phase = Phase.UNINITIALIZED
    client: Optional[ChainClient] = None
    submitter: Optional[TransactionSubmitter] = None
    reason: Optional[str] = None

    @property
    def ready(self) -> bool:
        return self.phase is Phase.READY

    @property
    def settled(self) -> bool:
        return self.phase in (Phase.READY, Phase.DEGRADED)


class ChainContext:
    """Holds the process's BootstrapState and performs the transition once."""

    def __init__(self,
                 secrets_loader: Callable[[], dict] = load_secrets,
                 connector: Callable[..., ChainClient] = ChainClient.connect):
        self._secrets_loader = secrets_loader
        self._connector = connector
        self._lock = asyncio.Lock()
        self.state = BootstrapState()

    @property
    def ready(self) -> bool:
        return self.state.ready

    @property
    def client(self) -> Optional[ChainClient]:
        return self.state.client

    @property
    def submitter(self) -> Optional[TransactionSubmitter]:
        return self.state.submitter

    async def ensure_ready(self) -> BootstrapState:
        if self.state.settled:
            return self.state
        async with self._lock:
            if not self.state.settled:
                self.state = BootstrapState(phase=Phase.INITIALIZING)
                self.state = await self._initialize()
        return self.state

    async def _initialize(self) -> BootstrapState:
        log.info("initializing blockchain configuration")
        loop = asyncio.get_running_loop()
        try:
            secrets = await loop.run_in_executor(None, self._secrets_loader)
            client = self._connector(
                rpc_url(secrets["INFURA_API_KEY"]),
                secrets["PRIVATE_KEY"],
                secrets["CONTRACT_ADDRESS"],
            )
            network_id = await client.network_id()
            log.info("connected to network id=%s account=%s", network_id, client.address)

            balance_eth = Decimal(str(client.from_wei(await client.account_balance(), "ether")))
            log.info("account balance: %s ETH", balance_eth)
            if balance_eth < LOW_BALANCE_ETH:
                log.warning("low account balance (%s ETH), transactions may fail", balance_eth)

        except Exception as exc:
            log.error("failed to initialize blockchain, continuing without it: %s", exc)
            return BootstrapState(phase=Phase.DEGRADED, reason=str(exc))

        log.info("blockchain initialized contract=%s", client.contract_address)
        return BootstrapState(
            phase=Phase.READY, client=client, submitter=TransactionSubmitter(client),
        )

    def describe(self) -> dict:
        client = self.state.client
        return {
            "connected": self.state.ready,
            "phase": self.state.phase.value,
            "network": NETWORK_NAME,
            "contract": client.contract_address if client else "not-configured",
            "account": client.address if client else "not-configured",
            "reason": self.state.reason,
        }


@dataclass
class ServiceContext:
    """Process-scoped handles passed to every request handler."""
    chain: ChainContext
    store: DocumentStore


def create_context(chain: Optional[ChainContext] = None,
                   store: Optional[DocumentStore] = None) -> ServiceContext:
    return ServiceContext(chain=chain or ChainContext(), store=store or get_store())
