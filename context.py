"""Service wiring for the bridge.

Everything the bridge needs is built once into a ``BridgeContext`` and passed
explicitly to the API and the background loops.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from config import BridgeSettings
from database import init_db, close as db_close
from ledger import LedgerStore
from listener import ZcashListener
from orchestrator import BridgeOrchestrator, PeriodicTask
from rpc import SolanaRPC, ZcashRPC
from settlement import SolanaSettlementClient

logger = logging.getLogger(__name__)

@dataclass
class BridgeContext:
    settings: BridgeSettings
    ledger: object
    zcash: object
    solana: object
    listener: ZcashListener
    settlement: SolanaSettlementClient
    orchestrator: BridgeOrchestrator
    queue: asyncio.Queue
    stop_event: asyncio.Event
    pool: object = None
    tasks: List[asyncio.Task] = field(default_factory=list)

    def loops(self) -> List[PeriodicTask]:
        interval = self.settings.poll_interval
        return [
            PeriodicTask('deposit poll', self.listener.poll, interval, self.stop_event),
            PeriodicTask('burn poll', self.settlement.poll_burns, interval, self.stop_event),
            PeriodicTask('withdrawal tracking', self.listener.track_withdrawals, interval, self.stop_event),
            self.orchestrator.sweep_task(),
        ]

    def start(self) -> None:
        """Start the orchestrator consumer and every periodic loop."""
        self.stop_event.clear()
        self.tasks = [asyncio.create_task(self.orchestrator.run(), name='orchestrator')]
        for loop in self.loops():
            self.tasks.append(asyncio.create_task(loop.run(), name=loop.name))
        logger.info(f"Started {len(self.tasks)} bridge tasks")

    async def stop(self) -> None:
        """Stop scheduling new cycles and wait for running ones to finish."""
        self.stop_event.set()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
            self.tasks = []
        if self.pool is not None:
            logger.info("Closing database connections...")
            await db_close(self.pool)
            self.pool = None
        logger.info("Bridge stopped")

def assemble(settings: BridgeSettings, ledger, zcash, solana, keypair=None, pool=None) -> BridgeContext:
    """Wire the components around an existing ledger and RPC clients."""
    queue = asyncio.Queue()
    stop_event = asyncio.Event()
    listener = ZcashListener(settings, zcash, ledger, queue)
    settlement = SolanaSettlementClient(settings, solana, ledger, queue, keypair=keypair)
    orchestrator = BridgeOrchestrator(settings, ledger, listener, settlement, queue, stop_event)
    return BridgeContext(
        settings=settings,
        ledger=ledger,
        zcash=zcash,
        solana=solana,
        listener=listener,
        settlement=settlement,
        orchestrator=orchestrator,
        queue=queue,
        stop_event=stop_event,
        pool=pool,
    )

async def build_context(settings: BridgeSettings, ledger=None) -> BridgeContext:
    """Connect to the database and both chains and wire the bridge.

    Raises:
        FatalConfigError: If the authority keypair or an address is invalid
        DatabaseError: If the database cannot be initialized
    """
    pool = None
    if ledger is None:
        logger.info("Initializing database...")
        pool = await init_db(settings.db_url)
        ledger = LedgerStore(pool)

    zcash = ZcashRPC(settings.zcash_rpc_url, settings.zcash_rpc_user, settings.zcash_rpc_password)
    solana = SolanaRPC(settings.solana_rpc_url)
    try:
        context = assemble(settings, ledger, zcash, solana, pool=pool)
    except Exception:
        if pool is not None:
            await db_close(pool)
        raise

    logger.info(f"Bridge configured: {settings.describe()}")
    return context

__all__ = ['BridgeContext', 'assemble', 'build_context']
