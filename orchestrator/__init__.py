"""Bridge orchestrator driving deposits and burns to settlement.

This module handles:
- Consuming settlement-ready events from the listener and settlement client
- The CONFIRMED -> PROCESSING -> COMPLETED | FAILED state machine for both legs
- Fee computation and the reserve aggregate
- The global pause and the reconciliation sweep
- Read-only status and lookup views for operators
"""
import asyncio
import logging
from collections import deque
from decimal import Decimal
from typing import Any, Dict, List, Optional

from config import FatalConfigError
from ledger import Status, TransactionType, quantize_amount
from rpc import RPCError
from .errors import InsufficientReserveError, InvariantViolation, SettlementError
from .events import (
    BURN_FAILED,
    BURN_PROCESSED,
    DEPOSIT_FAILED,
    DEPOSIT_PROCESSED,
    INSUFFICIENT_RESERVES,
    LOW_RESERVE_RATIO,
    RESERVE_DEFICIT,
    EventKind,
    SettlementEvent,
    Signal,
)
from .scheduler import PeriodicTask, SingleFlight

logger = logging.getLogger(__name__)

LOW_RESERVE_RATIO_THRESHOLD = Decimal('1.1')
MAX_SIGNALS = 100

def compute_fee(amount: Decimal, fee_percentage: Decimal):
    """Split an amount into (fee, net). The fee is rounded down to 8 places."""
    amount = quantize_amount(amount)
    fee = quantize_amount(amount * Decimal(str(fee_percentage)) / Decimal('100'))
    return fee, amount - fee

def reserve_view(state: Dict[str, Any]) -> Dict[str, Any]:
    """Reserve breakdown derived from a bridge state row."""
    reserve = state['total_locked'] - state['total_withdrawn']
    outstanding = state['total_minted'] - state['total_burned']
    ratio = quantize_amount(reserve / outstanding) if outstanding > 0 else None
    return {
        'total_locked': state['total_locked'],
        'total_minted': state['total_minted'],
        'total_burned': state['total_burned'],
        'total_withdrawn': state['total_withdrawn'],
        'total_fees_collected': state['total_fees_collected'],
        'current_reserve': reserve,
        'outstanding_supply': outstanding,
        'reserve_ratio': ratio,
        'updated_at': state.get('updated_at'),
    }

class BridgeOrchestrator:
    """Settles confirmed deposits with mints and confirmed burns with payouts."""

    def __init__(self, settings, ledger, listener, settlement, queue: asyncio.Queue,
                 stop_event: Optional[asyncio.Event] = None) -> None:
        """Initialize the orchestrator.

        Args:
            settings: BridgeSettings
            ledger: Ledger store
            listener: ZcashListener, used for payouts
            settlement: SolanaSettlementClient, used for mints and admin instructions
            queue: Queue of SettlementEvents to consume
            stop_event: Event that ends the consumer loop
        """
        self.settings = settings
        self.ledger = ledger
        self.listener = listener
        self.settlement = settlement
        self.queue = queue
        self.stop_event = stop_event or asyncio.Event()

        self.in_flight = set()
        self.signals = deque(maxlen=MAX_SIGNALS)
        self.sweep_guard = SingleFlight('reconciliation sweep')
        self.last_sweep: Dict[str, int] = {}
        self.running = False

    def _signal(self, name: str, reference_id: Optional[str] = None, warning: bool = False, **details) -> Signal:
        signal = Signal(name, reference_id, details)
        self.signals.append(signal)
        log = logger.warning if warning else logger.info
        log(f"Signal {name} {reference_id or ''} {details}".rstrip())
        return signal

    async def _is_paused(self) -> bool:
        state = await self.ledger.get_bridge_state()
        return bool(state['paused'])

    # ------------------------------------------------------------------
    # Event consumption

    async def process_event(self, event: SettlementEvent) -> None:
        if event.kind == EventKind.DEPOSIT:
            row = await self.ledger.get_deposit(event.reference_id)
            handler = self.handle_confirmed_deposit
        else:
            row = await self.ledger.get_burn(event.reference_id)
            handler = self.handle_confirmed_burn

        if row is None:
            logger.warning(f"{event.kind.value} {event.reference_id} not found in ledger")
            return
        if row['status'] != Status.CONFIRMED.value:
            logger.debug(f"{event.kind.value} {event.reference_id} is {row['status']}, nothing to do")
            return
        await handler(row)

    async def run(self) -> None:
        """Consume settlement events until the stop event is set."""
        self.running = True
        logger.info("Orchestrator started")
        try:
            while not self.stop_event.is_set():
                try:
                    event = await asyncio.wait_for(self.queue.get(), timeout=1)
                except asyncio.TimeoutError:
                    continue

                try:
                    await self.process_event(event)
                except Exception as e:
                    logger.exception(f"Error settling {event.kind.value} {event.reference_id}: {e}")
                finally:
                    self.queue.task_done()
        finally:
            self.running = False
            logger.info("Orchestrator stopped")

    def sweep_task(self) -> PeriodicTask:
        return PeriodicTask(
            'reconciliation sweep',
            self._sweep,
            self.settings.reconcile_interval,
            self.stop_event,
            guard=self.sweep_guard
        )

    # ------------------------------------------------------------------
    # Deposit leg

    async def handle_confirmed_deposit(self, deposit: Dict[str, Any]) -> None:
        """Mint wZEC for a confirmed deposit, at most once."""
        reference_id = deposit['reference_id']
        if reference_id in self.in_flight:
            return
        self.in_flight.add(reference_id)
        try:
            await self._settle_deposit(deposit)
        finally:
            self.in_flight.discard(reference_id)

    async def _settle_deposit(self, deposit: Dict[str, Any]) -> None:
        reference_id = deposit['reference_id']
        if not await self.ledger.transition_deposit(reference_id, Status.CONFIRMED, Status.PROCESSING):
            logger.debug(f"Deposit {reference_id} already claimed")
            return

        if await self._is_paused():
            await self.ledger.transition_deposit(reference_id, Status.PROCESSING, Status.CONFIRMED)
            logger.info(f"Bridge paused, deferring deposit {reference_id}")
            return

        fee, net = compute_fee(deposit['amount'], self.settings.fee_percentage)
        recipient = deposit['destination_address']

        try:
            signature = await self.settlement.mint(recipient, net, reference_id)
        except FatalConfigError:
            await self.ledger.transition_deposit(reference_id, Status.PROCESSING, Status.CONFIRMED)
            raise
        except SettlementError as e:
            logger.error(f"Mint for deposit {reference_id} failed: {e}")
            await self.ledger.transition_deposit(
                reference_id, Status.PROCESSING, Status.FAILED, error_message=str(e)
            )
            await self.ledger.append_audit(
                TransactionType.MINT,
                reference_id,
                Status.FAILED,
                amount=net,
                fee=fee,
                details={'recipient': recipient, 'error': str(e)}
            )
            self._signal(DEPOSIT_FAILED, reference_id, warning=True, error=str(e))
            return

        try:
            await self.ledger.insert_mint(
                signature, net, recipient, reference_id, deposit_id=deposit.get('id')
            )
            await self.ledger.transition_deposit(reference_id, Status.PROCESSING, Status.COMPLETED)
            await self.update_reserves()
            await self.ledger.append_audit(
                TransactionType.MINT,
                signature,
                Status.COMPLETED,
                amount=net,
                fee=fee,
                details={'recipient': recipient, 'deposit_reference_id': reference_id}
            )
        except Exception:
            logger.critical(
                f"Minted {net} wZEC for deposit {reference_id} in {signature} "
                f"but could not record it; deposit left PROCESSING for manual reconciliation"
            )
            raise

        self._signal(
            DEPOSIT_PROCESSED, reference_id,
            signature=signature, amount=str(net), fee=str(fee), recipient=recipient
        )

    # ------------------------------------------------------------------
    # Burn leg

    async def handle_confirmed_burn(self, burn: Dict[str, Any]) -> None:
        """Pay out ZEC for a confirmed burn, at most once."""
        reference_id = burn['reference_id']
        if reference_id in self.in_flight:
            return
        self.in_flight.add(reference_id)
        try:
            await self._settle_burn(burn)
        finally:
            self.in_flight.discard(reference_id)

    async def _settle_burn(self, burn: Dict[str, Any]) -> None:
        reference_id = burn['reference_id']
        if not await self.ledger.transition_burn(reference_id, Status.CONFIRMED, Status.PROCESSING):
            logger.debug(f"Burn {reference_id} already claimed")
            return

        state = await self.ledger.get_bridge_state()
        if state['paused']:
            await self.ledger.transition_burn(reference_id, Status.PROCESSING, Status.CONFIRMED)
            logger.info(f"Bridge paused, deferring burn {reference_id}")
            return

        amount = quantize_amount(burn['amount'])
        current_reserve = state['total_locked'] - state['total_withdrawn']
        if amount > current_reserve:
            error = InsufficientReserveError(current_reserve, amount)
            logger.error(f"Burn {reference_id}: {error}")
            await self.ledger.transition_burn(
                reference_id, Status.PROCESSING, Status.FAILED, error_message=str(error)
            )
            await self.ledger.append_audit(
                TransactionType.WITHDRAWAL,
                reference_id,
                Status.FAILED,
                amount=amount,
                details={'error': str(error)}
            )
            self._signal(
                INSUFFICIENT_RESERVES, reference_id, warning=True,
                available=str(current_reserve), requested=str(amount)
            )
            return

        fee, net = compute_fee(amount, self.settings.fee_percentage)
        destination = burn['destination_address']
        note = f"Withdrawal from Solana: {reference_id[:20]}"

        try:
            txid = await self.listener.send_payment(destination, net, note)
        except SettlementError as e:
            logger.error(f"Payout for burn {reference_id} failed: {e}")
            await self.ledger.transition_burn(
                reference_id, Status.PROCESSING, Status.FAILED, error_message=str(e)
            )
            await self.ledger.append_audit(
                TransactionType.WITHDRAWAL,
                reference_id,
                Status.FAILED,
                amount=net,
                fee=fee,
                details={'destination_address': destination, 'error': str(e)}
            )
            self._signal(BURN_FAILED, reference_id, warning=True, error=str(e))
            return

        try:
            await self.ledger.insert_withdrawal(
                txid, net, destination, reference_id, burn_id=burn.get('id')
            )
            await self.ledger.transition_burn(reference_id, Status.PROCESSING, Status.COMPLETED)
            await self.update_reserves()
            await self.ledger.append_audit(
                TransactionType.WITHDRAWAL,
                txid,
                Status.SENT,
                amount=net,
                fee=fee,
                details={'destination_address': destination, 'burn_reference_id': reference_id}
            )
        except Exception:
            logger.critical(
                f"Sent {net} ZEC for burn {reference_id} in {txid} "
                f"but could not record it; burn left PROCESSING for manual reconciliation"
            )
            raise

        self._signal(
            BURN_PROCESSED, reference_id,
            txid=txid, amount=str(net), fee=str(fee), destination_address=destination
        )

    # ------------------------------------------------------------------
    # Recovery and accounting

    async def reconciliation_sweep(self) -> bool:
        """Re-drive CONFIRMED rows that never settled.

        Returns:
            False if a sweep was already running and this one was skipped
        """
        return await self.sweep_guard.run(self._sweep)

    async def _sweep(self) -> None:
        deposits = await self.ledger.list_deposits(Status.CONFIRMED, self.settings.confirmations)
        for deposit in deposits:
            await self.handle_confirmed_deposit(deposit)

        burns = await self.ledger.list_unsettled_burns()
        for burn in burns:
            await self.handle_confirmed_burn(burn)

        self.last_sweep = {'deposits': len(deposits), 'burns': len(burns)}
        if deposits or burns:
            logger.info(f"Reconciliation sweep re-drove {len(deposits)} deposit(s) and {len(burns)} burn(s)")

    async def update_reserves(self) -> Dict[str, Any]:
        """Recompute the reserve aggregate from settled rows and check backing.

        Returns:
            The reserve breakdown
        """
        totals = await self.ledger.compute_totals()
        fees = (
            (totals['total_locked'] - totals['total_minted'])
            + (totals['total_burned'] - totals['total_withdrawn'])
        )
        state = await self.ledger.update_reserves(
            totals['total_locked'],
            totals['total_minted'],
            totals['total_burned'],
            totals['total_withdrawn'],
            fees
        )
        view = reserve_view(state)

        for violation in self.check_backing(view['current_reserve'], view['outstanding_supply']):
            self._signal(
                violation.kind, warning=True,
                reserve=str(violation.reserve), outstanding=str(violation.outstanding)
            )
            if violation.kind == RESERVE_DEFICIT and self.settings.auto_pause_on_deficit and not state['paused']:
                logger.warning("Reserve deficit detected, pausing bridge")
                await self.pause(reason=str(violation))
        return view

    @staticmethod
    def check_backing(reserve: Decimal, outstanding: Decimal) -> List[InvariantViolation]:
        violations = []
        if reserve < outstanding:
            violations.append(InvariantViolation(RESERVE_DEFICIT, reserve, outstanding))
        if outstanding > 0 and reserve / outstanding < LOW_RESERVE_RATIO_THRESHOLD:
            violations.append(InvariantViolation(LOW_RESERVE_RATIO, reserve, outstanding))
        return violations

    # ------------------------------------------------------------------
    # Operator commands

    async def pause(self, reason: Optional[str] = None) -> Dict[str, Any]:
        await self.ledger.set_paused(True)
        await self.ledger.append_audit(
            TransactionType.PAUSE, 'bridge', 'PAUSED', details={'reason': reason}
        )
        logger.warning(f"Bridge paused{f': {reason}' if reason else ''}")
        if self.settlement.has_program:
            try:
                await self.settlement.pause_bridge()
            except (SettlementError, RPCError) as e:
                logger.error(f"Failed to pause bridge program: {e}")
        return await self.get_status()

    async def resume(self) -> Dict[str, Any]:
        await self.ledger.set_paused(False)
        await self.ledger.append_audit(TransactionType.RESUME, 'bridge', 'RESUMED')
        logger.info("Bridge resumed")
        if self.settlement.has_program:
            try:
                await self.settlement.resume_bridge()
            except (SettlementError, RPCError) as e:
                logger.error(f"Failed to resume bridge program: {e}")
        # A sweep already running may have deferred rows under the pause
        while not await self.reconciliation_sweep():
            await self.sweep_guard.wait()
        return await self.get_status()

    async def initialize(self, fee_bps: Optional[int] = None) -> str:
        """One-time initialization of the bridge program.

        Returns:
            The transaction signature
        """
        if fee_bps is None:
            fee_bps = self.settings.fee_basis_points
        signature = await self.settlement.initialize_bridge(fee_bps)
        await self.ledger.append_audit(
            TransactionType.INITIALIZE, signature, Status.COMPLETED,
            details={'fee_basis_points': fee_bps}
        )
        return signature

    # ------------------------------------------------------------------
    # Read-only views

    async def get_status(self) -> Dict[str, Any]:
        state = await self.ledger.get_bridge_state()
        counts = await self.ledger.get_status_counts()

        def summary(table):
            c = counts[table]
            return {
                'pending': c.get(Status.PENDING.value, 0) + c.get(Status.CONFIRMED.value, 0),
                'processing': c.get(Status.PROCESSING.value, 0),
                'completed': c.get(Status.COMPLETED.value, 0),
                'failed': c.get(Status.FAILED.value, 0),
            }

        deposits = summary('deposit')
        burns = summary('burn')
        processing = deposits['processing'] + burns['processing']

        return {
            'running': self.running,
            'paused': bool(state['paused']),
            'reserves': reserve_view(state),
            'deposits': deposits,
            'burns': burns,
            'withdrawals': counts['withdrawal'],
            'in_flight': len(self.in_flight),
            'stuck_processing': max(0, processing - len(self.in_flight)),
            'queue_size': self.queue.qsize(),
            'last_source_block': state['last_source_block'],
            'last_destination_slot': state['last_destination_slot'],
            'recent_signals': [s.to_dict() for s in list(self.signals)[-10:]],
        }

    async def get_reserves(self) -> Dict[str, Any]:
        return reserve_view(await self.ledger.get_bridge_state())

    def get_deposit_info(self) -> Dict[str, Any]:
        return {
            'deposit_address': self.settings.deposit_address,
            'network': self.settings.zcash_network,
            'min_deposit': self.settings.min_deposit,
            'max_deposit': self.settings.max_deposit,
            'fee_percentage': self.settings.fee_percentage,
            'confirmations': self.settings.confirmations,
            'instructions': 'Put your Solana wallet address in the memo of a shielded transfer',
        }

    async def lookup(self, reference_id: str) -> Optional[Dict[str, Any]]:
        return await self.ledger.lookup(reference_id)

    async def history(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        return await self.ledger.history(limit, offset)

    async def list_rejected(self, resolved: bool = False) -> List[Dict[str, Any]]:
        """Transfers that failed validation and were never settled."""
        return await self.ledger.list_rejected(resolved)

__all__ = [
    'BridgeOrchestrator',
    'compute_fee',
    'reserve_view',
    'SettlementError',
    'InsufficientReserveError',
    'InvariantViolation',
    'SettlementEvent',
    'EventKind',
    'Signal',
    'SingleFlight',
    'PeriodicTask',
]
