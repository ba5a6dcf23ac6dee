"""Zcash listener for inbound deposits and outbound payments.

This module handles:
- Polling the bridge's shielded address for inbound transfers
- Extracting and validating the Solana destination from each memo
- Tracking confirmation depth and signalling deposits that are ready
- Sending shielded payouts and tracking their confirmations
"""
import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from ledger import Chain, Status, TransactionType, quantize_amount
from ledger.models import TRACKED_DEPOSIT_STATUSES
from orchestrator.errors import SettlementError
from orchestrator.events import EventKind, SettlementEvent
from rpc import RPCError, TransientRPCError
from .validation import ValidationError, encode_memo, validate_deposit

logger = logging.getLogger(__name__)

TRACKED_STATUSES = {s.value for s in TRACKED_DEPOSIT_STATUSES}

class PaymentError(SettlementError):
    """Raised when a shielded payout fails on the node."""
    pass

class PaymentTimeoutError(PaymentError):
    """Raised when a payout operation does not finish in time."""
    def __init__(self, operation_id: str, attempts: int):
        self.operation_id = operation_id
        self.attempts = attempts
        super().__init__(
            f"Payment operation {operation_id} did not complete after {attempts} checks"
        )

def _safe_amount(value) -> Optional[Decimal]:
    try:
        return quantize_amount(value)
    except (InvalidOperation, ValueError, TypeError):
        return None

class ZcashListener:
    """Watches the deposit address and sends payouts through zcashd."""

    def __init__(self, settings, rpc, ledger, queue: asyncio.Queue) -> None:
        """Initialize the listener.

        Args:
            settings: BridgeSettings
            rpc: ZcashRPC client
            ledger: Ledger store
            queue: Queue receiving SettlementEvents
        """
        self.settings = settings
        self.rpc = rpc
        self.ledger = ledger
        self.queue = queue
        self._rejected = set()

    async def poll(self) -> int:
        """Run one poll cycle over the deposit address.

        Returns:
            Number of deposits that became ready for settlement in this cycle

        Raises:
            TransientRPCError: If the node cannot be reached; nothing is recorded
        """
        transfers = await self.rpc.z_listreceivedbyaddress(self.settings.deposit_address, 1)

        ready = 0
        for transfer in transfers or []:
            if transfer.get('change'):
                continue
            if await self._process_transfer(transfer):
                ready += 1

        height = await self.rpc.getblockcount()
        await self.ledger.update_cursors(source_block=height)

        if ready:
            logger.info(f"{ready} deposit(s) ready for settlement")
        return ready

    async def _process_transfer(self, transfer: Dict[str, Any]) -> bool:
        txid = transfer['txid']
        confirmations = int(transfer.get('confirmations', 0))

        if txid in self._rejected:
            return False

        deposit = await self.ledger.get_deposit(txid)
        if deposit is None:
            deposit = await self._record_deposit(txid, transfer, confirmations)
            if deposit is None:
                return False
        elif deposit['status'] not in TRACKED_STATUSES:
            # Settled or failed deposits are never touched again
            return False
        elif deposit['confirmations'] != confirmations:
            await self.ledger.update_deposit_confirmations(txid, confirmations)

        if deposit['status'] != Status.PENDING.value or confirmations < self.settings.confirmations:
            return False

        # Only the caller that wins the transition signals the orchestrator
        if not await self.ledger.transition_deposit(txid, Status.PENDING, Status.CONFIRMED):
            return False

        logger.info(f"Deposit {txid} confirmed with {confirmations} confirmations")
        await self.queue.put(SettlementEvent(EventKind.DEPOSIT, txid))
        return True

    async def _record_deposit(self, txid: str, transfer: Dict[str, Any], confirmations: int):
        if await self.ledger.is_rejected(Chain.SOURCE, txid):
            self._rejected.add(txid)
            return None

        memo = transfer.get('memo')
        try:
            destination, amount = validate_deposit(
                memo,
                transfer.get('amount'),
                self.settings.min_deposit,
                self.settings.max_deposit
            )
        except ValidationError as e:
            logger.warning(f"Rejected deposit {txid}: {e}")
            await self.ledger.record_rejected(
                Chain.SOURCE,
                txid,
                str(e),
                amount=_safe_amount(transfer.get('amount')),
                payload=memo
            )
            self._rejected.add(txid)
            return None

        deposit = await self.ledger.insert_deposit(
            txid,
            amount,
            destination,
            memo=memo,
            confirmations=confirmations,
            from_address=transfer.get('from_address')
        )
        if deposit is None:
            # Recorded concurrently; use the stored row
            return await self.ledger.get_deposit(txid)

        logger.info(f"New deposit {txid}: {amount} ZEC for {destination}")
        await self.ledger.append_audit(
            TransactionType.DEPOSIT,
            txid,
            Status.PENDING,
            amount=amount,
            details={'destination_address': destination, 'confirmations': confirmations}
        )
        return deposit

    async def send_payment(self, destination_address: str, amount: Decimal, note: str) -> str:
        """Send a shielded payout and wait for the node to finish it.

        Args:
            destination_address: Zcash shielded address
            amount: Amount of ZEC to send
            note: Text placed in the encrypted memo

        Returns:
            The payout transaction id

        Raises:
            PaymentError: If the node rejects or fails the operation
            PaymentTimeoutError: If the operation result never arrives
        """
        recipients = [{
            'address': destination_address,
            'amount': float(quantize_amount(amount)),
            'memo': encode_memo(note),
        }]
        try:
            operation_id = await self.rpc.z_sendmany(
                self.settings.deposit_address,
                recipients,
                1,
                float(self.settings.payment_fee)
            )
        except RPCError as e:
            raise PaymentError(f"z_sendmany failed: {e}") from e

        logger.info(f"Payout of {amount} ZEC to {destination_address} started as {operation_id}")

        attempts = self.settings.payment_poll_attempts
        interval = float(self.settings.payment_poll_interval)
        for _ in range(attempts):
            await asyncio.sleep(interval)
            try:
                results = await self.rpc.z_getoperationresult([operation_id])
            except TransientRPCError as e:
                logger.warning(f"Checking payout {operation_id} failed, retrying: {e}")
                continue
            except RPCError as e:
                raise PaymentError(f"z_getoperationresult failed: {e}") from e

            if not results:
                continue

            try:
                result = results[0]
                if result.get('status') == 'failed':
                    message = (result.get('error') or {}).get('message', 'Unknown error')
                    raise PaymentError(message)
                txid = (result.get('result') or {}).get('txid')
            except (KeyError, IndexError, TypeError, AttributeError) as e:
                raise PaymentError(
                    f"Unreadable result for payment operation {operation_id}: {results!r}"
                ) from e

            if not txid:
                raise PaymentError(f"Payment operation {operation_id} returned no txid")
            return txid

        raise PaymentTimeoutError(operation_id, attempts)

    async def track_withdrawals(self) -> int:
        """Record confirmation depth of sent payouts.

        Returns:
            Number of withdrawals that reached the confirmation threshold
        """
        confirmed = 0
        for withdrawal in await self.ledger.list_withdrawals(Status.SENT):
            txid = withdrawal['reference_id']
            try:
                transaction = await self.rpc.gettransaction(txid)
            except TransientRPCError:
                raise
            except RPCError as e:
                logger.warning(f"Could not look up withdrawal {txid}: {e}")
                continue

            confirmations = int(transaction.get('confirmations', 0))
            if confirmations != withdrawal['confirmations']:
                await self.ledger.update_withdrawal_confirmations(txid, confirmations)

            if confirmations >= self.settings.confirmations:
                if await self.ledger.transition_withdrawal(txid, Status.SENT, Status.CONFIRMED):
                    logger.info(f"Withdrawal {txid} confirmed with {confirmations} confirmations")
                    confirmed += 1
        return confirmed

__all__ = ['ZcashListener', 'PaymentError', 'PaymentTimeoutError']
