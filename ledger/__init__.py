"""Ledger module for the durable record of bridge activity.

This module handles:
- Deposits, mints, burns and withdrawals keyed by their chain reference id
- Compare-and-set status transitions, the authoritative at-most-once guard
- The singleton bridge state (reserve aggregate, chain cursors, pause flag)
- The append-only audit log and the rejected-transfer recovery queue

Two backends share one interface: ``LedgerStore`` on an asyncpg pool and
``MemoryLedgerStore`` kept in process memory.
"""
import json
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from asyncpg.pool import Pool
from asyncpg.exceptions import PostgresError

from database.exceptions import DatabaseError
from .base import LedgerBase
from .models import (
    Chain,
    InvalidTransitionError,
    Status,
    TRACKED_DEPOSIT_STATUSES,
    TransactionType,
    WITHDRAWN_STATUSES,
    check_transition,
    from_base_units,
    quantize_amount,
    to_base_units,
)

logger = logging.getLogger(__name__)

STATUS_TABLES = ('deposit', 'mint', 'burn', 'withdrawal')

def _value(status) -> str:
    return Status(status).value

def _audit_row(record) -> Dict[str, Any]:
    row = dict(record)
    if isinstance(row.get('details'), str):
        row['details'] = json.loads(row['details'])
    return row

class LedgerStore(LedgerBase):
    """Ledger backed by PostgreSQL/CockroachDB through an asyncpg pool."""

    def __init__(self, pool: Pool) -> None:
        """Initialize the ledger store.

        Args:
            pool: Database connection pool
        """
        self.pool = pool

    async def _fetchrow(self, query: str, *args) -> Optional[Dict[str, Any]]:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, *args)
                return dict(row) if row else None
        except PostgresError as e:
            logger.error(f"Ledger query failed: {e}")
            raise DatabaseError(f"Ledger query failed: {e}")

    async def _fetch(self, query: str, *args) -> List[Dict[str, Any]]:
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, *args)
                return [dict(row) for row in rows]
        except PostgresError as e:
            logger.error(f"Ledger query failed: {e}")
            raise DatabaseError(f"Ledger query failed: {e}")

    # ------------------------------------------------------------------
    # Status transitions

    async def transition(
        self,
        table: str,
        reference_id: str,
        from_status: Status,
        to_status: Status,
        error_message: Optional[str] = None
    ) -> bool:
        """Move a row from ``from_status`` to ``to_status`` atomically.

        Returns:
            True if this call performed the transition, False if the row was
            not in ``from_status`` (someone else won, or it never existed).

        Raises:
            InvalidTransitionError: If the transition is not allowed for the table
        """
        check_transition(table, from_status, to_status)

        row = await self._fetchrow(
            f'''
            UPDATE {table}
            SET status = $3,
                error_message = COALESCE($4, error_message),
                updated_at = now()
            WHERE reference_id = $1 AND status = $2
            RETURNING id
            ''',
            reference_id,
            _value(from_status),
            _value(to_status),
            error_message
        )
        if row:
            logger.debug(
                f"{table} {reference_id}: {_value(from_status)} -> {_value(to_status)}"
            )
        return row is not None

    async def transition_deposit(self, reference_id, from_status, to_status, error_message=None) -> bool:
        return await self.transition('deposit', reference_id, from_status, to_status, error_message)

    async def transition_burn(self, reference_id, from_status, to_status, error_message=None) -> bool:
        return await self.transition('burn', reference_id, from_status, to_status, error_message)

    async def transition_withdrawal(self, reference_id, from_status, to_status, error_message=None) -> bool:
        return await self.transition('withdrawal', reference_id, from_status, to_status, error_message)

    # ------------------------------------------------------------------
    # Deposits

    async def insert_deposit(
        self,
        reference_id: str,
        amount: Decimal,
        destination_address: str,
        memo: Optional[str] = None,
        confirmations: int = 0,
        from_address: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Record a new PENDING deposit.

        Returns:
            The new row, or None if the reference id is already tracked
        """
        return await self._fetchrow(
            '''
            INSERT INTO deposit (
                reference_id, amount, from_address, destination_address,
                memo, confirmations, status
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (reference_id) DO NOTHING
            RETURNING *
            ''',
            reference_id,
            quantize_amount(amount),
            from_address,
            destination_address,
            memo,
            confirmations,
            Status.PENDING.value
        )

    async def get_deposit(self, reference_id: str) -> Optional[Dict[str, Any]]:
        return await self._fetchrow('SELECT * FROM deposit WHERE reference_id = $1', reference_id)

    async def update_deposit_confirmations(self, reference_id: str, confirmations: int) -> bool:
        """Store the observed depth of a deposit that has not settled yet.

        Returns:
            True if the row was updated
        """
        row = await self._fetchrow(
            '''
            UPDATE deposit
            SET confirmations = $2, updated_at = now()
            WHERE reference_id = $1 AND confirmations <> $2
              AND status = ANY($3::text[])
            RETURNING id
            ''',
            reference_id,
            confirmations,
            [_value(s) for s in TRACKED_DEPOSIT_STATUSES]
        )
        return row is not None

    async def list_deposits(self, status: Status, min_confirmations: int = 0) -> List[Dict[str, Any]]:
        """List deposits in ``status`` with at least ``min_confirmations``, oldest first."""
        return await self._fetch(
            '''
            SELECT * FROM deposit
            WHERE status = $1 AND confirmations >= $2
            ORDER BY created_at
            ''',
            _value(status),
            min_confirmations
        )

    # ------------------------------------------------------------------
    # Mints

    async def insert_mint(
        self,
        reference_id: str,
        amount: Decimal,
        recipient: str,
        deposit_reference_id: str,
        deposit_id=None,
        status: Status = Status.COMPLETED
    ) -> Optional[Dict[str, Any]]:
        """Record the mint that settled a deposit.

        Returns:
            The new row, or None if the signature or the deposit already has a mint
        """
        return await self._fetchrow(
            '''
            INSERT INTO mint (
                reference_id, amount, recipient, deposit_reference_id,
                deposit_id, status
            ) VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT DO NOTHING
            RETURNING *
            ''',
            reference_id,
            quantize_amount(amount),
            recipient,
            deposit_reference_id,
            deposit_id,
            _value(status)
        )

    async def get_mint(self, reference_id: str) -> Optional[Dict[str, Any]]:
        return await self._fetchrow('SELECT * FROM mint WHERE reference_id = $1', reference_id)

    async def get_mint_by_deposit(self, deposit_reference_id: str) -> Optional[Dict[str, Any]]:
        return await self._fetchrow(
            'SELECT * FROM mint WHERE deposit_reference_id = $1',
            deposit_reference_id
        )

    # ------------------------------------------------------------------
    # Burns

    async def insert_burn(
        self,
        reference_id: str,
        amount: Decimal,
        sender: str,
        destination_address: str,
        memo: Optional[str] = None,
        status: Status = Status.CONFIRMED
    ) -> Optional[Dict[str, Any]]:
        """Record an observed burn. Burns are final on observation and start CONFIRMED.

        Returns:
            The new row, or None if the signature is already tracked
        """
        return await self._fetchrow(
            '''
            INSERT INTO burn (
                reference_id, amount, sender, destination_address, memo, status
            ) VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (reference_id) DO NOTHING
            RETURNING *
            ''',
            reference_id,
            quantize_amount(amount),
            sender,
            destination_address,
            memo,
            _value(status)
        )

    async def get_burn(self, reference_id: str) -> Optional[Dict[str, Any]]:
        return await self._fetchrow('SELECT * FROM burn WHERE reference_id = $1', reference_id)

    async def list_unsettled_burns(self) -> List[Dict[str, Any]]:
        """CONFIRMED burns that have no withdrawal yet, oldest first."""
        return await self._fetch(
            '''
            SELECT b.* FROM burn b
            LEFT JOIN withdrawal w ON w.burn_reference_id = b.reference_id
            WHERE b.status = $1 AND w.id IS NULL
            ORDER BY b.created_at
            ''',
            Status.CONFIRMED.value
        )

    # ------------------------------------------------------------------
    # Withdrawals

    async def insert_withdrawal(
        self,
        reference_id: str,
        amount: Decimal,
        recipient: str,
        burn_reference_id: str,
        burn_id=None,
        status: Status = Status.SENT
    ) -> Optional[Dict[str, Any]]:
        """Record the payout that settled a burn.

        Returns:
            The new row, or None if the txid or the burn already has a withdrawal
        """
        return await self._fetchrow(
            '''
            INSERT INTO withdrawal (
                reference_id, amount, recipient, burn_reference_id, burn_id, status
            ) VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT DO NOTHING
            RETURNING *
            ''',
            reference_id,
            quantize_amount(amount),
            recipient,
            burn_reference_id,
            burn_id,
            _value(status)
        )

    async def get_withdrawal(self, reference_id: str) -> Optional[Dict[str, Any]]:
        return await self._fetchrow('SELECT * FROM withdrawal WHERE reference_id = $1', reference_id)

    async def get_withdrawal_by_burn(self, burn_reference_id: str) -> Optional[Dict[str, Any]]:
        return await self._fetchrow(
            'SELECT * FROM withdrawal WHERE burn_reference_id = $1',
            burn_reference_id
        )

    async def list_withdrawals(self, status: Status) -> List[Dict[str, Any]]:
        return await self._fetch(
            'SELECT * FROM withdrawal WHERE status = $1 ORDER BY created_at',
            _value(status)
        )

    async def update_withdrawal_confirmations(self, reference_id: str, confirmations: int) -> None:
        await self._fetchrow(
            '''
            UPDATE withdrawal
            SET confirmations = $2, updated_at = now()
            WHERE reference_id = $1 AND confirmations <> $2
            RETURNING id
            ''',
            reference_id,
            confirmations
        )

    # ------------------------------------------------------------------
    # Bridge state

    async def get_bridge_state(self) -> Dict[str, Any]:
        row = await self._fetchrow('SELECT * FROM bridge_state WHERE id = 1')
        if row is None:
            raise DatabaseError("Bridge state row is missing")
        return row

    async def compute_totals(self) -> Dict[str, Decimal]:
        """Sum settled amounts from the per-leg tables."""
        row = await self._fetchrow(
            '''
            SELECT
                (SELECT COALESCE(SUM(amount), 0) FROM deposit WHERE status = $1) AS total_locked,
                (SELECT COALESCE(SUM(amount), 0) FROM mint WHERE status = $1) AS total_minted,
                (SELECT COALESCE(SUM(amount), 0) FROM burn WHERE status = $1) AS total_burned,
                (SELECT COALESCE(SUM(amount), 0) FROM withdrawal
                 WHERE status = ANY($2::text[])) AS total_withdrawn
            ''',
            Status.COMPLETED.value,
            [_value(s) for s in WITHDRAWN_STATUSES]
        )
        return {key: quantize_amount(value) for key, value in row.items()}

    async def update_reserves(
        self,
        total_locked: Decimal,
        total_minted: Decimal,
        total_burned: Decimal,
        total_withdrawn: Decimal,
        total_fees_collected: Decimal
    ) -> Dict[str, Any]:
        return await self._fetchrow(
            '''
            UPDATE bridge_state
            SET total_locked = $1,
                total_minted = $2,
                total_burned = $3,
                total_withdrawn = $4,
                total_fees_collected = $5,
                updated_at = now()
            WHERE id = 1
            RETURNING *
            ''',
            total_locked,
            total_minted,
            total_burned,
            total_withdrawn,
            total_fees_collected
        )

    async def set_paused(self, paused: bool) -> None:
        await self._fetchrow(
            'UPDATE bridge_state SET paused = $1, updated_at = now() WHERE id = 1 RETURNING id',
            paused
        )

    async def update_cursors(
        self,
        source_block: Optional[int] = None,
        destination_slot: Optional[int] = None
    ) -> None:
        """Advance the chain cursors. Cursors never move backwards."""
        await self._fetchrow(
            '''
            UPDATE bridge_state
            SET last_source_block = GREATEST(last_source_block, COALESCE($1, last_source_block)),
                last_destination_slot = GREATEST(last_destination_slot, COALESCE($2, last_destination_slot)),
                updated_at = now()
            WHERE id = 1
            RETURNING id
            ''',
            source_block,
            destination_slot
        )

    # ------------------------------------------------------------------
    # Audit log

    async def append_audit(
        self,
        transaction_type: TransactionType,
        reference_id: str,
        status: str,
        amount: Decimal = Decimal('0'),
        fee: Decimal = Decimal('0'),
        details: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        row = await self._fetchrow(
            '''
            INSERT INTO transaction_log (
                transaction_type, reference_id, amount, fee, status, details
            ) VALUES ($1, $2, $3, $4, $5, $6::jsonb)
            RETURNING *
            ''',
            TransactionType(transaction_type).value,
            reference_id,
            quantize_amount(amount),
            quantize_amount(fee),
            str(getattr(status, 'value', status)),
            json.dumps(details or {}, default=str)
        )
        return _audit_row(row)

    async def list_audit(self, reference_ids: Iterable[str]) -> List[Dict[str, Any]]:
        rows = await self._fetch(
            '''
            SELECT * FROM transaction_log
            WHERE reference_id = ANY($1::text[])
            ORDER BY created_at
            ''',
            list(reference_ids)
        )
        return [_audit_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Rejected transfers

    async def record_rejected(
        self,
        chain: Chain,
        reference_id: str,
        reason: str,
        amount: Optional[Decimal] = None,
        payload: Optional[str] = None
    ) -> bool:
        """Queue a transfer that failed validation for manual recovery.

        Returns:
            True if this is the first time the transfer was rejected
        """
        row = await self._fetchrow(
            '''
            INSERT INTO rejected_transfer (chain, reference_id, amount, payload, reason)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (chain, reference_id) DO NOTHING
            RETURNING id
            ''',
            Chain(chain).value,
            reference_id,
            quantize_amount(amount) if amount is not None else None,
            payload,
            reason
        )
        return row is not None

    async def is_rejected(self, chain: Chain, reference_id: str) -> bool:
        row = await self._fetchrow(
            'SELECT id FROM rejected_transfer WHERE chain = $1 AND reference_id = $2',
            Chain(chain).value,
            reference_id
        )
        return row is not None

    async def list_rejected(self, resolved: bool = False) -> List[Dict[str, Any]]:
        return await self._fetch(
            'SELECT * FROM rejected_transfer WHERE resolved = $1 ORDER BY created_at',
            resolved
        )

    # ------------------------------------------------------------------
    # Views

    async def count_by_status(self, table: str) -> Dict[str, int]:
        if table not in STATUS_TABLES:
            raise ValueError(f"Unknown ledger table: {table}")
        rows = await self._fetch(f'SELECT status, COUNT(*) AS count FROM {table} GROUP BY status')
        return {row['status']: row['count'] for row in rows}

    async def history(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        """Deposits and burns, newest first."""
        return await self._fetch(
            '''
            SELECT * FROM (
                SELECT 'DEPOSIT' AS transaction_type, reference_id, amount,
                       destination_address, status, error_message, created_at
                FROM deposit
                UNION ALL
                SELECT 'BURN' AS transaction_type, reference_id, amount,
                       destination_address, status, error_message, created_at
                FROM burn
            ) AS activity
            ORDER BY created_at DESC
            LIMIT $1 OFFSET $2
            ''',
            limit,
            offset
        )

from .memory import MemoryLedgerStore

__all__ = [
    'LedgerStore',
    'MemoryLedgerStore',
    'Status',
    'TransactionType',
    'Chain',
    'InvalidTransitionError',
    'quantize_amount',
    'to_base_units',
    'from_base_units',
]
