"""Process-local ledger backend.

Keeps every table in dictionaries keyed by reference id. Used by the test
suite and for dry runs without a database. Methods never await while
mutating, so each call is atomic with respect to other tasks.
"""
import copy
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from .base import LedgerBase
from .models import (
    Chain,
    Status,
    TRACKED_DEPOSIT_STATUSES,
    TransactionType,
    WITHDRAWN_STATUSES,
    check_transition,
    quantize_amount,
)

logger = logging.getLogger(__name__)

ZERO = Decimal('0')

def _now() -> datetime:
    return datetime.now(timezone.utc)

class MemoryLedgerStore(LedgerBase):
    """In-memory ledger with the same interface as ``LedgerStore``."""

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {
            'deposit': {},
            'mint': {},
            'burn': {},
            'withdrawal': {},
        }
        self.audit_log: List[Dict[str, Any]] = []
        self.rejected: Dict[tuple, Dict[str, Any]] = {}
        # Insertion order breaks created_at ties
        self._order: Dict[tuple, int] = {}
        self.bridge_state: Dict[str, Any] = {
            'id': 1,
            'total_locked': ZERO,
            'total_minted': ZERO,
            'total_burned': ZERO,
            'total_withdrawn': ZERO,
            'total_fees_collected': ZERO,
            'last_source_block': 0,
            'last_destination_slot': 0,
            'paused': False,
            'updated_at': _now(),
        }

    def _get(self, table: str, reference_id: str) -> Optional[Dict[str, Any]]:
        row = self.tables[table].get(reference_id)
        return copy.deepcopy(row) if row else None

    def _find(self, table: str, column: str, value: str) -> Optional[Dict[str, Any]]:
        for row in self.tables[table].values():
            if row[column] == value:
                return copy.deepcopy(row)
        return None

    def _insert(self, table: str, row: Dict[str, Any], unique: Iterable[str] = ()) -> Optional[Dict[str, Any]]:
        rows = self.tables[table]
        if row['reference_id'] in rows:
            return None
        for column in unique:
            if any(existing[column] == row[column] for existing in rows.values()):
                return None
        now = _now()
        row.update({
            'id': uuid4(),
            'error_message': None,
            'created_at': now,
            'updated_at': now,
        })
        rows[row['reference_id']] = row
        self._order[(table, row['reference_id'])] = len(self._order)
        return copy.deepcopy(row)

    def _list(self, table: str, predicate) -> List[Dict[str, Any]]:
        rows = [row for row in self.tables[table].values() if predicate(row)]
        rows.sort(key=lambda row: self._sort_key(table, row))
        return [copy.deepcopy(row) for row in rows]

    def _sort_key(self, table: str, row: Dict[str, Any]):
        return row['created_at'], self._order[(table, row['reference_id'])]

    # Status transitions

    async def transition(
        self,
        table: str,
        reference_id: str,
        from_status: Status,
        to_status: Status,
        error_message: Optional[str] = None
    ) -> bool:
        check_transition(table, from_status, to_status)

        row = self.tables[table].get(reference_id)
        if row is None or row['status'] != Status(from_status).value:
            return False
        row['status'] = Status(to_status).value
        if error_message is not None:
            row['error_message'] = error_message
        row['updated_at'] = _now()
        return True

    async def transition_deposit(self, reference_id, from_status, to_status, error_message=None) -> bool:
        return await self.transition('deposit', reference_id, from_status, to_status, error_message)

    async def transition_burn(self, reference_id, from_status, to_status, error_message=None) -> bool:
        return await self.transition('burn', reference_id, from_status, to_status, error_message)

    async def transition_withdrawal(self, reference_id, from_status, to_status, error_message=None) -> bool:
        return await self.transition('withdrawal', reference_id, from_status, to_status, error_message)

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
        return self._insert('deposit', {
            'reference_id': reference_id,
            'amount': quantize_amount(amount),
            'from_address': from_address,
            'destination_address': destination_address,
            'memo': memo,
            'confirmations': confirmations,
            'status': Status.PENDING.value,
        })

    async def get_deposit(self, reference_id: str) -> Optional[Dict[str, Any]]:
        return self._get('deposit', reference_id)

    async def update_deposit_confirmations(self, reference_id: str, confirmations: int) -> bool:
        row = self.tables['deposit'].get(reference_id)
        if row is None or row['confirmations'] == confirmations:
            return False
        if row['status'] not in {s.value for s in TRACKED_DEPOSIT_STATUSES}:
            return False
        row['confirmations'] = confirmations
        row['updated_at'] = _now()
        return True

    async def list_deposits(self, status: Status, min_confirmations: int = 0) -> List[Dict[str, Any]]:
        status = Status(status).value
        return self._list(
            'deposit',
            lambda row: row['status'] == status and row['confirmations'] >= min_confirmations
        )

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
        return self._insert('mint', {
            'reference_id': reference_id,
            'amount': quantize_amount(amount),
            'recipient': recipient,
            'deposit_reference_id': deposit_reference_id,
            'deposit_id': deposit_id,
            'status': Status(status).value,
        }, unique=('deposit_reference_id',))

    async def get_mint(self, reference_id: str) -> Optional[Dict[str, Any]]:
        return self._get('mint', reference_id)

    async def get_mint_by_deposit(self, deposit_reference_id: str) -> Optional[Dict[str, Any]]:
        return self._find('mint', 'deposit_reference_id', deposit_reference_id)

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
        return self._insert('burn', {
            'reference_id': reference_id,
            'amount': quantize_amount(amount),
            'sender': sender,
            'destination_address': destination_address,
            'memo': memo,
            'status': Status(status).value,
        })

    async def get_burn(self, reference_id: str) -> Optional[Dict[str, Any]]:
        return self._get('burn', reference_id)

    async def list_unsettled_burns(self) -> List[Dict[str, Any]]:
        settled = {row['burn_reference_id'] for row in self.tables['withdrawal'].values()}
        return self._list(
            'burn',
            lambda row: row['status'] == Status.CONFIRMED.value and row['reference_id'] not in settled
        )

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
        return self._insert('withdrawal', {
            'reference_id': reference_id,
            'amount': quantize_amount(amount),
            'recipient': recipient,
            'burn_reference_id': burn_reference_id,
            'burn_id': burn_id,
            'confirmations': 0,
            'status': Status(status).value,
        }, unique=('burn_reference_id',))

    async def get_withdrawal(self, reference_id: str) -> Optional[Dict[str, Any]]:
        return self._get('withdrawal', reference_id)

    async def get_withdrawal_by_burn(self, burn_reference_id: str) -> Optional[Dict[str, Any]]:
        return self._find('withdrawal', 'burn_reference_id', burn_reference_id)

    async def list_withdrawals(self, status: Status) -> List[Dict[str, Any]]:
        status = Status(status).value
        return self._list('withdrawal', lambda row: row['status'] == status)

    async def update_withdrawal_confirmations(self, reference_id: str, confirmations: int) -> None:
        row = self.tables['withdrawal'].get(reference_id)
        if row and row['confirmations'] != confirmations:
            row['confirmations'] = confirmations
            row['updated_at'] = _now()

    # Bridge state

    async def get_bridge_state(self) -> Dict[str, Any]:
        return dict(self.bridge_state)

    async def compute_totals(self) -> Dict[str, Decimal]:
        def total(table, statuses):
            values = {Status(s).value for s in statuses}
            return quantize_amount(sum(
                (row['amount'] for row in self.tables[table].values() if row['status'] in values),
                ZERO
            ))

        return {
            'total_locked': total('deposit', (Status.COMPLETED,)),
            'total_minted': total('mint', (Status.COMPLETED,)),
            'total_burned': total('burn', (Status.COMPLETED,)),
            'total_withdrawn': total('withdrawal', WITHDRAWN_STATUSES),
        }

    async def update_reserves(
        self,
        total_locked: Decimal,
        total_minted: Decimal,
        total_burned: Decimal,
        total_withdrawn: Decimal,
        total_fees_collected: Decimal
    ) -> Dict[str, Any]:
        self.bridge_state.update({
            'total_locked': total_locked,
            'total_minted': total_minted,
            'total_burned': total_burned,
            'total_withdrawn': total_withdrawn,
            'total_fees_collected': total_fees_collected,
            'updated_at': _now(),
        })
        return dict(self.bridge_state)

    async def set_paused(self, paused: bool) -> None:
        self.bridge_state['paused'] = paused
        self.bridge_state['updated_at'] = _now()

    async def update_cursors(
        self,
        source_block: Optional[int] = None,
        destination_slot: Optional[int] = None
    ) -> None:
        if source_block is not None:
            self.bridge_state['last_source_block'] = max(
                self.bridge_state['last_source_block'], source_block
            )
        if destination_slot is not None:
            self.bridge_state['last_destination_slot'] = max(
                self.bridge_state['last_destination_slot'], destination_slot
            )
        self.bridge_state['updated_at'] = _now()

    # Audit log

    async def append_audit(
        self,
        transaction_type: TransactionType,
        reference_id: str,
        status: str,
        amount: Decimal = ZERO,
        fee: Decimal = ZERO,
        details: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        entry = {
            'id': uuid4(),
            'transaction_type': TransactionType(transaction_type).value,
            'reference_id': reference_id,
            'amount': quantize_amount(amount),
            'fee': quantize_amount(fee),
            'status': str(getattr(status, 'value', status)),
            'details': copy.deepcopy(details or {}),
            'created_at': _now(),
        }
        self.audit_log.append(entry)
        return copy.deepcopy(entry)

    async def list_audit(self, reference_ids: Iterable[str]) -> List[Dict[str, Any]]:
        wanted = set(reference_ids)
        return [copy.deepcopy(e) for e in self.audit_log if e['reference_id'] in wanted]

    # Rejected transfers

    async def record_rejected(
        self,
        chain: Chain,
        reference_id: str,
        reason: str,
        amount: Optional[Decimal] = None,
        payload: Optional[str] = None
    ) -> bool:
        key = (Chain(chain).value, reference_id)
        if key in self.rejected:
            return False
        self.rejected[key] = {
            'id': uuid4(),
            'chain': key[0],
            'reference_id': reference_id,
            'amount': quantize_amount(amount) if amount is not None else None,
            'payload': payload,
            'reason': reason,
            'resolved': False,
            'created_at': _now(),
        }
        return True

    async def is_rejected(self, chain: Chain, reference_id: str) -> bool:
        return (Chain(chain).value, reference_id) in self.rejected

    async def list_rejected(self, resolved: bool = False) -> List[Dict[str, Any]]:
        rows = [dict(r) for r in self.rejected.values() if r['resolved'] == resolved]
        return sorted(rows, key=lambda r: r['created_at'])

    # Views

    async def count_by_status(self, table: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for row in self.tables[table].values():
            counts[row['status']] = counts.get(row['status'], 0) + 1
        return counts

    async def history(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        activity = []
        for transaction_type, table in (('DEPOSIT', 'deposit'), ('BURN', 'burn')):
            for row in self.tables[table].values():
                activity.append((self._sort_key(table, row), {
                    'transaction_type': transaction_type,
                    'reference_id': row['reference_id'],
                    'amount': row['amount'],
                    'destination_address': row['destination_address'],
                    'status': row['status'],
                    'error_message': row['error_message'],
                    'created_at': row['created_at'],
                }))
        activity.sort(key=lambda item: item[0], reverse=True)
        return [entry for _, entry in activity[offset:offset + limit]]
