"""Queries shared by every ledger backend.

Backends implement the row-level primitives; the cross-table views below are
composed from them so that both backends answer them identically.
"""
from typing import Any, Dict, List, Optional

class LedgerBase:
    """Cross-table read views built on the backend primitives."""

    async def lookup(self, reference_id: str) -> Optional[Dict[str, Any]]:
        """Return the full cross-chain trail that shares ``reference_id``.

        The reference may be a deposit txid, a mint signature, a burn
        signature or a withdrawal txid. The linked leg is resolved in either
        direction and audit entries for every reference in the trail are
        attached. Returns None when nothing matches.
        """
        deposit = await self.get_deposit(reference_id)
        mint = await self.get_mint(reference_id)
        burn = await self.get_burn(reference_id)
        withdrawal = await self.get_withdrawal(reference_id)

        if mint and not deposit:
            deposit = await self.get_deposit(mint['deposit_reference_id'])
        if deposit and not mint:
            mint = await self.get_mint_by_deposit(deposit['reference_id'])
        if withdrawal and not burn:
            burn = await self.get_burn(withdrawal['burn_reference_id'])
        if burn and not withdrawal:
            withdrawal = await self.get_withdrawal_by_burn(burn['reference_id'])

        if not any((deposit, mint, burn, withdrawal)):
            return None

        references: List[str] = []
        for row in (deposit, mint, burn, withdrawal):
            if row and row['reference_id'] not in references:
                references.append(row['reference_id'])

        return {
            'reference_id': reference_id,
            'deposit': deposit,
            'mint': mint,
            'burn': burn,
            'withdrawal': withdrawal,
            'audit': await self.list_audit(references),
        }

    async def get_status_counts(self) -> Dict[str, Dict[str, int]]:
        """Row counts per status for the deposit, burn and withdrawal tables."""
        return {
            table: await self.count_by_status(table)
            for table in ('deposit', 'burn', 'withdrawal')
        }
