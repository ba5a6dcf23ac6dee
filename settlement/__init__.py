"""Solana settlement client for wZEC.

This module handles:
- Minting wZEC to a recipient's associated token account
- Polling the bridge program for burns and recording them in the ledger
- Reading wZEC balances and the on-chain bridge state
- Submitting the bridge program's admin instructions
"""
import asyncio
import base64
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from config import FatalConfigError
from ledger import Chain, Status, TransactionType, quantize_amount, to_base_units
from listener.validation import is_valid_zcash_shielded_address
from orchestrator.errors import SettlementError
from orchestrator.events import EventKind, SettlementEvent
from rpc import RPCError, TransientRPCError
from . import instructions
from .events import BurnDecodeError, BurnEventDecoder
from .keypair import load_keypair

logger = logging.getLogger(__name__)

COMMITMENT = 'confirmed'
CONFIRMED_STATUSES = ('confirmed', 'finalized')

class TransactionError(SettlementError):
    """Raised when a transaction cannot be submitted or does not confirm."""
    pass

class MintError(TransactionError):
    """Raised when wZEC could not be minted."""
    pass

class SolanaSettlementClient:
    """Settles deposits by minting wZEC and observes burns for redemption."""

    confirm_attempts = 30
    confirm_interval = 1.0

    def __init__(self, settings, rpc, ledger, queue: asyncio.Queue, keypair: Optional[Keypair] = None) -> None:
        """Initialize the settlement client.

        Args:
            settings: BridgeSettings
            rpc: SolanaRPC client
            ledger: Ledger store
            queue: Queue receiving SettlementEvents
            keypair: Authority keypair; loaded from settings when omitted

        Raises:
            FatalConfigError: If the keypair or an address cannot be loaded
        """
        self.settings = settings
        self.rpc = rpc
        self.ledger = ledger
        self.queue = queue
        self.authority = keypair or load_keypair(settings.solana_authority_keypair)
        self.decoder = BurnEventDecoder()
        self._ignored = set()

        try:
            self.mint_address = (
                Pubkey.from_string(settings.solana_mint_address)
                if settings.solana_mint_address else None
            )
            self.program_id = (
                Pubkey.from_string(settings.solana_program_id)
                if settings.solana_program_id else None
            )
        except ValueError as e:
            raise FatalConfigError(f"Invalid Solana address in settings: {e}")

    @property
    def has_program(self) -> bool:
        return self.program_id is not None

    def _require_mint(self) -> Pubkey:
        if self.mint_address is None:
            raise FatalConfigError("wZEC mint address is not configured")
        return self.mint_address

    def _require_program(self) -> Pubkey:
        if self.program_id is None:
            raise FatalConfigError("Bridge program id is not configured")
        return self.program_id

    async def _send_and_confirm(self, ixs: List[Instruction]) -> str:
        """Sign, submit and wait for ``confirmed`` status.

        Raises:
            TransactionError: If submission fails, the transaction errors or never confirms
        """
        payer = self.authority.pubkey()
        try:
            latest = await self.rpc.getLatestBlockhash({'commitment': COMMITMENT})
            blockhash = Hash.from_string(latest['value']['blockhash'])

            message = Message.new_with_blockhash(ixs, payer, blockhash)
            transaction = Transaction([self.authority], message, blockhash)
            encoded = base64.b64encode(bytes(transaction)).decode('ascii')

            signature = await self.rpc.sendTransaction(
                encoded,
                {'encoding': 'base64', 'preflightCommitment': COMMITMENT}
            )
        except RPCError as e:
            raise TransactionError(f"Transaction submission failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            # Malformed node reply; nothing has been submitted
            raise TransactionError(f"Could not build transaction: {e!r}") from e

        for _ in range(self.confirm_attempts):
            try:
                response = await self.rpc.getSignatureStatuses([signature])
            except TransientRPCError as e:
                logger.warning(f"Checking {signature} failed, retrying: {e}")
                await asyncio.sleep(self.confirm_interval)
                continue
            except RPCError as e:
                raise TransactionError(f"Could not check transaction {signature}: {e}") from e

            try:
                status = (response.get('value') or [None])[0]
            except (AttributeError, IndexError, TypeError):
                logger.warning(f"Unreadable status for {signature}: {response!r}")
                status = None
            if status:
                if status.get('err'):
                    raise TransactionError(f"Transaction {signature} failed: {status['err']}")
                if status.get('confirmationStatus') in CONFIRMED_STATUSES:
                    return signature
            await asyncio.sleep(self.confirm_interval)

        raise TransactionError(f"Transaction {signature} not confirmed after {self.confirm_attempts} checks")

    async def mint(self, recipient: str, amount: Decimal, source_reference_id: str) -> str:
        """Mint wZEC for a settled deposit.

        Args:
            recipient: Solana wallet address receiving wZEC
            amount: Net amount in ZEC
            source_reference_id: Zcash txid of the deposit

        Returns:
            The transaction signature

        Raises:
            MintError: If the mint could not be completed
            FatalConfigError: If the mint address is not configured
        """
        mint = self._require_mint()
        units = to_base_units(amount)
        if units <= 0:
            raise MintError(f"Mint amount too small: {amount}")

        try:
            owner = Pubkey.from_string(recipient)
        except ValueError as e:
            raise MintError(f"Invalid recipient {recipient}: {e}") from e

        authority = self.authority.pubkey()
        token_account = instructions.associated_token_address(owner, mint)
        ixs = [instructions.create_associated_token_account_idempotent(authority, owner, mint)]
        if self.program_id is not None:
            ixs.append(instructions.mint_wzec(
                self.program_id, mint, token_account, authority, units, source_reference_id
            ))
        else:
            ixs.append(instructions.spl_mint_to(mint, token_account, authority, units))

        try:
            signature = await self._send_and_confirm(ixs)
        except TransactionError as e:
            raise MintError(str(e)) from e

        logger.info(f"Minted {quantize_amount(amount)} wZEC to {recipient} for {source_reference_id}: {signature}")
        return signature

    async def poll_burns(self) -> int:
        """Run one poll cycle over the bridge program's recent transactions.

        Returns:
            Number of new burns recorded and queued for settlement

        Raises:
            TransientRPCError: If the cluster cannot be reached
        """
        if self.program_id is None:
            logger.debug("No bridge program configured, skipping burn poll")
            return 0

        signatures = await self.rpc.getSignaturesForAddress(
            str(self.program_id),
            {'limit': self.settings.burn_signature_limit, 'commitment': COMMITMENT}
        )

        recorded = 0
        highest_slot = None
        seen = set()
        # Newest first from the node; settle oldest first
        for info in reversed(signatures or []):
            signature = info['signature']
            seen.add(signature)
            slot = info.get('slot')
            if slot is not None:
                highest_slot = slot if highest_slot is None else max(highest_slot, slot)

            if info.get('err') is not None or signature in self._ignored:
                continue
            if await self._is_known(signature):
                self._ignored.add(signature)
                continue
            if await self._process_signature(signature):
                recorded += 1

        # Signatures older than the window can no longer come back
        self._ignored &= seen

        if highest_slot is not None:
            await self.ledger.update_cursors(destination_slot=highest_slot)
        if recorded:
            logger.info(f"{recorded} burn(s) queued for settlement")
        return recorded

    async def _is_known(self, signature: str) -> bool:
        if await self.ledger.get_burn(signature):
            return True
        return await self.ledger.is_rejected(Chain.DESTINATION, signature)

    async def _process_signature(self, signature: str) -> bool:
        transaction = await self.rpc.getTransaction(
            signature,
            {'encoding': 'json', 'maxSupportedTransactionVersion': 0, 'commitment': COMMITMENT}
        )
        if not transaction:
            # Not yet available at this commitment
            return False

        logs = (transaction.get('meta') or {}).get('logMessages') or []
        try:
            event = self.decoder.decode(logs)
        except BurnDecodeError as e:
            await self._reject(signature, str(e), payload='\n'.join(logs))
            return False

        if event is None:
            self._ignored.add(signature)
            return False

        if not is_valid_zcash_shielded_address(event.destination_address, self.settings.is_testnet):
            await self._reject(
                signature,
                f"Invalid Zcash address: {event.destination_address}",
                amount=event.amount,
                payload=event.destination_address
            )
            return False

        burn = await self.ledger.insert_burn(
            signature,
            event.amount,
            event.sender,
            event.destination_address,
            status=Status.CONFIRMED
        )
        self._ignored.add(signature)
        if burn is None:
            return False

        logger.info(
            f"New burn {signature}: {event.amount} wZEC from {event.sender} "
            f"to {event.destination_address}"
        )
        await self.ledger.append_audit(
            TransactionType.BURN,
            signature,
            Status.CONFIRMED,
            amount=event.amount,
            details={
                'sender': event.sender,
                'destination_address': event.destination_address,
                'decoder_version': event.version,
            }
        )
        await self.queue.put(SettlementEvent(EventKind.BURN, signature))
        return True

    async def _reject(self, signature: str, reason: str, amount=None, payload=None) -> None:
        logger.warning(f"Rejected burn {signature}: {reason}")
        await self.ledger.record_rejected(
            Chain.DESTINATION, signature, reason, amount=amount, payload=payload
        )
        self._ignored.add(signature)

    async def get_token_balance(self, address: str) -> Decimal:
        """wZEC balance held by ``address`` across its token accounts."""
        mint = self._require_mint()
        response = await self.rpc.getTokenAccountsByOwner(
            address,
            {'mint': str(mint)},
            {'encoding': 'jsonParsed', 'commitment': COMMITMENT}
        )
        balance = Decimal('0')
        for account in response.get('value') or []:
            token_amount = account['account']['data']['parsed']['info']['tokenAmount']
            balance += Decimal(token_amount['amount']) / (Decimal(10) ** int(token_amount['decimals']))
        return quantize_amount(balance)

    async def get_bridge_state(self) -> Optional[Dict[str, Any]]:
        """Decode the on-chain bridge state, or None if it is not initialized."""
        program_id = self._require_program()
        address = instructions.bridge_state_address(program_id)
        response = await self.rpc.getAccountInfo(
            str(address),
            {'encoding': 'base64', 'commitment': COMMITMENT}
        )
        account = response.get('value')
        if not account:
            return None

        data = base64.b64decode(account['data'][0])
        state = instructions.decode_bridge_state(data)
        state['address'] = str(address)
        return state

    async def initialize_bridge(self, fee_bps: int) -> str:
        program_id = self._require_program()
        mint = self._require_mint()
        signature = await self._send_and_confirm([
            instructions.initialize(program_id, mint, self.authority.pubkey(), fee_bps)
        ])
        logger.info(f"Bridge program initialized with fee {fee_bps} bps: {signature}")
        return signature

    async def pause_bridge(self) -> str:
        signature = await self._send_and_confirm([
            instructions.pause_bridge(self._require_program(), self.authority.pubkey())
        ])
        logger.info(f"Bridge program paused: {signature}")
        return signature

    async def resume_bridge(self) -> str:
        signature = await self._send_and_confirm([
            instructions.resume_bridge(self._require_program(), self.authority.pubkey())
        ])
        logger.info(f"Bridge program resumed: {signature}")
        return signature

__all__ = [
    'SolanaSettlementClient',
    'MintError',
    'TransactionError',
    'load_keypair',
]
