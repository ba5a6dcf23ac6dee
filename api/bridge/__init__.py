"""Bridge operator endpoints."""

from fastapi import APIRouter, HTTPException, Query, Request, status, Depends
from typing import Optional, List, Dict, Any
from decimal import Decimal
from pydantic import BaseModel, Field
from datetime import datetime

from config import FatalConfigError
from listener.validation import is_valid_solana_address
from orchestrator import SettlementError
from rpc import RPCError, TransientRPCError

router = APIRouter(
    prefix="/bridge",
    tags=["Bridge"]
)

# Model definitions
class DepositInfo(BaseModel):
    """Where and how to deposit ZEC."""
    deposit_address: str
    network: str
    min_deposit: Decimal
    max_deposit: Decimal
    fee_percentage: Decimal
    confirmations: int
    instructions: str

class Reserves(BaseModel):
    """Reserve and wrapped supply metrics."""
    total_locked: Decimal
    total_minted: Decimal
    total_burned: Decimal
    total_withdrawn: Decimal
    total_fees_collected: Decimal
    current_reserve: Decimal
    outstanding_supply: Decimal
    reserve_ratio: Optional[Decimal] = None
    updated_at: Optional[datetime] = None

class StatusCounts(BaseModel):
    pending: int
    processing: int
    completed: int
    failed: int

class BridgeStatus(BaseModel):
    """Read-only snapshot of the bridge."""
    running: bool
    paused: bool
    reserves: Reserves
    deposits: StatusCounts
    burns: StatusCounts
    withdrawals: Dict[str, int]
    in_flight: int
    stuck_processing: int
    queue_size: int
    last_source_block: int
    last_destination_slot: int
    recent_signals: List[Dict[str, Any]]

class HistoryEntry(BaseModel):
    transaction_type: str
    reference_id: str
    amount: Decimal
    destination_address: str
    status: str
    error_message: Optional[str] = None
    created_at: datetime

class TransactionTrail(BaseModel):
    """Every record that shares a reference id across both chains."""
    reference_id: str
    deposit: Optional[Dict[str, Any]] = None
    mint: Optional[Dict[str, Any]] = None
    burn: Optional[Dict[str, Any]] = None
    withdrawal: Optional[Dict[str, Any]] = None
    audit: List[Dict[str, Any]]

class RejectedTransfer(BaseModel):
    """A transfer that failed validation and needs manual handling."""
    chain: str
    reference_id: str
    amount: Optional[Decimal] = None
    payload: Optional[str] = None
    reason: str
    resolved: bool
    created_at: datetime

class Balance(BaseModel):
    address: str
    balance: Decimal

class InitializeRequest(BaseModel):
    """Request model for the one-time program initialization."""
    fee_basis_points: Optional[int] = Field(None, ge=0, le=10000)

class InitializeResponse(BaseModel):
    signature: str

def get_bridge(request: Request):
    """Return the bridge context attached to the application."""
    bridge = getattr(request.app.state, 'bridge', None)
    if bridge is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bridge is not running"
        )
    return bridge

def rpc_failure(e: RPCError) -> HTTPException:
    code = (
        status.HTTP_503_SERVICE_UNAVAILABLE
        if isinstance(e, TransientRPCError)
        else status.HTTP_502_BAD_GATEWAY
    )
    return HTTPException(status_code=code, detail=str(e))

@router.get("/deposit-address", response_model=DepositInfo)
async def deposit_address(bridge=Depends(get_bridge)):
    """Get the deposit address, limits and fee."""
    return bridge.orchestrator.get_deposit_info()

@router.get("/reserves", response_model=Reserves)
async def reserves(bridge=Depends(get_bridge)):
    """Get reserve and supply metrics."""
    return await bridge.orchestrator.get_reserves()

@router.get("/status", response_model=BridgeStatus)
async def bridge_status(bridge=Depends(get_bridge)):
    """Get bridge status."""
    return await bridge.orchestrator.get_status()

@router.get("/transactions/{reference_id}", response_model=TransactionTrail)
async def transaction(reference_id: str, bridge=Depends(get_bridge)):
    """Look up the cross-chain trail of a deposit, mint, burn or withdrawal."""
    trail = await bridge.orchestrator.lookup(reference_id)
    if trail is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Transaction {reference_id} not found"
        )
    return trail

@router.get("/history", response_model=List[HistoryEntry])
async def history(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    bridge=Depends(get_bridge)
):
    """Get recent deposits and burns, newest first."""
    return await bridge.orchestrator.history(limit, offset)

@router.get("/rejected", response_model=List[RejectedTransfer])
async def rejected(resolved: bool = Query(False), bridge=Depends(get_bridge)):
    """List deposits and burns that were rejected for manual review."""
    return await bridge.orchestrator.list_rejected(resolved)

@router.get("/balance/{address}", response_model=Balance)
async def balance(address: str, bridge=Depends(get_bridge)):
    """Get the wZEC balance of a Solana address."""
    if not is_valid_solana_address(address):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid Solana address: {address}"
        )
    try:
        amount = await bridge.settlement.get_token_balance(address)
    except RPCError as e:
        raise rpc_failure(e)
    return {"address": address, "balance": amount}

@router.post("/pause", response_model=BridgeStatus)
async def pause(bridge=Depends(get_bridge)):
    """Pause settlement of deposits and burns."""
    return await bridge.orchestrator.pause(reason="operator request")

@router.post("/resume", response_model=BridgeStatus)
async def resume(bridge=Depends(get_bridge)):
    """Resume settlement and sweep deferred rows."""
    return await bridge.orchestrator.resume()

@router.post("/initialize", response_model=InitializeResponse)
async def initialize(body: Optional[InitializeRequest] = None, bridge=Depends(get_bridge)):
    """Initialize the bridge program. Only needed once per deployment."""
    fee_bps = body.fee_basis_points if body else None
    try:
        signature = await bridge.orchestrator.initialize(fee_bps)
    except FatalConfigError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except RPCError as e:
        raise rpc_failure(e)
    except SettlementError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return {"signature": signature}
