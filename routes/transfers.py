"""
Transfer endpoints for the bridge counterparty.

Byte fields (ids, hash locks, pre-images, initiator addresses) travel as hex.
Mutating endpoints require `Authorization: Bearer <token>`; the caller is the
identity the token is registered to, never a field of the request body.
Bridge errors propagate to the app-level handler in server.py.
"""

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from htlc_bridge.core import parse_hex, TransferState, DEFAULT_TIME_LOCK_BLOCKS
from htlc_bridge.counterparty import BridgeCounterparty
from htlc_bridge.errors import InvalidParameter
from htlc_bridge.events import EventLog

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

bearer = HTTPBearer(auto_error=False)

# ---------------------------------------------------------------------------
# Wiring (set by server.py at init)
# ---------------------------------------------------------------------------

_counterparty: Optional[BridgeCounterparty] = None
_master_minter: Optional[str] = None
_event_log: Optional[EventLog] = None
_api_keys: Dict[str, str] = {}


def configure(counterparty: BridgeCounterparty, master_minter: str,
              event_log: EventLog = None, api_keys: Dict[str, str] = None):
    """Configure transfer routes. Called once at startup by server.py."""
    global _counterparty, _master_minter, _event_log, _api_keys
    _counterparty = counterparty
    _master_minter = master_minter
    _event_log = event_log
    _api_keys = dict(api_keys or {})


def get_counterparty() -> BridgeCounterparty:
    if _counterparty is None:
        raise HTTPException(503, "Bridge not configured")
    return _counterparty


def get_caller(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> str:
    """Resolve the bearer token to the identity it was issued to."""
    if credentials is not None:
        presented = credentials.credentials.encode()
        for identity, token in _api_keys.items():
            if hmac.compare_digest(presented, token.encode()):
                return identity

    log.warning("Rejected request with missing or unknown API token")
    raise HTTPException(401, "Invalid or missing API token",
                        headers={"WWW-Authenticate": "Bearer"})


def _decode(field: str, value: str) -> bytes:
    try:
        return parse_hex(value)
    except ValueError:
        raise InvalidParameter(f"{field} is not valid hex") from None


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class LockRequest(BaseModel):
    initiator: str = Field(..., description="Initiator address on the foreign chain (hex)")
    transfer_id: str = Field(..., description="Transfer identifier (hex)")
    hash_lock: str = Field(..., description="keccak256 of the secret (hex, 32 bytes)")
    time_lock: int = Field(DEFAULT_TIME_LOCK_BLOCKS, ge=0, description="Relative time lock in blocks")
    recipient: str
    amount: int = Field(..., ge=0)


class CompleteRequest(BaseModel):
    pre_image: str = Field(..., description="Secret pre-image (hex)")


def _transfer_response(transfer_id: bytes) -> Dict[str, Any]:
    state, details = get_counterparty().get_transfer(transfer_id)
    return {
        "transfer_id": transfer_id.hex(),
        "state": state.value,
        "details": details.to_dict(),
    }


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/transfers/lock")
def lock_transfer(req: LockRequest, caller: str = Depends(get_caller)):
    """Lock assets for a new transfer."""
    bridge = get_counterparty()
    transfer_id = _decode("transfer_id", req.transfer_id)

    success = bridge.lock_transfer_assets(
        caller,
        _decode("initiator", req.initiator),
        transfer_id,
        _decode("hash_lock", req.hash_lock),
        req.time_lock,
        req.recipient,
        req.amount,
    )
    return {"success": success, **_transfer_response(transfer_id)}


@router.post("/transfers/{transfer_id}/complete")
def complete_transfer(transfer_id: str, req: CompleteRequest, caller: str = Depends(get_caller)):
    """Complete a transfer by revealing its pre-image."""
    bridge = get_counterparty()
    tid = _decode("transfer_id", transfer_id)

    bridge.complete_transfer(caller, tid, _decode("pre_image", req.pre_image), _master_minter)
    return {"success": True, **_transfer_response(tid)}


@router.post("/transfers/{transfer_id}/abort")
def abort_transfer(transfer_id: str, caller: str = Depends(get_caller)):
    """Abort an expired transfer (administrator only)."""
    bridge = get_counterparty()
    tid = _decode("transfer_id", transfer_id)

    bridge.abort_transfer(caller, tid)
    return {"success": True, **_transfer_response(tid)}


@router.get("/transfers/{transfer_id}")
def get_transfer(transfer_id: str):
    """Get transfer state and details."""
    return _transfer_response(_decode("transfer_id", transfer_id))


@router.get("/transfers")
def list_transfers(state: str = Query("pending", description="pending, completed or aborted")):
    """List transfers in one bucket."""
    try:
        bucket_state = TransferState(state)
    except ValueError:
        raise HTTPException(400, f"Unknown state: {state}")

    bucket = get_counterparty().ledger.bucket(bucket_state)
    return {
        "state": bucket_state.value,
        "count": len(bucket),
        "transfers": [
            {"transfer_id": tid.hex(), "details": d.to_dict()}
            for tid, d in bucket.items()
        ],
    }


@router.get("/events")
def list_events(limit: int = Query(50, ge=1, le=1000)):
    """Most recent bridge events, oldest first."""
    if _event_log is None:
        return {"events": []}
    return {"events": [e.to_dict() for e in _event_log.events[-limit:]]}
