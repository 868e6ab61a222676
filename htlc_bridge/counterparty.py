"""
Bridge counterparty state machine.

Per transfer id: absent -> pending -> {completed | aborted}.

    lock_transfer_assets  relayer locks a transfer under a hash lock
    complete_transfer     anyone with the pre-image mints to the recipient
    abort_transfer        administrator cancels after the time lock expires

Every precondition is checked before the ledger is touched, and each
operation runs as one ledger transaction: either all of its effects land
or none do. A mint that has landed is never rolled back. The event is
emitted after the transaction commits.
"""

import logging
from typing import List, Tuple

from .core import (
    BridgeTransferDetails, TransferState, HASH_LOCK_SIZE, verify_preimage,
)
from .config import BridgeConfig
from .ledger import TransferLedger
from .minting import MintingAuthority, minting_rights
from .events import AssetsLocked, TransferCompleted, TransferCancelled, BridgeEvent
from .errors import (
    DuplicateKey, InvalidSecret, Unauthorized, TooEarly, InvalidParameter, ConfigMismatch,
)

log = logging.getLogger(__name__)


def _require_bytes(name: str, value) -> bytes:
    if not isinstance(value, (bytes, bytearray)):
        raise InvalidParameter(f"{name} must be bytes, got {type(value).__name__}")
    return bytes(value)


def _require_uint(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidParameter(f"{name} must be a non-negative integer, got {value!r}")
    return value


class BridgeCounterparty:
    """
    Counterparty side of the HTLC bridge.

    Args:
        config: Bridge identities (administrator, minter)
        ledger: Transfer ledger
        clock: Block-height clock, anything with now() -> int
        minting_authority: Token subsystem used by complete_transfer
        sink: Event sink, anything with emit(event)
    """

    def __init__(self, config: BridgeConfig, ledger: TransferLedger, clock,
                 minting_authority: MintingAuthority, sink=None):
        if ledger.config != config:
            raise ConfigMismatch("Ledger belongs to a different bridge configuration")
        self.config = config
        self.ledger = ledger
        self.clock = clock
        self.minting_authority = minting_authority
        self.sink = sink

    def _emit(self, event: BridgeEvent):
        if self.sink is None:
            return
        try:
            self.sink.emit(event)
        except Exception:
            log.exception(f"Event sink failed for {event.name}")

    # =========================================================================
    # Operations
    # =========================================================================

    def lock_transfer_assets(self, caller: str, initiator: bytes, transfer_id: bytes,
                             hash_lock: bytes, time_lock: int, recipient: str,
                             amount: int) -> bool:
        """
        Lock a transfer in the pending bucket.

        Args:
            caller: Account submitting the lock (the relayer)
            initiator: Foreign-chain address of the initiator, opaque bytes
            transfer_id: Caller-chosen transfer identifier
            hash_lock: keccak256 of the secret (32 bytes)
            time_lock: Relative time lock in blocks
            recipient: Local account that receives the asset
            amount: Amount to mint on completion

        Returns:
            True

        Raises:
            DuplicateKey: transfer_id already known
            InvalidParameter: malformed argument
        """
        transfer_id = _require_bytes("transfer_id", transfer_id)
        initiator = _require_bytes("initiator", initiator)
        hash_lock = _require_bytes("hash_lock", hash_lock)
        if len(hash_lock) != HASH_LOCK_SIZE:
            raise InvalidParameter(f"hash_lock must be {HASH_LOCK_SIZE} bytes, got {len(hash_lock)}")
        time_lock = _require_uint("time_lock", time_lock)
        amount = _require_uint("amount", amount)
        if not isinstance(recipient, str) or not recipient:
            raise InvalidParameter("recipient must be a non-empty account identifier")

        with self.ledger.transaction() as ledger:
            state = ledger.state_of(transfer_id)
            if state is not None:
                log.warning(f"Lock rejected: transfer {transfer_id.hex()} already {state.value}")
                raise DuplicateKey(f"Transfer {transfer_id.hex()} already {state.value}")

            details = BridgeTransferDetails(
                initiator=initiator,
                recipient=recipient,
                amount=amount,
                hash_lock=hash_lock,
                time_lock=self.clock.now() + time_lock,
            )
            ledger.pending.insert(transfer_id, details)

        log.info(f"Assets locked: transfer={transfer_id.hex()}, caller={caller}, "
                 f"recipient={recipient}, amount={amount}, expiry={details.time_lock}")
        self._emit(AssetsLocked(
            transfer_id=transfer_id,
            recipient=recipient,
            amount=amount,
            hash_lock=hash_lock,
            time_lock=details.time_lock,
        ))
        return True

    def complete_transfer(self, caller: str, transfer_id: bytes, pre_image: bytes,
                          master_minter: str):
        """
        Complete a pending transfer by revealing its pre-image.

        The caller is granted minting rights for the duration of the mint
        only; rights are revoked even if the mint fails, in which case the
        transfer stays pending. Once the mint has landed the transfer is
        completed, even if revoking the rights fails afterwards. That
        revoke error is raised after the commit.

        Raises:
            NotFound: transfer not pending
            InvalidSecret: keccak256(pre_image) != hash_lock
            PersistenceError: completed in memory, ledger file not written
        """
        transfer_id = _require_bytes("transfer_id", transfer_id)
        pre_image = _require_bytes("pre_image", pre_image)

        minted = False
        revoke_error = None
        with self.ledger.transaction() as ledger:
            details = ledger.pending.get(transfer_id)
            if not verify_preimage(pre_image, details.hash_lock):
                log.warning(f"Complete rejected: invalid secret for transfer {transfer_id.hex()}")
                raise InvalidSecret(f"Pre-image does not match hash lock of {transfer_id.hex()}")

            ledger.pending.remove(transfer_id)
            ledger.completed.insert(transfer_id, details)
            try:
                with minting_rights(self.minting_authority, master_minter, caller) as authority:
                    authority.mint(caller, details.recipient, details.amount)
                    minted = True
            except Exception as e:
                if not minted:
                    raise
                revoke_error = e

        log.info(f"Transfer completed: transfer={transfer_id.hex()}, caller={caller}, "
                 f"minted {details.amount} to {details.recipient}")
        self._emit(TransferCompleted(transfer_id=transfer_id, pre_image=pre_image))

        if revoke_error is not None:
            log.error(f"Minting rights of {caller} not revoked after transfer "
                      f"{transfer_id.hex()}: {revoke_error}")
            raise revoke_error

    def abort_transfer(self, caller: str, transfer_id: bytes):
        """
        Cancel a pending transfer whose time lock has expired.

        Only the configured administrator may abort. No asset moves here;
        the initiator chain refunds the original lock.

        Raises:
            Unauthorized: caller is not the administrator
            NotFound: transfer not pending
            TooEarly: clock has not passed the time lock
        """
        transfer_id = _require_bytes("transfer_id", transfer_id)

        if not self.config.is_admin(caller):
            log.warning(f"Abort rejected: {caller} is not the bridge administrator")
            raise Unauthorized(f"{caller} may not abort transfers")

        with self.ledger.transaction() as ledger:
            details = ledger.pending.get(transfer_id)
            now = self.clock.now()
            if not details.is_expired(now):
                log.warning(f"Abort rejected: transfer {transfer_id.hex()} locked until "
                            f"{details.time_lock} (now {now})")
                raise TooEarly(
                    f"Transfer {transfer_id.hex()} locked until {details.time_lock} (now {now})"
                )

            ledger.pending.remove(transfer_id)
            ledger.aborted.insert(transfer_id, details)

        log.info(f"Transfer cancelled: transfer={transfer_id.hex()} at height {now}")
        self._emit(TransferCancelled(transfer_id=transfer_id))

    # =========================================================================
    # Queries
    # =========================================================================

    def get_transfer(self, transfer_id: bytes) -> Tuple[TransferState, BridgeTransferDetails]:
        """State and details of a transfer in any bucket."""
        return self.ledger.lookup(_require_bytes("transfer_id", transfer_id))

    def expired_transfers(self) -> List[bytes]:
        """Pending transfers whose time lock has passed."""
        now = self.clock.now()
        return [tid for tid, details in self.ledger.pending.items() if details.is_expired(now)]
