#!/usr/bin/env python3
"""
Bridge counterparty state machine tests.

Covers:
1. Lock uniqueness
2. Hash gate (complete only with the right pre-image)
3. Expiry and authorization gates (abort)
4. Terminal states are final
5. Minting rights never outlive complete_transfer
6. Events emitted once per successful operation
"""

import sys
import os
import tempfile
import threading
import unittest
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from htlc_bridge.config import BridgeConfig
from htlc_bridge.core import TransferState, keccak256
from htlc_bridge.clock import ManualClock
from htlc_bridge.counterparty import BridgeCounterparty
from htlc_bridge.errors import (
    DuplicateKey, NotFound, InvalidSecret, Unauthorized, TooEarly,
    InvalidParameter, MintingError, ConfigMismatch, PersistenceError,
)
from htlc_bridge.events import EventLog, AssetsLocked, TransferCompleted, TransferCancelled
from htlc_bridge.ledger import TransferLedger
from htlc_bridge.minting import LocalMintingAuthority

ADMIN = "admin"
MINTER = "minter"
RELAYER = "relayer"
RECIPIENT = "recipient"
INITIATOR = bytes.fromhex("de" * 20)


class FailingMintAuthority(LocalMintingAuthority):
    """Token whose mint always fails after rights were granted."""

    def mint(self, minter_credential, recipient, amount):
        if not self.is_minter(minter_credential):
            raise AssertionError("mint called without rights")
        raise MintingError("token paused")


class FailingRevokeAuthority(LocalMintingAuthority):
    """Token whose first revoke fails after the mint went through."""

    def __init__(self, master_minter):
        super().__init__(master_minter)
        self.revoke_failures = 1

    def revoke_minter(self, admin_credential, account):
        if self.revoke_failures:
            self.revoke_failures -= 1
            raise MintingError("revoke transaction dropped")
        super().revoke_minter(admin_credential, account)


class BridgeTestCase(unittest.TestCase):

    def setUp(self):
        self.config = BridgeConfig(admin=ADMIN, minter=MINTER)
        self.ledger = TransferLedger(self.config)
        self.clock = ManualClock(0)
        self.token = LocalMintingAuthority(MINTER)
        self.events = EventLog()
        self.bridge = BridgeCounterparty(self.config, self.ledger, self.clock, self.token, self.events)

    def lock(self, transfer_id=b"t1", secret=b"secret", time_lock=3600, amount=100):
        return self.bridge.lock_transfer_assets(
            RELAYER, INITIATOR, transfer_id, keccak256(secret), time_lock, RECIPIENT, amount
        )


class TestLock(BridgeTestCase):

    def test_lock_inserts_pending(self):
        self.clock.set(50)
        self.assertTrue(self.lock(time_lock=10))

        state, details = self.bridge.get_transfer(b"t1")
        self.assertEqual(state, TransferState.PENDING)
        self.assertEqual(details.time_lock, 60)
        self.assertEqual(details.initiator, INITIATOR)
        self.assertEqual(details.recipient, RECIPIENT)
        self.assertEqual(details.amount, 100)

    def test_lock_event(self):
        self.clock.set(7)
        self.lock(time_lock=3)
        self.assertEqual(self.events.events, [AssetsLocked(
            transfer_id=b"t1",
            recipient=RECIPIENT,
            amount=100,
            hash_lock=keccak256(b"secret"),
            time_lock=10,
        )])

    def test_duplicate_pending(self):
        self.lock()
        with self.assertRaises(DuplicateKey):
            self.lock(amount=999)
        self.assertEqual(self.bridge.get_transfer(b"t1")[1].amount, 100)
        self.assertEqual(len(self.events.of_type(AssetsLocked)), 1)

    def test_terminal_id_cannot_be_relocked(self):
        self.lock()
        self.bridge.complete_transfer(RELAYER, b"t1", b"secret", MINTER)
        with self.assertRaises(DuplicateKey):
            self.lock()
        self.assertEqual(self.ledger.state_of(b"t1"), TransferState.COMPLETED)

    def test_initiator_is_opaque(self):
        self.bridge.lock_transfer_assets(
            RELAYER, b"", b"t1", keccak256(b"s"), 1, RECIPIENT, 1
        )
        self.assertEqual(self.bridge.get_transfer(b"t1")[1].initiator, b"")

    def test_invalid_parameters(self):
        with self.assertRaises(InvalidParameter):
            self.bridge.lock_transfer_assets(RELAYER, INITIATOR, b"t1", b"short", 1, RECIPIENT, 1)
        with self.assertRaises(InvalidParameter):
            self.lock(amount=-1)
        with self.assertRaises(InvalidParameter):
            self.lock(time_lock=-5)
        with self.assertRaises(InvalidParameter):
            self.lock(transfer_id="t1")
        self.assertEqual(len(self.ledger.pending), 0)
        self.assertEqual(len(self.events), 0)

    def test_concurrent_locks_single_winner(self):
        results = []

        def attempt():
            try:
                results.append(self.lock())
            except DuplicateKey:
                results.append(False)

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(results.count(True), 1)
        self.assertEqual(len(self.ledger.pending), 1)


class TestComplete(BridgeTestCase):

    def test_scenario_a_complete_with_secret(self):
        self.lock(secret=b"secret", time_lock=3600, amount=100)
        self.events.clear()

        self.bridge.complete_transfer(RELAYER, b"t1", b"secret", MINTER)

        self.assertEqual(self.ledger.state_of(b"t1"), TransferState.COMPLETED)
        self.assertNotIn(b"t1", self.ledger.pending)
        self.assertEqual(self.token.balance_of(RECIPIENT), 100)
        self.assertEqual(self.events.events, [TransferCompleted(transfer_id=b"t1", pre_image=b"secret")])

    def test_scenario_b_wrong_secret(self):
        self.lock()
        before = self.ledger.pending.get(b"t1")
        before_dict = before.to_dict()

        with self.assertRaises(InvalidSecret):
            self.bridge.complete_transfer(RELAYER, b"t1", b"wrong", MINTER)

        after = self.ledger.pending.get(b"t1")
        self.assertEqual(after, before)
        self.assertEqual(after.to_dict(), before_dict)
        self.assertEqual(self.token.balance_of(RECIPIENT), 0)
        self.assertEqual(self.token.minters, set())
        self.assertEqual(len(self.events.of_type(TransferCompleted)), 0)

    def test_retry_after_wrong_secret(self):
        self.lock()
        with self.assertRaises(InvalidSecret):
            self.bridge.complete_transfer(RELAYER, b"t1", b"wrong", MINTER)
        self.bridge.complete_transfer("someone_else", b"t1", b"secret", MINTER)
        self.assertEqual(self.ledger.state_of(b"t1"), TransferState.COMPLETED)

    def test_unknown_transfer(self):
        with self.assertRaises(NotFound):
            self.bridge.complete_transfer(RELAYER, b"nope", b"secret", MINTER)

    def test_complete_twice(self):
        self.lock()
        self.bridge.complete_transfer(RELAYER, b"t1", b"secret", MINTER)
        with self.assertRaises(NotFound):
            self.bridge.complete_transfer(RELAYER, b"t1", b"secret", MINTER)
        self.assertEqual(self.token.balance_of(RECIPIENT), 100)

    def test_complete_after_expiry_still_allowed(self):
        self.lock(time_lock=10)
        self.clock.set(100)
        self.bridge.complete_transfer(RELAYER, b"t1", b"secret", MINTER)
        self.assertEqual(self.ledger.state_of(b"t1"), TransferState.COMPLETED)

    def test_rights_revoked_after_success(self):
        self.lock()
        self.bridge.complete_transfer(RELAYER, b"t1", b"secret", MINTER)
        self.assertFalse(self.token.is_minter(RELAYER))
        self.assertEqual(self.token.minters, set())

    def test_rights_revoked_when_mint_fails(self):
        token = FailingMintAuthority(MINTER)
        bridge = BridgeCounterparty(self.config, self.ledger, self.clock, token, self.events)
        self.lock()
        self.events.clear()

        with self.assertRaises(MintingError):
            bridge.complete_transfer(RELAYER, b"t1", b"secret", MINTER)

        self.assertFalse(token.is_minter(RELAYER))
        self.assertEqual(self.ledger.state_of(b"t1"), TransferState.PENDING)
        self.assertEqual(len(self.events), 0)

    def test_grant_rejected_leaves_transfer_pending(self):
        self.lock()
        with self.assertRaises(Unauthorized):
            self.bridge.complete_transfer(RELAYER, b"t1", b"secret", "not_the_master")
        self.assertEqual(self.ledger.state_of(b"t1"), TransferState.PENDING)
        self.assertEqual(self.token.total_supply, 0)

    def test_authority_call_order(self):
        authority = MagicMock()
        bridge = BridgeCounterparty(self.config, self.ledger, self.clock, authority)
        self.lock()

        bridge.complete_transfer(RELAYER, b"t1", b"secret", MINTER)

        self.assertEqual([c[0] for c in authority.method_calls], ["grant_minter", "mint", "revoke_minter"])
        authority.grant_minter.assert_called_once_with(MINTER, RELAYER)
        authority.mint.assert_called_once_with(RELAYER, RECIPIENT, 100)
        authority.revoke_minter.assert_called_once_with(MINTER, RELAYER)

    def test_sink_failure_does_not_undo(self):
        sink = MagicMock()
        sink.emit.side_effect = RuntimeError("bus down")
        bridge = BridgeCounterparty(self.config, self.ledger, self.clock, self.token, sink)

        bridge.lock_transfer_assets(RELAYER, INITIATOR, b"t1", keccak256(b"secret"), 10, RECIPIENT, 5)
        bridge.complete_transfer(RELAYER, b"t1", b"secret", MINTER)

        self.assertEqual(self.ledger.state_of(b"t1"), TransferState.COMPLETED)
        self.assertEqual(sink.emit.call_count, 2)

    def test_failed_revoke_after_mint_completes(self):
        token = FailingRevokeAuthority(MINTER)
        bridge = BridgeCounterparty(self.config, self.ledger, self.clock, token, self.events)
        self.lock()

        with self.assertRaises(MintingError):
            bridge.complete_transfer(RELAYER, b"t1", b"secret", MINTER)

        self.assertEqual(self.ledger.state_of(b"t1"), TransferState.COMPLETED)
        self.assertEqual(token.balance_of(RECIPIENT), 100)
        self.assertEqual(len(self.events.of_type(TransferCompleted)), 1)

        with self.assertRaises(NotFound):
            bridge.complete_transfer(RELAYER, b"t1", b"secret", MINTER)
        self.assertEqual(token.balance_of(RECIPIENT), 100)
        self.assertEqual(token.total_supply, 100)

    def test_failed_write_after_mint_keeps_completion(self):
        with tempfile.TemporaryDirectory() as tmp:
            ledger = TransferLedger(self.config, os.path.join(tmp, "ledger.json"))
            bridge = BridgeCounterparty(self.config, ledger, self.clock, self.token, self.events)
            bridge.lock_transfer_assets(RELAYER, INITIATOR, b"t1", keccak256(b"secret"), 10, RECIPIENT, 100)

            with patch("htlc_bridge.ledger.os.replace", side_effect=OSError("disk full")):
                with self.assertRaises(PersistenceError):
                    bridge.complete_transfer(RELAYER, b"t1", b"secret", MINTER)

            self.assertEqual(ledger.state_of(b"t1"), TransferState.COMPLETED)
            self.assertEqual(self.token.balance_of(RECIPIENT), 100)
            self.assertFalse(self.token.is_minter(RELAYER))

            with self.assertRaises(NotFound):
                bridge.complete_transfer(RELAYER, b"t1", b"secret", MINTER)
            self.assertEqual(self.token.total_supply, 100)


class TestAbort(BridgeTestCase):

    def test_too_early_is_logged(self):
        self.lock(time_lock=10)
        with self.assertLogs("htlc_bridge.counterparty", level="WARNING") as logs:
            with self.assertRaises(TooEarly):
                self.bridge.abort_transfer(ADMIN, b"t1")
        self.assertIn("locked until 10", logs.output[0])

    def test_scenario_c_expiry_gate(self):
        self.clock.set(0)
        self.lock(time_lock=10)

        self.clock.set(5)
        with self.assertRaises(TooEarly):
            self.bridge.abort_transfer(ADMIN, b"t1")
        self.assertEqual(self.ledger.state_of(b"t1"), TransferState.PENDING)

        self.clock.set(11)
        self.bridge.abort_transfer(ADMIN, b"t1")
        self.assertEqual(self.ledger.state_of(b"t1"), TransferState.ABORTED)
        self.assertEqual(self.events.of_type(TransferCancelled), [TransferCancelled(transfer_id=b"t1")])

    def test_abort_at_exact_time_lock_is_too_early(self):
        self.lock(time_lock=10)
        self.clock.set(10)
        with self.assertRaises(TooEarly):
            self.bridge.abort_transfer(ADMIN, b"t1")

    def test_scenario_d_non_admin(self):
        self.lock(time_lock=10)
        self.clock.set(100)
        with self.assertRaises(Unauthorized):
            self.bridge.abort_transfer(RELAYER, b"t1")
        self.assertEqual(self.ledger.state_of(b"t1"), TransferState.PENDING)

    def test_authorization_checked_first(self):
        with self.assertRaises(Unauthorized):
            self.bridge.abort_transfer(RELAYER, b"unknown")

    def test_unknown_transfer(self):
        with self.assertRaises(NotFound):
            self.bridge.abort_transfer(ADMIN, b"unknown")

    def test_record_moved_unmodified(self):
        self.lock(time_lock=10)
        details = self.ledger.pending.get(b"t1")
        self.clock.set(11)
        self.bridge.abort_transfer(ADMIN, b"t1")
        self.assertEqual(self.ledger.aborted.get(b"t1"), details)
        self.assertEqual(self.token.total_supply, 0)

    def test_terminal_states_are_final(self):
        self.lock(transfer_id=b"done", time_lock=10)
        self.lock(transfer_id=b"gone", time_lock=10)
        self.bridge.complete_transfer(RELAYER, b"done", b"secret", MINTER)
        self.clock.set(11)
        self.bridge.abort_transfer(ADMIN, b"gone")

        with self.assertRaises(NotFound):
            self.bridge.abort_transfer(ADMIN, b"done")
        with self.assertRaises(NotFound):
            self.bridge.complete_transfer(RELAYER, b"gone", b"secret", MINTER)

        self.assertEqual(self.ledger.state_of(b"done"), TransferState.COMPLETED)
        self.assertEqual(self.ledger.state_of(b"gone"), TransferState.ABORTED)
        for transfer_id in (b"done", b"gone"):
            buckets = [transfer_id in b for b in self.ledger.buckets]
            self.assertEqual(buckets.count(True), 1)


class TestQueries(BridgeTestCase):

    def test_expired_transfers(self):
        self.lock(transfer_id=b"short", time_lock=5)
        self.lock(transfer_id=b"long", time_lock=50)
        self.clock.set(6)
        self.assertEqual(self.bridge.expired_transfers(), [b"short"])

    def test_get_unknown(self):
        with self.assertRaises(NotFound):
            self.bridge.get_transfer(b"nope")

    def test_ledger_config_must_match(self):
        other = TransferLedger(BridgeConfig(admin="x", minter="y"))
        with self.assertRaises(ConfigMismatch):
            BridgeCounterparty(self.config, other, self.clock, self.token)


if __name__ == "__main__":
    unittest.main()
