"""
Minting authority for the bridged asset.

The counterparty never holds minting rights permanently. complete_transfer
wraps the mint in minting_rights(), which grants rights to the caller and
revokes them on every exit path.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Set

from .errors import Unauthorized, InvalidParameter, MintingError

log = logging.getLogger(__name__)


class MintingAuthority:
    """
    Interface of the token subsystem.

    Credentials are identities the authority can act for: the master minter
    for grant/revoke, a granted minter for mint.
    """

    def grant_minter(self, admin_credential: str, account: str):
        raise NotImplementedError

    def mint(self, minter_credential: str, recipient: str, amount: int):
        raise NotImplementedError

    def revoke_minter(self, admin_credential: str, account: str):
        raise NotImplementedError


@contextmanager
def minting_rights(authority: MintingAuthority, admin_credential: str, account: str):
    """
    Grant minting rights to account for the duration of the block.

    Rights are revoked whether the block succeeds or raises. If the grant
    itself fails there is nothing to revoke.
    """
    authority.grant_minter(admin_credential, account)
    log.debug(f"Minting rights granted to {account}")
    try:
        yield authority
    finally:
        authority.revoke_minter(admin_credential, account)
        log.debug(f"Minting rights revoked from {account}")


class LocalMintingAuthority(MintingAuthority):
    """
    In-memory bridged token.

    Tracks balances, total supply and the set of accounts currently allowed
    to mint. Only master_minter may grant or revoke.
    """

    def __init__(self, master_minter: str):
        self.master_minter = master_minter
        self.balances: Dict[str, int] = {}
        self.total_supply = 0
        self._minters: Set[str] = set()
        self._lock = threading.Lock()

    def _require_master(self, credential: str):
        if credential != self.master_minter:
            raise Unauthorized(f"{credential} is not the master minter")

    def grant_minter(self, admin_credential: str, account: str):
        self._require_master(admin_credential)
        with self._lock:
            self._minters.add(account)

    def revoke_minter(self, admin_credential: str, account: str):
        self._require_master(admin_credential)
        with self._lock:
            self._minters.discard(account)

    def is_minter(self, account: str) -> bool:
        return account in self._minters

    @property
    def minters(self) -> Set[str]:
        return set(self._minters)

    def mint(self, minter_credential: str, recipient: str, amount: int):
        if amount < 0:
            raise InvalidParameter(f"Cannot mint negative amount {amount}")
        with self._lock:
            if minter_credential not in self._minters:
                raise MintingError(f"{minter_credential} has no minting rights")
            self.balances[recipient] = self.balances.get(recipient, 0) + amount
            self.total_supply += amount
        log.info(f"Minted {amount} to {recipient}")

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)
