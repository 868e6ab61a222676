"""
Chain backends for the bridge counterparty.

Each backend provides a block clock and a minting authority
for the chain the bridged asset lives on.
"""

from .evm import EVMBlockClock, EVMMintingAuthority

__all__ = ["EVMBlockClock", "EVMMintingAuthority"]
