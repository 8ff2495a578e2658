"""Account storage boundary and execution context.

The protocol is a pure state-transition library. It reads and writes
accounts through an ``AccountStore`` and never owns durable storage.
``InMemoryAccountStore`` keeps encoded account bytes in a dict and gives
each operation all-or-nothing semantics via ``atomic()``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from ..core.exceptions import NotFoundError, ProtocolError, RejectReason, ValidationException
from ..crypto.field import ensure_bytes32
from .addresses import AddressBook
from .layout import decode_account, encode_account
from .models import StakePosition, TokenAccount

if TYPE_CHECKING:
    from ..core.config import ACPSettings
    from ..crypto.field import FieldHasher
    from ..crypto.proof import ProofVerifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class LedgerContext:
    """Where and by whom an operation executes.

    ``slot`` is the ledger's progress unit (deadlines); ``unix_time`` is
    the ledger clock in seconds (collateral timelocks); ``caller`` is the
    32-byte identity that signed the transaction.
    """

    slot: int
    unix_time: int
    caller: bytes

    def __post_init__(self) -> None:
        ensure_bytes32(self.caller, "caller")
        if self.slot < 0 or self.unix_time < 0:
            raise ValidationException("slot and unix_time must be non-negative")


class AccountStore(Protocol):
    def get_raw(self, address: bytes) -> bytes | None: ...

    def put_raw(self, address: bytes, data: bytes) -> None: ...

    def delete(self, address: bytes) -> None: ...

    def atomic(self) -> Any: ...


class StakePositionSource(Protocol):
    """Reports external stake positions used for vote weighting."""

    def get_position(self, owner: bytes) -> StakePosition | None: ...


class InMemoryAccountStore:
    """Dict-backed account store with snapshot rollback.

    Nested ``atomic()`` blocks join the outermost one.
    """

    def __init__(self) -> None:
        self._accounts: dict[bytes, bytes] = {}
        self._lock = threading.RLock()
        self._depth = 0
        self._snapshot: dict[bytes, bytes] | None = None

    def get_raw(self, address: bytes) -> bytes | None:
        with self._lock:
            return self._accounts.get(address)

    def put_raw(self, address: bytes, data: bytes) -> None:
        with self._lock:
            self._accounts[address] = bytes(data)

    def delete(self, address: bytes) -> None:
        with self._lock:
            self._accounts.pop(address, None)

    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, address: object) -> bool:
        return address in self._accounts

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            if self._depth == 0:
                self._snapshot = dict(self._accounts)
            self._depth += 1
            try:
                yield
            except BaseException:
                if self._depth == 1 and self._snapshot is not None:
                    self._accounts = self._snapshot
                    logger.debug("Rolled back account changes")
                raise
            finally:
                self._depth -= 1
                if self._depth == 0:
                    self._snapshot = None


@dataclass
class ProtocolEnv:
    """Everything a state transition needs besides its arguments."""

    store: AccountStore
    addresses: AddressBook
    verifier: ProofVerifier
    settings: ACPSettings
    stake_positions: StakePositionSource | None = None
    hasher: FieldHasher | None = None
    events: list[dict[str, Any]] = field(default_factory=list)

    def emit(self, name: str, **data: Any) -> None:
        self.events.append({"event": name, **data})

    # -- typed account access ------------------------------------------------

    def load(self, address: bytes, record_type: type[T]) -> T | None:
        data = self.store.get_raw(address)
        if data is None:
            return None
        return decode_account(data, expected=record_type)

    def require(self, address: bytes, record_type: type[T], resource_id: bytes | str = b"") -> T:
        record = self.load(address, record_type)
        if record is None:
            rid = resource_id.hex() if isinstance(resource_id, bytes) else resource_id
            raise NotFoundError(record_type.__name__, rid or address.hex())
        return record

    def save(self, address: bytes, record: Any) -> None:
        self.store.put_raw(address, encode_account(record))

    def exists(self, address: bytes) -> bool:
        return self.store.get_raw(address) is not None

    # -- token balances --------------------------------------------------------

    def balance(self, account: bytes) -> int:
        token = self.load(account, TokenAccount)
        return token.amount if token is not None else 0

    def credit(self, account: bytes, owner: bytes, amount: int) -> None:
        token = self.load(account, TokenAccount) or TokenAccount(owner=owner)
        token.amount += amount
        self.save(account, token)

    def debit(self, account: bytes, amount: int, what: str = "balance") -> None:
        token = self.load(account, TokenAccount)
        available = token.amount if token is not None else 0
        if token is None or available < amount:
            raise ProtocolError(
                RejectReason.INSUFFICIENT_FUNDS,
                f"{what}: need {amount}, have {available}",
                required=amount,
                available=available,
            )
        token.amount -= amount
        self.save(account, token)

    def transfer(self, source: bytes, destination: bytes, destination_owner: bytes, amount: int, what: str) -> None:
        if amount == 0:
            return
        self.debit(source, amount, what)
        self.credit(destination, destination_owner, amount)


class InMemoryStakePositions:
    """Stake positions held in a dict; for hosts without an external source."""

    def __init__(self, positions: dict[bytes, StakePosition] | None = None) -> None:
        self._positions = dict(positions or {})

    def set_position(self, owner: bytes, amount: int, staked_at: int) -> StakePosition:
        position = StakePosition(owner=ensure_bytes32(owner, "owner"), amount=amount, staked_at=staked_at)
        self._positions[position.owner] = position
        return position

    def get_position(self, owner: bytes) -> StakePosition | None:
        return self._positions.get(owner)
