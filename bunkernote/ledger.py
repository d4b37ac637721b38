"""
BunkerNote Ledger

The single shared host every program runs against. It provides:

- identities for deployed programs
- native balances and value transfers
- a caller stack ("message sender" of the innermost call)
- ABI call dispatch by 4-byte selector
- an append-only, sequence-ordered event log
- a clock frozen for the duration of a transaction
- all-or-nothing transactions with nested savepoints

Execution model:
    One transaction at a time, fully ordered. A call either completes with
    all of its writes visible or raises with none of them visible. Calls made
    from inside a call take their own savepoint, so an inner failure that is
    caught by the outer call rolls back only the inner writes.

Usage:
    ledger = Ledger()
    registry = ledger.deploy(DeliveryRegistry, owner=admin)
    ledger.transact(admin, registry.address, "registerShip(string,address)",
                    "IMO0001", gateway_a)
"""

import copy
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from eth_abi import decode
from eth_abi.exceptions import DecodingError

from .errors import InsufficientFunds, InvalidState, MalformedCall, UnknownProgram, UnknownSelector
from .hashing import encode_call, function_selector, parse_signature
from .identity import ZERO_IDENTITY, derive_program_identity, normalize_identity
from .logging_config import clear_transaction_id, get_transaction_id, set_transaction_id


def external(signature: str):
    """
    Mark a program method as callable through ledger call data.

    Args:
        signature: Canonical ABI signature, e.g. "rotateController(address)"
    """
    def decorator(func: Callable) -> Callable:
        func.__abi_signature__ = signature
        return func
    return decorator


@dataclass(frozen=True)
class Event:
    """An entry in the ledger's event log."""
    sequence: int
    name: str
    emitter: str
    args: Dict[str, Any]
    transaction_id: str = ""
    timestamp: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "name": self.name,
            "emitter": self.emitter,
            "args": {k: _json_value(v) for k, v in self.args.items()},
            "transaction_id": self.transaction_id,
            "timestamp": self.timestamp,
        }


def _json_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [_json_value(v) for v in value]
    return value


class Program:
    """
    Base class for everything deployed on the ledger.

    Subclasses list their mutable attributes in `_state_fields`; those are
    snapshotted the first time a transaction enters the program and restored
    if that transaction fails.
    """

    _state_fields: Tuple[str, ...] = ()
    _abi: Dict[bytes, Tuple[str, List[str]]] = {}

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        abi: Dict[bytes, Tuple[str, List[str]]] = {}
        for klass in reversed(cls.__mro__):
            for name, member in vars(klass).items():
                signature = getattr(member, "__abi_signature__", None)
                if signature:
                    _, types = parse_signature(signature)
                    abi[function_selector(signature)] = (name, types)
        cls._abi = abi

    def __init__(self, ledger: "Ledger", address: str):
        self.ledger = ledger
        self.address = address

    @property
    def msg_sender(self) -> str:
        return self.ledger.msg_sender

    def emit(self, name: str, **args: Any) -> Event:
        return self.ledger.emit(name, self.address, **args)

    def snapshot(self) -> Dict[str, Any]:
        return {name: copy.deepcopy(getattr(self, name)) for name in self._state_fields}

    def restore(self, state: Dict[str, Any]) -> None:
        for name, value in state.items():
            setattr(self, name, value)

    def dispatch(self, calldata: bytes) -> Any:
        """Route call data to the method registered for its selector."""
        if not calldata:
            return None  # plain value transfer

        if len(calldata) < 4:
            raise MalformedCall("call data shorter than a selector", target=self.address)
        selector, payload = bytes(calldata[:4]), bytes(calldata[4:])
        entry = self._abi.get(selector)
        if entry is None:
            raise UnknownSelector(
                f"{type(self).__name__} has no method for selector 0x{selector.hex()}",
                target=self.address,
            )
        name, types = entry
        try:
            args = decode(types, payload) if types else ()
        except (DecodingError, UnicodeDecodeError) as e:
            raise MalformedCall(f"cannot decode arguments for {name}: {e}", target=self.address) from e
        return getattr(self, name)(*args)


@dataclass
class _Savepoint:
    """Undo log for one transaction or nested call."""
    events: int
    deploy_nonce: int
    programs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    balances: Dict[str, Optional[int]] = field(default_factory=dict)
    deployed: List[str] = field(default_factory=list)
    on_commit: List[Callable[[], None]] = field(default_factory=list)


class Ledger:
    """
    In-process ledger. Thread-safe: top-level transactions are serialized
    by a re-entrant lock, and reads taken under `read()` never observe a
    transaction in flight.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._programs: Dict[str, Program] = {}
        self._balances: Dict[str, int] = {}
        self._events: List[Event] = []
        self._senders: List[str] = []
        self._savepoints: List[_Savepoint] = []
        self._deploy_nonce = 0
        self._timestamp: Optional[int] = None
        self._clock = clock or (lambda: int(time.time()))
        self._lock = threading.RLock()

    # ------------------------------------------------------------
    # Context
    # ------------------------------------------------------------

    @property
    def msg_sender(self) -> str:
        """Immediate caller of the currently executing program method."""
        if not self._senders:
            raise RuntimeError("no active call frame; state-changing methods must be invoked through the ledger")
        return self._senders[-1]

    @property
    def block_timestamp(self) -> int:
        """Clock value, fixed for the duration of a transaction."""
        if self._timestamp is not None:
            return self._timestamp
        return self._clock()

    # ------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        All-or-nothing unit of work. Nested use takes a savepoint.
        Automatically restores the prior state if the body raises.
        """
        with self._lock:
            top_level = not self._savepoints
            if top_level:
                set_transaction_id()
                self._timestamp = self._clock()
            savepoint = _Savepoint(events=len(self._events), deploy_nonce=self._deploy_nonce)
            self._savepoints.append(savepoint)
            committed = False
            try:
                yield
                committed = True
            except Exception:
                self._rollback(savepoint)
                raise
            finally:
                self._savepoints.pop()
                if top_level:
                    try:
                        if committed:
                            for callback in savepoint.on_commit:
                                callback()
                    finally:
                        self._timestamp = None
                        clear_transaction_id()
                elif committed:
                    self._savepoints[-1].on_commit.extend(savepoint.on_commit)

    @contextmanager
    def read(self) -> Iterator["Ledger"]:
        """Consistent view between transactions."""
        with self._lock:
            yield self

    def after_commit(self, callback: Callable[[], None]) -> None:
        """
        Run `callback` once the enclosing top-level transaction commits.
        Dropped if the savepoint it was registered in rolls back.
        """
        if not self._savepoints:
            callback()
            return
        self._savepoints[-1].on_commit.append(callback)

    def _touch(self, program: Program) -> None:
        """Record a program's state in every open savepoint that lacks it."""
        state = None
        for savepoint in self._savepoints:
            if program.address not in savepoint.programs:
                if state is None:
                    state = program.snapshot()
                savepoint.programs[program.address] = state

    def _touch_balance(self, address: str) -> None:
        for savepoint in self._savepoints:
            if address not in savepoint.balances:
                savepoint.balances[address] = self._balances.get(address)

    def _rollback(self, savepoint: _Savepoint) -> None:
        for address in savepoint.deployed:
            self._programs.pop(address, None)
        for address, state in savepoint.programs.items():
            program = self._programs.get(address)
            if program is not None:
                program.restore(copy.deepcopy(state))
        for address, amount in savepoint.balances.items():
            if amount is None:
                self._balances.pop(address, None)
            else:
                self._balances[address] = amount
        del self._events[savepoint.events:]
        self._deploy_nonce = savepoint.deploy_nonce

    # ------------------------------------------------------------
    # Programs
    # ------------------------------------------------------------

    def deploy(
        self,
        factory: Callable[..., Program],
        *args: Any,
        deployer: str = ZERO_IDENTITY,
        address: Optional[str] = None,
        **kwargs: Any
    ) -> Program:
        """
        Deploy a program. Its identity is derived from the deployer and a
        ledger nonce unless an explicit address is given.
        """
        with self.transaction():
            if address is None:
                address = derive_program_identity(
                    b"bunkernote:deploy",
                    bytes.fromhex(normalize_identity(deployer)[2:]),
                    self._deploy_nonce.to_bytes(32, "big"),
                )
                self._deploy_nonce += 1
            address = normalize_identity(address)
            if address in self._programs:
                raise InvalidState(f"a program already lives at {address}", address=address)
            program = factory(self, address, *args, **kwargs)
            self._programs[address] = program
            for savepoint in self._savepoints:
                savepoint.deployed.append(address)
            return program

    def get_program(self, address: str) -> Program:
        with self._lock:
            program = self._programs.get(normalize_identity(address))
        if program is None:
            raise UnknownProgram(f"no program at {address}", address=address)
        return program

    def is_program(self, address: str) -> bool:
        with self._lock:
            return normalize_identity(address) in self._programs

    # ------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------

    def call(self, sender: str, target: str, data: bytes = b"", value: int = 0) -> Any:
        """
        Execute call data against a target on behalf of `sender`.

        Value moves first. A call with empty data is a plain transfer and is
        accepted by raw identities and programs alike; call data sent to a
        raw identity is rejected.
        """
        sender = normalize_identity(sender)
        target = normalize_identity(target)
        with self.transaction():
            if value:
                self.move_value(sender, target, value)
            program = self._programs.get(target)
            if program is None:
                if data:
                    raise UnknownProgram(f"call data sent to raw identity {target}", address=target)
                return None
            self._touch(program)
            self._senders.append(sender)
            try:
                return program.dispatch(bytes(data))
            finally:
                self._senders.pop()

    def transact(self, sender: str, target: str, signature: str, *args: Any, value: int = 0) -> Any:
        """Encode and execute a method call in one step."""
        return self.call(sender, target, encode_call(signature, *args), value=value)

    # ------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------

    def balance_of(self, address: str) -> int:
        with self._lock:
            return self._balances.get(normalize_identity(address), 0)

    def fund(self, address: str, amount: int) -> None:
        """Credit new value to an identity (genesis allocation, tests)."""
        if amount < 0:
            raise ValueError("amount must not be negative")
        with self.transaction():
            address = normalize_identity(address)
            self._touch_balance(address)
            self._balances[address] = self._balances.get(address, 0) + amount

    def move_value(self, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise InvalidState("value must not be negative", amount=amount)
        sender = normalize_identity(sender)
        recipient = normalize_identity(recipient)
        available = self._balances.get(sender, 0)
        if available < amount:
            raise InsufficientFunds(
                f"{sender} holds {available}, needs {amount}",
                address=sender, available=available, required=amount,
            )
        self._touch_balance(sender)
        self._touch_balance(recipient)
        self._balances[sender] = available - amount
        self._balances[recipient] = self._balances.get(recipient, 0) + amount

    # ------------------------------------------------------------
    # Events
    # ------------------------------------------------------------

    def emit(self, name: str, emitter: str, **args: Any) -> Event:
        event = Event(
            sequence=len(self._events),
            name=name,
            emitter=emitter,
            args=args,
            transaction_id=get_transaction_id(),
            timestamp=self.block_timestamp,
        )
        self._events.append(event)
        return event

    def events(self, since: int = 0, name: Optional[str] = None) -> List[Event]:
        """Events with sequence >= since, optionally filtered by name."""
        if since < 0:
            raise ValueError("since must not be negative")
        with self._lock:
            records = self._events[since:]
        if name:
            records = [e for e in records if e.name == name]
        return records
