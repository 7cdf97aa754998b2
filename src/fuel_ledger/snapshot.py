"""Record collections and the join barrier in front of every aggregate.

Collections arrive independently from the data layer. Nothing downstream may
compute from a partially loaded set, so every read goes through :func:`join`,
which hands back either :class:`NotReady` (naming what is still pending) or
:class:`Ready` wrapping a :class:`LedgerSnapshot` of fully loaded collections.

:class:`SnapshotFeed` is the single-threaded hub the data layer publishes
into. It keeps a version per collection and re-runs watchers whenever one of
their collections changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Iterable,
    List,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from . import log
from .constants import CollectionName
from .data_manager import RECORD_TYPES


T = TypeVar("T")
U = TypeVar("U")


class LedgerError(Exception):
    """Base class for integration errors raised by the ledger package."""


class CollectionShapeError(LedgerError, TypeError):
    """Raised when a collection is published with records of the wrong type."""


class CollectionNotJoinedError(LedgerError, KeyError):
    """Raised when a snapshot is asked for a collection it did not join."""


@dataclass(frozen=True)
class RecordCollection:
    """Immutable, ordered snapshot of one record collection."""

    name: CollectionName
    records: Tuple[Any, ...] = ()
    loaded: bool = False

    def replace_records(self, records: Iterable[Any], *, loaded: bool = True) -> "RecordCollection":
        """Return a new collection holding ``records``.

        The loaded flag only ever moves from ``False`` to ``True``.
        """

        records = tuple(records)
        validate_records(self.name, records)
        return RecordCollection(name=self.name, records=records, loaded=self.loaded or loaded)

    def __len__(self) -> int:
        return len(self.records)


def validate_records(name: CollectionName, records: Iterable[Any]) -> None:
    """Reject records that do not belong to collection ``name``.

    Raises:
        CollectionShapeError: On the first record of an unexpected type.
    """

    expected = RECORD_TYPES[name]
    for index, record in enumerate(records):
        if not isinstance(record, expected):
            log.error(
                "Rejected %s at position %d of collection '%s'",
                type(record).__name__,
                index,
                name.value,
            )
            raise CollectionShapeError(
                f"Collection '{name.value}' expects {expected.__name__} records, "
                f"got {type(record).__name__} at position {index}"
            )


@dataclass(frozen=True)
class NotReady:
    """At least one required collection has not finished loading."""

    pending: Tuple[CollectionName, ...]

    @property
    def ready(self) -> bool:
        return False


@dataclass(frozen=True)
class Ready(Generic[T]):
    """A value computed from fully loaded collections of one generation."""

    value: T
    generation: Tuple[int, ...] = ()

    @property
    def ready(self) -> bool:
        return True


LoadState = Union[NotReady, Ready[T]]


def map_ready(state: "LoadState[T]", func: Callable[[T], U]) -> "LoadState[U]":
    """Apply ``func`` to a ready value; pass :class:`NotReady` through untouched."""

    if isinstance(state, NotReady):
        return state
    return Ready(func(state.value), generation=state.generation)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Point-in-time view over the collections joined by :func:`join`.

    Only the joined collections are readable. Asking for any other collection
    is a programming error, not an empty result.
    """

    collections: Mapping[CollectionName, Tuple[Any, ...]]

    def records(self, name: CollectionName) -> Tuple[Any, ...]:
        try:
            return self.collections[name]
        except KeyError:
            raise CollectionNotJoinedError(
                f"Collection '{name.value}' is not part of this snapshot"
            ) from None

    @property
    def customers(self) -> Tuple[Any, ...]:
        return self.records(CollectionName.CUSTOMERS)

    @property
    def suppliers(self) -> Tuple[Any, ...]:
        return self.records(CollectionName.SUPPLIERS)

    @property
    def sales(self) -> Tuple[Any, ...]:
        return self.records(CollectionName.SALES)

    @property
    def purchases(self) -> Tuple[Any, ...]:
        return self.records(CollectionName.PURCHASES)

    @property
    def purchase_returns(self) -> Tuple[Any, ...]:
        return self.records(CollectionName.PURCHASE_RETURNS)

    @property
    def customer_payments(self) -> Tuple[Any, ...]:
        return self.records(CollectionName.CUSTOMER_PAYMENTS)

    @property
    def cash_advances(self) -> Tuple[Any, ...]:
        return self.records(CollectionName.CASH_ADVANCES)

    @property
    def supplier_payments(self) -> Tuple[Any, ...]:
        return self.records(CollectionName.SUPPLIER_PAYMENTS)


def join(
    collections: Mapping[CollectionName, RecordCollection],
    required: Iterable[CollectionName],
    *,
    generation: Tuple[int, ...] = (),
) -> "LoadState[LedgerSnapshot]":
    """Join ``required`` collections into one snapshot once all are loaded.

    Args:
        collections: Current collection per name. Missing names count as not
            loaded.
        required: Collections the caller's aggregate depends on.
        generation: Version tag carried on the resulting :class:`Ready`.

    Returns:
        LoadState[LedgerSnapshot]: :class:`NotReady` listing pending collections
            in the order given, or :class:`Ready` with the joined snapshot.
    """

    required = tuple(dict.fromkeys(required))
    pending = tuple(
        name for name in required
        if name not in collections or not collections[name].loaded
    )
    if pending:
        return NotReady(pending=pending)
    snapshot = LedgerSnapshot(collections={name: collections[name].records for name in required})
    return Ready(snapshot, generation=generation)


@dataclass(eq=False)
class Subscription:
    """Handle returned by :meth:`SnapshotFeed.watch`."""

    required: Tuple[CollectionName, ...]
    build: Callable[[LedgerSnapshot], Any]
    listener: Callable[[LoadState], None]
    _feed: Optional["SnapshotFeed"] = field(default=None, repr=False)
    active: bool = True

    def cancel(self) -> None:
        """Stop deliveries. Results still being built are discarded."""

        if not self.active:
            return
        self.active = False
        if self._feed is not None:
            self._feed._forget(self)
            self._feed = None


class SnapshotFeed:
    """Event hub holding the latest version of every record collection."""

    def __init__(self) -> None:
        self._collections: Dict[CollectionName, RecordCollection] = {
            name: RecordCollection(name) for name in CollectionName
        }
        self._versions: Dict[CollectionName, int] = {name: 0 for name in CollectionName}
        self._subscriptions: List[Subscription] = []

    def collection(self, name: CollectionName) -> RecordCollection:
        return self._collections[name]

    def generation(self, *names: CollectionName) -> Tuple[int, ...]:
        """Return the version tuple for ``names`` (all collections when empty)."""

        names = names or tuple(CollectionName)
        return tuple(self._versions[name] for name in names)

    def state(self, *required: CollectionName) -> "LoadState[LedgerSnapshot]":
        """Join the current collections needed by one aggregate."""

        return join(self._collections, required, generation=self.generation(*required))

    def publish(self, name: CollectionName, records: Iterable[Any], *, loaded: bool = True) -> None:
        """Replace the contents of collection ``name`` and notify watchers.

        Args:
            name: Collection being replaced.
            records: Full, ordered contents of the collection.
            loaded: Whether the producer has finished its initial load. Once a
                collection is loaded it stays loaded.

        Raises:
            CollectionShapeError: If any record has the wrong type. The feed is
                left unchanged.
        """

        updated = self._collections[name].replace_records(records, loaded=loaded)
        self._collections[name] = updated
        self._versions[name] += 1
        log.info(
            "Published %d records to '%s' (loaded=%s, version=%d)",
            len(updated),
            name.value,
            updated.loaded,
            self._versions[name],
        )
        self._notify(name)

    def append(self, name: CollectionName, record: Any) -> None:
        """Insert one record at the end of collection ``name``."""

        current = self._collections[name]
        self.publish(name, (*current.records, record), loaded=current.loaded)

    def mark_loaded(self, name: CollectionName) -> None:
        """Flip the loaded flag of ``name`` without changing its records."""

        current = self._collections[name]
        if current.loaded:
            return
        self.publish(name, current.records, loaded=True)

    def watch(
        self,
        required: Iterable[CollectionName],
        build: Callable[[LedgerSnapshot], T],
        listener: Callable[["LoadState[T]"], None],
    ) -> Subscription:
        """Deliver ``build(snapshot)`` to ``listener`` now and after each change.

        ``listener`` receives :class:`NotReady` while any required collection
        is still loading, and :class:`Ready` results afterwards.
        """

        subscription = Subscription(
            required=tuple(dict.fromkeys(required)),
            build=build,
            listener=listener,
            _feed=self,
        )
        self._subscriptions.append(subscription)
        self._deliver(subscription)
        return subscription

    def _forget(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _notify(self, name: CollectionName) -> None:
        for subscription in list(self._subscriptions):
            if name in subscription.required:
                self._deliver(subscription)

    def _deliver(self, subscription: Subscription) -> None:
        if not subscription.active:
            return
        state = self.state(*subscription.required)
        if isinstance(state, Ready):
            value = subscription.build(state.value)
            if not subscription.active:
                log.debug("Discarded result for cancelled subscription on %s", subscription.required)
                return
            state = Ready(value, generation=state.generation)
        subscription.listener(state)
