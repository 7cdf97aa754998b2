"""Memoising balance lookups over a :class:`~fuel_ledger.snapshot.SnapshotFeed`.

Screens ask for one customer's balance at a time, often repeatedly. The
service answers from a cache tagged with the generation of the collections
the balance depends on. When any of them changes the whole cache is replaced
in one step, so a reader never sees balances from two different generations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, NamedTuple, Tuple

from . import ledger, log
from .constants import CollectionName
from .snapshot import LedgerSnapshot, LoadState, NotReady, Ready, SnapshotFeed


CUSTOMER_BALANCE_COLLECTIONS: Tuple[CollectionName, ...] = (
    CollectionName.SALES,
    CollectionName.CASH_ADVANCES,
    CollectionName.CUSTOMER_PAYMENTS,
)
SUPPLIER_BALANCE_COLLECTIONS: Tuple[CollectionName, ...] = (
    CollectionName.PURCHASES,
    CollectionName.SUPPLIER_PAYMENTS,
)


class CacheInfo(NamedTuple):
    generation: Tuple[int, ...]
    entries: int
    hits: int
    misses: int


@dataclass
class _GenerationCache:
    """Balances computed against exactly one generation."""

    generation: Tuple[int, ...]
    entries: Dict[str, Decimal] = field(default_factory=dict)
    hits: int = 0
    misses: int = 0


class BalanceQueryService:
    """Answer ``balance_of`` queries without recomputing on every call."""

    def __init__(self, feed: SnapshotFeed) -> None:
        self._feed = feed
        self._customer_cache = _GenerationCache(generation=())
        self._supplier_cache = _GenerationCache(generation=())

    def balance_of(self, customer_id: str) -> LoadState[Decimal]:
        """Return the customer's balance, or :class:`NotReady` while loading."""

        state = self._feed.state(*CUSTOMER_BALANCE_COLLECTIONS)
        if isinstance(state, NotReady):
            return state
        self._customer_cache = self._current(self._customer_cache, state.generation, "customer")
        value = self._lookup(
            self._customer_cache,
            customer_id,
            lambda snapshot: ledger.customer_balance(
                customer_id,
                snapshot.sales,
                snapshot.cash_advances,
                snapshot.customer_payments,
            ),
            state.value,
        )
        return Ready(value, generation=state.generation)

    def supplier_balance_of(self, supplier_id: str) -> LoadState[Decimal]:
        """Return what is owed to a supplier, or :class:`NotReady` while loading."""

        state = self._feed.state(*SUPPLIER_BALANCE_COLLECTIONS)
        if isinstance(state, NotReady):
            return state
        self._supplier_cache = self._current(self._supplier_cache, state.generation, "supplier")
        value = self._lookup(
            self._supplier_cache,
            supplier_id,
            lambda snapshot: ledger.supplier_balance(
                supplier_id,
                snapshot.purchases,
                snapshot.supplier_payments,
            ),
            state.value,
        )
        return Ready(value, generation=state.generation)

    def cache_info(self) -> CacheInfo:
        cache = self._customer_cache
        return CacheInfo(cache.generation, len(cache.entries), cache.hits, cache.misses)

    def supplier_cache_info(self) -> CacheInfo:
        cache = self._supplier_cache
        return CacheInfo(cache.generation, len(cache.entries), cache.hits, cache.misses)

    @staticmethod
    def _current(cache: _GenerationCache, generation: Tuple[int, ...], label: str) -> _GenerationCache:
        if cache.generation == generation:
            return cache
        log.debug(
            "Dropping %d cached %s balances (generation %s -> %s)",
            len(cache.entries),
            label,
            cache.generation,
            generation,
        )
        return _GenerationCache(generation=generation)

    @staticmethod
    def _lookup(
        cache: _GenerationCache,
        key: str,
        compute: Callable[[LedgerSnapshot], Decimal],
        snapshot: LedgerSnapshot,
    ) -> Decimal:
        if key in cache.entries:
            cache.hits += 1
            return cache.entries[key]
        cache.misses += 1
        value = compute(snapshot)
        cache.entries[key] = value
        return value
