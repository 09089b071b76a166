"""Identifier resolution for orders.

Call sites address orders inconsistently: by id, by a slug computed on the
client, or by the raw group name typed by a guest. ``OrderResolver`` walks
an ordered list of strategies and returns the first order any of them
finds. Each strategy is a plain callable ``(store, identifier) -> Order |
None``, so a new identifier scheme is a new entry in the list.
"""

import logging
from typing import Callable, List, Optional, Sequence

from .domain import NotFound, Order, OrderStorePort
from .slug import slugify

logger = logging.getLogger(__name__)

Strategy = Callable[[OrderStorePort, str], Optional[Order]]


def _preferred(candidates: List[Order]) -> Optional[Order]:
    # active first, then newest
    if not candidates:
        return None
    return sorted(candidates, key=lambda o: (o.is_active, o.created_at), reverse=True)[0]


def by_id(store: OrderStorePort, identifier: str) -> Optional[Order]:
    return store.get(identifier)


def by_slug(store: OrderStorePort, identifier: str) -> Optional[Order]:
    return _preferred(store.find_by_slug(identifier))


def by_group_name(store: OrderStorePort, identifier: str) -> Optional[Order]:
    """Match the slug of every known group name against the slugged identifier."""
    wanted = slugify(identifier)
    if not wanted:
        return None
    return _preferred([o for o in store.all() if slugify(o.group_name) == wanted])


DEFAULT_STRATEGIES: Sequence[Strategy] = (by_id, by_slug, by_group_name)


class OrderResolver:
    """Resolve a caller-supplied identifier to exactly one order."""

    def __init__(self, strategies: Sequence[Strategy] = DEFAULT_STRATEGIES):
        self.strategies = tuple(strategies)

    def resolve(self, store: OrderStorePort, identifier: str) -> Order:
        """Return the first order matched by the strategy chain.

        Args:
            store: Store to search.
            identifier: Order id, group slug or raw group name.

        Returns:
            The matched Order.

        Raises:
            NotFound: When no strategy matches. Carries the known ids and
                slugs for diagnostics.
        """
        identifier = (identifier or "").strip()
        if identifier:
            for strategy in self.strategies:
                order = strategy(store, identifier)
                if order is not None:
                    logger.debug("resolved %r via %s -> %s", identifier, strategy.__name__, order.id)
                    return order

        known = []
        for o in store.all():
            known.extend((o.id, o.group_slug))
        logger.info("order not found", extra={"identifier": identifier})
        raise NotFound(identifier, known)
