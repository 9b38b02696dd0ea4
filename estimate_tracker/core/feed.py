"""
Change Feed - in-process publish/subscribe of row-level changes.

Every write through a RecordStore publishes an INSERT, UPDATE or DELETE event
carrying the affected row. Subscribers register one callback per event type
together with an equality filter on the row (for example ``{"owner_id": ...}``).
Callbacks run synchronously on the publisher's event loop.
"""
import logging
import uuid
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"

Callback = Callable[[Dict[str, Any]], None]


class Subscription:
    """Handle returned by ``ChangeFeed.subscribe``."""

    def __init__(
        self,
        filters: Dict[str, Any],
        on_insert: Optional[Callback],
        on_update: Optional[Callback],
        on_delete: Optional[Callback]
    ):
        self.id = str(uuid.uuid4())
        self.filters = dict(filters or {})
        self.callbacks = {INSERT: on_insert, UPDATE: on_update, DELETE: on_delete}

    def matches(self, record: Dict[str, Any]) -> bool:
        return all(record.get(key) == value for key, value in self.filters.items())

    def __repr__(self):
        return f"<Subscription(id={self.id}, filters={self.filters})>"


class ChangeFeed:
    """
    Fan-out of record changes to the subscribed sessions.
    """
    def __init__(self):
        self._subscriptions: Dict[str, Subscription] = {}

    def subscribe(
        self,
        filters: Dict[str, Any],
        on_insert: Optional[Callback] = None,
        on_update: Optional[Callback] = None,
        on_delete: Optional[Callback] = None
    ) -> Subscription:
        """
        Register callbacks for changes matching ``filters``.

        Args:
            filters: Column/value pairs a changed row must match
            on_insert: Called with the inserted row
            on_update: Called with the updated row
            on_delete: Called with the deleted row

        Returns:
            Subscription: Handle to pass to ``unsubscribe``
        """
        subscription = Subscription(filters, on_insert, on_update, on_delete)
        self._subscriptions[subscription.id] = subscription
        logger.info(f"Feed subscription {subscription.id} opened for {subscription.filters}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Remove a subscription.

        Returns:
            bool: True if the subscription was active
        """
        removed = self._subscriptions.pop(subscription.id, None)
        if removed:
            logger.info(f"Feed subscription {subscription.id} closed")
        return removed is not None

    def publish(self, event: str, record: Dict[str, Any]) -> int:
        """
        Deliver a change to every matching subscriber.

        A failing callback is logged and does not stop delivery to the others.

        Args:
            event: INSERT, UPDATE or DELETE
            record: The affected row

        Returns:
            int: Number of callbacks invoked
        """
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            callback = subscription.callbacks.get(event)
            if callback is None or not subscription.matches(record):
                continue
            try:
                callback(dict(record))
                delivered += 1
            except Exception:
                logger.exception(f"Feed subscriber {subscription.id} failed on {event} for record {record.get('id')}")
        return delivered

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)
