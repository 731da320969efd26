"""Customer summary engine.

Loyalty progress is a sawtooth over the purchase counter: the first milestone is
reached after 3 purchases and every following one 4 purchases later (3, 7, 11...).
The engine re-reads the counter, the last purchase and the pending bonus marker
whenever one of their keys changes, including changes written by another process.
"""
from typing import Callable, List, Optional

import structlog

from RestaurantCheckout.models import CustomerSummary, Milestones
from RestaurantCheckout.storage import CustomerStorage

logger = structlog.get_logger()

FIRST_MILESTONE = 3
MILESTONE_STEP = 4

SummaryListener = Callable[[CustomerSummary], None]


def compute_milestones(total: int) -> Milestones:
    if total <= 0:
        return Milestones(previous=0, next=FIRST_MILESTONE, progress=0.0, remaining=FIRST_MILESTONE)
    if total < FIRST_MILESTONE:
        return Milestones(
            previous=0,
            next=FIRST_MILESTONE,
            progress=total / FIRST_MILESTONE,
            remaining=FIRST_MILESTONE - total,
        )
    cycles = (total - FIRST_MILESTONE) // MILESTONE_STEP
    previous = FIRST_MILESTONE + cycles * MILESTONE_STEP
    upcoming = previous + MILESTONE_STEP
    return Milestones(
        previous=previous,
        next=upcoming,
        progress=(total - previous) / MILESTONE_STEP,
        remaining=upcoming - total,
    )


def initial_summary() -> CustomerSummary:
    return CustomerSummary()


class CustomerSummaryEngine:
    """Keeps ``summary`` in step with the loyalty values of one identity.

    Args:
        customer_storage: Storage bound to the identity being summarized
    """

    def __init__(self, customer_storage: CustomerStorage):
        self.customer_storage = customer_storage
        self.summary = initial_summary()
        self._listeners: List[SummaryListener] = []
        self._unsubscribe_store: Optional[Callable[[], None]] = None

    @property
    def has_identity(self) -> bool:
        identity = self.customer_storage.identity
        return bool(identity.backend_user_id or identity.auth_uid)

    def start(self) -> CustomerSummary:
        """Load the summary and start following storage changes."""
        if self._unsubscribe_store is None:
            self._unsubscribe_store = self.customer_storage.store.subscribe(self._on_store_change)
        return self.refresh()

    def load(self) -> CustomerSummary:
        if not self.has_identity:
            return initial_summary()
        storage = self.customer_storage
        total = storage.read_purchase_count()
        milestones = compute_milestones(total)
        pending = storage.load_pending_bonus()
        return CustomerSummary(
            total_purchases=total,
            progress=milestones.progress,
            remaining_to_next=milestones.remaining,
            next_milestone=milestones.next,
            previous_milestone=milestones.previous,
            last_purchase=storage.load_last_purchase(),
            pending_bonus=pending is not None,
            pending_bonus_info=pending,
        )

    def refresh(self) -> CustomerSummary:
        summary = self.load()
        changed = summary != self.summary
        self.summary = summary
        if changed:
            logger.debug("customer_summary_updated", total_purchases=summary.total_purchases)
            for listener in list(self._listeners):
                listener(summary)
        return summary

    def acknowledge_bonus(self) -> None:
        self.customer_storage.clear_pending_bonus()
        self.refresh()

    def subscribe(self, listener: SummaryListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        if self._unsubscribe_store is not None:
            self._unsubscribe_store()
            self._unsubscribe_store = None
        self._listeners.clear()

    def _on_store_change(self, key: str) -> None:
        if key in self.customer_storage.watched_keys():
            self.refresh()
