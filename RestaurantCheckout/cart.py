"""Cart store.

Owns the cart lines for the current device profile and keeps the derived aggregates
(count, subtotal, formatted subtotal) consistent with them after every mutation. The
whole cart is persisted to the local store and restored on start-up.
"""
import json
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

import structlog

from RestaurantCheckout.formatting import format_ars
from RestaurantCheckout.models import CartLine, Product
from RestaurantCheckout.storage import CART_STORAGE_KEY, KeyValueStore

logger = structlog.get_logger()

CartListener = Callable[["CartStore"], None]

CART_STORAGE_VERSION = 0


class CartStore:
    """Cart lines plus derived aggregates.

    Aggregates are recomputed and swapped in together with the line list, so a
    reader never sees lines and totals from different mutations.

    Args:
        store: Local store the cart is persisted to, or None to keep it in memory
        storage_key: Key of the persisted cart snapshot
    """

    def __init__(self, store: Optional[KeyValueStore] = None, storage_key: str = CART_STORAGE_KEY):
        self._store = store
        self._storage_key = storage_key
        self._listeners: List[CartListener] = []
        self._state: Tuple[Tuple[CartLine, ...], int, Decimal] = ((), 0, Decimal(0))
        self._writing = False
        self._set_lines(self._load(), persist=False, notify=False)
        self._unsubscribe_store = store.subscribe(self._on_store_change) if store is not None else None

    # -- read accessors ------------------------------------------------------

    @property
    def items(self) -> List[CartLine]:
        return list(self._state[0])

    @property
    def count(self) -> int:
        return self._state[1]

    @property
    def subtotal(self) -> Decimal:
        return self._state[2]

    @property
    def formatted_subtotal(self) -> str:
        return format_ars(self._state[2])

    @property
    def is_empty(self) -> bool:
        return not self._state[0]

    def get_line(self, key: str) -> Optional[CartLine]:
        for line in self._state[0]:
            if line.key == key:
                return line
        return None

    # -- mutations -----------------------------------------------------------

    def add_item(self, product: Product, qty: int = 1, side: Optional[str] = None) -> CartLine:
        """Add ``qty`` units of ``product`` (with ``side``) to the cart.

        An existing line with the same composite key has its quantity incremented;
        otherwise a new line is appended.
        """
        key = CartLine.compose_key(product.id, side)
        lines = list(self._state[0])
        for index, line in enumerate(lines):
            if line.key == key:
                lines[index] = CartLine(product=line.product, quantity=line.quantity + qty, key=key, side=line.side)
                break
        else:
            lines.append(CartLine(product=product, quantity=qty, key=key, side=side or None))
        self._set_lines([line for line in lines if line.quantity > 0])
        return self.get_line(key)

    def remove_item(self, key: str) -> None:
        lines = [line for line in self._state[0] if line.key != key]
        if len(lines) == len(self._state[0]):
            return
        self._set_lines(lines)

    def set_quantity(self, key: str, qty: int) -> None:
        if qty <= 0:
            self.remove_item(key)
            return
        if self.get_line(key) is None:
            return
        lines = [
            CartLine(product=line.product, quantity=qty, key=line.key, side=line.side) if line.key == key else line
            for line in self._state[0]
        ]
        self._set_lines(lines)

    def clear(self) -> None:
        self._set_lines([])

    # -- observers -----------------------------------------------------------

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
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

    # -- internals -----------------------------------------------------------

    def _set_lines(self, lines: List[CartLine], persist: bool = True, notify: bool = True) -> None:
        count = sum(line.quantity for line in lines)
        subtotal = sum((line.line_total for line in lines), Decimal(0))
        self._state = (tuple(lines), count, subtotal)
        if persist:
            self._persist()
        if notify:
            for listener in list(self._listeners):
                listener(self)

    def _persist(self) -> None:
        if self._store is None:
            return
        payload = {
            "state": {"items": [line.to_dict() for line in self._state[0]]},
            "version": CART_STORAGE_VERSION,
        }
        self._writing = True
        try:
            self._store.set_item(self._storage_key, json.dumps(payload, ensure_ascii=False))
        except Exception as error:
            logger.error("cart_persist_failed", key=self._storage_key, error=str(error))
        finally:
            self._writing = False

    def _load(self) -> List[CartLine]:
        if self._store is None:
            return []
        try:
            raw = self._store.get_item(self._storage_key)
            if not raw:
                return []
            payload = json.loads(raw)
            items = payload["state"]["items"]
            lines: List[CartLine] = []
            seen = set()
            for item in items:
                line = CartLine.from_dict(item)
                if line.key in seen:
                    raise ValueError(f"duplicate cart line {line.key}")
                seen.add(line.key)
                lines.append(line)
            return lines
        except Exception as error:
            logger.warning("cart_snapshot_invalid", key=self._storage_key, error=str(error))
            return []

    def _on_store_change(self, key: str) -> None:
        if key != self._storage_key or self._writing:
            return
        self._set_lines(self._load(), persist=False)
