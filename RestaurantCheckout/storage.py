"""Local persistent key-value storage.

The checkout keeps a handful of values on the customer's device: the cart, the theme,
the last checkout form, the last purchase, the loyalty counter and the pending bonus
marker. Values are strings (JSON documents where structured), exactly one per key.

Per-customer values are written under a priority-ordered chain of keys (backend user
id, identity-provider uid, global fallback) so a later session can find them before
authentication has resolved. Reads take the first key present; writes go to every key.
Storage failures are logged per key and never escape to the checkout flow.
"""
import json
import math
import os
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

import structlog

from RestaurantCheckout.enums import Theme
from RestaurantCheckout.exceptions import StorageError
from RestaurantCheckout.models import (
    CustomerIdentity,
    LastOrderContext,
    OrderForm,
    PendingBonusState,
    StoredPurchase,
)

logger = structlog.get_logger()

StorageListener = Callable[[str], None]

CART_STORAGE_KEY = "pt-cart-storage"
THEME_KEY = "pt_theme"
DISCOUNT_TO_APPLY_KEY = "pt_discount_to_apply"
LAST_ORDER_CONTEXT_KEY = "pt_last_order_context"


class KeyValueStore:
    """Base class of the string key-value stores.

    Listeners registered with ``subscribe`` are called with the key of every value
    that changed, whether the change came from this process or was picked up from
    another writer by ``refresh``.
    """

    def __init__(self):
        self._listeners: List[StorageListener] = []

    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> List[str]:
        raise NotImplementedError

    def refresh(self) -> List[str]:
        return []

    def subscribe(self, listener: StorageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, key: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(key)
            except Exception:
                logger.exception("storage_listener_failed", key=key)


class MemoryStore(KeyValueStore):
    """In-memory store. Used for session-scoped values and in tests."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        super().__init__()
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"Value for {key} must be a string, got {type(value).__name__}")
        self._data[key] = value
        self._notify(key)

    def remove_item(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._notify(key)

    def keys(self) -> List[str]:
        return list(self._data)

    def simulate_external_write(self, key: str, value: Optional[str]) -> None:
        """Apply a change as if another process had written it."""
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = value
        self._notify(key)


class JsonFileStore(KeyValueStore):
    """Durable store backed by a single JSON object on disk.

    Several processes may share the file. Each write takes the lock file, re-reads
    the object, changes only its own key and replaces the file atomically, so keys
    written by other processes survive. ``refresh`` re-reads the file and notifies
    listeners about keys another process changed in the meantime.

    Args:
        path: The JSON file
        lock_timeout: Seconds to wait for the lock file before the write fails
        stale_lock_after: Age in seconds after which a leftover lock file is broken
    """

    def __init__(self, path: str, lock_timeout: float = 2.0, stale_lock_after: float = 10.0):
        super().__init__()
        self._path = path
        self._lock_path = f"{path}.lock"
        self._lock_timeout = lock_timeout
        self._stale_lock_after = stale_lock_after
        self._data: Dict[str, str] = self._read_file()

    @property
    def path(self) -> str:
        return self._path

    def _read_file(self) -> Dict[str, str]:
        try:
            with open(self._path, "r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as error:
            logger.error("storage_file_unreadable", path=self._path, error=str(error))
            return {}
        if not isinstance(raw, dict):
            logger.error("storage_file_invalid", path=self._path, type=type(raw).__name__)
            return {}
        return {str(key): value for key, value in raw.items() if isinstance(value, str)}

    def _write_file(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(os.path.abspath(self._path))
        try:
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".checkout-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, ensure_ascii=False)
            os.replace(tmp_path, self._path)
        except OSError as error:
            raise StorageError(f"Could not write {self._path}: {error}") from error

    def _break_stale_lock(self) -> None:
        try:
            age = time.time() - os.path.getmtime(self._lock_path)
        except OSError:
            return
        if age > self._stale_lock_after:
            logger.warning("storage_lock_broken", path=self._lock_path, age=round(age, 1))
            try:
                os.remove(self._lock_path)
            except FileNotFoundError:
                pass

    @contextmanager
    def _locked(self) -> Iterator[None]:
        deadline = time.monotonic() + self._lock_timeout
        while True:
            try:
                fd = os.open(self._lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                break
            except FileExistsError:
                if time.monotonic() >= deadline:
                    raise StorageError(f"Timed out waiting for {self._lock_path}")
                self._break_stale_lock()
                time.sleep(0.01)
            except OSError as error:
                raise StorageError(f"Could not lock {self._path}: {error}") from error
        try:
            yield
        finally:
            os.close(fd)
            try:
                os.remove(self._lock_path)
            except FileNotFoundError:
                pass

    def _adopt(self, current: Dict[str, str], written: Optional[str] = None) -> None:
        """Replace the cached object and notify every key that differs, ``written`` included."""
        changed = {key for key in set(current) | set(self._data) if current.get(key) != self._data.get(key)}
        if written is not None:
            changed.add(written)
        self._data = current
        for key in sorted(changed):
            self._notify(key)

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"Value for {key} must be a string, got {type(value).__name__}")
        with self._locked():
            current = self._read_file()
            current[key] = value
            self._write_file(current)
        self._adopt(current, written=key)

    def remove_item(self, key: str) -> None:
        with self._locked():
            current = self._read_file()
            removed = current.pop(key, None) is not None
            if removed:
                self._write_file(current)
        self._adopt(current, written=key if removed else None)

    def keys(self) -> List[str]:
        return list(self._data)

    def refresh(self) -> List[str]:
        current = self._read_file()
        changed = [key for key in set(current) | set(self._data) if current.get(key) != self._data.get(key)]
        self._adopt(current)
        return changed


def build_keys(*candidates: Optional[str]) -> List[str]:
    keys: List[str] = []
    for candidate in candidates:
        if candidate and candidate not in keys:
            keys.append(candidate)
    return keys


@dataclass(frozen=True)
class KeyChain:
    """Priority-ordered keys for one logical per-customer value."""
    prefix: str
    uid_prefix: str
    fallback: str

    def keys(self, backend_user_id: Optional[str] = None, auth_uid: Optional[str] = None) -> List[str]:
        return build_keys(
            f"{self.prefix}{backend_user_id}" if backend_user_id else None,
            f"{self.uid_prefix}{auth_uid}" if auth_uid else None,
            self.fallback,
        )


PROFILE_KEYS = KeyChain("pt_checkout_profile_", "pt_checkout_profile_uid_", "pt_checkout_profile_last")
BONUS_COUNTER_KEYS = KeyChain("pt_bonus_counter_", "pt_bonus_counter_uid_", "pt_bonus_counter_last")
LAST_PURCHASE_KEYS = KeyChain("pt_last_purchase_", "pt_last_purchase_uid_", "pt_last_purchase_last")
PENDING_BONUS_KEYS = KeyChain("pt_bonus_pending_", "pt_bonus_pending_uid_", "pt_bonus_pending_last")


def write_string_to_keys(store: KeyValueStore, keys: List[str], value: str) -> None:
    for key in keys:
        try:
            store.set_item(key, value)
        except StorageError as error:
            logger.error("storage_write_failed", key=key, error=str(error))


def write_json_to_keys(store: KeyValueStore, keys: List[str], value: Any) -> None:
    try:
        payload = json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as error:
        logger.error("storage_serialize_failed", keys=keys, error=str(error))
        return
    write_string_to_keys(store, keys, payload)


def read_first_string(store: KeyValueStore, keys: List[str]) -> Optional[str]:
    for key in keys:
        try:
            value = store.get_item(key)
        except StorageError as error:
            logger.error("storage_read_failed", key=key, error=str(error))
            continue
        if value is not None:
            return value
    return None


def read_first_json(store: KeyValueStore, keys: List[str]) -> Optional[Any]:
    raw = read_first_string(store, keys)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError as error:
        logger.error("storage_parse_failed", keys=keys, error=str(error))
        return None


def remove_keys(store: KeyValueStore, keys: List[str]) -> None:
    for key in keys:
        try:
            store.remove_item(key)
        except StorageError as error:
            logger.error("storage_remove_failed", key=key, error=str(error))


class CustomerStorage:
    """Per-customer values persisted on the device.

    Args:
        store: The durable key-value store
        identity: Whose values to read and write; guests only use the fallback keys
    """

    def __init__(self, store: KeyValueStore, identity: CustomerIdentity):
        self.store = store
        self.identity = identity

    def _keys(self, chain: KeyChain) -> List[str]:
        return chain.keys(self.identity.backend_user_id, self.identity.auth_uid)

    @property
    def profile_keys(self) -> List[str]:
        return self._keys(PROFILE_KEYS)

    @property
    def bonus_counter_keys(self) -> List[str]:
        return self._keys(BONUS_COUNTER_KEYS)

    @property
    def last_purchase_keys(self) -> List[str]:
        return self._keys(LAST_PURCHASE_KEYS)

    @property
    def pending_bonus_keys(self) -> List[str]:
        return self._keys(PENDING_BONUS_KEYS)

    def load_profile(self, base: Optional[OrderForm] = None) -> Optional[OrderForm]:
        """Return ``base`` overlaid with the first stored profile, or None when absent."""
        for key in self.profile_keys:
            data = read_first_json(self.store, [key])
            if isinstance(data, dict):
                return (base or OrderForm()).merged_with(data)
        return None

    def save_profile(self, form: OrderForm) -> None:
        write_json_to_keys(self.store, self.profile_keys, form.to_dict())

    def read_purchase_count(self) -> int:
        raw = read_first_string(self.store, self.bonus_counter_keys)
        if not raw:
            return 0
        try:
            value = float(raw)
        except ValueError:
            logger.warning("bonus_counter_invalid", value=raw)
            return 0
        if not math.isfinite(value) or value < 0:
            logger.warning("bonus_counter_invalid", value=raw)
            return 0
        return int(value)

    def write_purchase_count(self, total: int) -> None:
        if not total:
            return
        write_string_to_keys(self.store, self.bonus_counter_keys, str(total))

    def load_last_purchase(self) -> Optional[StoredPurchase]:
        data = read_first_json(self.store, self.last_purchase_keys)
        if not isinstance(data, dict):
            return None
        try:
            return StoredPurchase.from_dict(data)
        except (KeyError, TypeError, ValueError) as error:
            logger.warning("last_purchase_invalid", error=str(error))
            return None

    def save_last_purchase(self, purchase: StoredPurchase) -> None:
        write_json_to_keys(self.store, self.last_purchase_keys, purchase.to_dict())

    def load_pending_bonus(self) -> Optional[PendingBonusState]:
        data = read_first_json(self.store, self.pending_bonus_keys)
        if not isinstance(data, dict):
            return None
        try:
            return PendingBonusState.from_dict(data)
        except (KeyError, TypeError, ValueError) as error:
            logger.warning("pending_bonus_invalid", error=str(error))
            return None

    def mark_pending_bonus(self, total_purchases: int, created_at: Optional[datetime] = None) -> None:
        state = PendingBonusState(
            total_purchases=total_purchases,
            created_at=(created_at or datetime.now(timezone.utc)).isoformat(),
        )
        write_json_to_keys(self.store, self.pending_bonus_keys, state.to_dict())

    def clear_pending_bonus(self) -> None:
        remove_keys(self.store, self.pending_bonus_keys)

    def watched_keys(self) -> List[str]:
        return [*self.bonus_counter_keys, *self.last_purchase_keys, *self.pending_bonus_keys]


class SessionContext:
    """Session-only values: the discount code to apply on the next checkout and the
    navigation context handed to the confirmation screen."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def set_discount_to_apply(self, code: str) -> None:
        write_string_to_keys(self.store, [DISCOUNT_TO_APPLY_KEY], code)

    def pop_discount_to_apply(self) -> Optional[str]:
        code = read_first_string(self.store, [DISCOUNT_TO_APPLY_KEY])
        if code is not None:
            remove_keys(self.store, [DISCOUNT_TO_APPLY_KEY])
        return code or None

    def save_last_order(self, context: LastOrderContext) -> None:
        write_json_to_keys(self.store, [LAST_ORDER_CONTEXT_KEY], context.to_dict())

    def load_last_order(self) -> Optional[LastOrderContext]:
        data = read_first_json(self.store, [LAST_ORDER_CONTEXT_KEY])
        if not isinstance(data, dict) or not data.get("whatsappUrl"):
            return None
        try:
            return LastOrderContext.from_dict(data)
        except (KeyError, TypeError, ValueError) as error:
            logger.warning("last_order_context_invalid", error=str(error))
            return None

    def mark_whatsapp_opened(self, opened_at_ms: int) -> Optional[LastOrderContext]:
        context = self.load_last_order()
        if context is None:
            return None
        context.whatsapp_opened_at = opened_at_ms
        self.save_last_order(context)
        return context

    def clear_last_order(self) -> None:
        remove_keys(self.store, [LAST_ORDER_CONTEXT_KEY])


class ThemePreference:
    def __init__(self, store: KeyValueStore):
        self.store = store

    def get(self) -> Theme:
        value = read_first_string(self.store, [THEME_KEY])
        try:
            return Theme(value)
        except ValueError:
            return Theme.LIGHT

    def set(self, theme: Theme) -> None:
        write_string_to_keys(self.store, [THEME_KEY], theme.value)

    def toggle(self) -> Theme:
        theme = Theme.DARK if self.get() == Theme.LIGHT else Theme.LIGHT
        self.set(theme)
        return theme
