"""Shared fixtures: a hand-driven clock, an in-memory device store and a fake API."""
import heapq
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from RestaurantCheckout.api import OrdersApiClient
from RestaurantCheckout.cart import CartStore
from RestaurantCheckout.checkout import CheckoutSession, CheckoutView
from RestaurantCheckout.config import Settings
from RestaurantCheckout.models import Combo, CustomerIdentity, DiscountCode, DiscountRedemption
from RestaurantCheckout.repository import CatalogRepository, DiscountRepository
from RestaurantCheckout.service import DiscountService
from RestaurantCheckout.storage import CustomerStorage, MemoryStore, SessionContext
from RestaurantCheckout.timers import Scheduler, TimerHandle
from RestaurantCheckout.upsell import UpsellController

FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
EPOCH_START_MS = 1_748_779_200_000
API_URL = "http://api.test"


class ManualScheduler(Scheduler):
    """Scheduler whose clock only moves when the test says so.

    ``sleep`` records the requested delay and advances the clock by it, firing any
    timer that falls due on the way.
    """

    def __init__(self, epoch_start_ms: int = EPOCH_START_MS):
        self.now = 0.0
        self.epoch_start_ms = epoch_start_ms
        self.sleeps: List[float] = []
        self._queue: List[list] = []
        self._seq = 0

    def monotonic_ms(self) -> float:
        return self.now

    def epoch_ms(self) -> int:
        return int(self.epoch_start_ms + self.now)

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        self._seq += 1
        entry = [self.now + max(0.0, delay_ms), self._seq, callback, False]
        heapq.heappush(self._queue, entry)

        def cancel() -> None:
            entry[3] = True

        return TimerHandle(cancel)

    async def sleep(self, delay_ms: float) -> None:
        self.sleeps.append(delay_ms)
        self.advance(delay_ms)

    def advance(self, delay_ms: float) -> None:
        target = self.now + delay_ms
        while self._queue and self._queue[0][0] <= target:
            entry = heapq.heappop(self._queue)
            if entry[3]:
                continue
            self.now = entry[0]
            entry[2]()
        self.now = target

    @property
    def pending(self) -> int:
        return sum(1 for entry in self._queue if not entry[3])


class RecordingView(CheckoutView):

    def __init__(self, can_scroll: bool = True):
        self.can_scroll = can_scroll
        self.blurred: List[str] = []
        self.focused: List[str] = []
        self.alerts: List[str] = []
        self.scrolls = 0

    def blur_field(self, field: str) -> None:
        self.blurred.append(field)

    def scroll_to_form_top(self) -> bool:
        self.scrolls += 1
        return self.can_scroll

    def focus_field(self, field: str) -> bool:
        self.focused.append(field)
        return True

    def alert(self, message: str) -> None:
        self.alerts.append(message)


class FakeApi:
    """Route table served through ``httpx.MockTransport``.

    Unrouted requests answer 404. Every request is recorded in ``requests``.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def on(self,
           method: str,
           path: str,
           json_body: Any = None,
           status: int = 200,
           handler: Optional[Callable[[httpx.Request], httpx.Response]] = None) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            if json_body is None:
                return httpx.Response(status)
            return httpx.Response(status, json=json_body)

        self.routes[(method, path)] = handler or respond

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": "not found"})
        return route(request)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.method == method and request.url.path == path]

    def body(self, method: str, path: str, index: int = -1) -> Any:
        return json.loads(self.calls(method, path)[index].content)

    def client(self, token: Optional[str] = "token-1", api_key: Optional[str] = "test-key") -> OrdersApiClient:
        async def token_provider() -> Optional[str]:
            return token

        return OrdersApiClient(API_URL, api_key=api_key, token_provider=token_provider,
                               transport=httpx.MockTransport(self))


def discount_code(code: str = "PROMO10",
                  value: str = "0",
                  percentage: Optional[str] = "10",
                  max_redemptions: int = 1,
                  used: int = 0,
                  expires_at: Optional[datetime] = None) -> DiscountCode:
    return DiscountCode(
        id=f"id-{code}",
        code=code,
        value=Decimal(value),
        percentage=Decimal(percentage) if percentage is not None else None,
        max_redemptions=max_redemptions,
        redemptions=[
            DiscountRedemption(id=f"r{index}", code=code, value_applied=Decimal(100), redeemed_at=FIXED_NOW)
            for index in range(used)
        ],
        expires_at=expires_at,
    )


def api_discount_code(code: str = "PROMO10", value: str = "0", percentage: Optional[str] = "10") -> Dict[str, Any]:
    data: Dict[str, Any] = {"id": f"id-{code}", "code": code, "type": "PROMO", "value": value,
                            "maxRedemptions": 1, "redemptions": []}
    if percentage is not None:
        data["percentage"] = percentage
    return data


def user_detail(user_id: str = "u1", codes: Optional[List[Dict[str, Any]]] = None, **extra: Any) -> Dict[str, Any]:
    data = {"id": user_id, "email": "ana@example.com", "firstName": "Ana", "discountCodesOwned": codes or []}
    data.update(extra)
    return data


def sample_combo(price: int = 24000) -> Combo:
    return Combo(id=10, name="Combo Test", price=Decimal(price))


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def catalog() -> CatalogRepository:
    return CatalogRepository.default()


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def cart(store) -> CartStore:
    return CartStore(store)


@pytest.fixture
def make_session(store, scheduler, catalog, fake_api, cart):
    """Build a checkout session; keyword arguments override the collaborators."""

    def factory(identity: Optional[CustomerIdentity] = None,
                view: Optional[CheckoutView] = None,
                navigator: Optional[Callable[[str], None]] = None,
                settings: Optional[Settings] = None) -> CheckoutSession:
        api = fake_api.client()
        identity = identity or CustomerIdentity()
        return CheckoutSession(
            cart=cart,
            discounts=DiscountService(DiscountRepository(api), clock=lambda: FIXED_NOW),
            upsell=UpsellController(scheduler),
            api=api,
            customer_storage=CustomerStorage(store, identity),
            session_context=SessionContext(MemoryStore()),
            catalog=catalog,
            scheduler=scheduler,
            navigator=navigator or (lambda path: None),
            settings=settings or Settings(),
            view=view or RecordingView(),
        )

    return factory
