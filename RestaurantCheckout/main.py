import asyncio
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx

from RestaurantCheckout.admin import AdminDiscountService, AdminOrderService
from RestaurantCheckout.api import OrdersApiClient, TokenProvider
from RestaurantCheckout.cart import CartStore
from RestaurantCheckout.checkout import CheckoutSession, CheckoutView
from RestaurantCheckout.config import Settings, load_settings
from RestaurantCheckout.confirmation import ConfirmationScreen
from RestaurantCheckout.log import configure_logging
from RestaurantCheckout.models import CustomerIdentity
from RestaurantCheckout.profile import CustomerAccountService
from RestaurantCheckout.repository import CatalogRepository, DiscountRepository, UserDataRepository
from RestaurantCheckout.service import DiscountService
from RestaurantCheckout.storage import (
    CustomerStorage,
    JsonFileStore,
    KeyValueStore,
    MemoryStore,
    SessionContext,
    ThemePreference,
)
from RestaurantCheckout.summary import CustomerSummaryEngine
from RestaurantCheckout.timers import LoopScheduler, Scheduler, TimerHandle
from RestaurantCheckout.upsell import UpsellController


@dataclass
class CheckoutApp:
    """Everything one customer device needs, wired together."""
    settings: Settings
    scheduler: Scheduler
    store: KeyValueStore
    session_store: KeyValueStore
    api: OrdersApiClient
    catalog: CatalogRepository
    cart: CartStore
    discount_repository: DiscountRepository
    user_data: UserDataRepository
    session_context: SessionContext
    theme: ThemePreference
    store_watch: Optional[TimerHandle] = field(default=None, repr=False)

    def watch_store(self) -> None:
        """Re-read the device store on an interval so changes from other processes reach the listeners."""
        interval = self.settings.storage_poll_ms
        if self.store_watch is not None or interval <= 0:
            return
        self.store_watch = self.scheduler.call_every(interval, self.store.refresh)

    def customer_storage(self, identity: CustomerIdentity) -> CustomerStorage:
        return CustomerStorage(self.store, identity)

    def checkout(self,
                 identity: CustomerIdentity,
                 navigator: Callable[[str], None],
                 view: Optional[CheckoutView] = None) -> CheckoutSession:
        return CheckoutSession(
            cart=self.cart,
            discounts=DiscountService(self.discount_repository),
            upsell=UpsellController(self.scheduler),
            api=self.api,
            customer_storage=self.customer_storage(identity),
            session_context=self.session_context,
            catalog=self.catalog,
            scheduler=self.scheduler,
            navigator=navigator,
            settings=self.settings,
            view=view,
        )

    def confirmation(self,
                     open_link: Callable[[str], None],
                     navigator: Callable[[str], None]) -> ConfirmationScreen:
        return ConfirmationScreen(self.session_context, self.scheduler, open_link, navigator)

    def summary(self, identity: CustomerIdentity) -> CustomerSummaryEngine:
        return CustomerSummaryEngine(self.customer_storage(identity))

    def account(self, identity: CustomerIdentity) -> CustomerAccountService:
        return CustomerAccountService(
            user_id=identity.backend_user_id,
            user_data=self.user_data,
            catalog=self.catalog,
            cart=self.cart,
            session_context=self.session_context,
        )

    def admin_orders(self) -> AdminOrderService:
        return AdminOrderService(self.api)

    def admin_discounts(self) -> AdminDiscountService:
        return AdminDiscountService(self.api)

    async def close(self) -> None:
        if self.store_watch is not None:
            self.store_watch.cancel()
            self.store_watch = None
        self.cart.close()
        await self.api.close()


class CheckoutFactory:

    async def setup(self,
                    settings: Optional[Settings] = None,
                    store: Optional[KeyValueStore] = None,
                    scheduler: Optional[Scheduler] = None,
                    token_provider: Optional[TokenProvider] = None,
                    transport: Optional[httpx.AsyncBaseTransport] = None) -> CheckoutApp:

        settings = settings or load_settings()
        configure_logging(settings.log_level, settings.log_json)

        # device storage
        store = store if store is not None else JsonFileStore(settings.storage_path)
        session_store = MemoryStore()

        api = OrdersApiClient(
            base_url=settings.api_url,
            api_key=settings.api_key,
            token_provider=token_provider,
            timeout=settings.http_timeout,
            transport=transport,
        )
        app = CheckoutApp(
            settings=settings,
            scheduler=scheduler or LoopScheduler(),
            store=store,
            session_store=session_store,
            api=api,
            catalog=CatalogRepository.default(),
            cart=CartStore(store),
            discount_repository=DiscountRepository(api),
            user_data=UserDataRepository(api),
            session_context=SessionContext(session_store),
            theme=ThemePreference(store),
        )
        app.watch_store()
        return app


async def run_demo() -> None:
    """Place a guest order for one combo against the configured API."""
    app = await CheckoutFactory().setup(store=MemoryStore())
    visited = []
    session = app.checkout(CustomerIdentity(), navigator=visited.append)
    await session.start()

    app.cart.add_item(app.catalog.get_product("1"), 1, "Papa al horno")
    session.update_field("customer_name", "Juan Pérez")
    session.update_field("delivery_address", "Av. Siempre Viva 742")
    session.update_field("email", "juan@example.com")

    finalized = await session.handle_submit()
    await session.background.drain()
    session.close()

    print(f"Finalized: {finalized} -> {visited}")
    print(session.last_message)
    print(f"Link: {session.last_link}")
    await app.close()


if __name__ == "__main__":
    asyncio.run(run_demo())
