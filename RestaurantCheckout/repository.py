"""Repository module for catalog and customer data retrieval.

This module contains repository classes that manage the application's data layer:
the product catalog held in memory, and read-through caches over the ordering API
for a customer's discount codes and profile data. It serves as an abstraction
layer between the checkout logic and the remote API.
"""
import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

import structlog

from RestaurantCheckout import catalog
from RestaurantCheckout.exceptions import ProductNotFound
from RestaurantCheckout.models import Combo, DiscountCode, Extra, IndividualItem, Product
from RestaurantCheckout.schemas import ApiUserDetail, ApiUserEngagement

if TYPE_CHECKING:
    from RestaurantCheckout.api import OrdersApiClient

logger = structlog.get_logger()


class CatalogRepository:
    """Repository class for the product catalog.

    Holds combos, individual items and extras in memory. Combos and individual
    items are keyed by numeric id, extras by string id.
    """

    def __init__(self,
                 combos: Optional[List[Combo]] = None,
                 individuals: Optional[List[IndividualItem]] = None,
                 extras: Optional[List[Extra]] = None):
        self._combos: Dict[int, Combo] = {}
        self._individuals: Dict[int, IndividualItem] = {}
        self._extras: Dict[str, Extra] = {}
        for combo in combos or []:
            self._combos[combo.id] = combo
        for item in individuals or []:
            self._individuals[item.id] = item
        for extra in extras or []:
            self._extras[extra.id] = extra

    @classmethod
    def default(cls) -> "CatalogRepository":
        return cls(combos=catalog.COMBOS, individuals=catalog.INDIVIDUALES, extras=catalog.EXTRAS)

    def find_product(self, product_key: Optional[str]) -> Optional[Product]:
        if not product_key:
            return None
        key = str(product_key).strip()
        if key.lstrip("-").isdigit():
            numeric_id = int(key)
            product = self._combos.get(numeric_id) or self._individuals.get(numeric_id)
            if product is not None:
                return product
        return self._extras.get(key)

    def get_product(self, product_key: str) -> Product:
        product = self.find_product(product_key)
        if product is None:
            raise ProductNotFound(f"Product with key {product_key} does not exist")
        return product

    def get_all_products(self) -> List[Product]:
        return [*self._combos.values(), *self._individuals.values(), *self._extras.values()]

    def promo_item(self) -> Optional[Extra]:
        return self._extras.get(catalog.PROMO_EXTRA_ID)


class DiscountRepository:
    """Read-through cache of the discount codes a customer owns.

    The codes are fetched from the ordering API once per user and reused until
    ``invalidate`` is called or a refresh is forced.
    """

    def __init__(self, api: "OrdersApiClient"):
        self._api = api
        self._codes: Dict[str, List[DiscountCode]] = {}
        self._lock = asyncio.Lock()

    async def get_codes(self, user_id: str, force: bool = False) -> List[DiscountCode]:
        async with self._lock:
            if not force and user_id in self._codes:
                return self._codes[user_id]
            detail = await self._api.get_user_detail(user_id)
            codes = [code.to_domain() for code in detail.discount_codes_owned]
            self._codes[user_id] = codes
            logger.debug("discount_codes_loaded", user_id=user_id, count=len(codes))
            return codes

    def cached_codes(self, user_id: str) -> Optional[List[DiscountCode]]:
        return self._codes.get(user_id)

    def invalidate(self, user_id: Optional[str] = None) -> None:
        if user_id is None:
            self._codes.clear()
        else:
            self._codes.pop(user_id, None)


class UserDataRepository:
    """Caches the detail and engagement records of the signed-in backend user.

    Both records are requested concurrently and kept until the user changes,
    a refresh is forced, or ``reset`` is called.
    """

    def __init__(self, api: "OrdersApiClient"):
        self._api = api
        self._user_id: Optional[str] = None
        self._detail: Optional[ApiUserDetail] = None
        self._engagement: Optional[ApiUserEngagement] = None

    @property
    def api(self) -> "OrdersApiClient":
        return self._api

    @property
    def detail(self) -> Optional[ApiUserDetail]:
        return self._detail

    @property
    def engagement(self) -> Optional[ApiUserEngagement]:
        return self._engagement

    async def ensure_user_data(
            self,
            user_id: Optional[str],
            force: bool = False) -> Optional[Tuple[ApiUserDetail, ApiUserEngagement]]:
        if not user_id:
            return None
        if user_id != self._user_id:
            self.reset()
            self._user_id = user_id
        if not force and self._detail is not None and self._engagement is not None:
            return self._detail, self._engagement

        detail, engagement = await asyncio.gather(
            self._api.get_user_detail(user_id),
            self._api.get_user_engagement(user_id),
        )
        self._detail = detail
        self._engagement = engagement
        logger.debug("user_data_loaded", user_id=user_id, fetched_at=datetime.now(timezone.utc).isoformat())
        return detail, engagement

    def reset(self) -> None:
        self._detail = None
        self._engagement = None
