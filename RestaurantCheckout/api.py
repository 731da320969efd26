"""Async client for the ordering REST API.

Every request declares an auth mode. NONE sends only the API key, OPTIONAL adds a
bearer token when one can be obtained, REQUIRED raises ``AuthenticationRequired``
before any I/O when there is no token. Non-2xx answers and transport failures
surface as ``ApiError``.
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from RestaurantCheckout.enums import AuthMode, MessageAuthor, OrderAction, OrderStatus, ShareCouponStatus
from RestaurantCheckout.exceptions import ApiError, AuthenticationRequired
from RestaurantCheckout.schemas import (
    ApiDiscountCode,
    ApiOrder,
    ApiOrderMessage,
    ApiOrderPage,
    ApiShareCoupon,
    ApiUserDetail,
    ApiUserEngagement,
    ApiUserListItem,
    ApiUserRef,
    CreateOrderPayload,
    CreateUserDiscountPayload,
    OrderMessagePayload,
    RegisterPurchaseResult,
    UpdateProfilePayload,
    UpsertUserPayload,
)

logger = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=BaseModel)
TokenProvider = Callable[[], Awaitable[Optional[str]]]


def _query(**params: Any) -> Dict[str, Any]:
    return {key: value for key, value in params.items() if value is not None}


class OrdersApiClient:
    """Thin typed wrapper over ``httpx.AsyncClient``.

    Args:
        base_url: API root, e.g. ``http://localhost:3000``
        api_key: Sent as ``x-api-key`` on every request when set
        token_provider: Coroutine function returning the current bearer token or None
        timeout: Per-request timeout in seconds
        transport: Custom transport, used by tests to fake the server
    """

    def __init__(self,
                 base_url: str,
                 api_key: Optional[str] = None,
                 token_provider: Optional[TokenProvider] = None,
                 timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        headers = {"x-api-key": api_key} if api_key else {}
        self._token_provider = token_provider
        self._client = httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "OrdersApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _auth_headers(self, auth: AuthMode, path: str) -> Dict[str, str]:
        if auth == AuthMode.NONE:
            return {}
        token = await self._token_provider() if self._token_provider is not None else None
        if token:
            return {"Authorization": f"Bearer {token}"}
        if auth == AuthMode.REQUIRED:
            raise AuthenticationRequired(f"{path} requires an authenticated session")
        return {}

    async def _request(self,
                       method: str,
                       path: str,
                       auth: AuthMode = AuthMode.NONE,
                       json: Optional[Any] = None,
                       params: Optional[Dict[str, Any]] = None) -> Any:
        headers = await self._auth_headers(auth, path)
        try:
            response = await self._client.request(method, path, json=json, params=params, headers=headers)
        except httpx.HTTPError as error:
            logger.warning("api_request_failed", method=method, path=path, error=str(error))
            raise ApiError(f"{method} {path} failed: {error}") from error

        if response.is_error:
            logger.warning("api_error_response", method=method, path=path, status=response.status_code)
            raise ApiError(
                f"API {response.status_code} {response.reason_phrase}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as error:
            raise ApiError(f"{method} {path} returned invalid JSON", response.status_code, response.text) from error

    @staticmethod
    def _parse(model: Type[ModelT], data: Any) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as error:
            raise ApiError(f"Unexpected {model.__name__} payload: {error}") from error

    def _parse_list(self, model: Type[ModelT], data: Any) -> List[ModelT]:
        if isinstance(data, dict) and "items" in data:
            data = data["items"]
        return [self._parse(model, item) for item in data or []]

    # ---------------------------
    # Orders
    # ---------------------------
    async def create_order(self, payload: CreateOrderPayload) -> ApiOrder:
        data = await self._request("POST", "/orders", AuthMode.OPTIONAL, json=payload.to_wire())
        return self._parse(ApiOrder, data)

    async def list_orders(self,
                          status: Optional[OrderStatus] = None,
                          skip: Optional[int] = None,
                          take: Optional[int] = None,
                          user_id: Optional[str] = None) -> ApiOrderPage:
        params = _query(status=status.value if status else None, skip=skip, take=take, userId=user_id)
        data = await self._request("GET", "/orders", AuthMode.REQUIRED, params=params)
        return self._parse(ApiOrderPage, data)

    async def get_user_orders(self, user_id: str, skip: Optional[int] = None, take: int = 10) -> List[ApiOrder]:
        data = await self._request("GET", f"/orders/user/{user_id}", AuthMode.OPTIONAL,
                                   params=_query(skip=skip, take=take))
        return self._parse_list(ApiOrder, data)

    async def get_active_user_orders(self,
                                     user_id: str,
                                     skip: Optional[int] = None,
                                     take: Optional[int] = None) -> List[ApiOrder]:
        data = await self._request("GET", f"/orders/user/{user_id}/active", AuthMode.OPTIONAL,
                                   params=_query(skip=skip, take=take))
        return self._parse_list(ApiOrder, data)

    async def transition_order(self, order_id: str, action: OrderAction, reason: Optional[str] = None) -> ApiOrder:
        body: Optional[Dict[str, Any]] = None
        if action == OrderAction.CANCEL:
            body = {"reason": reason} if reason else {}
        data = await self._request("PATCH", f"/orders/{order_id}/{action.value}", AuthMode.REQUIRED, json=body)
        return self._parse(ApiOrder, data)

    async def cancel_order(self, order_id: str, reason: Optional[str] = None) -> ApiOrder:
        return await self.transition_order(order_id, OrderAction.CANCEL, reason)

    async def list_order_messages(self, order_id: str) -> List[ApiOrderMessage]:
        data = await self._request("GET", f"/orders/{order_id}/messages", AuthMode.OPTIONAL)
        return self._parse_list(ApiOrderMessage, data)

    async def post_order_message(self,
                                 order_id: str,
                                 author: MessageAuthor,
                                 message: str,
                                 extra: Optional[Dict[str, Any]] = None) -> ApiOrderMessage:
        payload = OrderMessagePayload(author=author, payload={**(extra or {}), "message": message})
        data = await self._request("POST", f"/orders/{order_id}/messages", AuthMode.OPTIONAL, json=payload.to_wire())
        return self._parse(ApiOrderMessage, data)

    # ---------------------------
    # Users
    # ---------------------------
    async def upsert_user(self, payload: UpsertUserPayload) -> ApiUserRef:
        data = await self._request("POST", "/users", AuthMode.OPTIONAL, json=payload.to_wire())
        return self._parse(ApiUserRef, data)

    async def update_user_profile(self, user_id: str, payload: UpdateProfilePayload) -> None:
        await self._request("PATCH", f"/users/{user_id}/profile", AuthMode.OPTIONAL, json=payload.to_wire())

    async def register_purchase(self, user_id: str) -> RegisterPurchaseResult:
        data = await self._request("POST", f"/users/{user_id}/purchases", AuthMode.OPTIONAL)
        return self._parse(RegisterPurchaseResult, data or {})

    async def get_user_detail(self, user_id: str) -> ApiUserDetail:
        data = await self._request("GET", f"/users/{user_id}", AuthMode.OPTIONAL)
        return self._parse(ApiUserDetail, data)

    async def get_user_engagement(self, user_id: str) -> ApiUserEngagement:
        data = await self._request("GET", f"/users/{user_id}/engagement", AuthMode.OPTIONAL)
        return self._parse(ApiUserEngagement, data)

    async def list_users(self, take: Optional[int] = None, search: Optional[str] = None) -> List[ApiUserListItem]:
        data = await self._request("GET", "/users", AuthMode.REQUIRED, params=_query(take=take, search=search))
        return self._parse_list(ApiUserListItem, data)

    async def get_user_share_coupons(self, user_id: str) -> List[ApiShareCoupon]:
        data = await self._request("GET", f"/users/{user_id}/share-coupons", AuthMode.OPTIONAL)
        return self._parse_list(ApiShareCoupon, data)

    async def issue_share_coupons(self, user_id: str) -> List[ApiShareCoupon]:
        data = await self._request("POST", f"/users/{user_id}/share-coupons", AuthMode.OPTIONAL)
        return self._parse_list(ApiShareCoupon, data)

    async def activate_share_coupon(self, user_id: str, code: str) -> ApiShareCoupon:
        data = await self._request("POST", f"/users/{user_id}/share-coupons/{code}/activate", AuthMode.REQUIRED)
        return self._parse(ApiShareCoupon, data)

    async def list_share_coupons(self, status: Optional[ShareCouponStatus] = None) -> List[ApiShareCoupon]:
        params = _query(status=status.value if status else None)
        data = await self._request("GET", "/users/share-coupons", AuthMode.REQUIRED, params=params)
        return self._parse_list(ApiShareCoupon, data)

    async def create_user_discount(self, user_id: str, payload: CreateUserDiscountPayload) -> ApiDiscountCode:
        data = await self._request("POST", f"/users/{user_id}/discounts", AuthMode.REQUIRED, json=payload.to_wire())
        return self._parse(ApiDiscountCode, data)

    async def list_discount_codes(self, active_only: Optional[bool] = None) -> List[ApiDiscountCode]:
        params = _query(activeOnly=str(active_only).lower() if active_only is not None else None)
        data = await self._request("GET", "/users/discount-codes", AuthMode.REQUIRED, params=params)
        return self._parse_list(ApiDiscountCode, data)
