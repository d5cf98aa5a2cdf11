"""
Order view-model.

Pure functions over a single order (cancel/return eligibility, refund preview,
progress step) and over the cached list (realtime merge, sort, search), plus
``OrderStore``: the per-session cache fed by REST reads, local echoes of
mutations and realtime pushes.

Both the local echo of a mutation and the ``order-status-updated`` push go
through the same replace-by-id merge, so their relative order does not matter
as long as each carries a full snapshot.
"""

import logging
import threading
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Iterable, List, Optional, Union

from pydantic import BaseModel, ValidationError

from gateway import ApiClient, ApiError, message_of
from realtime import RealtimeChannel, Subscription
from schemas import Order, OrderDraft, OrderStatus, RefundPreview, Result, ReturnStatus

logger = logging.getLogger(__name__)

CANCELLABLE = frozenset({
    OrderStatus.PENDING_VENDOR_APPROVAL, OrderStatus.PENDING, OrderStatus.APPROVED, OrderStatus.PROCESSING,
})
TERMINAL = frozenset({OrderStatus.CANCELLED, OrderStatus.RETURNED, OrderStatus.CLOSED, OrderStatus.REFUNDED})

NEW_ORDER = "new-order"
ORDER_STATUS_UPDATED = "order-status-updated"


# -------------------- Eligibility --------------------

def can_cancel(order: Order) -> bool:
    """Cancellation is offered only before packing starts."""
    return order.status in CANCELLABLE


def can_return(order: Order) -> bool:
    return order.status is OrderStatus.DELIVERED and order.return_status in (None, ReturnStatus.NONE)


def refund_preview(order: Order) -> RefundPreview:
    """Items and tax come back; the delivery charge never does."""
    refundable = order.items_price + order.tax_price
    return RefundPreview(refundable=refundable, non_refundable=order.shipping_price, total=refundable)


# -------------------- Progress --------------------

class Step(IntEnum):
    NONE = 0
    PLACED = 1
    CONFIRMED = 2
    PACKED = 3
    SHIPPED = 4
    DELIVERED = 5


STEP_LABELS = {
    Step.NONE: "",
    Step.PLACED: "Order Placed",
    Step.CONFIRMED: "Confirmed",
    Step.PACKED: "Packed",
    Step.SHIPPED: "Shipped",
    Step.DELIVERED: "Delivered",
}

# every OrderStatus member must appear here
_STEPS = {
    OrderStatus.PENDING_VENDOR_APPROVAL: Step.PLACED,
    OrderStatus.PENDING: Step.PLACED,
    OrderStatus.APPROVED: Step.CONFIRMED,
    OrderStatus.PROCESSING: Step.CONFIRMED,
    OrderStatus.PACKED: Step.PACKED,
    OrderStatus.SHIPPED: Step.SHIPPED,
    OrderStatus.OUT_FOR_DELIVERY: Step.SHIPPED,
    OrderStatus.DELIVERED: Step.DELIVERED,
    OrderStatus.CANCELLED: Step.NONE,
    OrderStatus.RETURNED: Step.NONE,
    OrderStatus.CLOSED: Step.NONE,
    OrderStatus.REFUNDED: Step.NONE,
}


class View(str, Enum):
    TRACKING = "tracking"
    DASHBOARD = "dashboard"


class Progress(BaseModel):
    step: Step
    label: str
    terminal: bool


def progress(status: OrderStatus, view: View = View.TRACKING) -> Progress:
    """Progress-bar position for ``status``.

    Terminal statuses show no progress on the tracking page and sit in the
    "placed" bucket on the account dashboard; ``terminal`` is set in both so a
    caller can render them distinctly.
    """
    terminal = status in TERMINAL
    step = _STEPS[status]
    if terminal and view is View.DASHBOARD:
        step = Step.PLACED
    label = status.value if terminal else STEP_LABELS[step]
    return Progress(step=step, label=label, terminal=terminal)


# -------------------- List operations --------------------

def _aware(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _is_stale(current: Order, incoming: Order) -> bool:
    if current.updated_at is None or incoming.updated_at is None:
        return False
    return _aware(incoming.updated_at) < _aware(current.updated_at)


def merge_status_update(orders: Iterable[Order], incoming: Order) -> List[Order]:
    """Replace the entry with ``incoming.id``; unknown ids are never appended."""
    merged = []
    for order in orders:
        if order.id == incoming.id and not _is_stale(order, incoming):
            merged.append(incoming)
        else:
            merged.append(order)
    return merged


def merge_new_order(orders: Iterable[Order], incoming: Order, privileged: bool) -> List[Order]:
    """Prepend a pushed order; only privileged sessions see other people's orders."""
    orders = list(orders)
    if not privileged:
        return orders
    return _upsert_front(orders, incoming)


def _upsert_front(orders: List[Order], incoming: Order) -> List[Order]:
    if any(o.id == incoming.id for o in orders):
        return merge_status_update(orders, incoming)
    return [incoming, *orders]


SORT_KEYS = ("newest", "oldest", "price-high", "price-low")


def sort_orders(orders: Iterable[Order], key: str = "newest") -> List[Order]:
    if key == "newest":
        return sorted(orders, key=lambda o: _aware(o.created_at), reverse=True)
    if key == "oldest":
        return sorted(orders, key=lambda o: _aware(o.created_at))
    if key == "price-high":
        return sorted(orders, key=lambda o: o.total_price, reverse=True)
    if key == "price-low":
        return sorted(orders, key=lambda o: o.total_price)
    raise ValueError(f"unknown sort key: {key}")


def search_orders(orders: Iterable[Order], query: Optional[str]) -> List[Order]:
    q = (query or "").strip().lower()
    if not q:
        return list(orders)
    return [
        o for o in orders
        if q in o.id.lower() or any(q in item.name.lower() for item in o.order_items)
    ]


def parse_orders(rows: Any) -> List[Order]:
    orders = []
    for row in rows or []:
        try:
            orders.append(Order.model_validate(row))
        except ValidationError as e:
            ref = row.get("_id") if isinstance(row, dict) else None
            logger.warning("Skipping unreadable order %s: %s", ref, e)
    return orders


def _snapshot(data: Any) -> Order:
    # mutation endpoints answer either with the order or {"message", "order"}
    if isinstance(data, dict) and isinstance(data.get("order"), dict):
        data = data["order"]
    return Order.model_validate(data)


# -------------------- Store --------------------

class OrderStore:
    """Orders visible to the current identity.

    Realtime handlers run on the transport's thread, so the cache is guarded
    by a lock and readers always get copies.
    """

    def __init__(self, api: ApiClient, privileged: bool = False) -> None:
        self.api = api
        self.privileged = privileged
        self._orders: List[Order] = []
        self._lock = threading.RLock()
        self._subscriptions: List[Subscription] = []

    @property
    def orders(self) -> List[Order]:
        with self._lock:
            return [o.model_copy(deep=True) for o in self._orders]

    def get(self, order_id: str) -> Optional[Order]:
        with self._lock:
            for order in self._orders:
                if order.id == order_id:
                    return order.model_copy(deep=True)
        return None

    def load(self) -> List[Order]:
        """Replace the cache from the backend; on failure keep what we had."""
        path = "/orders" if self.privileged else "/orders/myorders"
        try:
            rows = self.api.get(path)
        except ApiError as e:
            logger.error("Failed to fetch orders: %s", e)
            return self.orders
        orders = parse_orders(rows)
        with self._lock:
            self._orders = orders
        return self.orders

    def create(self, draft: Union[OrderDraft, dict]) -> Result:
        if isinstance(draft, OrderDraft):
            payload = draft.model_dump(mode="json", by_alias=True, exclude_none=True)
        else:
            payload = draft
        try:
            order = _snapshot(self.api.post("/orders", json=payload))
        except ApiError as e:
            logger.error("Failed to create order: %s", e)
            return Result.fail(message_of(e, "Failed to create order"))
        except ValidationError as e:
            logger.error("Unreadable order in create response: %s", e)
            return Result.fail("Failed to create order")
        with self._lock:
            self._orders = _upsert_front(self._orders, order)
        logger.info("Order %s created", order.id)
        return Result.ok(order, "Order placed")

    def apply_status_update(self, order: Union[Order, dict]) -> None:
        if not isinstance(order, Order):
            order = Order.model_validate(order)
        with self._lock:
            self._orders = merge_status_update(self._orders, order)

    def update_status(self, order_id: str, status: OrderStatus) -> Result:
        """Admin status transition, echoed into the cache before the push arrives."""
        try:
            order = _snapshot(self.api.put(f"/orders/{order_id}/status", json={"status": OrderStatus(status).value}))
        except ApiError as e:
            logger.error("Failed to update status of %s: %s", order_id, e)
            return Result.fail(message_of(e, "Failed to update order status"))
        except ValidationError as e:
            logger.error("Unreadable order in status response: %s", e)
            return Result.fail("Failed to update order status")
        self.apply_status_update(order)
        return Result.ok(order, f"Order marked {order.status.value}")

    def cancel(self, order_id: str) -> Result:
        try:
            data = self.api.post(f"/orders/{order_id}/cancel")
            order = _snapshot(data)
        except ApiError as e:
            logger.error("Failed to cancel order %s: %s", order_id, e)
            return Result.fail(message_of(e, "Failed to cancel order"))
        except ValidationError as e:
            logger.error("Unreadable order in cancel response: %s", e)
            return Result.fail("Failed to cancel order")
        self.apply_status_update(order)
        message = data.get("message") if isinstance(data, dict) else None
        return Result.ok(order, message or "Order cancelled successfully")

    def request_return(self, order_id: str, reason: str = "") -> Result:
        try:
            data = self.api.post(f"/orders/{order_id}/return", json={"reason": reason})
            order = _snapshot(data)
        except ApiError as e:
            logger.error("Failed to request return for %s: %s", order_id, e)
            return Result.fail(message_of(e, "Failed to request return"))
        except ValidationError as e:
            logger.error("Unreadable order in return response: %s", e)
            return Result.fail("Failed to request return")
        self.apply_status_update(order)
        message = data.get("message") if isinstance(data, dict) else None
        return Result.ok(order, message or "Return requested successfully")

    def admin_refund(self, order_id: str, reason: str = "") -> Result:
        try:
            data = self.api.post(f"/orders/{order_id}/admin/refund", json={"reason": reason})
            order = _snapshot(data)
        except ApiError as e:
            logger.error("Failed to refund order %s: %s", order_id, e)
            return Result.fail(message_of(e, "Failed to refund order"))
        except ValidationError as e:
            logger.error("Unreadable order in refund response: %s", e)
            return Result.fail("Failed to refund order")
        self.apply_status_update(order)
        message = data.get("message") if isinstance(data, dict) else None
        return Result.ok(order, message or "Order refunded")

    def track(self, order_id: str) -> Optional[Order]:
        """Look an order up by id; the result is not cached."""
        try:
            return Order.model_validate(self.api.get(f"/orders/track/{order_id}"))
        except ApiError as e:
            logger.info("Order %s not found: %s", order_id, e)
        except ValidationError as e:
            logger.error("Unreadable order in track response: %s", e)
        return None

    # -------------------- realtime --------------------

    def attach(self, channel: RealtimeChannel) -> None:
        self.detach()
        self._subscriptions = [
            channel.subscribe(NEW_ORDER, self._on_new_order),
            channel.subscribe(ORDER_STATUS_UPDATED, self._on_status_updated),
        ]

    def detach(self) -> None:
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions = []

    def _on_new_order(self, payload: Any) -> None:
        if not self.privileged:
            return
        try:
            order = Order.model_validate(payload)
        except ValidationError as e:
            logger.warning("Ignoring unreadable %s push: %s", NEW_ORDER, e)
            return
        with self._lock:
            self._orders = merge_new_order(self._orders, order, self.privileged)

    def _on_status_updated(self, payload: Any) -> None:
        try:
            self.apply_status_update(payload)
        except ValidationError as e:
            logger.warning("Ignoring unreadable %s push: %s", ORDER_STATUS_UPDATED, e)
