"""
Admin back-office.

Vendors, document and product approvals, payouts and returns all share one
screen pattern, so they are described by a ``Workflow`` and driven by a
``WorkflowView``: fetch a filtered list, show counts per status as facets,
run an action on one item, then re-fetch. Unlike orders, nothing here is
patched locally.
"""

import copy
import logging
import threading
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from pydantic import BaseModel, ValidationError

from gateway import ApiClient, ApiError, message_of
from realtime import RealtimeChannel, Subscription
from schemas import Coupon, CouponDraft, CouponState, PayoutRequest, RefundLog, Result, ReturnRecord, Vendor

logger = logging.getLogger(__name__)

ItemId = Union[str, Tuple[str, ...]]


class Workflow(BaseModel):
    name: str
    label: str
    list_path: str
    action_path: str
    list_key: Optional[str] = None
    counts_key: Optional[str] = None
    status_key: str = "status"
    status_field: str = "status"
    reason_field: Optional[str] = "rejectionReason"
    id_keys: Tuple[str, ...] = ("_id",)
    default_filter: Optional[str] = None
    model: Optional[Type[BaseModel]] = None

    def action_url(self, item_id: ItemId) -> str:
        ids = (item_id,) if isinstance(item_id, str) else tuple(item_id)
        return self.action_path.format(*ids)


VENDORS = Workflow(
    name="vendors",
    label="Vendor",
    list_path="/admin/vendors",
    list_key="vendors",
    action_path="/admin/vendors/{}/status",
    model=Vendor,
)
DOCUMENTS = Workflow(
    name="documents",
    label="Document",
    list_path="/admin/approvals",
    list_key="documents",
    action_path="/admin/vendors/{}/compliance/{}",
    id_keys=("vendorId", "_id"),
)
PRODUCTS = Workflow(
    name="products",
    label="Product",
    list_path="/admin/vendor-products",
    list_key="products",
    counts_key="counts",
    action_path="/admin/vendor-products/{}",
    status_key="vendorStatus",
    status_field="vendorStatus",
    default_filter="pending",
)
PAYOUTS = Workflow(
    name="payouts",
    label="Payout",
    list_path="/admin/payouts",
    action_path="/admin/payouts/{}/{}",
    reason_field="note",
    id_keys=("vendorId", "_id"),
    model=PayoutRequest,
)
RETURNS = Workflow(
    name="returns",
    label="Return",
    list_path="/admin/returns",
    list_key="returns",
    counts_key="counts",
    action_path="/admin/returns/{}",
    reason_field=None,
    model=ReturnRecord,
)

WORKFLOWS: Dict[str, Workflow] = {w.name: w for w in (VENDORS, DOCUMENTS, PRODUCTS, PAYOUTS, RETURNS)}


class WorkflowView:
    """List state for one workflow: filter, search, page, items and facet counts."""

    def __init__(self, api: ApiClient, workflow: Workflow) -> None:
        self.api = api
        self.workflow = workflow
        self.status_filter: Optional[str] = workflow.default_filter
        self.search = ""
        self.page = 1
        self.pages = 1
        self.total = 0
        self.items: List[Any] = []
        self.counts: Dict[str, int] = {}

    def params(self) -> Dict[str, Any]:
        return {
            "status": self.status_filter,
            "search": self.search,
            "page": self.page if self.page > 1 else None,
        }

    def fetch(self) -> List[Any]:
        w = self.workflow
        try:
            data = self.api.get(w.list_path, params=self.params())
        except ApiError as e:
            logger.error("Failed to fetch %s: %s", w.name, e)
            return self.items
        if isinstance(data, dict):
            rows = data.get(w.list_key, []) if w.list_key else []
            counts = data.get(w.counts_key) if w.counts_key else None
            self.page = int(data.get("page", self.page))
            self.pages = int(data.get("pages", 1))
            self.total = int(data.get("total", len(rows)))
        else:
            rows = data or []
            counts = None
            self.pages = 1
            self.total = len(rows)
        self.counts = dict(counts) if counts else dict(Counter(r.get(w.status_key) for r in rows if isinstance(r, dict) and r.get(w.status_key)))
        self.items = self._parse(rows)
        return self.items

    def _parse(self, rows: List[Any]) -> List[Any]:
        model = self.workflow.model
        if model is None:
            return list(rows)
        items = []
        for row in rows:
            try:
                items.append(model.model_validate(row))
            except ValidationError as e:
                logger.warning("Skipping unreadable %s row: %s", self.workflow.name, e)
        return items

    def facets(self) -> List[Tuple[str, int]]:
        return sorted(self.counts.items())

    def set_filter(self, status: Optional[str]) -> List[Any]:
        self.status_filter = status or None
        self.page = 1
        return self.fetch()

    def set_search(self, text: str) -> List[Any]:
        self.search = text.strip()
        self.page = 1
        return self.fetch()

    def set_page(self, page: int) -> List[Any]:
        self.page = max(1, min(page, self.pages))
        return self.fetch()

    def item_id(self, item: Any) -> ItemId:
        row = item.model_dump(by_alias=True) if isinstance(item, BaseModel) else item
        ids = tuple(str(row.get(k) if k in row else row.get(k.lstrip("_"))) for k in self.workflow.id_keys)
        return ids[0] if len(ids) == 1 else ids

    def act(self, item_id: ItemId, status: str, reason: str = "") -> Result:
        w = self.workflow
        payload = {w.status_field: status}
        if w.reason_field is not None:
            payload[w.reason_field] = reason
        try:
            self.api.put(w.action_url(item_id), json=payload)
        except ApiError as e:
            logger.error("Failed to set %s %s to %s: %s", w.name, item_id, status, e)
            return Result.fail(message_of(e, f"Failed to update {w.label.lower()} status"))
        logger.info("%s %s set to %s", w.label, item_id, status)
        self.fetch()
        return Result.ok(message=f"{w.label} {status} successfully")


# -------------------- Coupons --------------------

class CouponRow(BaseModel):
    coupon: Coupon
    state: CouponState
    scope: str


class CouponBook:
    def __init__(self, api: ApiClient) -> None:
        self.api = api
        self.coupons: List[Coupon] = []

    def fetch(self) -> List[Coupon]:
        try:
            rows = self.api.get("/coupons") or []
        except ApiError as e:
            logger.error("Failed to fetch coupons: %s", e)
            return self.coupons
        coupons = []
        for row in rows:
            try:
                coupons.append(Coupon.model_validate(row))
            except ValidationError as e:
                logger.warning("Skipping unreadable coupon: %s", e)
        self.coupons = coupons
        return coupons

    def create(self, draft: CouponDraft) -> Result:
        payload = draft.model_dump(mode="json", by_alias=True, exclude_none=True)
        try:
            self.api.post("/coupons", json=payload)
        except ApiError as e:
            return Result.fail(message_of(e, "Failed to create coupon"))
        self.fetch()
        return Result.ok(message="Coupon created successfully!")

    def delete(self, coupon_id: str) -> Result:
        try:
            self.api.delete(f"/coupons/{coupon_id}")
        except ApiError as e:
            logger.error("Failed to delete coupon %s: %s", coupon_id, e)
            return Result.fail("Failed to delete coupon")
        self.coupons = [c for c in self.coupons if c.id != coupon_id]
        return Result.ok(message="Coupon deleted")

    def rows(self) -> List[CouponRow]:
        return [
            CouponRow(coupon=c, state=c.state(), scope="User Specific" if c.assigned_to else "General")
            for c in self.coupons
        ]


# -------------------- Analytics & refunds --------------------

class Analytics:
    def __init__(self, api: ApiClient) -> None:
        self.api = api
        self.orders: Optional[dict] = None
        self.platform: Optional[dict] = None

    def fetch(self) -> None:
        try:
            self.orders = self.api.get("/orders/analytics")
            self.platform = self.api.get("/admin/analytics/overview")
        except ApiError as e:
            logger.error("Failed to fetch analytics: %s", e)

    def refund_logs(self) -> List[RefundLog]:
        try:
            rows = self.api.get("/refunds/admin-logs") or []
        except ApiError as e:
            logger.error("Failed to fetch refund logs: %s", e)
            return []
        logs = []
        for row in rows:
            try:
                logs.append(RefundLog.model_validate(row))
            except ValidationError as e:
                logger.warning("Skipping unreadable refund log: %s", e)
        return logs


# -------------------- Vendor chat --------------------

class VendorChat:
    """Admin side of the per-vendor message thread.

    Pushed messages arrive on the transport's thread, so the thread list is
    guarded by a lock and ``messages`` hands out copies.
    """

    def __init__(self, api: ApiClient, vendor_id: str) -> None:
        self.api = api
        self.vendor_id = vendor_id
        self._messages: List[dict] = []
        self._lock = threading.RLock()
        self._subscription: Optional[Subscription] = None

    @property
    def messages(self) -> List[dict]:
        with self._lock:
            return copy.deepcopy(self._messages)

    @property
    def room(self) -> str:
        return f"vendor_{self.vendor_id}"

    def fetch(self) -> List[dict]:
        try:
            rows = self.api.get(f"/vendor-messages/admin/{self.vendor_id}") or []
        except ApiError as e:
            logger.error("Failed to fetch vendor messages: %s", e)
            return self.messages
        with self._lock:
            self._messages = [m for m in rows if isinstance(m, dict)]
        return self.messages

    def send(self, message: str) -> Result:
        try:
            data = self.api.post(f"/vendor-messages/admin/{self.vendor_id}", json={"message": message})
        except ApiError as e:
            logger.error("Failed to send message: %s", e)
            return Result.fail("Failed to send message")
        return Result.ok(data)

    def attach(self, channel: RealtimeChannel) -> None:
        self.detach()
        channel.join(self.room)
        self._subscription = channel.subscribe("receive_message", self._on_message)

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def _on_message(self, message: Any) -> None:
        if not isinstance(message, dict):
            return
        with self._lock:
            if any(m.get("_id") == message.get("_id") for m in self._messages):
                return
            self._messages = [*self._messages, message]


class BackOffice:
    def __init__(self, api: ApiClient) -> None:
        self.api = api
        self.coupons = CouponBook(api)
        self.analytics = Analytics(api)
        self._views: Dict[str, WorkflowView] = {}

    def view(self, name: str) -> WorkflowView:
        if name not in WORKFLOWS:
            raise KeyError(name)
        if name not in self._views:
            self._views[name] = WorkflowView(self.api, WORKFLOWS[name])
        return self._views[name]

    def chat(self, vendor_id: str) -> VendorChat:
        return VendorChat(self.api, vendor_id)
