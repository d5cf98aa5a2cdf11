import copy
from typing import Any, Dict, List, NamedTuple, Optional

import pytest
import socketio
from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse, Response
from fastapi.testclient import TestClient

from gateway import ApiClient

TRACK_FIELDS = ("_id", "status", "totalPrice", "orderItems", "createdAt", "isDelivered", "deliveredAt")


def fail(status: int, message: str) -> JSONResponse:
    return JSONResponse({"message": message}, status_code=status)


def order_doc(order_id: str, status: str, created: str, name: str, items: float, tax: float, shipping: float, **extra) -> dict:
    doc = {
        "_id": order_id,
        "status": status,
        "createdAt": created,
        "updatedAt": created,
        "orderItems": [{"name": name, "price": items, "quantity": 1, "product": {"_id": f"p-{order_id}", "name": name}}],
        "shippingAddress": {"address": "12 MG Road", "city": "Pune", "postalCode": "411001", "country": "India"},
        "paymentMethod": "COD",
        "itemsPrice": items,
        "taxPrice": tax,
        "shippingPrice": shipping,
        "totalPrice": items + tax + shipping,
    }
    doc.update(extra)
    return doc


class Seen(NamedTuple):
    method: str
    path: str
    authorization: Optional[str]
    params: Dict[str, str]


class FakeShopApi:
    """In-memory stand-in for the shop backend, served through TestClient."""

    def __init__(self) -> None:
        self.users = {
            "alice@example.com": {
                "password": "secret",
                "_id": "u1",
                "name": "Alice",
                "email": "alice@example.com",
                "isAdmin": False,
                "token": "tok-alice",
                "addresses": [],
                "wishlist": [],
                "walletBalance": 150,
                "walletTransactions": [
                    {"type": "credit", "amount": 100, "description": "Refund o0", "date": "2024-01-01T00:00:00Z"},
                    {"type": "credit", "amount": 50, "description": "Cashback", "date": "2024-02-01T00:00:00Z"},
                ],
            },
            "admin@example.com": {
                "password": "adminpass",
                "_id": "u0",
                "name": "Root",
                "email": "admin@example.com",
                "isAdmin": True,
                "token": "tok-admin",
            },
        }
        self.orders: List[dict] = [
            order_doc("o1", "Pending", "2024-03-01T10:00:00Z", "Blue Kurta", 400, 50, 50),
            order_doc("o2", "Delivered", "2024-02-01T10:00:00Z", "Silk Saree", 1000, 100, 100),
            order_doc("o3", "Shipped", "2024-04-01T10:00:00Z", "Cotton Dupatta", 250, 20, 30),
        ]
        self.coupons: List[dict] = [
            {"_id": "c1", "code": "SAVE10", "discountType": "percentage", "discountValue": 10,
             "expiryDate": "2999-01-01T00:00:00Z", "maxUses": 10, "usedCount": 0, "isActive": True},
            {"_id": "c2", "code": "OLD", "discountType": "fixed", "discountValue": 100,
             "expiryDate": "2020-01-01T00:00:00Z", "maxUses": 5, "usedCount": 0, "isActive": True},
            {"_id": "c3", "code": "USER5", "discountType": "fixed", "discountValue": 5,
             "expiryDate": "2999-01-01T00:00:00Z", "maxUses": 1, "usedCount": 0, "isActive": False,
             "assignedTo": {"_id": "u1", "name": "Alice", "email": "alice@example.com"}},
        ]
        self.vendors: List[dict] = [
            {"_id": "v1", "businessName": "Loom House", "email": "loom@example.com", "status": "pending"},
            {"_id": "v2", "businessName": "Craft Co", "email": "craft@example.com", "status": "approved"},
        ]
        self.products: List[dict] = [
            {"_id": "p1", "name": "Kurta", "vendorStatus": "pending"},
            {"_id": "p2", "name": "Saree", "vendorStatus": "approved"},
            {"_id": "p3", "name": "Stole", "vendorStatus": "pending"},
        ]
        self.payouts: List[dict] = [
            {"_id": "w1", "vendorId": "v1", "businessName": "Loom House", "amount": 2500},
        ]
        self.returns: List[dict] = [
            {"_id": "r1", "orderId": "o2", "vendorName": "Loom House", "productName": "Silk Saree",
             "itemCount": 1, "reason": "Damaged", "status": "Requested"},
        ]
        self.refund_logs: List[dict] = [
            {"_id": "rl1", "order": {"_id": "o2"}, "amount": 1100, "deliveryCharge": 100,
             "totalRefundableAmount": 1100, "initiatedBy": "User", "status": "Completed"},
            {"_id": "rl2", "initiatedBy": "User"},
        ]
        self.messages: List[dict] = [{"_id": "m1", "message": "Hello from Loom House"}]
        self.gst = {"gst_enabled": True, "claim_gst": False, "user_gst_number": None}
        self.wishlist: List[str] = []
        self.cart: List[dict] = []
        self.requests: List[Seen] = []
        self.failing: set = set()
        self.app = self._build()

    def find(self, rows: List[dict], item_id: str) -> Optional[dict]:
        return next((r for r in rows if r["_id"] == item_id), None)

    def last(self, path: str) -> Seen:
        return [r for r in self.requests if r.path == path][-1]

    def _build(self) -> FastAPI:
        app = FastAPI()
        shop = self

        @app.middleware("http")
        async def record(request: Request, call_next):
            shop.requests.append(Seen(
                request.method,
                request.url.path,
                request.headers.get("authorization"),
                dict(request.query_params),
            ))
            if request.url.path in shop.failing:
                return fail(500, "Something went wrong on our side")
            return await call_next(request)

        # -------------------- auth --------------------

        @app.post("/auth/login")
        def login(payload: dict = Body(...)):
            user = shop.users.get(payload.get("email"))
            if user is None or user["password"] != payload.get("password"):
                return fail(401, "Invalid email or password")
            return {k: v for k, v in user.items() if k != "password"}

        @app.post("/auth/register")
        def register(payload: dict = Body(...)):
            if payload.get("email") in shop.users:
                return fail(400, "User already exists")
            user = {"_id": f"u{len(shop.users) + 1}", "isAdmin": False, "token": f"tok-{payload['name'].lower()}", **payload}
            shop.users[payload["email"]] = user
            return {k: v for k, v in user.items() if k != "password"}

        @app.put("/auth/profile")
        def update_profile(request: Request, payload: dict = Body(...)):
            token = (request.headers.get("authorization") or "").replace("Bearer ", "")
            user = next((u for u in shop.users.values() if u["token"] == token), None)
            if user is None:
                return fail(401, "Not authorized, token failed")
            user.update(payload)
            return {k: v for k, v in user.items() if k not in ("password", "token")}

        @app.delete("/auth/profile")
        def delete_profile():
            return {"message": "User removed"}

        @app.get("/auth/wishlist")
        def wishlist():
            return [{"_id": p, "name": f"Product {p}"} for p in shop.wishlist]

        @app.post("/auth/wishlist/{product_id}")
        def toggle_wishlist(product_id: str):
            if product_id in shop.wishlist:
                shop.wishlist.remove(product_id)
                message = "Removed from wishlist"
            else:
                shop.wishlist.append(product_id)
                message = "Added to wishlist"
            return {"message": message, "wishlist": [{"_id": p} for p in shop.wishlist]}

        # -------------------- cart --------------------

        @app.get("/cart")
        def cart():
            return shop.cart

        @app.put("/cart")
        def sync_cart(payload: dict = Body(...)):
            shop.cart = payload["cartItems"]
            return shop.cart

        # -------------------- orders --------------------

        @app.get("/orders")
        def all_orders():
            return shop.orders

        @app.get("/orders/myorders")
        def my_orders():
            return shop.orders

        @app.get("/orders/analytics")
        def order_analytics():
            return {"totalOrders": len(shop.orders)}

        @app.get("/orders/track/{order_id}")
        def track(order_id: str):
            order = shop.find(shop.orders, order_id)
            if order is None:
                return fail(404, "Order not found")
            return {key: order[key] for key in TRACK_FIELDS if key in order}

        @app.post("/orders")
        def create_order(payload: dict = Body(...)):
            if not payload.get("orderItems"):
                return fail(400, "No order items")
            order = {
                "_id": f"o{len(shop.orders) + 1}",
                "status": "Pending",
                "createdAt": "2024-05-01T10:00:00Z",
                "updatedAt": "2024-05-01T10:00:00Z",
                **payload,
            }
            shop.orders.append(order)
            return order

        @app.put("/orders/{order_id}/status")
        def set_status(order_id: str, payload: dict = Body(...)):
            order = shop.find(shop.orders, order_id)
            if order is None:
                return fail(404, "Order not found")
            order["status"] = payload["status"]
            order["updatedAt"] = "2024-06-01T10:00:00Z"
            return order

        @app.post("/orders/{order_id}/cancel")
        def cancel(order_id: str):
            order = shop.find(shop.orders, order_id)
            if order is None:
                return fail(404, "Order not found")
            if order["status"] not in ("Pending Vendor Approval", "Pending", "Approved", "Processing"):
                return fail(400, "Order cannot be cancelled at this stage")
            order["status"] = "Cancelled"
            order["updatedAt"] = "2024-06-01T10:00:00Z"
            return {"message": "Order cancelled and refund initiated", "order": order}

        @app.post("/orders/{order_id}/return")
        def request_return(order_id: str, payload: dict = Body(...)):
            order = shop.find(shop.orders, order_id)
            if order is None:
                return fail(404, "Order not found")
            if order["status"] != "Delivered":
                return fail(400, "Only delivered orders can be returned")
            order["returnStatus"] = "Requested"
            order["returnReason"] = payload.get("reason")
            order["updatedAt"] = "2024-06-01T10:00:00Z"
            return {"message": "Return request submitted", "order": order}

        @app.post("/orders/{order_id}/admin/refund")
        def admin_refund(order_id: str, payload: dict = Body(...)):
            order = shop.find(shop.orders, order_id)
            if order is None:
                return fail(404, "Order not found")
            order["isRefunded"] = True
            order["refundAmount"] = order["itemsPrice"] + order["taxPrice"]
            order["status"] = "Returned"
            order["returnStatus"] = "Completed"
            order["updatedAt"] = "2024-06-01T10:00:00Z"
            return {"message": "Order refunded successfully", "order": order}

        @app.get("/invoices/{order_id}/download")
        def invoice(order_id: str):
            if shop.find(shop.orders, order_id) is None:
                return fail(404, "Invoice not found")
            return Response(content=b"%PDF-1.4 invoice " + order_id.encode(), media_type="application/pdf")

        @app.post("/products/{product_id}/reviews")
        def review(product_id: str, payload: dict = Body(...)):
            return JSONResponse({"message": "Review added"}, status_code=201)

        # -------------------- GST & refunds --------------------

        @app.get("/gst/settings")
        def gst_settings():
            return {"gst_enabled": shop.gst["gst_enabled"]}

        @app.get("/gst/claim/user")
        def gst_claim():
            return {"claim_gst": shop.gst["claim_gst"], "user_gst_number": shop.gst["user_gst_number"]}

        @app.put("/gst/claim/user")
        def set_gst_claim(payload: dict = Body(...)):
            if payload.get("claim_gst") and not payload.get("user_gst_number"):
                return fail(400, "GST number is required to claim GST")
            shop.gst.update(claim_gst=payload["claim_gst"], user_gst_number=payload.get("user_gst_number"))
            return {"success": True, "claim_gst": shop.gst["claim_gst"], "user_gst_number": shop.gst["user_gst_number"]}

        @app.get("/refunds/my-logs")
        def my_refunds():
            return shop.refund_logs

        @app.get("/refunds/admin-logs")
        def admin_refunds():
            return shop.refund_logs

        # -------------------- coupons --------------------

        @app.get("/coupons")
        def coupons():
            return shop.coupons

        @app.post("/coupons")
        def create_coupon(payload: dict = Body(...)):
            if any(c["code"] == payload["code"] for c in shop.coupons):
                return fail(400, "Coupon code already exists")
            coupon = {"_id": f"c{len(shop.coupons) + 1}", "usedCount": 0, **payload}
            shop.coupons.append(coupon)
            return JSONResponse(coupon, status_code=201)

        @app.delete("/coupons/{coupon_id}")
        def delete_coupon(coupon_id: str):
            coupon = shop.find(shop.coupons, coupon_id)
            if coupon is None:
                return fail(404, "Coupon not found")
            shop.coupons.remove(coupon)
            return {"message": "Coupon removed"}

        # -------------------- admin workflows --------------------

        @app.get("/admin/vendors")
        def vendors(status: Optional[str] = None, search: Optional[str] = None):
            rows = [v for v in shop.vendors if status is None or v["status"] == status]
            if search:
                rows = [v for v in rows if search.lower() in v["businessName"].lower()]
            return {"vendors": rows}

        @app.put("/admin/vendors/{vendor_id}/status")
        def vendor_status(vendor_id: str, payload: dict = Body(...)):
            vendor = shop.find(shop.vendors, vendor_id)
            if vendor is None:
                return fail(404, "Vendor not found")
            if payload["status"] == "rejected" and not payload.get("rejectionReason"):
                return fail(400, "Rejection reason is required")
            vendor["status"] = payload["status"]
            return vendor

        @app.get("/admin/vendor-products")
        def vendor_products(status: Optional[str] = None, search: Optional[str] = None, page: int = 1):
            rows = [p for p in shop.products if status is None or p["vendorStatus"] == status]
            if search:
                rows = [p for p in rows if search.lower() in p["name"].lower()]
            counts: Dict[str, int] = {}
            for p in shop.products:
                counts[p["vendorStatus"]] = counts.get(p["vendorStatus"], 0) + 1
            return {"products": rows, "counts": counts, "page": page, "pages": 2, "total": len(rows)}

        @app.put("/admin/vendor-products/{product_id}")
        def product_status(product_id: str, payload: dict = Body(...)):
            product = shop.find(shop.products, product_id)
            if product is None:
                return fail(404, "Product not found")
            product["vendorStatus"] = payload["vendorStatus"]
            return product

        @app.get("/admin/payouts")
        def payouts():
            return shop.payouts

        @app.put("/admin/payouts/{vendor_id}/{payout_id}")
        def payout_status(vendor_id: str, payout_id: str, payload: dict = Body(...)):
            payout = shop.find(shop.payouts, payout_id)
            if payout is None or payout["vendorId"] != vendor_id:
                return fail(404, "Payout request not found")
            shop.payouts.remove(payout)
            return {"message": f"Payout {payload['status']}"}

        @app.get("/admin/returns")
        def returns(status: Optional[str] = None):
            rows = [r for r in shop.returns if status is None or r["status"] == status]
            counts: Dict[str, int] = {}
            for r in shop.returns:
                counts[r["status"]] = counts.get(r["status"], 0) + 1
            return {"returns": rows, "counts": counts}

        @app.put("/admin/returns/{return_id}")
        def return_status(return_id: str, payload: dict = Body(...)):
            record = shop.find(shop.returns, return_id)
            if record is None:
                return fail(404, "Return not found")
            record["status"] = payload["status"]
            return record

        @app.get("/admin/analytics/overview")
        def overview():
            return {"vendors": len(shop.vendors)}

        # -------------------- vendor chat --------------------

        @app.get("/vendor-messages/admin/{vendor_id}")
        def vendor_messages(vendor_id: str):
            return shop.messages

        @app.post("/vendor-messages/admin/{vendor_id}")
        def send_vendor_message(vendor_id: str, payload: dict = Body(...)):
            message = {"_id": f"m{len(shop.messages) + 1}", "message": payload["message"]}
            shop.messages.append(message)
            return message

        return app


class FakeSocket:
    """Records what a socketio.Client would be asked to do; ``fire`` plays server pushes."""

    def __init__(self, refuse: bool = False) -> None:
        self.handlers: Dict[str, Any] = {}
        self.registrations: Dict[str, int] = {}
        self.emitted: List[tuple] = []
        self.connects: List[tuple] = []
        self.connected = False
        self.sid = None
        self.refuse = refuse

    def on(self, event, handler=None):
        self.handlers[event] = handler
        self.registrations[event] = self.registrations.get(event, 0) + 1

    def connect(self, url, transports=None, auth=None):
        self.connects.append((url, auth))
        if self.refuse:
            raise socketio.exceptions.ConnectionError("Connection refused by the server")
        self.connected = True
        self.sid = "sid-1"
        self.fire("connect")

    def disconnect(self):
        self.connected = False
        self.fire("disconnect")

    def emit(self, event, data=None):
        self.emitted.append((event, data))

    def fire(self, event, *args):
        handler = self.handlers.get(event)
        if handler is not None:
            handler(*copy.deepcopy(args))


@pytest.fixture
def shop():
    return FakeShopApi()


@pytest.fixture
def http(shop):
    with TestClient(shop.app) as client:
        yield client


@pytest.fixture
def api(http):
    return ApiClient(base_url="http://testserver", http=http)


@pytest.fixture
def fake_socket():
    return FakeSocket()


@pytest.fixture
def refusing_socket():
    return FakeSocket(refuse=True)
