import logging
import os
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, EmailStr, Field

from account import invoice_filename
from config import Settings
from gateway import ApiError
from orders import SORT_KEYS, View, can_cancel, can_return, progress, refund_preview, search_orders, sort_orders
from schemas import (
    Address, CouponDraft, GSTClaim, Order, OrderDraft, OrderStatusUpdate,
    ProfileUpdate, Result, ReturnRequest, Review,
)
from session import Session, SessionError

SETTINGS = Settings.from_env()

logging.basicConfig(
    level=SETTINGS.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("shopfront")

TRACKED_FIELDS = {"id", "status", "total_price", "order_items", "created_at", "is_delivered", "delivered_at"}

app = FastAPI(title="ShopFront Session API")
app.state.session = None

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -------------------- Helpers --------------------

def current_session(request: Request) -> Session:
    session = request.app.state.session
    if session is None or session.closed:
        raise HTTPException(status_code=401, detail="Not signed in")
    return session


def admin_session(session: Session = Depends(current_session)) -> Session:
    if not session.is_admin:
        raise HTTPException(status_code=403, detail="Admin only")
    return session


def unwrap(result: Result) -> Result:
    if not result.success:
        raise HTTPException(status_code=400, detail=result.message)
    return result


def order_view(order: Order, view: View = View.TRACKING) -> dict:
    return {
        **order.model_dump(mode="json"),
        "can_cancel": can_cancel(order),
        "can_return": can_return(order),
        "progress": progress(order.status, view).model_dump(mode="json"),
        "refund_preview": refund_preview(order).model_dump(),
    }


def tracking_view(order: Order) -> dict:
    # the public track endpoint returns a projection without prices or return state
    return {
        **order.model_dump(mode="json", include=TRACKED_FIELDS),
        "progress": progress(order.status, View.TRACKING).model_dump(mode="json"),
    }


def cart_view(session: Session) -> dict:
    cart = session.cart
    return {
        "items": [line.model_dump(mode="json", by_alias=True) for line in cart.items],
        "total": cart.total(),
        "count": cart.count(),
    }


def to_json(item: Any) -> Any:
    return item.model_dump(mode="json") if isinstance(item, BaseModel) else item


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class CartAddition(BaseModel):
    product: dict
    quantity: int = Field(1, ge=1)


class QuantityChange(BaseModel):
    delta: int


class WorkflowAction(BaseModel):
    status: str
    reason: str = ""


# -------------------- Health & Session --------------------

@app.get("/")
def read_root():
    return {"message": "ShopFront session API is running"}


@app.post("/session", response_model=dict)
def open_session(payload: LoginRequest, request: Request):
    previous = request.app.state.session
    if previous is not None:
        previous.close()
        request.app.state.session = None
    try:
        session = Session.open(SETTINGS, payload.email, payload.password)
    except SessionError as e:
        raise HTTPException(status_code=401, detail=str(e))
    request.app.state.session = session
    return session.identity.model_dump(mode="json", exclude={"token"})


@app.get("/session", response_model=dict)
def get_session(session: Session = Depends(current_session)):
    return session.identity.model_dump(mode="json", exclude={"token"})


@app.delete("/session", response_model=dict)
def close_session(request: Request, session: Session = Depends(current_session)):
    session.close()
    request.app.state.session = None
    return {"ok": True}


@app.get("/realtime", response_model=dict)
def realtime_status(session: Session = Depends(current_session)):
    channel = session.channel
    return {
        "connected": bool(channel and channel.connected),
        "active_users": channel.active_users if channel else 0,
    }


# -------------------- Orders --------------------

@app.get("/orders", response_model=List[dict])
def list_orders(
    q: Optional[str] = Query(None),
    sort: str = Query("newest"),
    view: View = Query(View.DASHBOARD),
    refresh: bool = Query(False),
    session: Session = Depends(current_session),
):
    if sort not in SORT_KEYS:
        raise HTTPException(status_code=400, detail=f"sort must be one of {', '.join(SORT_KEYS)}")
    orders = session.orders.load() if refresh else session.orders.orders
    return [order_view(o, view) for o in sort_orders(search_orders(orders, q), sort)]


@app.post("/orders", response_model=dict)
def create_order(payload: OrderDraft, session: Session = Depends(current_session)):
    result = unwrap(session.orders.create(payload))
    return order_view(result.data)


@app.get("/orders/{order_id}", response_model=dict)
def get_order(order_id: str, session: Session = Depends(current_session)):
    order = session.orders.get(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order_view(order)


@app.get("/orders/{order_id}/refund-preview", response_model=dict)
def get_refund_preview(order_id: str, session: Session = Depends(current_session)):
    order = session.orders.get(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return refund_preview(order).model_dump()


@app.put("/orders/{order_id}/status", response_model=dict)
def update_order_status(order_id: str, payload: OrderStatusUpdate, session: Session = Depends(admin_session)):
    result = unwrap(session.orders.update_status(order_id, payload.status))
    return order_view(result.data)


@app.post("/orders/{order_id}/cancel", response_model=dict)
def cancel_order(order_id: str, session: Session = Depends(current_session)):
    result = unwrap(session.orders.cancel(order_id))
    return {"message": result.message, "order": order_view(result.data)}


@app.post("/orders/{order_id}/return", response_model=dict)
def return_order(order_id: str, payload: ReturnRequest, session: Session = Depends(current_session)):
    result = unwrap(session.orders.request_return(order_id, payload.reason))
    return {"message": result.message, "order": order_view(result.data)}


@app.post("/orders/{order_id}/refund", response_model=dict)
def refund_order(order_id: str, payload: ReturnRequest, session: Session = Depends(admin_session)):
    result = unwrap(session.orders.admin_refund(order_id, payload.reason))
    return {"message": result.message, "order": order_view(result.data)}


@app.get("/track/{order_id}", response_model=dict)
def track_order(order_id: str, session: Session = Depends(current_session)):
    order = session.orders.track(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found or invalid ID")
    return tracking_view(order)


# -------------------- Cart --------------------

@app.get("/cart", response_model=dict)
def get_cart(session: Session = Depends(current_session)):
    return cart_view(session)


@app.post("/cart/items", response_model=dict)
def add_to_cart(payload: CartAddition, session: Session = Depends(current_session)):
    unwrap(session.cart.add(payload.product, payload.quantity))
    return cart_view(session)


@app.patch("/cart/items/{product_id}", response_model=dict)
def change_quantity(product_id: str, payload: QuantityChange, session: Session = Depends(current_session)):
    session.cart.update_quantity(product_id, payload.delta)
    return cart_view(session)


@app.delete("/cart/items/{product_id}", response_model=dict)
def remove_from_cart(product_id: str, session: Session = Depends(current_session)):
    session.cart.remove(product_id)
    return cart_view(session)


@app.delete("/cart", response_model=dict)
def clear_cart(session: Session = Depends(current_session)):
    session.cart.clear()
    return cart_view(session)


# -------------------- Account --------------------

@app.get("/account/profile", response_model=dict)
def get_profile(session: Session = Depends(current_session)):
    return session.account.identity.model_dump(mode="json", exclude={"token"})


@app.put("/account/profile", response_model=dict)
def update_profile(payload: ProfileUpdate, session: Session = Depends(current_session)):
    result = unwrap(session.account.update_profile(payload))
    return result.data.model_dump(mode="json", exclude={"token"})


@app.post("/account/addresses", response_model=dict)
def add_address(payload: Address, session: Session = Depends(current_session)):
    result = unwrap(session.account.add_address(payload))
    return result.data.model_dump(mode="json", exclude={"token"})


@app.delete("/account", response_model=dict)
def delete_account(request: Request, session: Session = Depends(current_session)):
    result = unwrap(session.account.delete_account())
    session.close()
    request.app.state.session = None
    return {"message": result.message}


@app.get("/account/wallet", response_model=dict)
def get_wallet(session: Session = Depends(current_session)):
    return session.account.wallet().model_dump(mode="json")


@app.get("/account/wishlist", response_model=list)
def get_wishlist(session: Session = Depends(current_session)):
    return session.account.wishlist()


@app.post("/account/wishlist/{product_id}", response_model=dict)
def toggle_wishlist(product_id: str, session: Session = Depends(current_session)):
    result = unwrap(session.account.toggle_wishlist(product_id))
    return {"message": result.message, "wishlist": result.data}


@app.get("/account/refunds", response_model=List[dict])
def refund_history(session: Session = Depends(current_session)):
    return [log.model_dump(mode="json") for log in session.account.refund_history()]


@app.get("/account/gst", response_model=dict)
def get_gst(session: Session = Depends(current_session)):
    gst = session.account.gst()
    if gst is None:
        raise HTTPException(status_code=502, detail="GST settings unavailable")
    return gst.model_dump()


@app.put("/account/gst", response_model=dict)
def set_gst(payload: GSTClaim, session: Session = Depends(current_session)):
    result = unwrap(session.account.set_gst_claim(payload.claim_gst, payload.user_gst_number or ""))
    return result.data.model_dump()


@app.post("/products/{product_id}/reviews", response_model=dict)
def submit_review(product_id: str, payload: Review, session: Session = Depends(current_session)):
    result = unwrap(session.account.submit_review(product_id, payload))
    return {"message": result.message}


@app.get("/invoices/{order_id}")
def download_invoice(order_id: str, session: Session = Depends(current_session)):
    try:
        content = session.account.download_invoice(order_id)
    except ApiError as e:
        logger.error("Invoice download for %s failed: %s", order_id, e)
        raise HTTPException(status_code=502, detail="Failed to download invoice. Please try again later.")
    filename = invoice_filename(order_id)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# -------------------- Back-office --------------------

@app.get("/admin/workflows/{name}", response_model=dict)
def list_workflow(
    name: str,
    status: Optional[str] = Query(None),
    search: str = Query(""),
    page: int = Query(1, ge=1),
    session: Session = Depends(admin_session),
):
    try:
        view = session.backoffice.view(name)
    except KeyError:
        raise HTTPException(status_code=404, detail="Unknown workflow")
    if status is not None:
        view.status_filter = status or None
    view.search = search.strip()
    view.page = page
    items = view.fetch()
    return {
        "items": [to_json(i) for i in items],
        "facets": [{"status": s, "count": c} for s, c in view.facets()],
        "page": view.page,
        "pages": view.pages,
        "total": view.total,
    }


@app.put("/admin/workflows/{name}/{item_id:path}", response_model=dict)
def act_on_workflow(name: str, item_id: str, payload: WorkflowAction, session: Session = Depends(admin_session)):
    try:
        view = session.backoffice.view(name)
    except KeyError:
        raise HTTPException(status_code=404, detail="Unknown workflow")
    parts = tuple(item_id.split("/"))
    result = unwrap(view.act(parts[0] if len(parts) == 1 else parts, payload.status, payload.reason))
    return {"message": result.message, "items": [to_json(i) for i in view.items]}


@app.get("/admin/coupons", response_model=List[dict])
def list_coupons(session: Session = Depends(admin_session)):
    book = session.backoffice.coupons
    book.fetch()
    return [row.model_dump(mode="json") for row in book.rows()]


@app.post("/admin/coupons", response_model=dict)
def create_coupon(payload: CouponDraft, session: Session = Depends(admin_session)):
    result = unwrap(session.backoffice.coupons.create(payload))
    return {"message": result.message}


@app.delete("/admin/coupons/{coupon_id}", response_model=dict)
def delete_coupon(coupon_id: str, session: Session = Depends(admin_session)):
    result = unwrap(session.backoffice.coupons.delete(coupon_id))
    return {"message": result.message}


@app.get("/admin/analytics", response_model=dict)
def analytics(session: Session = Depends(admin_session)):
    stats = session.backoffice.analytics
    stats.fetch()
    return {"orders": stats.orders, "platform": stats.platform}


@app.get("/admin/refunds", response_model=List[dict])
def admin_refund_logs(session: Session = Depends(admin_session)):
    return [log.model_dump(mode="json") for log in session.backoffice.analytics.refund_logs()]


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", SETTINGS.port))
    uvicorn.run(app, host="0.0.0.0", port=port)
