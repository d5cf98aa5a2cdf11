"""
Shopping cart for the session.

Lines are keyed by product id: adding a product already in the cart raises its
quantity, and no quantity ever drops below one. While a token is held every
change is mirrored to the backend with ``PUT /cart``; a failed sync is logged
and the local cart stays as it is.
"""

import logging
import threading
from typing import Any, Iterable, List, Union

from pydantic import ValidationError

from gateway import ApiClient, ApiError
from schemas import CartLine, Result

logger = logging.getLogger(__name__)


def parse_lines(rows: Iterable[Any]) -> List[CartLine]:
    lines = []
    for row in rows:
        try:
            lines.append(CartLine.model_validate(row))
        except ValidationError as e:
            logger.warning("Skipping unreadable cart line: %s", e)
    return lines


class CartStore:
    def __init__(self, api: ApiClient, items: Iterable[Union[CartLine, dict]] = ()) -> None:
        self.api = api
        self._items: List[CartLine] = [i if isinstance(i, CartLine) else CartLine.model_validate(i) for i in items]
        self._lock = threading.RLock()

    @property
    def items(self) -> List[CartLine]:
        with self._lock:
            return [i.model_copy(deep=True) for i in self._items]

    def total(self) -> float:
        with self._lock:
            return sum(i.price * i.quantity for i in self._items)

    def count(self) -> int:
        with self._lock:
            return sum(i.quantity for i in self._items)

    # -------------------- changes --------------------

    def add(self, product: Union[CartLine, dict], quantity: int = 1) -> Result:
        if quantity < 1:
            return Result.fail("Quantity must be at least 1")
        try:
            line = product if isinstance(product, CartLine) else CartLine.model_validate({**product, "quantity": quantity})
        except ValidationError as e:
            logger.error("Unreadable product for cart: %s", e)
            return Result.fail("Failed to add to cart")
        with self._lock:
            for index, existing in enumerate(self._items):
                if existing.id == line.id:
                    merged = existing.model_copy(update={"quantity": existing.quantity + quantity})
                    self._items = [*self._items[:index], merged, *self._items[index + 1:]]
                    break
            else:
                self._items = [*self._items, line.model_copy(update={"quantity": quantity})]
        self.sync()
        return Result.ok(self.items, "Added to cart")

    def remove(self, product_id: str) -> List[CartLine]:
        with self._lock:
            self._items = [i for i in self._items if i.id != product_id]
        self.sync()
        return self.items

    def update_quantity(self, product_id: str, delta: int) -> List[CartLine]:
        with self._lock:
            self._items = [
                i.model_copy(update={"quantity": max(1, i.quantity + delta)}) if i.id == product_id else i
                for i in self._items
            ]
        self.sync()
        return self.items

    def clear(self) -> None:
        with self._lock:
            self._items = []
        self.sync()

    # -------------------- backend --------------------

    def sync(self) -> bool:
        """Push the whole cart; only while signed in."""
        if not self.api.token:
            return False
        with self._lock:
            payload = {"cartItems": [i.wire() for i in self._items]}
        try:
            self.api.put("/cart", json=payload)
        except ApiError as e:
            logger.error("Failed to sync cart: %s", e)
            return False
        return True

    def on_login(self) -> List[CartLine]:
        """The saved cart wins if it has items; otherwise the local cart is saved."""
        try:
            rows = self.api.get("/cart")
        except ApiError as e:
            logger.error("Failed to fetch cart: %s", e)
            return self.items
        saved = parse_lines(rows) if isinstance(rows, list) else []
        if saved:
            with self._lock:
                self._items = saved
        elif self._items:
            self.sync()
        return self.items
