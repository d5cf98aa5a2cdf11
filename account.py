"""
Account view-model: sign-in, profile, addresses, wishlist, wallet, GST claim,
refund history, reviews and invoices for the signed-in customer.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, ValidationError

from gateway import ApiClient, ApiError, message_of
from schemas import (
    Address, Credentials, GSTClaim, GSTSettings, Identity, ProfileUpdate,
    RefundLog, Registration, Result, Review, WalletTransaction,
)

logger = logging.getLogger(__name__)


class Wallet(BaseModel):
    balance: float
    transactions: List[WalletTransaction]


class GSTView(BaseModel):
    enabled: bool
    claimed: bool
    gst_number: str = ""


def _identity_result(api: ApiClient, path: str, payload: BaseModel, default: str) -> Result:
    try:
        identity = Identity.model_validate(api.post(path, json=payload.model_dump(mode="json")))
    except ApiError as e:
        return Result.fail(message_of(e, default))
    except ValidationError as e:
        logger.error("Unreadable identity from %s: %s", path, e)
        return Result.fail(default)
    api.token = identity.token
    return Result.ok(identity)


def login(api: ApiClient, email: str, password: str) -> Result:
    try:
        credentials = Credentials(email=email, password=password)
    except ValidationError:
        return Result.fail("Enter a valid email address")
    return _identity_result(api, "/auth/login", credentials, "Login failed")


def register(api: ApiClient, name: str, email: str, password: str) -> Result:
    try:
        registration = Registration(name=name, email=email, password=password)
    except ValidationError:
        return Result.fail("Enter a valid email address")
    return _identity_result(api, "/auth/register", registration, "Registration failed")


def invoice_filename(order_id: str) -> str:
    return f"Invoice-{order_id[-8:].upper()}.pdf"


class AccountStore:
    def __init__(self, api: ApiClient, identity: Identity) -> None:
        self.api = api
        self._identity = identity

    @property
    def identity(self) -> Identity:
        return self._identity.model_copy(deep=True)

    # -------------------- profile --------------------

    def update_profile(self, update: Union[ProfileUpdate, dict]) -> Result:
        if not isinstance(update, ProfileUpdate):
            try:
                update = ProfileUpdate.model_validate(update)
            except ValidationError as e:
                return Result.fail(str(e.errors()[0]["msg"]))
        payload = update.model_dump(mode="json", by_alias=True, exclude_none=True)
        try:
            data = self.api.put("/auth/profile", json=payload)
            identity = Identity.model_validate(data)
        except ApiError as e:
            logger.error("Failed to update profile: %s", e)
            return Result.fail(message_of(e, "Update failed"))
        except ValidationError as e:
            logger.error("Unreadable profile in update response: %s", e)
            return Result.fail("Update failed")
        if identity.token:
            self.api.token = identity.token
        else:
            identity.token = self._identity.token
        self._identity = identity
        return Result.ok(self.identity, "Profile updated")

    def add_address(self, address: Address) -> Result:
        current = list(self._identity.addresses)
        address = address.model_copy(update={"is_default": not current})
        return self.update_profile(ProfileUpdate(addresses=[*current, address]))

    def delete_account(self) -> Result:
        try:
            self.api.delete("/auth/profile")
        except ApiError as e:
            logger.error("Failed to delete account: %s", e)
            return Result.fail(message_of(e, "Failed to delete account. Please try again."))
        return Result.ok(message="Your account has been successfully deleted.")

    # -------------------- wishlist & wallet --------------------

    def wishlist(self) -> list:
        try:
            return self.api.get("/auth/wishlist") or []
        except ApiError as e:
            logger.error("Failed to fetch wishlist: %s", e)
            return []

    def toggle_wishlist(self, product_id: str) -> Result:
        try:
            data = self.api.post(f"/auth/wishlist/{product_id}")
        except ApiError as e:
            return Result.fail(message_of(e, "Failed to update wishlist"))
        if not isinstance(data, dict):
            logger.error("Unexpected wishlist response: %r", data)
            return Result.fail("Failed to update wishlist")
        wishlist = data.get("wishlist")
        if wishlist is not None:
            self._identity = self._identity.model_copy(update={
                "wishlist": [w.get("_id") if isinstance(w, dict) else w for w in wishlist],
            })
        return Result.ok(self._identity.wishlist, data.get("message", ""))

    def wallet(self) -> Wallet:
        transactions = list(reversed(self._identity.wallet_transactions))
        return Wallet(balance=self._identity.wallet_balance, transactions=transactions)

    # -------------------- GST --------------------

    def gst(self) -> Optional[GSTView]:
        try:
            settings = GSTSettings.model_validate(self.api.get("/gst/settings") or {})
            claim = GSTClaim.model_validate(self.api.get("/gst/claim/user") or {})
        except (ApiError, ValidationError) as e:
            logger.error("Failed to fetch GST data: %s", e)
            return None
        return GSTView(enabled=settings.gst_enabled, claimed=claim.claim_gst, gst_number=claim.user_gst_number or "")

    def set_gst_claim(self, claimed: bool, gst_number: str = "") -> Result:
        payload = GSTClaim(claim_gst=claimed, user_gst_number=gst_number or None)
        try:
            data = self.api.put("/gst/claim/user", json=payload.model_dump())
        except ApiError as e:
            logger.error("Failed to update GST settings: %s", e)
            return Result.fail(message_of(e, "Failed to update GST settings"))
        if not isinstance(data, dict):
            logger.error("Unexpected GST claim response: %r", data)
            return Result.fail("Failed to update GST settings")
        if not data.get("success", True):
            return Result.fail(data.get("message") or "Failed to update GST settings")
        try:
            claim = GSTClaim.model_validate(data)
        except ValidationError as e:
            logger.error("Unreadable GST claim response: %s", e)
            return Result.fail("Failed to update GST settings")
        return Result.ok(claim)

    # -------------------- history, reviews, invoices --------------------

    def refund_history(self) -> List[RefundLog]:
        try:
            rows = self.api.get("/refunds/my-logs") or []
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

    def submit_review(self, product_id: str, review: Review) -> Result:
        try:
            self.api.post(f"/products/{product_id}/reviews", json=review.model_dump())
        except ApiError as e:
            return Result.fail(message_of(e, "Failed to submit review"))
        return Result.ok(message="Review submitted")

    def download_invoice(self, order_id: str) -> bytes:
        return self.api.download(f"/invoices/{order_id}/download")

    def save_invoice(self, order_id: str, directory: Union[str, Path] = ".") -> Result:
        try:
            content = self.download_invoice(order_id)
        except ApiError as e:
            logger.error("Failed to download invoice for %s: %s", order_id, e)
            return Result.fail("Failed to download invoice. Please try again later.")
        target = Path(directory) / invoice_filename(order_id)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        logger.info("Invoice for %s saved to %s", order_id, target)
        return Result.ok(str(target))
