import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, Query
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import addresses
import cart
import database
import orders
import profiles
import reconciler
import return_requests
from auth import get_current_user, is_admin, require_admin, require_user
from errors import NotFound, StoreError
from schemas import (
    AddressIn,
    CartLineIn,
    MergeRequest,
    OrderStatusIn,
    PaymentStatusIn,
    PlaceOrderIn,
    ProfileIn,
    QuantityUpdate,
    ReturnIn,
    ReturnStatusIn,
    RoleIn,
    WishlistIn,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("storefront")

EXPOSE_ERRORS = os.getenv("EXPOSE_ERRORS", "0") == "1"


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if database.db is not None:
        try:
            database.ensure_indexes()
        except PyMongoError as e:
            logger.warning("Unable to ensure indexes: %s", e)
    yield


app = FastAPI(title="Fashion Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def envelope(success: bool, data: Any = None, message: str = "") -> Dict[str, Any]:
    return {"success": success, "data": data, "message": message}


def ok(data: Any = None, message: str = "") -> Dict[str, Any]:
    return envelope(True, data, message)


# ------------------------- Error handling -------------------------

@app.exception_handler(StoreError)
def store_error_handler(_request, exc: StoreError):
    return JSONResponse(status_code=exc.status_code, content=envelope(False, None, exc.message))


@app.exception_handler(StarletteHTTPException)
def http_error_handler(_request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content=envelope(False, None, str(exc.detail)))


@app.exception_handler(RequestValidationError)
def validation_error_handler(_request, exc: RequestValidationError):
    fields = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "header")]
        fields.append(".".join(loc) or err.get("msg", "request"))
    message = "Invalid fields: " + ", ".join(dict.fromkeys(fields))
    return JSONResponse(status_code=400, content=envelope(False, {"fields": fields}, message))


@app.exception_handler(PyMongoError)
def database_error_handler(_request, exc: PyMongoError):
    logger.exception("Database error: %s", exc)
    message = str(exc) if EXPOSE_ERRORS else "Database error"
    return JSONResponse(status_code=500, content=envelope(False, None, message))


@app.get("/")
def read_root():
    return {"brand": "Fashion Storefront", "status": "running"}


# ------------------------- Account -------------------------

@app.get("/api/auth/me")
def who_am_i(user: dict = Depends(require_user)):
    return ok({"user": user})


@app.get("/api/auth/profile")
def get_profile(user: dict = Depends(require_user)):
    return ok({"user": profiles.get_profile(user)})


@app.put("/api/auth/profile")
def update_profile(payload: ProfileIn, user: dict = Depends(require_user)):
    return ok({"user": profiles.update_profile(user, payload)}, "Profile updated successfully")


# ------------------------- Products -------------------------

@app.get("/api/products")
def list_products(category: Optional[str] = None, color: Optional[str] = None,
                  limit: int = Query(50, ge=1, le=200)):
    query: Dict[str, Any] = {"in_stock": True}
    if category:
        query["category"] = category
    if color:
        query["colors"] = {"$in": [color]}
    products = [database.serialize_doc(p) for p in database.get_documents("product", query, limit=limit)]
    return ok({"products": products})


@app.get("/api/products/featured")
def featured_products(limit: int = Query(10, ge=1, le=50)):
    query = {"in_stock": True, "is_featured": True}
    products = [database.serialize_doc(p) for p in database.get_documents("product", query, limit=limit)]
    return ok({"products": products})


@app.get("/api/products/categories")
def product_categories():
    found = database.get_db()["product"].distinct("category", {"in_stock": True})
    return ok({"categories": sorted(c for c in found if c)})


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    oid = database.to_object_id(product_id)
    product = database.get_db()["product"].find_one({"_id": oid}) if oid else None
    if not product:
        raise NotFound("Product not found")
    return ok({"product": database.serialize_doc(product)})


# ------------------------- Cart -------------------------

@app.get("/api/cart")
def get_cart(user: dict = Depends(require_user)):
    return ok(cart.cart_summary(user["id"]))


@app.post("/api/cart")
def add_to_cart(item: CartLineIn, user: dict = Depends(require_user)):
    cart.add_line(user["id"], item)
    return ok(cart.cart_summary(user["id"]), "Added to cart")


@app.put("/api/cart/{line_id}")
def update_cart_line(line_id: str, payload: QuantityUpdate, user: dict = Depends(require_user)):
    cart.set_quantity(user["id"], line_id, payload.quantity)
    return ok(cart.cart_summary(user["id"]))


@app.delete("/api/cart/{line_id}")
def remove_cart_line(line_id: str, user: dict = Depends(require_user)):
    cart.remove_line(user["id"], line_id)
    return ok(cart.cart_summary(user["id"]), "Removed from cart")


@app.delete("/api/cart")
def clear_cart(user: dict = Depends(require_user)):
    cart.clear_cart(user["id"])
    return ok(cart.cart_summary(user["id"]), "Cart cleared")


@app.post("/api/cart/merge")
def merge_guest_session(payload: MergeRequest, user: dict = Depends(require_user)):
    merged = reconciler.merge_guest_cart(user["id"], payload.items)
    added = reconciler.merge_guest_wishlist(user["id"], payload.wishlist)
    data = cart.cart_summary(user["id"])
    data["merged_lines"] = merged
    data["wishlist_added"] = added
    return ok(data, "Guest cart merged")


# ------------------------- Wishlist -------------------------

def _wishlist_view(user_id: str) -> Dict[str, Any]:
    entries = [database.serialize_doc(w) for w in cart.fetch_wishlist(user_id)]
    return {"wishlist": entries, "product_ids": [w["product_id"] for w in entries]}


@app.get("/api/wishlist")
def get_wishlist(user: dict = Depends(require_user)):
    return ok(_wishlist_view(user["id"]))


@app.post("/api/wishlist")
def add_to_wishlist(payload: WishlistIn, user: dict = Depends(require_user)):
    added = cart.add_to_wishlist(user["id"], payload.product_id)
    return ok(_wishlist_view(user["id"]), "Added to wishlist" if added else "Already in wishlist")


@app.delete("/api/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, user: dict = Depends(require_user)):
    cart.remove_from_wishlist(user["id"], product_id)
    return ok(_wishlist_view(user["id"]), "Removed from wishlist")


# ------------------------- Addresses -------------------------

@app.get("/api/addresses")
def list_addresses(user: dict = Depends(require_user)):
    return ok({"addresses": [database.serialize_doc(a) for a in addresses.list_addresses(user["id"])]})


@app.get("/api/addresses/{address_id}")
def get_address(address_id: str, user: dict = Depends(require_user)):
    return ok({"address": database.serialize_doc(addresses.get_address(user["id"], address_id))})


@app.post("/api/addresses")
def create_address(payload: AddressIn, user: dict = Depends(require_user)):
    address = addresses.create_address(user["id"], payload)
    return ok({"address": database.serialize_doc(address)}, "Address saved")


@app.put("/api/addresses/{address_id}")
def update_address(address_id: str, payload: AddressIn, user: dict = Depends(require_user)):
    address = addresses.update_address(user["id"], address_id, payload)
    return ok({"address": database.serialize_doc(address)}, "Address updated")


@app.delete("/api/addresses/{address_id}")
def delete_address(address_id: str, user: dict = Depends(require_user)):
    addresses.delete_address(user["id"], address_id)
    return ok(None, "Address deleted")


# ------------------------- Orders -------------------------

@app.get("/api/orders")
def list_orders(user: dict = Depends(require_user)):
    return ok({"orders": [database.serialize_doc(o) for o in orders.list_orders(user["id"])]})


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user: dict = Depends(require_user)):
    return ok({"order": database.serialize_doc(orders.get_order(user["id"], order_id))})


@app.post("/api/orders")
def place_order(payload: PlaceOrderIn, user: dict = Depends(require_user),
                idempotency_key: Optional[str] = Header(None)):
    order, created = orders.place_order(user["id"], payload.address_id, payload.payment_method, idempotency_key)
    view = database.serialize_doc(order)
    view.pop("checkout_key", None)
    view.pop("cart_line_ids", None)
    return ok({"order": view, "created": created},
              "Order placed successfully" if created else "Order already placed")


# ------------------------- Returns -------------------------

@app.get("/api/returns")
def list_returns(user: dict = Depends(require_user)):
    return ok({"returns": return_requests.list_returns(user["id"])})


@app.post("/api/returns")
def create_return(payload: ReturnIn, user: dict = Depends(require_user)):
    record = return_requests.request_return(user["id"], payload.order_id, payload.order_line_id,
                                    payload.reason, payload.description)
    return ok({"return": database.serialize_doc(record)}, "Return request submitted successfully")


# ------------------------- Admin -------------------------

@app.get("/api/admin/check")
def admin_check(user: Optional[dict] = Depends(get_current_user)):
    return ok({"is_admin": bool(user) and is_admin(user["id"])})


@app.get("/api/admin/stats")
def admin_stats(_admin: dict = Depends(require_admin)):
    return ok({"stats": orders.order_stats()})


@app.get("/api/admin/orders")
def admin_list_orders(status: Optional[str] = None, limit: int = Query(100, ge=1, le=500),
                      _admin: dict = Depends(require_admin)):
    return ok({"orders": orders.list_all_orders(status, limit)})


@app.put("/api/admin/orders/{order_id}/status")
def admin_update_order_status(order_id: str, payload: OrderStatusIn, _admin: dict = Depends(require_admin)):
    order = orders.advance_status(order_id, payload.status)
    return ok({"order": database.serialize_doc(order)}, "Order status updated")


@app.put("/api/admin/orders/{order_id}/payment")
def admin_update_payment(order_id: str, payload: PaymentStatusIn, _admin: dict = Depends(require_admin)):
    order = orders.set_payment_status(order_id, payload.payment_status)
    return ok({"order": database.serialize_doc(order)}, "Payment status updated")


@app.get("/api/admin/users")
def admin_list_users(limit: int = Query(100, ge=1, le=500), _admin: dict = Depends(require_admin)):
    return ok({"users": profiles.list_users(limit)})


@app.put("/api/admin/users/{user_id}/role")
def admin_set_role(user_id: str, payload: RoleIn, _admin: dict = Depends(require_admin)):
    profile = profiles.set_role(user_id, payload.role)
    return ok({"user": database.serialize_doc(profile)}, "User role updated")


@app.get("/api/admin/returns")
def admin_list_returns(status: Optional[str] = None, limit: int = Query(50, ge=1, le=500),
                       _admin: dict = Depends(require_admin)):
    return ok({"returns": return_requests.list_all_returns(status, limit)})


@app.put("/api/admin/returns/{return_id}/status")
def admin_update_return(return_id: str, payload: ReturnStatusIn, _admin: dict = Depends(require_admin)):
    record = return_requests.update_return_status(return_id, payload.status, payload.admin_notes, payload.refund_amount)
    return ok({"return": database.serialize_doc(record)}, "Return status updated")


@app.post("/api/admin/returns/sync")
def admin_sync_refunds(_admin: dict = Depends(require_admin)):
    return ok({"synced": return_requests.sync_pending_refunds()})


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["database_name"] = getattr(database.db, "name", None) or "✅ Connected"
            response["connection_status"] = "Connected"
            try:
                collections = database.db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except PyMongoError as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
