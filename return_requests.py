"""
Return requests against delivered orders.

pending -> approved | rejected
approved -> completed | refunded
completed -> refunded

A return marked refunded also moves its order to "refunded". The return is
written first with order_sync_pending set, then the order, then the flag is
cleared; sync_pending_refunds() finishes any refund whose order write did not
land.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import database
import orders
from errors import DuplicateRequest, InvalidInput, InvalidTransition, NotFound
from schemas import ReturnRequest

logger = logging.getLogger(__name__)

RETURN_TRANSITIONS = {
    "pending": {"approved", "rejected"},
    "approved": {"completed", "refunded"},
    "completed": {"refunded"},
}
OPEN_STATUSES = {"pending", "approved", "completed"}


def open_target(order_id: str, order_line_id: Optional[str]) -> str:
    return f"{order_id}:{order_line_id or '*'}"


def request_return(user_id: str, order_id: str, order_line_id: Optional[str], reason: str,
                   description: Optional[str] = None) -> Dict[str, Any]:
    reason = (reason or "").strip()
    if not reason:
        raise InvalidInput("Reason is required")

    order = orders.get_order(user_id, order_id)
    if order["status"] != "delivered":
        raise InvalidInput("Only delivered orders can be returned")

    if order_line_id:
        line = next((i for i in order.get("items", []) if i["id"] == order_line_id), None)
        if line is None:
            raise NotFound("Order item not found")
        refund_amount = line["unit_price"] * line["quantity"]
    else:
        refund_amount = order["total"]

    order_id = str(order["_id"])
    target = open_target(order_id, order_line_id)
    col = database.get_db()["returnrequest"]
    if col.find_one({"open_target": target}):
        raise DuplicateRequest("A return request is already open for this item")

    record = ReturnRequest(
        order_id=order_id,
        order_line_id=order_line_id,
        user_id=user_id,
        reason=reason,
        description=description or None,
        refund_amount=refund_amount,
        open_target=target,
    )
    try:
        return_id = database.create_document("returnrequest", record)
    except DuplicateKeyError:
        raise DuplicateRequest("A return request is already open for this item")
    logger.info("Return %s requested for order %s", return_id, order["order_number"])
    return col.find_one({"_id": database.to_object_id(return_id)})


def _apply_refund_to_order(ret: Dict[str, Any]) -> None:
    db = database.get_db()
    db["order"].update_one(
        {"_id": database.to_object_id(ret["order_id"])},
        {"$set": {"status": "refunded", "updated_at": database.now()}},
    )
    db["returnrequest"].update_one({"_id": ret["_id"]}, {"$set": {"order_sync_pending": False}})


def update_return_status(return_id: str, new_status: str, admin_notes: Optional[str] = None,
                         refund_amount: Optional[int] = None) -> Dict[str, Any]:
    col = database.get_db()["returnrequest"]
    oid = database.to_object_id(return_id)
    ret = col.find_one({"_id": oid}) if oid else None
    if not ret:
        raise NotFound("Return request not found")

    current = ret["status"]
    if new_status not in RETURN_TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"Cannot move return from {current} to {new_status}")

    changes: Dict[str, Any] = {"status": new_status, "updated_at": database.now()}
    if admin_notes is not None:
        changes["admin_notes"] = admin_notes
    if refund_amount is not None:
        changes["refund_amount"] = refund_amount
    if new_status == "refunded":
        changes["order_sync_pending"] = True
    update: Dict[str, Any] = {"$set": changes}
    if new_status not in OPEN_STATUSES:
        update["$unset"] = {"open_target": ""}

    updated = col.find_one_and_update({"_id": oid, "status": current}, update, return_document=ReturnDocument.AFTER)
    if updated is None:
        raise InvalidTransition("Return status changed in the meantime, reload and retry")
    logger.info("Return %s: %s -> %s", return_id, current, new_status)

    if new_status == "refunded":
        _apply_refund_to_order(updated)
        updated = col.find_one({"_id": oid})
    return updated


def sync_pending_refunds() -> int:
    """Re-apply the order update for refunds that never reached their order."""
    pending = database.get_documents("returnrequest", {"order_sync_pending": True})
    for ret in pending:
        _apply_refund_to_order(ret)
    if pending:
        logger.warning("Finished %d refunds whose order update was missing", len(pending))
    return len(pending)


# ------------------------- Reads -------------------------

def _with_order_summary(returns: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    order_ids = {database.to_object_id(r["order_id"]) for r in returns}
    by_id = {str(o["_id"]): o for o in database.get_documents("order", {"_id": {"$in": [o for o in order_ids if o]}})}
    out = []
    for r in returns:
        view = database.serialize_doc(r)
        view.pop("open_target", None)
        order = by_id.get(r["order_id"])
        view["order"] = {
            "order_number": order["order_number"],
            "total": order["total"],
            "status": order["status"],
            "created_at": order["created_at"].isoformat(),
        } if order else None
        line = None
        if order and r.get("order_line_id"):
            line = next((i for i in order["items"] if i["id"] == r["order_line_id"]), None)
        view["order_item"] = line
        out.append(view)
    return out


def list_returns(user_id: str) -> List[Dict[str, Any]]:
    return _with_order_summary(
        database.get_documents("returnrequest", {"user_id": user_id}, sort=[("created_at", -1)]))


def list_all_returns(status: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
    filt = {"status": status} if status else {}
    return _with_order_summary(
        database.get_documents("returnrequest", filt, limit=limit, sort=[("created_at", -1)]))
