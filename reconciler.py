"""
Guest -> authenticated cart/wishlist reconciliation.

Server side, guest lines are merged by presence: an existing line with the same
(product, size, color) gets the guest quantity added, otherwise the guest line
is inserted with its price snapshot. Wishlist merges are a set union.

Client side, reconcile_guest_session empties the guest store before handing
anything to the server, so no other code path can merge the same lines twice.
A line the server refuses outright (LineRejected) is logged and dropped; any
other failure puts the lines not yet sent back so the merge can simply be re-run.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List

import cart
from guest_store import GuestStore
from schemas import CartLineIn

logger = logging.getLogger(__name__)


class LineRejected(Exception):
    """The server will never accept this guest line as it stands."""


def merge_guest_cart(user_id: str, lines: Iterable[CartLineIn]) -> int:
    merged = 0
    for line in lines:
        cart.add_line(user_id, line)
        merged += 1
    return merged


def merge_guest_wishlist(user_id: str, product_ids: Iterable[str]) -> int:
    return cart.add_many_to_wishlist(user_id, product_ids)


def reconcile_guest_session(store: GuestStore,
                            add_line: Callable[[Dict[str, Any]], Any],
                            add_wishlist: Callable[[List[str]], Any]) -> Dict[str, int]:
    lines = store.lines()
    wishlist = store.wishlist()
    if not lines and not wishlist:
        return {"lines": 0, "skipped": 0, "wishlist": 0}

    store.clear_cart()
    store.clear_wishlist()

    done = merged = 0
    try:
        for line in lines:
            try:
                add_line(line)
                merged += 1
            except LineRejected as e:
                logger.warning("Dropping guest line %s/%s/%s: %s",
                               line.get("product_id"), line.get("size"), line.get("color"), e)
            done += 1
        if wishlist:
            add_wishlist(wishlist)
    except Exception:
        logger.warning("Guest merge stopped after %d of %d lines; keeping the rest locally", done, len(lines))
        store.restore_lines(lines[done:])
        store.add_wishlist(wishlist)
        raise

    logger.info("Merged %d guest cart lines and %d wishlist entries", merged, len(wishlist))
    return {"lines": merged, "skipped": done - merged, "wishlist": len(wishlist)}
