"""
Cart & Order engine.

A user's cart lives embedded in the user document as an ordered list of
``{product_id, quantity}``. Checkout copies every line's product into an
``order`` document and then empties the cart.

Cart mutations for one user are serialized behind an in-process lock so two
requests of the same user cannot interleave their read-modify-write. Separate
worker processes do not share these locks; there the last write still wins.
"""

import copy
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import serialize_doc, to_object_id
from errors import NotFound, StoreUnavailable, ValidationFailed
from schemas import Order as OrderSchema, OrderLine, OrderUser
from stores import AccountStore, CatalogStore, store_call

logger = logging.getLogger(__name__)

_locks_guard = threading.Lock()
_user_locks: Dict[str, threading.RLock] = {}


def user_lock(user_id: str) -> threading.RLock:
    with _locks_guard:
        return _user_locks.setdefault(str(user_id), threading.RLock())


def cart_items(user: Dict[str, Any]) -> List[Dict[str, Any]]:
    cart = user.setdefault("cart", {})
    return cart.setdefault("items", [])


def product_ref(product_id: str) -> str:
    """Canonical form of a product id as stored in cart items."""
    try:
        return str(ObjectId(product_id))
    except (InvalidId, TypeError):
        return str(product_id)


def find_item(items: List[Dict[str, Any]], product_id: str) -> Optional[Dict[str, Any]]:
    for item in items:
        if item["product_id"] == product_id:
            return item
    return None


def order_total(order: Dict[str, Any]) -> float:
    return sum(line["quantity"] * line["product"]["price"] for line in order.get("products", []))


def snapshot_product(product: Dict[str, Any]) -> Dict[str, Any]:
    return serialize_doc(copy.deepcopy(product))


def available_stock(product: Dict[str, Any]) -> Optional[int]:
    """Numeric stock of a product, or None when it cannot be read as a count."""
    try:
        return int(str(product.get("stock", "")).strip())
    except ValueError:
        return None


class CartEngine:
    def __init__(self, db: Database, accounts: AccountStore, catalog: CatalogStore, enforce_stock: bool = False):
        self.orders = db["order"]
        self.accounts = accounts
        self.catalog = catalog
        self.enforce_stock = enforce_stock

    # Cart

    def add_to_cart(self, user_id: str, product_id: str) -> Dict[str, Any]:
        with user_lock(user_id):
            user = self.accounts.find_user_by_id(user_id)
            product = self.catalog.find_product_by_id(product_id)
            pid = str(product["_id"])
            items = cart_items(user)
            item = find_item(items, pid)
            quantity = item["quantity"] + 1 if item else 1
            self._check_stock(product, quantity)
            if item:
                item["quantity"] = quantity
            else:
                items.append({"product_id": pid, "quantity": 1})
            return self.accounts.save_user(user)

    def increase_quantity(self, user_id: str, product_id: str) -> Dict[str, Any]:
        with user_lock(user_id):
            user = self.accounts.find_user_by_id(user_id)
            item = self._require_item(user, product_id)
            if self.enforce_stock:
                self._check_stock(self.catalog.find_product_by_id(product_id), item["quantity"] + 1)
            item["quantity"] += 1
            return self.accounts.save_user(user)

    def decrease_quantity(self, user_id: str, product_id: str) -> Dict[str, Any]:
        with user_lock(user_id):
            user = self.accounts.find_user_by_id(user_id)
            item = self._require_item(user, product_id)
            item["quantity"] -= 1
            if item["quantity"] <= 0:
                cart_items(user).remove(item)
            return self.accounts.save_user(user)

    def remove_from_cart(self, user_id: str, product_id: str) -> Dict[str, Any]:
        with user_lock(user_id):
            user = self.accounts.find_user_by_id(user_id)
            items = cart_items(user)
            item = find_item(items, product_ref(product_id))
            if item is None:
                return user
            items.remove(item)
            return self.accounts.save_user(user)

    def clear_cart(self, user_id: str) -> Dict[str, Any]:
        with user_lock(user_id):
            user = self.accounts.find_user_by_id(user_id)
            user["cart"] = {"items": []}
            return self.accounts.save_user(user)

    def get_cart(self, user_id: str) -> Tuple[List[Dict[str, Any]], float]:
        """Cart lines with their live product records and the live total.

        Lines whose product was deleted carry ``product=None`` and count
        nothing towards the total.
        """
        user = self.accounts.find_user_by_id(user_id)
        items = cart_items(user)
        products = {str(p["_id"]): p for p in self.catalog.list_products_by_ids([i["product_id"] for i in items])}
        lines = []
        total = 0
        for item in items:
            product = products.get(item["product_id"])
            if product is not None:
                total += item["quantity"] * product["price"]
            lines.append({"product_id": item["product_id"], "quantity": item["quantity"], "product": product})
        return lines, total

    # Orders

    def checkout(self, user_id: str) -> Dict[str, Any]:
        """Turn the user's cart into an order, then empty the cart.

        The order is saved before the cart is cleared. If clearing fails the
        order is deleted again so the user is not left with an order and a
        full cart.
        """
        with user_lock(user_id):
            user = self.accounts.find_user_by_id(user_id)
            items = cart_items(user)
            if not items:
                raise ValidationFailed("Your cart is empty, nothing to order.")

            lines = []
            for item in items:
                product = self.catalog.find_product_by_id(item["product_id"])
                self._check_stock(product, item["quantity"])
                lines.append(OrderLine(quantity=item["quantity"], product=snapshot_product(product)))

            order = OrderSchema(
                user=OrderUser(email=user["email"], user_id=str(user["_id"])),
                products=lines,
            ).model_dump()
            with store_call("Saving order"):
                result = self.orders.insert_one(order)
            order["_id"] = result.inserted_id

            try:
                self.clear_cart(user_id)
            except StoreUnavailable:
                self._roll_back_order(result.inserted_id)
                raise StoreUnavailable("Clearing cart failed! Please try again.")
            logger.info("Order %s placed by user %s", result.inserted_id, user_id)
            return order

    def list_orders(self, user_id: str) -> Tuple[List[Dict[str, Any]], float]:
        with store_call("Fetching orders"):
            orders = list(self.orders.find({"user.user_id": str(user_id)}))
        return orders, sum(order_total(o) for o in orders)

    def get_order(self, order_id: str) -> Dict[str, Any]:
        oid = to_object_id(order_id, "order")
        with store_call("Finding order"):
            order = self.orders.find_one({"_id": oid})
        if not order:
            raise NotFound("Could not find an order for the provided id.")
        return order

    def cancel_order(self, order_id: str) -> None:
        order = self.get_order(order_id)
        with store_call("Canceling order"):
            self.orders.delete_one({"_id": order["_id"]})
        logger.info("Order %s canceled", order_id)

    def _require_item(self, user: Dict[str, Any], product_id: str) -> Dict[str, Any]:
        item = find_item(cart_items(user), product_ref(product_id))
        if item is None:
            raise NotFound("Could not find this product in the cart.")
        return item

    def _check_stock(self, product: Dict[str, Any], quantity: int) -> None:
        if not self.enforce_stock:
            return
        stock = available_stock(product)
        if stock is not None and quantity > stock:
            raise ValidationFailed(f"Only {stock} of '{product.get('title')}' left in stock.")

    def _roll_back_order(self, order_oid) -> None:
        try:
            self.orders.delete_one({"_id": order_oid})
        except PyMongoError:
            logger.error("Order %s was saved but its cart could not be cleared nor the order removed", order_oid)
