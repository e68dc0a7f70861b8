"""
Account and Catalog data access.

Thin wrappers over the ``user``, ``product`` and ``comment`` collections. Every
call translates driver failures into ``StoreUnavailable`` and missing documents
into ``NotFound``. Access control is the caller's job.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import to_object_id
from errors import NotFound, StoreUnavailable, ValidationFailed

logger = logging.getLogger(__name__)


@contextmanager
def store_call(action: str):
    try:
        yield
    except PyMongoError:
        logger.exception("%s failed", action)
        raise StoreUnavailable(f"{action} failed, please try again later.")


class AccountStore:
    def __init__(self, db: Database):
        self.users = db["user"]

    def find_user_by_id(self, user_id: str) -> Dict[str, Any]:
        oid = to_object_id(user_id, "user")
        with store_call("Finding user"):
            user = self.users.find_one({"_id": oid})
        if not user:
            raise NotFound("Could not find a user for the provided id.")
        return user

    def find_user_by_email(self, email: str) -> Dict[str, Any]:
        with store_call("Finding user"):
            user = self.users.find_one({"email": email.lower()})
        if not user:
            raise NotFound("Could not find a user for the provided email.")
        return user

    def email_taken(self, email: str, exclude_id=None) -> bool:
        query: Dict[str, Any] = {"email": email.lower()}
        if exclude_id is not None:
            query["_id"] = {"$ne": to_object_id(exclude_id, "user")}
        with store_call("Finding user"):
            return self.users.find_one(query) is not None

    def list_users(self) -> List[Dict[str, Any]]:
        with store_call("Fetching users"):
            return list(self.users.find({}, {"password_hash": 0}))

    def create_user(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        with store_call("Creating user"):
            try:
                result = self.users.insert_one(doc)
            except DuplicateKeyError:
                raise ValidationFailed("User exists already, please login instead.")
        doc["_id"] = result.inserted_id
        return doc

    def save_user(self, user: Dict[str, Any]) -> Dict[str, Any]:
        with store_call("Saving user"):
            result = self.users.replace_one({"_id": user["_id"]}, user)
        if result.matched_count == 0:
            raise NotFound("Could not find a user for the provided id.")
        return user

    def update_profile(self, user_id, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Set profile fields without rewriting the rest of the document, so a
        concurrent cart change is not overwritten."""
        oid = to_object_id(user_id, "user")
        with store_call("Saving user"):
            try:
                user = self.users.find_one_and_update({"_id": oid}, {"$set": fields}, return_document=ReturnDocument.AFTER)
            except DuplicateKeyError:
                raise ValidationFailed("Email is already in use by another account.")
        if not user:
            raise NotFound("Could not find a user for the provided id.")
        return user

    def push_reference(self, user_id: str, field: str, ref: str) -> None:
        oid = to_object_id(user_id, "user")
        with store_call("Saving user"):
            self.users.update_one({"_id": oid}, {"$push": {field: ref}})

    def pull_reference(self, user_id: str, field: str, ref: str) -> None:
        oid = to_object_id(user_id, "user")
        with store_call("Saving user"):
            self.users.update_one({"_id": oid}, {"$pull": {field: ref}})


class CatalogStore:
    def __init__(self, db: Database):
        self.products = db["product"]
        self.comments = db["comment"]

    def find_product_by_id(self, product_id: str) -> Dict[str, Any]:
        oid = to_object_id(product_id, "product")
        with store_call("Finding product"):
            product = self.products.find_one({"_id": oid})
        if not product:
            raise NotFound("Could not find a product for the provided id.")
        return product

    def list_products(self) -> List[Dict[str, Any]]:
        with store_call("Fetching products"):
            return list(self.products.find({}))

    def list_products_by_ids(self, product_ids: List[str]) -> List[Dict[str, Any]]:
        oids = [to_object_id(pid, "product") for pid in product_ids]
        with store_call("Fetching products"):
            return list(self.products.find({"_id": {"$in": oids}}))

    def create_product(self, doc: Dict[str, Any], accounts: AccountStore) -> Dict[str, Any]:
        """Insert the product, then record it on its creator.

        If the creator cannot be updated the product is removed again so no
        product is left without an owner reference.
        """
        with store_call("Creating product"):
            result = self.products.insert_one(doc)
        doc["_id"] = result.inserted_id
        try:
            accounts.push_reference(doc["creator"], "products", str(result.inserted_id))
        except StoreUnavailable:
            self._discard(result.inserted_id)
            raise
        return doc

    def save_product(self, product: Dict[str, Any]) -> Dict[str, Any]:
        with store_call("Updating product"):
            result = self.products.replace_one({"_id": product["_id"]}, product)
        if result.matched_count == 0:
            raise NotFound("Could not find a product for the provided id.")
        return product

    def delete_product(self, product: Dict[str, Any], accounts: AccountStore) -> None:
        with store_call("Deleting product"):
            result = self.products.delete_one({"_id": product["_id"]})
        if result.deleted_count == 0:
            raise NotFound("Could not find a product for the provided id.")
        accounts.pull_reference(product["creator"], "products", str(product["_id"]))

    def append_comment(self, product_id: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        product = self.find_product_by_id(product_id)
        with store_call("Saving comment"):
            result = self.comments.insert_one(doc)
        doc["_id"] = result.inserted_id
        try:
            with store_call("Saving comment"):
                self.products.update_one({"_id": product["_id"]}, {"$push": {"comments": str(result.inserted_id)}})
        except StoreUnavailable:
            try:
                self.comments.delete_one({"_id": result.inserted_id})
            except PyMongoError:
                logger.error("Could not roll back comment %s after a failed product update", result.inserted_id)
            raise
        return doc

    def list_comments(self, product_id: str) -> List[Dict[str, Any]]:
        product = self.find_product_by_id(product_id)
        ids = [to_object_id(cid, "comment") for cid in product.get("comments", [])]
        with store_call("Fetching comments"):
            found = {c["_id"]: c for c in self.comments.find({"_id": {"$in": ids}})}
        # keep the thread order recorded on the product
        return [found[i] for i in ids if i in found]

    def _discard(self, product_oid) -> None:
        try:
            self.products.delete_one({"_id": product_oid})
        except PyMongoError:
            logger.error("Could not roll back product %s after a failed creator update", product_oid)
