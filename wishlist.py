import logging
from typing import Any, Dict, List

from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import to_object_id
from errors import NotFound, StoreUnavailable
from schemas import Wishlist as WishlistSchema
from stores import AccountStore, store_call

logger = logging.getLogger(__name__)


class WishlistStore:
    """Saved-for-later product snapshots.

    Entries are copies taken when the user saved them and are never synced
    with the live product. The owning user keeps the entry ids in
    ``wishlists``.
    """

    def __init__(self, db: Database, accounts: AccountStore):
        self.entries = db["wishlist"]
        self.accounts = accounts

    def add_wishlist_entry(self, user_id: str, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        user = self.accounts.find_user_by_id(user_id)
        entry = WishlistSchema(**snapshot, creator=str(user["_id"])).model_dump()
        with store_call("Creating wishlist"):
            result = self.entries.insert_one(entry)
        entry["_id"] = result.inserted_id
        try:
            self.accounts.push_reference(user_id, "wishlists", str(result.inserted_id))
        except StoreUnavailable:
            self._delete_quietly(result.inserted_id)
            raise
        return entry

    def remove_wishlist_entry(self, entry_id: str) -> None:
        oid = to_object_id(entry_id, "wishlist entry")
        with store_call("Finding wishlist"):
            entry = self.entries.find_one({"_id": oid})
        if not entry:
            raise NotFound("Could not find a wishlist entry for this id.")

        with store_call("Deleting wishlist"):
            self.entries.delete_one({"_id": oid})
        try:
            self.accounts.pull_reference(entry["creator"], "wishlists", str(oid))
        except StoreUnavailable:
            # put the entry back so the user's reference still resolves
            try:
                self.entries.insert_one(entry)
            except PyMongoError:
                logger.error("Wishlist entry %s deleted but still referenced by user %s", oid, entry["creator"])
            raise

    def list_wishlist_by_user(self, user_id: str) -> List[Dict[str, Any]]:
        with store_call("Fetching wishlists"):
            return list(self.entries.find({"creator": str(user_id)}))

    def _delete_quietly(self, oid) -> None:
        try:
            self.entries.delete_one({"_id": oid})
        except PyMongoError:
            logger.error("Could not roll back wishlist entry %s", oid)
