"""
Inventory store: product documents, stock and buyer history.

Stock is only ever taken through ``reserve``, a single conditional update
(``stock >= quantity`` in the filter). A competing writer that got there
first makes the update match nothing, which is reported as
InsufficientStock instead of overwriting its decrement.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from auth import CurrentUser
from database import create_document, doc_to_dict, get_documents, to_object_id
from errors import Forbidden, InsufficientStock, ProductNotFound
from schemas import Product, ProductUpdate

logger = logging.getLogger(__name__)

COLLECTION = "product"


@dataclass
class Reservation:
    """Stock taken for one order line, enough to undo it."""
    product_id: ObjectId
    quantity: int
    name: str
    price: float


class InventoryStore:
    def __init__(self, db: Database):
        self.db = db
        self.products = db[COLLECTION]

    def get(self, product_id, session=None) -> dict:
        oid = to_object_id(product_id, "product id")
        product = self.products.find_one({"_id": oid}, session=session)
        if product is None:
            raise ProductNotFound(product_id)
        return product

    def reserve(self, product_id, quantity: int, session=None) -> Reservation:
        """Decrement stock by ``quantity`` and count the line in buyers_count."""
        product = self.get(product_id, session=session)
        before = self.products.find_one_and_update(
            {"_id": product["_id"], "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity, "buyers_count": 1}},
            return_document=ReturnDocument.BEFORE,
            session=session,
        )
        if before is None:
            current = self.products.find_one({"_id": product["_id"]}, session=session) or product
            available = max(int(current.get("stock", 0)), 0)
            raise InsufficientStock(current.get("name", str(product_id)), available)
        return Reservation(
            product_id=before["_id"],
            quantity=quantity,
            name=before.get("name", ""),
            price=float(before.get("price", 0)),
        )

    def release(self, reservation: Reservation) -> None:
        """Undo a reservation that was applied outside a transaction."""
        self.products.update_one(
            {"_id": reservation.product_id},
            {"$inc": {"stock": reservation.quantity, "buyers_count": -1}},
        )
        logger.debug("Released %s of product %s", reservation.quantity, reservation.product_id)

    def record_buyer(self, product_ids: List[ObjectId], buyer_id: ObjectId, session=None) -> None:
        """Add ``buyer_id`` to the buyer set of each product; repeat buyers stay listed once."""
        if not product_ids:
            return
        self.products.update_many(
            {"_id": {"$in": list(set(product_ids))}},
            {"$addToSet": {"buyers": buyer_id}},
            session=session,
        )

    def ids_owned_by(self, farmer_id) -> List[ObjectId]:
        oid = to_object_id(farmer_id, "farmer id")
        return [p["_id"] for p in self.products.find({"farmer_id": oid}, {"_id": 1})]

    def summaries(self, product_ids) -> Dict[ObjectId, dict]:
        """name/price/unit/farmer of each product, keyed by id."""
        if not product_ids:
            return {}
        cursor = self.products.find(
            {"_id": {"$in": list(set(product_ids))}},
            {"name": 1, "price": 1, "unit": 1, "farmer_id": 1},
        )
        return {p["_id"]: p for p in cursor}

    # ---------- Product CRUD ----------

    def create(self, owner: CurrentUser, product: Product) -> dict:
        doc = product.model_dump()
        doc.update(farmer_id=to_object_id(owner.id, "user id"), buyers_count=0, buyers=[])
        new_id = create_document(COLLECTION, doc, database=self.db)
        logger.info("Product %s created by %s", new_id, owner.id)
        return self.products.find_one({"_id": new_id})

    def list_visible(self) -> List[dict]:
        return get_documents(COLLECTION, {"visible": True}, database=self.db)

    def list_by_farmer(self, farmer_id) -> List[dict]:
        oid = to_object_id(farmer_id, "farmer id")
        return get_documents(COLLECTION, {"farmer_id": oid}, database=self.db)

    def update(self, product_id, updates: ProductUpdate, requester: CurrentUser) -> dict:
        product = self.get(product_id)
        if str(product.get("farmer_id")) != requester.id and not requester.is_admin:
            raise Forbidden()
        changes = updates.model_dump(exclude_unset=True, exclude_none=True)
        if changes:
            self.products.update_one({"_id": product["_id"]}, {"$set": changes})
        return self.products.find_one({"_id": product["_id"]})


def product_out(doc: dict) -> Optional[dict]:
    if doc is None:
        return None
    return doc_to_dict(doc)
