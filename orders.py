"""
Orders: the order store, checkout and order status.

``OrderService.place_order`` takes every line of a cart out of stock and
writes the order as one unit. With MONGO_TRANSACTIONS enabled the unit is a
multi-document transaction; otherwise each applied line is released again
if a later line or the order insert fails.

Buyers are added to a product's buyer set only together with (transaction)
or after (compensation) a successful order insert, so a rolled back
checkout never has a buyer to take back out.
"""
import logging
from typing import Dict, Iterable, List

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, PyMongoError

from auth import CurrentUser
from config import Settings
from database import create_document, doc_to_dict, get_documents, to_object_id, utcnow
from errors import (
    CommitOutcomeUnknown,
    Forbidden,
    OrderNotFound,
    TransientStoreError,
    Unauthorized,
    ValidationError,
)
from inventory import InventoryStore, Reservation
from schemas import SELLER_ROLES, OrderIn

logger = logging.getLogger(__name__)

COLLECTION = "order"
USER_COLLECTION = "user"

UNKNOWN_COMMIT_LABEL = "UnknownTransactionCommitResult"

FORWARD_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"delivered", "cancelled"},
    "delivered": set(),
    "cancelled": set(),
}


def is_transient(exc: PyMongoError) -> bool:
    """True when nothing was written and the whole checkout may run again."""
    if exc.has_error_label(UNKNOWN_COMMIT_LABEL):
        return False
    if exc.has_error_label("TransientTransactionError"):
        return True
    return isinstance(exc, ConnectionFailure)


class OrderStore:
    def __init__(self, db: Database):
        self.db = db
        self.orders = db[COLLECTION]
        self.users = db[USER_COLLECTION]

    def insert(self, doc: dict, session=None) -> ObjectId:
        return create_document(COLLECTION, doc, session=session, database=self.db)

    def get(self, order_id) -> dict:
        oid = to_object_id(order_id, "order id")
        order = self.orders.find_one({"_id": oid})
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def by_customer(self, customer_id: ObjectId) -> List[dict]:
        return get_documents(COLLECTION, {"customer_id": customer_id}, database=self.db)

    def containing_products(self, product_ids: List[ObjectId]) -> List[dict]:
        if not product_ids:
            return []
        return get_documents(COLLECTION, {"items.product_id": {"$in": product_ids}}, database=self.db)

    def set_status(self, order_id: ObjectId, status: str) -> None:
        self.orders.update_one({"_id": order_id}, {"$set": {"status": status}})

    def populate(self, orders: Iterable[dict], inventory: InventoryStore) -> List[dict]:
        """Attach customer and product summaries for display."""
        orders = list(orders)
        product_ids = [it["product_id"] for o in orders for it in o.get("items", [])]
        products = inventory.summaries(product_ids)
        customer_ids = list({o["customer_id"] for o in orders})
        customers: Dict[ObjectId, dict] = {}
        if customer_ids:
            cursor = self.users.find(
                {"_id": {"$in": customer_ids}},
                {"name": 1, "email": 1, "phone": 1, "location": 1},
            )
            customers = {u["_id"]: u for u in cursor}

        out = []
        for order in orders:
            data = doc_to_dict(order)
            customer = customers.get(order["customer_id"])
            data["customer"] = doc_to_dict(customer) if customer else {"id": str(order["customer_id"])}
            items = []
            for item in order.get("items", []):
                product = products.get(item["product_id"])
                items.append({
                    "product_id": str(item["product_id"]),
                    "quantity": item["quantity"],
                    "product": _product_summary(product) if product else None,
                })
            data["items"] = items
            out.append(data)
        return out


def _product_summary(product: dict) -> dict:
    return {
        "id": str(product["_id"]),
        "name": product.get("name", ""),
        "price": float(product.get("price", 0)),
        "unit": product.get("unit") or "unit",
        "farmer_id": str(product.get("farmer_id", "")),
    }


class OrderService:
    def __init__(self, db: Database, settings: Settings):
        self.db = db
        self.settings = settings
        self.inventory = InventoryStore(db)
        self.store = OrderStore(db)

    # ---------- Checkout ----------

    def place_order(self, customer_id: str, cart: OrderIn) -> dict:
        """Take stock for every line of ``cart`` and record the order, all or nothing."""
        if not ObjectId.is_valid(customer_id):
            raise Unauthorized("Unauthorized")
        buyer = ObjectId(customer_id)

        attempts = self.settings.order_max_retries
        for attempt in range(1, attempts + 1):
            try:
                if self.settings.mongo_transactions:
                    order_id = self._place_in_transaction(buyer, cart)
                else:
                    order_id = self._place_with_compensation(buyer, cart)
                break
            except TransientStoreError:
                if attempt == attempts:
                    logger.error("Giving up on order for %s after %d attempts", customer_id, attempts)
                    raise
                logger.warning("Store conflict placing order for %s (attempt %d/%d), retrying",
                               customer_id, attempt, attempts)

        logger.info("Order %s placed by %s with %d line(s)", order_id, customer_id, len(cart.items))
        return self.store.populate([self.store.get(order_id)], self.inventory)[0]

    def _place_in_transaction(self, buyer: ObjectId, cart: OrderIn) -> ObjectId:
        order_id = ObjectId()
        applied: List[Reservation] = []
        try:
            with self.db.client.start_session() as session:
                session.start_transaction()
                try:
                    self._apply(buyer, cart, order_id, applied, session=session)
                    self.inventory.record_buyer([r.product_id for r in applied], buyer, session=session)
                except Exception:
                    session.abort_transaction()
                    raise
                self._commit(session, order_id)
        except PyMongoError as e:
            if is_transient(e):
                raise TransientStoreError("Order could not be saved, please retry") from e
            raise
        return order_id

    def _commit(self, session, order_id: ObjectId) -> None:
        """Commit, retrying only the commit itself while its outcome is unknown."""
        attempts = self.settings.order_max_retries
        for attempt in range(1, attempts + 1):
            try:
                session.commit_transaction()
                return
            except PyMongoError as e:
                if not e.has_error_label(UNKNOWN_COMMIT_LABEL):
                    raise
                if attempt == attempts:
                    logger.error("Commit of order %s still unknown after %d attempts", order_id, attempts)
                    raise CommitOutcomeUnknown(
                        f"Order {order_id} may have been placed; check your orders before retrying"
                    ) from e
                logger.warning("Commit of order %s unknown (attempt %d/%d), retrying commit",
                               order_id, attempt, attempts)

    def _place_with_compensation(self, buyer: ObjectId, cart: OrderIn) -> ObjectId:
        order_id = ObjectId()
        applied: List[Reservation] = []
        try:
            self._apply(buyer, cart, order_id, applied)
        except Exception as e:
            inserting = len(applied) == len(cart.items)
            if not (isinstance(e, PyMongoError) and inserting and self._order_saved(order_id, e)):
                self._compensate(applied)
                if isinstance(e, PyMongoError) and is_transient(e):
                    raise TransientStoreError("Order could not be saved, please retry") from e
                raise
            logger.warning("Insert of order %s reported %r but the order was saved", order_id, e)

        try:
            self.inventory.record_buyer([r.product_id for r in applied], buyer)
        except PyMongoError:
            logger.exception("Order %s saved but buyer history for %s not recorded", order_id, buyer)
        return order_id

    def _order_saved(self, order_id: ObjectId, error: PyMongoError) -> bool:
        try:
            return self.store.orders.find_one({"_id": order_id}, {"_id": 1}) is not None
        except PyMongoError:
            raise CommitOutcomeUnknown(
                f"Order {order_id} may have been placed; check your orders before retrying"
            ) from error

    def _apply(self, buyer: ObjectId, cart: OrderIn, order_id: ObjectId, applied: List[Reservation],
               session=None) -> ObjectId:
        for item in cart.items:
            applied.append(self.inventory.reserve(item.product_id, item.quantity, session=session))

        total = round(sum(r.price * r.quantity for r in applied), 2)
        if cart.total_price is not None and abs(cart.total_price - total) >= 0.01:
            logger.warning("Client total %.2f differs from computed total %.2f for %s",
                           cart.total_price, total, buyer)

        doc = {
            "_id": order_id,
            "customer_id": buyer,
            "items": [{"product_id": r.product_id, "quantity": r.quantity} for r in applied],
            "total_price": total,
            "payment_method": cart.payment_method,
            "delivery_address": cart.delivery_address,
            "contact_name": cart.contact_name,
            "contact_phone": cart.contact_phone,
            "status": "pending",
            "created_at": utcnow(),
        }
        return self.store.insert(doc, session=session)

    def _compensate(self, applied: List[Reservation]) -> None:
        for reservation in reversed(applied):
            try:
                self.inventory.release(reservation)
            except PyMongoError:
                logger.exception("Failed to release %s of product %s",
                                 reservation.quantity, reservation.product_id)

    # ---------- Queries ----------

    def list_orders_for_customer(self, customer_id, requester: CurrentUser) -> List[dict]:
        oid = to_object_id(customer_id, "customer id")
        if requester.id != str(oid) and not requester.is_admin:
            raise Forbidden()
        return self.store.populate(self.store.by_customer(oid), self.inventory)

    def list_orders_for_seller(self, seller_id, requester: CurrentUser) -> List[dict]:
        oid = to_object_id(seller_id, "farmer id")
        if requester.id != str(oid) and not requester.is_admin:
            raise Forbidden()
        product_ids = self.inventory.ids_owned_by(oid)
        return self.store.populate(self.store.containing_products(product_ids), self.inventory)

    def list_orders_for_user(self, requester: CurrentUser) -> List[dict]:
        if requester.role in SELLER_ROLES:
            return self.list_orders_for_seller(requester.id, requester)
        return self.list_orders_for_customer(requester.id, requester)

    # ---------- Status ----------

    def update_status(self, order_id, status: str, requester: CurrentUser) -> dict:
        order = self.store.get(order_id)
        product_ids = [it["product_id"] for it in order.get("items", [])]
        owners = {str(p.get("farmer_id")) for p in self.inventory.summaries(product_ids).values()}
        if requester.id not in owners and not requester.is_admin:
            raise Forbidden()

        current = order.get("status", "pending")
        if (self.settings.order_status_flow == "forward" and status != current
                and status not in FORWARD_TRANSITIONS.get(current, set())):
            raise ValidationError(f"Cannot change order status from {current} to {status}")

        self.store.set_status(order["_id"], status)
        logger.info("Order %s status %s -> %s by %s", order["_id"], current, status, requester.id)
        return self.store.populate([self.store.get(order["_id"])], self.inventory)[0]
