"""
Order Service
Applies payment outcomes to order rows. Completion is idempotent: the
status change is a conditional update, so a repeated confirm or a duplicate
gateway notification cannot complete an order twice.
"""
import warnings
from datetime import datetime
from typing import Optional, Dict, Any, Callable, Awaitable
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.models.payment.payment_order import OrderStatus, OrderTransition, OrderInDB
from app.services.payment.errors import PersistenceWarning

ORDER_COMPLETED_EVENT = "order.completed"

CompletionHook = Callable[[Dict[str, Any]], Awaitable[None]]


class OrderService:
    """
    Order state mutator.
    pending -> completed | declined | failed; completed is terminal.
    """

    def __init__(self, db: AsyncIOMotorDatabase, on_completed: Optional[CompletionHook] = None):
        self.db = db
        self.orders = db.orders
        self.order_events = db.order_events
        self.on_completed = on_completed

    async def get_order(self, order_id: str) -> Optional[OrderInDB]:
        row = await self.orders.find_one({"order_id": order_id})
        if not row:
            return None
        return OrderInDB(**{k: v for k, v in row.items() if k != "_id"})

    async def complete_order(
        self,
        order_id: str,
        payment_method: str,
        transaction_id: Optional[str],
        extra: Optional[Dict[str, Any]] = None,
    ) -> OrderTransition:
        """
        Mark an order completed.

        Args:
            order_id: Order to complete
            payment_method: free | stripe | razorpay | paypal | paystack | powertranz-spi | powertranz-hpp
            transaction_id: Provider transaction reference
            extra: Additional fields stored on the order (e.g. discount_breakdown)

        Returns:
            OrderTransition (applied=False for a repeat completion)
        """
        now = datetime.utcnow()
        update = {
            **(extra or {}),
            "status": OrderStatus.COMPLETED.value,
            "payment_method": payment_method,
            "transaction_id": transaction_id,
            "completed_at": now,
            "updated_at": now,
        }

        try:
            result = await self.orders.update_one(
                {"order_id": order_id, "status": {"$ne": OrderStatus.COMPLETED.value}},
                {"$set": update},
            )

            if result.modified_count == 0:
                existing = await self.orders.find_one({"order_id": order_id})
                if existing and existing.get("status") == OrderStatus.COMPLETED.value:
                    print(f"[INFO] Order {order_id} already completed, ignoring repeat completion")
                    return OrderTransition(
                        order_id=order_id,
                        status=OrderStatus.COMPLETED,
                        already_completed=True,
                    )

                self._persistence_warning(order_id, "order not found")
                return OrderTransition(order_id=order_id, persisted=False)

            await self._record_completion(order_id, payment_method, transaction_id, now)

        except PyMongoError as e:
            self._persistence_warning(order_id, str(e))
            return OrderTransition(order_id=order_id, status=OrderStatus.COMPLETED, persisted=False)

        print(f"[OK] Order {order_id} completed via {payment_method}")

        if self.on_completed:
            await self.on_completed({"order_id": order_id, "payment_method": payment_method, "transaction_id": transaction_id})

        return OrderTransition(order_id=order_id, status=OrderStatus.COMPLETED, applied=True)

    async def _record_completion(self, order_id: str, payment_method: str, transaction_id: Optional[str], at: datetime):
        """Outbox row consumed by provisioning"""
        try:
            await self.order_events.insert_one({
                "order_id": order_id,
                "event": ORDER_COMPLETED_EVENT,
                "payment_method": payment_method,
                "transaction_id": transaction_id,
                "created_at": at,
            })
        except DuplicateKeyError:
            print(f"[WARN] {ORDER_COMPLETED_EVENT} already recorded for order {order_id}")

    async def mark_declined(self, order_id: str, reason: Optional[str] = None) -> OrderTransition:
        return await self._fail(order_id, OrderStatus.DECLINED, reason)

    async def mark_failed(self, order_id: str, reason: Optional[str] = None) -> OrderTransition:
        return await self._fail(order_id, OrderStatus.FAILED, reason)

    async def _fail(self, order_id: str, status: OrderStatus, reason: Optional[str]) -> OrderTransition:
        """Only pending orders can be declined or failed"""
        try:
            result = await self.orders.update_one(
                {"order_id": order_id, "status": OrderStatus.PENDING.value},
                {"$set": {
                    "status": status.value,
                    "failure_reason": reason,
                    "updated_at": datetime.utcnow(),
                }},
            )
        except PyMongoError as e:
            self._persistence_warning(order_id, str(e))
            return OrderTransition(order_id=order_id, status=status, persisted=False)

        if result.modified_count == 0:
            print(f"[INFO] Order {order_id} is not pending, {status.value} not applied")
            return OrderTransition(order_id=order_id)

        print(f"[WARN] Order {order_id} {status.value}: {reason}")
        return OrderTransition(order_id=order_id, status=status, applied=True)

    @staticmethod
    def _persistence_warning(order_id: str, detail: str):
        message = f"Payment for order {order_id} succeeded but the order could not be updated: {detail}"
        print(f"[ERROR] {message}")
        warnings.warn(message, PersistenceWarning, stacklevel=3)
