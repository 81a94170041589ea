"""
Order placement

`OrderAssembler` turns requested lines into a priced draft without writing
anything. `OrderPlacementCoordinator` writes the order, then decrements
stock, and records how the decrement went on the order itself.

There is no multi-document transaction: once the order is written it is
never deleted or rolled back. If a decrement loses a race with another
order (or storage fails), the order keeps `stock_status="failed"` for
reconciliation and is still returned to the caller.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from bson import ObjectId

from auth import Principal, Role
from errors import InsufficientStock, MarketError, NotAuthorized, ValidationError
from inventory import DecrementOutcome, InventoryStore, StockDecrement
from order_store import OrderStore
from pricing import PriceSnapshot
from schemas import Order, OrderItem, OrderOut, RequestedItem, ShippingAddress, StockStatus

logger = logging.getLogger(__name__)


@dataclass
class OrderDraft:
    consumer_id: str
    items: List[OrderItem] = field(default_factory=list)
    total_cents: int = 0
    decrements: List[StockDecrement] = field(default_factory=list)


@dataclass(frozen=True)
class StockReconciliation:
    """Typed result of the post-write stock decrement."""

    outcomes: List[DecrementOutcome]

    @property
    def failures(self) -> List[DecrementOutcome]:
        return [o for o in self.outcomes if not o.applied]

    @property
    def succeeded(self) -> bool:
        return not self.failures


class OrderAssembler:
    def __init__(self, inventory: InventoryStore):
        self.inventory = inventory

    def assemble(self, consumer_id: str, items: Sequence[RequestedItem]) -> OrderDraft:
        """Validate the requested lines against current stock and prices.

        Lines are checked in input order, so the first bad line is the one
        reported. Raises ValidationError, ProductNotFound or InsufficientStock.
        """
        self._validate(items)

        draft = OrderDraft(consumer_id=consumer_id)
        for item in items:
            product = self.inventory.get_by_id(item.product)
            available = int(product.get("quantity", 0))
            if available < item.quantity:
                raise InsufficientStock(item.product, product.get("name", "item"), available, item.quantity)

            price = PriceSnapshot.capture(product)
            draft.items.append(
                OrderItem(
                    product_id=price.product_id,
                    name=product.get("name", "Product"),
                    unit_price_cents=price.unit_price_cents,
                    quantity=item.quantity,
                )
            )
            draft.total_cents += price.line_total(item.quantity)
            draft.decrements.append(StockDecrement(price.product_id, item.quantity))
        return draft

    @staticmethod
    def _validate(items: Sequence[RequestedItem]) -> None:
        if not items:
            raise ValidationError("Products array is required and cannot be empty", field="products")

        seen = set()
        for i, item in enumerate(items):
            if not ObjectId.is_valid(item.product):
                raise ValidationError("Each product must have a valid product ID", field=f"products[{i}].product")
            if item.quantity < 1:
                raise ValidationError(
                    "Each product must have a quantity greater than 0", field=f"products[{i}].quantity"
                )
            if item.product in seen:
                raise ValidationError(
                    f"Product {item.product} appears more than once; combine it into one line",
                    field=f"products[{i}].product",
                )
            seen.add(item.product)


class OrderPlacementCoordinator:
    def __init__(self, inventory: InventoryStore, orders: OrderStore):
        self.inventory = inventory
        self.orders = orders
        self.assembler = OrderAssembler(inventory)

    def place_order(
        self,
        principal: Principal,
        items: Sequence[RequestedItem],
        shipping_address: Optional[ShippingAddress] = None,
    ) -> OrderOut:
        if principal.role != Role.CONSUMER:
            raise NotAuthorized(principal.role.value)
        try:
            draft = self.assembler.assemble(principal.user_id, items)
        except MarketError as e:
            logger.warning("Order rejected for consumer %s: %s", principal.user_id, e)
            raise
        return self.commit(draft, shipping_address)

    def commit(self, draft: OrderDraft, shipping_address: Optional[ShippingAddress] = None) -> OrderOut:
        """Write the order, then decrement stock and record the outcome."""
        order = Order(
            consumer_id=draft.consumer_id,
            items=draft.items,
            total_cents=draft.total_cents,
            shipping_address=shipping_address or ShippingAddress(),
        )
        doc = self.orders.insert(order)
        logger.info("Order %s created for consumer %s (%d lines)", doc["_id"], draft.consumer_id, len(draft.items))

        result = StockReconciliation(self.inventory.batch_conditional_decrement(draft.decrements))
        if not result.succeeded:
            logger.error(
                "Stock reconciliation needed for order %s: %s",
                doc["_id"],
                ", ".join(f"{f.product_id} x{f.quantity} ({f.reason})" for f in result.failures),
            )

        try:
            doc = self.orders.record_stock_outcome(doc["_id"], result.outcomes)
        except MarketError as e:
            # The order stands; the flag stays "pending" in storage.
            logger.error("Could not record stock outcome for order %s: %s", doc["_id"], e)
            doc["stock_status"] = (StockStatus.APPLIED if result.succeeded else StockStatus.FAILED).value
            doc["stock_failures"] = [
                {"product_id": f.product_id, "quantity": f.quantity, "reason": f.reason or "unknown"}
                for f in result.failures
            ]
        return OrderOut.from_doc(doc)
