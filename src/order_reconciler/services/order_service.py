#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Order reconciliation between provider transactions and local carts.

This module provides the `OrderReconciler` class, which turns a payment
provider's transaction into exactly one local order. The same checkout can be
reported more than once (storefront callback, webhook, retries), so creation
is guarded against duplicates and every failure leaves the session cart
retryable.

Key responsibilities include:
- Validating the cart snapshot and its parent cart before creation.
- Backfilling guest identity and applying the provider's shipping data.
- Validating recollected totals against the provider's declared totals.
- Detecting a retry of an already completed creation.
- Submitting the snapshot and linking the parent cart back to it.
"""

import asyncio
import logging
from typing import Optional
import weakref

from .. import db
from ..enums import OrderErrorReason
from ..enums import OrderStatus
from ..exceptions import InvalidRequestError
from ..exceptions import OrderCreationError
from ..exceptions import ResourceNotFoundError
from ..models import Transaction
from .cart_repository import CartSnapshotRepository
from .notifications import EventPublisher
from .notifications import NotificationSink
from .notifications import ORDER_SUBMITTED
from .notifications import SHIPPING_METHOD_APPLIED
from .order_submission import OrderSubmissionService
from .shipping_service import match_rate_by_title
from .shipping_service import RateQuoteService
from .shipping_service import rates_debugging_data
from .totals_collector import TotalsCollector
from .totals_validator import TotalsValidator
from .transaction_source import TransactionSource

logger = logging.getLogger(__name__)


class CartLocks:
  """Per parent cart locks shared by all reconcilers of a process."""

  def __init__(self) -> None:
    # Entries go away once no attempt holds or awaits the lock.
    self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
        weakref.WeakValueDictionary()
    )

  def for_cart(self, cart_id: str) -> asyncio.Lock:
    lock = self._locks.get(cart_id)
    if lock is None:
      lock = asyncio.Lock()
      self._locks[cart_id] = lock
    return lock


cart_locks = CartLocks()


class OrderReconciler:
  """Creates orders from provider transactions."""

  def __init__(
      self,
      repository: CartSnapshotRepository,
      transaction_source: TransactionSource,
      rate_service: RateQuoteService,
      submission_service: OrderSubmissionService,
      notifier: NotificationSink,
      events: EventPublisher,
      payment_method_code: str = "boltpay",
      totals_collector: Optional[TotalsCollector] = None,
      totals_validator: Optional[TotalsValidator] = None,
      locks: Optional[CartLocks] = None,
  ):
    self.repository = repository
    self.transaction_source = transaction_source
    self.rate_service = rate_service
    self.submission_service = submission_service
    self.notifier = notifier
    self.events = events
    self.payment_method_code = payment_method_code
    self.totals_collector = totals_collector or TotalsCollector()
    self.totals_validator = totals_validator or TotalsValidator()
    self.locks = locks or cart_locks

  async def create_order(
      self,
      reference: Optional[str],
      session_cart_id: Optional[str] = None,
      is_merchant_initiated: bool = False,
      transaction: Optional[Transaction] = None,
  ) -> db.Order:
    """Creates the order for a provider transaction.

    Args:
      reference: The provider transaction reference.
      session_cart_id: The parent cart id of the shopping session, if called
        from one. Webhooks pass None and the parent cart of the snapshot is
        used instead.
      is_merchant_initiated: True for merchant back-office creation, which may
        omit the reference and supply `transaction` directly.
      transaction: A pre-fetched transaction. Fetched by reference if None.

    Returns:
      The created order, or the existing order when this call is a retry of a
      creation that already completed.

    Raises:
      OrderCreationError: on any failure. The parent cart is marked active
        again before raising so that a later attempt can succeed.
    """
    parent_id = None
    try:
      if not reference and not is_merchant_initiated:
        raise InvalidRequestError(
            "Bolt transaction reference is missing in the order creation"
            " process."
        )

      transaction = transaction or await self.transaction_source.fetch(
          reference
      )

      is_merchant_initiated = (
          is_merchant_initiated or transaction.is_merchant_initiated
      )

      snapshot_id = transaction.immutable_quote_id
      if not snapshot_id:
        raise InvalidRequestError(
            f"Transaction {reference} does not reference a cart."
        )

      completed = await self.repository.get_order_by_quote_id(snapshot_id)
      if completed is not None:
        await self._warn_already_processed(completed, reference)
        return completed

      snapshot = await self.repository.load(snapshot_id)
      parent = None
      if snapshot is not None:
        parent = await self.repository.load(snapshot.parent_quote_id)
      if parent is not None:
        parent_id = parent.id

      if not session_cart_id and snapshot is not None:
        session_cart_id = snapshot.parent_quote_id
        logger.info(
            "No session cart for transaction %s, using parent cart %s",
            reference,
            session_cart_id,
        )

      await self._validate_before_creation(snapshot, parent, snapshot_id)

      await self._apply_customer(snapshot, parent, transaction)
      await self._apply_shipping(snapshot, transaction)

      snapshot.payment_method = self.payment_method_code
      await self.repository.save(snapshot)

      self.totals_collector.collect(snapshot)
      await self.repository.save(snapshot)
      self.totals_validator.validate(snapshot, transaction)

      async with self.locks.for_cart(parent.id):
        # Another attempt may have reserved or used a number meanwhile.
        await self.repository.refresh(parent)
        completed = await self.repository.get_order_by_quote_id(snapshot.id)
        if completed is not None:
          await self._warn_already_processed(completed, reference)
          return completed

        pre_existing = await self.repository.get_order_by_increment_id(
            parent.reserved_order_id
        )
        if pre_existing is not None:
          # The reservation belongs to another attempt.
          await self.repository.reserve_order_id(parent)
        elif not parent.reserved_order_id:
          await self.repository.reserve_order_id(parent)

        if snapshot.reserved_order_id != parent.reserved_order_id:
          snapshot.reserved_order_id = parent.reserved_order_id
          await self.repository.save(snapshot)

        shipping_address = snapshot.shipping_address
        try:
          order, recurring_profiles = await self.submission_service.submit(
              snapshot, is_merchant_initiated=is_merchant_initiated
          )
          self._validate_after_creation(order)
        except Exception:
          logger.info(
              "Order submission failed for transaction %s, quote %s,"
              " address %s",
              reference,
              snapshot_id,
              shipping_address,
          )
          raise

    except Exception as e:  # pylint: disable=broad-exception-caught
      if parent_id:
        await self._reactivate(parent_id)
      if isinstance(e, OrderCreationError):
        raise
      logger.exception("Unexpected order creation failure for %s", reference)
      raise OrderCreationError.wrap(e) from e

    # The parent cart now points at the snapshot it spawned, so the snapshot
    # used by a session can be found from the session's cart.
    parent.parent_quote_id = snapshot.id
    await self.repository.save(parent)

    await self.events.publish(
        ORDER_SUBMITTED,
        {
            "order": order,
            "quote": snapshot,
            "recurring_profiles": recurring_profiles,
        },
    )
    logger.info(
        "Created order #%s for transaction %s", order.increment_id, reference
    )
    return order

  async def receive_order(self, increment_id: str) -> db.Order:
    """Marks an order's parent cart as no longer retryable.

    Called once the provider has authorized the order.
    """
    order = await self.repository.get_order_by_increment_id(increment_id)
    if order is None:
      raise ResourceNotFoundError(f"Order {increment_id} not found")

    parent = await self.get_parent_quote_from_order(order)
    if parent is not None:
      parent.is_active = False
      await self.repository.save(parent)

    order.status = OrderStatus.PROCESSING.value
    await self.repository.save(order)
    return order

  async def get_order_by_quote_id(self, quote_id: str) -> Optional[db.Order]:
    return await self.repository.get_order_by_quote_id(quote_id)

  async def get_quote_from_order(self, order: db.Order) -> Optional[db.Cart]:
    return await self.repository.load(order.quote_id)

  async def get_parent_quote_from_order(
      self, order: db.Order
  ) -> Optional[db.Cart]:
    quote = await self.get_quote_from_order(order)
    if quote is None:
      return None
    return await self.repository.load(quote.parent_quote_id)

  async def _validate_before_creation(
      self,
      snapshot: Optional[db.Cart],
      parent: Optional[db.Cart],
      snapshot_id: str,
  ) -> None:
    if snapshot is None or not snapshot.items:
      raise OrderCreationError(OrderErrorReason.CART_NOT_FOUND, [snapshot_id])

    if parent is None or not parent.items_count:
      raise OrderCreationError(OrderErrorReason.CART_EMPTY)

    if not parent.is_active:
      raise OrderCreationError(OrderErrorReason.CART_EXPIRED)

    for cart_item in snapshot.items:
      product = cart_item.product
      if product is None or not product.is_saleable:
        raise OrderCreationError(
            OrderErrorReason.CART_NOT_PURCHASABLE, [cart_item.product_id]
        )

      if cart_item.has_children:
        continue
      stock_item = await self.repository.get_stock_item(cart_item.product_id)
      if stock_item is not None and not stock_item.check_qty(cart_item.qty):
        raise OrderCreationError(
            OrderErrorReason.OUT_OF_INVENTORY,
            [cart_item.product_id, stock_item.available_qty, cart_item.qty],
        )

  async def _apply_customer(
      self, snapshot: db.Cart, parent: db.Cart, transaction: Transaction
  ) -> None:
    billing = transaction.from_credit_card.billing_address

    if not snapshot.customer_email:
      snapshot.customer_email = billing.email_address
      await self.repository.save(snapshot)

    snapshot.customer_is_guest = not parent.customer_id
    if snapshot.customer_is_guest:
      snapshot.customer_firstname = transaction.from_consumer.first_name
      snapshot.customer_lastname = transaction.from_consumer.last_name
    await self.repository.save(snapshot)

    billing_address = dict(snapshot.billing_address or {})
    billing_address["first_name"] = billing.first_name
    billing_address["last_name"] = billing.last_name
    snapshot.billing_address = billing_address
    await self.repository.save(snapshot)

  async def _apply_shipping(
      self, snapshot: db.Cart, transaction: Transaction
  ) -> None:
    shipments = transaction.order.cart.shipments
    if not shipments:
      return

    shipment = shipments[0]
    self.rate_service.apply_shipping_address(
        snapshot, shipment.shipping_address
    )
    shipping_method_code = shipment.reference
    rates = []

    if not shipping_method_code:
      # Legacy transactions only describe the rate by its display title.
      self.totals_collector.collect(snapshot)
      rates = await self.rate_service.quote(snapshot)
      rate = match_rate_by_title(rates, shipment.service)
      if rate is not None:
        shipping_method_code = rate.code

    if shipping_method_code:
      await self.rate_service.apply_shipping_rate(
          snapshot, shipping_method_code
      )
      await self.repository.save(snapshot)
      await self.events.publish(
          SHIPPING_METHOD_APPLIED,
          {"quote": snapshot, "shipping_method_code": shipping_method_code},
      )
      return

    await self.notifier.error(
        "Shipping method not found",
        {
            "reference": transaction.reference,
            "rates": rates_debugging_data(rates),
            "service": shipment.service,
            "shipping_address": snapshot.shipping_address,
            "quote_id": snapshot.id,
        },
    )

  async def _warn_already_processed(
      self, order: db.Order, reference: Optional[str]
  ) -> None:
    await self.notifier.warning(
        f"The order #{order.increment_id} has already been processed for"
        " this quote.",
        {"reference": reference, "quote_id": order.quote_id},
    )

  def _validate_after_creation(self, order: Optional[db.Order]) -> None:
    if not order:
      raise RuntimeError("Order was not able to be saved")

  async def _reactivate(self, parent_id: str) -> None:
    # Reload by id; a failed submission may have expired loaded rows.
    parent = await self.repository.load(parent_id)
    if parent is None:
      return
    parent.is_active = True
    await self.repository.save(parent)
