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

"""Commits a validated cart snapshot as an order."""

import datetime
import logging
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from .. import db
from ..enums import OrderErrorReason
from ..enums import OrderStatus
from ..exceptions import OrderCreationError

logger = logging.getLogger(__name__)


class OrderSubmissionService:
  """Turns a cart snapshot into an order.

  Stock reservation, the order row, recurring profiles and the snapshot's
  deactivation are committed together; any failure rolls all of them back.
  """

  def __init__(self, session: AsyncSession):
    self.session = session

  async def submit(
      self, cart: db.Cart, is_merchant_initiated: bool = False
  ) -> Tuple[Optional[db.Order], List[db.RecurringProfile]]:
    if not cart.reserved_order_id:
      cart.reserved_order_id = await db.next_order_increment_id(self.session)

    try:
      for item in cart.items:
        if item.has_children:
          continue
        if not await db.reserve_stock(self.session, item.product_id, item.qty):
          stock_item = await db.get_stock_item(self.session, item.product_id)
          available = stock_item.available_qty if stock_item else 0
          raise OrderCreationError(
              OrderErrorReason.OUT_OF_INVENTORY,
              [item.product_id, available, item.qty],
          )

      order = db.Order(
          increment_id=cart.reserved_order_id,
          quote_id=cart.id,
          status=OrderStatus.PENDING.value,
          grand_total=cart.grand_total,
          data=self._order_data(cart, is_merchant_initiated),
          created_at=datetime.datetime.now(datetime.timezone.utc).isoformat(),
      )
      self.session.add(order)

      recurring_profiles = []
      for item in cart.items:
        if item.product is not None and item.product.is_recurring:
          recurring_profiles.append(
              await db.save_recurring_profile(
                  self.session, order.increment_id, item.product_id
              )
          )

      cart.is_active = False
      self.session.add(cart)

      await self.session.commit()
    except Exception:
      await self.session.rollback()
      raise

    logger.info("Submitted order #%s for cart %s", order.increment_id, cart.id)
    return order, recurring_profiles

  def _order_data(self, cart: db.Cart, is_merchant_initiated: bool) -> dict:
    return {
        "merchant_initiated": is_merchant_initiated,
        "customer": {
            "id": cart.customer_id,
            "email": cart.customer_email,
            "firstname": cart.customer_firstname,
            "lastname": cart.customer_lastname,
            "is_guest": cart.customer_is_guest,
        },
        "payment_method": cart.payment_method,
        "shipping_method": cart.shipping_method,
        "shipping_address": cart.shipping_address,
        "billing_address": cart.billing_address,
        "line_items": [
            {
                "id": item.id,
                "product_id": item.product_id,
                "qty": item.qty,
                "price": str(item.calculation_price),
            }
            for item in cart.items
        ],
        "totals": {
            "subtotal": str(cart.subtotal),
            "discount": str(cart.discount_amount),
            "shipping": str(cart.shipping_amount),
            "tax": str(cart.tax_amount),
            "grand_total": str(cart.grand_total),
        },
    }
