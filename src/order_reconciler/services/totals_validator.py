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

"""Validation of collected cart totals against a provider transaction.

Local totals are kept in decimal major units while the provider declares
integer minor units. Shipping and discount totals are converted by
truncation; tax and line prices are rounded half up. Which rule applies
decides pass or fail at boundary cents.
"""

from decimal import Decimal
from decimal import ROUND_HALF_UP
import logging
from typing import Any

from .. import db
from ..enums import OrderErrorReason
from ..exceptions import OrderCreationError
from ..models import Transaction

logger = logging.getLogger(__name__)


def _as_decimal(value: Any) -> Decimal:
  if value is None:
    return Decimal(0)
  if isinstance(value, float):
    return Decimal(str(value))
  return Decimal(value)


def to_minor_units(amount: Any) -> int:
  """Converts major units to minor units, truncating toward zero."""
  return int(_as_decimal(amount) * 100)


def to_minor_units_rounded(amount: Any) -> int:
  """Converts major units to minor units, rounding half up."""
  return int(
      (_as_decimal(amount) * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP)
  )


class TotalsValidator:
  """Compares a snapshot's collected totals with a transaction's totals."""

  def validate(self, cart: db.Cart, transaction: Transaction) -> None:
    """Raises on the first total that disagrees with the transaction.

    Raises:
      OrderCreationError: CART_EXPIRED for shipping, discount and tax
        mismatches, ITEM_PRICE_UPDATED for a line item price mismatch.
    """
    remote_cart = transaction.order.cart

    if not cart.is_virtual:
      local_shipping = to_minor_units(
          _as_decimal(cart.shipping_amount)
          - _as_decimal(cart.shipping_discount_amount)
      )
      remote_shipping = remote_cart.shipping_amount.amount
      if local_shipping != remote_shipping:
        raise OrderCreationError(
            OrderErrorReason.CART_SHIPPING, [remote_shipping, local_shipping]
        )
      # Shipping tax only balances rounding on the full tax total, so it is
      # not validated on its own.

    local_discount = to_minor_units(
        _as_decimal(cart.subtotal) - _as_decimal(cart.subtotal_with_discount)
    )
    remote_discount = remote_cart.discount_amount.amount
    if local_discount != remote_discount:
      raise OrderCreationError(
          OrderErrorReason.CART_DISCOUNT, [remote_discount, local_discount]
      )

    local_tax = to_minor_units_rounded(cart.tax_amount)
    remote_tax = remote_cart.tax_amount.amount
    if local_tax != remote_tax:
      raise OrderCreationError(
          OrderErrorReason.CART_TAX, [remote_tax, local_tax]
      )

    for remote_item in remote_cart.items:
      cart_item = cart.get_item_by_id(remote_item.reference)
      if cart_item is None:
        raise OrderCreationError(
            OrderErrorReason.CART_NOT_FOUND, [remote_item.reference]
        )
      remote_price = remote_item.total_amount.amount
      local_price = to_minor_units_rounded(
          _as_decimal(cart_item.calculation_price) * (cart_item.qty or 0)
      )
      if remote_price != local_price:
        logger.info(
            "Price of item %s drifted: provider %d, local %d",
            cart_item.product_id,
            remote_price,
            local_price,
        )
        raise OrderCreationError(
            OrderErrorReason.ITEM_PRICE_UPDATED,
            [cart_item.product_id, remote_price, local_price],
        )
