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

"""Recollects cart totals before validation."""

from decimal import Decimal

from .. import db


class TotalsCollector:
  """Recomputes the derived totals of a cart.

  Line prices, the cart-level discount, the shipping amount and the tax
  amount are inputs owned by pricing, shipping and tax calculation. This
  collector only derives the subtotals and the grand total from them.
  """

  def collect(self, cart: db.Cart) -> db.Cart:
    subtotal = Decimal(0)
    for item in cart.items:
      # Children of composite items are priced on their parent line.
      if item.parent_item_id:
        continue
      subtotal += Decimal(item.calculation_price or 0) * (item.qty or 0)

    discount = Decimal(cart.discount_amount or 0)
    shipping = Decimal(0)
    if not cart.is_virtual:
      shipping = Decimal(cart.shipping_amount or 0) - Decimal(
          cart.shipping_discount_amount or 0
      )

    cart.subtotal = subtotal
    cart.subtotal_with_discount = subtotal - discount
    cart.grand_total = (
        cart.subtotal_with_discount + shipping + Decimal(cart.tax_amount or 0)
    )
    return cart
