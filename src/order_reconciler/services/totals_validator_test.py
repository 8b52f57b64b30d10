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

"""Tests for totals collection and validation."""

from decimal import Decimal

from absl.testing import absltest
from order_reconciler import db
from order_reconciler.enums import OrderErrorKind
from order_reconciler.enums import OrderErrorReason
from order_reconciler.exceptions import OrderCreationError
from order_reconciler.models import Transaction
from order_reconciler.services.totals_collector import TotalsCollector
from order_reconciler.services.totals_validator import to_minor_units
from order_reconciler.services.totals_validator import to_minor_units_rounded
from order_reconciler.services.totals_validator import TotalsValidator


def _cart(
    price="10.00",
    qty=2,
    shipping="5.00",
    shipping_discount="0",
    discount="0",
    tax="1.50",
    is_virtual=False,
):
  cart = db.Cart(
      id="snap_1",
      is_virtual=is_virtual,
      discount_amount=Decimal(discount),
      shipping_amount=Decimal(shipping),
      shipping_discount_amount=Decimal(shipping_discount),
      tax_amount=Decimal(tax),
  )
  cart.items = [
      db.CartItem(
          id="item_1",
          product_id="prod_1",
          qty=qty,
          calculation_price=Decimal(price),
      )
  ]
  return TotalsCollector().collect(cart)


def _transaction(shipping=500, discount=0, tax=150, item_price=2000):
  return Transaction.model_validate({
      "order": {
          "cart": {
              "items": [
                  {"reference": "item_1", "total_amount": {"amount": item_price}}
              ],
              "shipping_amount": {"amount": shipping},
              "discount_amount": {"amount": discount},
              "tax_amount": {"amount": tax},
          }
      }
  })


class MinorUnitsTest(absltest.TestCase):

  def test_truncates(self):
    self.assertEqual(to_minor_units(Decimal("4.999")), 499)
    self.assertEqual(to_minor_units("12.34"), 1234)
    self.assertEqual(to_minor_units(None), 0)

  def test_rounds_half_up(self):
    self.assertEqual(to_minor_units_rounded(Decimal("4.995")), 500)
    self.assertEqual(to_minor_units_rounded(Decimal("4.994")), 499)
    self.assertEqual(to_minor_units_rounded(1.005), 101)


class TotalsCollectorTest(absltest.TestCase):

  def test_collects_grand_total(self):
    cart = _cart(discount="2.00", shipping_discount="1.00")
    self.assertEqual(cart.subtotal, Decimal("20.00"))
    self.assertEqual(cart.subtotal_with_discount, Decimal("18.00"))
    self.assertEqual(cart.grand_total, Decimal("23.50"))

  def test_virtual_cart_has_no_shipping(self):
    cart = _cart(is_virtual=True)
    self.assertEqual(cart.grand_total, Decimal("21.50"))

  def test_child_lines_are_priced_on_parent(self):
    cart = db.Cart(id="snap_1")
    cart.items = [
        db.CartItem(
            id="bundle", qty=1, calculation_price=Decimal("30"),
            has_children=True,
        ),
        db.CartItem(
            id="child", parent_item_id="bundle", qty=1,
            calculation_price=Decimal("12"),
        ),
    ]
    TotalsCollector().collect(cart)
    self.assertEqual(cart.subtotal, Decimal("30"))


class TotalsValidatorTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.validator = TotalsValidator()

  def test_matching_totals_pass(self):
    self.validator.validate(_cart(), _transaction())

  def test_shipping_truncation_at_boundary(self):
    cart = _cart(shipping="4.999")
    self.validator.validate(cart, _transaction(shipping=499))
    with self.assertRaises(OrderCreationError) as cm:
      self.validator.validate(cart, _transaction(shipping=500))
    self.assertEqual(cm.exception.reason, OrderErrorReason.CART_SHIPPING)
    self.assertEqual(cm.exception.template_args, (500, 499))

  def test_shipping_discount_is_subtracted(self):
    cart = _cart(shipping="5.00", shipping_discount="5.00")
    self.validator.validate(cart, _transaction(shipping=0))

  def test_virtual_cart_skips_shipping(self):
    cart = _cart(is_virtual=True)
    self.validator.validate(cart, _transaction(shipping=999))

  def test_discount_mismatch(self):
    cart = _cart(discount="2.00")
    with self.assertRaises(OrderCreationError) as cm:
      self.validator.validate(cart, _transaction(discount=150))
    self.assertEqual(cm.exception.reason, OrderErrorReason.CART_DISCOUNT)
    self.assertEqual(cm.exception.kind, OrderErrorKind.CART_EXPIRED)
    self.assertEqual(cm.exception.template_args, (150, 200))

  def test_tax_is_rounded_half_up(self):
    cart = _cart(tax="1.505")
    self.validator.validate(cart, _transaction(tax=151))
    with self.assertRaises(OrderCreationError) as cm:
      self.validator.validate(cart, _transaction(tax=150))
    self.assertEqual(cm.exception.reason, OrderErrorReason.CART_TAX)

  def test_shipping_is_checked_before_tax(self):
    with self.assertRaises(OrderCreationError) as cm:
      self.validator.validate(_cart(), _transaction(shipping=1, tax=1))
    self.assertEqual(cm.exception.reason, OrderErrorReason.CART_SHIPPING)

  def test_item_price_drift(self):
    with self.assertRaises(OrderCreationError) as cm:
      self.validator.validate(_cart(), _transaction(item_price=1999))
    self.assertEqual(cm.exception.kind, OrderErrorKind.ITEM_PRICE_UPDATED)
    self.assertEqual(cm.exception.template_args, ("prod_1", 1999, 2000))
    self.assertEqual(
        cm.exception.message,
        "The price of item [prod_1] has changed. Old value: 1999, new value:"
        " 2000",
    )

  def test_unknown_item_reference(self):
    transaction = _transaction()
    transaction.order.cart.items[0].reference = "item_404"
    with self.assertRaises(OrderCreationError) as cm:
      self.validator.validate(_cart(), transaction)
    self.assertEqual(cm.exception.reason, OrderErrorReason.CART_NOT_FOUND)


if __name__ == "__main__":
  absltest.main()
