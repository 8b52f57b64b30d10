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

"""Enumerations for the order reconciler.

This module defines the closed set of order creation failure kinds, the
message templates attached to each failure, and the states used by orders and
feature switch evaluators.
"""

import enum


class OrderErrorKind(int, enum.Enum):
  """Failure families reported to the payment provider.

  The integer value is the machine-readable code the provider expects.
  """

  GENERAL_ERROR = 2001001
  CART_EXPIRED = 2001003
  ITEM_PRICE_UPDATED = 2001004
  OUT_OF_INVENTORY = 2001005


class OrderErrorReason(str, enum.Enum):
  """Human-readable templates, formatted with positional arguments."""

  GENERAL_GENERIC = "{0}"
  CART_NOT_FOUND = "Cart does not exist with reference: {0}"
  CART_EMPTY = "Cart is empty"
  CART_EXPIRED = "Cart has expired"
  CART_NOT_PURCHASABLE = "The product is not purchasable: {0}"
  CART_SHIPPING = "Shipping total has changed. Old value: {0}, new value: {1}"
  CART_DISCOUNT = "Discount total has changed. Old value: {0}, new value: {1}"
  CART_TAX = "Tax amount has changed. Old value: {0}, new value: {1}"
  ITEM_PRICE_UPDATED = (
      "The price of item [{0}] has changed. Old value: {1}, new value: {2}"
  )
  OUT_OF_INVENTORY = (
      "Item [{0}] is out of stock. Available quantity: {1}, requested"
      " quantity: {2}"
  )

  @property
  def kind(self) -> OrderErrorKind:
    return _REASON_KINDS[self]


_REASON_KINDS = {
    OrderErrorReason.GENERAL_GENERIC: OrderErrorKind.GENERAL_ERROR,
    OrderErrorReason.CART_NOT_FOUND: OrderErrorKind.CART_EXPIRED,
    OrderErrorReason.CART_EMPTY: OrderErrorKind.CART_EXPIRED,
    OrderErrorReason.CART_EXPIRED: OrderErrorKind.CART_EXPIRED,
    OrderErrorReason.CART_NOT_PURCHASABLE: OrderErrorKind.CART_EXPIRED,
    OrderErrorReason.CART_SHIPPING: OrderErrorKind.CART_EXPIRED,
    OrderErrorReason.CART_DISCOUNT: OrderErrorKind.CART_EXPIRED,
    OrderErrorReason.CART_TAX: OrderErrorKind.CART_EXPIRED,
    OrderErrorReason.ITEM_PRICE_UPDATED: OrderErrorKind.ITEM_PRICE_UPDATED,
    OrderErrorReason.OUT_OF_INVENTORY: OrderErrorKind.OUT_OF_INVENTORY,
}


class OrderStatus(str, enum.Enum):
  PENDING = "pending"
  PROCESSING = "processing"


class SwitchState(str, enum.Enum):
  NOT_LOADED = "not_loaded"
  LOADED = "loaded"
