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

"""Shipping rate quoting and application for cart snapshots.

This module looks up the shipping rates currently offered for a cart's
destination and applies a chosen rate, or a provider-declared shipping
address, onto a cart.
"""

from decimal import Decimal
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from .. import db
from ..models import Address
from ..models import RateQuote

logger = logging.getLogger(__name__)


class RateQuoteService:
  """Service for quoting and applying shipping rates."""

  def __init__(self, session: AsyncSession):
    self.session = session

  async def quote(self, cart: db.Cart) -> List[RateQuote]:
    """Returns the rates available for the cart's shipping destination.

    Rates are deduplicated by carrier and method, preferring a rate defined
    for the destination country over the 'default' one.
    """
    country_code = None
    if cart.shipping_address:
      country_code = cart.shipping_address.get("country_code")

    db_rates = await db.get_shipping_rates(self.session, country_code)

    rates_by_code: Dict[Tuple[str, str], db.ShippingRate] = {}
    for rate in db_rates:
      key = (rate.carrier_code, rate.method_code)
      existing = rates_by_code.get(key)
      if existing is None or (
          existing.country_code == "default" and rate.country_code != "default"
      ):
        rates_by_code[key] = rate

    # Sort for deterministic output
    sorted_rates = sorted(
        rates_by_code.values(), key=lambda r: (r.price, r.carrier_code)
    )
    return [
        RateQuote(
            carrier_code=rate.carrier_code,
            method_code=rate.method_code,
            carrier_title=rate.carrier_title,
            method_title=rate.method_title,
            price=rate.price,
        )
        for rate in sorted_rates
    ]

  def apply_shipping_address(
      self, cart: db.Cart, address: Optional[Address]
  ) -> None:
    """Copies a provider shipping address onto the cart."""
    if address is None:
      return
    cart.shipping_address = address.model_dump(exclude_none=True)

  async def apply_shipping_rate(
      self, cart: db.Cart, shipping_method_code: str
  ) -> Optional[RateQuote]:
    """Selects a shipping method on the cart.

    The shipping amount is taken from the currently quoted rate with the same
    code. When no quoted rate matches, the method is still selected and the
    previously collected amount is kept.
    """
    cart.shipping_method = shipping_method_code
    rates = await self.quote(cart)
    rate = next((r for r in rates if r.code == shipping_method_code), None)
    if rate is None:
      logger.warning(
          "No quoted rate for shipping method %s on cart %s",
          shipping_method_code,
          cart.id,
      )
      return None
    cart.shipping_amount = Decimal(rate.price) / 100
    return rate


def match_rate_by_title(
    rates: List[RateQuote], service: Optional[str]
) -> Optional[RateQuote]:
  """Finds the rate a legacy transaction described by its display title.

  A rate matches when "<carrier title> - <method title>" equals the service
  string, or when the rate has no method title and its carrier title equals
  the service string.
  """
  if not service:
    return None
  for rate in rates:
    if f"{rate.carrier_title} - {rate.method_title}" == service or (
        not rate.method_title and rate.carrier_title == service
    ):
      return rate
  return None


def rates_debugging_data(rates: List[RateQuote]) -> List[Dict[str, object]]:
  return [rate.model_dump() for rate in rates]
