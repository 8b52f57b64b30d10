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

"""Cart persistence boundary used by reconciliation.

Carts are addressed by id only. Every `save` commits immediately, so changes
made early in a reconciliation attempt stay persisted even when a later step
fails.
"""

import datetime
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .. import db

logger = logging.getLogger(__name__)


class CartSnapshotRepository:
  """Loads and saves parent carts, cart snapshots and their orders."""

  def __init__(self, session: AsyncSession):
    self.session = session

  async def load(self, cart_id: Optional[str]) -> Optional[db.Cart]:
    return await db.get_cart(self.session, cart_id)

  async def save(self, entity: db.Base) -> None:
    if isinstance(entity, db.Cart):
      entity.updated_at = datetime.datetime.now(
          datetime.timezone.utc
      ).isoformat()
    self.session.add(entity)
    await self.session.commit()

  async def refresh(self, entity: db.Base) -> None:
    await self.session.refresh(entity)

  async def reserve_order_id(self, cart: db.Cart) -> str:
    """Reserves a fresh order number on the cart and persists it."""
    cart.reserved_order_id = await db.next_order_increment_id(self.session)
    await self.save(cart)
    logger.info(
        "Reserved order #%s for cart %s", cart.reserved_order_id, cart.id
    )
    return cart.reserved_order_id

  async def get_stock_item(self, product_id: str) -> Optional[db.StockItem]:
    return await db.get_stock_item(self.session, product_id)

  async def get_order_by_increment_id(
      self, increment_id: Optional[str]
  ) -> Optional[db.Order]:
    return await db.get_order_by_increment_id(self.session, increment_id)

  async def get_order_by_quote_id(self, quote_id: str) -> Optional[db.Order]:
    return await db.get_order_by_quote_id(self.session, quote_id)

  async def find_snapshot_for_session(
      self, parent_id: str
  ) -> Optional[db.Cart]:
    """Returns the snapshot consumed by a parent cart's completed checkout.

    After a successful reconciliation the parent cart points back at the
    snapshot that became the order. Before that, the pointer is empty or
    refers to a cart that is not a child of the parent.
    """
    parent = await self.load(parent_id)
    if parent is None or not parent.parent_quote_id:
      return None
    snapshot = await self.load(parent.parent_quote_id)
    if snapshot is None or snapshot.parent_quote_id != parent.id:
      return None
    return snapshot
