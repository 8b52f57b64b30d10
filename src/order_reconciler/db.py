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

"""Database management and persistence layer for the order reconciler.

This module provides the schema definitions, database session management, and
asynchronous data access helpers used by the reconciler. It utilizes
SQLAlchemy with SQLite (via aiosqlite).

Key features include:
- `DatabaseManager`: Handles asynchronous engine initialization and session
  factory setup.
- WAL Mode: Automatically enables SQLite Write-Ahead Logging so that a
  storefront callback and a webhook worker can share the database.
- Declarative Models: Defines tables for products, stock, carts (both the
  session-bound parent carts and their immutable snapshots), orders, shipping
  rates, recurring profiles and plain configuration values.
- Data Access Helpers: A suite of asynchronous functions for CRUD operations on
  the database models.
"""

import datetime
import logging
from typing import List
from typing import Optional
import uuid

from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import ForeignKey
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import Numeric
from sqlalchemy import select
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy import text
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()

# Human-facing order numbers start here, one per reservation.
ORDER_INCREMENT_OFFSET = 100000000


def _now() -> str:
  return datetime.datetime.now(datetime.timezone.utc).isoformat()


class DatabaseManager:
  """Manages the database engine and sessions without using global variables."""

  def __init__(self) -> None:
    self.engine: Optional[AsyncEngine] = None
    self.session_factory: Optional[sessionmaker] = None

  async def init_db(self, path: str) -> None:
    """Initializes the database engine and creates tables."""
    url = f"sqlite+aiosqlite:///{path}"
    self.engine = create_async_engine(url, echo=False)

    async with self.engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )

    async with self.engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)

  async def close(self) -> None:
    """Closes the database engine."""
    if self.engine:
      await self.engine.dispose()


# Global manager instance (initialized by the command-line entry points)
manager = DatabaseManager()


class Product(Base):
  __tablename__ = "products"

  id = Column(String, primary_key=True)
  sku = Column(String)
  title = Column(String)
  price = Column(Numeric(12, 4, asdecimal=True), default=0)
  is_saleable = Column(Boolean, default=True)
  is_recurring = Column(Boolean, default=False)


class StockItem(Base):
  __tablename__ = "stock_items"

  product_id = Column(String, ForeignKey("products.id"), primary_key=True)
  qty = Column(Integer, default=0)
  # Quantity that must stay on hand and can never be sold.
  min_qty = Column(Integer, default=0)
  manage_stock = Column(Boolean, default=True)

  @property
  def available_qty(self) -> int:
    return (self.qty or 0) - (self.min_qty or 0)

  def check_qty(self, quantity: int) -> bool:
    if not self.manage_stock:
      return True
    return self.available_qty >= quantity


class Cart(Base):
  """A cart row, used both for parent carts and for cart snapshots.

  A snapshot points at its parent through `parent_quote_id`. Once an order is
  created, the parent's `parent_quote_id` is pointed back at the consumed
  snapshot so the snapshot used by a session can be found without an index.
  """

  __tablename__ = "carts"

  id = Column(String, primary_key=True)
  parent_quote_id = Column(String, nullable=True, index=True)
  is_active = Column(Boolean, default=True)
  is_virtual = Column(Boolean, default=False)

  customer_id = Column(String, nullable=True)
  customer_email = Column(String, nullable=True)
  customer_firstname = Column(String, nullable=True)
  customer_lastname = Column(String, nullable=True)
  customer_is_guest = Column(Boolean, default=True)

  reserved_order_id = Column(String, nullable=True)
  payment_method = Column(String, nullable=True)
  shipping_method = Column(String, nullable=True)
  # SQLAlchemy JSON type handles serialization automatically
  shipping_address = Column(JSON, nullable=True)
  billing_address = Column(JSON, nullable=True)

  # Collected totals, in major currency units.
  subtotal = Column(Numeric(12, 4, asdecimal=True), default=0)
  subtotal_with_discount = Column(Numeric(12, 4, asdecimal=True), default=0)
  discount_amount = Column(Numeric(12, 4, asdecimal=True), default=0)
  shipping_amount = Column(Numeric(12, 4, asdecimal=True), default=0)
  shipping_discount_amount = Column(Numeric(12, 4, asdecimal=True), default=0)
  tax_amount = Column(Numeric(12, 4, asdecimal=True), default=0)
  grand_total = Column(Numeric(12, 4, asdecimal=True), default=0)
  updated_at = Column(String, nullable=True)

  items = relationship(
      "CartItem", back_populates="cart", lazy="selectin", order_by="CartItem.id"
  )

  @property
  def items_count(self) -> int:
    return len(self.items)

  def get_item_by_id(self, item_id: str) -> Optional["CartItem"]:
    return next((item for item in self.items if item.id == item_id), None)


class CartItem(Base):
  __tablename__ = "cart_items"

  id = Column(String, primary_key=True)
  cart_id = Column(String, ForeignKey("carts.id"), index=True)
  product_id = Column(String, ForeignKey("products.id"))
  parent_item_id = Column(String, nullable=True)
  qty = Column(Integer, default=1)
  # Unit price the totals were collected with, in major currency units.
  calculation_price = Column(Numeric(12, 4, asdecimal=True), default=0)
  has_children = Column(Boolean, default=False)

  cart = relationship("Cart", back_populates="items")
  product = relationship("Product", lazy="selectin")


class Order(Base):
  __tablename__ = "orders"

  id = Column(Integer, primary_key=True, autoincrement=True)
  increment_id = Column(String, unique=True, index=True)
  quote_id = Column(String, index=True)
  status = Column(String)
  grand_total = Column(Numeric(12, 4, asdecimal=True), default=0)
  data = Column(JSON)
  created_at = Column(String)


class OrderSequence(Base):
  __tablename__ = "order_sequence"

  id = Column(Integer, primary_key=True, autoincrement=True)
  created_at = Column(String)


class RecurringProfile(Base):
  __tablename__ = "recurring_profiles"

  id = Column(String, primary_key=True)
  order_increment_id = Column(String, index=True)
  product_id = Column(String)
  created_at = Column(String)


class ShippingRate(Base):
  __tablename__ = "shipping_rates"

  id = Column(String, primary_key=True)
  country_code = Column(String)  # e.g., 'US', 'default'
  carrier_code = Column(String)  # e.g., 'ups'
  method_code = Column(String)  # e.g., 'ground'
  carrier_title = Column(String)  # e.g., 'UPS'
  method_title = Column(String, nullable=True)  # e.g., 'Ground'
  price = Column(Integer)  # In cents


class ConfigEntry(Base):
  __tablename__ = "config"

  path = Column(String, primary_key=True)
  value = Column(Text)
  updated_at = Column(String)


# --- Data Access Helpers ---


async def get_cart(session: AsyncSession, cart_id: str) -> Optional[Cart]:
  """Retrieves a cart, with its items, by ID."""
  if not cart_id:
    return None
  return await session.get(Cart, cart_id)


async def get_stock_item(
    session: AsyncSession, product_id: str
) -> Optional[StockItem]:
  """Retrieves the stock record for a product."""
  return await session.get(StockItem, product_id)


async def reserve_stock(
    session: AsyncSession, product_id: str, quantity: int
) -> bool:
  """Atomically decrements stock if enough sellable quantity exists.

  Products without managed stock always succeed.
  """
  stock_item = await get_stock_item(session, product_id)
  if stock_item is None or not stock_item.manage_stock:
    return True
  stmt = (
      update(StockItem)
      .where(StockItem.product_id == product_id)
      .where(StockItem.qty - StockItem.min_qty >= quantity)
      .values(qty=StockItem.qty - quantity)
      .execution_options(synchronize_session=False)
  )
  result = await session.execute(stmt)
  await session.refresh(stock_item)
  return result.rowcount > 0


async def next_order_increment_id(session: AsyncSession) -> str:
  """Reserves the next human-facing order number."""
  entry = OrderSequence(created_at=_now())
  session.add(entry)
  await session.flush()
  return str(ORDER_INCREMENT_OFFSET + entry.id)


async def get_order_by_increment_id(
    session: AsyncSession, increment_id: Optional[str]
) -> Optional[Order]:
  """Retrieves an order by its human-facing number."""
  if not increment_id:
    return None
  result = await session.execute(
      select(Order).where(Order.increment_id == increment_id)
  )
  return result.scalar_one_or_none()


async def get_order_by_quote_id(
    session: AsyncSession, quote_id: str
) -> Optional[Order]:
  """Retrieves the first order created from the given cart."""
  result = await session.execute(
      select(Order).where(Order.quote_id == quote_id).order_by(Order.id)
  )
  return result.scalars().first()


async def list_orders(session: AsyncSession) -> List[Order]:
  """Retrieves all orders, oldest first."""
  result = await session.execute(select(Order).order_by(Order.id))
  return list(result.scalars().all())


async def save_recurring_profile(
    session: AsyncSession, order_increment_id: str, product_id: str
) -> RecurringProfile:
  """Records a recurring payment profile for an order line."""
  profile = RecurringProfile(
      id=str(uuid.uuid4()),
      order_increment_id=order_increment_id,
      product_id=product_id,
      created_at=_now(),
  )
  session.add(profile)
  return profile


async def get_shipping_rates(
    session: AsyncSession, country_code: Optional[str]
) -> List[ShippingRate]:
  """Retrieves shipping rates for a specific country and default rates.

  Args:
    session: The database session to use.
    country_code: The ISO country code (e.g., 'US') to fetch rates for.

  Returns:
    A list of ShippingRate objects matching the country or 'default'.
  """
  codes = ["default"]
  if country_code:
    codes.append(country_code)
  result = await session.execute(
      select(ShippingRate).where(ShippingRate.country_code.in_(codes))
  )
  return list(result.scalars().all())


async def get_config_value(session: AsyncSession, path: str) -> Optional[str]:
  """Retrieves a stored configuration value."""
  entry = await session.get(ConfigEntry, path)
  if entry:
    return entry.value
  return None


async def save_config_value(
    session: AsyncSession, path: str, value: str
) -> None:
  """Saves or updates a configuration value."""
  existing = await session.get(ConfigEntry, path)
  if existing:
    existing.value = value
    existing.updated_at = _now()
  else:
    session.add(ConfigEntry(path=path, value=value, updated_at=_now()))
