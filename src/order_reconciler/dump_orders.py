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

"""Utility script to dump reconciled orders.

This script reads the reconciler database and prints every order with the
cart snapshot it was created from. It can optionally show the parent cart
state, which is useful when checking why a webhook retry was rejected.

Usage:
  dump-orders --database_path=... [--show_parent]
"""

import asyncio
import sys

from absl import app as absl_app
from absl import flags

from . import config
from . import db

FLAGS = flags.FLAGS
flags.DEFINE_bool("show_parent", False, "Show the parent cart of each order")


async def dump_orders():
  """Queries the database and prints all orders."""
  settings = config.settings_from_flags()
  async with config.lifespan(settings) as manager:
    async with manager.session_factory() as session:
      await _print_orders(session)


async def _print_orders(session):
  orders = await db.list_orders(session)
  if not orders:
    print("No orders found.")
    return

  for order in orders:
    print(f"Order #{order.increment_id} [{order.status}] {order.created_at}")
    print(f"  Quote ID: {order.quote_id}")
    print(f"  Grand total: {order.grand_total}")
    for line in (order.data or {}).get("line_items", []):
      print(
          f"  - {line.get('product_id', 'N/A')} x{line.get('qty', 0)} @"
          f" {line.get('price', '0')}"
      )

    if FLAGS.show_parent:
      quote = await db.get_cart(session, order.quote_id)
      parent = None
      if quote and quote.parent_quote_id:
        parent = await db.get_cart(session, quote.parent_quote_id)
      if parent:
        print(
            f"  Parent cart: {parent.id} active={parent.is_active}"
            f" reserved=#{parent.reserved_order_id}"
            f" points_to={parent.parent_quote_id}"
        )
    print("-" * 60)


def main(argv):
  """Main entry point for the order dump script."""
  del argv
  if not FLAGS.database_path:
    print("Error: --database_path is required.")
    sys.exit(1)
  asyncio.run(dump_orders())


def run():
  absl_app.run(main)


if __name__ == "__main__":
  run()
