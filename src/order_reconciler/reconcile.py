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

"""Creates the order for a provider transaction from the command line.

Used by merchant back-office flows to re-run reconciliation for a transaction
whose webhook failed. Prints the created (or previously created) order number,
or the provider-facing failure payload.

Usage:
  reconcile-order --database_path=... --api_key=... --reference=...
  [--receive]
"""

import asyncio
import json
import logging
import sys

from absl import app as absl_app
from absl import flags

from . import config
from . import dependencies
from .exceptions import OrderCreationError

FLAGS = flags.FLAGS
flags.DEFINE_string("reference", None, "Provider transaction reference")
flags.DEFINE_bool(
    "merchant_initiated", False, "Create as a merchant back-office order"
)
flags.DEFINE_bool(
    "receive", False, "Mark the order authorized after it is created"
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def reconcile() -> int:
  """Runs one reconciliation and returns the process exit code."""
  settings = config.settings_from_flags()
  async with config.lifespan(settings) as manager:
    async with manager.session_factory() as session:
      reconciler = dependencies.get_order_reconciler(session, settings)
      try:
        order = await reconciler.create_order(
            FLAGS.reference, is_merchant_initiated=FLAGS.merchant_initiated
        )
      except OrderCreationError as e:
        print(json.dumps(e.to_response_body(), indent=2))
        return 1

      if FLAGS.receive:
        order = await reconciler.receive_order(order.increment_id)
      print(f"Order #{order.increment_id} [{order.status}]")
  return 0


def main(argv):
  """Main entry point for the reconciliation script."""
  del argv  # Unused.
  if not FLAGS.database_path or not FLAGS.reference:
    logger.error("Both --database_path and --reference must be provided.")
    sys.exit(1)
  sys.exit(asyncio.run(reconcile()))


def run():
  absl_app.run(main)


if __name__ == "__main__":
  run()
