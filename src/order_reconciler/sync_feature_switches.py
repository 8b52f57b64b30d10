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

"""Post-install hook that synchronizes feature switches.

Run after installing or upgrading. The switch set is only fetched when
--update_feature_switches is passed; the stored switches are printed either
way.

Usage:
  sync-feature-switches --database_path=... --api_key=...
  [--update_feature_switches]
"""

import asyncio
import logging
import sys

from absl import app as absl_app
from absl import flags

from . import config
from . import dependencies
from . import upgrade

FLAGS = flags.FLAGS
flags.DEFINE_bool(
    "update_feature_switches",
    False,
    "Fetch the latest feature switches from the provider",
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def sync_switches() -> bool:
  """Runs the upgrade hooks and prints the resulting switch set."""
  settings = config.settings_from_flags()
  async with config.lifespan(settings) as manager:
    store = dependencies.get_feature_switch_store(manager.session_factory)
    ok = await upgrade.run_upgrade_hooks(
        store,
        dependencies.get_feature_switch_sync_service(settings),
        should_update_feature_switches=FLAGS.update_feature_switches,
    )
    switches = await store.load()
    if not switches:
      print("No synchronized feature switches; built-in defaults apply.")
    for name, switch in sorted(switches.items()):
      print(
          f"{name}: value={switch.value} default={switch.default_value}"
          f" rollout={switch.rollout_percentage}%"
      )
  return ok


def main(argv):
  """Main entry point for the feature switch sync script."""
  del argv  # Unused.
  if not FLAGS.database_path:
    logger.error("--database_path must be provided.")
    sys.exit(1)
  if not asyncio.run(sync_switches()):
    sys.exit(1)


def run():
  absl_app.run(main)


if __name__ == "__main__":
  run()
