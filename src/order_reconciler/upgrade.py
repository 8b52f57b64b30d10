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

"""Hooks run after the reconciler is installed or upgraded."""

import logging

from .services.feature_switches import FeatureSwitchStore
from .services.feature_switches import FeatureSwitchSyncService
from .services.feature_switches import update_feature_switches

logger = logging.getLogger(__name__)


async def run_upgrade_hooks(
    store: FeatureSwitchStore,
    sync_service: FeatureSwitchSyncService,
    should_update_feature_switches: bool = False,
) -> bool:
  """Runs post-install steps.

  Args:
    store: The feature switch store to refresh.
    sync_service: Client for the feature switch service.
    should_update_feature_switches: Whether this install or upgrade needs a
      fresh feature switch set.

  Returns:
    False if a requested step failed, True otherwise.
  """
  if not should_update_feature_switches:
    logger.info("Feature switch update not requested, skipping")
    return True
  updated = await update_feature_switches(store, sync_service)
  if not updated:
    logger.warning("Feature switches were not updated, keeping cached set")
  return updated
