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

"""Tests for feature switch rollout, caching and synchronization."""

import asyncio
import json
import os
import shutil
import tempfile
from typing import Any, Dict, List
from unittest import mock

from absl.testing import absltest
import httpx
from order_reconciler import db
from order_reconciler import upgrade
from order_reconciler.enums import SwitchState
from order_reconciler.exceptions import UnknownFeatureSwitchError
from order_reconciler.models import FeatureSwitch
from order_reconciler.services import feature_switches
from order_reconciler.services.feature_switches import BOLT_ENABLED_SWITCH_NAME
from order_reconciler.services.feature_switches import COOKIE_NAME
from order_reconciler.services.feature_switches import FeatureSwitchEvaluator
from order_reconciler.services.feature_switches import FeatureSwitchStore
from order_reconciler.services.feature_switches import FeatureSwitchSyncService
from order_reconciler.services.feature_switches import MappingIdentityStore
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker

API_URL = "https://api.provider.test"

TEST_DEFAULTS = {
    BOLT_ENABLED_SWITCH_NAME: FeatureSwitch(
        value=True, default_value=False, rollout_percentage=100
    ),
    "M1_SAMPLE_SWITCH": FeatureSwitch(
        value=True, default_value=False, rollout_percentage=0
    ),
}


def _remote_features(features: List[Dict[str, Any]]) -> Dict[str, Any]:
  return {"data": {"plugin": {"features": features}}}


class BucketTest(absltest.TestCase):

  def test_bucket_is_deterministic(self):
    first = feature_switches.bucket("BFS123.45678901", "M1_BOLT_ENABLED")
    self.assertEqual(
        first, feature_switches.bucket("BFS123.45678901", "M1_BOLT_ENABLED")
    )
    self.assertBetween(first, 0, 99)

  def test_bucket_is_salted_by_switch_name(self):
    identity = "BFS123.45678901"
    buckets = {
        feature_switches.bucket(identity, f"SWITCH_{i}") for i in range(20)
    }
    self.assertGreater(len(buckets), 1)

  def test_new_identity_format(self):
    identity = feature_switches.new_identity()
    self.assertTrue(identity.startswith("BFS"))
    self.assertRegex(identity, r"^BFS[0-9a-f]+\.\d{8}$")


class FeatureSwitchEvaluatorTest(absltest.TestCase):

  def setUp(self) -> None:
    super().setUp()
    self.test_dir = tempfile.mkdtemp()
    self.db_path = os.path.join(self.test_dir, "test_switches.db")
    self.cookies: Dict[str, str] = {}
    self.requests: List[httpx.Request] = []
    self.remote_response = httpx.Response(200, json=_remote_features([]))

  def tearDown(self) -> None:
    shutil.rmtree(self.test_dir)
    super().tearDown()

  def _handle(self, request: httpx.Request) -> httpx.Response:
    self.requests.append(request)
    return self.remote_response

  def _sync_service(self) -> FeatureSwitchSyncService:
    return FeatureSwitchSyncService(
        API_URL,
        "test_key",
        plugin_version="2.1.0",
        transport=httpx.MockTransport(self._handle),
    )

  def run_db_test(self, test_fn) -> None:
    """Runs `test_fn(store)` against a fresh switch store."""

    async def runner() -> None:
      engine = create_async_engine(
          f"sqlite+aiosqlite:///{self.db_path}", echo=False
      )
      session_factory = sessionmaker(
          engine, expire_on_commit=False, class_=AsyncSession
      )
      try:
        async with engine.begin() as conn:
          await conn.run_sync(db.Base.metadata.create_all)
        await test_fn(FeatureSwitchStore(session_factory))
      finally:
        await engine.dispose()

    asyncio.run(runner())

  async def _evaluator(self, store) -> FeatureSwitchEvaluator:
    return await FeatureSwitchEvaluator(
        store, MappingIdentityStore(self.cookies), defaults=TEST_DEFAULTS
    ).load()

  def test_defaults_apply_without_synchronized_set(self):
    async def scenario(store):
      evaluator = await self._evaluator(store)
      self.assertEqual(evaluator.state, SwitchState.LOADED)
      self.assertTrue(evaluator.is_bolt_enabled())
      self.assertFalse(evaluator.is_enabled("M1_SAMPLE_SWITCH"))

    self.run_db_test(scenario)

  def test_not_loaded_evaluator_refuses(self):
    async def scenario(store):
      evaluator = FeatureSwitchEvaluator(
          store, MappingIdentityStore(self.cookies)
      )
      self.assertEqual(evaluator.state, SwitchState.NOT_LOADED)
      with self.assertRaises(RuntimeError):
        evaluator.is_bolt_enabled()

    self.run_db_test(scenario)

  def test_unknown_switch(self):
    async def scenario(store):
      evaluator = await self._evaluator(store)
      with self.assertRaises(UnknownFeatureSwitchError) as cm:
        evaluator.is_enabled("M1_NOT_DECLARED")
      self.assertEqual(cm.exception.switch_name, "M1_NOT_DECLARED")

    self.run_db_test(scenario)

  def test_full_and_zero_rollout_ignore_identity(self):
    async def scenario(store):
      await store.replace({
          "M1_SAMPLE_SWITCH": FeatureSwitch(
              value=True, default_value=False, rollout_percentage=100
          ),
          BOLT_ENABLED_SWITCH_NAME: FeatureSwitch(
              value=True, default_value=False, rollout_percentage=0
          ),
      })
      evaluator = await self._evaluator(store)
      with mock.patch.object(
          feature_switches, "bucket", side_effect=AssertionError
      ):
        self.assertTrue(evaluator.is_enabled("M1_SAMPLE_SWITCH"))
        self.assertFalse(evaluator.is_bolt_enabled())
      self.assertNotIn(COOKIE_NAME, self.cookies)

    self.run_db_test(scenario)

  def test_partial_rollout_uses_bucket(self):
    async def scenario(store):
      await store.replace({
          "M1_SAMPLE_SWITCH": FeatureSwitch(
              value=True, default_value=False, rollout_percentage=50
          ),
      })
      evaluator = await self._evaluator(store)
      with mock.patch.object(feature_switches, "bucket", return_value=49):
        self.assertTrue(evaluator.is_enabled("M1_SAMPLE_SWITCH"))
      with mock.patch.object(feature_switches, "bucket", return_value=50):
        self.assertFalse(evaluator.is_enabled("M1_SAMPLE_SWITCH"))

    self.run_db_test(scenario)

  def test_identity_is_created_once_and_sticky(self):
    async def scenario(store):
      await store.replace({
          "M1_SAMPLE_SWITCH": FeatureSwitch(
              value=True, default_value=False, rollout_percentage=50
          ),
      })
      evaluator = await self._evaluator(store)
      first = evaluator.is_enabled("M1_SAMPLE_SWITCH")
      identity = self.cookies[COOKIE_NAME]
      for _ in range(5):
        self.assertEqual(evaluator.is_enabled("M1_SAMPLE_SWITCH"), first)
      self.assertEqual(self.cookies[COOKIE_NAME], identity)
      self.assertEqual(
          first, feature_switches.bucket(identity, "M1_SAMPLE_SWITCH") < 50
      )

    self.run_db_test(scenario)

  def test_update_persists_remote_switches(self):
    self.remote_response = httpx.Response(
        200,
        json=_remote_features([{
            "name": "M1_SAMPLE_SWITCH",
            "value": True,
            "defaultValue": False,
            "rolloutPercentage": 100,
        }]),
    )

    async def scenario(store):
      evaluator = await self._evaluator(store)
      self.assertFalse(evaluator.is_enabled("M1_SAMPLE_SWITCH"))

      self.assertTrue(await evaluator.update_switches(self._sync_service()))
      self.assertTrue(evaluator.is_enabled("M1_SAMPLE_SWITCH"))

      async with store.session_factory() as session:
        raw = await db.get_config_value(
            session, feature_switches.SWITCHES_CONFIG_PATH
        )
        version = await db.get_config_value(
            session, feature_switches.SWITCHES_VERSION_PATH
        )
      self.assertEqual(
          json.loads(raw),
          {
              "M1_SAMPLE_SWITCH": {
                  "value": True,
                  "defaultValue": False,
                  "rolloutPercentage": 100,
              }
          },
      )
      self.assertEqual(version, "1")

      # A new process reads the persisted set.
      reloaded = FeatureSwitchStore(store.session_factory)
      switches = await reloaded.load()
      self.assertEqual(switches["M1_SAMPLE_SWITCH"].rollout_percentage, 100)

    self.run_db_test(scenario)

    request = self.requests[0]
    self.assertEqual(str(request.url), f"{API_URL}/v2/merchant/api")
    self.assertEqual(request.headers["X-Api-Key"], "test_key")
    body = json.loads(request.content)
    self.assertEqual(
        body["variables"], {"type": "MAGENTO_1", "version": "2.1.0"}
    )

  def test_failed_update_keeps_cached_set(self):
    self.remote_response = httpx.Response(503, text="unavailable")

    async def scenario(store):
      await store.replace({
          "M1_SAMPLE_SWITCH": FeatureSwitch(
              value=True, default_value=False, rollout_percentage=100
          ),
      })
      evaluator = await self._evaluator(store)
      self.assertFalse(await evaluator.update_switches(self._sync_service()))
      self.assertTrue(evaluator.is_enabled("M1_SAMPLE_SWITCH"))

    self.run_db_test(scenario)

  def test_empty_remote_set_is_ignored(self):
    async def scenario(store):
      await store.replace({
          "M1_SAMPLE_SWITCH": FeatureSwitch(
              value=True, default_value=False, rollout_percentage=100
          ),
      })
      self.assertFalse(
          await feature_switches.update_feature_switches(
              store, self._sync_service()
          )
      )
      switches = await store.load()
      self.assertIn("M1_SAMPLE_SWITCH", switches)

    self.run_db_test(scenario)

  def test_malformed_remote_set_is_ignored(self):
    self.remote_response = httpx.Response(200, json={"data": None})

    async def scenario(store):
      self.assertFalse(
          await feature_switches.update_feature_switches(
              store, self._sync_service()
          )
      )
      self.assertEmpty(await store.load())

    self.run_db_test(scenario)

  def test_invalidation_listeners_run_on_replace(self):
    async def scenario(store):
      calls = []

      async def listener():
        calls.append(True)

      store.on_invalidate(listener)
      await store.replace({})
      self.assertLen(calls, 1)

    self.run_db_test(scenario)

  def test_upgrade_hook_only_syncs_when_requested(self):
    self.remote_response = httpx.Response(
        200,
        json=_remote_features([{
            "name": BOLT_ENABLED_SWITCH_NAME,
            "value": False,
            "defaultValue": False,
            "rolloutPercentage": 100,
        }]),
    )

    async def scenario(store):
      self.assertTrue(
          await upgrade.run_upgrade_hooks(store, self._sync_service())
      )
      self.assertEmpty(self.requests)

      self.assertTrue(
          await upgrade.run_upgrade_hooks(
              store, self._sync_service(), should_update_feature_switches=True
          )
      )
      evaluator = await self._evaluator(store)
      self.assertFalse(evaluator.is_bolt_enabled())

    self.run_db_test(scenario)

  def test_unreadable_config_counts_as_no_set(self):
    self.assertEqual(feature_switches.deserialize_switches("not json"), {})
    self.assertEqual(feature_switches.deserialize_switches(None), {})


if __name__ == "__main__":
  absltest.main()
