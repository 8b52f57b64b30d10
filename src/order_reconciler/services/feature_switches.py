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

"""Percentage rollout feature switches.

A switch is enabled for a visitor by hashing the visitor's sticky identity
together with the switch name into a bucket in [0, 100) and comparing the
bucket with the switch's rollout percentage:

- get the visitor's identity (from a cookie, created on first use)
- salt it with the switch name, so one visitor lands in different buckets for
  different switches
- take the CRC-32 of the salted string modulo 100

The synchronized switch set is fetched from the feature switch service,
persisted as JSON in the config table and cached process-wide by
`FeatureSwitchStore`. Evaluators take a snapshot of that cache when loaded, so
each request sees one consistent set.
"""

import json
import logging
import secrets
import time
from types import MappingProxyType
from typing import Awaitable, Callable, Dict, List, Mapping
from typing import MutableMapping, Optional
import zlib

import httpx
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from .. import db
from ..enums import SwitchState
from ..exceptions import UnknownFeatureSwitchError
from ..models import FeatureSwitch
from ..models import RemoteFeatureSwitch

logger = logging.getLogger(__name__)

SWITCHES_CONFIG_PATH = "payment/boltpay/featureSwitches"
SWITCHES_VERSION_PATH = "payment/boltpay/featureSwitchesVersion"

# Every switch needs a default here before it can be evaluated.
BOLT_ENABLED_SWITCH_NAME = "M1_BOLT_ENABLED"

COOKIE_NAME = "BoltFeatureSwitchId"

DEFAULT_SWITCHES: Mapping[str, FeatureSwitch] = MappingProxyType({
    BOLT_ENABLED_SWITCH_NAME: FeatureSwitch(
        value=True, default_value=False, rollout_percentage=100
    ),
})

_FEATURE_SWITCHES_QUERY = """
query GetFeatureSwitches($type: PluginType!, $version: String!) {
  plugin(type: $type, version: $version) {
    features {
      name
      value
      defaultValue
      rolloutPercentage
    }
  }
}
"""


def bucket(identity: str, switch_name: str) -> int:
  """Maps an identity and a switch name to a stable bucket in [0, 100)."""
  salted = f"{identity}-{switch_name}"
  return zlib.crc32(salted.encode("utf-8")) % 100


def new_identity() -> str:
  """Creates a fresh rollout identity from the clock and random digits."""
  return f"BFS{time.time_ns():x}.{secrets.randbelow(10**8):08d}"


def serialize_switches(switches: Mapping[str, FeatureSwitch]) -> str:
  return json.dumps(
      {
          name: switch.model_dump(by_alias=True)
          for name, switch in switches.items()
      },
      sort_keys=True,
  )


def deserialize_switches(raw: Optional[str]) -> Dict[str, FeatureSwitch]:
  """Parses the persisted switch set; unreadable values count as no set."""
  if not raw:
    return {}
  try:
    data = json.loads(raw)
    return {
        name: FeatureSwitch.model_validate(record)
        for name, record in data.items()
    }
  except (ValueError, TypeError, AttributeError) as e:
    logger.warning("Ignoring unreadable feature switch config: %s", e)
    return {}


class IdentityStore:
  """Reads and writes the sticky rollout identity of one visitor."""

  def get(self) -> Optional[str]:
    raise NotImplementedError

  def set(self, identity: str) -> None:
    raise NotImplementedError


class MappingIdentityStore(IdentityStore):
  """Identity store over a mutable cookie mapping."""

  def __init__(
      self,
      cookies: Optional[MutableMapping[str, str]] = None,
      cookie_name: str = COOKIE_NAME,
  ):
    self.cookies = cookies if cookies is not None else {}
    self.cookie_name = cookie_name

  def get(self) -> Optional[str]:
    return self.cookies.get(self.cookie_name)

  def set(self, identity: str) -> None:
    self.cookies[self.cookie_name] = identity


def get_or_create_identity(identity_store: IdentityStore) -> str:
  identity = identity_store.get()
  if not identity:
    identity = new_identity()
    identity_store.set(identity)
  return identity


class _Plugin(BaseModel):
  features: List[RemoteFeatureSwitch] = []


class _FeatureSwitchData(BaseModel):
  plugin: _Plugin


class _FeatureSwitchResponse(BaseModel):
  data: _FeatureSwitchData


class FeatureSwitchSyncService:
  """Fetches the authoritative switch list from the feature switch service."""

  def __init__(
      self,
      api_url: str,
      api_key: Optional[str] = None,
      plugin_version: str = "2.0.0",
      timeout: float = 10.0,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.api_url = api_url.rstrip("/")
    self.api_key = api_key
    self.plugin_version = plugin_version
    self.timeout = timeout
    self.transport = transport

  async def fetch(self) -> List[RemoteFeatureSwitch]:
    """Returns the remote switches.

    Raises:
      httpx.HTTPError: on transport failures and non-success statuses.
      ValueError: when the response is not a valid switch list.
    """
    headers = {"Content-Type": "application/json"}
    if self.api_key:
      headers["X-Api-Key"] = self.api_key
    payload = {
        "operationName": "GetFeatureSwitches",
        "query": _FEATURE_SWITCHES_QUERY,
        "variables": {"type": "MAGENTO_1", "version": self.plugin_version},
    }
    async with httpx.AsyncClient(
        transport=self.transport, timeout=self.timeout
    ) as client:
      response = await client.post(
          f"{self.api_url}/v2/merchant/api", json=payload, headers=headers
      )
      response.raise_for_status()
    return _FeatureSwitchResponse.model_validate(
        response.json()
    ).data.plugin.features


class FeatureSwitchStore:
  """Process-wide cache of the synchronized switch set.

  The cached mapping is read-only and replaced as a whole, so readers never
  observe a partially updated set.
  """

  def __init__(self, session_factory: sessionmaker):
    self.session_factory = session_factory
    self._switches: Optional[Mapping[str, FeatureSwitch]] = None
    self._invalidation_listeners: List[Callable[[], Awaitable[None]]] = []

  async def load(self) -> Mapping[str, FeatureSwitch]:
    """Returns the synchronized set, reading it from config on first use."""
    switches = self._switches
    if switches is None:
      async with self.session_factory() as session:
        raw = await db.get_config_value(session, SWITCHES_CONFIG_PATH)
      switches = MappingProxyType(deserialize_switches(raw))
      self._switches = switches
    return switches

  async def replace(self, switches: Mapping[str, FeatureSwitch]) -> None:
    """Persists a new synchronized set and swaps it into the cache."""
    async with self.session_factory() as session:
      await self._persist(session, switches)
      await session.commit()
    self._switches = MappingProxyType(dict(switches))
    for listener in self._invalidation_listeners:
      await listener()

  def on_invalidate(self, listener: Callable[[], Awaitable[None]]) -> None:
    self._invalidation_listeners.append(listener)

  async def _persist(
      self, session: AsyncSession, switches: Mapping[str, FeatureSwitch]
  ) -> None:
    await db.save_config_value(
        session, SWITCHES_CONFIG_PATH, serialize_switches(switches)
    )
    version = await db.get_config_value(session, SWITCHES_VERSION_PATH)
    await db.save_config_value(
        session, SWITCHES_VERSION_PATH, str(int(version or 0) + 1)
    )


async def update_feature_switches(
    store: FeatureSwitchStore, sync_service: FeatureSwitchSyncService
) -> bool:
  """Replaces the synchronized set with the remote one.

  Returns:
    True if the switches were updated. False if the remote set could not be
    fetched or was empty, in which case the last known set is kept.
  """
  try:
    remote_switches = await sync_service.fetch()
  except (httpx.HTTPError, ValueError, TypeError) as e:
    logger.warning("Failed to fetch feature switches: %s", e)
    return False

  if not remote_switches:
    logger.warning("Feature switch service returned no switches")
    return False

  await store.replace({
      switch.name: FeatureSwitch(
          value=switch.value,
          default_value=switch.default_value,
          rollout_percentage=switch.rollout_percentage,
      )
      for switch in remote_switches
  })
  logger.info("Updated %d feature switches", len(remote_switches))
  return True


class FeatureSwitchEvaluator:
  """Answers whether a switch is enabled for one visitor.

  Construct one per request and `load()` it before evaluating switches.
  """

  def __init__(
      self,
      store: FeatureSwitchStore,
      identity_store: IdentityStore,
      defaults: Mapping[str, FeatureSwitch] = DEFAULT_SWITCHES,
  ):
    self.store = store
    self.identity_store = identity_store
    self.defaults = defaults
    self.state = SwitchState.NOT_LOADED
    self._switches: Mapping[str, FeatureSwitch] = MappingProxyType({})

  async def load(self) -> "FeatureSwitchEvaluator":
    self._switches = await self.store.load()
    self.state = SwitchState.LOADED
    return self

  def get_switch(self, switch_name: str) -> FeatureSwitch:
    """Returns the synchronized record, or the built-in default.

    Raises:
      UnknownFeatureSwitchError: if the switch has no built-in default.
    """
    if self.state is not SwitchState.LOADED:
      raise RuntimeError("Feature switches were not loaded")
    if switch_name not in self.defaults:
      raise UnknownFeatureSwitchError(switch_name)
    return self._switches.get(switch_name) or self.defaults[switch_name]

  def is_marked_for_rollout(
      self, switch_name: str, rollout_percentage: int
  ) -> bool:
    identity = get_or_create_identity(self.identity_store)
    return bucket(identity, switch_name) < rollout_percentage

  def is_enabled(self, switch_name: str) -> bool:
    switch = self.get_switch(switch_name)
    if switch.rollout_percentage == 0:
      return switch.default_value
    if switch.rollout_percentage == 100:
      return switch.value
    if self.is_marked_for_rollout(switch_name, switch.rollout_percentage):
      return switch.value
    return switch.default_value

  def is_bolt_enabled(self) -> bool:
    return self.is_enabled(BOLT_ENABLED_SWITCH_NAME)

  async def update_switches(
      self, sync_service: FeatureSwitchSyncService
  ) -> bool:
    """Synchronizes the store and reloads this evaluator on success."""
    updated = await update_feature_switches(self.store, sync_service)
    if updated:
      await self.load()
    return updated
