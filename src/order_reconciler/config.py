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

"""Shared configuration and startup logic for the reconciler tools."""

import contextlib
from typing import AsyncIterator

from absl import flags

from . import db
from .models import Settings

FLAGS = flags.FLAGS

# Define flags only if they haven't been defined yet (to avoid duplicates
# during tests or re-imports)
try:
  flags.DEFINE_string("database_path", None, "Path to the reconciler DB")
  flags.DEFINE_string(
      "api_url", "https://api.bolt.com", "Base URL of the payment provider API"
  )
  flags.DEFINE_string("api_key", None, "Merchant API key for the provider")
  flags.DEFINE_string(
      "payment_method_code",
      "boltpay",
      "Payment method code assigned to reconciled orders",
  )
  flags.DEFINE_string(
      "plugin_version",
      "2.0.0",
      "Plugin version reported to the feature switch service",
  )
  flags.DEFINE_string(
      "webhook_url", None, "Optional URL receiving diagnostics and events"
  )
  flags.DEFINE_float("http_timeout", 10.0, "Timeout for provider calls")
except flags.DuplicateFlagError:
  pass


def settings_from_flags() -> Settings:
  """Builds settings from parsed command-line flags."""
  return Settings(
      database_path=FLAGS.database_path,
      api_url=FLAGS.api_url,
      api_key=FLAGS.api_key,
      payment_method_code=FLAGS.payment_method_code,
      plugin_version=FLAGS.plugin_version,
      webhook_url=FLAGS.webhook_url,
      http_timeout=FLAGS.http_timeout,
  )


@contextlib.asynccontextmanager
async def lifespan(settings: Settings) -> AsyncIterator[db.DatabaseManager]:
  """Initializes the database for the duration of a command."""
  await db.manager.init_db(settings.database_path)
  try:
    yield db.manager
  finally:
    await db.manager.close()
