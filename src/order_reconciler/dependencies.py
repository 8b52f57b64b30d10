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

"""Service providers for the reconciler.

This module wires services from settings, including:
- Provider clients (transactions, feature switches).
- Diagnostics and event delivery.
- The order reconciler for a database session.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from .models import Settings
from .services.cart_repository import CartSnapshotRepository
from .services.feature_switches import FeatureSwitchStore
from .services.feature_switches import FeatureSwitchSyncService
from .services.notifications import EventPublisher
from .services.notifications import NotificationSink
from .services.notifications import WebhookNotificationSink
from .services.order_service import OrderReconciler
from .services.order_submission import OrderSubmissionService
from .services.shipping_service import RateQuoteService
from .services.transaction_source import TransactionSource

_feature_switch_store: Optional[FeatureSwitchStore] = None


def get_transaction_source(settings: Settings) -> TransactionSource:
  """Provider for TransactionSource."""
  return TransactionSource(
      settings.api_url, settings.api_key, timeout=settings.http_timeout
  )


def get_notification_sink(settings: Settings) -> NotificationSink:
  """Provider for the diagnostics sink."""
  if settings.webhook_url:
    return WebhookNotificationSink(settings.webhook_url)
  return NotificationSink()


def get_event_publisher(settings: Settings) -> EventPublisher:
  """Provider for EventPublisher."""
  return EventPublisher(webhook_url=settings.webhook_url)


def get_order_reconciler(
    session: AsyncSession, settings: Settings
) -> OrderReconciler:
  """Provider for OrderReconciler, bound to one database session."""
  return OrderReconciler(
      repository=CartSnapshotRepository(session),
      transaction_source=get_transaction_source(settings),
      rate_service=RateQuoteService(session),
      submission_service=OrderSubmissionService(session),
      notifier=get_notification_sink(settings),
      events=get_event_publisher(settings),
      payment_method_code=settings.payment_method_code,
  )


def get_feature_switch_sync_service(
    settings: Settings,
) -> FeatureSwitchSyncService:
  """Provider for FeatureSwitchSyncService."""
  return FeatureSwitchSyncService(
      settings.api_url,
      settings.api_key,
      plugin_version=settings.plugin_version,
      timeout=settings.http_timeout,
  )


def get_feature_switch_store(
    session_factory: sessionmaker,
) -> FeatureSwitchStore:
  """Provider for the process-wide FeatureSwitchStore."""
  global _feature_switch_store
  if (
      _feature_switch_store is None
      or _feature_switch_store.session_factory is not session_factory
  ):
    _feature_switch_store = FeatureSwitchStore(session_factory)
  return _feature_switch_store
