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

"""Diagnostics and event delivery for reconciliation.

`NotificationSink` implementations report non-fatal problems (for example a
shipping rate that no longer exists) to monitoring. `EventPublisher` delivers
lifecycle events such as a submitted order to in-process listeners and,
optionally, to a webhook. Neither ever raises to the caller.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

EventListener = Callable[[str, Dict[str, Any]], Awaitable[None]]

SHIPPING_METHOD_APPLIED = "shipping_method_applied"
ORDER_SUBMITTED = "order_submitted"


class NotificationSink:
  """Reports diagnostics through the standard logger."""

  async def warning(
      self, message: str, context: Optional[Dict[str, Any]] = None
  ) -> None:
    logger.warning("%s %s", message, _render(context))

  async def error(
      self, message: str, context: Optional[Dict[str, Any]] = None
  ) -> None:
    logger.error("%s %s", message, _render(context))


class WebhookNotificationSink(NotificationSink):
  """Logs diagnostics and forwards them to a monitoring webhook."""

  def __init__(
      self,
      webhook_url: str,
      timeout: float = 5.0,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.webhook_url = webhook_url
    self.timeout = timeout
    self.transport = transport

  async def warning(
      self, message: str, context: Optional[Dict[str, Any]] = None
  ) -> None:
    await super().warning(message, context)
    await self._post("warning", message, context)

  async def error(
      self, message: str, context: Optional[Dict[str, Any]] = None
  ) -> None:
    await super().error(message, context)
    await self._post("error", message, context)

  async def _post(
      self, severity: str, message: str, context: Optional[Dict[str, Any]]
  ) -> None:
    payload = {
        "severity": severity,
        "message": message,
        "context": json.loads(_render(context)),
    }
    await _post_json(self.webhook_url, payload, self.timeout, self.transport)


class EventPublisher:
  """Publishes reconciliation lifecycle events."""

  def __init__(
      self,
      webhook_url: Optional[str] = None,
      timeout: float = 5.0,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.webhook_url = webhook_url
    self.timeout = timeout
    self.transport = transport
    self._listeners: List[EventListener] = []

  def subscribe(self, listener: EventListener) -> None:
    self._listeners.append(listener)

  async def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
    for listener in self._listeners:
      try:
        await listener(event_type, payload)
      except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("Listener failed for event %s: %s", event_type, e)

    if self.webhook_url:
      await _post_json(
          self.webhook_url,
          {"event_type": event_type, **json.loads(_render(payload))},
          self.timeout,
          self.transport,
      )


def _json_default(value: Any) -> Any:
  # Mapped rows are rendered as their column values.
  table = getattr(value, "__table__", None)
  if table is not None:
    return {column.name: getattr(value, column.name) for column in table.columns}
  if hasattr(value, "model_dump"):
    return value.model_dump(mode="json")
  return str(value)


def _render(context: Optional[Dict[str, Any]]) -> str:
  return json.dumps(context or {}, sort_keys=True, default=_json_default)


async def _post_json(
    url: str,
    payload: Dict[str, Any],
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport],
) -> None:
  try:
    async with httpx.AsyncClient(transport=transport) as client:
      await client.post(url, json=payload, timeout=timeout)
  except Exception as e:  # pylint: disable=broad-exception-caught
    logger.error("Failed to notify webhook at %s: %s", url, e)
