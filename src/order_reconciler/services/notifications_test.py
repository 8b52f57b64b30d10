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

"""Tests for diagnostics and event delivery."""

import asyncio
import json

from absl.testing import absltest
import httpx
from order_reconciler.services.notifications import EventPublisher
from order_reconciler.services.notifications import ORDER_SUBMITTED
from order_reconciler.services.notifications import WebhookNotificationSink


class NotificationsTest(absltest.TestCase):

  def test_publisher_delivers_to_listeners_and_webhook(self):
    posted = []
    received = []

    def handler(request):
      posted.append(json.loads(request.content))
      return httpx.Response(200)

    async def failing_listener(event_type, payload):
      raise ValueError("listener broke")

    async def listener(event_type, payload):
      received.append((event_type, payload))

    publisher = EventPublisher(
        webhook_url="https://hooks.test/events",
        transport=httpx.MockTransport(handler),
    )
    publisher.subscribe(failing_listener)
    publisher.subscribe(listener)
    asyncio.run(publisher.publish(ORDER_SUBMITTED, {"increment_id": "1"}))

    self.assertEqual(received, [(ORDER_SUBMITTED, {"increment_id": "1"})])
    self.assertEqual(
        posted, [{"event_type": ORDER_SUBMITTED, "increment_id": "1"}]
    )

  def test_webhook_failures_are_not_raised(self):
    def handler(request):
      raise httpx.ConnectError("down", request=request)

    sink = WebhookNotificationSink(
        "https://hooks.test/diagnostics",
        transport=httpx.MockTransport(handler),
    )
    asyncio.run(sink.error("Shipping method not found", {"rates": []}))

  def test_webhook_sink_posts_severity(self):
    posted = []

    def handler(request):
      posted.append(json.loads(request.content))
      return httpx.Response(200)

    sink = WebhookNotificationSink(
        "https://hooks.test/diagnostics",
        transport=httpx.MockTransport(handler),
    )
    asyncio.run(sink.warning("Already processed", {"quote_id": "snap_1"}))
    self.assertEqual(
        posted,
        [{
            "severity": "warning",
            "message": "Already processed",
            "context": {"quote_id": "snap_1"},
        }],
    )


if __name__ == "__main__":
  absltest.main()
