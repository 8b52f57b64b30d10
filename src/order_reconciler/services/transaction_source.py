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

"""Client for fetching transactions from the payment provider."""

import logging
from typing import Optional

import httpx

from ..exceptions import TransactionFetchError
from ..models import Transaction

logger = logging.getLogger(__name__)


class TransactionSource:
  """Fetches provider transactions by reference."""

  def __init__(
      self,
      api_url: str,
      api_key: Optional[str] = None,
      timeout: float = 10.0,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.api_url = api_url.rstrip("/")
    self.api_key = api_key
    self.timeout = timeout
    self.transport = transport

  async def fetch(self, reference: str) -> Transaction:
    """Fetches and parses the transaction identified by `reference`.

    Raises:
      TransactionFetchError: on transport failures, non-success statuses or
        payloads that are not a valid transaction.
    """
    url = f"{self.api_url}/v1/merchant/transactions/{reference}"
    headers = {"Content-Type": "application/json"}
    if self.api_key:
      headers["X-Api-Key"] = self.api_key

    try:
      async with httpx.AsyncClient(
          transport=self.transport, timeout=self.timeout
      ) as client:
        response = await client.get(url, headers=headers)
    except httpx.HTTPError as e:
      logger.error("Failed to fetch transaction %s: %s", reference, e)
      raise TransactionFetchError(
          f"Failed to fetch transaction {reference}: {e}"
      ) from e

    if response.status_code != 200:
      logger.error(
          "Failed to fetch transaction %s: Status %d",
          reference,
          response.status_code,
      )
      raise TransactionFetchError(
          f"Failed to fetch transaction {reference}: status"
          f" {response.status_code}"
      )

    try:
      return Transaction.model_validate(response.json())
    except (ValueError, TypeError) as e:
      raise TransactionFetchError(
          f"Invalid transaction payload for {reference}: {e}"
      ) from e
