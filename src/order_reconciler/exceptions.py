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

"""Custom exceptions for the order reconciler."""

from typing import Any, Dict, Optional, Sequence

from .enums import OrderErrorKind
from .enums import OrderErrorReason


class ReconcilerError(Exception):
  """Base class for all reconciler exceptions."""

  def __init__(
      self, message: str, code: Any = "INTERNAL_ERROR", status_code: int = 500
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    super().__init__(self.message)


class OrderCreationError(ReconcilerError):
  """Raised when a transaction cannot be turned into an order.

  Every failure of the reconciliation flow is reported through this single
  type. Callers branch on `kind` (the failure family) and `reason` (the
  specific template), and `args` carries the template's positional values.
  """

  def __init__(
      self,
      reason: OrderErrorReason,
      args: Sequence[Any] = (),
      original: Optional[BaseException] = None,
  ):
    self.kind = reason.kind
    self.reason = reason
    self.template_args = tuple(args)
    self.original = original
    super().__init__(
        reason.value.format(*self.template_args),
        code=self.kind.value,
        status_code=422,
    )

  @classmethod
  def wrap(cls, error: BaseException) -> "OrderCreationError":
    """Wraps an unexpected exception into the general error kind."""
    message = str(error).replace("\\", "\\\\").replace('"', '\\"')
    return cls(OrderErrorReason.GENERAL_GENERIC, [message], original=error)

  def to_response_body(self) -> Dict[str, Any]:
    """Builds the provider-facing failure payload."""
    return {
        "status": "failure",
        "error": {
            "code": self.kind.value,
            "data": [{"reason": self.message}],
        },
    }

  def __repr__(self) -> str:
    return (
        f"OrderCreationError(kind={self.kind.name}, reason={self.reason.name},"
        f" args={self.template_args!r})"
    )


class ResourceNotFoundError(ReconcilerError):
  """Raised when a requested resource is not found."""

  def __init__(self, message: str):
    super().__init__(message, code="RESOURCE_NOT_FOUND", status_code=404)


class InvalidRequestError(ReconcilerError):
  """Raised when the request is invalid (e.g. missing fields)."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_REQUEST", status_code=400)


class TransactionFetchError(ReconcilerError):
  """Raised when the provider transaction cannot be fetched or parsed."""

  def __init__(self, message: str):
    super().__init__(message, code="TRANSACTION_FETCH_FAILED", status_code=502)


class UnknownFeatureSwitchError(ReconcilerError):
  """Raised when a feature switch name has no built-in default."""

  def __init__(self, switch_name: str):
    self.switch_name = switch_name
    super().__init__(
        f"Unknown feature switch: {switch_name}",
        code="UNKNOWN_FEATURE_SWITCH",
    )

