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

"""Models for the provider transaction and feature switch payloads.

The transaction models mirror the subset of the payment provider's
transaction document that reconciliation reads. Unknown fields are ignored so
that new provider fields never break parsing. All monetary amounts are integer
minor units (cents).
"""

from typing import List, Optional

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

MERCHANT_BACK_OFFICE = "merchant_back_office"


class _ProviderModel(BaseModel):
  model_config = ConfigDict(extra="ignore")


class Amount(_ProviderModel):
  amount: int = 0
  currency: Optional[str] = None


class Address(_ProviderModel):
  first_name: Optional[str] = None
  last_name: Optional[str] = None
  email_address: Optional[str] = None
  street_address1: Optional[str] = None
  street_address2: Optional[str] = None
  locality: Optional[str] = None
  region: Optional[str] = None
  postal_code: Optional[str] = None
  country_code: Optional[str] = None
  phone_number: Optional[str] = None


class Consumer(_ProviderModel):
  first_name: Optional[str] = None
  last_name: Optional[str] = None
  email: Optional[str] = None


class CreditCard(_ProviderModel):
  billing_address: Address = Field(default_factory=Address)


class TransactionItem(_ProviderModel):
  reference: str
  name: Optional[str] = None
  total_amount: Amount = Field(default_factory=Amount)
  quantity: int = 1


class Shipment(_ProviderModel):
  reference: Optional[str] = None
  service: Optional[str] = None
  carrier: Optional[str] = None
  shipping_address: Optional[Address] = None
  cost: Amount = Field(default_factory=Amount)


class Discount(_ProviderModel):
  reference: Optional[str] = None
  description: Optional[str] = None
  amount: Amount = Field(default_factory=Amount)


class CartMetadata(_ProviderModel):
  immutable_quote_id: Optional[str] = None


class TransactionCart(_ProviderModel):
  order_reference: Optional[str] = None
  display_id: Optional[str] = None
  metadata: Optional[CartMetadata] = None
  items: List[TransactionItem] = []
  shipments: List[Shipment] = []
  discounts: List[Discount] = []
  discount_amount: Amount = Field(default_factory=Amount)
  tax_amount: Amount = Field(default_factory=Amount)
  shipping_amount: Amount = Field(default_factory=Amount)
  total_amount: Amount = Field(default_factory=Amount)


class TransactionOrder(_ProviderModel):
  cart: TransactionCart = Field(default_factory=TransactionCart)


class Transaction(_ProviderModel):
  """Provider-authoritative record of a checkout attempt."""

  id: Optional[str] = None
  reference: Optional[str] = None
  status: Optional[str] = None
  indemnification_reason: Optional[str] = None
  from_consumer: Consumer = Field(default_factory=Consumer)
  from_credit_card: CreditCard = Field(default_factory=CreditCard)
  order: TransactionOrder = Field(default_factory=TransactionOrder)

  @property
  def is_merchant_initiated(self) -> bool:
    return self.indemnification_reason == MERCHANT_BACK_OFFICE

  @property
  def immutable_quote_id(self) -> Optional[str]:
    """Returns the id of the cart snapshot this transaction was created from.

    Current transactions carry it in the cart metadata. Legacy transactions
    encode it in the display id as "<increment id>|<snapshot id>".
    """
    cart = self.order.cart
    if cart.metadata and cart.metadata.immutable_quote_id:
      return cart.metadata.immutable_quote_id
    if cart.display_id and "|" in cart.display_id:
      return cart.display_id.split("|", 1)[1].strip() or None
    return None


class RateQuote(BaseModel):
  """A shipping rate currently quoted for a cart."""

  carrier_code: str
  method_code: str
  carrier_title: str
  method_title: Optional[str] = None
  price: int = 0  # In cents

  @property
  def code(self) -> str:
    return f"{self.carrier_code}_{self.method_code}"

  @property
  def display_title(self) -> str:
    if not self.method_title:
      return self.carrier_title
    return f"{self.carrier_title} - {self.method_title}"


class FeatureSwitch(BaseModel):
  """A named rollout switch record."""

  model_config = ConfigDict(frozen=True, populate_by_name=True)

  value: bool
  default_value: bool = Field(alias="defaultValue")
  rollout_percentage: int = Field(alias="rolloutPercentage", ge=0, le=100)


class RemoteFeatureSwitch(FeatureSwitch):
  """A switch record as returned by the feature switch service."""

  name: str


class Settings(BaseModel):
  """Runtime configuration, built from command-line flags."""

  database_path: str
  api_url: str = "https://api.bolt.com"
  api_key: Optional[str] = None
  payment_method_code: str = "boltpay"
  plugin_version: str = "2.0.0"
  webhook_url: Optional[str] = None
  http_timeout: float = 10.0
