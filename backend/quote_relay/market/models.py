"""Data models for the quote pipeline."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum


class Category(str, Enum):
    """Built-in instrument categories. Operators may register others."""

    CRYPTO = "CRYPTO"
    BIST = "BIST"
    FOREX = "FOREX"
    INDEX = "INDEX"
    COMMODITY = "COMMODITY"
    STOCKS = "STOCKS"
    OTHER = "OTHER"
    CUSTOM = "CUSTOM"


class OverrideType(str, Enum):
    FIXED = "fixed"
    MULTIPLIER = "multiplier"


class ConnectorState(str, Enum):
    STOPPED = "STOPPED"
    CONNECTING = "CONNECTING"
    SUBSCRIBING = "SUBSCRIBING"
    STREAMING = "STREAMING"
    RECONNECTING = "RECONNECTING"


def normalize_name(name: str) -> str:
    """Canonical form of a user-supplied instrument name."""
    return (name or "").strip().upper()


@dataclass(frozen=True, slots=True)
class Instrument:
    """An operator-managed tracked symbol."""

    name: str
    category: str = Category.OTHER.value
    is_custom: bool = True
    paused: bool = False


@dataclass(frozen=True, slots=True)
class PriceOverride:
    """Replacement or adjustment rule for one instrument's price.

    An override whose ``expires_at`` (Unix seconds) lies in the past behaves
    exactly as if it did not exist.
    """

    instrument_name: str
    type: OverrideType
    value: float
    expires_at: float | None = None

    def is_active(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return True
        return (now if now is not None else time.time()) < self.expires_at

    def apply(self, raw_price: float | None) -> float | None:
        """Return the transformed price. A multiplier never invents a price."""
        if self.type is OverrideType.FIXED:
            return self.value
        if raw_price is None:
            return None
        return raw_price * self.value

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "value": self.value,
            "expiresAt": self.expires_at,
        }


@dataclass(frozen=True, slots=True)
class NormalizedUpdate:
    """Fully transformed, broadcast-ready price event for one instrument."""

    instrument_name: str
    price: float
    change_percent: float | None = None
    currency: str | None = None

    def to_message(self) -> str:
        """Serialize into the subscriber wire format."""
        return json.dumps(
            {
                "type": "price_update",
                "data": {
                    "symbol": self.instrument_name,
                    "price": self.price,
                    "changePercent": self.change_percent,
                    "currency": self.currency,
                },
            }
        )


@dataclass(frozen=True, slots=True)
class LatestPrice:
    """Most recent post-transform value for an instrument. In memory only."""

    instrument_name: str
    price: float
    change_percent: float | None = None
    currency: str | None = None
    updated_at: float = field(default_factory=time.time)  # Unix seconds

    def as_update(self) -> NormalizedUpdate:
        return NormalizedUpdate(
            instrument_name=self.instrument_name,
            price=self.price,
            change_percent=self.change_percent,
            currency=self.currency,
        )


@dataclass(frozen=True, slots=True)
class QuoteTick:
    """One raw quote as received from the Feed Source (possibly partial)."""

    ticker: str
    price: float | None = None
    change_percent: float | None = None
    currency: str | None = None


@dataclass(frozen=True, slots=True)
class RelayMetrics:
    """Read-only status snapshot for the admin layer."""

    connected_subscriber_count: int
    last_data_received_at: float | None
    feed_connector_state: ConnectorState

    def to_dict(self) -> dict:
        return {
            "connectedSubscriberCount": self.connected_subscriber_count,
            "lastDataReceivedAt": self.last_data_received_at,
            "feedConnectorState": self.feed_connector_state.value,
        }
