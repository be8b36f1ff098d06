"""Attribution and routing records, and the rule that merges them."""

from __future__ import annotations

from launchgate._constants import ERROR_KEY, ERROR_MESSAGE_KEY, ORGANIC_KEY, ORGANIC_VALUE, ROUTING_PREFIX
from launchgate.models._base import StringRecord


class AttributionRecord(StringRecord):
    """Install attribution as delivered by the attribution provider."""

    @classmethod
    def failure(cls, message: str) -> AttributionRecord:
        """Record standing in for a provider failure.

        The provider reports failures through a separate callback; the
        coalescer still needs a record to merge, so the failure is carried
        as data.
        """
        return cls(data={ERROR_KEY: "true", ERROR_MESSAGE_KEY: message})

    @property
    def is_error(self) -> bool:
        return self.data.get(ERROR_KEY, "").lower() in {"true", "1"}

    def is_organic(self, key: str = ORGANIC_KEY, value: str = ORGANIC_VALUE) -> bool:
        return self.data.get(key) == value


class RoutingRecord(StringRecord):
    """Deep-link parameters as delivered by the deep-link callback."""


def merge_records(
    attribution: AttributionRecord,
    routing: RoutingRecord | None,
    *,
    prefix: str = ROUTING_PREFIX,
) -> AttributionRecord:
    """Fold *routing* into *attribution* under *prefix*.

    Attribution keys always win: a routing key ``k`` is only added as
    ``<prefix>k`` when the attribution record has no such key yet.
    """
    merged = attribution.as_dict()
    if routing is not None:
        for key, value in routing.data.items():
            merged.setdefault(f"{prefix}{key}", value)
    return AttributionRecord(data=merged)


def fill_missing(record: AttributionRecord, extra: StringRecord) -> AttributionRecord:
    """Add keys of *extra* that *record* does not carry yet, unprefixed."""
    merged = record.as_dict()
    for key, value in extra.data.items():
        merged.setdefault(key, value)
    return AttributionRecord(data=merged)
