"""Source trust table: a priori reliability per source tag."""
from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Iterable, Mapping

from ingest.schemas import SourceKind

UNKNOWN_SOURCE = "unknown"
DEFAULT_FLOOR = 0.40
COMMUNITY_VERIFIED = "community-verified"
COMMUNITY_UNVERIFIED = "community-unverified"


@dataclass(frozen=True)
class SourceTrust:
    """Trust entry for a single source tag."""
    source: str
    kind: SourceKind
    trust: float

    def __post_init__(self) -> None:
        if not 0.0 <= self.trust <= 1.0:
            raise ValueError(f"Trust for {self.source!r} must be within [0, 1]")


DEFAULT_SOURCES: tuple[SourceTrust, ...] = (
    # Direct vendor APIs
    SourceTrust("mindbody-api", SourceKind.VENDOR_API, 0.95),
    SourceTrust("wellnessliving-api", SourceKind.VENDOR_API, 0.95),
    SourceTrust("eventbrite-api", SourceKind.VENDOR_API, 0.92),
    # Booking widgets
    SourceTrust("mindbody-widget", SourceKind.WIDGET, 0.88),
    SourceTrust("wellnessliving-widget", SourceKind.WIDGET, 0.88),
    # Municipal and tourism
    SourceTrust("district-of-squamish", SourceKind.OFFICIAL, 0.90),
    SourceTrust("tourism-squamish", SourceKind.OFFICIAL, 0.88),
    # Aggregators
    SourceTrust("together-nest", SourceKind.AGGREGATOR, 0.75),
    SourceTrust("sea-to-sky-kids", SourceKind.AGGREGATOR, 0.75),
    SourceTrust("meetup", SourceKind.AGGREGATOR, 0.70),
    # General web scraping
    SourceTrust("firecrawl-business", SourceKind.WEB_SCRAPE, 0.60),
    SourceTrust("firecrawl-aggregator", SourceKind.WEB_SCRAPE, 0.65),
    # Community submissions
    SourceTrust(COMMUNITY_VERIFIED, SourceKind.COMMUNITY_VERIFIED, 0.85),
    SourceTrust(COMMUNITY_UNVERIFIED, SourceKind.COMMUNITY_UNVERIFIED, 0.50),
)


@dataclass(frozen=True)
class SourceTrustTable:
    """Immutable lookup of source tag -> trust, with a conservative floor.

    Feedback never mutates a table in place; recalibration builds a new one
    (see :mod:`verification.trust_feedback`).
    """

    entries: Mapping[str, SourceTrust] = field(default_factory=dict)
    default_trust: float = DEFAULT_FLOOR

    @classmethod
    def from_sources(cls, sources: Iterable[SourceTrust], default_trust: float = DEFAULT_FLOOR) -> "SourceTrustTable":
        return cls({s.source: s for s in sources}, default_trust)

    @classmethod
    def default(cls) -> "SourceTrustTable":
        """Built-in table, or the JSON file named by ``TRUST_TABLE_PATH``."""
        path = os.getenv("TRUST_TABLE_PATH")
        if path:
            return load_trust_table(path)
        return cls.from_sources(DEFAULT_SOURCES)

    def trust_for(self, source: str | None) -> float:
        entry = self.entries.get(source or UNKNOWN_SOURCE)
        return entry.trust if entry else self.default_trust

    def kind_for(self, source: str | None) -> SourceKind:
        entry = self.entries.get(source or UNKNOWN_SOURCE)
        return entry.kind if entry else SourceKind.UNKNOWN

    def __contains__(self, source: object) -> bool:
        return source in self.entries

    def with_trust(self, source: str, trust: float) -> "SourceTrustTable":
        """Return a copy with ``source`` set to ``trust``."""
        entries = dict(self.entries)
        kind = entries[source].kind if source in entries else SourceKind.UNKNOWN
        entries[source] = SourceTrust(source, kind, round(trust, 4))
        return SourceTrustTable(entries, self.default_trust)


def community_source_tag(previously_verified: bool) -> str:
    """Source tag for a community submitter."""
    return COMMUNITY_VERIFIED if previously_verified else COMMUNITY_UNVERIFIED


def load_trust_table(path: str | Path) -> SourceTrustTable:
    """Load a trust table from JSON: ``{"default": 0.4, "sources": [...]}``."""
    data = json.loads(Path(path).read_text())
    sources = [
        SourceTrust(item["source"], SourceKind(item.get("kind", SourceKind.UNKNOWN.value)), float(item["trust"]))
        for item in data.get("sources", [])
    ]
    return SourceTrustTable.from_sources(sources, float(data.get("default", DEFAULT_FLOOR)))


def export_trust_table(table: SourceTrustTable, path: str | Path) -> None:
    """Export a trust table to JSON."""
    sources = []
    for entry in table.entries.values():
        item = asdict(entry)
        item["kind"] = entry.kind.value
        sources.append(item)
    Path(path).write_text(
        json.dumps({"default": table.default_trust, "sources": sources}, indent=2)
    )
