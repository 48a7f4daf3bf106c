"""Release channel classification for dotted upstream version tags.

Upstream tags carry no channel metadata, so the channel is inferred from the
tag *shape*:

* four components (``142.0.7444.134``): Stable when the last component is at
  least the configured threshold; below it, Canary when the tag belongs to the
  newest major seen (a generation with no stable release yet) and Beta
  otherwise;
* three components (``143.0.7468``): Canary for the newest major seen,
  Dev for anything older;
* any other count of numeric components: Unknown.

The rule lives in :class:`ShapeHeuristicPolicy` so that a classifier backed
by real release metadata can be swapped in through :class:`ChannelPolicy`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Protocol

LOGGER = logging.getLogger(__name__)

DEFAULT_STABLE_PATCH_THRESHOLD = 100
DEFAULT_OVERVIEW_LIMIT = 20

_COMPONENT_RE = re.compile(r"^[0-9]+$")
_LEADING_MAJOR_RE = re.compile(r"^v?([0-9]+)")


class ParseError(ValueError):
    """Raised when a tag is not a dotted sequence of non-negative integers."""


class Channel(str, Enum):
    """Release maturity tiers inferred for a tag."""

    STABLE = "Stable"
    BETA = "Beta"
    DEV = "Dev"
    CANARY = "Canary"
    UNKNOWN = "Unknown"


@dataclass(frozen=True, order=True, slots=True)
class VersionTag:
    """Tag string with its numeric components; orders component-wise."""

    components: tuple[int, ...]
    raw: str = field(compare=False)

    @property
    def major(self) -> int:
        return self.components[0]

    def __str__(self) -> str:
        return self.raw


@dataclass(frozen=True, slots=True)
class ClassifiedVersion:
    tag: VersionTag
    major: int
    channel: Channel


def _split_components(raw: str) -> tuple[int, ...]:
    text = raw.strip()
    if not text:
        raise ParseError("empty tag")
    parts = text.split(".")
    if any(not _COMPONENT_RE.match(part) for part in parts):
        raise ParseError(f"malformed tag {raw!r}: expected dot-separated non-negative integers")
    return tuple(int(part) for part in parts)


def parse(tag: str) -> VersionTag:
    """Parse ``tag`` into a :class:`VersionTag` with three or four components."""

    components = _split_components(tag)
    if len(components) not in (3, 4):
        raise ParseError(f"malformed tag {tag!r}: expected 3 or 4 components, got {len(components)}")
    return VersionTag(components=components, raw=tag.strip())


def _coerce(tag: str | VersionTag) -> VersionTag:
    if isinstance(tag, VersionTag):
        return tag
    return VersionTag(components=_split_components(tag), raw=tag.strip())


class ChannelPolicy(Protocol):
    """Strategy mapping a tag to a release channel."""

    def channel_for(self, tag: VersionTag, highest_major_seen: int) -> Channel:
        ...


@dataclass(slots=True)
class ShapeHeuristicPolicy:
    """Infer the channel from component count and the last component.

    The stable threshold was picked for Chromium's tagging scheme, where
    long-lived stable branches accumulate many patch releases. It is not
    expected to hold for other projects.

    The plain shape rule says every four-part tag below the threshold is
    Beta, which would report a brand-new major such as ``143.0.7468.1`` as
    Beta even though no release of that generation has shipped. With
    ``newest_major_canary`` (the default) such tags are Canary instead; set
    it to ``False`` for the plain Stable/Beta split.
    """

    stable_patch_threshold: int = DEFAULT_STABLE_PATCH_THRESHOLD
    # Low-patch four-part tags of the newest major are early builds, not Beta.
    newest_major_canary: bool = True

    def channel_for(self, tag: VersionTag, highest_major_seen: int) -> Channel:
        size = len(tag.components)
        if size == 4:
            if tag.components[3] >= self.stable_patch_threshold:
                return Channel.STABLE
            if self.newest_major_canary and tag.major >= highest_major_seen:
                return Channel.CANARY
            return Channel.BETA
        if size == 3:
            if tag.major >= highest_major_seen:
                return Channel.CANARY
            return Channel.DEV
        return Channel.UNKNOWN


def classify(
    tag: str | VersionTag,
    highest_major_seen: int,
    policy: ChannelPolicy | None = None,
) -> ClassifiedVersion:
    """Classify a single tag; raises :class:`ParseError` only for malformed input."""

    version = _coerce(tag)
    active_policy = policy or ShapeHeuristicPolicy()
    channel = active_policy.channel_for(version, highest_major_seen)
    return ClassifiedVersion(tag=version, major=version.major, channel=channel)


def parse_tags(raw_tags: Iterable[str | VersionTag]) -> List[VersionTag]:
    """Parse every well-formed version tag, skipping everything else."""

    parsed: List[VersionTag] = []
    for raw in raw_tags:
        if isinstance(raw, VersionTag):
            parsed.append(raw)
            continue
        try:
            parsed.append(parse(raw))
        except ParseError:
            LOGGER.debug("Ignoring non-version tag %r", raw)
    return parsed


def highest_major(tags: Iterable[VersionTag]) -> int | None:
    majors = [tag.major for tag in tags]
    return max(majors) if majors else None


def classify_tags(
    raw_tags: Iterable[str | VersionTag],
    policy: ChannelPolicy | None = None,
    *,
    highest_major_seen: int | None = None,
) -> List[ClassifiedVersion]:
    """Classify every parseable tag.

    ``highest_major_seen`` defaults to the largest major among the parsed
    tags, which makes only the newest generation of three-part tags Canary.
    Names that are not version tags (``branch-heads/...``, ``v8-lkgr``) are
    skipped.
    """

    versions = parse_tags(raw_tags)
    if highest_major_seen is None:
        highest_major_seen = highest_major(versions)
    if highest_major_seen is None:
        return []
    active_policy = policy or ShapeHeuristicPolicy()
    return [classify(version, highest_major_seen, active_policy) for version in versions]


def latest_per_major(tags: Iterable[str | VersionTag], major: int) -> VersionTag | None:
    """Return the numerically greatest tag whose major equals ``major``."""

    candidates = [version for version in parse_tags(tags) if version.major == major]
    return max(candidates) if candidates else None


def latest_per_channel(classified: Iterable[ClassifiedVersion]) -> Dict[Channel, VersionTag]:
    """Return the numerically greatest tag observed for each channel."""

    latest: Dict[Channel, VersionTag] = {}
    for entry in classified:
        current = latest.get(entry.channel)
        if current is None or entry.tag > current:
            latest[entry.channel] = entry.tag
    return {channel: latest[channel] for channel in Channel if channel in latest}


@dataclass(frozen=True, slots=True)
class MajorSummary:
    major: int
    latest: VersionTag
    channel: Channel


def latest_per_major_overview(
    tags: Iterable[str | VersionTag],
    policy: ChannelPolicy | None = None,
    *,
    limit: int = DEFAULT_OVERVIEW_LIMIT,
    highest_major_seen: int | None = None,
) -> List[MajorSummary]:
    """Latest tag and its channel for each of the ``limit`` newest majors."""

    versions = parse_tags(tags)
    if not versions:
        return []
    if highest_major_seen is None:
        highest_major_seen = highest_major(versions) or 0
    active_policy = policy or ShapeHeuristicPolicy()

    majors = sorted({version.major for version in versions})
    if limit > 0:
        majors = majors[-limit:]
    overview: List[MajorSummary] = []
    for major in majors:
        latest = latest_per_major(versions, major)
        if latest is None:
            continue
        classified = classify(latest, highest_major_seen, active_policy)
        overview.append(MajorSummary(major=major, latest=latest, channel=classified.channel))
    return overview


def major_of(version: str | None) -> int:
    """Leading major number of a ``git describe`` style string, or ``0``."""

    if not version:
        return 0
    match = _LEADING_MAJOR_RE.match(version.strip())
    return int(match.group(1)) if match else 0


__all__ = [
    "Channel",
    "ChannelPolicy",
    "ClassifiedVersion",
    "DEFAULT_OVERVIEW_LIMIT",
    "DEFAULT_STABLE_PATCH_THRESHOLD",
    "MajorSummary",
    "ParseError",
    "ShapeHeuristicPolicy",
    "VersionTag",
    "classify",
    "classify_tags",
    "highest_major",
    "latest_per_channel",
    "latest_per_major",
    "latest_per_major_overview",
    "major_of",
    "parse",
    "parse_tags",
]
