"""Stream tag encoding.

Tags are embedded directly in metric names using the
`metric_name|ST[<tags>]` syntax. Each tag category and value is base64
encoded and wrapped as `b"..."`, so tag content never collides with the
name/tag delimiters.
"""

import base64
import logging
from collections.abc import Iterable

from cloud_agent.constants import ENCODED_TAG_PREFIX, MAX_TAGS, STREAM_TAG_MARKER
from cloud_agent.settings import Tag

logger = logging.getLogger(__name__)


def normalize_tag(tag: Tag) -> Tag | None:
    """Lowercase and trim a tag.

    Returns:
        The normalized tag, or None when both category and value are empty.
    """
    category = tag.category.strip().lower()
    value = tag.value.strip().lower()
    if not category and not value:
        return None
    return Tag(category=category, value=value)


def encode_metric_tags(tags: Iterable[Tag]) -> list[str]:
    """Normalize, deduplicate and sort tags into `category:value` strings.

    Only the first MAX_TAGS tags are considered, the remainder is dropped.
    """
    tags = list(tags)
    if len(tags) > MAX_TAGS:
        logger.warning(
            "Max tags reached (%d > %d), ignoring remainder", len(tags), MAX_TAGS
        )
        tags = tags[:MAX_TAGS]

    unique_tags: set[str] = set()
    for tag in tags:
        normalized = normalize_tag(tag)
        if normalized is None:
            continue
        unique_tags.add(
            ":".join(part for part in (normalized.category, normalized.value) if part)
        )

    return sorted(unique_tags)


def _remove_whitespace(text: str) -> str:
    return "".join(c for c in text if not c.isspace())


def _encode_component(component: str) -> str:
    # already encoded, either by us or by whoever built the tag
    if component.startswith(ENCODED_TAG_PREFIX):
        return component
    encoded = base64.b64encode(_remove_whitespace(component).encode("utf-8"))
    return f'b"{encoded.decode("ascii")}"'


def encode_stream_tags(tags: Iterable[Tag]) -> str:
    """Encode tags into the comma separated stream tag list.

    Stream tags require both a category and a value, bare tags are dropped.
    """
    encoded_tags = []
    for idx, tag in enumerate(encode_metric_tags(tags)):
        if idx >= MAX_TAGS:
            logger.warning("Ignoring tags over max (%d)", MAX_TAGS)
            break

        category, sep, value = tag.partition(":")
        if not sep:
            logger.warning(
                "Stream tags must have a category and value, ignoring tag '%s'", tag
            )
            continue

        encoded_tags.append(_encode_component(category) + ":" + _encode_component(value))

    return ",".join(encoded_tags)


def metric_name_with_stream_tags(metric_name: str, tags: Iterable[Tag]) -> str:
    """Append encoded stream tags to a metric name.

    If the metric name already carries stream tags it is assumed the name
    and its tags are managed externally, the name is returned unchanged.
    """
    if STREAM_TAG_MARKER in metric_name:
        return metric_name

    tag_list = encode_stream_tags(tags)
    if not tag_list:
        return metric_name

    return f"{metric_name}{STREAM_TAG_MARKER}{tag_list}]"
