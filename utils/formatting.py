"""Text of the channel announcement for a gallery."""

import json
import re
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)

TAG_SEPARATORS = re.compile(r"[-/· ]")


class Announceable(Protocol):
    title: str
    url: str

    @property
    def tags(self) -> Mapping[str, Sequence[str]]: ...


class TagTranslator:
    """Display names for tag namespaces and tags.

    Unknown namespaces and tags keep their source names.
    """

    def __init__(
        self,
        namespaces: Mapping[str, str] | None = None,
        tags: Mapping[str, Mapping[str, str]] | None = None,
    ) -> None:
        self.namespaces = dict(namespaces or {})
        self.tags = {namespace: dict(names) for namespace, names in (tags or {}).items()}

    @classmethod
    def from_file(cls, path: str | Path) -> "TagTranslator":
        """Load an EhTagTranslation database (``db.text.json`` layout).

        The file holds ``{"data": [{"namespace": ..., "frontMatters":
        {"name": ...}, "data": {tag: {"name": ...}}}]}``.

        Raises:
            ValueError: If the file is not a translation database.
        """
        with open(path, encoding="utf-8") as f:
            try:
                raw = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid tag translation file {path}: {e}") from e
        if not isinstance(raw, dict) or not isinstance(raw.get("data"), list):
            raise ValueError(f"Invalid tag translation file {path}: missing data list")

        namespaces: dict[str, str] = {}
        tags: dict[str, dict[str, str]] = {}
        for entry in raw["data"]:
            namespace = entry.get("namespace")
            if not namespace:
                continue
            name = (entry.get("frontMatters") or {}).get("name")
            if name:
                namespaces[namespace] = name
            tags[namespace] = {
                tag: value["name"]
                for tag, value in (entry.get("data") or {}).items()
                if isinstance(value, dict) and value.get("name")
            }
        logger.info("tag_translations_loaded", path=str(path), namespaces=len(tags))
        return cls(namespaces, tags)

    def translate(self, tags: Mapping[str, Sequence[str]]) -> dict[str, list[str]]:
        """Translate namespaces and tags, keeping their order."""
        translated: dict[str, list[str]] = {}
        for namespace, values in tags.items():
            names = self.tags.get(namespace, {})
            label = self.namespaces.get(namespace, namespace)
            translated.setdefault(label, []).extend(names.get(value, value) for value in values)
        return translated


def format_tag(tag: str) -> str:
    """Turn a tag name into a hashtag: ``big eyes`` becomes ``#big_eyes``."""
    return "#" + TAG_SEPARATORS.sub("_", tag.strip())


def format_tags(tags: Mapping[str, Sequence[str]]) -> list[str]:
    """One ``namespace: #tag #tag`` line per non-empty namespace, in order."""
    lines = []
    for namespace, values in tags.items():
        if not values:
            continue
        lines.append(f"`{namespace}`: " + " ".join(format_tag(value) for value in values))
    return lines


def format_message(
    gallery: Announceable,
    article_url: str,
    translator: TagTranslator | None = None,
) -> str:
    """Build the announcement text.

    Args:
        gallery: A fresh ``Gallery`` or a stored ``GalleryEntity``.
        article_url: Canonical URL of the published article.
        translator: Optional display names for namespaces and tags.
    """
    tags = translator.translate(gallery.tags) if translator is not None else gallery.tags
    lines = [f"**{gallery.title}**", *format_tags(tags)]
    lines.append(f"`preview`: [{gallery.title}]({article_url})")
    lines.append(f"`source`: <{gallery.url}>")
    return "\n".join(lines)
