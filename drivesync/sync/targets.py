"""Match Drive file names to catalog articles and groups.

Photographers name files after the catalog entry they show:

- ``<article id/title/sku> E 01.jpg`` (also ``E01``, ``E 14-2``) is an
  article image; the number after ``E`` is the sort order.
- ``<group id/name> 14.jpg`` (also ``14-2``, ``14_``) is a group image; the
  trailing number is the sort order.

Identifiers are compared after lower-casing and removing everything that is
not a letter or digit. Longer identifiers are tried first so that the most
specific catalog entry wins.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Iterable, Optional, Sequence

from drivesync.core.errors import CatalogLoadError

from .models import CatalogArticle, CatalogGroup, LinkTarget

logger = logging.getLogger("targets")

EXTENSION_RE = re.compile(r"\.[a-z0-9]+$", re.IGNORECASE)
ARTICLE_MARKER_RE = re.compile(r"\bE\s*(\d+(?:-\d+)?)\b", re.IGNORECASE)
GROUP_SUFFIX_RE = re.compile(r"\s+(\d+(?:-\d+)?)\s*_?\s*$")
NON_ALNUM_RE = re.compile(r"[^a-z0-9]")

STRICT_MIN_LEN = 4
FUZZY_MIN_LEN = 3
FUZZY_MIN_SCORE = 3
FUZZY_PREFIX_LEN = 6
UNIQUE_CONFLICT_MARKER = "Unique constraint failed"


def normalize_for_matching(text: str) -> str:
    return NON_ALNUM_RE.sub("", (text or "").lower()).strip()


def _sort_order(raw: str) -> int:
    return int(raw.replace("-", ""))


def _fuzzy_score(identifier: str, prefix_text: str) -> float:
    if len(identifier) < FUZZY_MIN_LEN:
        return 0
    if identifier in prefix_text:
        return len(identifier)
    if prefix_text.startswith(identifier[: min(len(identifier), FUZZY_PREFIX_LEN)]):
        return len(identifier) * 0.8
    return 0


def _match(
    normalized_name: str,
    prefix_text: str,
    candidates: Sequence[tuple[str, list[str]]],
) -> Optional[str]:
    """Return the key of the first candidate whose identifiers match."""
    ordered = sorted(
        candidates,
        key=lambda c: max((len(i) for i in c[1]), default=0),
        reverse=True,
    )
    for key, identifiers in ordered:
        if any(len(i) >= STRICT_MIN_LEN and i in normalized_name for i in identifiers):
            return key

    normalized_prefix = normalize_for_matching(prefix_text)
    for key, identifiers in ordered:
        if max((_fuzzy_score(i, normalized_prefix) for i in identifiers), default=0) >= FUZZY_MIN_SCORE:
            return key
    return None


def match_target(
    file_name: str,
    articles: Iterable[CatalogArticle],
    groups: Iterable[CatalogGroup],
) -> Optional[LinkTarget]:
    base_name = EXTENSION_RE.sub("", file_name)
    normalized_name = normalize_for_matching(base_name)

    marker = ARTICLE_MARKER_RE.search(base_name)
    if marker:
        by_id = {a.external_id: a for a in articles}
        candidates = [
            (
                a.external_id,
                [
                    normalize_for_matching(a.external_id),
                    normalize_for_matching(a.title),
                    normalize_for_matching(a.sku or ""),
                ],
            )
            for a in by_id.values()
        ]
        key = _match(normalized_name, base_name[: marker.start()].strip(), candidates)
        if key is None:
            return None
        return LinkTarget(
            target_type="article",
            target_id=key,
            matched=by_id[key].title,
            sort_order=_sort_order(marker.group(1)),
        )

    suffix = GROUP_SUFFIX_RE.search(base_name)
    if not suffix:
        return None
    groups_by_id = {g.external_id: g for g in groups}
    candidates = [
        (g.external_id, [normalize_for_matching(g.external_id), normalize_for_matching(g.name)])
        for g in groups_by_id.values()
    ]
    key = _match(normalized_name, base_name[: suffix.start()].strip(), candidates)
    if key is None:
        return None
    return LinkTarget(
        target_type="group",
        target_id=key,
        matched=groups_by_id[key].name,
        sort_order=_sort_order(suffix.group(1)),
    )


class CatalogLinker:
    """Links uploaded assets to the catalog entry named by the file."""

    def __init__(self, media, max_attempts: int = 3):
        self.media = media
        self.max_attempts = max_attempts
        self.articles: list[CatalogArticle] = []
        self.groups: list[CatalogGroup] = []

    async def load(self) -> None:
        try:
            raw_articles = await asyncio.to_thread(self.media.list_articles)
            raw_groups = await asyncio.to_thread(self.media.list_groups)
            self.articles = [CatalogArticle.model_validate(a) for a in raw_articles]
            self.groups = [CatalogGroup.model_validate(g) for g in raw_groups]
        except (ValueError, RuntimeError, OSError) as e:
            raise CatalogLoadError(f"catalog_load_failed: {e}") from e
        logger.info("catalog_loaded articles=%s groups=%s", len(self.articles), len(self.groups))

    def match(self, file_name: str) -> Optional[LinkTarget]:
        return match_target(file_name, self.articles, self.groups)

    async def link(self, target: LinkTarget, media_id: str) -> bool:
        sort_order = target.sort_order
        for _attempt in range(self.max_attempts):
            try:
                res = await asyncio.to_thread(
                    self.media.link_asset, target.target_type, target.target_id, media_id, sort_order
                )
            except Exception as e:
                logger.error("link_error target=%s:%s error=%s", target.target_type, target.target_id, e)
                return False

            if 200 <= res.status_code < 300:
                return True

            text = (res.text or "").strip()
            if res.status_code == 500 and UNIQUE_CONFLICT_MARKER in text:
                logger.warning("link_sort_order_taken sort_order=%s retry_with=%s", sort_order, sort_order + 1)
                sort_order += 1
                continue

            logger.error("link_failed status=%s body=%s", res.status_code, text[:200])
            return False
        return False
