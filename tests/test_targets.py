import asyncio

from drivesync.sync.models import CatalogArticle, CatalogGroup, LinkTarget
from drivesync.sync.targets import CatalogLinker, match_target, normalize_for_matching

ARTICLES = [
    CatalogArticle(external_id="A100", title="Oak Table", sku="OT-1"),
    CatalogArticle(external_id="A200", title="Oak Table Extended", sku="OTX-2"),
]
GROUPS = [
    CatalogGroup(external_id="G7", name="Garden Chairs"),
    CatalogGroup(external_id="G8", name="Lamps"),
]


class _Response:
    def __init__(self, status_code: int, text: str = ""):
        self.status_code = status_code
        self.text = text


class _LinkMedia:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def link_asset(self, target_type, target_id, media_id, sort_order):
        self.calls.append((target_type, target_id, media_id, sort_order))
        return self.responses.pop(0)


def test_normalize_strips_case_and_punctuation():
    assert normalize_for_matching("Oak-Table (v2)") == "oaktablev2"
    assert normalize_for_matching("") == ""


def test_article_marker_gives_sort_order():
    target = match_target("Oak Table E 03.jpg", ARTICLES, GROUPS)

    assert target == LinkTarget(target_type="article", target_id="A100", matched="Oak Table", sort_order=3)


def test_article_marker_without_space_and_with_dash():
    target = match_target("A100 e12-1.png", ARTICLES, GROUPS)

    assert target.target_id == "A100"
    assert target.sort_order == 121


def test_longest_identifier_wins():
    target = match_target("Oak Table Extended E1.jpg", ARTICLES, GROUPS)

    assert target.target_id == "A200"


def test_group_suffix_match():
    target = match_target("Garden Chairs 14_.jpeg", ARTICLES, GROUPS)

    assert target.target_type == "group"
    assert target.target_id == "G7"
    assert target.sort_order == 14


def test_fuzzy_group_prefix_match():
    target = match_target("Garden Chair 3.jpg", ARTICLES, GROUPS)

    assert target is not None
    assert target.target_id == "G7"
    assert target.sort_order == 3


def test_unmatched_names_return_none():
    assert match_target("holiday.jpg", ARTICLES, GROUPS) is None
    assert match_target("Unknown Thing E 01.jpg", ARTICLES, GROUPS) is None
    assert match_target("Unknown Thing 5.jpg", ARTICLES, GROUPS) is None


def test_link_bumps_sort_order_on_unique_conflict():
    media = _LinkMedia([_Response(500, "Unique constraint failed on the fields"), _Response(201)])
    linker = CatalogLinker(media, max_attempts=3)
    target = LinkTarget(target_type="group", target_id="G7", matched="Garden Chairs", sort_order=14)

    assert asyncio.run(linker.link(target, "asset-1")) is True
    assert [c[3] for c in media.calls] == [14, 15]


def test_link_gives_up_after_max_attempts():
    media = _LinkMedia([_Response(500, "Unique constraint failed")] * 3)
    linker = CatalogLinker(media, max_attempts=3)
    target = LinkTarget(target_type="article", target_id="A100", matched="Oak Table", sort_order=1)

    assert asyncio.run(linker.link(target, "asset-1")) is False
    assert len(media.calls) == 3


def test_link_other_error_is_not_retried():
    media = _LinkMedia([_Response(404, "article not found"), _Response(201)])
    linker = CatalogLinker(media)
    target = LinkTarget(target_type="article", target_id="A100", matched="Oak Table", sort_order=1)

    assert asyncio.run(linker.link(target, "asset-1")) is False
    assert len(media.calls) == 1
