from issue_summary.citations import build_citation_map, citation_map_from_dict
from issue_summary.models import CitationEntry, Extraction, citation_map_to_dict


def _extractions(*ids):
    return [Extraction(paper_id=i, title=f"Title {i}") for i in ids]


def test_citation_map_is_contiguous_from_one() -> None:
    citation_map = build_citation_map(_extractions("a", "b", "c"))

    assert list(citation_map) == ["1", "2", "3"]
    assert citation_map["1"] == CitationEntry(paper_id="a", title="Title a")
    assert citation_map["3"].paper_id == "c"
    assert len({e.paper_id for e in citation_map.values()}) == 3


def test_citation_map_follows_list_order_not_ids() -> None:
    citation_map = build_citation_map(_extractions("z", "a"))
    assert citation_map["1"].paper_id == "z"
    assert citation_map["2"].paper_id == "a"


def test_empty_extractions_give_empty_map() -> None:
    assert build_citation_map([]) == {}


def test_building_twice_gives_identical_maps() -> None:
    extractions = _extractions("a", "b")
    assert build_citation_map(extractions) == build_citation_map(extractions)


def test_stored_map_round_trips_through_dict() -> None:
    citation_map = build_citation_map(_extractions("a", "b"))
    stored = citation_map_to_dict(citation_map)

    assert stored == {
        "1": {"paper_id": "a", "title": "Title a"},
        "2": {"paper_id": "b", "title": "Title b"},
    }
    assert citation_map_from_dict(stored) == citation_map
    assert citation_map_from_dict(None) is None
    assert citation_map_from_dict({}) is None
