from __future__ import annotations

import asyncio
import math
import re

import pytest

from config import Configuration
from models import SearchParams
from services.ai_search import (
    DEFAULT_RATING,
    RestaurantSearcher,
    build_prompt,
    format_price_level,
    parse_raw_items,
)
from services.gemini import GenerationError, normalize_model_id

from fakes import FakeGenerator, FakePlaces, place_for, raw_item

EXACT_LABEL = re.compile(r"^(\d+m|\d+\.\dkm)$")
CFG = Configuration(fallback_lat=25.0330, fallback_lng=121.5654)


def _search(searcher: RestaurantSearcher, params: SearchParams, **kwargs):
    return asyncio.run(searcher.search(params, **kwargs))


def test_all_verified_items_get_exact_labels() -> None:
    names = [f"Shop {i}" for i in range(6)]
    generator = FakeGenerator([raw_item(n) for n in names])
    places = FakePlaces({n: place_for(n, i) for i, n in enumerate(names)})
    searcher = RestaurantSearcher(CFG, generator=generator, places=places)
    params = SearchParams(location="Taipei 101", user_lat=25.0330, user_lng=121.5654)

    results = _search(searcher, params, limit=6)

    assert len(results) == 6
    assert [r.id for r in results] == [f"place-{i}" for i in range(6)]
    for r in results:
        assert EXACT_LABEL.match(r.distance), r.distance
        assert r.distance != "ai-estimate"
        assert len(r.tags) <= 3


def test_verified_without_center_is_labelled_verified() -> None:
    generator = FakeGenerator([raw_item("Shop A")])
    places = FakePlaces({"Shop A": place_for("Shop A", 1)})
    searcher = RestaurantSearcher(CFG, generator=generator, places=places)

    [result] = _search(searcher, SearchParams(location="Taipei 101"))

    assert result.distance == "verified"
    assert result.address == "No. 1, Xinyi Rd, Taipei"
    assert result.rating == 4.1


def test_verified_place_without_rating_keeps_ai_rating() -> None:
    generator = FakeGenerator([raw_item("Shop A", rating=3.7)])
    places = FakePlaces({"Shop A": place_for("Shop A", 1, rating=None, is_open=None)})
    searcher = RestaurantSearcher(CFG, generator=generator, places=places)

    [result] = _search(searcher, SearchParams(location="Taipei 101"))

    assert result.rating == 3.7
    assert result.is_open is True


def test_unverified_defaults_only_fill_omitted_fields() -> None:
    no_rating = raw_item("No Rating")
    del no_rating["rating"]
    no_coords = raw_item("No Coords", rating=3.2)
    del no_coords["lat"]
    del no_coords["lng"]
    full = raw_item("Full", rating=4.8, lat=25.05, lng=121.52)
    generator = FakeGenerator([no_rating, no_coords, full])
    searcher = RestaurantSearcher(CFG, generator=generator, places=FakePlaces())

    by_name = {r.name: r for r in _search(searcher, SearchParams(location="Taipei 101"))}

    assert by_name["No Rating"].rating == DEFAULT_RATING
    assert (by_name["No Rating"].lat, by_name["No Rating"].lng) == (25.034, 121.564)
    assert by_name["No Coords"].rating == 3.2
    assert (by_name["No Coords"].lat, by_name["No Coords"].lng) == (25.0330, 121.5654)
    assert by_name["Full"].rating == 4.8
    assert (by_name["Full"].lat, by_name["Full"].lng) == (25.05, 121.52)
    assert all(r.distance == "ai-estimate" for r in by_name.values())
    assert len({r.id for r in by_name.values()}) == 3


def test_unverified_with_center_gets_estimated_label() -> None:
    generator = FakeGenerator([raw_item("Shop A", lat=25.04, lng=121.5654)])
    searcher = RestaurantSearcher(CFG, generator=generator, places=FakePlaces())
    params = SearchParams(location="25.0330,121.5654")

    [result] = _search(searcher, params)

    assert result.distance.endswith("(est)")
    assert result.distance.startswith("778m")


def test_ratings_are_clamped_and_ids_unique() -> None:
    items = [raw_item("Hi", rating=9), raw_item("Lo", rating=-1), raw_item("First"), raw_item("Second")]
    generator = FakeGenerator(items)
    shared = place_for("Same", 7)
    places = FakePlaces({"Hi": place_for("Hi", 1, rating=None), "First": shared, "Second": shared})
    searcher = RestaurantSearcher(CFG, generator=generator, places=places)

    results = _search(searcher, SearchParams(location="Taipei"))

    assert [r.rating for r in results[:2]] == [5.0, 1.0]
    assert results[1].distance == "ai-estimate"
    assert len(results) == 3
    assert len({r.id for r in results}) == 3
    assert results[2].id == "place-7"


@pytest.mark.parametrize("text", ["", "not json", '{"name": "x"}', "[1, 2]"])
def test_unusable_model_output_means_no_results(text: str) -> None:
    places = FakePlaces()
    searcher = RestaurantSearcher(CFG, generator=FakeGenerator(text=text), places=places)
    assert _search(searcher, SearchParams(location="Taipei")) == []
    assert places.calls == []


def test_generation_errors_propagate() -> None:
    generator = FakeGenerator(error=GenerationError("503 Overloaded"))
    searcher = RestaurantSearcher(CFG, generator=generator, places=FakePlaces())
    with pytest.raises(GenerationError):
        _search(searcher, SearchParams(location="Taipei"))


def test_verification_query_and_bias() -> None:
    item = raw_item("Shop A", address="")
    generator = FakeGenerator([item])
    places = FakePlaces()
    searcher = RestaurantSearcher(CFG, generator=generator, places=places)

    _search(searcher, SearchParams(location="25.0330,121.5654", radius="250m", model="googleai/gemini-2.5-pro"))

    query, center, radius_m = places.calls[0]
    assert query == "Shop A 25.0330,121.5654"
    assert center == (25.033, 121.5654)
    assert radius_m == 250.0
    assert generator.models == ["googleai/gemini-2.5-pro"]


def test_prompt_contents() -> None:
    params = SearchParams(location="Taipei 101", keywords="", radius="unlimited", language="en")
    prompt = build_prompt(params, 9, ["B", "A", "A", " "], context="- Enjoyed before: X")

    assert 'Task: Find exactly 9 real, existing restaurants near "Taipei 101" matching "good food, high rating".' in prompt
    assert "DO NOT include these restaurants: A, B." in prompt
    assert "User Personal Preferences:" in prompt
    assert "Output ONLY in English." in prompt
    assert "Prioritize nearby but allow wider search if needed." in prompt

    strict = build_prompt(SearchParams(location="Taipei", radius="1km"), 6)
    assert "Must be strictly within 1km of the center point." in strict
    assert "DO NOT include" not in strict
    assert "美食, 高評分" in strict


def test_searcher_merges_caller_and_param_exclusions() -> None:
    generator = FakeGenerator([])
    searcher = RestaurantSearcher(CFG, generator=generator, places=FakePlaces())
    params = SearchParams(location="Taipei", excluded_names=frozenset({"A"}))

    _search(searcher, params, exclude_names={"B", "C"})

    assert "DO NOT include these restaurants: A, B, C." in generator.prompts[0]


def test_price_levels_and_parsing() -> None:
    assert format_price_level("$$", "en") == "$$ (Moderate)"
    assert format_price_level("$$$$", "ja") == "$$$$ (高級)"
    assert format_price_level("-", "zh-TW") == "-"
    assert format_price_level("weird", "zh-TW") == "$ (平價)"
    assert parse_raw_items('[{"name": "a"}, 3]') == [{"name": "a"}]


def test_normalize_model_id() -> None:
    assert normalize_model_id("googleai/gemini-2.5-flash", "x") == "gemini-2.5-flash"
    assert normalize_model_id(None, "gemini-2.5-flash") == "gemini-2.5-flash"
    assert normalize_model_id("  ", "fallback") == "fallback"


def test_results_are_finite_and_in_range() -> None:
    generator = FakeGenerator([raw_item(f"S{i}", rating=None if i % 2 else 4.0) for i in range(4)])
    searcher = RestaurantSearcher(CFG, generator=generator, places=FakePlaces())
    for r in _search(searcher, SearchParams(location="Taipei")):
        assert r.id and r.name
        assert 1.0 <= r.rating <= 5.0
        assert math.isfinite(r.lat) and math.isfinite(r.lng)
