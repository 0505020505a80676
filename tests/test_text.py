import pytest

from iptvresolver.utils.text import (
    canonical_key, extract_episode_number, extract_season_episode, normalize,
    normalize_imdb_id, normalize_tmdb_id, parse_flexible_int, parse_year,
    score_name_match, title_year, tokenize
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("The Office (UK)", "the office"),
        ("Breaking Bad [MULTI] 1080p", "breaking bad"),
        ("Pokémon Season 2", "pokemon"),
        ("Dark S01E03 x265 WEB-DL", "dark"),
        ("Sherlock (2010) - Episode 4", "sherlock"),
        ("  ", ""),
        (None, ""),
    ],
)
def test_normalize_strips_noise(raw, expected):
    assert normalize(raw) == expected


@pytest.mark.parametrize(
    "raw",
    ["The Office (UK)", "Dark S01E03 x265", "Amélie [FR] 720p", "Season 1 Episode 2 of Lost", "a.b.c"],
)
def test_normalize_is_idempotent(raw):
    once = normalize(raw)
    assert normalize(once) == once


def test_tokenize_drops_stop_words_and_short_tokens():
    assert tokenize("The Lord of the Rings: Complete Series") == frozenset({"lord", "rings"})
    assert tokenize("Up") == frozenset()


def test_canonical_key_is_order_independent():
    assert canonical_key("Rings of the Lord") == canonical_key("The Lord of the Rings") == "lord rings"
    assert canonical_key("The") == ""


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(1396, "1396"), ("001396", "1396"), ("tmdb:42", "42"), (0, None), (-3, None), ("", None), (None, None)],
)
def test_normalize_tmdb_id(raw, expected):
    assert normalize_tmdb_id(raw) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("tt0903747", "tt0903747"), ("https://imdb.com/title/TT0903747/", "tt0903747"), ("903747", None), (None, None)],
)
def test_normalize_imdb_id(raw, expected):
    assert normalize_imdb_id(raw) == expected


def test_parse_year_and_title_year():
    assert parse_year("2005-03-24") == 2005
    assert parse_year("n/a") is None
    assert title_year("The Office (2005)") == 2005
    assert title_year("1923") is None


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("Show S02E05", (2, 5)),
        ("Show 3x07", (3, 7)),
        ("Show Season 4 Episode 12", (4, 12)),
        ("Show 1.02", (1, 2)),
        ("Show 102", (1, 2)),
        ("Show", None),
    ],
)
def test_extract_season_episode(name, expected):
    assert extract_season_episode(name) == expected


def test_extract_episode_number():
    assert extract_episode_number("Show Episode 7") == 7
    assert extract_episode_number("Show ep 3") == 3
    assert extract_episode_number("Show - 12") == 12
    assert extract_episode_number("Show") is None


def test_score_name_match_tiers():
    assert score_name_match("Breaking Bad", "breaking bad") == 120
    assert score_name_match("Breaking Bad Extended", "breaking bad") == 90
    assert score_name_match("Bad", "breaking bad") == 70
    assert score_name_match("Nothing Alike", "breaking bad") == 0


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(5, 5), (5.0, 5), ("7", 7), ("7.0", 7), ("Episode 12", 12), (True, None), ("", None), (float("nan"), None)],
)
def test_parse_flexible_int(raw, expected):
    assert parse_flexible_int(raw) == expected
