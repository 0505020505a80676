import pytest

from iptvresolver.core.episodes import (
    EXACT_MATCH_SCORE, NEAREST_SEASON_SCORE, NEXT_SEASON_SCORE, PREVIOUS_SEASON_SCORE,
    UNIQUE_EPISODE_SCORE, Episode, JsonArray, JsonObject, JsonString,
    match_episode, parse_episode_list, parse_season_key, to_json_value
)


def ep(stream_id, season, episode):
    return Episode(stream_id=stream_id, season=season, episode=episode, title=f"S{season}E{episode}")


EPISODES = [ep(101, 1, 1), ep(102, 1, 2), ep(201, 2, 1), ep(305, 3, 5)]


# ===========================
# Matching
# ===========================
@pytest.mark.parametrize(
    ("season", "episode", "stream_id", "score"),
    [
        (1, 1, 101, EXACT_MATCH_SCORE),
        (2, 2, 102, PREVIOUS_SEASON_SCORE),
        (0, 1, 101, NEXT_SEASON_SCORE),
        (1, 5, 305, UNIQUE_EPISODE_SCORE),
        (5, 1, 201, NEAREST_SEASON_SCORE),
    ],
)
def test_match_episode_tiers(season, episode, stream_id, score):
    hit = match_episode(EPISODES, season, episode)

    assert hit is not None
    assert hit.episode.stream_id == stream_id
    assert hit.score == score


def test_match_episode_misses():
    assert match_episode(EPISODES, 1, 9) is None
    assert match_episode([], 1, 1) is None


def test_exact_match_wins_over_earlier_neighbours():
    episodes = [ep(900, 1, 3), ep(901, 3, 3), ep(902, 2, 3)]

    assert match_episode(episodes, 2, 3).episode.stream_id == 902


# ===========================
# Payload Shapes
# ===========================
def test_season_keyed_payload():
    payload = {
        "info": {"name": "Dark"},
        "episodes": {
            "1": [
                {"id": "1001", "episode_num": "1", "title": "Secrets", "container_extension": "mkv"},
                {"id": "1002", "episode_num": 2, "title": "Lies"},
            ],
            "2": [{"id": "2001", "episode_num": 1, "title": "Beginnings"}],
        },
    }

    episodes = parse_episode_list(payload)

    assert [(e.stream_id, e.season, e.episode) for e in episodes] == [
        (1001, 1, 1), (1002, 1, 2), (2001, 2, 1)
    ]
    assert episodes[0].container_extension == "mkv"
    assert episodes[1].container_extension is None


def test_flat_list_payload_falls_back_to_title_and_position():
    payload = [
        {"id": 11, "title": "Show S02E07"},
        {"id": 12, "title": "Pilot"},
        {"id": 13, "title": "Second"},
    ]

    episodes = parse_episode_list(payload)

    assert [(e.stream_id, e.season, e.episode) for e in episodes] == [
        (11, 2, 7), (12, 1, 2), (13, 1, 3)
    ]


def test_nested_info_payload():
    payload = {
        "episodes": [
            {"info": {"id": 77, "season": 4, "episode_num": 9, "title": "Deep", "container_extension": "mp4"}},
        ]
    }

    episodes = parse_episode_list(payload)

    assert len(episodes) == 1
    assert episodes[0] == Episode(stream_id=77, season=4, episode=9, title="Deep", container_extension="mp4")


def test_explicit_season_field_beats_container_key():
    payload = {"episodes": {"1": [{"id": 5, "season": 3, "episode_num": 2}]}}

    episodes = parse_episode_list(payload)

    assert (episodes[0].season, episodes[0].episode) == (3, 2)
    assert episodes[0].title == "S3E2"


def test_season_objects_nest_their_episode_lists():
    payload = {
        "episodes": [
            {"season_number": 2, "episodes": [{"id": 21, "episode_num": 1}, {"id": 22, "episode_num": 2}]},
        ]
    }

    episodes = parse_episode_list(payload)

    assert [(e.stream_id, e.season, e.episode) for e in episodes] == [(21, 2, 1), (22, 2, 2)]


def test_malformed_records_are_skipped():
    payload = {"episodes": {"1": [{"episode_num": 1, "title": "no id"}, {"id": "x9", "episode_num": 2}]}}

    episodes = parse_episode_list(payload)

    assert [(e.stream_id, e.episode) for e in episodes] == [(9, 2)]


def test_unexpected_payloads_yield_nothing():
    assert parse_episode_list(None) == []
    assert parse_episode_list("error") == []
    assert parse_episode_list({"episodes": []}) == []


def test_series_metadata_members_are_not_episodes():
    payload = {
        "seasons": [{"id": 77, "season_number": 1, "name": "Season 1", "episode_count": 2}],
        "info": {"name": "Dark", "episode_run_time": "60"},
        "1": [{"id": 11, "episode_num": 1}, {"id": 12, "episode_num": 2}],
    }

    episodes = parse_episode_list(payload)

    assert [(e.stream_id, e.season, e.episode) for e in episodes] == [(11, 1, 1), (12, 1, 2)]


def test_bare_episode_object_is_parsed():
    episodes = parse_episode_list({"id": 5, "episode_num": 3, "info": {"season": 2}})

    assert [(e.stream_id, e.season, e.episode) for e in episodes] == [(5, 2, 3)]


def test_parse_accepts_json_value_tree():
    tree = JsonArray((JsonObject((("id", JsonString("31")), ("title", JsonString("Show 1x04")))),))

    episodes = parse_episode_list(tree)

    assert [(e.stream_id, e.season, e.episode) for e in episodes] == [(31, 1, 4)]


def test_to_json_value_keeps_member_order():
    value = to_json_value({"b": 1, "a": [True, None]})

    assert [key for key, _ in value.members] == ["b", "a"]
    assert value.get("missing") is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("1", 1), ("Season 2", 2), ("season_10", 10), ("0", 0), ("100", None), ("info", None), ("", None)],
)
def test_parse_season_key(raw, expected):
    assert parse_season_key(raw) == expected
