from datetime import timedelta

from curator.core.config import Settings
from curator.core.sources import (
    RepostPolicy,
    content_type_target_share,
    parse_repost_windows,
    primary_content_type,
    source_target_share,
)


def test_settings_read_prefixed_environment(monkeypatch) -> None:
    monkeypatch.setenv("CURATOR_MIN_QUEUE_SIZE", "30")
    monkeypatch.setenv("CURATOR_SCAN_DELAY_SECONDS", "0.5")
    settings = Settings()
    assert settings.min_queue_size == 30
    assert settings.scan_delay_seconds == 0.5
    assert settings.max_queue_size == 42


def test_scan_size_for_priority() -> None:
    settings = Settings()
    assert settings.scan_size_for("high") == 15
    assert settings.scan_size_for("medium") == 10
    assert settings.scan_size_for("low") == 5


def test_repost_policy_uses_source_windows_and_overrides() -> None:
    policy = RepostPolicy(overrides={"bluesky": 10})
    assert policy.window_for("pixabay") == timedelta(days=90)
    assert policy.window_for("bluesky") == timedelta(days=10)
    assert policy.window_for("unknown") == timedelta(days=7)


def test_parse_repost_windows_is_lenient() -> None:
    assert parse_repost_windows('{"reddit": 21, "giphy": "x", "lemmy": -1}') == {"reddit": 21}
    assert parse_repost_windows("not json") == {}
    assert parse_repost_windows("[1, 2]") == {}


def test_target_shares_fall_back_for_unknown_values() -> None:
    assert source_target_share("reddit") == 0.20
    assert source_target_share("myspace") == 0.05
    assert content_type_target_share("gif") == 0.25
    assert content_type_target_share("audio") == 0.05
    assert primary_content_type("youtube") == "video"
    assert primary_content_type("myspace") == "text"
