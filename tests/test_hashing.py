from curator.services.content import CandidateItem, Image, Mixed, TextOnly, Video
from curator.services.hashing import exact_hash, fingerprint, normalize_text


def test_exact_hash_is_deterministic() -> None:
    first = exact_hash("hot dog", "https://i.example.com/a.jpg", None, "https://reddit.com/r/hotdogs/1")
    second = exact_hash("hot dog", "https://i.example.com/a.jpg", None, "https://reddit.com/r/hotdogs/1")
    assert first == second
    assert len(first) == 64


def test_exact_hash_changes_when_any_field_changes() -> None:
    base = ("hot dog", "https://i.example.com/a.jpg", "https://v.example.com/a.mp4", "https://example.com/p/1")
    baseline = exact_hash(*base)
    for index in range(len(base)):
        changed = list(base)
        changed[index] = f"{changed[index]}-x"
        assert exact_hash(*changed) != baseline


def test_exact_hash_is_order_sensitive() -> None:
    assert exact_hash("a", "b", None, None) != exact_hash("b", "a", None, None)


def test_normalize_text_strips_punctuation_and_whitespace() -> None:
    assert normalize_text("  Best  HOT-DOG, ever!!\n") == "best hotdog ever"
    assert normalize_text(None) == ""


def test_fingerprint_leaves_absent_media_hashes_empty() -> None:
    candidate = CandidateItem(source="bluesky", text="Hot dog stand review", source_url="https://bsky.app/post/1")
    result = fingerprint(candidate)
    assert result.image_hash is None
    assert result.video_hash is None
    assert result.normalized_text == "hot dog stand review"


def test_fingerprint_hashes_media_for_each_variant() -> None:
    image = fingerprint(CandidateItem("reddit", None, "https://reddit.com/1", Image("https://i.redd.it/a.jpg")))
    video = fingerprint(CandidateItem("youtube", None, "https://youtube.com/w", Video("https://youtu.be/a")))
    mixed = fingerprint(
        CandidateItem("tumblr", None, "https://tumblr.com/1", Mixed("https://i.redd.it/a.jpg", "https://youtu.be/a"))
    )
    assert image.image_hash is not None and image.video_hash is None
    assert video.video_hash is not None and video.image_hash is None
    assert mixed.image_hash == image.image_hash
    assert mixed.video_hash == video.video_hash


def test_url_hash_ignores_tracking_parameters() -> None:
    plain = CandidateItem("reddit", "dog", "https://Reddit.com/r/hotdogs/1", TextOnly())
    tracked = CandidateItem("reddit", "dog", "https://reddit.com:443/r/hotdogs/1?utm_source=feed", TextOnly())
    assert fingerprint(plain).url_hash == fingerprint(tracked).url_hash
    assert fingerprint(plain).exact_hash != fingerprint(tracked).exact_hash
