import pytest

from curator.cli import build_parser


def test_force_command_accepts_known_sources() -> None:
    args = build_parser().parse_args(["force", "giphy", "youtube", "--reason", "gif drought"])
    assert args.command == "force"
    assert args.sources == ["giphy", "youtube"]
    assert args.reason == "gif drought"


def test_force_command_rejects_unknown_source() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["force", "myspace"])


def test_command_is_required() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])
