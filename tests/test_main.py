"""Tests for the command-line entry point."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, patch

import main
from faqbot.config import config


def test_parse_args_defaults():
    args = main.parse_args([])

    assert args.seed is None
    assert args.port == 8501
    assert args.address == "localhost"
    assert args.headless is True


def test_seed_flag_defaults_to_bundled_faq_file():
    assert main.parse_args(["--seed"]).seed == config.FAQ_DATA_PATH
    assert main.parse_args(["--seed", "other.json"]).seed == Path("other.json")


def test_build_streamlit_command():
    command = main.build_streamlit_command(port=9000, address="0.0.0.0", headless=False)

    assert command[:4] == [sys.executable, "-m", "streamlit", "run"]
    assert command[4].endswith("app.py")
    assert command[-6:] == [
        "--server.port",
        "9000",
        "--server.address",
        "0.0.0.0",
        "--server.headless",
        "false",
    ]


def test_seed_command_embeds_and_exits(tmp_path):
    faq_file = tmp_path / "faqs.json"
    faq_file.write_text('[["Q?", "A."]]', encoding="utf-8")

    with patch.object(main, "ChatbotPipeline") as mock_pipeline:
        mock_pipeline.return_value.seed_faqs = AsyncMock(return_value=1)

        exit_code = main.main(["--seed", str(faq_file)])

    assert exit_code == 0
    mock_pipeline.return_value.seed_faqs.assert_awaited_once_with([("Q?", "A.")])


def test_seed_command_reports_bad_file(tmp_path):
    faq_file = tmp_path / "faqs.json"
    faq_file.write_text("{broken", encoding="utf-8")

    assert main.main(["--seed", str(faq_file)]) == 1


def test_serve_requires_a_chat_key():
    with (
        patch.object(main.config, "validate", side_effect=ValueError("no keys")),
        patch.object(main, "serve") as mock_serve,
    ):
        assert main.main([]) == 1

    mock_serve.assert_not_called()


def test_serve_launches_streamlit():
    with (
        patch.object(main.config, "validate"),
        patch.object(main.subprocess, "run") as mock_run,
    ):
        mock_run.return_value.returncode = 0

        assert main.main(["--port", "8600"]) == 0

    command = mock_run.call_args.args[0]
    assert "8600" in command
