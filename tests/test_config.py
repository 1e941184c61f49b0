import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pydantic
import pytest

from config import Settings, validate_required_settings
from logging_config import setup_logging


def test_display_timezone_defaults_to_utc():
    assert Settings().display_tzinfo is timezone.utc


def test_named_display_timezone():
    tz = Settings(display_timezone="Asia/Jakarta").display_tzinfo

    assert datetime(2024, 5, 1, tzinfo=tz).utcoffset() == timedelta(hours=7)
    assert str(tz) == "Asia/Jakarta"


def test_unknown_display_timezone_is_rejected():
    with pytest.raises(pydantic.ValidationError):
        Settings(display_timezone="Mars/Olympus_Mons")


def test_blank_openai_key_means_unset():
    assert Settings(openai_api_key="  ").openai_api_key is None
    assert Settings(openai_api_key="# fill me").openai_api_key is None


def test_missing_openai_key_is_logged(caplog):
    setup_logging()
    caplog.set_level(logging.WARNING)

    assert validate_required_settings() is True
    assert "OPENAI_API_KEY not set" in caplog.text


def test_package_readme_is_shipped():
    root = Path(__file__).resolve().parent.parent
    match = re.search(r'^readme = "(.+)"$', (root / "pyproject.toml").read_text(), re.MULTILINE)

    assert match and match.group(1) == "README.md"
    assert (root / match.group(1)).is_file()
