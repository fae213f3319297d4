"""Pytest configuration and shared fixtures for the WaterSmart usage tools."""

# pylint: disable=wrong-import-position

import sys
from pathlib import Path
from unittest import mock

SCRIPTS_DIR = Path(__file__).resolve().parent.parent / "scripts"
if str(SCRIPTS_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPTS_DIR))

import pytest
import requests

from portal_config import Credentials, PortalConfig

LOGIN_URL = "https://portal.test/index.php/logout/login?forceEmail=1"
DOWNLOAD_URL = "https://portal.test/index.php/accountPreferences/download"


@pytest.fixture(name="credentials")
def fixture_credentials():
    return Credentials(email="user@example.com", password="hunter2", auth_token="tok123")


@pytest.fixture(name="portal_config")
def fixture_portal_config(credentials, tmp_path):
    """PortalConfig pointing at a fake portal host and a temp output file."""
    return PortalConfig(
        credentials=credentials,
        download_url=DOWNLOAD_URL,
        login_url=LOGIN_URL,
        output_path=tmp_path / "download.csv",
        timeout_seconds=5,
        max_redirects=20,
    )


@pytest.fixture(name="session")
def fixture_session(monkeypatch):
    """Real requests.Session whose request() is a Mock; tests set side_effect."""
    session = requests.Session()
    monkeypatch.setattr(session, "request", mock.Mock())
    return session


@pytest.fixture(autouse=True)
def clear_portal_env(monkeypatch, tmp_path):
    """Keep real credentials and any ./.env out of the tests."""
    for name in (
        "WATERSMART_EMAIL",
        "WATERSMART_PASSWORD",
        "WATERSMART_AUTH_SESSION",
        "WATERSMART_DOWNLOAD_URL",
        "GAS_DATA_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
