"""Tests for deployment configuration."""

import json

import pytest
from pydantic import ValidationError

from webpac.config import ILSConfig, LocationRule, split_csv
from webpac.profiles import PaymentProtocol, get_profile


def test_split_csv():
    assert split_csv("a, b,,c ") == ["a", "b", "c"]
    assert split_csv(["x", " "]) == ["x"]
    assert split_csv(None) == []


class TestLocationRules:
    """Tests for age and branch classification."""

    def test_code_list(self):
        rule = LocationRule(category="adult", criteria="ma, mb")

        assert rule.matches("mb") is True
        assert rule.matches("m") is False
        assert rule.matches(None) is False

    def test_delimited_pattern(self):
        rule = LocationRule(category="juvenile", criteria="/^J/i")

        assert rule.matches("jfic") is True
        assert rule.matches("afic") is False

    def test_first_match_wins(self):
        config = ILSConfig(
            host="catalog.example.org",
            age_rules=[
                {"category": "teen", "criteria": "/^y/"},
                {"category": "juvenile", "criteria": "/^[jy]/"},
            ],
            branch_rules={"east": "ye,je", "west": "/w$/"},
            default_age="adult",
            default_branch="main",
        )

        assert config.classify_location("ye") == ("teen", "east")
        assert config.classify_location("jw") == ("juvenile", "west")
        assert config.classify_location("zz") == ("adult", "main")
        assert config.classify_location(None) == ("adult", "main")


class TestILSConfig:
    """Tests for ILSConfig."""

    def test_payment_protocol_follows_release(self):
        assert ILSConfig(host="h", markup_version="2006").payment_protocol == PaymentProtocol.CHECKSUM
        assert ILSConfig(host="h", markup_version="2009").payment_protocol == PaymentProtocol.SESSION_KEY

    def test_payment_protocol_override(self):
        config = ILSConfig(host="h", markup_version="2009", payment_protocol="checksum")

        assert config.payment_protocol == PaymentProtocol.CHECKSUM
        assert config.profile is get_profile("2009")

    def test_unknown_release(self):
        with pytest.raises(ValidationError):
            ILSConfig(host="h", markup_version="2012")

        with pytest.raises(ValueError):
            get_profile("2012")

    def test_blank_host(self):
        with pytest.raises(ValidationError):
            ILSConfig(host="  ")

    def test_base_urls(self):
        config = ILSConfig(host="catalog.example.org/", http_port=8080)

        assert config.secure_url == "https://catalog.example.org:443"
        assert config.insecure_url == "http://catalog.example.org:8080"

    def test_csv_fields(self):
        config = ILSConfig(host="h", available_tokens="AVAILABLE, CHECK SHELF", suppress_codes="n")

        assert config.available_tokens == ["AVAILABLE", "CHECK SHELF"]
        assert config.suppress_codes == ["n"]


class TestFromEnv:
    """Tests for ILSConfig.from_env."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        for var in ("WEBPAC_HOST", "WEBPAC_TABLES", "WEBPAC_MARKUP_VERSION", "WEBPAC_PIN_REQUIRED"):
            monkeypatch.delenv(var, raising=False)

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("WEBPAC_HOST", "catalog.example.org")
        monkeypatch.setenv("WEBPAC_MARKUP_VERSION", "2006")
        monkeypatch.setenv("WEBPAC_PIN_REQUIRED", "false")

        config = ILSConfig.from_env()

        assert config.host == "catalog.example.org"
        assert config.markup_version == "2006"
        assert config.pin_required is False

    def test_reads_tables_file(self, monkeypatch, tmp_path):
        tables = tmp_path / "tables.json"
        tables.write_text(
            json.dumps(
                {
                    "host": "from-tables.example.org",
                    "location_codes": {"ma": "Main Adult"},
                    "age_rules": {"adult": "ma"},
                }
            )
        )
        monkeypatch.setenv("WEBPAC_TABLES", str(tables))

        config = ILSConfig.from_env(default_branch="main")

        assert config.host == "from-tables.example.org"
        assert config.location_codes == {"ma": "Main Adult"}
        assert config.classify_location("ma") == ("adult", "main")

    def test_missing_host(self):
        with pytest.raises(ValueError, match="WEBPAC_HOST"):
            ILSConfig.from_env()
