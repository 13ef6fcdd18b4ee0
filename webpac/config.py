"""Deployment configuration for a WebPAC catalog."""

import json
import os
import re
import tempfile
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator, model_validator

from webpac.profiles import MarkupProfile, PaymentProtocol, get_profile


def split_csv(value: str | list[str] | None) -> list[str]:
    """Split a comma separated list, dropping blanks."""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [v.strip() for v in value if v.strip()]


class LocationRule(BaseModel):
    """Assigns ``category`` to location codes matching ``criteria``.

    ``criteria`` is either a comma separated list of codes or a delimited
    pattern such as ``/^j/i``.
    """

    category: str
    criteria: str

    def matches(self, location_code: str | None) -> bool:
        if not location_code:
            return False
        pattern = _delimited_pattern(self.criteria)
        if pattern is not None:
            return pattern.search(location_code) is not None
        return location_code in split_csv(self.criteria)


def _delimited_pattern(criteria: str) -> re.Pattern | None:
    if not criteria.startswith("/"):
        return None
    end = criteria.rfind("/")
    if end <= 0:
        return None
    flags = 0
    for flag in criteria[end + 1 :]:
        flags |= {"i": re.I, "m": re.M, "s": re.S, "x": re.X}.get(flag, 0)
    return re.compile(criteria[1:end], flags)


def _rules(value):
    # {"adult": "a,b", "juv": "/^j/"} -> ordered rules
    if isinstance(value, dict):
        return [{"category": k, "criteria": v} for k, v in value.items()]
    return value


class ILSConfig(BaseModel):
    """Static lookup tables and connection settings for one catalog."""

    host: str
    http_port: int = 80
    https_port: int = 443
    markup_version: str = "2007"
    payment_protocol: PaymentProtocol | None = None
    timeout: float = 6.0
    verify_ssl: bool = True
    pin_required: bool = True

    available_tokens: list[str] = ["AVAILABLE"]
    suppress_codes: list[str] = ["n", "d", "p"]
    shelving_material_codes: list[str] = ["a", "b", "i", "l", "x"]
    # location code -> location name as shown on holdings pages
    location_codes: dict[str, str] = {}
    age_rules: list[LocationRule] = []
    branch_rules: list[LocationRule] = []
    default_age: str | None = None
    default_branch: str | None = None

    cookie_dir: Path = Path(tempfile.gettempdir()) / "webpac_cookies"
    race_delay: float = 0.3
    settle_delay: float = 0.5

    @field_validator("host")
    @classmethod
    def _host_required(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("host must be configured")
        return value

    @field_validator("available_tokens", "suppress_codes", "shelving_material_codes", mode="before")
    @classmethod
    def _csv(cls, value):
        return split_csv(value)

    @field_validator("age_rules", "branch_rules", mode="before")
    @classmethod
    def _ordered_rules(cls, value):
        return _rules(value)

    @model_validator(mode="after")
    def _known_version(self):
        profile = get_profile(self.markup_version)
        if self.payment_protocol is None:
            self.payment_protocol = profile.payment_protocol
        return self

    @property
    def profile(self) -> MarkupProfile:
        return get_profile(self.markup_version)

    @property
    def secure_url(self) -> str:
        return f"https://{self.host}:{self.https_port}"

    @property
    def insecure_url(self) -> str:
        return f"http://{self.host}:{self.http_port}"

    def classify_location(self, location_code: str | None) -> tuple[str | None, str | None]:
        """Return the (age, branch) categories for a location code.

        Rules are tried in order and the first match wins.
        """
        age = next(
            (rule.category for rule in self.age_rules if rule.matches(location_code)),
            self.default_age,
        )
        branch = next(
            (rule.category for rule in self.branch_rules if rule.matches(location_code)),
            self.default_branch,
        )
        return age, branch

    @classmethod
    def from_env(cls, **overrides) -> "ILSConfig":
        """Build a config from ``WEBPAC_*`` environment variables (and ``.env``).

        ``WEBPAC_TABLES`` may name a JSON file holding the lookup tables
        (``location_codes``, ``age_rules``, ``branch_rules``...).
        """
        load_dotenv()

        values: dict = {}
        tables = os.getenv("WEBPAC_TABLES")
        if tables:
            values.update(json.loads(Path(tables).read_text()))

        env_fields = {
            "host": "WEBPAC_HOST",
            "http_port": "WEBPAC_HTTP_PORT",
            "https_port": "WEBPAC_HTTPS_PORT",
            "markup_version": "WEBPAC_MARKUP_VERSION",
            "payment_protocol": "WEBPAC_PAYMENT_PROTOCOL",
            "timeout": "WEBPAC_TIMEOUT",
            "verify_ssl": "WEBPAC_VERIFY_SSL",
            "pin_required": "WEBPAC_PIN_REQUIRED",
            "available_tokens": "WEBPAC_AVAILABLE_TOKENS",
            "suppress_codes": "WEBPAC_SUPPRESS_CODES",
            "default_age": "WEBPAC_DEFAULT_AGE",
            "default_branch": "WEBPAC_DEFAULT_BRANCH",
            "cookie_dir": "WEBPAC_COOKIE_DIR",
        }
        for name, var in env_fields.items():
            value = os.getenv(var)
            if value is not None and value != "":
                values[name] = value

        values.update(overrides)
        if not values.get("host"):
            raise ValueError("WEBPAC_HOST must be set")
        return cls(**values)
