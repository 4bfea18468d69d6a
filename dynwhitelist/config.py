import re
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from dynwhitelist.errors import InvalidConfiguration

DEFAULT_IPV4_RESOLVER = "https://api.ipify.org?format=text"
DEFAULT_IPV6_RESOLVER = "https://api64.ipify.org?format=text"
DEFAULT_LIST_BASE_URL = "https://wl.portbrella.com/"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(text: str) -> float:
    """Parse a duration such as ``300s``, ``1m30s`` or ``1.5h`` into seconds."""
    value = text.strip()
    sign = 1.0
    if value[:1] in ("+", "-"):
        sign = -1.0 if value[0] == "-" else 1.0
        value = value[1:]
    if value == "0":
        return 0.0
    if not value:
        raise InvalidConfiguration(f"Invalid duration: {text!r}")
    total = 0.0
    position = 0
    while position < len(value):
        match = _DURATION_PART.match(value, position)
        if match is None:
            raise InvalidConfiguration(f"Invalid duration: {text!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    return sign * total


class IPStrategyConfig(BaseModel):
    depth: int = 0
    excluded_ips: list[str] = Field(default_factory=list)


class PublicIPConfig(BaseModel):
    poll_interval: str = "300s"
    ipv4_resolver: str = DEFAULT_IPV4_RESOLVER
    ipv6_resolver: str = DEFAULT_IPV6_RESOLVER
    whitelist_ipv6: bool = True
    ip_strategy: IPStrategyConfig = Field(default_factory=IPStrategyConfig)
    rule_name: str = "public_ipwhitelist"


class ListConfig(BaseModel):
    poll_interval: str = "120s"
    lists: dict[str, str] = Field(default_factory=dict)
    base_url: str = DEFAULT_LIST_BASE_URL


class Settings(BaseSettings):
    listen_host: str = "0.0.0.0"
    listen_port: int = 8080
    log_level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    api_token: str | None = None

    public_ip_enabled: bool = True
    poll_interval: str = "300s"
    ipv4_resolver: str = DEFAULT_IPV4_RESOLVER
    ipv6_resolver: str = DEFAULT_IPV6_RESOLVER
    whitelist_ipv6: bool = True
    ip_strategy_depth: int = 0
    ip_strategy_excluded_ips: list[str] = Field(default_factory=list)
    rule_name: str = "public_ipwhitelist"

    lists_poll_interval: str = "120s"
    lists: dict[str, str] = Field(default_factory=dict)
    list_base_url: str = DEFAULT_LIST_BASE_URL

    def public_ip_config(self) -> PublicIPConfig:
        return PublicIPConfig(
            poll_interval=self.poll_interval,
            ipv4_resolver=self.ipv4_resolver,
            ipv6_resolver=self.ipv6_resolver,
            whitelist_ipv6=self.whitelist_ipv6,
            ip_strategy=IPStrategyConfig(
                depth=self.ip_strategy_depth,
                excluded_ips=self.ip_strategy_excluded_ips,
            ),
            rule_name=self.rule_name,
        )

    def list_config(self) -> ListConfig:
        return ListConfig(
            poll_interval=self.lists_poll_interval,
            lists=self.lists,
            base_url=self.list_base_url,
        )


settings = Settings()
