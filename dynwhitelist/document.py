import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from dynwhitelist.cache import SnapshotCache
from dynwhitelist.errors import SourceFailure

logger = logging.getLogger(__name__)


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class IPStrategy(_Model):
    depth: int = 0
    excluded_ips: list[str] = Field(default_factory=list, alias="excludedIPs")

    def is_default(self) -> bool:
        return self.depth == 0 and not self.excluded_ips


class IPWhiteList(_Model):
    source_range: list[str] = Field(default_factory=list, alias="sourceRange")
    ip_strategy: IPStrategy | None = Field(default=None, alias="ipStrategy")


class TCPIPWhiteList(_Model):
    source_range: list[str] = Field(default_factory=list, alias="sourceRange")


class Middleware(_Model):
    ip_white_list: IPWhiteList = Field(alias="ipWhiteList")


class TCPMiddleware(_Model):
    ip_white_list: TCPIPWhiteList = Field(alias="ipWhiteList")


class HTTPConfiguration(_Model):
    routers: dict[str, Any] = Field(default_factory=dict)
    middlewares: dict[str, Middleware] = Field(default_factory=dict)
    services: dict[str, Any] = Field(default_factory=dict)
    servers_transports: dict[str, Any] = Field(default_factory=dict, alias="serversTransports")


class TCPConfiguration(_Model):
    routers: dict[str, Any] = Field(default_factory=dict)
    middlewares: dict[str, TCPMiddleware] = Field(default_factory=dict)
    services: dict[str, Any] = Field(default_factory=dict)


class TLSConfiguration(_Model):
    stores: dict[str, Any] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)


class UDPConfiguration(_Model):
    routers: dict[str, Any] = Field(default_factory=dict)
    services: dict[str, Any] = Field(default_factory=dict)


class ConfigurationDocument(_Model):
    http: HTTPConfiguration = Field(default_factory=HTTPConfiguration)
    tcp: TCPConfiguration = Field(default_factory=TCPConfiguration)
    tls: TLSConfiguration = Field(default_factory=TLSConfiguration)
    udp: UDPConfiguration = Field(default_factory=UDPConfiguration)

    def to_json(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")

    def source_range(self, name: str) -> list[str] | None:
        middleware = self.http.middlewares.get(name)
        if middleware is None:
            return None
        return list(middleware.ip_white_list.source_range)


@dataclass(frozen=True)
class SourceResult:
    key: str
    target: str
    addresses: tuple[str, ...] | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.addresses is not None


def resolve_sources(
    results: Iterable[SourceResult],
    cache: SnapshotCache,
    provider: str = "",
) -> tuple[dict[str, tuple[str, ...]], list[SourceFailure]]:
    """Fresh result, else cached snapshot, else an empty set; in the given order."""
    resolved: dict[str, tuple[str, ...]] = {}
    failures: list[SourceFailure] = []
    for result in results:
        if result.ok:
            cache.put(result.key, result.addresses)
            resolved[result.key] = result.addresses
            continue
        cached = cache.get(result.key)
        if cached is not None:
            logger.warning("Source %s failed, republishing cached snapshot: %s",
                           result.key, result.error)
        else:
            logger.warning("Source %s failed with no cached snapshot: %s",
                           result.key, result.error)
        resolved[result.key] = cached if cached is not None else ()
        failures.append(SourceFailure(
            provider=provider,
            key=result.key,
            target=result.target,
            error=result.error,
            used_cache=cached is not None,
        ))
    return resolved, failures


def build_document(
    rules: Mapping[str, Sequence[str]],
    strategy: IPStrategy | None = None,
    include_tcp: bool = False,
) -> ConfigurationDocument:
    ip_strategy = None if strategy is None or strategy.is_default() else strategy
    middlewares = {
        name: Middleware(ip_white_list=IPWhiteList(
            source_range=list(addresses), ip_strategy=ip_strategy))
        for name, addresses in rules.items()
    }
    tcp_middlewares = {}
    if include_tcp:
        tcp_middlewares = {
            name: TCPMiddleware(ip_white_list=TCPIPWhiteList(source_range=list(addresses)))
            for name, addresses in rules.items()
        }
    return ConfigurationDocument(
        http=HTTPConfiguration(middlewares=middlewares),
        tcp=TCPConfiguration(middlewares=tcp_middlewares),
    )


def merge_documents(documents: Iterable[ConfigurationDocument]) -> ConfigurationDocument:
    middlewares: dict[str, Middleware] = {}
    tcp_middlewares: dict[str, TCPMiddleware] = {}
    for document in documents:
        middlewares.update(document.http.middlewares)
        tcp_middlewares.update(document.tcp.middlewares)
    return ConfigurationDocument(
        http=HTTPConfiguration(middlewares=middlewares),
        tcp=TCPConfiguration(middlewares=tcp_middlewares),
    )
