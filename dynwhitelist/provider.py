import abc
import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from dynwhitelist.cache import SnapshotCache
from dynwhitelist.config import ListConfig, PublicIPConfig, parse_duration
from dynwhitelist.document import (
    ConfigurationDocument,
    IPStrategy,
    SourceResult,
    build_document,
    resolve_sources,
)
from dynwhitelist.errors import (
    InvalidConfiguration,
    MalformedAddress,
    SourceFailure,
    TransportError,
)
from dynwhitelist.fetcher import fetch, parse_target, validate_target
from dynwhitelist.normalize import decode_body, ipv6_to_cidr, split_list, validate_ip
from dynwhitelist.scheduler import PollingScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceDescriptor:
    key: str
    target: str
    normalize: Callable[[bytes], tuple[str, ...]]


class Provider(abc.ABC):
    """Polls its sources once per cycle and publishes one complete document."""

    def __init__(self, config, name: str, *, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self.name = name
        self.transport = transport
        self.cache = SnapshotCache()
        self.poll_interval: float | None = None
        self.scheduler: PollingScheduler | None = None
        self._errors: asyncio.Queue | None = None

    def initialize(self) -> None:
        interval = parse_duration(self.config.poll_interval)
        if interval <= 0:
            raise InvalidConfiguration("poll interval must be greater than 0")
        self.validate()
        self.poll_interval = interval

    def start(self, output: asyncio.Queue, errors: asyncio.Queue | None = None) -> None:
        if self.poll_interval is None:
            raise RuntimeError(f"Provider {self.name} must be initialized before start")
        if self.scheduler is not None:
            raise RuntimeError(f"Provider {self.name} already started")
        self._errors = errors
        self.scheduler = PollingScheduler(self.poll_interval, self.cycle, name=self.name)
        self.scheduler.start(output)

    def stop(self) -> None:
        if self.scheduler is not None:
            self.scheduler.stop()

    async def aclose(self, timeout: float | None = None) -> None:
        if self.scheduler is not None:
            await self.scheduler.aclose(timeout)

    async def cycle(self) -> ConfigurationDocument:
        results = [await self._poll(source) for source in self.sources()]
        resolved, failures = resolve_sources(results, self.cache, provider=self.name)
        for failure in failures:
            self._report(failure)
        return self.build(resolved)

    async def _poll(self, source: SourceDescriptor) -> SourceResult:
        try:
            body = await fetch(source.target, transport=self.transport)
            addresses = source.normalize(body)
        except (TransportError, MalformedAddress) as exc:
            return SourceResult(source.key, source.target, error=exc)
        return SourceResult(source.key, source.target, addresses=addresses)

    def _report(self, failure: SourceFailure) -> None:
        if self._errors is None:
            return
        try:
            self._errors.put_nowait(failure)
        except asyncio.QueueFull:
            logger.warning("Error queue full, dropping failure report for %s/%s",
                           failure.provider, failure.key)

    @abc.abstractmethod
    def validate(self) -> None:
        ...

    @abc.abstractmethod
    def sources(self) -> list[SourceDescriptor]:
        ...

    @abc.abstractmethod
    def build(self, resolved: dict[str, tuple[str, ...]]) -> ConfigurationDocument:
        ...


def _resolve_ipv4(body: bytes) -> tuple[str, ...]:
    return (validate_ip(decode_body(body)),)


def _resolve_ipv6(body: bytes) -> tuple[str, ...]:
    return (ipv6_to_cidr(decode_body(body)),)


class PublicIPProvider(Provider):
    config: PublicIPConfig

    def __init__(self, config: PublicIPConfig, name: str = "public_ip", **kwargs):
        super().__init__(config, name, **kwargs)

    def validate(self) -> None:
        validate_target(self.config.ipv4_resolver)
        if self.config.whitelist_ipv6:
            validate_target(self.config.ipv6_resolver)
        if self.config.ip_strategy.depth < 0:
            raise InvalidConfiguration("ip strategy depth must not be negative")
        if not self.config.rule_name:
            raise InvalidConfiguration("rule name must not be empty")

    def sources(self) -> list[SourceDescriptor]:
        sources = [SourceDescriptor("ipv4", self.config.ipv4_resolver, _resolve_ipv4)]
        if self.config.whitelist_ipv6:
            sources.append(SourceDescriptor("ipv6", self.config.ipv6_resolver, _resolve_ipv6))
        return sources

    def strategy(self) -> IPStrategy:
        return IPStrategy(
            depth=self.config.ip_strategy.depth,
            excluded_ips=list(self.config.ip_strategy.excluded_ips),
        )

    def build(self, resolved: dict[str, tuple[str, ...]]) -> ConfigurationDocument:
        source_range = [address for addresses in resolved.values() for address in addresses]
        return build_document({self.config.rule_name: source_range}, self.strategy())


class ListProvider(Provider):
    config: ListConfig

    def __init__(self, config: ListConfig, name: str = "lists", **kwargs):
        super().__init__(config, name, **kwargs)

    def target(self, identifier: str) -> str:
        if parse_target(identifier).scheme:
            return identifier
        return self.config.base_url.rstrip("/") + "/" + identifier.lstrip("/")

    def validate(self) -> None:
        if not self.config.lists:
            raise InvalidConfiguration("at least one list must be configured")
        for key, identifier in self.config.lists.items():
            if not key:
                raise InvalidConfiguration("list key must not be empty")
            validate_target(self.target(identifier))

    def sources(self) -> list[SourceDescriptor]:
        return [
            SourceDescriptor(key, self.target(identifier), split_list)
            for key, identifier in self.config.lists.items()
        ]

    def build(self, resolved: dict[str, tuple[str, ...]]) -> ConfigurationDocument:
        return build_document(resolved, include_tcp=True)
