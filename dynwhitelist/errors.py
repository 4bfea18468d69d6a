from dataclasses import dataclass


class ProviderError(Exception):
    pass


class InvalidConfiguration(ProviderError, ValueError):
    pass


class TransportError(ProviderError):
    def __init__(self, target: str, message: str, status_code: int | None = None):
        super().__init__(f"{target}: {message}")
        self.target = target
        self.status_code = status_code


class MalformedAddress(ProviderError, ValueError):
    def __init__(self, value: str, message: str = "not a valid IP address"):
        super().__init__(f"{message}: {value!r}")
        self.value = value


@dataclass(frozen=True)
class SourceFailure:
    provider: str
    key: str
    target: str
    error: Exception
    used_cache: bool
