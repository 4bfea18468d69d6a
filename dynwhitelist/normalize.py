import ipaddress

from dynwhitelist.errors import MalformedAddress

# Resolvers report a host inside a provider-assigned /64 whose low bits rotate.
IPV6_PREFIX_LENGTH = 64


def decode_body(body: bytes | str) -> str:
    if isinstance(body, str):
        return body
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedAddress(repr(body[:64]), "body is not UTF-8 text") from exc


def validate_ip(text: str) -> str:
    """Return *text* (whitespace-stripped) if it is an IPv4 or IPv6 literal."""
    literal = text.strip()
    try:
        ipaddress.ip_address(literal)
    except ValueError as exc:
        raise MalformedAddress(literal) from exc
    return literal


def ipv6_to_cidr(text: str) -> str:
    literal = validate_ip(text)
    address = ipaddress.ip_address(literal)
    if address.version != 6:
        raise MalformedAddress(literal, "not an IPv6 address")
    network = ipaddress.ip_network(f"{address}/{IPV6_PREFIX_LENGTH}", strict=False)
    return network.with_prefixlen


def split_list(body: bytes | str) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for line in decode_body(body).splitlines():
        entry = line.strip()
        if entry:
            seen.setdefault(entry, None)
    return tuple(seen)
