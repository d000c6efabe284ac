"""
Listen and target address parsing.

Pure syntax and range validation. Hostnames are kept as-is and resolved
when the relay binds or connects.
"""

import ipaddress
import re
from dataclasses import dataclass

from components.network.exceptions import InvalidAddress, MissingHost

WILDCARD_HOST = "0.0.0.0"

MIN_PORT = 1
MAX_PORT = 65535

_DIGITS = re.compile(r"^[0-9]+$")
_HOSTNAME_LABEL = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")


@dataclass(frozen=True)
class ListenSpec:
    host: str
    port: int

    @property
    def is_wildcard(self) -> bool:
        return self.host == WILDCARD_HOST

    def __str__(self):
        return format_address(self.host, self.port)


@dataclass(frozen=True)
class TargetSpec:
    host: str
    port: int

    def __str__(self):
        return format_address(self.host, self.port)


# ----------------------------------------------------------------------


def format_address(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def parse_listen(spec: str) -> ListenSpec:
    """Parse ``port`` or ``host:port`` into a bind address.

    A bare port binds every interface.
    """
    text = spec.strip()

    if _DIGITS.match(text):
        return ListenSpec(host=WILDCARD_HOST, port=_parse_port(text, spec))

    host, port = _split_host_port(text, spec)
    if not host:
        raise InvalidAddress(f"missing host in listen address {spec!r}")

    return ListenSpec(host=_validate_host(host, spec), port=_parse_port(port, spec))


def parse_target(spec: str) -> TargetSpec:
    """Parse ``host:port`` into a connect address.

    There is no wildcard form: the host segment is mandatory and must not be
    an unspecified address.
    """
    text = spec.strip()

    if _DIGITS.match(text):
        raise MissingHost(f"target address {spec!r} has no host")

    host, port = _split_host_port(text, spec)
    if not host:
        raise MissingHost(f"target address {spec!r} has no host")

    host = _validate_host(host, spec)
    if _is_unspecified(host):
        raise InvalidAddress(f"target address {spec!r} is not a concrete host")

    return TargetSpec(host=host, port=_parse_port(port, spec))


# ----------------------------------------------------------------------


def _split_host_port(text: str, spec: str) -> tuple[str, str]:
    if text.startswith("["):
        end = text.find("]")
        if end == -1 or text[end + 1 : end + 2] != ":":
            raise InvalidAddress(f"malformed bracketed address {spec!r}")
        host = text[1:end]
        try:
            ipaddress.IPv6Address(host)
        except ValueError:
            raise InvalidAddress(f"invalid IPv6 address in {spec!r}") from None
        return host, text[end + 2 :]

    if ":" not in text:
        raise InvalidAddress(f"missing port in address {spec!r}")

    host, _, port = text.rpartition(":")
    if ":" in host:
        # IPv6 literals must be bracketed to be told apart from the port
        raise InvalidAddress(f"IPv6 address must be bracketed in {spec!r}")

    return host, port


def _parse_port(port: str, spec: str) -> int:
    if not port:
        raise InvalidAddress(f"missing port in address {spec!r}")
    if not _DIGITS.match(port):
        raise InvalidAddress(f"non-numeric port {port!r} in address {spec!r}")

    value = int(port)
    if not MIN_PORT <= value <= MAX_PORT:
        raise InvalidAddress(
            f"port {value} out of range {MIN_PORT}-{MAX_PORT} in address {spec!r}"
        )
    return value


def _validate_host(host: str, spec: str) -> str:
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        pass

    name = host[:-1] if host.endswith(".") else host
    if len(name) > 253 or not all(
        _HOSTNAME_LABEL.match(label) for label in name.split(".")
    ):
        raise InvalidAddress(f"invalid host {host!r} in address {spec!r}")

    # all-numeric dotted names are malformed IPv4, not hostnames
    if _DIGITS.match(name.replace(".", "")):
        raise InvalidAddress(f"invalid IPv4 address {host!r} in address {spec!r}")

    return host


def _is_unspecified(host: str) -> bool:
    try:
        return ipaddress.ip_address(host).is_unspecified
    except ValueError:
        return False
