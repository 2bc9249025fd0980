"""
SSRF gate: reject URLs that point at loopback, link-local, private or
cloud-metadata addresses before any navigation or HTTP request is made.
"""

from __future__ import annotations

import asyncio
import ipaddress
import re
import socket
from typing import Optional, Union
from urllib.parse import urlsplit

import structlog
from pydantic import BaseModel

from searchpilot.config import SecurityConfig
from searchpilot.errors import SecurityRejectedError

logger = structlog.get_logger()

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_BLOCKED_HOSTS: frozenset[str] = frozenset({
    "localhost",
    "127.0.0.1",
    "0.0.0.0",
    "::1",
    "169.254.169.254",
    "metadata.google.internal",
    "metadata.ec2.internal",
})

_ALLOWED_SCHEMES = ("http", "https")

# Dotted, shortened, hex and octal IPv4 forms that inet_aton and browsers accept
_NUMERIC_HOST = re.compile(r"^(0x[0-9a-f]*|[0-9]+)(\.(0x[0-9a-f]*|[0-9]+)){0,3}$", re.IGNORECASE)


class UrlVerdict(BaseModel):
    """Outcome of a policy check."""

    valid: bool
    reason: Optional[str] = None


def _parse_legacy_ipv4(host: str) -> Optional[ipaddress.IPv4Address]:
    """``127.1``, ``2130706433`` or ``0x7f.0.0.1`` all mean 127.0.0.1 to a resolver."""
    if not _NUMERIC_HOST.match(host):
        return None
    try:
        return ipaddress.IPv4Address(socket.inet_aton(host))
    except OSError:
        return None


def _parse_ip(hostname: str) -> Optional[IPAddress]:
    host = hostname.strip("[]")
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return _parse_legacy_ipv4(host)
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _address_reason(ip: IPAddress) -> Optional[str]:
    """Reserved is checked first; 127/8 and 0/8 also count as private to ipaddress."""
    if ip.is_loopback or ip.is_unspecified or ip.is_multicast or ip.is_reserved:
        return "Reserved IP not allowed"
    if ip.is_private or ip.is_link_local:
        return "Private IP not allowed"
    return None


class UrlSecurityGate:
    """Validates candidate URLs against the SSRF policy."""

    def __init__(self, config: Optional[SecurityConfig] = None) -> None:
        self.config = config or SecurityConfig()
        self._blocked = _BLOCKED_HOSTS | {h.lower() for h in self.config.blocked_hosts}

    def validate(self, url: str) -> UrlVerdict:
        """Syntactic check: scheme, blocked hostnames, literal IP ranges. No I/O."""
        try:
            parsed = urlsplit(url)
            hostname = (parsed.hostname or "").lower().rstrip(".")
        except ValueError:
            return UrlVerdict(valid=False, reason="Invalid URL format")

        if not parsed.scheme:
            return UrlVerdict(valid=False, reason="Invalid URL format")
        if parsed.scheme.lower() not in _ALLOWED_SCHEMES:
            return UrlVerdict(valid=False, reason=f"Protocol {parsed.scheme.lower()}: not allowed")
        if not hostname:
            return UrlVerdict(valid=False, reason="Invalid URL format")
        if hostname in self._blocked:
            return UrlVerdict(valid=False, reason=f"Domain {hostname} blocked")

        ip = _parse_ip(hostname)
        if ip is None and _NUMERIC_HOST.match(hostname):
            return UrlVerdict(valid=False, reason="Invalid URL format")
        if ip is not None:
            reason = _address_reason(ip)
            if reason:
                return UrlVerdict(valid=False, reason=reason)
        return UrlVerdict(valid=True)

    async def ensure_allowed(self, url: str) -> None:
        """
        Raise SecurityRejectedError if the URL fails policy.

        With ``resolve_dns`` enabled, every address the hostname resolves to
        must also pass. An unresolvable name is left for the fetch itself to
        report.
        """
        verdict = self.validate(url)
        if not verdict.valid:
            logger.warning("url_rejected", url=url[:200], reason=verdict.reason)
            raise SecurityRejectedError(url, verdict.reason or "rejected")

        if not self.config.resolve_dns:
            return
        hostname = urlsplit(url).hostname or ""
        if _parse_ip(hostname) is not None:
            return
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
        except socket.gaierror as e:
            logger.debug("url_dns_unresolved", host=hostname, error=str(e))
            return
        for info in infos:
            ip = _parse_ip(str(info[4][0]))
            reason = _address_reason(ip) if ip is not None else None
            if reason:
                logger.warning("url_rejected", url=url[:200], reason=reason, resolved=str(ip))
                raise SecurityRejectedError(url, f"{reason} (resolved {hostname})")
