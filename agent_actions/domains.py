"""Domain allowlisting and normalization for action metadata."""

import re
from typing import Iterable, List, Optional
from urllib.parse import urlsplit

from .config import get_settings
from .logging_config import get_logger
from .references import ACTION_DELIMITER

logger = get_logger(__name__)

_HOSTNAME_RE = re.compile(
    r"^(?=.{1,253}$)(?!-)[a-z0-9-]{1,63}(?<!-)(\.(?!-)[a-z0-9-]{1,63}(?<!-))*$"
)


def extract_hostname(domain: Optional[str]) -> str:
    """Reduce a domain or URL to its lowercase hostname.

    ``https://API.example.com:443/v1`` becomes ``api.example.com``.
    Returns an empty string for empty or unparseable input.
    """
    if not domain or not isinstance(domain, str):
        return ""
    value = domain.strip()
    if not value:
        return ""
    if "://" not in value:
        value = "//" + value
    try:
        hostname = urlsplit(value).hostname or ""
    except ValueError:
        return ""
    return hostname.rstrip(".").lower()


class DomainValidator:
    """Allowlist policy for action domains.

    An empty allowlist allows every domain. Entries match exactly, or as
    wildcards of the form ``*.example.com`` (subdomains only).
    """

    def __init__(self, allowed_domains: Optional[Iterable[str]] = None):
        if allowed_domains is None:
            allowed_domains = get_settings().allowed_domains
        self._allowed: List[str] = [
            entry.strip().lower() for entry in allowed_domains if entry and entry.strip()
        ]

    @property
    def allowed_domains(self) -> List[str]:
        return list(self._allowed)

    def is_allowed(self, domain: Optional[str]) -> bool:
        """Check whether actions may target ``domain``."""
        if not self._allowed:
            return True

        hostname = extract_hostname(domain)
        if not hostname:
            return False

        for pattern in self._allowed:
            if pattern.startswith("*."):
                if hostname.endswith(pattern[1:]):
                    return True
            elif hostname == extract_hostname(pattern):
                return True

        logger.info("Domain rejected by allowlist", extra={"domain": hostname})
        return False


class DomainParser:
    """Normalizes action domains into the form used in references."""

    def parse(self, domain: Optional[str], strict: bool = True) -> str:
        """Normalize ``domain``.

        Args:
            domain: Raw domain or URL from action metadata
            strict: Reject hostnames that are not valid DNS names

        Returns:
            Normalized hostname, or an empty string to signal rejection
        """
        hostname = extract_hostname(domain)
        if not hostname or ACTION_DELIMITER in hostname:
            return ""
        if strict and not _HOSTNAME_RE.match(hostname):
            return ""
        return hostname
