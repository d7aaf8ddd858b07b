"""IP allow-list matching for API keys."""

import ipaddress
import logging
from collections.abc import Iterable

from src.core.metrics import ip_whitelist_config_errors_total

logger = logging.getLogger(__name__)

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def parse_ip(value: str) -> IPAddress | None:
    """Parse a caller address, unwrapping IPv4-mapped IPv6 addresses.

    Returns None if the value is not an IP address.
    """
    try:
        address = ipaddress.ip_address(value.strip())
    except ValueError:
        return None
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        return address.ipv4_mapped
    return address


def is_valid_whitelist_entry(entry: str) -> bool:
    """Check that an entry is a single address or a CIDR network."""
    try:
        ipaddress.ip_network(entry.strip(), strict=False)
    except ValueError:
        return False
    return True


def is_ip_allowed(caller_ip: str, entries: Iterable[str]) -> bool:
    """Evaluate a caller address against a key's allow-list.

    An empty allow-list permits every origin. Otherwise the caller must
    exactly match an entry or fall within one of its CIDR ranges. Malformed
    stored entries never match and are counted as configuration errors.

    Args:
        caller_ip: The caller's network address as seen by the transport
        entries: Stored whitelist entries (addresses or CIDR ranges)

    Returns:
        True if the caller is permitted
    """
    entries = list(entries)
    if not entries:
        return True

    caller = parse_ip(caller_ip)
    normalized_caller = caller_ip.strip().lower()

    for entry in entries:
        if entry.strip().lower() == normalized_caller:
            return True
        try:
            network = ipaddress.ip_network(entry.strip(), strict=False)
        except ValueError:
            ip_whitelist_config_errors_total.inc()
            logger.warning(
                "Ignoring malformed IP whitelist entry",
                extra={"entry": entry},
            )
            continue
        if caller is not None and caller.version == network.version and caller in network:
            return True

    return False
