"""Translate port declarations between compose, firewall and router formats.

Three formats are involved:

* compose ``ports:`` entries (``"27015:27015/udp"``, ``"8080:80"``, ``25565``
  or long-syntax mappings),
* the firewall rule string, ``|``-separated entries of ``N``, ``N/proto``,
  ``A:B`` or ``A:B/proto``,
* router forwarding lines (``"27015 udp"``), one per port and protocol.

Every function here is pure and total: malformed input never raises.
"""
from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from pathlib import PurePath

PROTOCOLS = ("tcp", "udp")
MAX_PORT = 65535

_FIREWALL_ENTRY = re.compile(r"^\d+(?::\d+)?/(?:tcp|udp)$")
_HOST_CONTAINER = re.compile(r"^(\d+):(\d+)$")
_BARE_PORT = re.compile(r"^\d+$")
_RULE_ENTRY = re.compile(r"^(\d+)(?::(\d+))?(?:/(tcp|udp))?$")

BLUEPRINT_SUFFIXES = (
    ".bp",
    ".docker-compose.yml",
    ".docker-compose.yaml",
    ".yaml",
    ".yml",
)


def compose_to_firewall_ports(spec: Mapping[str, object] | None) -> str:
    """Return the firewall rule string for a compose document or service.

    *spec* may be a whole compose document (with ``services``) or a single
    service mapping. Returns ``""`` when nothing usable is declared.
    """
    if not isinstance(spec, Mapping):
        return ""
    services = spec.get("services")
    if isinstance(services, Mapping):
        candidates: Iterable[object] = services.values()
    else:
        candidates = (spec,)

    entries: list[str] = []
    for service in candidates:
        if not isinstance(service, Mapping):
            continue
        ports = service.get("ports")
        if not isinstance(ports, list):
            continue
        for raw in ports:
            entry = _firewall_entry(raw)
            if entry and entry not in entries:
                entries.append(entry)
    return "|".join(entries)


def _firewall_entry(raw: object) -> str | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return str(raw) if 0 < raw <= MAX_PORT else None
    if isinstance(raw, Mapping):
        published = raw.get("published")
        if isinstance(published, bool) or not isinstance(published, (int, str)):
            return None
        published_text = str(published).strip()
        protocol = str(raw.get("protocol") or "tcp").lower()
        if not _BARE_PORT.match(published_text) or protocol not in PROTOCOLS:
            return None
        return f"{published_text}/{protocol}"
    if not isinstance(raw, str):
        return None

    text = raw.strip().strip("'\"")
    if _FIREWALL_ENTRY.match(text):
        return text
    pair = _HOST_CONTAINER.match(text)
    if pair:
        return pair.group(1)
    if _BARE_PORT.match(text):
        return text
    return None


def firewall_to_router_ports(rule: str | None) -> list[str] | None:
    """Expand a firewall rule string into ``"<port> <protocol>"`` lines.

    Returns ``[]`` for empty input and ``None`` when any entry is malformed.
    """
    expanded = _expand_rule(rule)
    if expanded is None:
        return None
    return [f"{port} {protocol}" for port, protocol in expanded]


def firewall_to_container_ports(rule: str | None) -> list[str] | None:
    """Expand a firewall rule string into ``-p`` publish arguments."""
    expanded = _expand_rule(rule)
    if expanded is None:
        return None
    arguments: list[str] = []
    for port, protocol in expanded:
        arguments.extend(["-p", f"{port}:{port}/{protocol}"])
    return arguments


def _expand_rule(rule: str | None) -> list[tuple[int, str]] | None:
    if rule is None or not rule.strip():
        return []
    expanded: list[tuple[int, str]] = []
    for segment in rule.split("|"):
        entry = segment.strip()
        if not entry:
            continue
        match = _RULE_ENTRY.match(entry)
        if match is None:
            return None
        start = int(match.group(1))
        end = int(match.group(2)) if match.group(2) else start
        if start < 1 or end > MAX_PORT or start > end:
            return None
        protocols = (match.group(3),) if match.group(3) else PROTOCOLS
        for port in range(start, end + 1):
            for protocol in protocols:
                expanded.append((port, protocol))
    return expanded


def extract_blueprint_name(path: str | PurePath) -> str:
    """Return the blueprint name for a blueprint file name or path."""
    name = PurePath(path).name
    for suffix in BLUEPRINT_SUFFIXES:
        if name.endswith(suffix):
            name = name[: -len(suffix)]
    return name


__all__ = [
    "compose_to_firewall_ports",
    "extract_blueprint_name",
    "firewall_to_container_ports",
    "firewall_to_router_ports",
]
