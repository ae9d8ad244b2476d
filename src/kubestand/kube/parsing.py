# src/kubestand/kube/parsing.py
"""
Extraction of the few values we read back from collaborator output.

Everything else the collaborators print is treated as opaque text.
"""
from __future__ import annotations

import json
import re
from typing import Dict, Optional

# `kubeadm token create --print-join-command`
#   kubeadm join 10.0.0.5:6443 --token abcdef.0123456789abcdef \
#       --discovery-token-ca-cert-hash sha256:<64 hex>
JOIN_TOKEN_PATTERN = r"[a-z0-9]{6}\.[a-z0-9]{16}"
JOIN_COMMAND_PATTERN = (
    r"kubeadm join \S+ --token " + JOIN_TOKEN_PATTERN
    + r" --discovery-token-ca-cert-hash sha256:[a-f0-9]{64}"
)

IPV4_PATTERN = r"(?:\d{1,3}\.){3}\d{1,3}"


class ParseError(ValueError):
    pass


def unwrap(text: str) -> str:
    """Join shell line continuations (`\\` + newline) into single lines."""
    return re.sub(r"[ \t]*\\[ \t]*\r?\n[ \t]*", " ", text or "")


def extract(pattern: str, text: str) -> str:
    """
    Return exactly the substring matched by `pattern`.

    A named group `value` takes precedence over the whole match.
    """
    m = re.search(pattern, unwrap(text))
    if not m:
        raise ParseError(f"no match for /{pattern}/")
    if "value" in m.re.groupindex:
        return m.group("value")
    return m.group(0)


def extract_join_command(text: str) -> str:
    return extract(JOIN_COMMAND_PATTERN, text)


def _json(text: str, what: str) -> dict:
    try:
        data = json.loads(text or "{}")
    except json.JSONDecodeError as e:
        raise ParseError(f"unreadable {what} output: {e}") from e
    if not isinstance(data, dict):
        raise ParseError(f"unexpected {what} output")
    return data


def multipass_address(info_json: str, name: str) -> Optional[str]:
    """
    First IPv4 of `multipass info <name> --format json`, or None while
    the instance has no address yet.
    """
    data = _json(info_json, "multipass info")
    info = data.get("info", {}).get(name)
    if info is None:
        raise ParseError(f"instance '{name}' missing from multipass info output")
    ips = info.get("ipv4") or []
    if isinstance(ips, str):
        ips = [ips]
    valid = [ip for ip in ips if ip and re.fullmatch(IPV4_PATTERN, ip)]
    return valid[0] if valid else None


def multipass_instances(list_json: str) -> Dict[str, str]:
    """Map of instance name to state from `multipass list --format json`."""
    data = _json(list_json, "multipass list")
    return {i["name"]: i.get("state", "Unknown") for i in data.get("list", [])}
