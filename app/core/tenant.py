"""Dealership (org) identifiers: validation, slugs and host-based resolution."""

from __future__ import annotations

import re


ORG_ID_PATTERN = re.compile(r"[a-z0-9][a-z0-9_-]{1,63}")
_SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")


def normalize_org_id(value: str) -> str:
    """Lowercase and validate a dealership id such as ``main-street-motors``."""
    org_id = (value or "").strip().lower()
    if not ORG_ID_PATTERN.fullmatch(org_id):
        raise ValueError(
            "org_id must be 2-64 characters of lowercase letters, digits, '-' or '_', "
            "starting with a letter or digit"
        )
    return org_id


def org_slug(name: str) -> str:
    """``"Main Street Motors, LLC"`` -> ``"main-street-motors-llc"``."""
    return _SLUG_SEPARATORS.sub("-", name.strip().lower()).strip("-")


def org_id_from_host(host: str, allowed_hosts: list[str] | None = None) -> str | None:
    """Read the dealership from the first label of ``dealer.example.com``.

    Bare hosts, IPs and hosts outside ``allowed_hosts`` (when configured) carry no tenant.
    """
    hostname = host.split(":", 1)[0].strip().lower()
    if allowed_hosts and hostname not in allowed_hosts:
        return None
    labels = hostname.split(".")
    if len(labels) < 3 or labels[-1].isdigit():
        return None
    try:
        return normalize_org_id(labels[0])
    except ValueError:
        return None
