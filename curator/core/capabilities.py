"""
Capability names and helpers for checking them on a principal.

Capabilities are hierarchical strings: holding ``KNOWLEDGE_KNUPDATE_KNDELETE``
implies ``KNOWLEDGE_KNUPDATE`` and ``KNOWLEDGE``, and ``BYPASS`` implies all
of them.
"""
from typing import Iterable

from curator.schemas.principal import Principal

BYPASS = "BYPASS"

KNOWLEDGE = "KNOWLEDGE"
KNOWLEDGE_KNUPDATE = "KNOWLEDGE_KNUPDATE"
KNOWLEDGE_KNUPDATE_KNDELETE = "KNOWLEDGE_KNUPDATE_KNDELETE"
KNOWLEDGE_KNASKIMPORT = "KNOWLEDGE_KNASKIMPORT"

SETTINGS = "SETTINGS"
SETTINGS_SETLABELS = "SETTINGS_SETLABELS"
SETTINGS_SETACCESSES = "SETTINGS_SETACCESSES"

# Held by the task runtime (workers) reporting progress
CONNECTORAPI = "CONNECTORAPI"

MEMBER_ACCESS_RIGHT_ADMIN = "admin"


def has_capability(principal: Principal, capability: str) -> bool:
    """Return True if the principal holds the capability or one of its parents."""
    for held in principal.capabilities:
        if held == BYPASS or held == capability:
            return True
        if held.startswith(f"{capability}_"):
            return True
    return False


def has_any_capability(principal: Principal, capabilities: Iterable[str]) -> bool:
    return any(has_capability(principal, capability) for capability in capabilities)
