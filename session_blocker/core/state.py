#!/usr/bin/env python3
from __future__ import annotations

import dataclasses
import threading
from typing import List, Optional, Tuple


@dataclasses.dataclass(frozen=True)
class BlockerStatus:
    """Immutable snapshot handed to callers; mutating it cannot touch the live state."""
    active: bool
    blocked_domains: Tuple[str, ...]
    blocked_apps: Tuple[str, ...]
    detected_apps: Tuple[str, ...]
    privilege_ready: bool
    last_error: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "active": self.active,
            "blockedDomains": list(self.blocked_domains),
            "blockedApps": list(self.blocked_apps),
            "detectedApps": list(self.detected_apps),
            "privilegeReady": self.privilege_ready,
            "lastError": self.last_error,
        }


@dataclasses.dataclass
class BlockerState:
    """Process-lifetime state owned by the session controller.

    When `active` is False the three lists are empty and no monitor runs.
    """
    active: bool = False
    blocked_domains: List[str] = dataclasses.field(default_factory=list)
    blocked_apps: List[str] = dataclasses.field(default_factory=list)
    detected_apps: List[str] = dataclasses.field(default_factory=list)
    privilege_ready: bool = False
    monitor_handle: Optional[threading.Thread] = None
    last_error: Optional[str] = None

    def reset(self) -> None:
        self.active = False
        self.blocked_domains = []
        self.blocked_apps = []
        self.detected_apps = []
        self.monitor_handle = None

    def snapshot(self) -> BlockerStatus:
        return BlockerStatus(
            active=self.active,
            blocked_domains=tuple(self.blocked_domains),
            blocked_apps=tuple(self.blocked_apps),
            detected_apps=tuple(self.detected_apps),
            privilege_ready=self.privilege_ready,
            last_error=self.last_error,
        )


def ordered_unique(values) -> List[str]:
    """Strip blanks and duplicates while keeping first-seen order."""
    seen = set()
    result = []
    for value in values or []:
        value = (value or "").strip()
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result
