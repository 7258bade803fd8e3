#!/usr/bin/env python3
from __future__ import annotations

import os
import re
import uuid
import logging
import datetime
import dataclasses
from typing import Iterable, List, Optional, Tuple

from session_blocker.core.state import ordered_unique

APP_PREFIX = "app:"

DEFAULT_BLOCKED_DOMAINS = [
    "facebook.com", "www.facebook.com",
    "youtube.com", "www.youtube.com",
    "discord.com", "www.discord.com",
]
DEFAULT_BLOCKED_APPS = ["Discord"]


@dataclasses.dataclass(frozen=True)
class BlockRule:
    """One persisted rule of a focus profile."""
    type: str
    value: str
    profile_id: Optional[str] = None
    id: str = dataclasses.field(default_factory=lambda: str(uuid.uuid4()))
    created_at: str = dataclasses.field(
        default_factory=lambda: datetime.datetime.now().astimezone().isoformat(timespec="seconds"))

    def __post_init__(self):
        if self.type not in ("domain", "app"):
            raise ValueError(f"Unknown block rule type: {self.type!r}")


def split_rules(rules: Iterable[BlockRule]) -> Tuple[List[str], List[str]]:
    """Turn profile rules into the (domains, apps) pair a session starts with."""
    rules = list(rules)
    domains = ordered_unique(rule.value for rule in rules if rule.type == "domain")
    apps = ordered_unique(rule.value for rule in rules if rule.type == "app")
    return domains, apps


def normalize_domain(domain: str) -> str:
    """Lowercase and strip scheme, path, port and trailing dot."""
    d = domain.strip().lower()
    d = re.sub(r"^([a-z][a-z0-9+.-]*://)", "", d)
    d = d.split("/")[0].split("?", 1)[0].split("#")[0]
    if ":" in d:
        d = d.split(":", 1)[0]
    return d.rstrip(".")


class BlockListHandler:
    def __init__(self, block_list_path: str):
        self.block_list_path = block_list_path

    def read_rules(self) -> List[BlockRule]:
        """Read the block list, creating the default one first if it is missing."""
        if not os.path.exists(self.block_list_path):
            self.create_default_block_list()

        rules = []
        with open(self.block_list_path, "r", encoding="utf-8") as f:
            logging.info(f"Reading block list from {self.block_list_path}")
            for line in f:
                line = line.split("#", 1)[0].strip()
                if not line:
                    continue
                if line.lower().startswith(APP_PREFIX):
                    app = line[len(APP_PREFIX):].strip()
                    if app:
                        rules.append(BlockRule("app", app))
                    continue
                domain = normalize_domain(line)
                if domain:
                    rules.append(BlockRule("domain", domain))
        logging.info(f"Found {len(rules)} rules in block list")
        return rules

    def read_block_list(self) -> Tuple[List[str], List[str]]:
        return split_rules(self.read_rules())

    def create_default_block_list(self) -> None:
        lines = [
            "# Session blocker list - add or remove entries as needed",
            "# One domain per line, without 'https://'. Prefix applications with 'app:'",
        ]
        lines.extend(DEFAULT_BLOCKED_DOMAINS)
        lines.extend(f"{APP_PREFIX}{app}" for app in DEFAULT_BLOCKED_APPS)

        directory = os.path.dirname(self.block_list_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.block_list_path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
        logging.info(f"Created default block list at {self.block_list_path}")
