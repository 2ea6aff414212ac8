"""robots.txt parsing and checks of whether a URL may be crawled."""

from __future__ import annotations

import re
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from urllib.parse import unquote, urlsplit

import requests

from remora.page import DEFAULT_TIMEOUT


@dataclass(frozen=True)
class _Rule:
    path: str
    allow: bool
    pattern: re.Pattern | None = None

    @classmethod
    def make(cls, path: str, allow: bool) -> _Rule:
        if "*" in path or path.endswith("$"):
            anchored = path.endswith("$")
            body = path[:-1] if anchored else path
            regex = "^" + ".*".join(re.escape(part) for part in body.split("*"))
            return cls(path, allow, re.compile(regex + ("$" if anchored else "")))
        return cls(path, allow)


@dataclass
class _RobotsData:
    groups: dict[str, list[_Rule]] = field(default_factory=dict)
    sitemaps: list[str] = field(default_factory=list)
    allow_everything: bool = False
    disallow_everything: bool = False

    def _find_group(self, agent: str) -> list[_Rule]:
        agent = agent.lower()
        best: list[_Rule] = []
        best_len = 0
        if "*" in self.groups:
            best, best_len = self.groups["*"], 1
        for name, rules in self.groups.items():
            if name != "*" and agent.startswith(name) and len(name) > best_len:
                best, best_len = rules, len(name)
        return best

    def test_agent(self, path: str, agent: str) -> bool:
        """Report whether agent may fetch path."""
        if self.allow_everything:
            return True
        if self.disallow_everything:
            return False
        match: _Rule | None = None
        match_len = 0
        for rule in self._find_group(agent):
            if rule.pattern is not None:
                if rule.pattern.match(path) and len(rule.path) > match_len:
                    match, match_len = rule, len(rule.path)
            elif rule.path == "/" and match_len == 0:
                match, match_len = rule, 1
            elif path.startswith(rule.path) and len(rule.path) > match_len:
                match, match_len = rule, len(rule.path)
        return True if match is None else match.allow


def _parse(body: bytes) -> _RobotsData:
    data = _RobotsData()
    text = body.decode("utf-8", errors="replace").lstrip("\ufeff")
    agents: list[str] = []
    in_rules = False
    for raw in text.splitlines():
        line = raw.split("#", 1)[0].strip()
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key, value = key.strip().lower(), value.strip()
        if key == "user-agent":
            if in_rules:
                agents, in_rules = [], False
            if value:
                agent = value.lower()
                agents.append(agent)
                data.groups.setdefault(agent, [])
        elif key in ("allow", "disallow"):
            in_rules = True
            if not agents or not value:
                continue
            rule = _Rule.make(value, key == "allow")
            for agent in agents:
                data.groups[agent].append(rule)
        elif key == "sitemap" and value:
            data.sitemaps.append(value)
    return data


def allow_all() -> _RobotsData:
    """Return robots rules that allow everything."""
    return _RobotsData(allow_everything=True)


def robots_from_status(status: int, body: bytes) -> _RobotsData:
    """Interpret a robots.txt response; raise ValueError on an unexpected status."""
    if 200 <= status < 300:
        return _parse(body) if body else allow_all()
    if 400 <= status < 500:
        return allow_all()
    if 500 <= status < 600:
        return _RobotsData(disallow_everything=True)
    raise ValueError(f"Unexpected status: {status}")


def get_robots_txt(host: str, session: requests.Session | None = None) -> _RobotsData:
    """Download and parse https://host/robots.txt."""
    http = session if session is not None else requests
    resp = http.get(f"https://{host}/robots.txt", timeout=DEFAULT_TIMEOUT)
    return robots_from_status(resp.status_code, resp.content)


class RobotCtrl:
    """A thread-safe check of URLs against robots.txt rules for some agents."""

    def __init__(
        self, user_agents: Iterable[str], data: _RobotsData | None = None
    ) -> None:
        self.user_agents = list(user_agents)
        self._data = data if data is not None else allow_all()
        self._lock = threading.Lock()

    def should_skip(self, url: str) -> bool:
        """Report whether any of the agents is disallowed from the URL."""
        path = unquote(urlsplit(url).path)
        with self._lock:
            return any(
                not self._data.test_agent(path, agent) for agent in self.user_agents
            )


def new_robot_ctrl(
    host: str, agents: Iterable[str], session: requests.Session | None = None
) -> RobotCtrl:
    """Fetch the host's robots.txt and return a controller for agents."""
    return RobotCtrl(agents, get_robots_txt(host, session))