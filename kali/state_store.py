from __future__ import annotations

import copy
import json
from typing import Any

import redis


SESSIONS_SET_KEY = "kali:sessions"
SESSION_KEY_PREFIX = "kali:session:"  # + {session_id}:{state|template|rules}

GameState = dict[str, Any]

_MISSING = object()


def _state_key(session_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}:state"


def _template_key(session_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}:template"


def _rules_key(session_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}:rules"


def _step(current: Any, part: str) -> Any:
    if isinstance(current, dict):
        return current.get(part, _MISSING)
    if isinstance(current, list) and part.isdigit():
        idx = int(part)
        return current[idx] if idx < len(current) else _MISSING
    return _MISSING


def _lookup(state: Any, path: str) -> Any:
    current = state
    for part in path.split("."):
        current = _step(current, part)
        if current is _MISSING:
            return _MISSING
    return current


def get_by_path(state: Any, path: str) -> Any:
    """Read a dot-delimited path ("players.p1.position").

    Missing segments yield None. Numeric segments index into lists.
    """

    value = _lookup(state, path)
    return None if value is _MISSING else value


def path_exists(state: Any, path: str) -> bool:
    """True when every segment of `path` is present, even if the leaf is null."""

    if not path:
        return False
    return _lookup(state, path) is not _MISSING


def set_by_path(state: GameState, path: str, value: Any) -> GameState:
    """Return a deep copy of `state` with `path` set to `value`.

    Missing (or non-container) intermediate segments are replaced by empty maps.
    """

    new_state = copy.deepcopy(state)
    parts = path.split(".")

    current: Any = new_state
    for part in parts[:-1]:
        if isinstance(current, list) and part.isdigit() and int(part) < len(current):
            nxt = current[int(part)]
            if not isinstance(nxt, (dict, list)):
                nxt = {}
                current[int(part)] = nxt
            current = nxt
            continue
        nxt = current.get(part) if isinstance(current, dict) else None
        if not isinstance(nxt, (dict, list)):
            nxt = {}
            current[part] = nxt
        current = nxt

    leaf = parts[-1]
    if isinstance(current, list) and leaf.isdigit() and int(leaf) < len(current):
        current[int(leaf)] = copy.deepcopy(value)
    else:
        current[leaf] = copy.deepcopy(value)
    return new_state


class RedisStateStore:
    """Session game state persisted as a single JSON document in Redis.

    Reads always return a fresh copy, so callers can treat `get_state()` as a
    snapshot. There is no transactional isolation between writers; the
    orchestrator's single-flight lock is what serializes mutation.
    """

    def __init__(self, *, r: redis.Redis, session_id: str) -> None:
        self._r = r
        self.session_id = session_id

    def exists(self) -> bool:
        return bool(self._r.exists(_state_key(self.session_id)))

    def get_state(self) -> GameState:
        raw = self._r.get(_state_key(self.session_id))
        if not raw:
            return {}
        return json.loads(raw)

    def _save(self, state: GameState) -> None:
        self._r.set(_state_key(self.session_id), json.dumps(state))
        self._r.sadd(SESSIONS_SET_KEY, self.session_id)

    def get(self, path: str) -> Any:
        return get_by_path(self.get_state(), path)

    def set(self, path: str, value: Any) -> None:
        self._save(set_by_path(self.get_state(), path, value))

    def reset_state(self, template: GameState) -> None:
        self._save(copy.deepcopy(template))

    # Path oracle used by the validator.
    def path_exists(self, state: GameState, path: str) -> bool:
        return path_exists(state, path)

    def get_by_path(self, state: GameState, path: str) -> Any:
        return get_by_path(state, path)

    def save_template(self, template: GameState) -> None:
        self._r.set(_template_key(self.session_id), json.dumps(template))

    def get_template(self) -> GameState | None:
        raw = self._r.get(_template_key(self.session_id))
        if not raw:
            return None
        return json.loads(raw)

    def save_rules(self, rules: str) -> None:
        self._r.set(_rules_key(self.session_id), rules)

    def get_rules(self) -> str:
        return self._r.get(_rules_key(self.session_id)) or ""


def list_session_ids(*, r: redis.Redis) -> list[str]:
    return sorted(r.smembers(SESSIONS_SET_KEY))
