"""Ledger event definitions, canonical serialization, and per-type field rules."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Final, TypeVar

from jarvis_runtime.constants import POLICY_VERSION
from jarvis_runtime.domain import ids as domain_ids
from jarvis_runtime.domain.errors import ActorViolationError
from jarvis_runtime.domain.models import TaskState
from jarvis_runtime.utils.hashing import canonical_json, is_sha256_hex, sha256_text

JSONScalar = str | int | None
_E = TypeVar("_E", bound=StrEnum)

EVENT_HASH_FIELD: Final[str] = "event_hash"

_REQUIRED_FIELDS: Final[frozenset[str]] = frozenset(
    {"timestamp", "task_id", "workspace_id", "actor", "event_type", "prev_event_hash"}
)
_OPTIONAL_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "message",
        "tool_name",
        "args_hash",
        "stdout_hash",
        "stderr_hash",
        "exit_code",
        "diff_hash",
        "policy_version",
        EVENT_HASH_FIELD,
    }
)
_DIGEST_FIELDS: Final[tuple[str, ...]] = ("args_hash", "stdout_hash", "stderr_hash", "diff_hash")
_MAX_MESSAGE_LEN: Final[int] = 8192


class EventType(StrEnum):
    """Kinds of records appended to the ledger."""

    STATE = "STATE"
    TOOL_CALL = "TOOL_CALL"
    TOOL_RESULT = "TOOL_RESULT"
    CLAIM = "CLAIM"
    VERIFY = "VERIFY"


class Actor(StrEnum):
    """Role that produced an event. Only the verifier may emit VERIFY."""

    EXECUTOR = "executor"
    VERIFIER = "verifier"


class Verdict(StrEnum):
    PASS = "PASS"
    BLOCK = "BLOCK"


# Fields each event type may carry beyond the common envelope.
_ALLOWED_BY_TYPE: Final[dict[EventType, frozenset[str]]] = {
    EventType.STATE: frozenset(),
    EventType.TOOL_CALL: frozenset({"tool_name", "args_hash"}),
    EventType.TOOL_RESULT: frozenset(
        {"tool_name", "args_hash", "stdout_hash", "stderr_hash", "exit_code"}
    ),
    EventType.CLAIM: frozenset({"diff_hash"}),
    EventType.VERIFY: frozenset({"stdout_hash", "stderr_hash", "exit_code"}),
}
_REQUIRED_BY_TYPE: Final[dict[EventType, frozenset[str]]] = {
    EventType.STATE: frozenset(),
    EventType.TOOL_CALL: frozenset({"tool_name", "args_hash"}),
    EventType.TOOL_RESULT: frozenset({"tool_name", "stdout_hash", "stderr_hash", "exit_code"}),
    EventType.CLAIM: frozenset(),
    EventType.VERIFY: frozenset({"exit_code"}),
}


@dataclass(frozen=True, slots=True)
class LedgerEvent:
    """
    One immutable ledger record.

    Callers build a draft (no ``timestamp``, empty chain fields) and hand it to the
    ledger, which seals it with the write time, the previous head, and its own digest.
    Raw tool output is never held here, only SHA-256 hex digests of it.
    """

    task_id: str
    workspace_id: str
    actor: Actor
    event_type: EventType
    message: str = ""
    tool_name: str | None = None
    args_hash: str | None = None
    stdout_hash: str | None = None
    stderr_hash: str | None = None
    exit_code: int | None = None
    diff_hash: str | None = None
    policy_version: str = POLICY_VERSION
    timestamp: datetime | None = None
    prev_event_hash: str = ""
    event_hash: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "actor", _as_enum(Actor, self.actor, "LedgerEvent.actor"))
        object.__setattr__(
            self, "event_type", _as_enum(EventType, self.event_type, "LedgerEvent.event_type")
        )
        _as_str(self.task_id, "LedgerEvent.task_id", max_len=128)
        domain_ids.validate_workspace_id(self.workspace_id)
        if not isinstance(self.message, str):
            raise ValueError("LedgerEvent.message: expected string")
        if len(self.message) > _MAX_MESSAGE_LEN:
            raise ValueError(f"LedgerEvent.message: must be <= {_MAX_MESSAGE_LEN} characters")
        if not isinstance(self.policy_version, str):
            raise ValueError("LedgerEvent.policy_version: expected string")
        if self.timestamp is not None:
            object.__setattr__(
                self, "timestamp", _as_utc_datetime(self.timestamp, "LedgerEvent.timestamp")
            )
        if self.tool_name is not None:
            _as_str(self.tool_name, "LedgerEvent.tool_name", max_len=128)
        if self.exit_code is not None and (
            isinstance(self.exit_code, bool) or not isinstance(self.exit_code, int)
        ):
            raise ValueError("LedgerEvent.exit_code: expected int")
        for name in _DIGEST_FIELDS:
            value = getattr(self, name)
            if value is not None and not is_sha256_hex(value):
                raise ValueError(f"LedgerEvent.{name}: expected SHA-256 hex digest")
        for name in ("prev_event_hash", EVENT_HASH_FIELD):
            value = getattr(self, name)
            if value != "" and not is_sha256_hex(value):
                raise ValueError(f"LedgerEvent.{name}: expected empty string or SHA-256 hex digest")
        self._check_actor()
        self._check_type_fields()

    @property
    def is_sealed(self) -> bool:
        return self.timestamp is not None and self.event_hash != ""

    @property
    def verdict(self) -> Verdict | None:
        """The verdict carried by a VERIFY event, ``None`` for any other type."""
        if self.event_type is not EventType.VERIFY:
            return None
        return Verdict.PASS if self.message.startswith(Verdict.PASS) else Verdict.BLOCK

    def canonical_payload(self) -> dict[str, JSONScalar]:
        """Return the dict whose canonical JSON is hashed into ``event_hash``."""
        payload = self.to_dict()
        payload.pop(EVENT_HASH_FIELD, None)
        return payload

    def compute_hash(self) -> str:
        return canonical_digest(self.canonical_payload())

    def seal(self, *, timestamp: datetime, prev_event_hash: str) -> LedgerEvent:
        """Return a copy stamped with chain position and its own digest."""
        stamped = replace(
            self, timestamp=timestamp, prev_event_hash=prev_event_hash, event_hash=""
        )
        return replace(stamped, event_hash=stamped.compute_hash())

    def to_dict(self) -> dict[str, JSONScalar]:
        if self.timestamp is None:
            raise ValueError("LedgerEvent.timestamp: draft events cannot be serialized")
        data: dict[str, JSONScalar] = {
            "timestamp": _datetime_to_iso8601z(self.timestamp),
            "task_id": self.task_id,
            "workspace_id": self.workspace_id,
            "actor": self.actor.value,
            "event_type": self.event_type.value,
            "prev_event_hash": self.prev_event_hash,
        }
        optional: dict[str, JSONScalar] = {
            "message": self.message,
            "tool_name": self.tool_name,
            "args_hash": self.args_hash,
            "stdout_hash": self.stdout_hash,
            "stderr_hash": self.stderr_hash,
            "exit_code": self.exit_code,
            "diff_hash": self.diff_hash,
            "policy_version": self.policy_version,
            EVENT_HASH_FIELD: self.event_hash,
        }
        for key, value in optional.items():
            if value is None or value == "":
                continue
            data[key] = value
        return data

    def to_json(self) -> str:
        return canonical_json(self.to_dict())

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> LedgerEvent:
        parsed = _expect_object(data, "LedgerEvent")
        return cls(
            timestamp=_as_utc_datetime(parsed["timestamp"], "LedgerEvent.timestamp"),
            task_id=_as_str(parsed["task_id"], "LedgerEvent.task_id", max_len=128),
            workspace_id=_as_str(parsed["workspace_id"], "LedgerEvent.workspace_id", max_len=64),
            actor=_as_enum(Actor, parsed["actor"], "LedgerEvent.actor"),
            event_type=_as_enum(EventType, parsed["event_type"], "LedgerEvent.event_type"),
            message=_as_text(parsed.get("message", ""), "LedgerEvent.message"),
            tool_name=_as_optional_text(parsed.get("tool_name"), "LedgerEvent.tool_name"),
            args_hash=_as_optional_text(parsed.get("args_hash"), "LedgerEvent.args_hash"),
            stdout_hash=_as_optional_text(parsed.get("stdout_hash"), "LedgerEvent.stdout_hash"),
            stderr_hash=_as_optional_text(parsed.get("stderr_hash"), "LedgerEvent.stderr_hash"),
            exit_code=_as_optional_int(parsed.get("exit_code"), "LedgerEvent.exit_code"),
            diff_hash=_as_optional_text(parsed.get("diff_hash"), "LedgerEvent.diff_hash"),
            policy_version=_as_text(parsed.get("policy_version", ""), "LedgerEvent.policy_version"),
            prev_event_hash=_as_text(parsed["prev_event_hash"], "LedgerEvent.prev_event_hash"),
            event_hash=_as_text(parsed.get(EVENT_HASH_FIELD, ""), "LedgerEvent.event_hash"),
        )

    @classmethod
    def from_json(cls, raw: str) -> LedgerEvent:
        return cls.from_dict(parse_event_object(raw))

    def _check_actor(self) -> None:
        if self.event_type is EventType.VERIFY and self.actor is not Actor.VERIFIER:
            raise ActorViolationError(f"VERIFY events must be emitted by {Actor.VERIFIER}")
        if self.event_type is not EventType.VERIFY and self.actor is Actor.VERIFIER:
            raise ActorViolationError(
                f"{Actor.VERIFIER} may only emit VERIFY events, not {self.event_type}"
            )

    def _check_type_fields(self) -> None:
        allowed = _ALLOWED_BY_TYPE[self.event_type]
        present = {
            name
            for name in ("tool_name", "exit_code", *_DIGEST_FIELDS)
            if getattr(self, name) is not None
        }
        unexpected = sorted(present - allowed)
        if unexpected:
            raise ValueError(f"LedgerEvent: {self.event_type} events cannot carry {unexpected}")
        missing = sorted(_REQUIRED_BY_TYPE[self.event_type] - present)
        if missing:
            raise ValueError(f"LedgerEvent: {self.event_type} events require {missing}")

        if self.event_type is EventType.STATE:
            try:
                TaskState(self.message)
            except ValueError as exc:
                raise ValueError(
                    f"LedgerEvent: STATE message must name a task state, got {self.message!r}"
                ) from exc
        elif self.event_type is EventType.VERIFY:
            if not self.message.startswith((f"{Verdict.PASS}:", f"{Verdict.BLOCK}:")):
                raise ValueError("LedgerEvent: VERIFY message must start with 'PASS:' or 'BLOCK:'")
        elif self.event_type is EventType.CLAIM and not self.message.strip():
            raise ValueError("LedgerEvent: CLAIM events require a summary message")


def canonical_digest(payload: Mapping[str, object]) -> str:
    """SHA-256 over the canonical JSON of ``payload`` with ``event_hash`` removed."""
    body = {key: value for key, value in payload.items() if key != EVENT_HASH_FIELD}
    return sha256_text(canonical_json(body))


def parse_event_object(raw: str) -> dict[str, object]:
    """Decode one ledger line into a JSON object without model validation."""
    if not isinstance(raw, str):
        raise ValueError(f"LedgerEvent: expected JSON string, got {type(raw).__name__}")
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"LedgerEvent: invalid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("LedgerEvent: JSON root must be an object")
    return parsed


def _expect_object(value: object, path: str) -> dict[str, object]:
    if not isinstance(value, Mapping):
        raise ValueError(f"{path}: expected object, got {type(value).__name__}")

    for key in value:
        if not isinstance(key, str):
            raise ValueError(f"{path}: object keys must be strings")

    unknown = sorted(key for key in value if key not in _REQUIRED_FIELDS | _OPTIONAL_FIELDS)
    if unknown:
        raise ValueError(f"{path}: unexpected fields: {unknown}")

    missing = sorted(key for key in _REQUIRED_FIELDS if key not in value)
    if missing:
        raise ValueError(f"{path}: missing required fields: {missing}")

    return dict(value)


def _as_str(value: object, path: str, *, max_len: int = 4096) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected string, got {type(value).__name__}")
    if not value.strip():
        raise ValueError(f"{path}: must not be empty")
    if len(value) > max_len:
        raise ValueError(f"{path}: must be <= {max_len} characters")
    return value


def _as_text(value: object, path: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected string, got {type(value).__name__}")
    return value


def _as_optional_text(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_text(value, path)


def _as_optional_int(value: object, path: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{path}: expected int, got {type(value).__name__}")
    return value


def _as_enum(enum_type: type[_E], value: object, path: str) -> _E:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected string, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValueError(f"{path}: unsupported value {value!r}; allowed: {allowed}") from exc


def _as_utc_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError as exc:
            raise ValueError(f"{path}: invalid ISO-8601 datetime: {value!r}") from exc
    else:
        raise ValueError(
            f"{path}: expected datetime or ISO-8601 string, got {type(value).__name__}"
        )

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        raise ValueError(f"{path}: datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def _datetime_to_iso8601z(value: datetime) -> str:
    normalized = _as_utc_datetime(value, "LedgerEvent.timestamp")
    return normalized.isoformat(timespec="microseconds").replace("+00:00", "Z")


__all__ = [
    "EVENT_HASH_FIELD",
    "Actor",
    "EventType",
    "LedgerEvent",
    "Verdict",
    "canonical_digest",
    "parse_event_object",
]
