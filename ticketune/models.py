"""Discord payload and object models used by the ticket bot."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Mapping, Optional, TypeVar

_E = TypeVar("_E", bound=IntEnum)

_SNOWFLAKE_RE = re.compile(r"[0-9]+")
_TIMESTAMP_RE = re.compile(
    r"(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<tz>Z|z|[+-]\d{2}:\d{2})"
)
_MAX_SNOWFLAKE = 2**64 - 1


class ArchiveDuration(IntEnum):
    """Minutes of inactivity after which a thread is archived."""

    HOUR = 60
    DAY = 1440
    THREE_DAYS = 4320
    WEEK = 10080


class ThreadType(IntEnum):
    """Channel types that can be requested when creating a thread."""

    PUBLIC = 11
    PRIVATE = 12


class ChannelType(IntEnum):
    """Discord channel types."""

    GUILD_TEXT = 0
    DM = 1
    GUILD_VOICE = 2
    GROUP_DM = 3
    GUILD_CATEGORY = 4
    GUILD_ANNOUNCEMENT = 5
    ANNOUNCEMENT_THREAD = 10
    PUBLIC_THREAD = 11
    PRIVATE_THREAD = 12
    GUILD_STAGE_VOICE = 13
    GUILD_DIRECTORY = 14
    GUILD_FORUM = 15
    GUILD_MEDIA = 16


class PermissionTarget(IntEnum):
    """Whether a permission overwrite applies to a role or a member."""

    ROLE = 0
    MEMBER = 1


def _snowflake(value: Any) -> int:
    """Parse a snowflake given as a decimal string or integer; missing means 0."""
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError(f"invalid snowflake: {value!r}")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str) and _SNOWFLAKE_RE.fullmatch(value):
        result = int(value)
    else:
        raise ValueError(f"invalid snowflake: {value!r}")
    if not 0 <= result <= _MAX_SNOWFLAKE:
        raise ValueError(f"snowflake out of range: {value!r}")
    return result


def _enum_or_int(enum_cls: type[_E], value: Any) -> int:
    number = int(value)
    try:
        return enum_cls(number)
    except ValueError:
        return number


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp as sent by Discord."""
    if not value:
        return None
    match = _TIMESTAMP_RE.fullmatch(value)
    if match is None:
        raise ValueError(f"invalid timestamp: {value!r}")
    fraction = (match["fraction"] or "")[:6].ljust(6, "0")
    tz = match["tz"]
    if tz in ("Z", "z"):
        tz = "+00:00"
    return datetime.fromisoformat(f"{match['base']}.{fraction}{tz}")


def _require_mapping(data: Any) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise TypeError(f"expected a JSON object, got {type(data).__name__}")
    return data


@dataclass
class CreateMessageParams:
    """Body of a create-message request."""

    content: str = ""
    tts: bool = False
    embeds: list[Mapping[str, Any]] = field(default_factory=list)
    allowed_mentions: Optional[Mapping[str, Any]] = None
    components: list[Mapping[str, Any]] = field(default_factory=list)
    attachments: list[Mapping[str, Any]] = field(default_factory=list)
    flags: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON body, leaving out empty fields."""
        payload: dict[str, Any] = {}
        if self.content:
            payload["content"] = self.content
        if self.tts:
            payload["tts"] = True
        if self.embeds:
            payload["embeds"] = [dict(embed) for embed in self.embeds]
        if self.allowed_mentions is not None:
            payload["allowed_mentions"] = dict(self.allowed_mentions)
        if self.components:
            payload["components"] = [dict(c) for c in self.components]
        if self.attachments:
            payload["attachments"] = [dict(a) for a in self.attachments]
        if self.flags:
            payload["flags"] = int(self.flags)
        return payload


@dataclass
class CreateThreadParams:
    """Body of a start-thread-without-message request."""

    name: str
    auto_archive_duration: Optional[ArchiveDuration] = None
    type: Optional[ThreadType] = None
    rate_limit_per_user: int = 0
    invitable: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON body; ``name`` and ``invitable`` are always present."""
        payload: dict[str, Any] = {"name": self.name}
        if self.auto_archive_duration:
            payload["auto_archive_duration"] = int(self.auto_archive_duration)
        if self.type:
            payload["type"] = int(self.type)
        if self.rate_limit_per_user:
            payload["rate_limit_per_user"] = self.rate_limit_per_user
        payload["invitable"] = self.invitable
        return payload


@dataclass
class ThreadMetadata:
    """Thread-specific fields of a channel."""

    archived: bool = False
    auto_archive_duration: int = 0
    archive_timestamp: Optional[datetime] = None
    locked: bool = False
    invitable: bool = False
    create_timestamp: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ThreadMetadata":
        data = _require_mapping(data)
        return cls(
            archived=bool(data.get("archived", False)),
            auto_archive_duration=_enum_or_int(
                ArchiveDuration, data.get("auto_archive_duration") or 0
            ),
            archive_timestamp=_parse_timestamp(data.get("archive_timestamp")),
            locked=bool(data.get("locked", False)),
            invitable=bool(data.get("invitable", False)),
            create_timestamp=_parse_timestamp(data.get("create_timestamp")),
        )


@dataclass
class Channel:
    """A Discord channel or thread (only the fields the bot uses)."""

    id: int
    type: int = ChannelType.GUILD_TEXT
    guild_id: int = 0
    name: str = ""
    parent_id: int = 0
    thread_metadata: Optional[ThreadMetadata] = None
    default_auto_archive_duration: int = 0
    flags: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Channel":
        data = _require_mapping(data)
        metadata = data.get("thread_metadata")
        return cls(
            id=_snowflake(data.get("id")),
            type=_enum_or_int(ChannelType, data.get("type") or 0),
            guild_id=_snowflake(data.get("guild_id")),
            name=data.get("name") or "",
            parent_id=_snowflake(data.get("parent_id")),
            thread_metadata=(
                ThreadMetadata.from_dict(metadata) if metadata is not None else None
            ),
            default_auto_archive_duration=int(
                data.get("default_auto_archive_duration") or 0
            ),
            flags=int(data.get("flags") or 0),
        )

    def mention(self) -> str:
        return f"<#{self.id}>"


@dataclass
class ThreadMember:
    """Membership of a user in a thread."""

    id: int = 0
    user_id: int = 0
    join_timestamp: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ThreadMember":
        data = _require_mapping(data)
        return cls(
            id=_snowflake(data.get("id")),
            user_id=_snowflake(data.get("user_id")),
            join_timestamp=_parse_timestamp(data.get("join_timestamp")),
        )


@dataclass
class EditChannelPermissionsParams:
    """Body of an edit-channel-permissions request."""

    type: PermissionTarget
    allow: int = 0
    deny: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON body; permission bitfields are sent as strings."""
        payload: dict[str, Any] = {}
        if self.allow:
            payload["allow"] = str(int(self.allow))
        if self.deny:
            payload["deny"] = str(int(self.deny))
        payload["type"] = int(self.type)
        return payload