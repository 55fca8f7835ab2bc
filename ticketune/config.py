"""Guild configuration read from the environment."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

COULD_NOT_FIND_USER_TO_PING = (
    "I couldn't find a user associated with this thread in my database, "
    "so I can't ping them."
    "However, I've sent the requested message to the thread."
)

_DIGITS = re.compile(r"[0-9]+")
_MAX_SNOWFLAKE = 2**64 - 1


class ConfigError(ValueError):
    """Raised when a required setting is missing or malformed."""


def parse_snowflake(value: str) -> int:
    """Parse a decimal snowflake string into an unsigned 64-bit integer."""
    if not isinstance(value, str) or not _DIGITS.fullmatch(value):
        raise ValueError(f"invalid snowflake: {value!r}")
    number = int(value)
    if number > _MAX_SNOWFLAKE:
        raise ValueError(f"snowflake out of range: {value!r}")
    return number


@dataclass(frozen=True)
class Settings:
    """Identifiers of the guild, channels and roles the bot works with."""

    helper_role_id: int
    ticket_channel_id: int
    support_category_id: int
    bot_troubleshooting_channel_id: int
    discord_guild_id: int

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Read every identifier from the environment, raising ConfigError on failure."""
        env = os.environ if environ is None else environ
        names = {
            "helper_role_id": "HELPER_ROLE_ID",
            "ticket_channel_id": "TICKET_CHANNEL_ID",
            "support_category_id": "SUPPORT_TICKET_CATEGORY_ID",
            "bot_troubleshooting_channel_id": "BOT_TROUBLESHOOTING_CHANNEL_ID",
            "discord_guild_id": "DISCORD_GUILD_ID",
        }
        values: dict[str, int] = {}
        for attribute, variable in names.items():
            try:
                values[attribute] = parse_snowflake(env.get(variable, ""))
            except ValueError as exc:
                raise ConfigError(
                    f"failed to parse {variable} variable to snowflake: {exc}"
                ) from exc
        return cls(**values)