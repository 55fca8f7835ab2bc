"""Shared helpers for commands that work inside password ticket threads."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional

from .config import COULD_NOT_FIND_USER_TO_PING
from .db import TicketNotFound
from .discord import CommandOption, DiscordError, Interaction, OptionType, RestClient
from .models import Channel, ChannelType

logger = logging.getLogger(__name__)

NO_PING_OPTION = CommandOption(
    type=OptionType.BOOLEAN,
    name="no-ping",
    description=(
        "Do not ping the user associated with this ticket. "
        "Defaults to false (ping the user)."
    ),
    required=False,
)


class NotATicketThread(Exception):
    """Raised when a command is used outside a password ticket thread."""

    def __init__(
        self, message: str = "this command can only be used in a password ticket thread"
    ) -> None:
        super().__init__(message)


class CannotFetchChannel(Exception):
    """Raised when a channel cannot be fetched or decoded."""

    def __init__(self, message: str = "could not fetch channel information") -> None:
        super().__init__(message)


class MissingOption(LookupError):
    """Raised when a command option was not supplied."""


class WrongOptionType(TypeError):
    """Raised when a command option has an unexpected type."""


def get_channel(rest: RestClient, channel_id: int) -> Channel:
    """Fetch a channel object by its ID."""
    try:
        data = rest.request("GET", f"/channels/{channel_id}")
        return Channel.from_dict(data)
    except (DiscordError, ValueError, TypeError) as exc:
        raise CannotFetchChannel(f"could not fetch channel {channel_id}: {exc}") from exc


def is_password_ticket_channel(channel: Channel, ticket_channel_id: int) -> bool:
    """Return whether the channel is a private thread of the ticket channel."""
    return (
        channel.parent_id == ticket_channel_id
        and channel.type == ChannelType.PRIVATE_THREAD
    )


def get_user_from_thread(itx: Interaction) -> int:
    """Return the user who owns the ticket thread the interaction came from.

    Replies to the interaction when the channel cannot be fetched or is not a
    ticket thread; raises TicketNotFound without replying when no user is stored.
    """
    client = itx.client
    try:
        channel = get_channel(itx.rest, itx.channel_id)
    except CannotFetchChannel:
        itx.reply(
            "Error fetching channel information, likely because I'm be missing "
            "permissions for this channel.",
            True,
        )
        raise
    if not is_password_ticket_channel(channel, client.settings.ticket_channel_id):
        itx.reply("This command can only be used in a password ticket thread", True)
        raise NotATicketThread()
    return client.database.get_thread_user(itx.channel_id)


def _accepts(value: Any, kind: type) -> bool:
    if isinstance(value, bool):
        return kind is bool
    if kind is float:
        return isinstance(value, (int, float))
    return isinstance(value, kind)


def _fetch(itx: Interaction, name: str, send_reply: bool) -> Any:
    value = itx.get_option_value(name)
    if value is None:
        if send_reply:
            itx.reply(f"Error: {name} is missing", True)
        raise MissingOption(f"option {name!r} is missing")
    return value


def _invalid(itx: Interaction, name: str, send_reply: bool) -> WrongOptionType:
    if send_reply:
        itx.reply(f"Error: {name} is invalid.", True)
    return WrongOptionType(f"option {name!r} is of the wrong type")


def get_option(itx: Interaction, name: str, kind: type, send_reply: bool = False) -> Any:
    """Return an option of type str, bool or float, replying on error if asked."""
    value = _fetch(itx, name, send_reply)
    if not _accepts(value, kind):
        raise _invalid(itx, name, send_reply)
    return kind(value) if kind is float else value


def get_numeric_option(
    itx: Interaction, name: str, kind: type = int, send_reply: bool = False
) -> Any:
    """Return a numeric option converted to ``kind``, replying on error if asked."""
    value = _fetch(itx, name, send_reply)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _invalid(itx, name, send_reply)
    return kind(value)


def _no_ping(itx: Interaction) -> bool:
    try:
        return get_option(itx, "no-ping", bool)
    except (MissingOption, WrongOptionType):
        return False


def say_template(itx: Interaction, content: str, invoker_response: str) -> None:
    """Post ``content`` to the ticket thread, pinging its owner unless told not to."""
    user_id: Optional[int]
    try:
        user_id = get_user_from_thread(itx)
    except (NotATicketThread, CannotFetchChannel):
        return
    except sqlite3.Error:
        logger.exception("database error looking up thread %s", itx.channel_id)
        return
    except TicketNotFound as exc:
        logger.info("Error fetching user for thread: %s", exc)
        user_id = None

    if user_id is not None and not _no_ping(itx):
        content = f"Hi <@{user_id}>!\n{content}"
    if user_id is None:
        invoker_response = COULD_NOT_FIND_USER_TO_PING

    try:
        itx.rest.send_message(itx.channel_id, {"content": content})
    except DiscordError as exc:
        itx.reply(f"Something went wrong trying to send the message: {exc}", True)
        return
    itx.reply(invoker_response, True)