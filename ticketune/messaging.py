"""Commands that speak in a ticket thread or look tickets up."""

from __future__ import annotations

import logging
import os
import sqlite3
from typing import Any

from .canned import canned_command
from .config import COULD_NOT_FIND_USER_TO_PING, parse_snowflake
from .db import TicketNotFound
from .discord import (
    IS_COMPONENTS_V2_FLAG,
    Command,
    CommandOption,
    DiscordError,
    Interaction,
    InteractionContext,
    OptionType,
    Permission,
    send_discord_message,
)
from .helpers import (
    NO_PING_OPTION,
    CannotFetchChannel,
    MissingOption,
    NotATicketThread,
    WrongOptionType,
    get_numeric_option,
    get_option,
    get_user_from_thread,
    say_template,
)
from .models import CreateMessageParams

logger = logging.getLogger(__name__)

GEAR_ICON_ENV = "TICKETUNE_GEAR_ICON_URL"

_CONTAINER = 17
_TEXT_DISPLAY = 10
_MEDIA_GALLERY = 12

OLD_ACCOUNT_NOTIFIED = "The user has been notified."
_DEFAULT_MESSAGE = (
    " has not played for a long time."
    " It is likely that you are misremembering your username."
)

SAY_SENT = "Your message has been sent to the thread."

REQUEST_PANEL_MESSAGE = (
    "Could you please provide a screenshot of the login page __with the usernames "
    "panel open or the error code it might display__?\n"
    "To try opening the usernames panel, click __on the gear in the top left "
    "corner__ - see this image for clarification!"
)
REQUEST_PANEL_SENT = (
    "The user has been reminded to provide a screenshot with the usernames panel open."
)
REQUEST_PANEL_NO_USER = (
    "I couldn't find a user associated with this thread in my database, so I can't "
    "ping them."
    "However, I've sent the login message to the thread."
)

USERNAME_SCREENSHOT_MESSAGE = (
    "By any chance, maybe you have some screenshot with your username visible, or "
    "even a PokéRogue save file (.prsv)?\n"
    "In some device, Discord server, DMs, etc.?\n\n"
    "__The username can appear on screenshots taken from:__\n"
    "- The first page of a Pokémon Summary, as OT\n"
    "- Game stats screen *(since August 23rd 2025)*\n"
    "- Title screen *(since October 31st 2025)*"
)

WHICH_ACCOUNT_MESSAGE = "Which account would you like help with?"


def compute_time_string(amount: int, unit: str) -> str:
    """Describe how long an account has been idle, e.g. "since last week"."""
    if amount == 1:
        return f"since last {unit}"
    if amount == 0:
        return f"for a few {unit}s"
    return f"for {amount} {unit}s"


def build_message(username: str, amount: int, unit: str) -> str:
    """Message for an old game account idle for a given time."""
    return (
        f"The account ``{username}`` has not played "
        f"{compute_time_string(amount, unit)}. "
        "It is likely that you are misremembering your username."
    )


def default_message_with_username(username: str) -> str:
    """Message for an old game account idle for an unspecified long time."""
    if not username:
        return "The account you provided" + _DEFAULT_MESSAGE
    return f"The account ``{username}``" + _DEFAULT_MESSAGE


def _no_ping(itx: Interaction) -> bool:
    try:
        return get_option(itx, "no-ping", bool)
    except (MissingOption, WrongOptionType):
        return False


def old_account(itx: Interaction, is_default: bool) -> None:
    """Tell the ticket owner they probably misremember their username."""
    if is_default:
        try:
            username = get_option(itx, "username", str)
        except (MissingOption, WrongOptionType):
            username = ""
        message = default_message_with_username(username)
    else:
        try:
            username = get_option(itx, "username", str, True)
            unit = get_option(itx, "unit", str, True)
        except (MissingOption, WrongOptionType):
            return
        try:
            amount = get_numeric_option(itx, "amount", int)
        except (MissingOption, WrongOptionType):
            amount = 0
        message = build_message(username, amount, unit)
    say_template(itx, message, OLD_ACCOUNT_NOTIFIED)


def ping(itx: Interaction) -> None:
    """Answer that the bot is alive, ephemerally if the first option says so."""
    options = itx.data.get("options") or []
    ephemeral = False
    if options:
        value = options[0].get("value")
        if isinstance(value, bool):
            ephemeral = value
    itx.reply("I'm still alive!", ephemeral)


def say(itx: Interaction) -> None:
    """Post a staff-supplied message in the ticket thread."""
    no_ping = _no_ping(itx)
    try:
        message = get_option(itx, "message", str, True)
    except (MissingOption, WrongOptionType):
        return

    try:
        user_id = get_user_from_thread(itx)
    except (NotATicketThread, CannotFetchChannel, TicketNotFound):
        return
    except sqlite3.Error:
        logger.exception("database error looking up thread %s", itx.channel_id)
        return

    params = CreateMessageParams()
    if not no_ping:
        message = f"Hi <@{user_id}>!\n{message}"
        params.allowed_mentions = {"users": [str(user_id)]}
    params.content = message

    try:
        send_discord_message(itx.rest, itx.channel_id, params, None, True)
    except DiscordError as exc:
        itx.reply(f"Error sending message to thread: {exc}", True)
        return
    itx.reply(SAY_SENT, True)


def _gear_gallery() -> list[dict[str, Any]]:
    url = os.environ.get(GEAR_ICON_ENV, "")
    if not url:
        return []
    return [
        {
            "type": _MEDIA_GALLERY,
            "items": [
                {
                    "media": {"url": url},
                    "description": "Image showing the location of the usernames panel",
                }
            ],
        }
    ]


def request_panel(itx: Interaction) -> None:
    """Ask the ticket owner for a screenshot of the usernames panel."""
    found = True
    user_id = 0
    try:
        user_id = get_user_from_thread(itx)
    except (NotATicketThread, CannotFetchChannel):
        return
    except sqlite3.Error:
        logger.exception("database error looking up thread %s", itx.channel_id)
        return
    except TicketNotFound:
        found = False

    response = REQUEST_PANEL_SENT
    content = REQUEST_PANEL_MESSAGE
    no_ping = _no_ping(itx)
    if not no_ping and found:
        logger.info("Error fetching user for thread %s", itx.channel_id)
        response = REQUEST_PANEL_NO_USER
    elif not no_ping:
        content = f"Hi <@{user_id}>!\n{REQUEST_PANEL_MESSAGE}"

    message = {
        "flags": IS_COMPONENTS_V2_FLAG,
        "components": [
            {
                "type": _CONTAINER,
                "components": [
                    {"type": _TEXT_DISPLAY, "content": content},
                    *_gear_gallery(),
                ],
            }
        ],
    }
    try:
        itx.rest.send_message(itx.channel_id, message)
    except DiscordError as exc:
        itx.reply(f"Something went wrong trying to send the message: {exc}", True)
        return
    itx.reply(response, True)


def get_user_ticket(itx: Interaction) -> None:
    """Reply with a link to the ticket thread of the chosen user."""
    value = itx.get_option_value("user")
    if value is None:
        itx.reply("You must specify a user", True)
        return
    try:
        user_id = parse_snowflake(value)
    except ValueError:
        itx.reply("Invalid user ID", True)
        return
    try:
        thread_id = itx.client.database.get_user_thread(user_id)
    except TicketNotFound:
        itx.reply("This user does not have an open support ticket", True)
        return
    except sqlite3.Error:
        logger.exception("database error looking up user %s", user_id)
        thread_id = 0
    itx.reply_message({"content": f"Support ticket thread: <#{thread_id}>"}, True)


def _username_option(required: bool) -> CommandOption:
    return CommandOption(
        type=OptionType.STRING,
        name="username",
        description="The username of the old account",
        required=required,
        min_length=1,
        max_length=64,
    )


def commands() -> list[Command]:
    """Return the messaging and lookup commands."""
    guild_only = [InteractionContext.GUILD]
    old_default = Command(
        name="default",
        description="Notify the user the account has not been played for a long time",
        handler=lambda itx: old_account(itx, True),
        options=[_username_option(False), NO_PING_OPTION],
        required_permissions=Permission.ADMINISTRATOR,
        contexts=guild_only,
    )
    old_specific = Command(
        name="specific",
        description=(
            "Notify the user the account has not been played for a specified "
            "amount of time"
        ),
        handler=lambda itx: old_account(itx, False),
        options=[
            _username_option(True),
            CommandOption(
                type=OptionType.STRING,
                name="unit",
                description="The unit of time",
                required=True,
                choices=[("week", "week"), ("month", "month"), ("year", "year")],
            ),
            CommandOption(
                type=OptionType.INTEGER,
                name="amount",
                description=(
                    "The number of time units. If omitted, will just say "
                    '"in a few [units]"'
                ),
                required=False,
            ),
            NO_PING_OPTION,
        ],
        required_permissions=Permission.ADMINISTRATOR,
        contexts=guild_only,
    )
    return [
        Command(
            name="ping",
            description="Check if the bot is alive",
            handler=ping,
            options=[
                CommandOption(
                    type=OptionType.BOOLEAN,
                    name="ephemeral",
                    description=(
                        "Whether the reply should be ephemeral (only visible to "
                        "you, default false)"
                    ),
                    required=False,
                )
            ],
            required_permissions=Permission.ADMINISTRATOR,
        ),
        Command(
            name="old-account",
            description=(
                "Notify the user that they are likely misremembering their "
                "username due to account inactivity"
            ),
            subcommands=[old_default, old_specific],
        ),
        Command(
            name="say",
            description=(
                "Have Ticketune say a message in the current thread, optionally "
                "pinging the user."
            ),
            handler=say,
            options=[
                CommandOption(
                    type=OptionType.STRING,
                    name="message",
                    description=(
                        "The message to send. Supports Discord markdown; pings to "
                        "other users are intentionally suppressed"
                    ),
                    required=True,
                    min_length=3,
                    max_length=1900,
                ),
                NO_PING_OPTION,
            ],
            required_permissions=Permission.ADMINISTRATOR,
        ),
        Command(
            name="request-panel-topleft",
            description=(
                "Ping and ask the user to provide a screenshot of the login page "
                "with the usernames panel open"
            ),
            handler=request_panel,
            options=[NO_PING_OPTION],
            required_permissions=Permission.ADMINISTRATOR,
            contexts=guild_only,
        ),
        Command(
            name="get-user-ticket",
            description="Get a link to the support ticket thread for a user, if it exists",
            handler=get_user_ticket,
            options=[
                CommandOption(
                    type=OptionType.USER,
                    name="user",
                    description="User to get the ticket for",
                    required=True,
                )
            ],
            required_permissions=Permission.ADMINISTRATOR,
            contexts=guild_only,
        ),
        canned_command(
            "username-screenshot",
            "Ping and ask the user to check for any screenshot or .prsv file where "
            "their username can appear.",
            USERNAME_SCREENSHOT_MESSAGE,
            "The user has been requested to check for any screenshot or .prsv file "
            "where their username can appear.",
            with_no_ping=False,
        ),
        canned_command(
            "which-account",
            "Ping and ask the user which account they would like help with",
            WHICH_ACCOUNT_MESSAGE,
            "The user has been asked which account they need help with.",
        ),
    ]


__all__ = [
    "COULD_NOT_FIND_USER_TO_PING",
    "build_message",
    "commands",
    "compute_time_string",
    "default_message_with_username",
    "get_user_ticket",
    "old_account",
    "ping",
    "request_panel",
    "say",
]