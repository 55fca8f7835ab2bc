"""Opening and closing password support tickets."""

from __future__ import annotations

import logging
import os
import sqlite3
from typing import Any, Optional

from .db import TicketNotFound
from .discord import (
    IS_COMPONENTS_V2_FLAG,
    Client,
    Command,
    CommandOption,
    DiscordError,
    Interaction,
    InteractionContext,
    OptionType,
    Permission,
    RestClient,
    User,
)
from .config import parse_snowflake
from .helpers import CannotFetchChannel, get_channel, is_password_ticket_channel
from .messaging import GEAR_ICON_ENV
from .models import (
    Channel,
    ChannelType,
    CreateThreadParams,
    EditChannelPermissionsParams,
    PermissionTarget,
)

logger = logging.getLogger(__name__)

OPEN_TICKET_BUTTON_ID = "open-ticket-button"

_BUTTON = 2
_SECTION = 9
_TEXT_DISPLAY = 10
_MEDIA_GALLERY = 12
_CONTAINER = 17
_PRIMARY_BUTTON_STYLE = 1
_ACCENT_COLOR = 0x51FF00

NOT_A_TICKET_THREAD = "This command can only be used on a password ticket thread"
CLOSE_USER_NOT_FOUND = (
    "Error: I couldn't find a user associated with this thread in my database. "
    "You'll have to close the thread manually."
)
CLOSE_PERMISSIONS_FAILED = (
    "Error: I couldn't remove the user's permissions to access this thread. "
    "You'll have to close the thread manually."
)


def _could_not_create_thread(channel_id: int) -> str:
    return (
        "I was unable to create your support ticket. Please try again.\n"
        f"If this issue persists, please reach out to someone in <#{channel_id}>."
    )


def _could_not_add_to_thread(channel_id: int) -> str:
    return (
        "I created support thread, but something went wrong while trying to give "
        f"you access to it. Please reach out to someone in <#{channel_id}> for help, "
        "and mention that I was unable to give you access to your password reset "
        "ticket."
    )


def _could_not_send_instruction(channel_id: int) -> str:
    return (
        "I created your support ticket and added you to it, but something went "
        "wrong while trying to send the instructions. Please reach out to someone "
        f"in <#{channel_id}>, and mention that I could not send the instructions."
    )


def _could_not_get_user_id(channel_id: int) -> str:
    return (
        "Something went wrong, I couldn't get your user ID. Please try again, and "
        f"if the issue persists, reach out to someone in <#{channel_id}>."
    )


def _acknowledge(itx: Interaction, content: str) -> bool:
    """Answer ephemerally; return False if the interaction was already answered."""
    try:
        itx.reply_message({"content": content}, True)
    except DiscordError as exc:
        logger.warning("could not acknowledge interaction %s: %s", itx.id, exc)
        return False
    return True


def send_ticket_message(itx: Interaction) -> None:
    """Post the message with the "Open Ticket" button to the chosen channel."""
    message = {
        "flags": IS_COMPONENTS_V2_FLAG,
        "components": [
            {
                "type": _CONTAINER,
                "accent_color": _ACCENT_COLOR,
                "components": [
                    {"type": _TEXT_DISPLAY, "content": "# Forgotten Password Support"},
                    {
                        "type": _SECTION,
                        "components": [
                            {
                                "type": _TEXT_DISPLAY,
                                "content": (
                                    "Forgot your password? Click the button to "
                                    "open a support ticket."
                                ),
                            }
                        ],
                        "accessory": {
                            "type": _BUTTON,
                            "custom_id": OPEN_TICKET_BUTTON_ID,
                            "label": "Open Ticket",
                            "style": _PRIMARY_BUTTON_STYLE,
                        },
                    },
                ],
            }
        ],
    }

    channel_id = itx.channel_id
    value = itx.get_option_value("channel")
    if value is not None:
        try:
            channel_id = parse_snowflake(str(value))
        except ValueError:
            channel_id = 0

    try:
        itx.rest.send_message(channel_id, message)
    except DiscordError as exc:
        itx.reply_message({"content": f"Failed to send ticket message{exc}"}, True)
        return
    itx.reply_message({"content": "Ticket message sent!"}, True)


def is_user_member_of_thread(rest: RestClient, thread_id: int, user_id: int) -> bool:
    """Return whether the user is a member of the thread."""
    try:
        rest.request("GET", f"/channels/{thread_id}/thread-members/{user_id}")
    except DiscordError:
        return False
    return True


def find_open_ticket(client: Client, user_id: int) -> Optional[int]:
    """Return the thread of the user's open, unlocked ticket, or None.

    Database errors other than a missing ticket are raised.
    """
    try:
        thread_id = client.database.get_user_thread(user_id)
    except TicketNotFound:
        return None

    try:
        channel = get_channel(client.rest, thread_id)
    except CannotFetchChannel:
        return None

    metadata = channel.thread_metadata
    if (
        metadata is None
        or metadata.locked
        or not is_user_member_of_thread(client.rest, thread_id, user_id)
    ):
        return None
    return thread_id


def create_thread(rest: RestClient, channel_id: int, name: str) -> int:
    """Start a private thread in the channel and return its ID."""
    response = rest.request(
        "POST",
        f"/channels/{channel_id}/threads",
        CreateThreadParams(name=name, invitable=False),
    )
    return Channel.from_dict(response).id


def add_member_to_thread(rest: RestClient, thread_id: int, user_id: int) -> None:
    """Add the user to the thread."""
    rest.request("PUT", f"/channels/{thread_id}/thread-members/{user_id}")


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


def send_support_ticket_message(client: Client, thread_id: int, user: User) -> None:
    """Post the instructions for a new ticket and ping the helpers."""
    content = (
        f"### Hello {user.mention()}!\n"
        "Please provide a screenshot of the login page __with the usernames panel "
        "open or the error code it might display__.\n"
        "You need to __click on the gear in the top left corner__ (see attached "
        "image for where to find that)!\n"
        "**Please keep in mind that we are real people volunteering our time, so "
        "please don't ping us over and over. "
        "When someone is free, they'll reach out to help you, but until then, "
        "please be patient and wait until "
        "we get back to you.**\n\n"
        "This process will link your PokéRogue account with the Discord account "
        "you used to open this ticket, allowing you to log in without "
        "needing your password.\n"
        "We have __no way__ to access, check, change, or reset your password.\n"
        "Also, **NEVER** give out personal details such as passwords anywhere and "
        "to anyone, including in these threads."
    )
    message = {
        "flags": IS_COMPONENTS_V2_FLAG,
        "components": [
            {
                "type": _CONTAINER,
                "components": [
                    {"type": _TEXT_DISPLAY, "content": content},
                    *_gear_gallery(),
                    {
                        "type": _TEXT_DISPLAY,
                        "content": (
                            f"<@&{client.settings.helper_role_id}>! Please help "
                            "with the password reset request."
                        ),
                    },
                ],
            }
        ],
    }
    client.rest.send_message(thread_id, message)


def give_user_ticket_channel_perms(client: Client, user_id: int) -> None:
    """Let the user view the ticket channel, read its history and post in threads."""
    allow = (
        Permission.SEND_MESSAGES_IN_THREADS
        | Permission.VIEW_CHANNEL
        | Permission.READ_MESSAGE_HISTORY
    )
    client.rest.request(
        "PUT",
        f"/channels/{client.settings.ticket_channel_id}/permissions/{user_id}",
        EditChannelPermissionsParams(type=PermissionTarget.MEMBER, allow=int(allow)),
    )


def delete_channel_permission_for_user(client: Client, user_id: int) -> None:
    """Remove the user's permission overwrite on the ticket channel."""
    client.rest.request(
        "DELETE",
        f"/channels/{client.settings.ticket_channel_id}/permissions/{user_id}",
    )


def open_ticket_button(itx: Interaction) -> None:
    """Handle a click on the "Open Ticket" button."""
    client = itx.client
    troubleshooting = client.settings.bot_troubleshooting_channel_id
    user = itx.user
    if itx.member is None or user is None:
        _acknowledge(itx, _could_not_get_user_id(troubleshooting))
        return

    try:
        existing = find_open_ticket(client, user.id)
    except sqlite3.Error:
        logger.exception("failed to look up ticket for user %s", user.id)
        existing = None
    if existing is not None:
        _acknowledge(itx, f"I found an existing ticket, try using this: <#{existing}>")
        return

    try:
        thread_id = create_thread(
            client.rest,
            client.settings.ticket_channel_id,
            f"Password Help - {user.username}",
        )
    except (DiscordError, ValueError, TypeError) as exc:
        logger.error("failed to create thread: %s", exc)
        _acknowledge(itx, _could_not_create_thread(troubleshooting))
        return

    # Recorded even if adding the user fails, so the button cannot be spammed.
    try:
        client.database.set_user_thread(user.id, thread_id)
    except sqlite3.Error:
        logger.exception("failed to save thread to database")

    try:
        give_user_ticket_channel_perms(client, user.id)
    except DiscordError as exc:
        logger.error("failed to give user ticket channel perms: %s", exc)
        _acknowledge(itx, _could_not_add_to_thread(troubleshooting))

    try:
        add_member_to_thread(client.rest, thread_id, user.id)
    except DiscordError as exc:
        logger.error("failed to add member to thread: %s", exc)
        _acknowledge(itx, _could_not_add_to_thread(troubleshooting))
        return

    if not _acknowledge(itx, f"A new ticket has been created: <#{thread_id}>"):
        logger.error("failed to send post ticket created message")

    try:
        send_support_ticket_message(client, thread_id, user)
    except DiscordError as exc:
        logger.error("failed to send instruction message: %s", exc)
        _acknowledge(itx, _could_not_send_instruction(troubleshooting))


def close_ticket(itx: Interaction) -> None:
    """Close the ticket thread the command is used in."""
    client = itx.client
    try:
        channel: Optional[Channel] = get_channel(itx.rest, itx.channel_id)
    except CannotFetchChannel as exc:
        logger.error("Error fetching channel info: %s", exc)
        channel = None

    if channel is None or not is_password_ticket_channel(
        channel, client.settings.ticket_channel_id
    ):
        itx.reply(NOT_A_TICKET_THREAD, True)
        return

    try:
        user_id = client.database.close_thread(itx.channel_id)
    except TicketNotFound:
        itx.reply(CLOSE_USER_NOT_FOUND, True)
        return
    except sqlite3.Error:
        logger.exception("database error closing thread %s", itx.channel_id)
        itx.reply(CLOSE_USER_NOT_FOUND, True)
        return

    try:
        delete_channel_permission_for_user(client, user_id)
    except DiscordError as exc:
        logger.error("Error deleting channel permission for user: %s", exc)
        itx.reply(CLOSE_PERMISSIONS_FAILED, True)
        return

    try:
        itx.rest.request("DELETE", f"/channels/{itx.channel_id}")
    except DiscordError as exc:
        # Visible to everyone so a helper can show what went wrong.
        itx.reply(
            "I removed the user's access to the ticket, but ran into an error "
            f"deleting the thread: {exc}.",
            False,
        )


def commands() -> list[Command]:
    """Return the ticket management commands."""
    guild_only = [InteractionContext.GUILD]
    return [
        Command(
            name="close",
            description=(
                "Close the current password ticket thread and remove the "
                "associated user's permission overrides"
            ),
            handler=close_ticket,
            required_permissions=Permission.ADMINISTRATOR,
            contexts=guild_only,
        ),
        Command(
            name="send-ticket-message",
            description=(
                "Send a message with an Open Ticket button to the specified channel"
            ),
            handler=send_ticket_message,
            required_permissions=Permission.ADMINISTRATOR,
            contexts=guild_only,
            options=[
                CommandOption(
                    type=OptionType.CHANNEL,
                    name="channel",
                    description="Channel to send the ticket message to",
                    required=True,
                    channel_types=[ChannelType.GUILD_TEXT],
                )
            ],
        ),
    ]