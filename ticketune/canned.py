"""Commands that post a fixed message into a ticket thread."""

from __future__ import annotations

from .discord import Command, Interaction, InteractionContext, Permission
from .helpers import NO_PING_OPTION, say_template

FAIL_DISCORD_MESSAGE = (
    "Could you please tell me what happens when you try to log in by clicking on "
    "the Discord icon (on the right of the login page)?"
)

HOW_RESET_PW_MESSAGE = (
    "You can change your password once logged in.\n"
    "__Press Escape to open the menu__, then go to “Manage Data”, and finally "
    "choose “Change Password”. "
    "This will log you out of all other devices.\n"
    "Be sure to write down or remember this new password!"
)

TRY_DIFFERENT_BROWSER_MESSAGE = (
    "If there is another device or browser you've played on before, please "
    "__try to use the gear there__.\n"
    "Otherwise, please provide:\n"
    "- The username of the account you want to recover\n"
    "- To the best of your memory, the date of account creation and the date you "
    "played for the last time on this account "
    "(played for the last time = when you most recently started any kind of run)\n"
    "- Any information regarding game stats and/or the progress of your Pokédex."
)

PING_SPAM_MESSAGE = (
    "**Please keep in mind that Helpers are real people volunteering on their free "
    "time, so please don't ping them over and over.**\n"
    "**When someone is free, they'll reach out to help you, but until then, please "
    "be patient and wait until someone gets back to you.**\n\n"
    "To be more precise, there is currently a colossal amount of 3 people helping "
    "on these tickets, all of them also working on other things for the project as "
    "well as having real life on the side.\n"
    "Please understand that the 20 tickets they get every day take a lot of time to "
    "deal with, they might be able to check them only once or twice per day and it "
    "can take them more than half an hour.\n"
    "They will absolutely help you, **just give them time please**!"
)

SAVE_ACCESS_MESSAGE = (
    "Here is the range of things we can check or not about a username:\n"
    "- When it has been created\n"
    "- When it has been saved for the last time\n"
    "- Game stats screen\n"
    "- Pokédex progress, including\n"
    "  - Shinies you caught\n"
    "  - Pokémon that have *completed* classic mode\n"
    "- We **can't** check the content of any of your runs\n"
    "- We **can't** check your Run History\n\n"
    "-# **Note**: Without sufficient information to verify account ownership, "
    "we will be unable to link your account."
)

TECH_ISSUES_MESSAGE = (
    "We are currently experiencing technical issues preventing us from helping you "
    "as we speak. :jolteondead:\n"
    "We apologize for the inconvenience, and we'll ping you as soon as possible "
    "once the issue is solved!\n\n"
    "Also, if in the meantime you happen to remember your password or prefer to "
    "close your ticket for the time being, __please let us now__!"
)

TRY_WITH_DISCORD_MESSAGE = (
    "Please try to __log in with Discord now!__\n"
    "Make sure to use the __same Discord account__ you used to open this ticket.\n"
    "## And let us know if it works!\n\n"
    "Alternatively, you can also try this:\n"
    "1. Open Discord on your web browser\n"
    "2. Login with the Discord account you used to open this ticket\n"
    "3. Open PokéRogue in another tab, while keeping the Discord one open\n"
    "4. On the login page, click on the Discord button to try to log in with Discord\n"
    "Once logged in, you should __change your password__ by going to Menu "
    "(`m` or `Esc`) -> Manage Data -> Change Password."
    "Be sure to use a password manager and/or write it down to avoid losing it!"
)


def canned_command(
    name: str,
    description: str,
    message: str,
    invoker_response: str,
    with_no_ping: bool = True,
) -> Command:
    """Build an admin-only guild command that posts ``message`` to the thread."""

    def handler(itx: Interaction) -> None:
        say_template(itx, message, invoker_response)

    return Command(
        name=name,
        description=description,
        handler=handler,
        options=[NO_PING_OPTION] if with_no_ping else [],
        required_permissions=Permission.ADMINISTRATOR,
        contexts=[InteractionContext.GUILD],
    )


def commands() -> list[Command]:
    """Return every canned-message command."""
    return [
        canned_command(
            "fail-discord",
            "Ping and ask the user to specify what happens when they attempt to "
            "login with Discord",
            FAIL_DISCORD_MESSAGE,
            "The user has been asked to specify what happens when they attempt to "
            "login with Discord.",
        ),
        canned_command(
            "how-to-reset-pw",
            "Ping the user to explain them where to change their password",
            HOW_RESET_PW_MESSAGE,
            "The user has been explain how to change their password.",
        ),
        canned_command(
            "no-save",
            "Ping and ask the user to try to login on a different browser or device "
            "they may have also played on",
            TRY_DIFFERENT_BROWSER_MESSAGE,
            "The user has been requested to try to login on a different browser or "
            "device.",
        ),
        canned_command(
            "ping-spam",
            "Ping the user tell them to stop ping abuse",
            PING_SPAM_MESSAGE,
            "The user has been asked to stop ping abuse.",
            with_no_ping=False,
        ),
        canned_command(
            "save-access",
            "Informs the user about what Helpers can check about their saves",
            SAVE_ACCESS_MESSAGE,
            "The user has been informed about what Helpers can check about their "
            "saves.",
        ),
        canned_command(
            "tech-issues",
            "Ping the user and inform them that technical issues are preventing us "
            "from helping them",
            TECH_ISSUES_MESSAGE,
            "The user has been warned about technical issues that prevent us from "
            "helping them.",
        ),
        canned_command(
            "try-discord",
            "Ping and ask the user to attempt to log with Discord",
            TRY_WITH_DISCORD_MESSAGE,
            "The user has been requested to attempt a login with Discord.",
            with_no_ping=False,
        ),
    ]