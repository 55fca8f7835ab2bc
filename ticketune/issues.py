"""The new-issue message command and the modal that files a GitHub bug report."""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping, Optional

from .discord import Command, CommandType, DiscordError, Interaction
from .github_app import GitHubError

logger = logging.getLogger(__name__)

CREATE_ISSUE_MODAL_ID = "create-gh-issue-modal"
ISSUE_OWNER = "pagefaultgames"
ISSUE_REPO = "pokerogue"
ISSUE_TYPE = "bug"
MAX_ISSUE_BODY_LENGTH = 4000
NO_RESPONSE = "_No response_"

_STRING_SELECT = 3
_TEXT_INPUT = 4
_LABEL = 18
_SHORT_STYLE = 1
_PARAGRAPH_STYLE = 2

_CATEGORIES = (
    ("Move", "Issues with a Pokémon move"),
    ("Ability", "Issues with abilities"),
    ("Item", "Issues with items"),
    ("Sprite/Animation", "Issues with sprites or animations"),
    ("UI/UX", "User interface / user experience issues"),
    ("Save Data", "Affects user save data"),
    ("Mystery Encounter", "Issues with a mystery encounter"),
    ("Audio", "Issues with sound effects or music"),
    ("Challenges", "Challenge mode(s) related"),
    ("Miscellaneous", "None of the other categories fit"),
    (
        "Beta",
        "Only present on Beta (do not select unless it is known the issue does not "
        "happen on main)",
    ),
)


class NoResolvedData(Exception):
    """Raised when a message command carries no resolved data."""

    def __init__(self, message: str = "no resolved data in interaction") -> None:
        super().__init__(message)


class NoMessage(Exception):
    """Raised when the targeted message is absent from the resolved data."""

    def __init__(self, message: str = "no message found in resolved data") -> None:
        super().__init__(message)


def issue_body_from_message(guild_id: int, channel_id: int, message_id: int, content: str) -> str:
    """Prefix a message with a link to it, truncated to fit an issue body."""
    link = f"https://discord.com/channels/{guild_id}/{channel_id}/{message_id}"
    link_text = f"[Related Discord message]({link})\n\n"
    available = MAX_ISSUE_BODY_LENGTH - len(link_text)
    if available < 0:
        return content
    return link_text + content[:available]


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def message_variant(itx: Interaction) -> str:
    """Return the prefill text for the message the command was used on."""
    resolved = itx.data.get("resolved")
    if resolved is None:
        itx.reply("Error: Message missing", True)
        raise NoResolvedData()
    message = (resolved.get("messages") or {}).get(str(itx.target_id))
    if message is None:
        itx.reply("Error: Message not found", True)
        raise NoMessage()
    return issue_body_from_message(
        itx.guild_id,
        _as_int(message.get("channel_id")),
        _as_int(message.get("id")),
        message.get("content") or "",
    )


def _label(label: str, component: Mapping[str, Any], description: str = "") -> dict[str, Any]:
    payload: dict[str, Any] = {"type": _LABEL, "label": label, "component": dict(component)}
    if description:
        payload["description"] = description
    return payload


def _text_input(custom_id: str, style: int, required: bool, max_length: int = 0, value: str = "") -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": _TEXT_INPUT,
        "custom_id": custom_id,
        "style": style,
        "required": required,
    }
    if max_length:
        payload["max_length"] = max_length
    if value:
        payload["value"] = value
    return payload


def build_issue_modal(prefill_body: str = "") -> dict[str, Any]:
    """Return the modal asking for the details of a bug report."""
    return {
        "custom_id": CREATE_ISSUE_MODAL_ID,
        "title": "Create GitHub Issue",
        "components": [
            _label(
                "Issue Title",
                _text_input("issue-title", _SHORT_STYLE, True, max_length=200),
                "Summarize the issue in a few words, (omit the [Bug] prefix)",
            ),
            _label(
                "Category Labels (select up to 4)",
                {
                    "type": _STRING_SELECT,
                    "custom_id": "issue-labels",
                    "min_values": 1,
                    "max_values": 4,
                    "placeholder": "Select 1 or more categories the bug falls under",
                    "options": [
                        {"label": name, "value": name, "description": description}
                        for name, description in _CATEGORIES
                    ],
                },
            ),
            _label(
                "Issue Description",
                _text_input(
                    "issue-description",
                    _PARAGRAPH_STYLE,
                    True,
                    max_length=3800,
                    value=prefill_body,
                ),
                "Describe the issue (GitHub flavored markdown supported)",
            ),
            _label(
                "Steps to reproduce",
                _text_input("issue-steps", _PARAGRAPH_STYLE, False),
                "Describe the steps to reproduce this bug",
            ),
            _label(
                "Additional context",
                _text_input("issue-additional-context", _PARAGRAPH_STYLE, False),
                "Add any other context about the problem here",
            ),
        ],
    }


def _safe_reply(itx: Interaction, content: str) -> None:
    try:
        itx.reply(content, True)
    except DiscordError as exc:
        logger.warning("could not reply to interaction %s: %s", itx.id, exc)


def new_issue(itx: Interaction) -> None:
    """Open the issue modal, prefilled from the targeted message if there is one."""
    prefill = ""
    if itx.target_id:
        try:
            prefill = message_variant(itx)
        except (NoResolvedData, NoMessage):
            prefill = ""
    try:
        itx.send_modal(build_issue_modal(prefill))
    except DiscordError as exc:
        _safe_reply(itx, f"Error: Failed to send issue modal: {exc}")


def build_issue_body(username: str, description: str, steps: str, additional_context: str) -> str:
    """Lay out the issue body in the repository's bug report format."""
    prefix = f"Bug report initiated by Discord user **{username}**\n" if username else ""
    return (
        f"{prefix}### Describe the bug\n\n{description}"
        f"\n\n### Reproduction\n\n{steps}"
        f"\n\n### Additional context\n\n{additional_context}"
    )


def _label_child(itx: Interaction, index: int, child_type: int) -> Mapping[str, Any]:
    components = itx.data.get("components") or []
    if len(components) <= index:
        return {}
    label = components[index]
    if not isinstance(label, Mapping) or label.get("type") != _LABEL:
        return {}
    child = label.get("component")
    if not isinstance(child, Mapping) or child.get("type") != child_type:
        return {}
    return child


def _follow_up(itx: Interaction, content: str) -> None:
    try:
        itx.follow_up(content, True)
    except DiscordError as exc:
        logger.error("Failed to send follow-up message: %s", exc)


def _submit_issue(itx: Interaction, title: str, body: str, labels: list[str]) -> None:
    github = getattr(itx.client, "github", None)
    if github is None:
        _follow_up(itx, "Failed to create issue: GitHub is not configured")
        return
    try:
        issue = github.create_issue(ISSUE_OWNER, ISSUE_REPO, title, body, labels, ISSUE_TYPE)
    except GitHubError as exc:
        if exc.timed_out:
            _follow_up(itx, "Issue creation timed out. Please try again later.")
        elif exc.rate_limit_remaining == 0:
            _follow_up(itx, "GitHub rate limit exceeded. Please try again later.")
        else:
            _follow_up(itx, f"Failed to create issue: {exc}")
        return
    _follow_up(itx, "Issue created: " + (issue.get("html_url") or ""))


def handle_new_issue_modal(itx: Interaction) -> Optional[threading.Thread]:
    """Validate the submitted modal and file the issue in the background.

    Returns the worker thread that files the issue, or None if the
    submission was rejected.
    """
    if itx.member is None:
        _safe_reply(itx, "Error: Unable to identify user")
        return None
    title = _label_child(itx, 0, _TEXT_INPUT).get("value") or ""
    if not title:
        _safe_reply(itx, "Error: Unable to find issue title")
        return None
    title = "[Bug] " + title.strip()

    labels = ["Triage", *(_label_child(itx, 1, _STRING_SELECT).get("values") or [])]

    description = _label_child(itx, 2, _TEXT_INPUT).get("value") or ""
    if not description:
        _safe_reply(itx, "Error: Unable to find issue description")
        return None

    steps = _label_child(itx, 3, _TEXT_INPUT).get("value") or NO_RESPONSE
    additional_context = _label_child(itx, 4, _TEXT_INPUT).get("value") or ""
    if not additional_context:
        steps = NO_RESPONSE

    try:
        itx.defer(True)
    except DiscordError as exc:
        logger.warning("Failed to defer issue modal: %s", exc)

    username = itx.user.username if itx.user is not None else ""
    body = build_issue_body(username, description, steps, additional_context)

    worker = threading.Thread(
        target=_submit_issue,
        args=(itx, title, body, labels),
        name=f"issue-{itx.id}",
        daemon=True,
    )
    worker.start()
    return worker


def commands() -> list[Command]:
    """Return the issue reporting commands."""
    return [Command(name="new-issue", type=CommandType.MESSAGE, handler=new_issue)]