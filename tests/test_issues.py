from types import SimpleNamespace

import pytest

from ticketune.discord import Interaction, User
from ticketune.github_app import GitHubError
from ticketune.issues import (
    CREATE_ISSUE_MODAL_ID,
    NoMessage,
    NoResolvedData,
    build_issue_body,
    build_issue_modal,
    commands,
    handle_new_issue_modal,
    issue_body_from_message,
    message_variant,
    new_issue,
)

ISSUE_URL = "https://github.com/example/repo/issues/1"


class _Rest:
    def __init__(self):
        self.calls = []

    def request(self, method, route, body=None):
        self.calls.append((method, route, body))
        return {}


class _GitHub:
    def __init__(self, result=None, error=None):
        self.result = result if result is not None else {"html_url": ISSUE_URL}
        self.error = error
        self.calls = []

    def create_issue(self, owner, repo, title, body, labels, issue_type):
        self.calls.append(
            {"owner": owner, "repo": repo, "title": title, "body": body,
             "labels": labels, "type": issue_type}
        )
        if self.error is not None:
            raise self.error
        return self.result


def _interaction(data, member=True, github=None, rest=None):
    client = SimpleNamespace(rest=rest or _Rest(), github=github)
    return Interaction(
        id=1,
        application_id=2,
        type=5,
        token="token",
        channel_id=3,
        guild_id=4,
        data=data,
        member={"user": {"id": "5", "username": "tester"}} if member else None,
        user=User(id=5, username="tester") if member else None,
        client=client,
    )


def _text(value):
    return {"type": 18, "component": {"type": 4, "custom_id": "x", "value": value}}


def _modal_data(title="  Crash  ", labels=("Move",), description="It broke", steps="", context=""):
    return {
        "custom_id": CREATE_ISSUE_MODAL_ID,
        "components": [
            _text(title),
            {"type": 18, "component": {"type": 3, "custom_id": "issue-labels", "values": list(labels)}},
            _text(description),
            _text(steps),
            _text(context),
        ],
    }


def test_issue_body_links_message():
    body = issue_body_from_message(1, 2, 3, "hello")
    assert body == "[Related Discord message](https://discord.com/channels/1/2/3)\n\nhello"


@pytest.mark.parametrize("char", ["a", "é", "🐛"])
def test_issue_body_is_truncated(char):
    body = issue_body_from_message(1, 2, 3, char * 5000)
    assert len(body) == 4000
    assert body.startswith("[Related Discord message]")
    assert body.endswith(char)


def test_message_variant_uses_target():
    data = {
        "target_id": "77",
        "resolved": {"messages": {"77": {"id": "77", "channel_id": "8", "content": "boom"}}},
    }
    itx = _interaction(data)
    body = message_variant(itx)
    assert "https://discord.com/channels/4/8/77" in body
    assert body.endswith("boom")


def test_message_variant_without_resolved():
    itx = _interaction({"target_id": "77"})
    with pytest.raises(NoResolvedData):
        message_variant(itx)
    assert itx.response["data"]["content"] == "Error: Message missing"


def test_message_variant_missing_message():
    itx = _interaction({"target_id": "77", "resolved": {"messages": {}}})
    with pytest.raises(NoMessage):
        message_variant(itx)
    assert itx.response["data"]["content"] == "Error: Message not found"


def test_modal_layout():
    modal = build_issue_modal("prefilled")
    assert modal["custom_id"] == CREATE_ISSUE_MODAL_ID
    assert len(modal["components"]) == 5
    assert modal["components"][2]["component"]["value"] == "prefilled"
    select = modal["components"][1]["component"]
    assert select["max_values"] == 4
    assert {"Move", "Beta"} <= {option["value"] for option in select["options"]}


def test_new_issue_opens_prefilled_modal():
    data = {
        "target_id": "77",
        "resolved": {"messages": {"77": {"id": "77", "channel_id": "8", "content": "boom"}}},
    }
    itx = _interaction(data)
    new_issue(itx)
    assert itx.response["type"] == 9
    assert itx.response["data"]["components"][2]["component"]["value"].endswith("boom")


def test_new_issue_reports_missing_message():
    itx = _interaction({"target_id": "77"})
    new_issue(itx)
    assert itx.response["data"]["content"] == "Error: Message missing"


def test_build_issue_body_with_and_without_user():
    body = build_issue_body("tester", "d", "s", "c")
    assert body.startswith("Bug report initiated by Discord user **tester**\n")
    assert "### Reproduction\n\ns" in body
    assert build_issue_body("", "d", "s", "c").startswith("### Describe the bug\n\nd")


def test_modal_without_member():
    itx = _interaction(_modal_data(), member=False)
    assert handle_new_issue_modal(itx) is None
    assert itx.response["data"]["content"] == "Error: Unable to identify user"


def test_modal_without_title():
    itx = _interaction(_modal_data(title=""))
    assert handle_new_issue_modal(itx) is None
    assert itx.response["data"]["content"] == "Error: Unable to find issue title"


def test_modal_without_description():
    itx = _interaction(_modal_data(description=""))
    assert handle_new_issue_modal(itx) is None
    assert itx.response["data"]["content"] == "Error: Unable to find issue description"


def test_modal_creates_issue():
    github = _GitHub()
    rest = _Rest()
    itx = _interaction(_modal_data(steps="click", context="ctx"), github=github, rest=rest)
    worker = handle_new_issue_modal(itx)
    worker.join(5)
    assert itx.response["type"] == 5
    call = github.calls[0]
    assert call["title"] == "[Bug] Crash"
    assert call["labels"] == ["Triage", "Move"]
    assert call["type"] == "bug"
    assert "**tester**" in call["body"]
    assert "### Reproduction\n\nclick" in call["body"]
    method, route, body = rest.calls[-1]
    assert (method, route) == ("POST", "/webhooks/2/token")
    assert body["content"] == "Issue created: " + ISSUE_URL


def test_modal_empty_context_marks_no_response():
    github = _GitHub()
    itx = _interaction(_modal_data(steps=""), github=github)
    handle_new_issue_modal(itx).join(5)
    assert "### Reproduction\n\n_No response_" in github.calls[0]["body"]


@pytest.mark.parametrize(
    "error, expected",
    [
        (GitHubError("x", rate_limit_remaining=0), "GitHub rate limit exceeded. Please try again later."),
        (GitHubError("x", timed_out=True), "Issue creation timed out. Please try again later."),
        (GitHubError("boom", status=500), "Failed to create issue: boom"),
    ],
)
def test_modal_reports_github_errors(error, expected):
    rest = _Rest()
    itx = _interaction(_modal_data(), github=_GitHub(error=error), rest=rest)
    handle_new_issue_modal(itx).join(5)
    assert rest.calls[-1][2]["content"] == expected


def test_commands_define_message_command():
    (command,) = commands()
    assert command.name == "new-issue"
    assert command.to_dict()["type"] == 3