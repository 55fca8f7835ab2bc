import json
from types import SimpleNamespace

import pytest
import responses

from ticketune import messaging
from ticketune.config import COULD_NOT_FIND_USER_TO_PING, Settings
from ticketune.db import TicketDatabase
from ticketune.discord import (
    API_BASE_URL,
    EPHEMERAL_FLAG,
    IS_COMPONENTS_V2_FLAG,
    Interaction,
    OptionType,
    RestClient,
)

TICKET_CHANNEL = 500
THREAD = 600
USER = 700


@pytest.fixture
def database():
    with TicketDatabase(":memory:") as db:
        yield db


@pytest.fixture
def rsps():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        yield mock


def make_itx(database, data):
    client = SimpleNamespace(
        rest=RestClient("token"),
        settings=Settings(1, TICKET_CHANNEL, 3, 4, 5),
        database=database,
    )
    return Interaction(
        id=1,
        application_id=2,
        type=2,
        token="token",
        channel_id=THREAD,
        data=data,
        client=client,
    )


def opts(name, **values):
    return {
        "name": name,
        "options": [
            {"name": key.replace("_", "-"), "type": 3, "value": value}
            for key, value in values.items()
        ],
    }


def mock_channel(rsps, parent=TICKET_CHANNEL, kind=12):
    rsps.add(
        responses.GET,
        f"{API_BASE_URL}/channels/{THREAD}",
        json={"id": str(THREAD), "type": kind, "parent_id": str(parent)},
    )


def mock_post(rsps, status=200):
    body = {"id": "1"} if status == 200 else {"message": "Missing Access"}
    rsps.add(
        responses.POST,
        f"{API_BASE_URL}/channels/{THREAD}/messages",
        json=body,
        status=status,
    )


def posted(rsps):
    return [
        json.loads(call.request.body)
        for call in rsps.calls
        if call.request.method == "POST"
    ]


def reply_text(itx):
    return itx.response["data"]["content"]


def test_compute_time_string_cases():
    assert messaging.compute_time_string(1, "week") == "since last week"
    assert messaging.compute_time_string(0, "month") == "for a few months"
    assert messaging.compute_time_string(3, "year") == "for 3 years"


def test_build_message_contains_username_and_time():
    message = messaging.build_message("ash", 2, "month")
    assert message.startswith("The account ``ash`` has not played ")
    assert messaging.compute_time_string(2, "month") in message
    assert message.endswith("It is likely that you are misremembering your username.")


def test_default_message_with_and_without_username():
    assert messaging.default_message_with_username("").startswith(
        "The account you provided has not played for a long time."
    )
    named = messaging.default_message_with_username("misty")
    assert named.startswith("The account ``misty`` has not played for a long time.")


def test_ping_ephemeral_option():
    itx = Interaction(
        id=1, application_id=2, type=2, token="token",
        data={"options": [{"name": "ephemeral", "type": 5, "value": True}]},
    )
    messaging.ping(itx)
    assert reply_text(itx) == "I'm still alive!"
    assert itx.response["data"]["flags"] & EPHEMERAL_FLAG


def test_ping_without_options_is_public():
    itx = Interaction(id=1, application_id=2, type=2, token="token", data={})
    messaging.ping(itx)
    assert "flags" not in itx.response["data"]


def test_get_user_ticket_missing_user(database):
    itx = make_itx(database, {"name": "get-user-ticket"})
    messaging.get_user_ticket(itx)
    assert reply_text(itx) == "You must specify a user"


def test_get_user_ticket_invalid_user(database):
    itx = make_itx(database, opts("get-user-ticket", user="abc"))
    messaging.get_user_ticket(itx)
    assert reply_text(itx) == "Invalid user ID"


def test_get_user_ticket_not_found(database):
    itx = make_itx(database, opts("get-user-ticket", user=str(USER)))
    messaging.get_user_ticket(itx)
    assert reply_text(itx) == "This user does not have an open support ticket"


def test_get_user_ticket_found(database):
    database.set_user_thread(USER, THREAD)
    itx = make_itx(database, opts("get-user-ticket", user=str(USER)))
    messaging.get_user_ticket(itx)
    assert reply_text(itx) == f"Support ticket thread: <#{THREAD}>"
    assert itx.response["data"]["flags"] & EPHEMERAL_FLAG


def test_say_pings_owner(database, rsps):
    database.set_user_thread(USER, THREAD)
    mock_channel(rsps)
    mock_post(rsps)
    itx = make_itx(database, opts("say", message="hello there"))
    messaging.say(itx)
    [body] = posted(rsps)
    assert body["content"] == f"Hi <@{USER}>!\nhello there"
    assert body["allowed_mentions"] == {"users": [str(USER)]}
    assert reply_text(itx) == messaging.SAY_SENT


def test_say_no_ping(database, rsps):
    database.set_user_thread(USER, THREAD)
    mock_channel(rsps)
    mock_post(rsps)
    itx = make_itx(database, opts("say", message="hello there", no_ping=True))
    messaging.say(itx)
    [body] = posted(rsps)
    assert body == {"content": "hello there"}
    assert reply_text(itx) == messaging.SAY_SENT


def test_say_outside_ticket_thread(database, rsps):
    mock_channel(rsps, parent=999)
    itx = make_itx(database, opts("say", message="hello there"))
    messaging.say(itx)
    assert posted(rsps) == []
    assert reply_text(itx) == "This command can only be used in a password ticket thread"


def test_say_missing_message(database, rsps):
    itx = make_itx(database, {"name": "say"})
    messaging.say(itx)
    assert reply_text(itx) == "Error: message is missing"
    assert len(rsps.calls) == 0


def test_say_send_failure(database, rsps):
    database.set_user_thread(USER, THREAD)
    mock_channel(rsps)
    mock_post(rsps, status=403)
    itx = make_itx(database, opts("say", message="hello there"))
    messaging.say(itx)
    assert reply_text(itx).startswith("Error sending message to thread: ")
    assert "Missing Access" in reply_text(itx)


def test_request_panel_with_stored_user(database, rsps):
    database.set_user_thread(USER, THREAD)
    mock_channel(rsps)
    mock_post(rsps)
    itx = make_itx(database, {"name": "request-panel-topleft"})
    messaging.request_panel(itx)
    [body] = posted(rsps)
    assert body["flags"] == IS_COMPONENTS_V2_FLAG
    text = body["components"][0]["components"][0]["content"]
    assert text == messaging.REQUEST_PANEL_MESSAGE
    assert reply_text(itx) == messaging.REQUEST_PANEL_NO_USER


def test_request_panel_no_ping(database, rsps):
    database.set_user_thread(USER, THREAD)
    mock_channel(rsps)
    mock_post(rsps)
    itx = make_itx(database, opts("request-panel-topleft", no_ping=True))
    messaging.request_panel(itx)
    [body] = posted(rsps)
    assert body["components"][0]["components"][0]["content"] == messaging.REQUEST_PANEL_MESSAGE
    assert reply_text(itx) == messaging.REQUEST_PANEL_SENT


def test_request_panel_without_stored_user(database, rsps):
    mock_channel(rsps)
    mock_post(rsps)
    itx = make_itx(database, {"name": "request-panel-topleft"})
    messaging.request_panel(itx)
    [body] = posted(rsps)
    text = body["components"][0]["components"][0]["content"]
    assert text.endswith(messaging.REQUEST_PANEL_MESSAGE)
    assert text.startswith("Hi <@")
    assert reply_text(itx) == messaging.REQUEST_PANEL_SENT


def test_request_panel_includes_gallery_when_configured(database, rsps, monkeypatch):
    monkeypatch.setenv(messaging.GEAR_ICON_ENV, "https://example.com/gear.png")
    mock_channel(rsps)
    mock_post(rsps)
    itx = make_itx(database, opts("request-panel-topleft", no_ping=True))
    messaging.request_panel(itx)
    [body] = posted(rsps)
    gallery = body["components"][0]["components"][1]
    assert gallery["items"][0]["media"]["url"] == "https://example.com/gear.png"
    assert reply_text(itx) == messaging.REQUEST_PANEL_SENT


def test_old_account_specific(database, rsps):
    database.set_user_thread(USER, THREAD)
    mock_channel(rsps)
    mock_post(rsps)
    data = {
        "name": "old-account",
        "options": [
            {
                "type": int(OptionType.SUB_COMMAND),
                "name": "specific",
                "options": [
                    {"name": "username", "type": 3, "value": "ash"},
                    {"name": "unit", "type": 3, "value": "month"},
                    {"name": "amount", "type": 4, "value": 2},
                ],
            }
        ],
    }
    itx = make_itx(database, data)
    messaging.old_account(itx, False)
    [body] = posted(rsps)
    assert body["content"] == f"Hi <@{USER}>!\n" + messaging.build_message("ash", 2, "month")
    assert reply_text(itx) == messaging.OLD_ACCOUNT_NOTIFIED


def test_old_account_specific_missing_unit(database, rsps):
    data = {
        "name": "old-account",
        "options": [
            {
                "type": int(OptionType.SUB_COMMAND),
                "name": "specific",
                "options": [{"name": "username", "type": 3, "value": "ash"}],
            }
        ],
    }
    itx = make_itx(database, data)
    messaging.old_account(itx, False)
    assert reply_text(itx) == "Error: unit is missing"
    assert len(rsps.calls) == 0


def test_old_account_default_without_stored_user(database, rsps):
    mock_channel(rsps)
    mock_post(rsps)
    itx = make_itx(database, {"name": "old-account"})
    messaging.old_account(itx, True)
    [body] = posted(rsps)
    assert body["content"] == messaging.default_message_with_username("")
    assert reply_text(itx) == COULD_NOT_FIND_USER_TO_PING


def test_commands_registry():
    registered = {command.name: command for command in messaging.commands()}
    assert set(registered) == {
        "ping",
        "old-account",
        "say",
        "request-panel-topleft",
        "get-user-ticket",
        "username-screenshot",
        "which-account",
    }
    old = registered["old-account"]
    assert [sub.name for sub in old.subcommands] == ["default", "specific"]
    payload = old.to_dict()
    assert [option["name"] for option in payload["options"]] == ["default", "specific"]
    assert registered["username-screenshot"].options == []
    assert [o.name for o in registered["which-account"].options] == ["no-ping"]