"""Discord interactions client: REST access, command registry and webhook handling."""

from __future__ import annotations

import dataclasses
import json
import logging
import threading
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from http import HTTPStatus
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Tuple, Union

import requests
from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from .config import parse_snowflake
from .models import CreateMessageParams

logger = logging.getLogger(__name__)

API_BASE_URL = "https://discord.com/api/v10"
CALLBACK_PATH = "/discord/callback"
EPHEMERAL_FLAG = 1 << 6
IS_COMPONENTS_V2_FLAG = 1 << 15
REQUEST_TIMEOUT = 30

_PING = 1
_APPLICATION_COMMAND = 2
_MESSAGE_COMPONENT = 3
_MODAL_SUBMIT = 5

_RESPONSE_PONG = 1
_RESPONSE_MESSAGE = 4
_RESPONSE_DEFERRED = 5
_RESPONSE_MODAL = 9

Handler = Callable[["Interaction"], Any]
FileData = Tuple[str, bytes]


class DiscordError(Exception):
    """Raised when Discord rejects a request or an interaction cannot be handled."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class MissingRequiredFieldError(DiscordError, ValueError):
    """Raised when a message has no content, embeds, components or files."""


class Permission(IntFlag):
    """Discord permission bits used by the bot."""

    ADMINISTRATOR = 1 << 3
    VIEW_CHANNEL = 1 << 10
    SEND_MESSAGES = 1 << 11
    READ_MESSAGE_HISTORY = 1 << 16
    SEND_MESSAGES_IN_THREADS = 1 << 38


class OptionType(IntEnum):
    """Types of application command options."""

    SUB_COMMAND = 1
    SUB_COMMAND_GROUP = 2
    STRING = 3
    INTEGER = 4
    BOOLEAN = 5
    USER = 6
    CHANNEL = 7
    ROLE = 8
    MENTIONABLE = 9
    NUMBER = 10
    ATTACHMENT = 11


class CommandType(IntEnum):
    """Kinds of application commands."""

    CHAT_INPUT = 1
    USER = 2
    MESSAGE = 3


class InteractionContext(IntEnum):
    """Where a command may be used."""

    GUILD = 0
    BOT_DM = 1
    PRIVATE_CHANNEL = 2


def _snowflake(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return parse_snowflake(value)


def _to_json(body: Any) -> Any:
    if hasattr(body, "to_dict"):
        return body.to_dict()
    if isinstance(body, Mapping):
        return dict(body)
    return body


@dataclass
class CommandOption:
    """An option of a slash command."""

    type: OptionType
    name: str
    description: str
    required: bool = False
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    choices: Sequence[Tuple[str, Union[str, int, float]]] = field(default_factory=list)
    channel_types: Sequence[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return the option as sent when registering commands."""
        payload: dict[str, Any] = {
            "type": int(self.type),
            "name": self.name,
            "description": self.description,
        }
        if self.required:
            payload["required"] = True
        if self.min_length is not None:
            payload["min_length"] = self.min_length
        if self.max_length is not None:
            payload["max_length"] = self.max_length
        if self.choices:
            payload["choices"] = [
                {"name": name, "value": value} for name, value in self.choices
            ]
        if self.channel_types:
            payload["channel_types"] = [int(kind) for kind in self.channel_types]
        return payload


@dataclass
class Command:
    """An application command together with the function that handles it."""

    name: str
    description: str = ""
    handler: Optional[Handler] = None
    type: CommandType = CommandType.CHAT_INPUT
    options: Sequence[CommandOption] = field(default_factory=list)
    required_permissions: int = 0
    contexts: Sequence[InteractionContext] = field(default_factory=list)
    guild_id: int = 0
    subcommands: Sequence["Command"] = field(default_factory=list)

    def _as_subcommand(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": int(OptionType.SUB_COMMAND),
            "name": self.name,
            "description": self.description,
        }
        if self.options:
            payload["options"] = [option.to_dict() for option in self.options]
        return payload

    def to_dict(self) -> dict[str, Any]:
        """Return the command as sent when registering commands."""
        payload: dict[str, Any] = {"name": self.name, "type": int(self.type)}
        if self.type == CommandType.CHAT_INPUT:
            payload["description"] = self.description
        options = [option.to_dict() for option in self.options]
        options.extend(sub._as_subcommand() for sub in self.subcommands)
        if options:
            payload["options"] = options
        if self.required_permissions:
            payload["default_member_permissions"] = str(int(self.required_permissions))
        if self.contexts:
            payload["contexts"] = [int(context) for context in self.contexts]
        return payload


@dataclass(frozen=True)
class User:
    """A Discord user."""

    id: int
    username: str = ""
    global_name: Optional[str] = None

    def mention(self) -> str:
        return f"<@{self.id}>"


def _user_from_dict(data: Mapping[str, Any]) -> User:
    return User(
        id=_snowflake(data.get("id")),
        username=data.get("username") or "",
        global_name=data.get("global_name"),
    )


class RestClient:
    """Minimal client for the Discord REST API authenticated as a bot."""

    def __init__(
        self,
        token: str,
        session: Optional[requests.Session] = None,
        base_url: str = API_BASE_URL,
    ) -> None:
        self._session = session if session is not None else requests.Session()
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bot {token}",
            "User-Agent": "DiscordBot (ticketune, 1.0)",
        }

    def request(self, method: str, route: str, body: Any = None) -> Any:
        """Send a JSON request and return the decoded reply, or None if it is empty."""
        headers = dict(self._headers)
        kwargs: dict[str, Any] = {}
        if body is not None:
            headers["Content-Type"] = "application/json"
            kwargs["data"] = json.dumps(_to_json(body))
        return self._send(method, route, headers, **kwargs)

    def _request_with_files(
        self, method: str, route: str, body: Any, files: Sequence[FileData]
    ) -> Any:
        if not files:
            return self.request(method, route, body)
        payload = _to_json(body) if body is not None else {}
        if not payload.get("attachments"):
            payload["attachments"] = [
                {"id": index, "filename": name} for index, (name, _) in enumerate(files)
            ]
        multipart: dict[str, Any] = {
            "payload_json": (None, json.dumps(payload), "application/json")
        }
        for index, (name, content) in enumerate(files):
            multipart[f"files[{index}]"] = (name, content)
        return self._send(method, route, dict(self._headers), files=multipart)

    def _send(self, method: str, route: str, headers: Mapping[str, str], **kwargs: Any) -> Any:
        url = self._base_url + route
        try:
            response = self._session.request(
                method, url, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs
            )
        except requests.RequestException as exc:
            raise DiscordError(f"{method} {route} failed: {exc}") from exc
        if not response.ok:
            detail = response.text
            try:
                decoded = response.json()
                if isinstance(decoded, Mapping) and decoded.get("message"):
                    detail = decoded["message"]
            except ValueError:
                pass
            raise DiscordError(
                f"{method} {route} failed with status {response.status_code}: {detail}",
                status=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise DiscordError(f"{method} {route} returned invalid JSON") from exc

    def send_message(self, channel_id: int, payload: Any) -> Any:
        """Post a message to a channel and return the created message."""
        return self.request("POST", f"/channels/{channel_id}/messages", payload)


def send_discord_message(
    rest: RestClient,
    channel_id: int,
    message: CreateMessageParams,
    files: Optional[Sequence[FileData]] = None,
    discard_response: bool = False,
) -> Optional[Any]:
    """Send a message built from CreateMessageParams, optionally with files."""
    files = list(files or [])
    if not message.content and not message.embeds and not message.components and not files:
        raise MissingRequiredFieldError(
            "at least one of content, embeds, components, or files must be present"
        )
    result = rest._request_with_files(
        "POST", f"/channels/{channel_id}/messages", message.to_dict(), files
    )
    if discard_response:
        return None
    return result


@dataclass(eq=False)
class Interaction:
    """An incoming interaction and the means to answer it."""

    id: int
    application_id: int
    type: int
    token: str
    channel_id: int = 0
    guild_id: int = 0
    data: Mapping[str, Any] = field(default_factory=dict)
    member: Optional[Mapping[str, Any]] = None
    user: Optional[User] = None
    client: Optional["Client"] = None
    response: Optional[dict[str, Any]] = field(default=None, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], client: Optional["Client"] = None) -> "Interaction":
        member = data.get("member")
        user_data = (member or {}).get("user") or data.get("user")
        channel_id = data.get("channel_id") or (data.get("channel") or {}).get("id")
        return cls(
            id=_snowflake(data.get("id")),
            application_id=_snowflake(data.get("application_id")),
            type=int(data.get("type") or 0),
            token=data.get("token") or "",
            channel_id=_snowflake(channel_id),
            guild_id=_snowflake(data.get("guild_id")),
            data=data.get("data") or {},
            member=member,
            user=_user_from_dict(user_data) if user_data else None,
            client=client,
        )

    @property
    def rest(self) -> RestClient:
        if self.client is None:
            raise DiscordError("interaction is not attached to a client")
        return self.client.rest

    @property
    def custom_id(self) -> str:
        return self.data.get("custom_id") or ""

    @property
    def target_id(self) -> int:
        return _snowflake(self.data.get("target_id"))

    def get_option_value(self, name: str) -> Any:
        """Return the value of a named option, looking inside subcommands; None if absent."""
        options = self.data.get("options") or []
        while options and options[0].get("type") in (
            OptionType.SUB_COMMAND,
            OptionType.SUB_COMMAND_GROUP,
        ):
            options = options[0].get("options") or []
        for option in options:
            if option.get("name") == name:
                return option.get("value")
        return None

    def _respond(self, response_type: int, data: Optional[Mapping[str, Any]] = None) -> None:
        payload: dict[str, Any] = {"type": response_type}
        if data is not None:
            payload["data"] = data
        with self._lock:
            if self.response is not None:
                raise DiscordError("interaction has already been acknowledged")
            self.response = payload

    def reply(self, content: str, ephemeral: bool = False) -> None:
        """Answer with a plain text message."""
        self.reply_message({"content": content}, ephemeral)

    def reply_message(self, data: Any, ephemeral: bool = False) -> None:
        """Answer with a message built from a mapping or CreateMessageParams."""
        body = _to_json(data)
        if ephemeral:
            body["flags"] = int(body.get("flags", 0)) | EPHEMERAL_FLAG
        self._respond(_RESPONSE_MESSAGE, body)

    def send_modal(self, modal: Any) -> None:
        """Answer by opening a modal."""
        self._respond(_RESPONSE_MODAL, _to_json(modal))

    def defer(self, ephemeral: bool = False) -> None:
        """Acknowledge now and answer later with follow-up messages."""
        self._respond(_RESPONSE_DEFERRED, {"flags": EPHEMERAL_FLAG} if ephemeral else None)

    def follow_up(self, content: str, ephemeral: bool = False) -> Any:
        """Send a follow-up message through the interaction webhook."""
        body: dict[str, Any] = {"content": content}
        if ephemeral:
            body["flags"] = EPHEMERAL_FLAG
        return self.rest.request(
            "POST", f"/webhooks/{self.application_id}/{self.token}", body
        )


class Client:
    """Registry of commands and handlers that answers Discord's interaction webhook."""

    def __init__(
        self,
        token: str,
        public_key: str,
        rest: Optional[RestClient] = None,
        database: Any = None,
        settings: Any = None,
        github: Any = None,
    ) -> None:
        try:
            self._verify_key = VerifyKey(bytes.fromhex(public_key))
        except (ValueError, TypeError) as exc:
            raise ValueError("invalid Discord public key") from exc
        self.rest = rest if rest is not None else RestClient(token)
        self.database = database
        self.settings = settings
        self.github = github
        self._commands: dict[str, Command] = {}
        self._components: dict[str, Handler] = {}
        self._modals: dict[str, Handler] = {}
        self._application_id: Optional[int] = None

    def register_command(self, command: Command) -> None:
        if command.name in self._commands:
            raise ValueError(f"command {command.name!r} is already registered")
        self._commands[command.name] = command

    def register_subcommand(self, command: Command, parent_name: str) -> None:
        parent = self._commands.get(parent_name)
        if parent is None:
            raise KeyError(f"no command named {parent_name!r}")
        if any(sub.name == command.name for sub in parent.subcommands):
            raise ValueError(
                f"subcommand {command.name!r} is already registered under {parent_name!r}"
            )
        self._commands[parent_name] = dataclasses.replace(
            parent, subcommands=[*parent.subcommands, command]
        )

    def register_component(self, custom_ids: Union[str, Iterable[str]], handler: Handler) -> None:
        ids = [custom_ids] if isinstance(custom_ids, str) else list(custom_ids)
        for custom_id in ids:
            if custom_id in self._components:
                raise ValueError(f"component {custom_id!r} is already registered")
        for custom_id in ids:
            self._components[custom_id] = handler

    def register_modal(self, custom_id: str, handler: Handler) -> None:
        if custom_id in self._modals:
            raise ValueError(f"modal {custom_id!r} is already registered")
        self._modals[custom_id] = handler

    def _get_application_id(self) -> int:
        if self._application_id is None:
            info = self.rest.request("GET", "/applications/@me")
            self._application_id = _snowflake((info or {}).get("id"))
        return self._application_id

    def sync_commands(self, guild_ids: Optional[Iterable[int]] = None) -> None:
        """Overwrite the registered commands on Discord, per guild or globally."""
        payload = [command.to_dict() for command in self._commands.values()]
        application_id = self._get_application_id()
        guilds = list(guild_ids or [])
        if not guilds:
            self.rest.request("PUT", f"/applications/{application_id}/commands", payload)
            return
        for guild_id in guilds:
            self.rest.request(
                "PUT", f"/applications/{application_id}/guilds/{guild_id}/commands", payload
            )

    def verify_request(self, signature: str, timestamp: str, body: Union[bytes, str]) -> bool:
        """Check the Ed25519 signature Discord puts on every webhook request."""
        if isinstance(body, str):
            body = body.encode()
        try:
            self._verify_key.verify(timestamp.encode() + body, bytes.fromhex(signature))
        except (BadSignatureError, ValueError, TypeError, AttributeError):
            return False
        return True

    def _find_handler(self, itx: Interaction) -> Optional[Handler]:
        if itx.type == _APPLICATION_COMMAND:
            command = self._commands.get(itx.data.get("name") or "")
            if command is None:
                return None
            options = itx.data.get("options") or []
            if options and options[0].get("type") == OptionType.SUB_COMMAND:
                name = options[0].get("name")
                return next(
                    (sub.handler for sub in command.subcommands if sub.name == name), None
                )
            return command.handler
        if itx.type == _MESSAGE_COMPONENT:
            return self._components.get(itx.custom_id)
        if itx.type == _MODAL_SUBMIT:
            return self._modals.get(itx.custom_id)
        return None

    def handle_request(
        self, signature: str, timestamp: str, body: Union[bytes, str]
    ) -> Optional[dict[str, Any]]:
        """Verify and dispatch one webhook request; return the response body, if any."""
        if not self.verify_request(signature, timestamp, body):
            raise DiscordError("invalid request signature", status=401)
        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise DiscordError("malformed interaction payload", status=400) from exc
        if not isinstance(payload, dict):
            raise DiscordError("malformed interaction payload", status=400)
        if payload.get("type") == _PING:
            return {"type": _RESPONSE_PONG}
        try:
            itx = Interaction.from_dict(payload, self)
        except (ValueError, TypeError, AttributeError) as exc:
            raise DiscordError("malformed interaction payload", status=400) from exc
        handler = self._find_handler(itx)
        if handler is None:
            logger.warning("no handler for interaction %s of type %s", itx.id, itx.type)
            return None
        try:
            handler(itx)
        except Exception:
            logger.exception("handler for interaction %s failed", itx.id)
        return itx.response

    def wsgi_app(self, environ: Mapping[str, Any], start_response: Callable[..., Any]) -> list[bytes]:
        """WSGI application serving the interaction callback endpoint."""
        if environ.get("PATH_INFO") != CALLBACK_PATH:
            return _plain(start_response, HTTPStatus.NOT_FOUND)
        if environ.get("REQUEST_METHOD") != "POST":
            return _plain(start_response, HTTPStatus.METHOD_NOT_ALLOWED, [("Allow", "POST")])
        try:
            length = int(environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            return _plain(start_response, HTTPStatus.BAD_REQUEST)
        body = environ["wsgi.input"].read(length) if length > 0 else b""
        signature = environ.get("HTTP_X_SIGNATURE_ED25519", "")
        timestamp = environ.get("HTTP_X_SIGNATURE_TIMESTAMP", "")
        try:
            response = self.handle_request(signature, timestamp, body)
        except DiscordError as exc:
            return _plain(start_response, HTTPStatus(exc.status or 500))
        if response is None:
            return _plain(start_response, HTTPStatus.ACCEPTED)
        encoded = json.dumps(response).encode()
        start_response(
            "200 OK",
            [("Content-Type", "application/json"), ("Content-Length", str(len(encoded)))],
        )
        return [encoded]


def _plain(
    start_response: Callable[..., Any],
    status: HTTPStatus,
    extra_headers: Sequence[Tuple[str, str]] = (),
) -> list[bytes]:
    text = status.phrase.encode()
    headers = [("Content-Type", "text/plain"), ("Content-Length", str(len(text)))]
    headers.extend(extra_headers)
    start_response(f"{status.value} {status.phrase}", headers)
    return [text]