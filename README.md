# ticketune

A library for running a Discord support bot as an HTTP interactions
endpoint: Discord posts slash commands, button clicks and modal submissions
to it, and the bot answers them. It provides the command handlers, a small
Discord REST and webhook client, SQLite ticket storage and a GitHub App
client for filing bug reports.

## What the commands do

- **Password-help tickets** (`ticketune.tickets`). `/send-ticket-message`
  posts a panel with an *Open Ticket* button to the chosen channel. A click
  (`open_ticket_button`) creates a private thread in the ticket channel,
  records it in the database, gives the user access, adds them to the
  thread, pings the helper role and posts instructions. A user who already
  has an open, unlocked ticket they are a member of gets a link to it
  instead.
- **Closing tickets.** `/close` in a ticket thread removes the stored
  ticket, the user's permission overwrite on the ticket channel, and
  deletes the thread.
- **Canned replies** (`ticketune.canned`, `ticketune.messaging`).
  `/try-discord`, `/fail-discord`, `/no-save`, `/which-account`,
  `/request-panel-topleft`, `/save-access`, `/username-screenshot`,
  `/tech-issues`, `/ping-spam`, `/how-to-reset-pw` and
  `/old-account default|specific` post a prepared message in the current
  ticket thread. The ticket's owner is pinged unless the command's
  `no-ping` option is set. `/say` posts any message, allowing only the
  ticket's owner to be mentioned.
- **Lookups.** `/get-user-ticket` links a user's ticket thread; `/ping`
  checks that the bot is alive.
- **GitHub bug reports** (`ticketune.issues`). The *new-issue* message
  command opens a form prefilled with the message's text and a link back to
  it; submitting the form (`handle_new_issue_modal`) files a bug issue
  through a GitHub App installation in a background thread and reports the
  result as a follow-up message.

Each of these modules has a `commands()` function returning its
`ticketune.discord.Command` objects.

## Installing

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Configuration

`ticketune.config.Settings.from_env(environ)` reads these variables (all
Discord snowflakes in decimal) and raises `ConfigError` if one is missing
or malformed:

| Variable | Meaning |
| --- | --- |
| `DISCORD_GUILD_ID` | the guild the bot serves |
| `HELPER_ROLE_ID` | role pinged on every new ticket |
| `TICKET_CHANNEL_ID` | text channel that ticket threads are created in |
| `SUPPORT_TICKET_CATEGORY_ID` | the support category |
| `BOT_TROUBLESHOOTING_CHANNEL_ID` | channel users are sent to when something fails |

`ticketune.github_app.github_client_from_env(environ)` reads
`TICKETUNE_GITHUB_BOT_PKEY` (PEM private key of the GitHub App),
`TICKETUNE_GITHUB_CLIENT_ID` and `TICKETUNE_INSTALL_ID`, also raising
`ConfigError` on a missing or bad value.

If `TICKETUNE_GEAR_ICON_URL` is set, the instruction messages include that
image; otherwise they are sent as text only.

`ticketune.db.open_database(path)` opens or creates the SQLite database
(`ticketune-db.sqlite3` in the working directory by default).

## Putting it together

```python
import os
from wsgiref.simple_server import make_server

from ticketune import canned, issues, messaging, tickets
from ticketune.config import Settings
from ticketune.db import open_database
from ticketune.discord import Client
from ticketune.github_app import github_client_from_env

settings = Settings.from_env()
client = Client(
    os.environ["DISCORD_BOT_TOKEN"],
    os.environ["DISCORD_PUBLIC_KEY"],  # hex-encoded application public key
    database=open_database(),
    settings=settings,
    github=github_client_from_env(),
)
for module in (messaging, canned, tickets, issues):
    for command in module.commands():
        client.register_command(command)
client.register_component(tickets.OPEN_TICKET_BUTTON_ID, tickets.open_ticket_button)
client.register_modal(issues.CREATE_ISSUE_MODAL_ID, issues.handle_new_issue_modal)
client.sync_commands([settings.discord_guild_id])

make_server("127.0.0.1", 8080, client.wsgi_app).serve_forever()
```

`Client.wsgi_app` answers `POST /discord/callback`, checks the Ed25519
signature Discord sends, replies to pings and dispatches everything else
to the registered handlers. Point the application's *Interactions Endpoint
URL* at that path.

## What the package does not do

There is no command-line program: the package installs no script, and
nothing in it reads the bot token, the public key or a listening address
from the environment or starts a server by itself. Wiring the client
together and serving `wsgi_app`, as in the example above, is left to the
caller.