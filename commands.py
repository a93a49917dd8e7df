# commands.py
"""
Chat command dispatcher.

Everything in here is a descriptor: text goes in, a reply (or None) comes out.
No network, no session objects, no FastAPI. The poll loop and the
/api/command route both call dispatch() with the state they already hold.
"""

# =====================================================================
# IMPORTS
# =====================================================================
import random
import re
from dataclasses import dataclass
from typing import Callable

# =====================================================================
# CONFIG / CONSTANTS
# =====================================================================
PREFIX = "!"

# "!word rest", optionally after one leading "@someone "
COMMAND_RE = re.compile(r"^(?:@\w+\s+)?!(\w+)\s*(.*)$", re.DOTALL)
MENTION_RE = re.compile(r"^@(\w+)")

JOKES = [
    "Why did the developer go broke? Because he used up all his cache.",
    "Why do programmers prefer dark mode? Because light attracts bugs.",
    "There are 10 kinds of people: those who understand binary and those who don't.",
    "A SQL query walks into a bar, walks up to two tables and asks: can I join you?",
    "I would tell you a UDP joke, but you might not get it.",
]

EIGHT_BALL = [
    "It is certain.",
    "Without a doubt.",
    "Yes, definitely.",
    "Most likely.",
    "Ask again later.",
    "Cannot predict now.",
    "Don't count on it.",
    "My sources say no.",
    "Very doubtful.",
]


@dataclass(frozen=True)
class CommandContext:
    """Snapshot of the bot's session state that commands may echo."""

    authenticated: bool = False
    channel_id: str | None = None
    channel_title: str | None = None
    subscriber_count: int | str | None = None
    live_chat_id: str | None = None


@dataclass(frozen=True)
class Command:
    name: str
    handler: Callable[[str, str, CommandContext], str | None]
    aliases: tuple[str, ...] = ()

# =====================================================================
# HANDLERS
# (user, args, context) -> reply, or None when the args don't fit
# =====================================================================

def _hello(user: str, args: str, ctx: CommandContext) -> str:
    return f"@{user} Hey there! 👋"


def _ping(user: str, args: str, ctx: CommandContext) -> str:
    return f"@{user} Pong! 🏓"


def _joke(user: str, args: str, ctx: CommandContext) -> str:
    return random.choice(JOKES)


def _eight_ball(user: str, args: str, ctx: CommandContext) -> str:
    return f"@{user} 🎱 {random.choice(EIGHT_BALL)}"


def _rate(user: str, args: str, ctx: CommandContext) -> str:
    return f"@{user} I rate you {random.randint(1, 10)}/10"


def _vibe(user: str, args: str, ctx: CommandContext) -> str:
    return f"@{user} your vibe today is {random.randint(0, 100)}%"


def _random(user: str, args: str, ctx: CommandContext) -> str:
    return f"@{user} your random number is {random.randrange(0, 99999)}"


def _pick(user: str, args: str, ctx: CommandContext) -> str | None:
    """Pick one of exactly two comma-separated options."""
    options = [part.strip() for part in args.split(",")]
    if len(options) != 2 or not all(options):
        return None
    return f"@{user} I pick: {random.choice(options)}"


def _channel(user: str, args: str, ctx: CommandContext) -> str:
    if not ctx.channel_id:
        return f"@{user} Bot is not connected to a channel."
    return f"@{user} Channel ID: {ctx.channel_id}"


def _status(user: str, args: str, ctx: CommandContext) -> str:
    if not ctx.authenticated:
        return f"@{user} Bot not authenticated."
    chat = "attached to live chat" if ctx.live_chat_id else "no live chat attached"
    return f"@{user} Bot authenticated ({chat})."


def _info(user: str, args: str, ctx: CommandContext) -> str:
    if ctx.authenticated and ctx.channel_title:
        info = f"Bot logged in as {ctx.channel_title} (subs: {ctx.subscriber_count or 0})"
    else:
        info = "Bot not authenticated."
    return f"@{user} {info}"


def _cmdslist(user: str, args: str, ctx: CommandContext) -> str:
    return commands_list()


COMMANDS: tuple[Command, ...] = (
    Command("hello", _hello, aliases=("hi",)),
    Command("ping", _ping),
    Command("joke", _joke),
    Command("8ball", _eight_ball),
    Command("rate", _rate),
    Command("vibe", _vibe),
    Command("random", _random, aliases=("roll",)),
    Command("pick", _pick),
    Command("channel", _channel),
    Command("status", _status),
    Command("info", _info),
    Command("cmdslist", _cmdslist, aliases=("commands",)),
)

COMMAND_TABLE: dict[str, Command] = {
    key: cmd for cmd in COMMANDS for key in (cmd.name, *cmd.aliases)
}

# =====================================================================
# DESCRIPTOR FUNCTIONS
# =====================================================================

def commands_list() -> str:
    """
    Newline-joined list of every command name and alias, built from COMMANDS.

    Kept to names only so the flattened line still fits one live chat message.
    """
    lines = ["Commands:"]
    for cmd in COMMANDS:
        lines.append(" / ".join(f"{PREFIX}{n}" for n in (cmd.name, *cmd.aliases)))
    return "\n".join(lines)


def fallback_reply(user: str) -> str:
    return f"@{user} I didn't get that. Type {PREFIX}cmdslist or {PREFIX}commands to see what I can do."


def is_addressed(text: str) -> bool:
    """True when a chat line looks aimed at the bot (a command or a leading mention)."""
    stripped = (text or "").lstrip()
    return stripped.startswith(PREFIX) or stripped.startswith("@")


def dispatch(user: str, text: str, context: CommandContext | None = None) -> str | None:
    """
    Map one chat line to a reply.

    Precedence:
        1. a known !command (optionally after a leading @mention)
        2. a leading @mention -> friendly mention reply
        3. anything else -> fallback pointing at !cmdslist

    Returns:
        reply text, or None for empty input.
    """
    text = (text or "").strip()
    if not text:
        return None

    ctx = context or CommandContext()
    user = (user or "").strip().lstrip("@") or "viewer"

    match = COMMAND_RE.match(text)
    if match:
        cmd = COMMAND_TABLE.get(match.group(1).lower())
        if cmd:
            reply = cmd.handler(user, match.group(2).strip(), ctx)
            if reply is not None:
                return reply

    mention = MENTION_RE.match(text)
    if mention:
        return f"@{mention.group(1)} {user} says hi!"

    return fallback_reply(user)
