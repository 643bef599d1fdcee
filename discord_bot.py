# discord_bot.py
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Optional

import discord
from discord import app_commands

from command_relay import ServerStatus, format_event, relay_line, strip_colors
from config import Config, load_config
from zan_errors import AuthError, StateError
from zan_huffman import HuffmanCodec
from zan_proto import load_frequency_table
from zan_rcon import (
    ConnectEvent,
    ErrorEvent,
    Event,
    MapEvent,
    MessageEvent,
    PlayersEvent,
    RconSession,
    connect_server,
)


# ------------------ Config ------------------
cfg = load_config()
# a missing table stops the bot before login
huffman_table = load_frequency_table(cfg.RCON.HUFFMAN_FREQS_FILE, allow_bundled=cfg.RCON.HUFFMAN_USE_BUNDLED)

# ------------------ Logging ------------------
def setup_logging(cfg: Config) -> logging.Logger:
    os.makedirs(cfg.LOG_DIR, exist_ok=True)

    logger = logging.getLogger("zanbot")
    logger.setLevel(logging.INFO)

    # Avoid duplicate handlers on restarts
    for h in list(logger.handlers):
        logger.removeHandler(h)

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")

    fh = logging.FileHandler(cfg.BOT_LOG_FILE, encoding="utf-8")
    fh.setFormatter(fmt)
    logger.addHandler(fh)

    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    logger.addHandler(sh)

    logger.info("=== ZanBot logging started ===")
    logger.info("Log file: %s", cfg.BOT_LOG_FILE)
    return logger


logger = setup_logging(cfg)


def audit_log(line: str) -> None:
    os.makedirs(cfg.LOG_DIR, exist_ok=True)
    with open(cfg.ACTION_AUDIT_LOG, "a", encoding="utf-8") as f:
        f.write(f"{time.strftime('%Y-%m-%d %H:%M:%S')} {line.rstrip()}\n")


# ------------------ Helpers ------------------
SEV_GREEN = 0x2ecc71
SEV_ORANGE = 0xF1C40F
SEV_RED = 0xE74C3C
SEV_BLUE = 0x3498DB


def make_embed(title: str, desc: str, color: int) -> discord.Embed:
    return discord.Embed(title=title, description=desc, color=color)


def user_tag(i: discord.Interaction) -> str:
    u = i.user
    return f"{u.name}#{u.discriminator}" if getattr(u, "discriminator", None) else u.name


def describe_status(session: Optional[RconSession], status: ServerStatus) -> str:
    state = session.state.value.upper() if session else "NOT STARTED"
    lines = [
        f"**RCON:** `{state}`  ({cfg.RCON.RCON_HOST}:{cfg.RCON.RCON_PORT})",
        f"**Map:** `{status.map_name or '?'}`",
        f"**Players:** `{len(status.players)}`  |  **Admins:** `{status.admins}`",
    ]
    if status.last_error:
        lines.append(f"**Last error:** `{status.last_error}`")
    return "\n".join(lines)


# ------------------ Permissions ------------------
async def require_admin(cfg: Config, i: discord.Interaction) -> Optional[discord.Embed]:
    """
    Returns:
      None if allowed
      Embed (error) if denied
    """
    if not i.guild or not isinstance(i.user, discord.Member):
        return make_embed("No guild context", "This command can only be used in a server.", SEV_RED)

    member: discord.Member = i.user
    perms = member.guild_permissions

    if perms.administrator:
        return None

    if cfg.ZAN_ADMIN_ROLE_ID and any(r.id == cfg.ZAN_ADMIN_ROLE_ID for r in member.roles):
        return None

    if cfg.ALLOW_CHANNEL_PERMS:
        cp = i.channel.permissions_for(member) if i.channel else perms
        if cp.manage_guild or cp.manage_channels or cp.manage_messages:
            return None

    return make_embed(
        "Access denied",
        f"Required role: <@&{cfg.ZAN_ADMIN_ROLE_ID}> or Discord Administrator.",
        SEV_RED,
    )


async def deny_if_needed(i: discord.Interaction, m: Optional[discord.Embed]) -> bool:
    """Returns True if denied (and responded), False if OK."""
    if m is None:
        return False
    if i.response.is_done():
        await i.followup.send(embed=m, ephemeral=True)
    else:
        await i.response.send_message(embed=m, ephemeral=True)
    return True


# ------------------ Cooldown / Confirm ------------------
class Cooldown:
    def __init__(self, seconds: int):
        self.seconds = max(0, int(seconds))
        self._last: dict[int, float] = {}

    def check(self, user_id: int) -> bool:
        if self.seconds <= 0:
            return True
        now = time.time()
        last = self._last.get(user_id, 0.0)
        if now - last < self.seconds:
            return False
        self._last[user_id] = now
        return True


@dataclass
class PendingAction:
    action: str
    created_ts: float
    owner_user_id: int


class ConfirmView(discord.ui.View):
    def __init__(self, cfg: Config, pending: PendingAction, on_confirm):
        super().__init__(timeout=cfg.CONFIRM_SECONDS)
        self.cfg = cfg
        self.pending = pending
        self.on_confirm = on_confirm

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.pending.owner_user_id:
            await interaction.response.send_message("Not your confirmation.", ephemeral=True)
            return False
        return True

    @discord.ui.button(label="Confirm", style=discord.ButtonStyle.danger)
    async def confirm(self, interaction: discord.Interaction, button: discord.ui.Button):
        if time.time() - self.pending.created_ts > self.cfg.CONFIRM_SECONDS:
            await interaction.response.edit_message(
                embed=make_embed("Expired", "Confirmation window expired.", SEV_RED),
                view=None,
            )
            self.stop()
            return

        await self.on_confirm(interaction)
        self.stop()

    @discord.ui.button(label="Cancel", style=discord.ButtonStyle.secondary)
    async def cancel(self, interaction: discord.Interaction, button: discord.ui.Button):
        await interaction.response.edit_message(
            embed=make_embed("Cancelled", "Action cancelled.", SEV_BLUE),
            view=None,
        )
        self.stop()


cooldown = Cooldown(cfg.COOLDOWN_SECONDS)
status = ServerStatus()


# ------------------ Discord Client ------------------
class ZanBotClient(discord.Client):
    session: Optional[RconSession] = None

    async def setup_hook(self):
        # Sync slash commands to one guild (fast propagation)
        try:
            guild = discord.Object(id=cfg.DISCORD_GUILD_ID)
            tree.copy_global_to(guild=guild)
            await tree.sync(guild=guild)
            logger.info("Slash commands synced to guild %s", cfg.DISCORD_GUILD_ID)
        except Exception as e:
            logger.exception("Slash sync failed: %s", e)

        rc = cfg.RCON
        self.session = await connect_server(
            rc.RCON_PASSWORD,
            rc.RCON_PORT,
            rc.RCON_HOST,
            codec=HuffmanCodec(huffman_table),
            keepalive_interval=rc.KEEPALIVE_SECONDS,
            protocol_version=rc.PROTOCOL_VERSION,
        )
        self.session.add_listener(Event, on_rcon_event)

    def reconnect(self) -> None:
        rc = cfg.RCON
        if self.session.connected:
            self.session.disconnect()
        else:
            self.session.abort()
        status.sync(self.session)
        self.session.connect(rc.RCON_PASSWORD, rc.RCON_PORT, rc.RCON_HOST)

    async def close(self):
        if self.session is not None:
            if self.session.connected:
                self.session.disconnect()
            else:
                self.session.abort()
            self.session.transport.close()
        await super().close()


intents = discord.Intents.default()
intents.message_content = True

client = ZanBotClient(intents=intents)
tree = app_commands.CommandTree(client)


def relay_channel() -> Optional[discord.abc.Messageable]:
    if not cfg.RELAY_CHANNEL_ID:
        return None
    return client.get_channel(cfg.RELAY_CHANNEL_ID)


# ------------------ RCON -> Discord ------------------
async def on_rcon_event(event: Event) -> None:
    status.apply(event)
    if client.session is not None:
        status.sync(client.session)

    channel = relay_channel()

    if isinstance(event, (PlayersEvent, MapEvent, ConnectEvent)):
        await update_presence()

    if channel is None:
        return

    try:
        if isinstance(event, MessageEvent):
            text = format_event(event)
            if text.strip():
                await channel.send(discord.utils.escape_mentions(text)[:1900])
        elif isinstance(event, ConnectEvent):
            await channel.send(embed=make_embed("RCON", "Connected to the server.", SEV_GREEN))
        elif isinstance(event, ErrorEvent):
            color = SEV_RED if isinstance(event.cause, AuthError) else SEV_ORANGE
            await channel.send(embed=make_embed("RCON error", str(event.cause), color))
        elif isinstance(event, MapEvent):
            await channel.send(embed=make_embed("Map", f"`{event.name}`", SEV_BLUE))
    except discord.HTTPException:
        logger.exception("Relay to channel %s failed", cfg.RELAY_CHANNEL_ID)


async def update_presence() -> None:
    if client.session is None or not client.session.connected:
        await client.change_presence(activity=discord.Game(name="RCON offline"))
        return
    name = f"{status.map_name or '?'} • {len(status.players)} players"
    await client.change_presence(activity=discord.Game(name=name))


@client.event
async def on_ready():
    logger.info("Logged in as %s (id=%s)", client.user, client.user.id)


# ------------------ Discord -> RCON ------------------
@client.event
async def on_message(message: discord.Message):
    if message.author.bot or not cfg.RELAY_CHANNEL_ID:
        return
    if message.channel.id != cfg.RELAY_CHANNEL_ID or client.session is None:
        return

    line = strip_colors(message.content)
    if relay_line(client.session, line):
        logger.info("Relayed chat from %s", message.author)


# ------------------ Commands ------------------
@tree.command(name="zan_help", description="Show ZanBot commands", guild=discord.Object(id=cfg.DISCORD_GUILD_ID))
async def zan_help(i: discord.Interaction):
    desc = (
        "**Core**\n"
        "• `/zan_status` — RCON state, map, player and admin counts\n"
        "• `/zan_players` — Player list\n\n"
        "**Chat**\n"
        "• `/zan_say <message>` — Send a message to in-game chat (admin)\n"
        "• In the relay channel, `say <message>` does the same\n\n"
        "**Admin**\n"
        "• `/zan_rcon <command>` — Run a console command\n"
        "• `/zan_reconnect` — Drop and redo the RCON login\n\n"
        f"**Cooldown:** {cfg.COOLDOWN_SECONDS}s  |  **Confirm window:** {cfg.CONFIRM_SECONDS}s\n"
    )
    await i.response.send_message(embed=make_embed("Zandronum — Help", desc, SEV_BLUE), ephemeral=True)


@tree.command(name="zan_status", description="Show RCON/server status", guild=discord.Object(id=cfg.DISCORD_GUILD_ID))
async def zan_status(i: discord.Interaction):
    connected = client.session is not None and client.session.connected
    color = SEV_GREEN if connected else SEV_RED
    await i.response.send_message(
        embed=make_embed("Zandronum — Status", describe_status(client.session, status), color),
        ephemeral=True,
    )


@tree.command(name="zan_players", description="Show online players", guild=discord.Object(id=cfg.DISCORD_GUILD_ID))
async def zan_players(i: discord.Interaction):
    text = format_event(PlayersEvent(status.players))
    await i.response.send_message(embed=make_embed("Zandronum — Players", f"```{text}```", SEV_BLUE), ephemeral=True)


def _send_or_explain(command: str) -> tuple[bool, str]:
    if client.session is None:
        return False, "RCON session not started yet."
    try:
        client.session.send_command(command)
    except StateError:
        return False, f"RCON is {client.session.state.value}; command not sent."
    return True, "Sent."


@tree.command(name="zan_say", description="Send a message to in-game chat (admin)", guild=discord.Object(id=cfg.DISCORD_GUILD_ID))
@app_commands.describe(message="Message to send to in-game chat")
async def zan_say(i: discord.Interaction, message: str):
    m = await require_admin(cfg, i)
    if await deny_if_needed(i, m):
        return

    message = (message or "").strip()
    if not message:
        await i.response.send_message(embed=make_embed("Zandronum — Say", "Message cannot be empty.", SEV_RED), ephemeral=True)
        return

    if not cooldown.check(i.user.id):
        await i.response.send_message(embed=make_embed("Zandronum — Say", "Slow down.", SEV_ORANGE), ephemeral=True)
        return

    ok, out = _send_or_explain(f"say {message}")
    if ok:
        audit_log(f"say by {user_tag(i)}: {message}")
    await i.response.send_message(embed=make_embed("Zandronum — Say", out, SEV_GREEN if ok else SEV_RED), ephemeral=True)


@tree.command(name="zan_rcon", description="Run a server console command (admin)", guild=discord.Object(id=cfg.DISCORD_GUILD_ID))
@app_commands.describe(command="Console command, e.g. 'map MAP01'")
async def zan_rcon(i: discord.Interaction, command: str):
    m = await require_admin(cfg, i)
    if await deny_if_needed(i, m):
        return

    command = (command or "").strip()
    if not command:
        await i.response.send_message(embed=make_embed("Zandronum — RCON", "Command cannot be empty.", SEV_RED), ephemeral=True)
        return

    if not cooldown.check(i.user.id):
        await i.response.send_message(embed=make_embed("Zandronum — RCON", "Slow down.", SEV_ORANGE), ephemeral=True)
        return

    ok, out = _send_or_explain(command)
    if ok:
        audit_log(f"rcon by {user_tag(i)}: {command}")
    # Output arrives as server messages in the relay channel.
    await i.response.send_message(embed=make_embed("Zandronum — RCON", out, SEV_GREEN if ok else SEV_RED), ephemeral=True)


@tree.command(name="zan_reconnect", description="Redo the RCON login (admin)", guild=discord.Object(id=cfg.DISCORD_GUILD_ID))
async def zan_reconnect(i: discord.Interaction):
    m = await require_admin(cfg, i)
    if await deny_if_needed(i, m):
        return

    pending = PendingAction("reconnect", time.time(), i.user.id)

    async def do_confirm(interaction: discord.Interaction):
        if client.session is None:
            await interaction.response.edit_message(
                embed=make_embed("Zandronum — Reconnect", "RCON session not started yet.", SEV_RED), view=None,
            )
            return
        client.reconnect()
        audit_log(f"reconnect by {user_tag(interaction)}")
        await interaction.response.edit_message(
            embed=make_embed("Zandronum — Reconnect", "Reconnecting; result will appear in the relay channel.", SEV_BLUE),
            view=None,
        )

    await i.response.send_message(
        embed=make_embed("Confirm", "Drop the RCON session and log in again?", SEV_ORANGE),
        view=ConfirmView(cfg, pending, do_confirm),
        ephemeral=True,
    )


# ------------------ Entrypoint ------------------
def main():
    if not cfg.DISCORD_BOT_TOKEN:
        raise RuntimeError("DISCORD_BOT_TOKEN is missing.")
    client.run(cfg.DISCORD_BOT_TOKEN)


if __name__ == "__main__":
    main()
