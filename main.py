import discord
from discord.ext import commands
import os
import asyncio
import logging
from logging.handlers import RotatingFileHandler
import time
import signal
import sys
from datetime import datetime, timedelta
from typing import Optional, Dict, List
from pathlib import Path
from dotenv import load_dotenv
import traceback
from rich.console import Console
from rich.panel import Panel

from atomic_file_system import AtomicFileHandler, SafeConfig, global_file_handler
from bot_errors import UnitIOError, UnitsNotFoundError
from premium_handler import (
    PremiumRequired,
    Requester,
    get_user_tier,
    load_premium_config,
    make_premium_gate
)
from unit_files import UNIT_EXTENSION, UnitFile, scan_units, unit_state


load_dotenv()
TOKEN = os.getenv("DISCORD_TOKEN")
BOT_OWNER_ID = int(os.getenv("BOT_OWNER_ID", 0))


def is_bot_owner():
    async def predicate(ctx):
        if ctx.author.id != BOT_OWNER_ID:
            raise commands.CheckFailure("This command is restricted to the bot owner only.")
        return True
    return commands.check(predicate)


def unit_module_name(unit: UnitFile, base: Path) -> str:
    relative = unit.path.resolve().relative_to(base.resolve())
    return ".".join(relative.with_suffix("").parts)


class BotFrameWork(commands.Bot):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.config: Optional[SafeConfig] = None
        self.premium_file_handler: Optional[AtomicFileHandler] = None
        self.unit_load_times: Dict[str, float] = {}
        self.skipped_units: List[str] = []
        self.start_time = time.time()
        self.bot_owner_id = BOT_OWNER_ID

    async def setup_hook(self):
        self.config = SafeConfig(file_handler=global_file_handler)
        await self.config.initialize()

        self.premium_file_handler = AtomicFileHandler(
            cache_ttl=self.config.get("premium.cache_ttl", 30)
        )
        self.add_check(make_premium_gate(self.premium_config_path, self.premium_file_handler))

        extension = self.config.get("units.extension", UNIT_EXTENSION)
        for key, default in (("units.commands_path", "./commands"), ("units.events_path", "./events")):
            await self.load_units(Path(self.config.get(key, default)), extension)

    @property
    def premium_config_path(self) -> str:
        return self.config.get("premium.config_path", "./premium.json")

    async def load_units(self, root: Path, extension: str = UNIT_EXTENSION):
        loaded = 0
        failed = 0
        skipped = 0

        try:
            units = scan_units(root, extension)
        except UnitsNotFoundError:
            root.mkdir(parents=True, exist_ok=True)
            logger.warning(f"Created unit directory {root}")
            return

        for unit in units:
            try:
                state = await unit_state(unit.path, global_file_handler)
            except UnitIOError as e:
                logger.error(f"Failed reading {unit.relative_path}: {e}")
                failed += 1
                continue

            if not state.is_enabled:
                self.skipped_units.append(str(unit.relative_path))
                skipped += 1
                logger.info(f"Skipped disabled unit: {unit.relative_path}")
                continue

            try:
                module_name = unit_module_name(unit, Path.cwd())
                start_time = time.time()
                await self.load_extension(module_name)
                load_time = time.time() - start_time
                self.unit_load_times[module_name] = load_time
                logger.info(f"Unit loaded: {unit.relative_path} ({load_time:.3f}s)")
                loaded += 1
            except Exception as e:
                logger.error(f"Failed loading {unit.relative_path}: {e}")
                logger.debug(traceback.format_exc())
                failed += 1

        logger.info(f"{root}: {loaded} loaded, {failed} failed, {skipped} disabled")

    async def get_prefix(self, message: discord.Message):
        return self.config.get("prefix", "!")

    async def close(self):
        logger.info("Shutting down bot...")
        await super().close()
        logger.info("Bot shutdown complete")


def setup_logging():
    os.makedirs("./botlogs", exist_ok=True)

    logger = logging.getLogger('discord')
    logger.setLevel(logging.INFO)

    formatter = logging.Formatter(
        '[{asctime}] [{levelname:<8}] {name}: {message}',
        style='{',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    permanent_handler = RotatingFileHandler(
        filename='./botlogs/permanent.log',
        encoding='utf-8',
        maxBytes=10485760,
        backupCount=5
    )
    permanent_handler.setFormatter(formatter)

    current_handler = logging.FileHandler(
        filename='./botlogs/current_run.log',
        encoding='utf-8',
        mode='w'
    )
    current_handler.setFormatter(formatter)

    console = logging.StreamHandler()
    console.setFormatter(formatter)

    logger.addHandler(permanent_handler)
    logger.addHandler(current_handler)
    logger.addHandler(console)

    return logger


logger = setup_logging()

intents = discord.Intents.default()
intents.members = True
intents.message_content = True
bot = BotFrameWork(
    command_prefix=lambda b, m: b.get_prefix(m),
    intents=intents,
    help_command=None,
    case_insensitive=True,
    strip_after_prefix=True
)


@bot.event
async def on_ready():
    console = Console()
    uptime_str = str(timedelta(seconds=int(time.time() - bot.start_time)))

    stats_info = (
        f"**User:** [bold blue]{bot.user}[/bold blue] (ID: {bot.user.id})\n"
        f"**Owner:** [bold yellow]{BOT_OWNER_ID}[/bold yellow]\n"
        f"**Latency:** [bold magenta]{bot.latency*1000:.2f}ms[/bold magenta]\n"
        f"**Uptime:** {uptime_str}\n"
        f"**Units:** [bold]{len(bot.unit_load_times)}[/bold] loaded | "
        f"[bold]{len(bot.skipped_units)}[/bold] disabled"
    )

    panel = Panel(
        stats_info,
        title="[bold white on blue] 🤖 Bot Started [/bold white on blue]",
        subtitle=f"[dim]Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}[/dim]",
        border_style="cyan",
        width=80
    )
    console.print(panel)

    logger.info(f"Bot is online as {bot.user} (ID: {bot.user.id})")
    logger.info(f"Connected to {len(bot.guilds)} servers")

    try:
        synced = await bot.tree.sync()
        logger.info(f"Synced {len(synced)} slash commands")
    except discord.HTTPException as e:
        logger.error(f"Failed to sync commands: {e}")


@bot.event
async def on_command_error(ctx: commands.Context, error: Exception):
    if isinstance(error, commands.CommandNotFound):
        return

    embed = discord.Embed(color=0xff0000, timestamp=discord.utils.utcnow())

    if isinstance(error, PremiumRequired):
        embed.title = "⭐ Premium Required"
        embed.description = error.message
        embed.color = 0xFEE75C
    elif isinstance(error, commands.CheckFailure):
        embed.title = "❌ Permission Denied"
        embed.description = "```You don't have permission to use this command```"
    elif isinstance(error, commands.MissingRequiredArgument):
        embed.title = "❌ Missing Argument"
        embed.description = f"```Missing argument: {error.param.name}```"
    else:
        logger.error(f"Unhandled error in {ctx.command}: {error}")
        logger.debug(traceback.format_exc())
        embed.title = "❌ Command Error"
        embed.description = f"```py\n{str(error)[:200]}```"

    if ctx.command:
        embed.set_footer(text=f"Command: {ctx.command.name}")
    await ctx.send(embed=embed, ephemeral=True)


@bot.hybrid_command(name="premium", help="Show your premium tier")
async def premium_command(ctx):
    config = await load_premium_config(bot.premium_config_path, bot.premium_file_handler)

    if not config.enabled:
        await ctx.send("ℹ️ The premium system is disabled on this bot.", ephemeral=True)
        return

    tier = get_user_tier(Requester.from_user(ctx.author), config)
    embed = discord.Embed(
        title="⭐ Premium Status",
        description=f"```Tier: {tier.title() if tier else 'None'}```",
        color=0xFEE75C if tier else 0x5865F2,
        timestamp=discord.utils.utcnow()
    )
    embed.set_footer(text=f"Requested by {ctx.author}", icon_url=ctx.author.display_avatar.url)
    await ctx.send(embed=embed, ephemeral=True)


@bot.hybrid_command(name="units", help="List loaded and disabled units (Bot Owner Only)")
@is_bot_owner()
async def units_command(ctx):
    embed = discord.Embed(
        title="🔌 Units",
        color=0x5865f2,
        timestamp=discord.utils.utcnow()
    )

    loaded = [f"• {name} ({load_time:.3f}s)" for name, load_time in sorted(bot.unit_load_times.items())]
    embed.add_field(name="Loaded", value="```" + ("\n".join(loaded) or "none") + "```", inline=False)
    embed.add_field(name="Disabled", value="```" + ("\n".join(bot.skipped_units) or "none") + "```", inline=False)
    await ctx.send(embed=embed, ephemeral=True)


def signal_handler(signum, frame):
    logger.info(f"Received signal {signum}, initiating shutdown...")
    asyncio.create_task(bot.close())
    sys.exit(0)


if __name__ == "__main__":
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if not TOKEN:
        logger.critical("DISCORD_TOKEN not found in .env!")
        sys.exit(1)

    try:
        bot.run(TOKEN, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.critical(f"Bot failed to start: {e}")
