from discord.ext import commands
import logging

logger = logging.getLogger('discord')


class CommandLogger(commands.Cog):
    def __init__(self, bot):
        self.bot = bot

    @commands.Cog.listener()
    async def on_command(self, ctx):
        logger.info(f"Command: {ctx.command.qualified_name} | User: {ctx.author} | Guild: {ctx.guild}")

    @commands.Cog.listener()
    async def on_guild_join(self, guild):
        logger.info(f"Joined guild: {guild.name} (ID: {guild.id}) | Members: {guild.member_count}")


async def setup(bot):
    await bot.add_cog(CommandLogger(bot))
