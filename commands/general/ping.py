import discord
from discord.ext import commands
import logging

logger = logging.getLogger('discord')


class Ping(commands.Cog):
    def __init__(self, bot):
        self.bot = bot

    @commands.hybrid_command(name="ping", help="Check the bot's latency")
    async def ping(self, ctx):
        embed = discord.Embed(
            title="🏓 Pong!",
            description=f"```Latency: {self.bot.latency*1000:.2f}ms```",
            color=0x57F287,
            timestamp=discord.utils.utcnow()
        )
        await ctx.send(embed=embed)


async def setup(bot):
    await bot.add_cog(Ping(bot))
