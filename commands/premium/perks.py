import discord
from discord.ext import commands
import logging

logger = logging.getLogger('discord')


class Perks(commands.Cog):
    disabled = False
    premium_only = True

    def __init__(self, bot):
        self.bot = bot

    @commands.hybrid_command(name="perks", help="Show premium perks")
    async def perks(self, ctx):
        await ctx.send("⭐ Thanks for supporting the bot! Premium perks are active.", ephemeral=True)

    @commands.hybrid_command(name="vipstatus", help="VIP-only status", extras={"premium_tier": "vip"})
    async def vipstatus(self, ctx):
        await ctx.send(f"👑 VIP lounge open for {ctx.author.mention}", ephemeral=True)


async def setup(bot):
    await bot.add_cog(Perks(bot))
