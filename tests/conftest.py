from pathlib import Path

import pytest

PING_UNIT = '''from discord.ext import commands


class Ping(commands.Cog):
    def __init__(self, bot):
        self.bot = bot

    @commands.command()
    async def ping(self, ctx):
        await ctx.send("pong")


async def setup(bot):
    await bot.add_cog(Ping(bot))
'''

BAN_UNIT = '''from discord.ext import commands


class Ban(commands.Cog):
    disabled = True

    def __init__(self, bot):
        self.bot = bot


async def setup(bot):
    await bot.add_cog(Ban(bot))
'''


class ScriptedPrompter:
    """Answers prompts from a fixed script and records what was asked."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.asked = []

    def _next(self, message, options=None):
        self.asked.append((message, options))
        if not self.answers:
            raise AssertionError(f"unexpected prompt: {message}")
        answer = self.answers.pop(0)
        return answer(options) if callable(answer) else answer

    def select(self, message, options):
        return self._next(message, list(options))

    def confirm(self, message):
        return self._next(message)


class Notifications(list):
    def __call__(self, message, kind="info"):
        self.append((kind, message))

    def kinds(self):
        return [kind for kind, _ in self]


@pytest.fixture
def unit_root(tmp_path) -> Path:
    root = tmp_path / "cmds"
    (root / "util").mkdir(parents=True)
    (root / "mod").mkdir()
    (root / "util" / "ping.py").write_text(PING_UNIT, encoding="utf-8")
    (root / "mod" / "ban.py").write_text(BAN_UNIT, encoding="utf-8")
    return root


@pytest.fixture
def notifications():
    return Notifications()


@pytest.fixture
def scripted_prompter():
    return ScriptedPrompter
