"""
Premium Handler
Tiered entitlement checks for gated commands

The check functions are pure: callers pass in a PremiumConfig snapshot and own
how often premium.json is re-read (see ``load_premium_config``).
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Union
import logging

from discord.ext import commands

from atomic_file_system import AtomicFileHandler
from bot_errors import ConfigError, UnitIOError

logger = logging.getLogger('discord')

DEFAULT_NO_PREMIUM = "⭐ This command requires premium access."
DEFAULT_WRONG_TIER = "⭐ This command requires a higher premium tier."
TIER_PRIORITY = ("vip", "premium", "basic")
ALLOW_LISTED_TIER = "vip"


def _ids(values: Optional[Iterable[Any]], key: str) -> FrozenSet[str]:
    if values is None:
        return frozenset()
    if isinstance(values, (str, bytes, Mapping)) or not isinstance(values, Iterable):
        raise ConfigError(f"'{key}' must be a list of ids")
    return frozenset(str(v) for v in values)


@dataclass(frozen=True)
class PremiumMessages:
    no_premium: str = DEFAULT_NO_PREMIUM
    wrong_tier: str = DEFAULT_WRONG_TIER


@dataclass(frozen=True)
class PremiumConfig:
    enabled: bool = False
    premium_users: FrozenSet[str] = frozenset()
    premium_roles: FrozenSet[str] = frozenset()
    tiers: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    messages: PremiumMessages = PremiumMessages()

    @classmethod
    def from_dict(cls, data: Any) -> "PremiumConfig":
        if not isinstance(data, dict):
            raise ConfigError("premium config must be a JSON object")

        tiers_raw = data.get("tiers")
        if tiers_raw is None:
            tiers_raw = {}
        if not isinstance(tiers_raw, dict):
            raise ConfigError("'tiers' must be an object")

        tiers: Dict[str, FrozenSet[str]] = {}
        for name, tier in tiers_raw.items():
            if not isinstance(tier, dict):
                raise ConfigError(f"tier '{name}' must be an object")
            tiers[name] = _ids(tier.get("roleIds"), f"tiers.{name}.roleIds")

        messages_raw = data.get("messages")
        if messages_raw is None:
            messages_raw = {}
        if not isinstance(messages_raw, dict):
            raise ConfigError("'messages' must be an object")

        return cls(
            enabled=data.get("enabled") is True,
            premium_users=_ids(data.get("premiumUsers"), "premiumUsers"),
            premium_roles=_ids(data.get("premiumRoles"), "premiumRoles"),
            tiers=tiers,
            messages=PremiumMessages(
                no_premium=messages_raw.get("noPremium") or DEFAULT_NO_PREMIUM,
                wrong_tier=messages_raw.get("wrongTier") or DEFAULT_WRONG_TIER
            )
        )


DISABLED_CONFIG = PremiumConfig()


@dataclass(frozen=True)
class GateRequest:
    premium_only: bool = False
    premium_tier: Optional[str] = None

    @property
    def is_gated(self) -> bool:
        return self.premium_only or bool(self.premium_tier)

    @classmethod
    def from_command(cls, command) -> "GateRequest":
        """Read ``premium_only``/``premium_tier`` from ``command.extras``, then from its cog."""
        extras = getattr(command, "extras", None) or {}
        cog = getattr(command, "cog", None)

        premium_only = extras.get("premium_only", getattr(cog, "premium_only", False))
        premium_tier = extras.get("premium_tier", getattr(cog, "premium_tier", None))
        return cls(premium_only=bool(premium_only), premium_tier=premium_tier or None)


@dataclass(frozen=True)
class Requester:
    user_id: str
    role_ids: Optional[FrozenSet[str]] = None

    @property
    def is_member(self) -> bool:
        return self.role_ids is not None

    @classmethod
    def from_user(cls, user) -> "Requester":
        """Build from a discord ``User``/``Member``; only members carry roles."""
        roles = getattr(user, "roles", None)
        role_ids = frozenset(str(role.id) for role in roles) if roles is not None else None
        return cls(user_id=str(user.id), role_ids=role_ids)


@dataclass(frozen=True)
class PremiumCheck:
    allowed: bool
    message: Optional[str] = None


ALLOWED = PremiumCheck(allowed=True)


def _holds_any(requester: Requester, role_ids: Iterable[str]) -> bool:
    return requester.is_member and not requester.role_ids.isdisjoint(role_ids)


def has_premium_access(requester: Requester, config: PremiumConfig, tier: Optional[str] = None) -> bool:
    if not config.enabled:
        return True

    if requester.user_id in config.premium_users:
        return True

    if _holds_any(requester, config.premium_roles):
        return True

    if tier and _holds_any(requester, config.tiers.get(tier, ())):
        return True

    return False


def check_premium(gate: GateRequest, requester: Requester, config: PremiumConfig) -> PremiumCheck:
    if not config.enabled:
        return ALLOWED

    if not gate.is_gated:
        return ALLOWED

    if not has_premium_access(requester, config, gate.premium_tier):
        return PremiumCheck(allowed=False, message=config.messages.no_premium)

    if gate.premium_tier and requester.is_member:
        tier_roles = config.tiers.get(gate.premium_tier)
        if tier_roles is None:
            logger.warning(f"Unknown premium tier '{gate.premium_tier}', allowing")
            return ALLOWED

        if not _holds_any(requester, tier_roles) and requester.user_id not in config.premium_users:
            return PremiumCheck(allowed=False, message=config.messages.wrong_tier)

    return ALLOWED


def get_user_tier(requester: Requester, config: PremiumConfig) -> Optional[str]:
    if not config.enabled:
        return None

    if requester.user_id in config.premium_users:
        return ALLOW_LISTED_TIER

    if not requester.is_member:
        return None

    for tier_name in TIER_PRIORITY:
        tier_roles = config.tiers.get(tier_name)
        if tier_roles and _holds_any(requester, tier_roles):
            return tier_name

    return None


async def load_premium_config(path: Union[str, Path], file_handler: AtomicFileHandler, use_cache: bool = True) -> PremiumConfig:
    try:
        data = await file_handler.atomic_read_json(path, use_cache=use_cache)
        if data is None:
            raise ConfigError(f"Premium config not found: {path}")
        return PremiumConfig.from_dict(data)
    except ConfigError as e:
        logger.debug(f"Premium gating disabled: {e}")
        return DISABLED_CONFIG
    except UnitIOError as e:
        logger.error(f"Error loading premium config: {e}")
        return DISABLED_CONFIG


class PremiumRequired(commands.CheckFailure):

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def make_premium_gate(config_path: Union[str, Path], file_handler: AtomicFileHandler):
    async def premium_gate(ctx) -> bool:
        if ctx.command is None:
            return True

        gate = GateRequest.from_command(ctx.command)
        if not gate.is_gated:
            return True

        config = await load_premium_config(config_path, file_handler)
        result = check_premium(gate, Requester.from_user(ctx.author), config)
        if not result.allowed:
            logger.info(f"Premium denied: {ctx.command.qualified_name} | User: {ctx.author}")
            raise PremiumRequired(result.message)
        return True

    return premium_gate
