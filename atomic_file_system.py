import os
import json
import asyncio
import aiofiles
import tempfile
import shutil
import time
from pathlib import Path
from typing import Any, Dict, Optional, Union
from collections import OrderedDict
import logging

from bot_errors import ConfigError, UnitIOError

logger = logging.getLogger('discord')

PathLike = Union[str, Path]


class AtomicFileHandler:
    def __init__(self, cache_ttl: float = 300, max_cache_size: int = 256):
        self._cache: OrderedDict[str, tuple[str, float]] = OrderedDict()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._cache_ttl = cache_ttl
        self._max_cache_size = max_cache_size
        self._lock_cleanup_threshold = 500

    def _key(self, filepath: PathLike) -> str:
        return os.path.abspath(str(filepath))

    def _get_lock(self, filepath: PathLike) -> asyncio.Lock:
        key = self._key(filepath)
        if key not in self._locks:
            if len(self._locks) >= self._lock_cleanup_threshold:
                self._cleanup_locks()
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _cleanup_locks(self):
        idle = [key for key, lock in self._locks.items() if not lock.locked()]
        for key in idle:
            del self._locks[key]
        logger.debug(f"Cleaned up {len(idle)} idle file locks")

    def _get_cache(self, filepath: PathLike) -> Optional[str]:
        key = self._key(filepath)
        entry = self._cache.get(key)
        if entry is None:
            return None
        content, stored_at = entry
        if (time.monotonic() - stored_at) >= self._cache_ttl:
            del self._cache[key]
            return None
        self._cache.move_to_end(key)
        return content

    def _set_cache(self, filepath: PathLike, content: str):
        key = self._key(filepath)
        self._cache.pop(key, None)
        self._cache[key] = (content, time.monotonic())

        while len(self._cache) > self._max_cache_size:
            self._cache.popitem(last=False)

    def invalidate_cache(self, filepath: PathLike):
        self._cache.pop(self._key(filepath), None)

    async def atomic_read(self, filepath: PathLike, use_cache: bool = True) -> Optional[str]:
        if use_cache:
            cached = self._get_cache(filepath)
            if cached is not None:
                return cached

        async with self._get_lock(filepath):
            if not os.path.exists(filepath):
                return None
            try:
                async with aiofiles.open(filepath, 'r', encoding='utf-8') as f:
                    content = await f.read()
            except (OSError, UnicodeDecodeError) as e:
                logger.error(f"Error reading {filepath}: {e}")
                raise UnitIOError(filepath, str(e)) from e

            if use_cache:
                self._set_cache(filepath, content)
            return content

    async def atomic_write(self, filepath: PathLike, content: str, invalidate_cache_after: bool = True) -> bool:
        """Write ``content`` to a temp file in the target directory, then move it into place."""
        filepath = str(filepath)
        directory = os.path.dirname(os.path.abspath(filepath))

        async with self._get_lock(filepath):
            try:
                os.makedirs(directory, exist_ok=True)
                temp_fd, temp_path = tempfile.mkstemp(
                    dir=directory,
                    prefix='.tmp_',
                    suffix=os.path.basename(filepath)
                )
            except OSError as e:
                logger.error(f"Error preparing write to {filepath}: {e}")
                raise UnitIOError(filepath, str(e)) from e

            os.close(temp_fd)
            try:
                async with aiofiles.open(temp_path, 'w', encoding='utf-8') as f:
                    await f.write(content)

                if os.name == 'nt' and os.path.exists(filepath):
                    os.remove(filepath)

                shutil.move(temp_path, filepath)
            except OSError as e:
                if os.path.exists(temp_path):
                    os.remove(temp_path)
                logger.error(f"Error writing to {filepath}: {e}")
                raise UnitIOError(filepath, str(e)) from e

            if invalidate_cache_after:
                self.invalidate_cache(filepath)
            else:
                self._set_cache(filepath, content)
            return True

    async def atomic_delete(self, filepath: PathLike) -> bool:
        async with self._get_lock(filepath):
            try:
                os.remove(filepath)
            except FileNotFoundError:
                self.invalidate_cache(filepath)
                return False
            except OSError as e:
                logger.error(f"Error deleting {filepath}: {e}")
                raise UnitIOError(filepath, str(e)) from e

            self.invalidate_cache(filepath)
            return True

    async def atomic_read_json(self, filepath: PathLike, use_cache: bool = True) -> Optional[Dict]:
        content = await self.atomic_read(filepath, use_cache)
        if content is None:
            return None
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise ConfigError(f"JSON decode error in {filepath}: {e}") from e

    async def atomic_write_json(self, filepath: PathLike, data: Dict, invalidate_cache_after: bool = True) -> bool:
        try:
            content = json.dumps(data, indent=4)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Error serializing JSON for {filepath}: {e}") from e
        return await self.atomic_write(filepath, content, invalidate_cache_after)


DEFAULT_CONFIG = {
    "prefix": "!",
    "units": {
        "commands_path": "./commands",
        "events_path": "./events",
        "extension": ".py"
    },
    "premium": {
        "config_path": "./premium.json",
        "cache_ttl": 30
    },
    "manager": {
        "editor": None,
        "creator": None
    },
    "logging": {
        "level": "INFO",
        "max_bytes": 10485760,
        "backup_count": 5
    }
}


class SafeConfig:
    def __init__(self, config_path: PathLike = "./config.json", file_handler: Optional[AtomicFileHandler] = None):
        self.config_path = str(config_path)
        self.file_handler = file_handler or AtomicFileHandler()
        self.data: Dict[str, Any] = {}
        self._initialized = False

    async def initialize(self):
        if self._initialized:
            return
        self.data = await self._load_config()
        self._initialized = True

    async def _load_config(self) -> dict:
        try:
            config = await self.file_handler.atomic_read_json(self.config_path)
        except (ConfigError, UnitIOError) as e:
            logger.error(f"Config unreadable, using defaults: {e}")
            return json.loads(json.dumps(DEFAULT_CONFIG))

        if config:
            return config

        default_config = json.loads(json.dumps(DEFAULT_CONFIG))
        try:
            await self.save(default_config)
            logger.info(f"Wrote default config to {self.config_path}")
        except (ConfigError, UnitIOError) as e:
            logger.warning(f"Could not write default config: {e}")
        return default_config

    async def save(self, data: dict = None):
        if data:
            self.data = data
        await self.file_handler.atomic_write_json(self.config_path, self.data)

    def get(self, key: str, default: Any = None) -> Any:
        value = self.data
        for k in key.split('.'):
            if not isinstance(value, dict):
                return default
            value = value.get(k)
            if value is None:
                return default
        return value

    async def set(self, key: str, value: Any):
        keys = key.split('.')
        data = self.data
        for k in keys[:-1]:
            data = data.setdefault(k, {})
        data[keys[-1]] = value
        await self.save()


global_file_handler = AtomicFileHandler(cache_ttl=300)
