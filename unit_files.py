"""
Unit Files
Scans the commands/events roots, groups units by category and flips the
``disabled`` marker on a unit's cog without importing it.

Recognized text shapes:
    declaration  ``class Name(...Cog...):`` at column 0 (first match wins)
    block        the lines after the declaration up to the next non-blank column-0 line
    marker       ``disabled = True`` / ``disabled = False`` at the block's own indentation
"""

import re
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from atomic_file_system import AtomicFileHandler
from bot_errors import UnitIOError, UnitsNotFoundError

logger = logging.getLogger('discord')

ROOT_CATEGORY = "Root"
UNIT_EXTENSION = ".py"
DEFAULT_INDENT = "    "

DECLARATION_RE = re.compile(
    r'^class[ \t]+\w+[ \t]*\([^)\n]*\bCog\b[^)\n]*\)[ \t]*:[ \t]*(?:#[^\n]*)?$',
    re.MULTILINE
)
BLOCK_END_RE = re.compile(r'^(?=\S)', re.MULTILINE)
BODY_INDENT_RE = re.compile(r'^([ \t]+)\S', re.MULTILINE)


class UnitState(Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"
    UNMARKED = "unmarked"

    @property
    def is_enabled(self) -> bool:
        return self is not UnitState.DISABLED


@dataclass(frozen=True)
class UnitFile:
    name: str
    path: Path
    relative_path: Path

    @property
    def category(self) -> str:
        parts = self.relative_path.parts
        return parts[0] if len(parts) > 1 else ROOT_CATEGORY


def scan_units(root: Union[str, Path], extension: str = UNIT_EXTENSION) -> List[UnitFile]:
    root = Path(root).resolve()
    if not root.is_dir():
        raise UnitsNotFoundError(root)

    units: List[UnitFile] = []
    _walk(root, root, extension, units)
    return units


def _walk(root: Path, directory: Path, extension: str, units: List[UnitFile]):
    for entry in directory.iterdir():
        if entry.is_dir():
            _walk(root, entry, extension, units)
        elif entry.name.endswith(extension):
            units.append(UnitFile(
                name=entry.name[:-len(extension)] if extension else entry.name,
                path=entry,
                relative_path=entry.relative_to(root)
            ))


def build_tree(units: List[UnitFile]) -> Dict[str, List[UnitFile]]:
    tree: Dict[str, List[UnitFile]] = {}
    for unit in units:
        tree.setdefault(unit.category, []).append(unit)
    return tree


def _declaration_block(text: str) -> Optional[Tuple[int, int]]:
    """Return the ``(start, end)`` offsets of the cog's class body, or None."""
    match = DECLARATION_RE.search(text)
    if not match:
        return None

    newline = text.find("\n", match.end())
    if newline == -1:
        return len(text), len(text)
    body_start = newline + 1

    end_match = BLOCK_END_RE.search(text, body_start)
    return body_start, end_match.start() if end_match else len(text)


def _body_indent(body: str) -> Optional[str]:
    match = BODY_INDENT_RE.search(body)
    return match.group(1) if match else None


def _marker_re(indent: str, value: str = r'True|False') -> re.Pattern:
    return re.compile(
        rf'^({re.escape(indent)}disabled[ \t]*=[ \t]*)({value})\b',
        re.MULTILINE
    )


def _block_markers(text: str) -> Tuple[Optional[Tuple[int, int]], List[str]]:
    block = _declaration_block(text)
    if block is None:
        return None, []

    body = text[block[0]:block[1]]
    indent = _body_indent(body)
    if indent is None:
        return block, []
    return block, [m.group(2) for m in _marker_re(indent).finditer(body)]


def has_declaration(text: str) -> bool:
    return DECLARATION_RE.search(text) is not None


def read_state(text: str) -> UnitState:
    _, markers = _block_markers(text)
    if not markers:
        return UnitState.UNMARKED
    return UnitState.DISABLED if "True" in markers else UnitState.ENABLED


def set_disabled_text(text: str, disabled: bool) -> str:
    block, markers = _block_markers(text)
    if block is None:
        return text

    start, end = block
    body = text[start:end]
    indent = _body_indent(body)

    if disabled and not markers:
        body = f"{indent or DEFAULT_INDENT}disabled = True\n{body}"
    elif markers:
        old, new = ('False', 'True') if disabled else ('True', 'False')
        body = _marker_re(indent, old).sub(rf'\g<1>{new}', body)

    if body == text[start:end]:
        return text

    prefix = text[:start]
    if prefix and not prefix.endswith("\n"):
        prefix += "\n"
    return prefix + body + text[end:]


async def set_disabled(path: Union[str, Path], disabled: bool, file_handler: AtomicFileHandler) -> bool:
    content = await file_handler.atomic_read(path, use_cache=False)
    if content is None:
        raise UnitIOError(path, "file does not exist")

    if not has_declaration(content):
        logger.warning(f"No cog declaration found in {path}, marker left untouched")
        return False

    updated = set_disabled_text(content, disabled)
    if updated != content:
        await file_handler.atomic_write(path, updated)

    logger.info(f"Unit {'disabled' if disabled else 'enabled'}: {Path(path).name}")
    return True


async def unit_state(path: Union[str, Path], file_handler: AtomicFileHandler) -> UnitState:
    content = await file_handler.atomic_read(path, use_cache=False)
    if content is None:
        raise UnitIOError(path, "file does not exist")
    return read_state(content)
