"""
Unit Manager
Interactive terminal tool for browsing, pausing, resuming, editing and
deleting the bot's command and event units
"""

import os
import sys
import shlex
import asyncio
import subprocess
import logging
from logging.handlers import RotatingFileHandler
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm, Prompt
from rich.table import Table

from atomic_file_system import AtomicFileHandler, SafeConfig
from bot_errors import EditorError, FrameworkError, UnitIOError, UnitsNotFoundError
from unit_files import UNIT_EXTENSION, build_tree, scan_units, set_disabled, unit_state

logger = logging.getLogger('manager')

# NUL never occurs in a file or directory name, so no category or unit path equals these.
BACK = "\0back"


class UnitKind(Enum):
    COMMANDS = "Commands"
    EVENTS = "Events"

    @property
    def singular(self) -> str:
        return self.value[:-1].lower()


@dataclass(frozen=True)
class MainMenu:
    pass


@dataclass(frozen=True)
class CategoryList:
    kind: UnitKind


@dataclass(frozen=True)
class UnitList:
    kind: UnitKind
    category: str


@dataclass(frozen=True)
class UnitActions:
    kind: UnitKind
    category: str
    path: Path


@dataclass(frozen=True)
class CreateNew:
    pass


@dataclass(frozen=True)
class Exit:
    pass


NavigationState = Union[MainMenu, CategoryList, UnitList, UnitActions, CreateNew, Exit]

MAIN_MENU_OPTIONS = [
    ("manage-commands", "⚙️  Manage Commands"),
    ("manage-events", "📅 Manage Events"),
    ("create-new", "➕ Create New (Command/Event)"),
    ("exit", "🚪 Exit"),
]

UNIT_ACTION_OPTIONS = [
    ("edit", "✏️  Edit"),
    ("pause", "⏸️  Pause/Disable"),
    ("resume", "▶️  Resume/Enable"),
    ("delete", "🗑️  Delete"),
    (BACK, "⬅️  Back"),
]

# Choice reported to next_state once a delete has been confirmed and carried out.
DELETED = "\0deleted"


def next_state(state: NavigationState, choice: str) -> NavigationState:
    if isinstance(state, MainMenu):
        return {
            "manage-commands": CategoryList(UnitKind.COMMANDS),
            "manage-events": CategoryList(UnitKind.EVENTS),
            "create-new": CreateNew(),
            "exit": Exit(),
        }.get(choice, state)

    if isinstance(state, CategoryList):
        if choice == BACK:
            return MainMenu()
        return UnitList(state.kind, choice)

    if isinstance(state, UnitList):
        if choice == BACK:
            return CategoryList(state.kind)
        return UnitActions(state.kind, state.category, Path(choice))

    if isinstance(state, UnitActions):
        if choice in (BACK, DELETED):
            return UnitList(state.kind, state.category)
        return state

    return state


class RichPrompter:
    def __init__(self, console: Console):
        self.console = console

    def select(self, message: str, options: Sequence[Tuple[str, str]]) -> str:
        table = Table(show_header=False, box=None, padding=(0, 1))
        for index, (_, label) in enumerate(options, start=1):
            table.add_row(f"[bold cyan]{index}[/bold cyan]", label)

        self.console.print()
        self.console.print(f"[bold]{message}[/bold]")
        self.console.print(table)
        picked = Prompt.ask(
            "Select",
            console=self.console,
            choices=[str(i) for i in range(1, len(options) + 1)],
            show_choices=False
        )
        return options[int(picked) - 1][0]

    def confirm(self, message: str) -> bool:
        return Confirm.ask(message, console=self.console, default=False)


class Notifier:
    SYMBOLS = {
        "success": ("✅", "#57F287"),
        "error": ("❌", "#ED4245"),
        "info": ("ℹ️", "#5865F2"),
        "warning": ("⚠️", "#FEE75C"),
    }
    LEVELS = {
        "success": logging.INFO,
        "error": logging.ERROR,
        "info": logging.INFO,
        "warning": logging.WARNING,
    }

    def __init__(self, console: Console):
        self.console = console

    def __call__(self, message: str, kind: str = "info"):
        symbol, color = self.SYMBOLS[kind]
        timestamp = datetime.now().strftime("%H:%M:%S")
        self.console.print(f"[grey50][{timestamp}][/grey50] [{color}]{symbol}[/{color}] {escape(message)}")
        logger.log(self.LEVELS[kind], message)


def default_editor(configured: Optional[str] = None) -> str:
    editor = (os.getenv("EDITOR") or configured or "").strip()
    if editor:
        return editor
    return "notepad" if os.name == "nt" else "vi"


def editor_command(editor: str, path: Path, windows: Optional[bool] = None) -> List[str]:
    """
    Build the argv that opens ``path`` in ``editor``.

    ``editor`` is either the path of an executable (spaces allowed) or a
    command line such as ``code --wait``; quote the program when it has
    spaces and takes arguments. On Windows the command goes through
    ``start "" /wait`` so the caller still blocks until the editor closes.
    """
    if windows is None:
        windows = os.name == "nt"

    if Path(editor).is_file():
        parts = [editor]
    else:
        parts = [part.strip('"') for part in shlex.split(editor, posix=not windows)]
    if not parts:
        raise ValueError("empty editor command")

    if windows:
        return ["start", "", "/wait", *parts, str(path)]
    return [*parts, str(path)]


async def open_in_editor(path: Path, editor: str):
    """Run the editor on ``path`` and wait for it to exit."""
    try:
        argv = editor_command(editor, path)
        if os.name == "nt":
            # start is a cmd builtin
            process = await asyncio.create_subprocess_shell(subprocess.list2cmdline(argv))
        else:
            process = await asyncio.create_subprocess_exec(*argv)
        returncode = await process.wait()
    except (OSError, ValueError) as e:
        raise EditorError(f"Could not start '{editor}': {e}") from e

    if returncode != 0:
        raise EditorError(f"'{editor}' exited with code {returncode}")


EditorLauncher = Callable[[Path, str], Awaitable[None]]


class UnitManager:
    def __init__(
        self,
        roots: Dict[UnitKind, Path],
        prompter,
        notify: Callable[..., None],
        file_handler: Optional[AtomicFileHandler] = None,
        extension: str = UNIT_EXTENSION,
        editor: Optional[str] = None,
        launch_editor: EditorLauncher = open_in_editor,
        creator: Optional[str] = None
    ):
        self.roots = roots
        self.prompter = prompter
        self.notify = notify
        self.file_handler = file_handler or AtomicFileHandler(cache_ttl=0)
        self.extension = extension
        self.editor = editor
        self.launch_editor = launch_editor
        self.creator = creator

    async def run(self, state: NavigationState = None) -> NavigationState:
        """Drive the menu until the operator exits or leaves for the creation flow."""
        state = state or MainMenu()
        while not isinstance(state, (Exit, CreateNew)):
            state = await self.step(state)
        return state

    async def step(self, state: NavigationState) -> NavigationState:
        if isinstance(state, MainMenu):
            return self._main_menu(state)
        if isinstance(state, CategoryList):
            return self._category_list(state)
        if isinstance(state, UnitList):
            return self._unit_list(state)
        if isinstance(state, UnitActions):
            return await self._unit_actions(state)
        return state

    def _load_tree(self, kind: UnitKind):
        return build_tree(scan_units(self.roots[kind], self.extension))

    def _main_menu(self, state: MainMenu) -> NavigationState:
        choice = self.prompter.select("What would you like to do?", MAIN_MENU_OPTIONS)
        return next_state(state, choice)

    def _category_list(self, state: CategoryList) -> NavigationState:
        kind = state.kind
        try:
            tree = self._load_tree(kind)
        except UnitsNotFoundError:
            self.notify(f"{kind.value} directory not found!", "error")
            return MainMenu()
        except OSError as e:
            self.notify(f"Could not scan {kind.value.lower()}: {e}", "error")
            return MainMenu()

        if not tree:
            self.notify(f"No {kind.value.lower()} found!", "warning")
            return MainMenu()

        options = [(category, f"📁 {category} ({len(units)} files)") for category, units in tree.items()]
        options.append((BACK, "⬅️  Back to Main Menu"))
        return next_state(state, self.prompter.select("Select a category:", options))

    def _unit_list(self, state: UnitList) -> NavigationState:
        try:
            units = self._load_tree(state.kind).get(state.category)
        except (UnitsNotFoundError, OSError) as e:
            self.notify(f"Could not scan {state.kind.value.lower()}: {e}", "error")
            return MainMenu()

        if not units:
            self.notify(f"Category '{state.category}' is empty", "warning")
            return CategoryList(state.kind)

        options: List[Tuple[str, str]] = [(str(unit.path), f"📄 {unit.name}") for unit in units]
        options.append((BACK, "⬅️  Back"))
        return next_state(state, self.prompter.select(f"Select a {state.kind.singular}:", options))

    async def _unit_actions(self, state: UnitActions) -> NavigationState:
        path = state.path
        if not path.exists():
            self.notify(f"{path.name} no longer exists", "warning")
            return UnitList(state.kind, state.category)

        try:
            status = (await unit_state(path, self.file_handler)).value
        except UnitIOError as e:
            logger.debug(f"Could not read state of {path}: {e}")
            status = "unknown"

        action = self.prompter.select(
            f"What would you like to do with {path.name}? ({status})",
            UNIT_ACTION_OPTIONS
        )

        if action == "edit":
            await self._edit(path)
        elif action in ("pause", "resume"):
            await self._toggle(path, disable=(action == "pause"))
        elif action == "delete":
            if await self._delete(path):
                action = DELETED

        return next_state(state, action)

    async def _edit(self, path: Path):
        editor = default_editor(self.editor)
        self.notify(f"Opening {path.name} in {editor}...", "info")
        try:
            await self.launch_editor(path, editor)
            self.notify("File opened successfully!", "success")
        except EditorError as e:
            self.notify(f"Could not open editor: {e}", "error")

    async def _toggle(self, path: Path, disable: bool):
        try:
            marked = await set_disabled(path, disable, self.file_handler)
        except UnitIOError as e:
            self.notify(f"Error toggling state: {e.reason}", "error")
            return

        if not marked:
            self.notify(f"No cog class found in {path.name}, nothing to change", "warning")
        elif disable:
            self.notify(f"Paused: {path.name}", "success")
        else:
            self.notify(f"Resumed: {path.name}", "success")

    async def _delete(self, path: Path) -> bool:
        if not self.prompter.confirm(f"Are you sure you want to delete {path.name}? This cannot be undone!"):
            return False

        try:
            removed = await self.file_handler.atomic_delete(path)
        except UnitIOError as e:
            self.notify(f"Error deleting file: {e.reason}", "error")
            return False

        if not removed:
            self.notify(f"{path.name} was already gone", "warning")
        else:
            self.notify(f"File deleted: {path.name}", "success")
        return True

    async def launch_creator(self) -> bool:
        if not self.creator:
            self.notify("No creation wizard configured (manager.creator in config.json)", "warning")
            return False

        try:
            process = await asyncio.create_subprocess_exec(*shlex.split(self.creator))
            returncode = await process.wait()
        except (OSError, ValueError) as e:
            self.notify(f"Could not start creation wizard: {e}", "error")
            return False

        if returncode != 0:
            self.notify(f"Creation wizard exited with code {returncode}", "error")
            return False
        return True


def setup_logging(config: Optional[SafeConfig] = None, log_dir: str = "./botlogs") -> logging.Logger:
    os.makedirs(log_dir, exist_ok=True)

    level = config.get("logging.level", "INFO") if config else "INFO"
    manager_logger = logging.getLogger('manager')
    manager_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    formatter = logging.Formatter(
        '[{asctime}] [{levelname:<8}] {name}: {message}',
        style='{',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handler = RotatingFileHandler(
        filename=os.path.join(log_dir, 'manager.log'),
        encoding='utf-8',
        maxBytes=config.get("logging.max_bytes", 10485760) if config else 10485760,
        backupCount=config.get("logging.backup_count", 5) if config else 5
    )
    handler.setFormatter(formatter)
    manager_logger.addHandler(handler)

    # Unit and file helpers log to the framework logger.
    logging.getLogger('discord').addHandler(handler)
    return manager_logger


async def main() -> int:
    load_dotenv()
    config = SafeConfig(file_handler=AtomicFileHandler(cache_ttl=0))
    await config.initialize()
    setup_logging(config)

    console = Console()
    console.clear()
    console.print("\n[bold #57F287]🛠️  DISCOBASE MANAGER[/bold #57F287]\n")

    notify = Notifier(console)
    manager = UnitManager(
        roots={
            UnitKind.COMMANDS: Path(config.get("units.commands_path", "./commands")),
            UnitKind.EVENTS: Path(config.get("units.events_path", "./events")),
        },
        prompter=RichPrompter(console),
        notify=notify,
        extension=config.get("units.extension", UNIT_EXTENSION),
        editor=config.get("manager.editor"),
        creator=config.get("manager.creator")
    )
    return await run_session(manager, notify)


async def run_session(manager: UnitManager, notify: Callable[..., None]) -> int:
    """Run the menu to completion; Ctrl+C or end of input at a prompt counts as Exit."""
    try:
        final_state = await manager.run()
    except (KeyboardInterrupt, EOFError, asyncio.CancelledError):
        final_state = Exit()
    except FrameworkError as e:
        notify(f"Unexpected error: {e}", "error")
        final_state = Exit()

    if isinstance(final_state, CreateNew):
        await manager.launch_creator()
        return 0

    notify("Goodbye! 👋", "info")
    return 0


def cli():
    # Prompts block the loop, so Ctrl+C has to reach them as a plain
    # KeyboardInterrupt. asyncio.run would swap in a handler that only
    # cancels the main task.
    loop = asyncio.new_event_loop()
    try:
        code = loop.run_until_complete(main())
    except KeyboardInterrupt:
        code = 0
    finally:
        loop.close()
    sys.exit(code)


if __name__ == "__main__":
    cli()
