import asyncio
import os
import shutil
import signal
import subprocess
from pathlib import Path

import pytest

import manage
from atomic_file_system import AtomicFileHandler
from bot_errors import EditorError, UnitIOError
from manage import (
    BACK,
    DELETED,
    CategoryList,
    CreateNew,
    Exit,
    MainMenu,
    UnitActions,
    UnitKind,
    UnitList,
    UnitManager,
    default_editor,
    editor_command,
    next_state,
    open_in_editor,
    run_session,
)


def pick(label_fragment):
    """Answer a select prompt with the option whose label contains ``label_fragment``."""
    def answer(options):
        for value, label in options:
            if label_fragment in label:
                return value
        raise AssertionError(f"{label_fragment!r} not offered in {options}")
    return answer


def make_manager(root, prompter, notify, **kwargs):
    roots = {UnitKind.COMMANDS: root, UnitKind.EVENTS: root.parent / "events"}
    return UnitManager(roots=roots, prompter=prompter, notify=notify, **kwargs)


class TestNextState:
    def test_main_menu(self):
        assert next_state(MainMenu(), "manage-commands") == CategoryList(UnitKind.COMMANDS)
        assert next_state(MainMenu(), "manage-events") == CategoryList(UnitKind.EVENTS)
        assert next_state(MainMenu(), "create-new") == CreateNew()
        assert next_state(MainMenu(), "exit") == Exit()

    def test_back_chain(self):
        actions = UnitActions(UnitKind.EVENTS, "util", Path("/x/ping.py"))
        assert next_state(actions, BACK) == UnitList(UnitKind.EVENTS, "util")
        assert next_state(UnitList(UnitKind.EVENTS, "util"), BACK) == CategoryList(UnitKind.EVENTS)
        assert next_state(CategoryList(UnitKind.EVENTS), BACK) == MainMenu()

    def test_drill_down(self):
        assert next_state(CategoryList(UnitKind.COMMANDS), "util") == UnitList(UnitKind.COMMANDS, "util")
        assert next_state(UnitList(UnitKind.COMMANDS, "util"), "/x/ping.py") == UnitActions(
            UnitKind.COMMANDS, "util", Path("/x/ping.py")
        )

    @pytest.mark.parametrize("action", ["edit", "pause", "resume", "delete"])
    def test_actions_stay_put(self, action):
        actions = UnitActions(UnitKind.COMMANDS, "util", Path("/x/ping.py"))
        assert next_state(actions, action) == actions

    def test_confirmed_delete_returns_to_list(self):
        actions = UnitActions(UnitKind.COMMANDS, "util", Path("/x/ping.py"))
        assert next_state(actions, DELETED) == UnitList(UnitKind.COMMANDS, "util")


def test_exit_from_main_menu(unit_root, notifications, scripted_prompter):
    prompter = scripted_prompter(["exit"])
    final = asyncio.run(make_manager(unit_root, prompter, notifications).run())
    assert final == Exit()


def test_create_new_leaves_loop(unit_root, notifications, scripted_prompter):
    prompter = scripted_prompter(["create-new"])
    assert asyncio.run(make_manager(unit_root, prompter, notifications).run()) == CreateNew()


def test_missing_root_warns_and_returns(unit_root, notifications, scripted_prompter):
    prompter = scripted_prompter(["manage-events", "exit"])

    asyncio.run(make_manager(unit_root, prompter, notifications).run())

    assert notifications == [("error", "Events directory not found!")]
    assert len(prompter.asked) == 2


def test_empty_root_warns_and_returns(tmp_path, notifications, scripted_prompter):
    root = tmp_path / "cmds"
    root.mkdir()
    prompter = scripted_prompter(["manage-commands", "exit"])

    asyncio.run(make_manager(root, prompter, notifications).run())

    assert notifications == [("warning", "No commands found!")]


def test_category_listing_shows_counts(unit_root, notifications, scripted_prompter):
    (unit_root / "util" / "echo.py").write_text("", encoding="utf-8")
    prompter = scripted_prompter(["manage-commands", BACK, "exit"])

    asyncio.run(make_manager(unit_root, prompter, notifications).run())

    message, options = prompter.asked[1]
    labels = dict(options)
    assert message == "Select a category:"
    assert labels["util"] == "📁 util (2 files)"
    assert labels["mod"] == "📁 mod (1 files)"
    assert options[-1][0] == BACK


def test_pause_and_resume_rewrite_file(unit_root, notifications, scripted_prompter):
    ping = unit_root / "util" / "ping.py"
    prompter = scripted_prompter([
        "manage-commands", "util", pick("ping"),
        "pause", "resume", "pause",
        BACK, BACK, BACK, "exit",
    ])

    asyncio.run(make_manager(unit_root, prompter, notifications).run())

    text = ping.read_text(encoding="utf-8")
    assert "    disabled = True\n" in text
    assert text.count("disabled =") == 1
    assert notifications.kinds() == ["success", "success", "success"]

    action_prompts = [message for message, _ in prompter.asked if message.startswith("What would")]
    assert action_prompts == [
        "What would you like to do with ping.py? (unmarked)",
        "What would you like to do with ping.py? (disabled)",
        "What would you like to do with ping.py? (enabled)",
    ]


def test_delete_confirmed_removes_file_and_category(unit_root, notifications, scripted_prompter):
    ban = unit_root / "mod" / "ban.py"
    prompter = scripted_prompter([
        "manage-commands", "mod", pick("ban"),
        "delete", True,
        # mod is now empty, so the unit list falls back to the category list
        BACK, "exit",
    ])

    asyncio.run(make_manager(unit_root, prompter, notifications).run())

    assert not ban.exists()
    assert ("success", "File deleted: ban.py") in notifications
    assert ("warning", "Category 'mod' is empty") in notifications
    _, options = prompter.asked[-2]
    assert [value for value, _ in options] == ["util", BACK]


def test_delete_declined_keeps_file(unit_root, notifications, scripted_prompter):
    ban = unit_root / "mod" / "ban.py"
    prompter = scripted_prompter([
        "manage-commands", "mod", pick("ban"),
        "delete", False,
        BACK, BACK, BACK, "exit",
    ])

    asyncio.run(make_manager(unit_root, prompter, notifications).run())

    assert ban.exists()
    assert notifications == []
    assert "ban.py" in prompter.asked[4][0]


def test_unit_removed_behind_our_back(unit_root, notifications, scripted_prompter):
    ping = unit_root / "util" / "ping.py"

    def vanish(options):
        ping.unlink()
        return str(ping)

    prompter = scripted_prompter(["manage-commands", "util", vanish, BACK, "exit"])

    asyncio.run(make_manager(unit_root, prompter, notifications).run())

    assert ("warning", "ping.py no longer exists") in notifications


def test_edit_uses_launcher(unit_root, notifications, scripted_prompter, monkeypatch):
    monkeypatch.setenv("EDITOR", "code --wait")
    launched = []

    async def launcher(path, editor):
        launched.append((path, editor))

    prompter = scripted_prompter(["manage-commands", "util", pick("ping"), "edit", BACK, BACK, BACK, "exit"])

    asyncio.run(make_manager(unit_root, prompter, notifications, launch_editor=launcher).run())

    assert launched == [((unit_root / "util" / "ping.py").resolve(), "code --wait")]
    assert notifications.kinds() == ["info", "success"]


def test_edit_failure_is_reported(unit_root, notifications, scripted_prompter):
    async def launcher(path, editor):
        raise EditorError("boom")

    prompter = scripted_prompter(["manage-commands", "util", pick("ping"), "edit", BACK, BACK, BACK, "exit"])

    final = asyncio.run(make_manager(unit_root, prompter, notifications, launch_editor=launcher).run())

    assert final == Exit()
    assert notifications[-1] == ("error", "Could not open editor: boom")


def test_default_editor(monkeypatch):
    monkeypatch.delenv("EDITOR", raising=False)
    assert default_editor("nano") == "nano"
    assert default_editor() in ("vi", "notepad")
    monkeypatch.setenv("EDITOR", "emacs")
    assert default_editor("nano") == "emacs"


def test_launch_creator_not_configured(unit_root, notifications, scripted_prompter):
    manager = make_manager(unit_root, scripted_prompter([]), notifications)
    assert asyncio.run(manager.launch_creator()) is False
    assert notifications.kinds() == ["warning"]


class FailingFileHandler(AtomicFileHandler):
    async def atomic_write(self, filepath, content, invalidate_cache_after=True):
        raise UnitIOError(filepath, "disk full")

    async def atomic_delete(self, filepath):
        raise UnitIOError(filepath, "disk full")


def raising(exc_type):
    def answer(options):
        raise exc_type()
    return answer


def test_write_errors_are_reported_and_session_continues(unit_root, notifications, scripted_prompter):
    ping = unit_root / "util" / "ping.py"
    original = ping.read_text(encoding="utf-8")
    prompter = scripted_prompter([
        "manage-commands", "util", pick("ping"),
        "pause", "delete", True,
        BACK, BACK, BACK, "exit",
    ])
    manager = make_manager(unit_root, prompter, notifications, file_handler=FailingFileHandler(cache_ttl=0))

    final = asyncio.run(manager.run())

    assert final == Exit()
    assert notifications == [
        ("error", "Error toggling state: disk full"),
        ("error", "Error deleting file: disk full"),
    ]
    assert ping.read_text(encoding="utf-8") == original


def test_delete_of_vanished_file_warns(unit_root, notifications, scripted_prompter):
    ping = unit_root / "util" / "ping.py"

    def vanish_then_confirm(options):
        ping.unlink()
        return True

    prompter = scripted_prompter([
        "manage-commands", "util", pick("ping"),
        "delete", vanish_then_confirm,
        BACK, "exit",
    ])

    asyncio.run(make_manager(unit_root, prompter, notifications).run())

    assert ("warning", "ping.py was already gone") in notifications
    assert "success" not in notifications.kinds()


def test_category_named_back_is_browsable(unit_root, notifications, scripted_prompter):
    (unit_root / "back").mkdir()
    (unit_root / "back" / "kick.py").write_text("", encoding="utf-8")
    prompter = scripted_prompter(["manage-commands", "back", BACK, BACK, "exit"])

    asyncio.run(make_manager(unit_root, prompter, notifications).run())

    message, options = prompter.asked[2]
    assert message == "Select a command:"
    assert [label for _, label in options][0] == "📄 kick"
    assert notifications == []


@pytest.mark.parametrize("exc_type", [KeyboardInterrupt, EOFError, asyncio.CancelledError])
def test_interrupt_at_prompt_ends_session(unit_root, notifications, scripted_prompter, exc_type):
    prompter = scripted_prompter(["manage-commands", raising(exc_type)])
    manager = make_manager(unit_root, prompter, notifications)

    assert asyncio.run(run_session(manager, notifications)) == 0
    assert notifications == [("info", "Goodbye! 👋")]


def test_cli_leaves_sigint_to_prompts(monkeypatch):
    seen = []

    async def fake_main():
        seen.append(signal.getsignal(signal.SIGINT))
        return 0

    monkeypatch.setattr(manage, "main", fake_main)
    previous = signal.signal(signal.SIGINT, signal.default_int_handler)
    try:
        with pytest.raises(SystemExit) as exc_info:
            manage.cli()
    finally:
        signal.signal(signal.SIGINT, previous)

    assert exc_info.value.code == 0
    assert seen == [signal.default_int_handler]


def test_cli_interrupt_exits_zero(monkeypatch):
    async def fake_main():
        raise KeyboardInterrupt()

    monkeypatch.setattr(manage, "main", fake_main)

    with pytest.raises(SystemExit) as exc_info:
        manage.cli()
    assert exc_info.value.code == 0


class TestEditorCommand:
    def test_command_line_is_split(self, tmp_path):
        target = tmp_path / "ping.py"
        assert editor_command("code --wait", target, windows=False) == ["code", "--wait", str(target)]

    def test_executable_path_with_spaces(self, tmp_path):
        program = tmp_path / "My Editor" / "ed"
        program.parent.mkdir()
        program.write_text("", encoding="utf-8")
        target = tmp_path / "ping.py"

        assert editor_command(str(program), target, windows=False) == [str(program), str(target)]

    def test_windows_start_quotes_editor(self):
        target = Path("C:\\bot\\commands\\ping.py")
        editor = '"C:\\Program Files\\Notepad++\\notepad++.exe" -multiInst'

        argv = editor_command(editor, target, windows=True)

        assert argv == [
            "start", "", "/wait",
            "C:\\Program Files\\Notepad++\\notepad++.exe", "-multiInst",
            str(target),
        ]
        assert subprocess.list2cmdline(argv) == (
            'start "" /wait "C:\\Program Files\\Notepad++\\notepad++.exe" -multiInst '
            + str(target)
        )


@pytest.mark.skipif(os.name == "nt" or shutil.which("sh") is None, reason="needs a POSIX shell")
class TestOpenInEditor:
    def test_clean_exit(self, tmp_path):
        asyncio.run(open_in_editor(tmp_path / "ping.py", "true"))

    def test_non_zero_exit(self, tmp_path):
        with pytest.raises(EditorError, match="exited with code 1"):
            asyncio.run(open_in_editor(tmp_path / "ping.py", "false"))

    def test_editor_arguments_are_passed(self, tmp_path):
        with pytest.raises(EditorError, match="exited with code 3"):
            asyncio.run(open_in_editor(tmp_path / "ping.py", "sh -c 'exit 3'"))

    def test_missing_binary(self, tmp_path):
        with pytest.raises(EditorError, match="Could not start 'no-such-editor-xyz'"):
            asyncio.run(open_in_editor(tmp_path / "ping.py", "no-such-editor-xyz"))
