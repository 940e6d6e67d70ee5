"""
Framework Errors
Exceptions shared by the unit manager, the premium handler and the bot host
"""


class FrameworkError(Exception):
    pass


class UnitsNotFoundError(FrameworkError):

    def __init__(self, root):
        super().__init__(f"Directory not found: {root}")
        self.root = root


class UnitIOError(FrameworkError):

    def __init__(self, path, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class EditorError(FrameworkError):
    pass


class ConfigError(FrameworkError):
    pass
