"""Exception types shared across gptcli."""


class AgentError(Exception):
    """Raised for fatal runtime failures (transport errors, broken setup)."""


class ConfigError(AgentError):
    """Raised for invalid configuration (missing API key, bad config file, etc.)."""


class TurnInterrupted(Exception):
    """Raised when the user interrupts a reply while it is still streaming."""


class FixableError(Exception):
    """A failure the model can correct on its own.

    The formatted text (message plus a ``# GPT:`` hint line) is sent back to
    the model as the next turn's input instead of ending the session.
    """

    hint = "Try something else, or use the prompt command to ask how to proceed."

    def __init__(self, message: str, hint: str | None = None):
        super().__init__(message)
        self.message = message
        if hint is not None:
            self.hint = hint

    def __str__(self) -> str:
        return f"{self.message}\n# GPT: {self.hint}"


class FormatError(FixableError):
    hint = (
        "Each command must be preceded by a comment line starting with '#' "
        "that explains the command."
    )


class UnknownCommandError(FixableError):
    hint = (
        "You can only issue commands from the available commands list. "
        "If you are stuck, use the prompt command to ask for directions."
    )


class DispatchError(FixableError):
    hint = "Your reply must contain a comment starting with '#', then a command."


class ArgumentError(FixableError):
    pass


class PermissionDeniedError(FixableError):
    pass


class CommandFailedError(FixableError):
    hint = "The command failed. Try something else, or prompt on how to proceed."
