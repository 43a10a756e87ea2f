from __future__ import annotations


class CapabilityError(RuntimeError):
    """A host capability failed; raised into the script, which may pcall it."""

    def __init__(self, capability: str, message: str) -> None:
        super().__init__(f"{capability}: {message}")
        self.capability = capability
        self.message = message


class ScriptError(RuntimeError):
    """The execution failed: uncaught error, compile error or bad terminal value."""


class ExecutionCancelled(RuntimeError):
    def __init__(self, message: str = "execution cancelled") -> None:
        super().__init__(message)


class RegistrationError(ValueError):
    pass
