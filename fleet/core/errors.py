"""Exception types shared across the fleet core."""


class FleetError(Exception):
    """Base class for errors surfaced to the CLI."""

    pass


class SessionExistsError(FleetError):
    """A session is already registered for the directory."""

    def __init__(self, directory: str, existing_name: str):
        self.directory = directory
        self.existing_name = existing_name
        super().__init__(f"A session already exists for this directory: {existing_name}")


class SessionNotFoundError(FleetError):
    """No session matches the given id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' not found")


class HookEventParseError(FleetError):
    """A notification file could not be read or parsed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to parse hook event {path}: {reason}")


class GitCommandError(FleetError):
    """A git invocation failed or timed out."""

    pass
