"""Domain errors raised by gateway services and mapped to HTTP responses in api/."""


class SessionNotFoundError(Exception):
    """No session with the given id is registered."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class SessionNotConnectedError(Exception):
    """The session exists but has no open connection."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} is not connected")
