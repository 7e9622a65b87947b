"""Errors raised by the practice engine."""


class PracticeError(Exception):
    """Base class for practice engine errors."""


class NoContentAvailable(PracticeError):
    """The word list has no active words to build a battery from."""

    def __init__(self, list_id: int):
        super().__init__(f"No words available for list {list_id}")
        self.list_id = list_id


class SessionNotFound(PracticeError):
    """No session exists with the given id."""

    def __init__(self, session_id: int):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class NotOwner(PracticeError):
    """The session belongs to another learner.

    Carries the same message as SessionNotFound, so a caller cannot tell
    whether another learner's session exists.
    """

    def __init__(self, session_id: int):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class SessionNotActive(PracticeError):
    """Answers are only accepted on an active session."""

    def __init__(self, session_id: int, run_state: str):
        super().__init__(f"Session {session_id} is {run_state}")
        self.session_id = session_id
        self.run_state = run_state


class UnexpectedAttempt(PracticeError):
    """The submission does not match the word the round expects next."""


class InvalidAnswer(PracticeError):
    """The answer payload cannot be evaluated for the phase."""


class ConcurrentUpdateError(PracticeError):
    """An attempt could not be recorded after repeated write conflicts."""
