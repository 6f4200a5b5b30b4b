"""Exception types raised by the matching engine."""


class MentorMatchingError(Exception):
    """Base class for errors raised by this package."""


class ProviderError(MentorMatchingError):
    """An external provider (embeddings or LLM) failed, timed out, or is not configured."""


class ExplanationsDisabledError(ProviderError):
    """Explanations were requested without a cohort id to scope the cache."""


class SelectionError(MentorMatchingError):
    """A manual selection refers to an unknown mentor or mentee."""


class CapacityExceededError(SelectionError):
    """Selecting the mentee would push the mentor past its capacity."""

    def __init__(self, mentor_id: str, capacity: int):
        super().__init__(f"Mentor {mentor_id} has no capacity left (capacity={capacity}).")
        self.mentor_id = mentor_id
        self.capacity = capacity
