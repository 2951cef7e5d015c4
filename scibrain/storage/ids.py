"""Counter-based id allocation."""

from scibrain.storage import keys
from scibrain.storage.backend import KeyValueBackend

USERS = "users"
SESSIONS = "sessions"
DOCUMENTS = "documents"
REVIEWERS = "reviewers"
ATTEMPTS = "attempts"


class IdAllocator:
    """
    Issues strictly increasing integer ids per category, starting at 1.

    Relies on the backend's atomic increment; ids of deleted records are
    never handed out again.
    """

    def __init__(self, backend: KeyValueBackend):
        self.backend = backend

    async def next(self, category: str) -> int:
        return await self.backend.incr(keys.counter(category))
