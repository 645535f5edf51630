import itertools
from typing import Any, Awaitable, Callable, Optional


class Superseded(Exception):
    """Raised to the caller of a request that a newer request replaced while it was in flight."""


class LatestOnly:
    """
    Apply only the result of the most recent request.

    There is no way to cancel an in-flight request, so each call gets a ticket
    and a result that arrives after a newer call was started is dropped.

        guard = LatestOnly()
        quiz = await guard.run(api.get_student_quiz(quiz_id))
    """

    def __init__(self):
        self._tickets = itertools.count(1)
        self._latest = 0

    def issue(self) -> int:
        self._latest = next(self._tickets)
        return self._latest

    def is_current(self, ticket: int) -> bool:
        return ticket == self._latest

    def invalidate(self) -> None:
        # e.g. the view was left; nothing pending may apply anymore
        self.issue()

    async def run(self, request: Awaitable[Any], apply: Optional[Callable[[Any], None]] = None) -> Any:
        ticket = self.issue()
        try:
            result = await request
        except Exception as e:
            # a stale failure is dropped like a stale result
            if not self.is_current(ticket):
                raise Superseded() from e
            raise
        if not self.is_current(ticket):
            raise Superseded()
        if apply is not None:
            apply(result)
        return result
