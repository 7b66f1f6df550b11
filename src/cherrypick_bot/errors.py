class CherryPickError(Exception):
    """Base class for failures while cherry-picking a PR."""

    pass


class ForkError(CherryPickError):
    """Raised when the bot's fork of a repository cannot be ensured."""

    pass


class AggregateError(CherryPickError):
    """Several errors collected from independent steps, reported together."""

    def __init__(self, errors: list[BaseException]):
        self.errors = list(errors)
        super().__init__(self._format())

    def _format(self) -> str:
        if len(self.errors) == 1:
            return str(self.errors[0])
        return "[" + ", ".join(str(e) for e in self.errors) + "]"

