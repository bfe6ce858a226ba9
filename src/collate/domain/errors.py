"""Exception hierarchy shared by every layer."""


class CollateError(Exception):
    """Base class for all Collate errors."""


class InvalidRatingError(CollateError, ValueError):
    """A rating outside 1-5 was submitted."""

    def __init__(self, rating: object):
        super().__init__(f"Rating must be an integer between 1 and 5, got {rating!r}")
        self.rating = rating


class CardNotFoundError(CollateError, LookupError):
    """A rating or navigation action referenced a card that is not present."""

    def __init__(self, card_id: str):
        super().__init__(f"Card not found: {card_id}")
        self.card_id = card_id


class NothingToStudy(CollateError):
    """Selection produced zero eligible cards, so no session can start."""


class PersistenceError(CollateError):
    """The card store rejected a statistics update or rating event append."""

    def __init__(self, message: str, card_id: str | None = None):
        super().__init__(message)
        self.card_id = card_id


class CardStoreError(CollateError):
    """The card store could not be read or returned malformed data."""
