"""Persistence layer exceptions."""


class StoreError(Exception):
    """Base exception for document store failures."""

    pass


class DuplicateKeyError(StoreError):
    """A document with the same (collection, key) already exists."""

    def __init__(self, collection: str, key: str):
        super().__init__(f"Duplicate key '{key}' in collection '{collection}'")
        self.collection = collection
        self.key = key


class InvalidTransitionError(ValueError):
    """Approval request status change not permitted by the transition table."""

    def __init__(self, current: str, target: str, message: str):
        super().__init__(message)
        self.current = current
        self.target = target
