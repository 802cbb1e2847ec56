"""Dispatch exceptions."""

import uuid


class DispatchError(Exception):
    """Base exception for dispatch errors."""
    pass


class ItemNotFoundError(DispatchError):
    """The item to dispatch does not exist."""

    def __init__(self, item_type: str, item_id: uuid.UUID):
        self.item_type = item_type
        self.item_id = item_id
        super().__init__(f"{item_type} {item_id} not found")


class GroupNotFoundError(DispatchError):
    """The target family group does not exist."""

    def __init__(self, group_id: uuid.UUID):
        self.group_id = group_id
        super().__init__(f"Family group {group_id} not found")


class InvalidDestinationError(ValueError):
    """A stored destination cannot be used by its channel's transport."""
    pass
