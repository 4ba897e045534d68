"""
cms/errors.py -- Errors raised by ContentStore.

The API layer maps them to 404 / 409 / 400 respectively.
"""


class ContentError(Exception):
    code = "content_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class EntityNotFound(ContentError):
    code = "not_found"

    def __init__(self, entity: str, entity_id) -> None:
        super().__init__(f"{entity} {entity_id} not found.")
        self.entity = entity
        self.entity_id = entity_id


class Conflict(ContentError):
    code = "conflict"


class ValidationFailed(ContentError):
    code = "invalid_value"
