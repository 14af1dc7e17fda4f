"""
Error kinds raised by the column catalog.

Every error carries a machine-readable ``kind`` and a short
``user_message`` suitable for a transient notification.
"""


class CatalogError(Exception):
    """Base class for column catalog failures."""

    kind = "CatalogError"
    default_user_message = "Column operation failed"

    def __init__(self, message, user_message=None):
        self.message = message
        self.user_message = user_message or self.default_user_message
        super().__init__(message)


class InvalidName(CatalogError):
    """Field key does not match ^[a-z][a-z0-9_]*$."""

    kind = "InvalidName"
    default_user_message = (
        "Column name must start with a lowercase letter and contain only "
        "lowercase letters, numbers, and underscores"
    )

    def __init__(self, field_key):
        self.field_key = field_key
        super().__init__(f"Invalid field key: {field_key!r}")


class DuplicateKey(CatalogError):
    kind = "DuplicateKey"
    default_user_message = "Column name already exists"

    def __init__(self, field_key):
        self.field_key = field_key
        super().__init__(f"Column '{field_key}' is already defined")


class Forbidden(CatalogError):
    """Attempted deletion (or physical drop) of a system-defined column."""

    kind = "Forbidden"
    default_user_message = "Cannot delete system columns"

    def __init__(self, field_key, reason="system-defined columns cannot be deleted"):
        self.field_key = field_key
        super().__init__(f"Column '{field_key}': {reason}")


class InvalidMutation(CatalogError):
    kind = "InvalidMutation"
    default_user_message = "That column property cannot be changed"

    def __init__(self, message, attributes=()):
        self.attributes = tuple(attributes)
        super().__init__(message)


class SchemaConflict(CatalogError):
    """Physical field already exists, or the physical schema disagrees."""

    kind = "SchemaConflict"
    default_user_message = "Column already exists in the roadmap table"

    def __init__(self, field_key, detail=""):
        self.field_key = field_key
        msg = f"Schema conflict on field '{field_key}'"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class NotFound(CatalogError):
    kind = "NotFound"
    default_user_message = "Column not found"

    def __init__(self, what):
        self.what = what
        super().__init__(f"Not found: {what}")


class PartialFailure(CatalogError):
    """
    One store was changed and its paired (or compensating) operation failed.
    The catalog and the physical table now disagree and need an admin.
    """

    kind = "PartialFailure"

    def __init__(self, operation, field_key, cause, compensation_error=None,
                 user_message=None):
        self.operation = operation
        self.field_key = field_key
        self.cause = cause
        self.compensation_error = compensation_error
        msg = (
            f"{operation} of column '{field_key}' left the column catalog and "
            f"the roadmap table inconsistent: {cause}"
        )
        if compensation_error is not None:
            msg += f" (rollback failed: {compensation_error})"
        msg += "; manual administrative correction is required"
        super().__init__(
            msg,
            user_message=user_message or (
                f"Column '{field_key}' is in an inconsistent state; "
                f"contact an administrator"
            ),
        )
