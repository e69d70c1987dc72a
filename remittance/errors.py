"""Reconciliation request errors.

Only request-level problems are exceptions. Per-row outcomes (including the
business "Error" status) are data, and collaborator failures degrade to
defaults inside the pipeline.
"""


class ReconcileError(Exception):
    """Base class for failures that abort a whole run."""

    code = "internal_failure"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnauthenticatedError(ReconcileError):
    code = "unauthenticated"


class RejectedInputError(ReconcileError):
    """The upload was refused before any matching work was done."""

    code = "rejected_input"


class MissingFileError(RejectedInputError):
    code = "missing_file"


class WrongFileTypeError(RejectedInputError):
    code = "wrong_file_type"


class FileTooLargeError(RejectedInputError):
    code = "file_too_large"


class TooManyRowsError(RejectedInputError):
    code = "too_many_rows"
