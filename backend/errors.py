# backend/errors.py


class SubmissionError(Exception):
    """Base class for form submission failures."""


class ValidationError(SubmissionError):
    """The submission carries no way to contact the visitor."""


class StoreUnavailable(SubmissionError):
    def __init__(self, backend: str, reason: str):
        super().__init__(f"{backend} store unavailable: {reason}")
        self.backend = backend
        self.reason = reason


class ProvisioningFailure(SubmissionError):
    """The form_submissions table could not be ensured at startup."""
