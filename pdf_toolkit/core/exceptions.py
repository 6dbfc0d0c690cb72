"""Custom exceptions for PDF toolkit operations.

All error messages are written in plain English so users know what went
wrong. Each error carries a stable ``error_type`` (the structured "kind"
reported to callers) and an HTTP status hint for the serving layer.
"""

from typing import Any, Dict, Optional


class PDFToolkitError(Exception):
    """Base exception for all PDF toolkit errors."""

    error_type: str = "PDFToolkitError"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def to_dict(self, include_detail: bool = False) -> Dict[str, Any]:
        """Structured ``{kind, message}`` pair, plus detail outside production."""
        payload: Dict[str, Any] = {"kind": self.error_type, "message": self.message}
        if include_detail and self.original_error is not None:
            payload["detail"] = str(self.original_error)
        return payload


class ValidationError(PDFToolkitError):
    """Caller-supplied parameters are structurally invalid.

    Raised before an operation record is created.
    """

    error_type: str = "ValidationError"
    status_code: int = 400

    @staticmethod
    def too_few_files(operation: str, minimum: int) -> "ValidationError":
        return ValidationError(f"Please upload at least {minimum} PDF files to {operation}")

    @staticmethod
    def missing_file(operation: str) -> "ValidationError":
        return ValidationError(f"Please upload a PDF file to {operation}")


class StructureError(PDFToolkitError):
    """PDF file is damaged or malformed."""

    error_type: str = "StructureError"
    status_code: int = 422

    @staticmethod
    def for_file(
        filename: str, detail: str = "", original_error: Optional[Exception] = None
    ) -> "StructureError":
        """Create error with simple message for a specific file."""
        base_msg = f"'{filename}' is damaged and cannot be processed."
        if detail:
            return StructureError(f"{base_msg} Issue: {detail}", original_error)
        return StructureError(
            f"{base_msg} Try re-saving it from the original program, "
            f"or use a different copy of the file.",
            original_error,
        )


class EncryptionError(PDFToolkitError):
    """PDF is password-protected or locked."""

    error_type: str = "EncryptionError"
    status_code: int = 422

    @staticmethod
    def for_file(filename: str) -> "EncryptionError":
        return EncryptionError(
            f"'{filename}' is password-protected or locked. "
            f"Please remove the password and try again."
        )


class BackendUnavailableError(PDFToolkitError):
    """A single rasterization backend cannot run in this environment.

    Only ever seen inside the rasterization engine.
    """

    error_type: str = "BackendUnavailableError"


class ConversionExhaustedError(PDFToolkitError):
    """Every rasterization backend failed."""

    error_type: str = "ConversionExhaustedError"
    status_code: int = 500

    MISSING_CAPABILITY = "missing_capability"
    TRANSIENT = "transient"
    UNSUPPORTED = "unsupported"

    _MESSAGES = {
        MISSING_CAPABILITY: (
            "PDF conversion failed due to missing system dependencies",
            "The server environment is missing required graphics libraries. Please contact support.",
        ),
        TRANSIENT: (
            "PDF conversion service temporarily unavailable",
            "The PDF to image conversion service is experiencing issues. Please try again later.",
        ),
        UNSUPPORTED: (
            "PDF conversion not supported in current environment",
            "The server cannot process PDF to image conversion at this time. Please try a different operation.",
        ),
    }

    def __init__(
        self,
        message: str,
        category: str = UNSUPPORTED,
        hint: str = "",
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, original_error)
        self.category = category
        self.hint = hint

    @classmethod
    def for_category(
        cls, category: str, original_error: Optional[Exception] = None
    ) -> "ConversionExhaustedError":
        message, hint = cls._MESSAGES.get(category, cls._MESSAGES[cls.UNSUPPORTED])
        return cls(message, category=category, hint=hint, original_error=original_error)

    def to_dict(self, include_detail: bool = False) -> Dict[str, Any]:
        payload = super().to_dict(include_detail)
        payload["hint"] = self.hint
        payload["category"] = self.category
        return payload


class CompressionFallback(PDFToolkitError):
    """Internal signal: compression gave no benefit or a strategy raised.

    Always resolved by returning the original bytes; never surfaced.
    """

    error_type: str = "CompressionFallback"


class InvalidTransitionError(PDFToolkitError):
    """An operation record that is already sealed was asked to change state."""

    error_type: str = "InvalidTransitionError"

    @staticmethod
    def already_sealed(operation_id: str, status: str) -> "InvalidTransitionError":
        return InvalidTransitionError(
            f"Operation {operation_id} is already {status} and cannot change state"
        )


class OperationError(PDFToolkitError):
    """Any other failure during a transformation, with a stable message."""

    error_type: str = "OperationError"
    status_code: int = 500

    @staticmethod
    def for_operation(verb: str, original_error: Exception) -> "OperationError":
        return OperationError(f"Failed to {verb} PDF", original_error=original_error)
