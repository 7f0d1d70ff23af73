"""
Typed service errors.

Every failure surfaced to a caller carries a stable code, a category and
a retryable flag so clients can tell whether to retry (transient), fix
their input (reference/integrity/validation) or stop (conflict/state).
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    REFERENCE = "reference"
    CONFLICT = "conflict"
    STATE = "state"
    INTEGRITY = "integrity"
    TRANSIENT = "transient"
    PROCESSING = "processing"
    ACCESS = "access"
    VALIDATION = "validation"
    INTERNAL = "internal"


class AssetServiceError(Exception):
    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    category: ErrorCategory = ErrorCategory.INTERNAL
    retryable: bool = False
    default_message: str = "Internal error"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.details:
            body["details"] = self.details
        return body


# --- Reference ---

class ReferenceNotFoundError(AssetServiceError):
    code = "REFERENCE_NOT_FOUND"
    status_code = 404
    category = ErrorCategory.REFERENCE
    default_message = "Organization, project or uploader not found"


class AssetNotFoundError(AssetServiceError):
    code = "ASSET_NOT_FOUND"
    status_code = 404
    category = ErrorCategory.REFERENCE
    default_message = "Asset not found"


class JobNotFoundError(AssetServiceError):
    code = "JOB_NOT_FOUND"
    status_code = 404
    category = ErrorCategory.REFERENCE
    default_message = "Job not found"


# --- Conflict ---

class DuplicateAssetError(AssetServiceError):
    code = "DUPLICATE_ASSET"
    status_code = 409
    category = ErrorCategory.CONFLICT
    default_message = "Asset with same checksum already exists"


class ConcurrentModificationError(AssetServiceError):
    code = "CONCURRENT_MODIFICATION"
    status_code = 409
    category = ErrorCategory.CONFLICT
    retryable = True
    default_message = "Asset was modified concurrently, try again"


# --- State ---

class InvalidStateError(AssetServiceError):
    code = "INVALID_STATE"
    status_code = 409
    category = ErrorCategory.STATE
    default_message = "Operation not allowed in the asset's current status"


class NotReadyError(AssetServiceError):
    code = "NOT_READY"
    status_code = 409
    category = ErrorCategory.STATE
    default_message = "Asset is not ready for download"


class UploadUrlExpiredError(AssetServiceError):
    code = "UPLOAD_URL_EXPIRED"
    status_code = 410
    category = ErrorCategory.STATE
    default_message = "Upload URL has expired"


class UploadNotFoundError(AssetServiceError):
    code = "UPLOAD_NOT_FOUND"
    status_code = 409
    category = ErrorCategory.STATE
    default_message = "Uploaded file not found in storage"


# --- Integrity ---

class ChecksumMismatchError(AssetServiceError):
    code = "CHECKSUM_MISMATCH"
    status_code = 422
    category = ErrorCategory.INTEGRITY
    default_message = "Checksum mismatch - upload integrity check failed"


class FileSizeMismatchError(AssetServiceError):
    code = "FILE_SIZE_MISMATCH"
    status_code = 422
    category = ErrorCategory.INTEGRITY
    default_message = "File size mismatch"


# --- Validation ---

class ValidationError(AssetServiceError):
    code = "VALIDATION_ERROR"
    status_code = 400
    category = ErrorCategory.VALIDATION
    default_message = "Invalid request"


class InvalidFileExtensionError(ValidationError):
    code = "INVALID_FILE_EXTENSION"
    default_message = "File extension does not match MIME type"


class FileSizeInvalidError(ValidationError):
    code = "FILE_SIZE_INVALID"
    default_message = "Declared file size is outside the allowed limits"


class InvalidChecksumError(ValidationError):
    code = "INVALID_CHECKSUM"
    default_message = "Checksum must be of the form algorithm:hex-digest"


# --- Access ---

class AccessDeniedError(AssetServiceError):
    code = "ACCESS_DENIED"
    status_code = 403
    category = ErrorCategory.ACCESS
    default_message = "Access denied to this asset"


class AuthenticationError(AssetServiceError):
    code = "TOKEN_REQUIRED"
    status_code = 401
    category = ErrorCategory.ACCESS
    default_message = "Valid bearer token required"


# --- Transient / processing ---

class ServiceUnavailableError(AssetServiceError):
    code = "SERVICE_UNAVAILABLE"
    status_code = 503
    category = ErrorCategory.TRANSIENT
    retryable = True
    default_message = "A backing service is unavailable"


class ProcessingError(AssetServiceError):
    code = "PROCESSING_ERROR"
    status_code = 422
    category = ErrorCategory.PROCESSING
    default_message = "Asset processing failed"
