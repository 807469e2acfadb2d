"""
Error taxonomy for domain provisioning and deployment orchestration
Provider failures are classified into a closed ErrorKind set from documented error codes
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    ALREADY_EXISTS = 'already_exists'
    IN_USE_BY_PROJECT = 'in_use_by_project'
    IN_USE_BY_OTHER_PROJECT = 'in_use_by_other_project'
    RECORD_CONFLICT = 'record_conflict'
    NOT_FOUND = 'not_found'
    AUTH = 'auth'
    RATE_LIMITED = 'rate_limited'
    INVALID_REQUEST = 'invalid_request'
    UNAVAILABLE = 'unavailable'
    UNKNOWN = 'unknown'


class OrchestrationError(Exception):
    """Base class for every error raised by the orchestration core"""


class ValidationError(OrchestrationError):
    """Missing or malformed identifiers, rejected before any side effect"""


class NotFoundError(OrchestrationError):
    """Referenced domain, deployment or landing page does not exist"""


class PersistenceError(OrchestrationError):
    """Database read or write failed"""


class DeploymentTimeoutError(OrchestrationError):
    """Deployment monitor exceeded its maximum duration"""

    def __init__(self, elapsed_seconds: float, last_state: Optional[str] = None):
        self.elapsed_seconds = elapsed_seconds
        self.last_state = last_state
        super().__init__(
            f"Deployment monitoring timed out after {elapsed_seconds:.1f}s "
            f"(last state: {last_state or 'unknown'})"
        )


class ExternalServiceError(OrchestrationError):
    """A DNS provider or hosting platform call failed"""

    def __init__(self, message: str, service: str, kind: ErrorKind = ErrorKind.UNKNOWN,
                 code: Optional[Any] = None, status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.service = service
        self.kind = kind
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    def __repr__(self) -> str:
        return (f"ExternalServiceError(service={self.service!r}, kind={self.kind.value!r}, "
                f"code={self.code!r}, status_code={self.status_code!r}, message={str(self)!r})")


# Cloudflare v4 API error codes
_CLOUDFLARE_CODES = {
    1061: ErrorKind.ALREADY_EXISTS,      # zone already exists
    1097: ErrorKind.ALREADY_EXISTS,      # zone already pending
    81053: ErrorKind.RECORD_CONFLICT,    # A/AAAA/CNAME with that host already exists
    81057: ErrorKind.RECORD_CONFLICT,    # identical record already exists
    81058: ErrorKind.RECORD_CONFLICT,    # identical record already exists
    81054: ErrorKind.RECORD_CONFLICT,    # CNAME already exists with that host
    9000: ErrorKind.INVALID_REQUEST,
    9005: ErrorKind.INVALID_REQUEST,     # content for CNAME must be a valid domain name
    9007: ErrorKind.INVALID_REQUEST,
    1004: ErrorKind.INVALID_REQUEST,     # DNS validation error
    1001: ErrorKind.NOT_FOUND,
    1003: ErrorKind.NOT_FOUND,
    7003: ErrorKind.NOT_FOUND,           # could not route, bad identifier
    81044: ErrorKind.NOT_FOUND,          # record does not exist
    10007: ErrorKind.NOT_FOUND,          # worker script not found
    6003: ErrorKind.AUTH,
    9103: ErrorKind.AUTH,
    9106: ErrorKind.AUTH,
    9109: ErrorKind.AUTH,
    10000: ErrorKind.AUTH,
    971: ErrorKind.RATE_LIMITED,
    10429: ErrorKind.RATE_LIMITED,
}

# Vercel REST API error.code values
_VERCEL_CODES = {
    'domain_already_in_use': ErrorKind.IN_USE_BY_OTHER_PROJECT,
    'domain_already_exists': ErrorKind.ALREADY_EXISTS,
    'project_name_already_exists': ErrorKind.ALREADY_EXISTS,
    'project_domain_already_exists': ErrorKind.ALREADY_EXISTS,
    'not_found': ErrorKind.NOT_FOUND,
    'domain_not_found': ErrorKind.NOT_FOUND,
    'deployment_not_found': ErrorKind.NOT_FOUND,
    'forbidden': ErrorKind.AUTH,
    'invalid_token': ErrorKind.AUTH,
    'missing_token': ErrorKind.AUTH,
    'rate_limited': ErrorKind.RATE_LIMITED,
    'too_many_requests': ErrorKind.RATE_LIMITED,
    'bad_request': ErrorKind.INVALID_REQUEST,
    'invalid_domain': ErrorKind.INVALID_REQUEST,
    'invalid_name': ErrorKind.INVALID_REQUEST,
}


def kind_from_status(status_code: Optional[int]) -> ErrorKind:
    """Map an HTTP status code to an ErrorKind when no provider code is available"""
    if status_code is None:
        return ErrorKind.UNAVAILABLE
    if status_code in (401, 403):
        return ErrorKind.AUTH
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code == 409:
        return ErrorKind.ALREADY_EXISTS
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if 400 <= status_code < 500:
        return ErrorKind.INVALID_REQUEST
    if status_code >= 500:
        return ErrorKind.UNAVAILABLE
    return ErrorKind.UNKNOWN


def classify_cloudflare_errors(errors: Optional[List[Dict[str, Any]]],
                               status_code: Optional[int] = None) -> ErrorKind:
    """Classify a Cloudflare `errors` array, first known code wins"""
    for error in errors or []:
        try:
            code = int(error.get('code'))
        except (TypeError, ValueError):
            continue
        if code in _CLOUDFLARE_CODES:
            return _CLOUDFLARE_CODES[code]
    if status_code is not None and status_code != 200:
        return kind_from_status(status_code)
    return ErrorKind.UNKNOWN


def classify_vercel_error(error: Optional[Dict[str, Any]],
                          status_code: Optional[int] = None) -> ErrorKind:
    """Classify a Vercel `error` object by its code, falling back to the HTTP status"""
    code = (error or {}).get('code')
    if code in _VERCEL_CODES:
        return _VERCEL_CODES[code]
    return kind_from_status(status_code)


def first_error_message(errors: Optional[List[Dict[str, Any]]], default: str = 'Unknown error') -> str:
    for error in errors or []:
        message = error.get('message')
        if message:
            return message
    return default
