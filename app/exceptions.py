"""
Course access exceptions

Every error the core raises carries the HTTP status and the user-facing message
it maps to, so the boundary renders them without a lookup table. Expected
redemption outcomes (code not found, already used, ...) are NOT exceptions;
see RedemptionResult.
"""

TRY_AGAIN_MESSAGE = "Something went wrong. Please try again."


class CourseAccessError(Exception):
    """Base exception for the enrollment core"""

    status_code = 500
    error_code = "COURSE_ACCESS_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(CourseAccessError):
    """Bad input shape, rejected before touching the store"""

    status_code = 400
    error_code = "VALIDATION_ERROR"


class CourseNotFoundError(CourseAccessError):
    """Raised when a course id does not resolve to a live course"""

    status_code = 404
    error_code = "COURSE_NOT_FOUND"

    def __init__(self, course_id):
        self.course_id = course_id
        super().__init__("Course not found")


class CourseUnavailableError(CourseAccessError):
    """Course exists but is unpublished or soft-deleted"""

    status_code = 400
    error_code = "COURSE_UNAVAILABLE"

    def __init__(self, course_id):
        self.course_id = course_id
        super().__init__("Course is not available")


class AccessCodeRequiredError(CourseAccessError):
    """Free enrollment attempted on a paid course"""

    status_code = 400
    error_code = "ACCESS_CODE_REQUIRED"

    def __init__(self, course_id):
        self.course_id = course_id
        super().__init__("This course requires an access code")


class AccessCodeNotFoundError(CourseAccessError):
    status_code = 404
    error_code = "ACCESS_CODE_NOT_FOUND"

    def __init__(self, code_id):
        self.code_id = code_id
        super().__init__("Access code not found")


class AccessCodeInUseError(CourseAccessError):
    """Used codes are audit history and cannot be deleted"""

    status_code = 409
    error_code = "ACCESS_CODE_IN_USE"

    def __init__(self, code_id):
        self.code_id = code_id
        super().__init__("cannot delete a used code")


class CodeGenerationError(CourseAccessError):
    """Could not find a free code value after repeated collisions"""

    status_code = 500
    error_code = "CODE_GENERATION_FAILED"


class TransientStoreError(CourseAccessError):
    """
    Lock-wait timeout, serialization failure or lost connection.

    The caller may resubmit; the core never retries on its own.
    """

    status_code = 503
    error_code = "TRY_AGAIN"

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(TRY_AGAIN_MESSAGE)


class InvariantViolationError(CourseAccessError):
    """
    Stored state breaks the redemption atomicity contract.

    Always logged at CRITICAL where detected; never swallowed.
    """

    status_code = 500
    error_code = "INVARIANT_VIOLATION"
