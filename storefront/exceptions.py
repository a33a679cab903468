"""Domain errors shared by every app.

Views never build error bodies by hand: services raise one of these and the
``json_errors`` decorator turns it into a JSON response.
"""


class StoreError(Exception):
    status = 400
    code = "error"

    def __init__(self, message, code=None, status=None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status

    def as_dict(self):
        return {"success": False, "error": self.message, "code": self.code}


class ValidationFailed(StoreError):
    status = 400
    code = "validation_error"


class RuleViolation(StoreError):
    """A business rule refused the operation; ``code`` is machine-readable."""

    status = 400
    code = "rule_violation"


class NotFound(StoreError):
    status = 404
    code = "not_found"


class Forbidden(StoreError):
    status = 403
    code = "forbidden"


class CarrierError(StoreError):
    status = 502
    code = "carrier_error"
