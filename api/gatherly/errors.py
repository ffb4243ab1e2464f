"""Error taxonomy for the group and moderation core.

`waiting` and already-joined/already-assigned are normal results and never
raised. Everything here maps to one HTTP status and a short `status` code
rendered as ``{"error": message, "status": code}``.
"""


class CoreError(Exception):
    code = "internal"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> dict[str, str]:
        return {"error": self.message, "status": self.code}


class ValidationFailed(CoreError):
    code = "validation"
    status_code = 400


class PermissionDenied(CoreError):
    code = "forbidden"
    status_code = 403


class NotFound(CoreError):
    code = "not_found"
    status_code = 404


class EventFrozen(CoreError):
    code = "frozen"
    status_code = 409


class InternalFailure(CoreError):
    code = "internal"
    status_code = 500
