class PlanningError(Exception):
    code = "planning_error"
    status_code = 500

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {"ok": False, "error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(PlanningError):
    code = "not_found"
    status_code = 404


class ConflictError(PlanningError):
    """The request disagrees with current state; the caller should re-fetch and retry."""

    code = "conflict"
    status_code = 409


class InvalidInputError(PlanningError, ValueError):
    code = "invalid_input"
    status_code = 400
