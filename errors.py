class GradedeskError(Exception):
    """Error with a message safe to show to the dashboard user."""
    status_code = 500

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

    def to_dict(self):
        body = dict(self.payload)
        body["error"] = self.message
        return body


class ValidationError(GradedeskError):
    status_code = 400


class NotFoundError(GradedeskError):
    status_code = 404


class ConflictError(GradedeskError):
    status_code = 409
