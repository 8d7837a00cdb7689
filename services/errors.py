"""Error taxonomy for the booking engine.

Every error carries a user-safe message plus optional details that the
request layer renders next to it (e.g. hours left before a session).
"""


class BookingError(Exception):
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.message, **self.details}


class NotFound(BookingError):
    status_code = 404


class Conflict(BookingError):
    status_code = 409


class BadRequest(BookingError):
    status_code = 400


class Forbidden(BookingError):
    status_code = 403

    def __init__(self, message: str = "Forbidden", **details):
        super().__init__(message, **details)


class InternalError(BookingError):
    status_code = 500
