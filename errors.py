"""
Error taxonomy

Every failure a handler can report is one of these. Each carries the HTTP
status it maps to; the app renders them as a JSON body ``{"message": ...}``.
"""


class AppError(Exception):
    status_code = 500
    default_message = "An unknown error occurred!"

    def __init__(self, message: str = None, status_code: int = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationFailed(AppError):
    status_code = 422
    default_message = "Invalid inputs passed, please check your data."


class NotFound(AppError):
    status_code = 404
    default_message = "Could not find the requested resource."


class Unauthorized(AppError):
    status_code = 401
    default_message = "Authentication failed!"


class Forbidden(AppError):
    status_code = 403
    default_message = "You are not allowed to perform this action."


class StoreUnavailable(AppError):
    status_code = 500
    default_message = "Something went wrong, please try again later."
