"""
Error type shared by the guard chain and the service layer.

Every expected failure (bad input, failed authorization, illegal state)
is raised as an ``ApiError`` and rendered by the handlers registered in
``zomp.main`` as ``{"error": <message>}`` with the carried status code.
"""


class ApiError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def __repr__(self) -> str:
        return f"ApiError({self.status_code}, {self.message!r})"


def bad_request(message: str) -> ApiError:
    return ApiError(400, message)


def unauthorized(message: str) -> ApiError:
    return ApiError(401, message)
