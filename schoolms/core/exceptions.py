from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NotFoundError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class PermissionDeniedError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_403_FORBIDDEN)
