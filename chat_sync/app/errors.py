from fastapi import status


class ChatSyncError(Exception):
    """Base class for every error raised by the chat engine."""
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.__class__.__name__)
        self.detail = detail or self.__class__.__name__


class ValidationError(ChatSyncError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotAuthenticatedError(ChatSyncError):
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDeniedError(ChatSyncError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(ChatSyncError):
    status_code = status.HTTP_404_NOT_FOUND


class NotGroupError(ChatSyncError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotMemberError(ChatSyncError):
    status_code = status.HTTP_400_BAD_REQUEST


class AlreadyMemberError(ChatSyncError):
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(ChatSyncError):
    """Raised when an optimistic write keeps losing to concurrent writers."""
    status_code = status.HTTP_409_CONFLICT
