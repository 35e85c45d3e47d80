"""
Error taxonomy. UserError = caller can fix it (4xx); ServerError = our side failed (500).
Messages are safe to return to clients: never put storage paths in them, log the cause instead.
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette import status

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail: str = "Internal server error."

    def __init__(self, detail: str | None = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class UserError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Bad request."


class ServerError(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Internal server error."


# ---------- User errors ----------


class InvalidVideoIdError(UserError):
    detail = "Invalid video id."


class VideoNotFoundError(UserError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Video does not exist."


class UserRequiredError(UserError):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "You must be logged in to do that."


class AccessForbiddenError(UserError):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "You do not have access to this video."


class VideoNotOwnedError(UserError):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "You do not own this video."


class OverwriteError(UserError):
    status_code = status.HTTP_409_CONFLICT
    detail = "This video has already been uploaded and cannot be overwritten."


class UploadIncompleteError(UserError):
    status_code = status.HTTP_409_CONFLICT
    detail = "This video has not finished uploading."


class InvalidFormatError(UserError):
    status_code = status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
    detail = "Unsupported or corrupt video format."


class DuplicateViewError(UserError):
    status_code = status.HTTP_409_CONFLICT
    detail = "A view has already been counted for this watch session."


class ThresholdNotMetError(UserError):
    status_code = 422

    def __init__(self, detail: str, *, remaining_time_ms: int = 0, remaining_bytes: int = 0):
        self.remaining_time_ms = remaining_time_ms
        self.remaining_bytes = remaining_bytes
        super().__init__(detail)


# ---------- Server errors ----------


class FileIoError(ServerError):
    detail = "Failed to read or write video file."


class ProbeError(ServerError):
    detail = "Failed to read video metadata."


class ThumbnailError(ServerError):
    detail = "Failed to generate video thumbnail."


class DatabaseError(ServerError):
    detail = "Database error."


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if isinstance(exc, ServerError):
        logger.error(
            "%s %s failed: %s",
            request.method,
            request.url.path,
            exc.detail,
            exc_info=exc.__cause__ or exc,
        )
    content = {"detail": exc.detail}
    if isinstance(exc, ThresholdNotMetError):
        content["remaining_time_ms"] = exc.remaining_time_ms
        content["remaining_bytes"] = exc.remaining_bytes
    return JSONResponse(status_code=exc.status_code, content=content)
