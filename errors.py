import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ChatRelayError(Exception):
    """Base error for the relay.

    Every error is scoped to one request or one connection; none of them is
    fatal to the server process.
    """

    status_code: int = 400
    default_code: Optional[str] = None

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message
        self.code = code if code is not None else self.default_code
        self.status_code = status_code if status_code is not None else self.status_code
        super().__init__(message)

    def to_payload(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.message, "code": self.code}


class EmptyName(ChatRelayError):
    """Identity announcement with a blank name. Dropped without a reply."""

    default_code = "empty_name"


class MalformedMessage(ChatRelayError):
    """Chat event that is not a well-formed message variant."""

    default_code = "malformed_message"


class NoFileUploaded(ChatRelayError):
    default_code = "no_file_uploaded"

    def __init__(self, message: str = "No file uploaded", **kwargs: Any):
        super().__init__(message, **kwargs)


class OversizedUpload(ChatRelayError):
    status_code = 413
    default_code = "file_too_large"

    def __init__(self, message: str = "File too large", **kwargs: Any):
        super().__init__(message, **kwargs)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ChatRelayError)
    async def _relay_error_handler(request: Request, exc: ChatRelayError) -> JSONResponse:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
