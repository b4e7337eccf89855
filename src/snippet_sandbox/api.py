from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .constraints import Constraints
from .errors import ErrorKind
from .execution.types import ExecutionRequest
from .result import INTERNAL_ERROR_MESSAGE, to_result
from .service import MISSING_FIELDS_MESSAGE, ExecutionService

logger = logging.getLogger(__name__)

EXECUTE_PATH = "/api/execute-code"

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.POLICY_VIOLATION: 400,
    ErrorKind.INTERNAL: 500,
}


class ExecuteCodeBody(BaseModel):
    """Request body of the execute endpoint."""

    code: str
    language: str


class ExecuteCodeResponse(BaseModel):
    """200 response body: exactly one of `output` or `error` is set on failure paths."""

    success: bool
    output: str | None = None
    error: str | None = None


class ErrorBody(BaseModel):
    """4xx/5xx response body."""

    message: str


def create_app(
    service: ExecutionService | None = None,
    constraints: Constraints | None = None,
) -> FastAPI:
    """Build the FastAPI app whose lifespan starts and stops the service.

    Example:
        ```python
        app = create_app(constraints=Constraints(wall_clock_timeout_seconds=2.0))
        ```
    """
    execution_service = service or ExecutionService(constraints)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        """Run the service for as long as the app is serving.

        Example:
            ```python
            app = FastAPI(lifespan=lifespan)
            ```
        """
        execution_service.start()
        try:
            yield
        finally:
            execution_service.stop()

    app = FastAPI(title="snippet-sandbox", lifespan=lifespan)
    app.state.execution_service = execution_service

    @app.exception_handler(RequestValidationError)
    async def _malformed_request(_: Request, exc: RequestValidationError) -> JSONResponse:
        """Report malformed bodies as 400 with a `message` field.

        Example:
            ```python
            # POST /api/execute-code with {"code": 1}
            ```
        """
        logger.debug("Rejected malformed request: %s", exc.errors())
        return JSONResponse(status_code=400, content={"message": MISSING_FIELDS_MESSAGE})

    @app.exception_handler(Exception)
    async def _unexpected_error(_: Request, exc: Exception) -> JSONResponse:
        """Hide unexpected failures behind the generic 500 message.

        Example:
            ```python
            # any uncaught exception inside a handler
            ```
        """
        logger.error("Unhandled error while executing code", exc_info=exc)
        return JSONResponse(status_code=500, content={"message": INTERNAL_ERROR_MESSAGE})

    @app.post(
        EXECUTE_PATH,
        response_model=ExecuteCodeResponse,
        responses={400: {"model": ErrorBody}, 500: {"model": ErrorBody}},
    )
    def execute_code(body: ExecuteCodeBody) -> ExecuteCodeResponse | JSONResponse:
        """Execute one submission; sync so FastAPI runs it on its thread pool.

        Example:
            ```python
            # POST /api/execute-code {"code": "print(1)", "language": "python"}
            ```
        """
        outcome = execution_service.execute(
            ExecutionRequest(code=body.code, language=body.language)
        )
        result = to_result(outcome)
        status = _STATUS_BY_KIND.get(result.kind) if result.kind is not None else None
        if status is not None:
            return JSONResponse(
                status_code=status,
                content={"message": result.error or INTERNAL_ERROR_MESSAGE},
            )
        return ExecuteCodeResponse(
            success=result.success,
            output=result.output,
            error=result.error,
        )

    return app
