"""HTTP middleware shared by the application and its test client."""

from fastapi import FastAPI, Request

from payments.utils.logging import start_request_context


async def request_log_context(request: Request, call_next):
    """Tag every log line of a request with its id, and echo the id back."""
    request_id = start_request_context(request.method, request.url.path, request.headers.get("x-request-id"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def register_request_context(app: FastAPI) -> None:
    app.middleware("http")(request_log_context)
