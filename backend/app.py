import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ai_chronicle.config import Settings, load_settings
from ai_chronicle.errors import ChronicleError, InvalidRequest, UpstreamError
from ai_chronicle.illustrations import Illustrator, OpenAIImages
from ai_chronicle.llm import LLM, AnthropicLLM
from ai_chronicle.prompts import load_prompts
from backend.routes import router

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)

CORS_METHODS = ["GET", "OPTIONS", "PATCH", "DELETE", "POST", "PUT"]
CORS_HEADERS = [
    "X-CSRF-Token", "X-Requested-With", "Accept", "Accept-Version",
    "Content-Length", "Content-MD5", "Content-Type", "Date", "X-Api-Version",
]


def create_app(
    settings: Settings | None = None,
    llm: LLM | None = None,
    illustrator: Illustrator | None = None,
) -> FastAPI:
    resolved = settings or load_settings()

    app = FastAPI(title="AI Chronicle")
    app.state.settings = resolved
    app.state.prompts = load_prompts(resolved.prompts_file)
    app.state.llm = llm or AnthropicLLM.from_settings(resolved)
    if illustrator is None and resolved.openai_api_key:
        illustrator = OpenAIImages.from_settings(resolved)
    app.state.illustrator = illustrator

    # Pre-flight OPTIONS requests are answered here, before routing.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=CORS_METHODS,
        allow_headers=CORS_HEADERS,
    )

    @app.exception_handler(ChronicleError)
    async def chronicle_error(request: Request, exc: ChronicleError):
        if isinstance(exc, UpstreamError) or exc.status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(exc.envelope(), status_code=exc.status)

    @app.exception_handler(RequestValidationError)
    async def malformed_request(request: Request, exc: RequestValidationError):
        problems = exc.errors()
        if any(p.get("type") == "json_invalid" for p in problems):
            message = "Request body is not valid JSON"
        else:
            message = f"Invalid request: {len(problems)} problem(s)"
        return JSONResponse(InvalidRequest(message).envelope(), status_code=InvalidRequest.status)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        body = InvalidRequest(str(exc.detail)).envelope()
        return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))

    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (reads settings from the environment)
app = create_app()
