from __future__ import annotations

import contextlib
import logging
from datetime import datetime, timezone
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from fastapi import APIRouter, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chat_relay.chat import ChatRelay
from chat_relay.errors import ChatRelayError, ChatStepError, ValidationError
from chat_relay.schemas import ChatRequest, ContactRequest
from chat_relay.store import ConversationCache, RateLimiter
from chat_relay.utils.botpress import BotpressClient
from chat_relay.utils.contact import ContactForm, ContactRelay, validate_contact_form
from chat_relay.utils.env import Settings, WaitPolicy, read_settings, validate_settings
from chat_relay.utils.log import setup_logging
from chat_relay.utils.waiter import ResponseWaiter


logger = logging.getLogger("chat_relay.api")

# Load environment variables from a .env file when running locally
load_dotenv(find_dotenv())

router = APIRouter()

# Sent on every response, including errors and CORS preflights
SECURITY_HEADERS = {
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Frame-Options": "SAMEORIGIN",
}


@router.get("/health")
async def health(request: Request):
    settings: Settings = request.app.state.settings
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "env": {
            "appEnv": settings.app_env,
            "webhookId": "set" if settings.webhook_id else "not set",
            "contactAccessKey": "set" if settings.web3forms_access_key else "not set",
        },
    }


@router.post("/api/chat/messages")
async def post_message(
    req: ChatRequest,
    request: Request,
    user_key: Optional[str] = Header(None, alias="x-user-key"),
):
    relay: ChatRelay = request.app.state.chat_relay
    response = await relay.handle_message(
        req.message,
        user_key=user_key,
        user_id=req.userId,
        conversation_id=req.conversationId,
    )
    return JSONResponse(content=response.model_dump(mode="json"), status_code=200)


@router.post("/api/contact")
async def post_contact(req: ContactRequest, request: Request):
    problem = validate_contact_form(req.name, req.email, req.message)
    if problem is not None:
        field, error = problem
        return JSONResponse(content={"success": False, "error": error, "field": field}, status_code=400)

    contact: ContactRelay = request.app.state.contact_relay
    if not await contact.validate_connection():
        return JSONResponse(content={"success": False, "error": "Service unavailable"}, status_code=503)

    try:
        await contact.send(ContactForm(name=req.name.strip(), email=req.email.strip(), message=req.message.strip()))
    except ChatRelayError as exc:
        logger.error("Contact submission failed: %s", exc)
        content = {"success": False, "error": "Failed to send message"}
        if request.app.state.settings.is_development:
            content["details"] = str(exc)
        return JSONResponse(content=content, status_code=500)

    return JSONResponse(content={"success": True, "message": "Message sent successfully"}, status_code=200)


async def _validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.message)
    content = {"error": exc.message, "code": exc.code}
    if exc.field:
        content["field"] = exc.field
    return JSONResponse(content=content, status_code=exc.status_code)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()]
    return JSONResponse(
        content={"error": "Invalid request", "code": "INVALID_REQUEST", "details": details},
        status_code=400,
    )


async def _chat_step_error_handler(request: Request, exc: ChatStepError) -> JSONResponse:
    development = request.app.state.settings.is_development
    return JSONResponse(
        content={
            "error": "Failed to process message",
            "code": exc.code,
            "message": str(exc.cause) if development else "An error occurred",
        },
        status_code=exc.status_code,
    )


def create_app(
    settings: Optional[Settings] = None,
    chat_relay: Optional[ChatRelay] = None,
    contact_relay: Optional[ContactRelay] = None,
    policy: Optional[WaitPolicy] = None,
) -> FastAPI:
    """Build the relay application. Services not passed in are created at startup from settings."""

    resolved = settings or read_settings()

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(resolved.log_level)
        owned = []
        if chat_relay is None:
            validate_settings(resolved)
            cache = ConversationCache(ttl=resolved.cache_ttl)
            client = BotpressClient(resolved.botpress_url, timeout=resolved.upstream_timeout, cache=cache)
            owned.append(client)
            app.state.chat_relay = ChatRelay(client, cache, ResponseWaiter(client, cache, policy=policy))
        else:
            app.state.chat_relay = chat_relay
        if contact_relay is None:
            contact = ContactRelay(
                resolved.web3forms_endpoint,
                resolved.web3forms_access_key,
                timeout=resolved.upstream_timeout,
            )
            owned.append(contact)
            app.state.contact_relay = contact
        else:
            app.state.contact_relay = contact_relay
        logger.info("Chat relay started (env=%s)", resolved.app_env)
        try:
            yield
        finally:
            for service in owned:
                await service.aclose()
            logger.info("Chat relay stopped")

    app = FastAPI(
        title="Chat Relay",
        description="Relays chat widget messages to a Botpress bot and contact forms to Web3Forms.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = resolved
    app.state.rate_limiter = RateLimiter(limit=resolved.rate_limit_max, window=resolved.rate_limit_window)

    # Middleware added later wraps the earlier ones: 429s still carry CORS and security headers.
    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        client = request.client.host if request.client else "unknown"
        if not await request.app.state.rate_limiter.hit(client):
            logger.warning("Rate limit exceeded for %s on %s", client, request.url.path)
            return JSONResponse(
                content={"error": "Too many requests from this IP, please try again later", "code": "RATE_LIMITED"},
                status_code=429,
            )
        return await call_next(request)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[resolved.frontend_url],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "x-user-key", "Authorization"],
        allow_credentials=True,
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
        return response

    app.add_exception_handler(ValidationError, _validation_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(ChatStepError, _chat_step_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("chat_relay.main:app", host="0.0.0.0", port=app.state.settings.port)
