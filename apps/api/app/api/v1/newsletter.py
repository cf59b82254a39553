"""Newsletter subscription API endpoints."""

import json
import logging
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from app.core.config import settings
from app.core.deps import BroadcastServiceDep, NewsletterServiceDep, require_api_key
from app.core.exceptions import AuthError, NewsletterError, NotFoundError, ValidationError
from app.core.logging_config import log_security_event, mask_email
from app.core.rate_limit import TieredRateLimiter, get_client_ip, get_rate_limiter, limiter
from app.core.security import generate_csrf_token, verify_csrf_token
from app.schemas.newsletter import (
    ArticleNotification,
    BroadcastStats,
    ConsentStatus,
    CSRFTokenResponse,
    InfrastructureTestRequest,
    SendArticleRequest,
    SendArticleResponse,
    SubscribeRequest,
    SubscribeResponse,
    SubscriberStatsResponse,
    SubscriptionStatusResponse,
    UnsubscribeRequest,
    UnsubscribeResponse,
)
from app.services.broadcast_service import TEST_TYPES
from app.services.newsletter_service import NewsletterService
from app.services.validation import (
    EMAIL_RE,
    contains_suspicious_patterns,
    sanitize_email,
    sanitize_name,
    validate_name,
)

logger = logging.getLogger(__name__)

router = APIRouter()

RateLimiterDep = Annotated[TieredRateLimiter, Depends(get_rate_limiter)]
AuthorizationHeader = Annotated[str | None, Header()]

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

REQUIRED_ARTICLE_FIELDS = ("articleId", "title", "excerpt", "slug", "publishDate", "category")

TEST_MESSAGES = {
    "basic": "Basic test email sent",
    "welcome": "Welcome email test sent",
    "article": "Article notification test sent",
}


def _json(model: BaseModel, *, status_code: int = 200, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        content=model.model_dump(mode="json", by_alias=True, exclude_none=True),
        status_code=status_code,
        headers=headers,
    )


async def _read_json_body(request: Request, client_ip: str) -> Any:
    """Parse the request body as JSON, enforcing the body size limit."""
    raw = await request.body()
    try:
        if len(raw) > settings.max_request_body_bytes:
            raise ValueError("Request body too large")
        return json.loads(raw)
    except (ValueError, RecursionError) as exc:
        log_security_event(
            "INVALID_REQUEST_BODY",
            ip=client_ip,
            userAgent=request.headers.get("user-agent"),
            error=str(exc),
        )
        raise ValidationError("Invalid request format", error="INVALID_REQUEST") from exc


def _schema_errors(exc: SchemaValidationError) -> list[dict[str, str]]:
    return [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]


# --- Subscribe ---


@router.post("/subscribe")
async def subscribe(
    request: Request,
    service: NewsletterServiceDep,
    rate_limiter: RateLimiterDep,
) -> JSONResponse:
    """Create or reactivate a newsletter subscription."""
    client_ip = get_client_ip(request)
    user_agent = request.headers.get("user-agent")

    rate_result = rate_limiter.enforce_subscribe(client_ip, user_agent)
    rate_headers = rate_result.headers() if rate_result else {}

    body = await _read_json_body(request, client_ip)

    csrf_token = body.get("csrfToken") if isinstance(body, dict) else None
    if csrf_token and not verify_csrf_token(str(csrf_token), client_ip, user_agent or ""):
        log_security_event(
            "INVALID_CSRF_TOKEN",
            ip=client_ip,
            userAgent=user_agent,
            endpoint=request.url.path,
        )
        raise AuthError(
            "Invalid security token. Please refresh the page and try again.",
            error="INVALID_CSRF",
            status_code=403,
        )

    try:
        payload = SubscribeRequest.model_validate(body)
    except SchemaValidationError as exc:
        errors = _schema_errors(exc)
        log_security_event(
            "INVALID_NEWSLETTER_SUBSCRIPTION_DATA",
            ip=client_ip,
            userAgent=user_agent,
            errors=errors,
        )
        raise ValidationError("Invalid subscription data", extra={"errors": errors}) from exc

    name = sanitize_name(payload.name)
    email = sanitize_email(payload.email)

    suspicious_name = contains_suspicious_patterns(payload.name)
    suspicious_email = contains_suspicious_patterns(payload.email)
    if suspicious_name or suspicious_email:
        log_security_event(
            "SUSPICIOUS_INPUT_DETECTED",
            ip=client_ip,
            userAgent=user_agent,
            suspiciousFields={"name": suspicious_name, "email": suspicious_email},
        )
        raise ValidationError(
            "Invalid input detected. Please check your information.",
            error="SUSPICIOUS_INPUT",
        )

    name_result = validate_name(name)
    if not name_result.is_valid:
        log_security_event(
            "INVALID_NAME_VALIDATION", ip=client_ip, userAgent=user_agent, reason=name_result.reason
        )
        raise ValidationError(name_result.reason or "Invalid name", error="INVALID_NAME")

    email_result = await service.validate_email(email)
    if not email_result.is_valid:
        log_security_event(
            "INVALID_EMAIL_VALIDATION",
            ip=client_ip,
            userAgent=user_agent,
            reason=email_result.reason,
        )
        extra = {"suggestions": email_result.suggestions} if email_result.suggestions else None
        raise ValidationError(
            email_result.reason or "Invalid email address", error="INVALID_EMAIL", extra=extra
        )

    metadata_agent = payload.metadata.user_agent if payload.metadata else None
    outcome = await service.subscribe(
        name=name,
        email=email,
        source=payload.source,
        client_ip=client_ip,
        user_agent=metadata_agent or user_agent,
        consent=payload.consent,
    )

    if outcome.already_subscribed:
        return _json(
            SubscribeResponse(
                message="Thank you for your interest! You're already subscribed to our newsletter.",
                is_existing_subscriber=True,
            ),
            headers=rate_headers,
        )
    if outcome.reactivated:
        return _json(
            SubscribeResponse(
                message="Welcome back! You've been resubscribed to our newsletter.",
                subscription_id=outcome.subscription_id,
                is_resubscription=True,
            ),
            headers=rate_headers,
        )

    headers = {
        **rate_headers,
        **SECURITY_HEADERS,
        "X-CSRF-Token": generate_csrf_token(client_ip, user_agent or ""),
    }
    return _json(
        SubscribeResponse(
            message="Successfully subscribed to newsletter!",
            subscription_id=outcome.subscription_id,
        ),
        headers=headers,
    )


@router.options("/subscribe")
async def issue_csrf_token(request: Request) -> JSONResponse:
    """Issue a CSRF token for the subscription form."""
    token = generate_csrf_token(get_client_ip(request), request.headers.get("user-agent") or "")
    headers = {
        **SECURITY_HEADERS,
        "X-CSRF-Token": token,
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization, X-CSRF-Token",
        "Access-Control-Max-Age": "86400",
    }
    return _json(CSRFTokenResponse(csrf_token=token), headers=headers)


async def _validated_email(service: NewsletterService, email: str | None) -> str:
    if not email:
        raise ValidationError("Email parameter is required")
    normalized = sanitize_email(email)
    result = await service.validate_email(normalized)
    if not result.is_valid:
        raise ValidationError("Invalid email format", error="INVALID_EMAIL")
    return normalized


@router.get("/subscribe")
@limiter.limit(settings.rate_limit_admin)
async def subscription_status(
    request: Request,
    service: NewsletterServiceDep,
    email: str | None = Query(None, max_length=254),
    authorization: AuthorizationHeader = None,
) -> JSONResponse:
    """Look up the subscription status for an email address."""
    if not settings.newsletter_public_status_check:
        await require_api_key(request, authorization)

    normalized = await _validated_email(service, email)
    subscriber = await service.get_subscriber(normalized)
    if subscriber is None:
        return _json(
            SubscriptionStatusResponse(
                subscribed=False, message="Email not found in subscription list"
            )
        )

    log_security_event(
        "NEWSLETTER_SUBSCRIPTION_CHECK",
        email=normalized,
        status=subscriber.status.value,
        ip=get_client_ip(request),
    )
    response = SubscriptionStatusResponse(
        subscribed=subscriber.is_active,
        status=subscriber.status.value,
        subscribed_at=subscriber.subscribed_at,
        source=subscriber.source,
    )
    record = await service.consent_status(normalized)
    if record is not None:
        response.consent = ConsentStatus(
            given=record.consent_given,
            method=record.consent_method.value,
            recorded_at=record.consented_at,
            withdrawn_at=record.withdrawn_at,
        )
    return _json(response)


@router.delete("/subscribe")
async def unsubscribe_direct(
    request: Request,
    service: NewsletterServiceDep,
    rate_limiter: RateLimiterDep,
    email: str | None = Query(None, max_length=254),
    token: str | None = Query(None, max_length=512),
) -> JSONResponse:
    """Unsubscribe by email, optionally proven with an unsubscribe token."""
    client_ip = get_client_ip(request)
    rate_limiter.enforce_unsubscribe(client_ip)

    normalized = await _validated_email(service, email)
    subscriber = await service.get_subscriber(normalized)
    if subscriber is None:
        return _json(UnsubscribeResponse(message="Email not found in subscription list"))

    if token and not service.verify_token(token, normalized):
        log_security_event("INVALID_UNSUBSCRIBE_TOKEN", email=normalized, ip=client_ip)
        raise AuthError(
            "Invalid or expired unsubscribe token", error="INVALID_TOKEN", status_code=403
        )

    outcome = await service.unsubscribe(
        subscriber,
        method="email_unsubscribe_link" if token else "direct_request",
        client_ip=client_ip,
        user_agent=request.headers.get("user-agent"),
    )
    if outcome.already_unsubscribed:
        return _json(
            UnsubscribeResponse(
                message="You have already been unsubscribed from our newsletter.",
                already_unsubscribed=True,
            )
        )
    return _json(UnsubscribeResponse(message="Successfully unsubscribed from newsletter"))


# --- Unsubscribe via emailed link ---


async def _unsubscribe_via_link(
    request: Request,
    service: NewsletterService,
    email: str | None,
    token: str | None,
) -> JSONResponse:
    client_ip = get_client_ip(request)
    if not token or not email:
        logger.warning("Unsubscribe request missing token or email from IP: %s", client_ip)
        raise ValidationError(
            "Invalid unsubscribe link. Missing required parameters.", error="INVALID_LINK"
        )

    normalized = sanitize_email(email)
    if not EMAIL_RE.match(normalized):
        raise ValidationError("Invalid email format.", error="INVALID_EMAIL")

    if not service.verify_token(token, normalized):
        log_security_event("INVALID_UNSUBSCRIBE_TOKEN", email=normalized, ip=client_ip)
        raise ValidationError("Invalid or expired unsubscribe token", error="INVALID_TOKEN")

    subscriber = await service.get_subscriber(normalized)
    if subscriber is None:
        raise NotFoundError(
            "Invalid unsubscribe link. The link may have expired or is incorrect."
        )

    outcome = await service.unsubscribe(
        subscriber,
        method="email_unsubscribe_link",
        client_ip=client_ip,
        user_agent=request.headers.get("user-agent"),
    )
    if outcome.already_unsubscribed:
        return _json(
            UnsubscribeResponse(
                message="You have already been unsubscribed from our newsletter.",
                already_unsubscribed=True,
            )
        )
    return _json(
        UnsubscribeResponse(
            message="You have been successfully unsubscribed from our newsletter. "
            "A confirmation email has been sent to you."
        )
    )


@router.get("/unsubscribe")
async def unsubscribe_link(
    request: Request,
    service: NewsletterServiceDep,
    rate_limiter: RateLimiterDep,
    email: str | None = Query(None, max_length=254),
    token: str | None = Query(None, max_length=512),
) -> JSONResponse:
    """Unsubscribe from an emailed link (``?token=...&email=...``)."""
    rate_limiter.enforce_unsubscribe(get_client_ip(request))
    return await _unsubscribe_via_link(request, service, email, token)


@router.post("/unsubscribe")
async def unsubscribe_form(
    request: Request,
    service: NewsletterServiceDep,
    rate_limiter: RateLimiterDep,
) -> JSONResponse:
    """Unsubscribe from a form post or a one-click ``List-Unsubscribe-Post``.

    Token and email are read from the query string when present (one-click
    clients post to the link URL), otherwise from a JSON body.
    """
    client_ip = get_client_ip(request)
    rate_limiter.enforce_unsubscribe(client_ip)

    email = request.query_params.get("email")
    token = request.query_params.get("token")
    if not (email and token) and "json" in request.headers.get("content-type", ""):
        body = await _read_json_body(request, client_ip)
        try:
            payload = UnsubscribeRequest.model_validate(body)
        except SchemaValidationError as exc:
            raise ValidationError(
                "Invalid unsubscribe request", extra={"errors": _schema_errors(exc)}
            ) from exc
        email = email or payload.email
        token = token or payload.token
    return await _unsubscribe_via_link(request, service, email, token)


# --- Administration (API key) ---

# The API key is checked inside each handler, after the slowapi limit, so that
# failed key attempts count against the caller's window.


@router.post("/send-article")
@limiter.limit(settings.rate_limit_admin)
async def send_article(
    request: Request,
    service: BroadcastServiceDep,
    authorization: AuthorizationHeader = None,
) -> JSONResponse:
    """Send an article notification to all active subscribers."""
    await require_api_key(request, authorization)
    body = await _read_json_body(request, get_client_ip(request))
    try:
        payload = SendArticleRequest.model_validate(body)
    except SchemaValidationError as exc:
        raise ValidationError(
            "Invalid request data", extra={"errors": _schema_errors(exc)}
        ) from exc

    if not payload.article:
        raise ValidationError("Article data is required")
    missing = [field for field in REQUIRED_ARTICLE_FIELDS if not payload.article.get(field)]
    if missing:
        raise ValidationError(f"Missing required article fields: {', '.join(missing)}")
    try:
        article = ArticleNotification.model_validate(payload.article)
    except SchemaValidationError as exc:
        raise ValidationError(
            "Invalid article data", extra={"errors": _schema_errors(exc)}
        ) from exc

    logger.info(
        "Processing article notification request: %s (test mode: %s)",
        article.article_id,
        payload.test_mode,
    )

    if payload.test_mode:
        if not payload.test_email:
            raise ValidationError("Test email is required in test mode")
        result = await service.send_test(article, payload.test_email)
        if not result.success:
            raise NewsletterError(
                f"Test email failed: {result.error}",
                error="EMAIL_DELIVERY_FAILED",
                extra={"testMode": True},
            )
        return JSONResponse(
            content={
                "success": True,
                "message": "Test email sent successfully",
                "messageId": result.message_id,
                "testMode": True,
            }
        )

    broadcast = await service.send_article(article)
    stats = BroadcastStats(
        total_subscribers=broadcast.total_subscribers,
        success_count=broadcast.success_count,
        failure_count=broadcast.failure_count,
    )
    if not broadcast.success:
        raise NewsletterError(
            "Failed to send article notification",
            error="BROADCAST_FAILED",
            extra={
                "stats": stats.model_dump(by_alias=True),
                "errors": broadcast.errors,
            },
        )
    return _json(
        SendArticleResponse(
            success=True,
            message="Article notification sent successfully",
            stats=stats,
        )
    )


@router.get("/send-article")
async def send_article_info() -> dict[str, Any]:
    """Describe the send-article endpoint."""
    return {
        "endpoint": f"{settings.api_v1_prefix}/newsletter/send-article",
        "method": "POST",
        "description": "Send article notifications to all active newsletter subscribers",
        "authentication": "Bearer token required",
        "parameters": {
            "article": {
                "required": True,
                "type": "object",
                "fields": {
                    "articleId": "string (required)",
                    "title": "string (required)",
                    "excerpt": "string (required)",
                    "slug": "string (required)",
                    "publishDate": "string (required)",
                    "category": "string (required)",
                    "author": "string (optional)",
                    "readTimeMinutes": "number (optional)",
                },
            },
            "testMode": {
                "required": False,
                "type": "boolean",
                "description": "If true, sends a test email instead of notifying all subscribers",
            },
            "testEmail": {
                "required": "when testMode is true",
                "type": "string",
                "description": "Email address to send the test email to",
            },
        },
        "example": {
            "article": {
                "articleId": "article-123",
                "title": "New Investment Insights",
                "excerpt": "Discover the latest trends in venture capital...",
                "slug": "new-investment-insights",
                "publishDate": "2024-01-15",
                "category": "Investment Strategy",
                "author": "Arena Fund Team",
                "readTimeMinutes": 5,
            },
            "testMode": False,
        },
    }


@router.get("/stats")
@limiter.limit(settings.rate_limit_admin)
async def subscriber_stats(
    request: Request,
    service: NewsletterServiceDep,
    authorization: AuthorizationHeader = None,
) -> JSONResponse:
    """Subscriber totals by status and by acquisition source."""
    await require_api_key(request, authorization)
    stats = await service.stats()
    return _json(
        SubscriberStatsResponse(
            total=stats["total"],
            active_count=await service.active_count(),
            by_status=stats["byStatus"],
            active_by_source=stats["activeBySource"],
        )
    )


# --- Email infrastructure check (API key) ---


@router.post("/test")
@limiter.limit(settings.rate_limit_admin)
async def send_infrastructure_test(
    request: Request,
    service: BroadcastServiceDep,
    authorization: AuthorizationHeader = None,
) -> JSONResponse:
    """Send a ``basic``, ``welcome`` or ``article`` email to verify delivery."""
    await require_api_key(request, authorization)
    body = await _read_json_body(request, get_client_ip(request))
    try:
        payload = InfrastructureTestRequest.model_validate(body)
    except SchemaValidationError as exc:
        raise ValidationError(
            "Invalid request data", extra={"errors": _schema_errors(exc)}
        ) from exc

    if not payload.test_email:
        raise ValidationError("Test email address is required")
    test_email = sanitize_email(payload.test_email)
    if not EMAIL_RE.match(test_email):
        raise ValidationError("Invalid email format", error="INVALID_EMAIL")
    if payload.test_type not in TEST_TYPES:
        raise ValidationError("Invalid test type. Use: basic, welcome, or article")

    logger.info(
        "Processing newsletter test request: %s to %s",
        payload.test_type,
        mask_email(test_email),
    )
    result = await service.send_infrastructure_test(payload.test_type, test_email)
    if not result.success:
        raise NewsletterError(
            f"Test email failed: {result.error}",
            error="EMAIL_DELIVERY_FAILED",
            extra={"testType": payload.test_type, "testEmail": test_email},
        )
    return JSONResponse(
        content={
            "success": True,
            "message": TEST_MESSAGES[payload.test_type],
            "testType": payload.test_type,
            "testEmail": test_email,
            "messageId": result.message_id,
            "timestamp": datetime.now(UTC).isoformat(),
        }
    )


@router.get("/test")
@limiter.limit(settings.rate_limit_admin)
async def infrastructure_status(
    request: Request,
    service: NewsletterServiceDep,
    authorization: AuthorizationHeader = None,
) -> JSONResponse:
    """Newsletter system status, subscriber stats and a sample without emails."""
    await require_api_key(request, authorization)
    stats = await service.stats()
    sample = await service.sample_active(5)
    return JSONResponse(
        content={
            "success": True,
            "system": {
                "status": "operational",
                "emailService": "Resend",
                "timestamp": datetime.now(UTC).isoformat(),
            },
            "subscribers": stats,
            "sampleSubscribers": [
                {
                    "id": str(subscriber.id),
                    "source": subscriber.source,
                    "subscribedAt": subscriber.subscribed_at.isoformat(),
                    "status": subscriber.status.value,
                }
                for subscriber in sample
            ],
            "testEndpoint": {
                "url": f"{settings.api_v1_prefix}/newsletter/test",
                "method": "POST",
                "testTypes": list(TEST_TYPES),
                "example": {"testEmail": "test@example.com", "testType": "basic"},
            },
        }
    )
