"""
Flask integration for request sanitization.

init_sanitization_middleware() registers a before_request hook that runs the
configured JSON body fields and query parameters through the sanitization
service. sanitize_fields() does the same for a single view.

Sanitized values and per-field results are exposed on flask.g:
- g.sanitized_json: copy of the JSON body with sanitized string fields
- g.sanitized_args: sanitized values of the configured query parameters
- g.sanitization_results: SanitizedResult per field (query fields are
  prefixed with ``query_``)

A body field carrying a critical violation rejects the request with 400 and
code CONTENT_BLOCKED. Failures while sanitizing body fields return 500 with
code SANITIZATION_ERROR; failures on query fields are logged and ignored.
"""

from functools import wraps
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, TypeVar, Union, cast

import structlog
from flask import Flask, Response, current_app, g, jsonify, request

from content_sanitizer.models import ContentType, SanitizedResult, SecurityEventContext, Severity
from content_sanitizer.service import SanitizationService

logger = structlog.get_logger(__name__)

F = TypeVar('F', bound=Callable[..., Any])

EXTENSION_KEY = 'content_sanitizer'

DEFAULT_BODY_FIELDS = (
    'name', 'description', 'bio', 'display_name', 'pet_name', 'breed', 'comment', 'message',
)
DEFAULT_QUERY_FIELDS = ('search', 'filter', 'name')


def _event_context(content_type: ContentType) -> SecurityEventContext:
    return SecurityEventContext(
        ip_address=request.remote_addr or 'unknown',
        user_agent=request.headers.get('User-Agent', 'unknown'),
        endpoint=request.path,
        content_type=content_type,
        request_id=request.headers.get('X-Request-ID'),
        metadata={'method': request.method},
    )


def _results() -> Dict[str, SanitizedResult]:
    if not hasattr(g, 'sanitization_results'):
        g.sanitization_results = {}
    return g.sanitization_results


def _blocked(field: str, result: SanitizedResult) -> Tuple[Response, int]:
    logger.warning(
        "Request blocked by content sanitization",
        field=field,
        endpoint=request.path,
        violations=len(result.violations),
    )
    return jsonify({
        'error': 'Content blocked',
        'message': 'Content contains dangerous elements and has been blocked.',
        'field': field,
        'violations': len(result.violations),
        'code': 'CONTENT_BLOCKED',
    }), 400


def _failed() -> Tuple[Response, int]:
    return jsonify({
        'error': 'Sanitization failed',
        'message': 'An error occurred while processing your request.',
        'code': 'SANITIZATION_ERROR',
    }), 500


def sanitize_request_body(service: SanitizationService, fields: Sequence[str],
                          content_type: ContentType,
                          block_critical: bool = True) -> Optional[Tuple[Response, int]]:
    """Sanitize JSON body fields; returns an error response when the request must stop."""
    try:
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return None
        sanitized = dict(getattr(g, 'sanitized_json', None) or body)
        results = _results()
        context = _event_context(content_type)

        for field in fields:
            value = sanitized.get(field)
            if not isinstance(value, str) or not value:
                continue
            result = service.sanitize_detailed(value, content_type=content_type, context=context)
            sanitized[field] = result.sanitized_content
            results[field] = result

            if block_critical and any(v.severity is Severity.CRITICAL for v in result.violations):
                g.sanitized_json = sanitized
                return _blocked(field, result)

        g.sanitized_json = sanitized
        return None
    except Exception as e:
        logger.error("Body sanitization failed", error=str(e), endpoint=request.path)
        return _failed()


def sanitize_query_args(service: SanitizationService, fields: Sequence[str],
                        content_type: ContentType) -> None:
    try:
        sanitized = dict(getattr(g, 'sanitized_args', None) or {})
        results = _results()
        context = _event_context(content_type)
        for field in fields:
            value = request.args.get(field)
            if not value:
                continue
            result = service.sanitize_detailed(value, content_type=content_type, context=context)
            sanitized[field] = result.sanitized_content
            results[f'query_{field}'] = result
        g.sanitized_args = sanitized
    except Exception as e:
        logger.warning("Query sanitization failed, continuing", error=str(e), endpoint=request.path)


def init_sanitization_middleware(
    app: Flask,
    service: SanitizationService,
    body_fields: Sequence[str] = DEFAULT_BODY_FIELDS,
    query_fields: Sequence[str] = DEFAULT_QUERY_FIELDS,
    content_type: Union[ContentType, str] = ContentType.GENERAL,
    block_critical: bool = True,
) -> None:
    """
    Register automatic request sanitization on a Flask application.

    Args:
        app: Flask application
        service: Sanitization service used for every request
        body_fields: JSON body keys to sanitize
        query_fields: Query parameters to sanitize
        content_type: Policy applied to all fields
        block_critical: Reject requests whose body carries a critical violation
    """
    ct = ContentType.normalize(content_type)
    app.extensions[EXTENSION_KEY] = service

    @app.before_request
    def sanitize_request():
        g.sanitization_results = {}
        blocked = sanitize_request_body(service, body_fields, ct, block_critical)
        if blocked is not None:
            return blocked
        sanitize_query_args(service, query_fields, ct)

        total = sum(len(r.violations) for r in g.sanitization_results.values())
        if total:
            logger.info(
                "Request sanitized with violations",
                endpoint=request.path,
                fields=sorted(g.sanitization_results),
                violations=total,
            )
        return None

    logger.info(
        "Sanitization middleware registered",
        body_fields=list(body_fields),
        query_fields=list(query_fields),
        content_type=ct.value,
    )


def sanitize_fields(fields: Sequence[str], content_type: Union[ContentType, str] = ContentType.GENERAL,
                    block_critical: bool = True) -> Callable[[F], F]:
    """
    Decorator sanitizing JSON body fields for a single view.

    The service is looked up from ``app.extensions['content_sanitizer']``,
    which init_sanitization_middleware() or register_service() populates.

    Example:
        @app.route('/api/pets', methods=['POST'])
        @sanitize_fields(['pet_name', 'breed'], ContentType.PET_CARD_METADATA)
        def create_pet():
            return jsonify(g.sanitized_json), 201
    """
    ct = ContentType.normalize(content_type)

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            service = current_app.extensions.get(EXTENSION_KEY)
            if service is None:
                logger.error("Sanitization service not registered", endpoint=request.path)
                return _failed()
            blocked = sanitize_request_body(service, fields, ct, block_critical)
            if blocked is not None:
                return blocked
            return func(*args, **kwargs)

        return cast(F, wrapper)

    return decorator


def register_service(app: Flask, service: SanitizationService) -> None:
    """Make a service available to sanitize_fields() without the global hook."""
    app.extensions[EXTENSION_KEY] = service


__all__ = [
    'DEFAULT_BODY_FIELDS',
    'DEFAULT_QUERY_FIELDS',
    'init_sanitization_middleware',
    'register_service',
    'sanitize_fields',
    'sanitize_query_args',
    'sanitize_request_body',
]
