"""
DRF exception handler for application errors.

Maps the core.exceptions hierarchy onto HTTP responses so views can let
service-layer errors propagate instead of translating them one by one.

Configured in settings:
    REST_FRAMEWORK = {
        "EXCEPTION_HANDLER": "core.exception_handler.application_exception_handler",
    }
"""

from __future__ import annotations

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

from core.exceptions import BaseApplicationError, StorageError

logger = logging.getLogger(__name__)


def application_exception_handler(exc, context):
    """
    Convert BaseApplicationError subclasses to JSON responses.

    Anything else falls through to DRF's default handler.
    """
    if isinstance(exc, BaseApplicationError):
        if isinstance(exc, StorageError):
            view = context.get("view")
            logger.error(
                f"Storage failure in {view.__class__.__name__ if view else 'unknown view'}: {exc}"
            )
        return Response(exc.to_dict(), status=exc.status_code)

    return exception_handler(exc, context)
