"""
Base service layer patterns for business logic encapsulation.

Service Layer Philosophy:
    Services encapsulate business logic separate from views, consumers and
    models. Views and consumers handle transport concerns (HTTP, websocket),
    the persistence store handles data, services handle the rules.

Error Handling:
    Services raise core.exceptions for expected failures
    (AccessDenied, InvalidArgument, NotFoundError). Transports translate
    them: the DRF exception handler into HTTP responses, the gateway into
    scoped error events.

Usage:
    from core.services import BaseService

    class MessageService(BaseService):
        @classmethod
        def post_message(cls, conversation_id, sender, content):
            if not store.is_participant(conversation_id, sender.id):
                raise AccessDenied("You are not a participant in this conversation")

            with cls.atomic():
                message = store.insert_message(...)
                store.create_message_statuses(...)

            cls.get_logger().debug(f"User {sender.id} sent message {message.id}")
            return message
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management

    Design Notes:
        - Use @staticmethod or @classmethod (no instance state)
        - Services should be stateless
        - Raise core.exceptions for expected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        All database operations within this context manager are
        wrapped in a transaction. If any operation fails, all
        changes are rolled back.

        Example:
            with cls.atomic():
                message = store.insert_message(...)
                store.create_message_statuses(message.id, recipient_ids)
                # If status creation fails, the message is rolled back too
        """
        with transaction.atomic():
            yield
