"""
Pagination classes for chat API.

Message history is paged newest-first: page 1 holds the most recent
messages, page 2 the ones before them. Within a page messages are ordered
oldest-first so clients can append-render. DRF's built-in paginators
slice a queryset in a single direction, so this one only parses the
query parameters and shapes the response; MessageService does the slicing.

Design Decisions:
    - Page numbers rather than cursors: sequence numbers make offsets stable
      for history that is append-only
    - Page sizes balanced for mobile performance
"""

from __future__ import annotations

from rest_framework.pagination import BasePagination
from rest_framework.response import Response

from chat.constants import MESSAGE_CONFIG


class MessagePagePagination(BasePagination):
    """
    Page-number pagination for message history.

    Default: 50 messages per page
    Maximum: 100 messages per page

    Query parameters:
        page: 1-based page number, newest page first
        page_size: Number of messages (optional override)
    """

    page_query_param = "page"
    page_size_query_param = "page_size"
    page_size = MESSAGE_CONFIG.DEFAULT_PAGE_SIZE
    max_page_size = MESSAGE_CONFIG.MAX_PAGE_SIZE

    def get_page_params(self, request) -> tuple[str | int, str | int]:
        """
        Raw page and page_size from the query string.

        Validation is left to MessageService.list_messages(), which raises
        InvalidArgument for out-of-range values.
        """
        page = request.query_params.get(self.page_query_param, 1)
        page_size = request.query_params.get(self.page_size_query_param, self.page_size)
        return page, page_size

    def get_paginated_response(self, data, page: int, page_size: int, total: int) -> Response:
        return Response(
            {
                "count": total,
                "page": page,
                "page_size": page_size,
                "has_older": page * page_size < total,
                "results": data,
            }
        )

    def get_paginated_response_schema(self, schema):
        return {
            "type": "object",
            "required": ["count", "page", "page_size", "has_older", "results"],
            "properties": {
                "count": {"type": "integer", "example": 120},
                "page": {"type": "integer", "example": 1},
                "page_size": {"type": "integer", "example": 50},
                "has_older": {"type": "boolean"},
                "results": schema,
            },
        }
