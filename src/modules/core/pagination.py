"""Pagination shared by list endpoints.

Mirrors the shape the storefront expects: the page of results plus a
``pagination`` block with the totals.
"""

from __future__ import annotations

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class StandardResultsSetPagination(PageNumberPagination):
    page_size_query_param = "limit"
    max_page_size = 100

    def get_paginated_response(self, data) -> Response:
        return Response(
            {
                "count": self.page.paginator.count,
                "next": self.get_next_link(),
                "previous": self.get_previous_link(),
                "results": data,
                "pagination": {
                    "currentPage": self.page.number,
                    "totalPages": self.page.paginator.num_pages,
                    "totalOrders": self.page.paginator.count,
                },
            }
        )
