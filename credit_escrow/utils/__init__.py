"""Credit Escrow Utility Functions.

Common helper functions and utilities used across the application.
"""

from credit_escrow.utils.pagination import PaginatedResult, PaginationParams, paginate_rows

__all__ = [
    "PaginatedResult",
    "PaginationParams",
    "paginate_rows",
]
