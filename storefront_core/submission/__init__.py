"""Order submission."""

from storefront_core.submission.client import (
    OrderSubmissionClient,
    classify_response,
    validate_payload,
)

__all__ = ["OrderSubmissionClient", "classify_response", "validate_payload"]
