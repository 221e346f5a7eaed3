"""Pydantic schema models for API request/response validation.

- **errors**: Standardized error response returned by every failing request
- **salestax**: Request and response bodies of the sales-tax endpoint
"""
