"""
billing_api -- HTTP boundary for the billing core.

A thin FastAPI layer: builds a RequestContext from the request headers,
calls one module service per route, and maps typed kernel errors to JSON
responses.  No billing logic lives here.
"""

from billing_api.app import create_app

__all__ = ["create_app"]
