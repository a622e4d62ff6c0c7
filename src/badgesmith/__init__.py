"""Shields.io endpoint badges behind a signed-request ASGI service."""

__version__ = "0.1.0"

from badgesmith.app import BadgeSmith, create_app
from badgesmith.auth import AuthContext, HmacAuthenticator
from badgesmith.config import Settings
from badgesmith.cors import CorsNegotiator, CorsOptions
from badgesmith.request import Request
from badgesmith.response import JSONResponse, Response
from badgesmith.routing import ExactPattern, RouteDescriptor, RouteResolver, RouteValues, TemplatePattern

__all__ = [
    "AuthContext",
    "BadgeSmith",
    "CorsNegotiator",
    "CorsOptions",
    "ExactPattern",
    "HmacAuthenticator",
    "JSONResponse",
    "Request",
    "Response",
    "RouteDescriptor",
    "RouteResolver",
    "RouteValues",
    "Settings",
    "TemplatePattern",
    "create_app",
]
