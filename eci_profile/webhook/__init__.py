"""Mutating admission webhook for Pod creation."""

from .admission import AdmissionHandler, create_app
from .registration import WebhookRegistrar
from .server import WebhookServer

__all__ = ["AdmissionHandler", "WebhookRegistrar", "WebhookServer", "create_app"]
