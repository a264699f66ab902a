"""
Prometheus exposition handler, mounted only when a metrics path is configured.
"""

from typing import Optional

from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from ..core.messages import Request, Response
from .base import Handler


class MetricsHandler(Handler):
    def __init__(self, registry=REGISTRY):
        self.registry = registry

    async def handle(self, request: Request) -> Optional[Response]:
        if request.method != "GET":
            return None
        return Response(
            status=200,
            headers=[("Content-Type", CONTENT_TYPE_LATEST)],
            body=generate_latest(self.registry),
        )
