"""
Fixed-response diagnostic handler.
"""

from typing import Optional

from ..core.messages import Request, Response
from .base import Handler

HELLO_BODY = b"Hello, world\n"


class DiagnosticHandler(Handler):
    """Answers GET with a fixed 200 text/plain body; declines everything else."""

    def __init__(self, body: bytes = HELLO_BODY, content_type: str = "text/plain"):
        self.body = body
        self.content_type = content_type

    async def handle(self, request: Request) -> Optional[Response]:
        if request.method != "GET":
            return None
        return Response(
            status=200,
            reason="OK",
            headers=[("Content-Type", self.content_type)],
            body=self.body,
        )
