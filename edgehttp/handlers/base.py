"""
Handler capability shared by every route target.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..core.messages import Request, Response


class Handler(ABC):
    """Turns a request into a response, or declines it.

    Returning None declines the request; the server answers it with its
    standard "not handled" error. Raising maps to a 500 for this request only.
    """

    @abstractmethod
    async def handle(self, request: Request) -> Optional[Response]:
        ...
