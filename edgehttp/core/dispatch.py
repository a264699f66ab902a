"""
Request dispatch: host selection, route lookup and outcome mapping.

Exactly one handler runs per request. Its outcome is one of:
- COMPLETED: the handler's response, after the route's filters
- DECLINED: the handler returned None, or no route matched
- FAULT: the handler raised; answered with a 500
"""

import enum
import logging
import time
from dataclasses import dataclass
from typing import Optional

from ..optimizations.memory_optimizations import MemoryPool, RequestArena
from .errors import UnrecoverableHandlerError
from .messages import Request, Response, error_response
from .metrics import REQUEST_LATENCY, REQUESTS
from .routing import HostTable

logger = logging.getLogger("edgehttp")


class Outcome(enum.Enum):
    COMPLETED = "completed"
    DECLINED = "declined"
    FAULT = "fault"


@dataclass
class DispatchResult:
    outcome: Outcome
    response: Optional[Response] = None
    close_connection: bool = False

    def final_response(self) -> Response:
        """Response to put on the wire for this outcome."""
        if self.response is not None:
            return self.response
        return not_handled_response()


def not_handled_response() -> Response:
    """The engine's answer when no handler accepted the request."""
    return error_response(404, "not found")


def internal_error_response() -> Response:
    return error_response(500, "Internal Server Error")


class Dispatcher:
    """Routes requests to handlers for one set of virtual hosts.

    Attributes:
        hosts: Frozen host table
        pool: Buffer pool the request arenas lease from
    """

    def __init__(self, hosts: HostTable, pool: Optional[MemoryPool] = None):
        self.hosts = hosts
        self.pool = pool or MemoryPool()

    async def dispatch(self, request: Request) -> DispatchResult:
        start = time.perf_counter()
        result = await self._dispatch(request)
        REQUESTS.labels(result.outcome.value).inc()
        REQUEST_LATENCY.observe(time.perf_counter() - start)
        return result

    async def _dispatch(self, request: Request) -> DispatchResult:
        host = self.hosts.select(request.authority)
        entry = host.routes.lookup(request.path)
        if entry is None:
            return DispatchResult(Outcome.DECLINED)

        request.path_info = entry.remainder(request.path)
        with RequestArena(self.pool) as arena:
            request.arena = arena
            try:
                response = await entry.handler.handle(request)
                if response is None:
                    return DispatchResult(Outcome.DECLINED)
                for response_filter in entry.filters:
                    response = response_filter.apply(request, response)
                return DispatchResult(Outcome.COMPLETED, response)
            except UnrecoverableHandlerError:
                logger.exception(f"Unrecoverable error handling {request.method} {request.path}")
                return DispatchResult(Outcome.FAULT, internal_error_response(), close_connection=True)
            except Exception:
                logger.exception(f"Error handling {request.method} {request.path}")
                return DispatchResult(Outcome.FAULT, internal_error_response())
            finally:
                request.arena = None
