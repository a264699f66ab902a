"""
Server bootstrap and run loop.

Startup runs as an ordered sequence of steps; the first failing step raises
a StartupError and nothing after it runs:

1. Ignore SIGPIPE
2. Register virtual hosts and their routes, then freeze them
3. Configure TLS, when a certificate and key are given
4. Create the event loop (uvloop when available)
5. Bind the listener

The loop then runs until SIGINT/SIGTERM. Open connections are aborted at
exit, there is no graceful drain.
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

from ..features.compression import CompressionFilter
from ..features.http2 import alpn_protocols
from ..handlers.hello import DiagnosticHandler
from ..handlers.metrics import MetricsHandler
from ..handlers.static import StaticFileHandler
from ..optimizations.memory_optimizations import MemoryPool
from .config import ListenEndpoint, ServerConfig
from .context import ServerContext
from .dispatch import Dispatcher
from .errors import ServerConfigError, StartupError
from .listener import Listener, ListenerHandle
from .routing import HostTable, RouteTable
from .server_utils import configure_logging, ignore_sigpipe, new_event_loop
from .ssl_utils import configure_tls, validate_cert_paths

logger = logging.getLogger("edgehttp")


def register_routes(routes: RouteTable, config: ServerConfig) -> None:
    """Register the built-in routes in their fixed order."""
    routes.register("/sayhello", DiagnosticHandler())
    if config.metrics_path:
        routes.register(config.metrics_path, MetricsHandler())
    routes.register(
        "/",
        StaticFileHandler(config.static_root),
        prefix=True,
        filters=[CompressionFilter(config.compression_min_size, config.compression_level)],
    )


def build_hosts(config: ServerConfig) -> HostTable:
    hosts = HostTable()
    for name in config.hosts:
        host = hosts.register(name, config.max_request_size)
        register_routes(host.routes, config)
    return hosts


class Server:
    """The edgehttp server.

    Attributes:
        config: Static configuration
        context: Built by setup(), None before
        handle: The bound listener once started
    """

    def __init__(self, config: Optional[ServerConfig] = None, **kwargs):
        self.config = config if config is not None else ServerConfig(**kwargs)
        self.context: Optional[ServerContext] = None
        self.listener: Optional[Listener] = None
        self.handle: Optional[ListenerHandle] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def url(self) -> str:
        port = self.handle.port if self.handle is not None else self.config.port
        return f"{self.config.scheme}://{ListenEndpoint(self.config.host, port)}"

    def setup(self) -> ServerContext:
        """Run the setup steps that need no event loop.

        Raises:
            TLSConfigError: If the certificate or key cannot be used
        """
        ignore_sigpipe()

        hosts = build_hosts(self.config)
        hosts.freeze()

        ssl_context = None
        if self.config.tls_enabled:
            cert_path, key_path = validate_cert_paths(self.config.tls_certfile, self.config.tls_keyfile)
            ssl_context = configure_tls(
                cert_path,
                key_path,
                self.config.tls_ciphers,
                password=self.config.tls_password,
                alpn_protocols=alpn_protocols(self.config.enable_http2),
            )

        pool = MemoryPool()
        self.context = ServerContext(self.config, hosts, Dispatcher(hosts, pool), pool, ssl_context)
        return self.context

    async def start(self) -> ListenerHandle:
        """Bind the listener on the running loop and start accepting.

        Raises:
            BindError: If the listening socket cannot be set up
        """
        if self.context is None:
            self.setup()
        self._stop_event = asyncio.Event()
        self.listener = Listener(self.context, asyncio.get_running_loop())
        self.handle = self.listener.start(self.config.endpoint)
        logger.info(f"Serving on {self.url}")
        return self.handle

    async def serve(self) -> None:
        """Wait until stop() is called."""
        if self._stop_event is None:
            await self.start()
        await self._stop_event.wait()

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    async def close(self) -> None:
        """Stop accepting and abort every open connection."""
        if self.handle is not None:
            self.handle.close()
        if self.listener is not None:
            self.listener.abort_connections()
        # Let aborted transports run connection_lost
        await asyncio.sleep(0)

    def run(self) -> int:
        """Set up, bind and serve until a stop signal.

        Returns:
            0 when the loop exits, including after a fatal engine error

        Raises:
            StartupError: If any setup step fails
        """
        self.setup()
        loop = new_event_loop()
        try:
            loop.run_until_complete(self.start())
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, self.stop)
                except (NotImplementedError, RuntimeError):
                    # Windows loops have no signal handlers
                    signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(self.stop))
            print(f"server listens at {self.url}")
            sys.stdout.flush()
            try:
                loop.run_until_complete(self.serve())
            except Exception:
                logger.exception("Event loop failed")
            return 0
        finally:
            try:
                loop.run_until_complete(self.close())
                _cancel_all_tasks(loop)
                loop.run_until_complete(loop.shutdown_asyncgens())
            finally:
                asyncio.set_event_loop(None)
                loop.close()
                logger.info("Server stopped")


def _cancel_all_tasks(loop: asyncio.AbstractEventLoop) -> None:
    pending = asyncio.all_tasks(loop)
    if not pending:
        return
    for task in pending:
        task.cancel()
    loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))


def main() -> int:
    """Console entry point: configuration comes from EDGEHTTP_* variables."""
    try:
        config = ServerConfig.from_env()
    except ServerConfigError as e:
        print(f"failed to startup server at {ListenEndpoint()}: {e}")
        sys.stdout.flush()
        return 1

    configure_logging(config.log_level.upper(), json_format=config.json_logs)
    try:
        return Server(config).run()
    except StartupError as e:
        logger.debug("Startup failed", exc_info=True)
        print(f"failed to startup server at {config.endpoint}: {e}")
        sys.stdout.flush()
        return 1


if __name__ == "__main__":
    sys.exit(main())
