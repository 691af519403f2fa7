"""Read-only HTTP browser for the record directory."""

from __future__ import annotations

import threading
from http import HTTPStatus
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Optional

from lssd.shared.logging.logger import get_logger

log = get_logger("services.files")


class _RecoveringHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def handle_error(self, request, client_address) -> None:
        log.exception(f"File server request from {client_address[0]} failed")


class RecordFileServer:
    def __init__(
        self,
        record_dir: Path | str,
        *,
        host: str = "0.0.0.0",
        port: int = 8080,
        enabled: bool = True,
    ) -> None:
        self._record_dir = Path(record_dir)
        self._host = host
        self._port = int(port)
        self._enabled = enabled
        self._thread: Optional[threading.Thread] = None
        self._server: Optional[ThreadingHTTPServer] = None

    def start(self) -> None:
        if not self._enabled:
            log.info("File server disabled via config")
            return
        if self._thread and self._thread.is_alive():
            return

        handler = self._build_handler()
        self._server = _RecoveringHTTPServer((self._host, self._port), handler)
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="lssd-file-server",
            daemon=True,
        )
        self._thread.start()
        log.info(
            "File server running on %s:%s (root=%s)",
            self._host,
            self.port,
            self._record_dir,
        )

    def stop(self) -> None:
        if not self._server:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        log.info("File server stopped")

    @property
    def port(self) -> int:
        # Reflects the bound port when configured with port 0
        if self._server is not None:
            return self._server.server_address[1]
        return self._port

    def _build_handler(self):
        base_dir = self._record_dir

        class Handler(SimpleHTTPRequestHandler):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, directory=str(base_dir), **kwargs)

            def _recover(self, method) -> None:
                try:
                    method()
                except (BrokenPipeError, ConnectionResetError):
                    log.debug(f"Client went away during {self.command} {self.path}")
                except Exception:
                    log.exception(f"File server handler failed for {self.path}")
                    try:
                        self.send_error(HTTPStatus.INTERNAL_SERVER_ERROR)
                    except Exception:
                        log.debug("Could not send 500 response", exc_info=True)

            def do_GET(self) -> None:  # noqa: N802 - stdlib signature
                self._recover(super().do_GET)

            def do_HEAD(self) -> None:  # noqa: N802 - stdlib signature
                self._recover(super().do_HEAD)

            def log_message(self, format: str, *args) -> None:
                log.debug("%s - %s", self.address_string(), format % args)

        return Handler
