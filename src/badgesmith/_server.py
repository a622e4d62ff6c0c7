import sys
from typing import Any

DEFAULT_TARGET = "badgesmith.app:create_app"


def serve(
    target: str = DEFAULT_TARGET,
    *,
    factory: bool = True,
    host: str = "127.0.0.1",
    port: int = 8000,
    dev: bool = False,
    reload: bool | None = None,
    workers: int = 1,
    log_level: str = "info",
    log_access: bool = False,
    granian_kwargs: dict[str, Any] | None = None,
) -> None:
    """Start a Granian server for *target*.

    Parameters
    ----------
    target:
        ``"module:var"`` import path understood by Granian.  By default the
        app factory, so every worker builds its own stores and HTTP client.
    factory:
        Whether *target* is a zero-argument callable returning the app.
    dev:
        When ``True``, applies dev-friendly defaults (reload, debug logs,
        access logs) unless explicitly overridden.
    reload:
        Enable auto-reload.  ``None`` means follow *dev* flag.
    """
    from granian import Granian

    if dev:
        if reload is None:
            reload = True
        log_level = "debug"
        log_access = True

    if reload is None:
        reload = False

    _print_banner(target, host=host, port=port, workers=workers, reload=reload, dev=dev)

    kw: dict[str, Any] = granian_kwargs or {}
    server = Granian(
        target=target,
        address=host,
        port=port,
        interface="asgi",
        factory=factory,
        workers=workers,
        reload=reload,
        log_level=log_level,
        log_access=log_access,
        **kw,
    )
    server.serve()


# ------------------------------------------------------------------
# Startup banner
# ------------------------------------------------------------------

_CYAN = "\033[36m"
_GREEN = "\033[32m"
_BOLD = "\033[1m"
_RESET = "\033[0m"


def _print_banner(target: str, *, host: str, port: int, workers: int, reload: bool, dev: bool) -> None:
    color = sys.stdout.isatty()

    def c(code: str, text: str) -> str:
        return f"{code}{text}{_RESET}" if color else text

    lines = [
        f"{c(_BOLD + _CYAN, 'BadgeSmith')}   {'development' if dev else 'production'} mode",
        "",
        f"{c(_GREEN, 'target')}     {target}",
        f"{c(_GREEN, 'listen')}     http://{host}:{port}",
        f"{c(_GREEN, 'workers')}    {workers}{' (reload)' if reload else ''}",
        "",
    ]
    print("\n".join(lines), flush=True)
