"""Process entry point behind the `mrodb-serve` console script."""

import os
from typing import Any, Dict

import uvicorn

_TRUTHY = {"1", "true", "yes", "on"}

_SSL_ENV = {
    "ssl_certfile": "SSL_CERTFILE",
    "ssl_keyfile": "SSL_KEYFILE",
    "ssl_ca_certs": "SSL_CA_CERTS",
    "ssl_keyfile_password": "SSL_KEYFILE_PASSWORD",
}


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def server_options() -> Dict[str, Any]:
    reload_enabled = _flag("RELOAD")
    options: Dict[str, Any] = {
        "host": os.getenv("HOST", "0.0.0.0"),
        "port": int(os.getenv("PORT", "8000")),
        "reload": reload_enabled,
        "log_level": os.getenv("LOG_LEVEL", "info").lower(),
        "proxy_headers": _flag("PROXY_HEADERS", "true"),
        "forwarded_allow_ips": os.getenv("FORWARDED_ALLOW_IPS", "*"),
        "timeout_keep_alive": int(os.getenv("KEEP_ALIVE_SECONDS", "30")),
    }
    # uvicorn refuses workers together with reload.
    workers = int(os.getenv("WEB_CONCURRENCY", "1"))
    if workers > 1 and not reload_enabled:
        options["workers"] = workers
    options.update({option: os.environ[env] for option, env in _SSL_ENV.items() if os.getenv(env)})
    return options


def main() -> None:
    uvicorn.run("mrodb.main:app", **server_options())


if __name__ == "__main__":
    main()
