"""Run the reqguard application with uvicorn."""

import uvicorn

from reqguard.config.loader import get_settings


def main():
    """CLI entry point."""
    settings = get_settings()
    uvicorn.run(
        "reqguard.main:app",
        host=settings.listen_host,
        port=settings.listen_port,
        proxy_headers=settings.trust_proxy,
        log_config=None,
    )


if __name__ == "__main__":
    main()
