import uvicorn

from .logging_setup import configure_logging
from .settings import get_settings


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, settings.json_logs)
    uvicorn.run("subs_relay.app:app", host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
