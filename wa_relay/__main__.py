import uvicorn

from wa_relay.config import get_settings


def run() -> None:
    settings = get_settings()
    uvicorn.run("wa_relay.main:app", host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    run()
