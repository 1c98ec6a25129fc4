from __future__ import annotations

import uvicorn

from ..config import load_config
from ..log import configure_logging, level_for
from .app import create_app
from .settings import DashboardSettings


def main(settings: DashboardSettings | None = None, port: int | None = None) -> None:
    settings = settings or DashboardSettings()
    config = load_config(settings.config_path)
    configure_logging(level_for(config.logging))
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=int(port or config.web.port), log_level="info")


if __name__ == "__main__":
    main()
