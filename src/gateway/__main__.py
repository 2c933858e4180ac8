import logging

from src.core.config import get_settings
from src.core.logging import configure_logging
from src.gateway.server import SellerApp, SellerServer

logger = logging.getLogger("src.gateway")


def main() -> None:
    settings = get_settings()
    configure_logging(settings)

    app = SellerApp(settings)
    server = SellerServer(app, settings.host, settings.port)
    app.start()
    logger.info(
        "%s listening on http://%s:%d (chain=%s, test_mode=%s, recipient=%s)",
        settings.app_name, settings.host, settings.port,
        settings.chain, settings.test_mode, settings.seller_address,
    )
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        app.stop()


if __name__ == "__main__":
    main()
