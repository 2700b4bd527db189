import logging
import os
import sys
import traceback

import uvicorn

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

current_dir = os.path.dirname(os.path.abspath(__file__))
src_path = os.path.join(current_dir, "src")
sys.path.insert(0, src_path)


def _log_environment() -> None:
    logger.info("Environment Configuration:")
    logger.info(f"  APP_ENV: {os.environ.get('APP_ENV', 'not set')}")
    logger.info(f"  ASR_PROVIDER: {os.environ.get('ASR_PROVIDER', 'deepgram')}")
    logger.info(f"  ASR_API_KEY: {'set' if os.environ.get('ASR_API_KEY') else 'not set'}")
    logger.info(f"  OPENAI_API_KEY: {'set' if os.environ.get('OPENAI_API_KEY') else 'not set'}")
    logger.info(f"  AZURE_OPENAI_ENDPOINT: {'set' if os.environ.get('AZURE_OPENAI_ENDPOINT') else 'not set'}")
    logger.info(f"  SECURITY_AUTH_ENABLED: {os.environ.get('SECURITY_AUTH_ENABLED', 'true')}")


if __name__ == "__main__":
    logger.info("Clinic-Stream startup")
    _log_environment()
    try:
        from clinicstream.core.config import get_settings

        settings = get_settings()
        port = int(os.environ.get("PORT", settings.port))
        host = os.environ.get("HOST", settings.host)
        logger.info(f"Starting {settings.app_name} v{settings.app_version} on {host}:{port}")

        # Live sessions are held in process memory, so one worker only
        uvicorn.run(
            "clinicstream.app:app",
            host=host,
            port=port,
            workers=1,
            log_level="info",
            access_log=True,
            timeout_keep_alive=75,
            timeout_graceful_shutdown=30,
        )
    except KeyboardInterrupt:
        logger.info("Shutting down due to keyboard interrupt")
        sys.exit(0)
    except Exception as e:
        logger.error(f"CRITICAL: Failed to start application: {type(e).__name__}: {e}")
        logger.error(traceback.format_exc())
        logger.error("Check ASR_API_KEY, OPENAI_API_KEY / AZURE_OPENAI_* and SECURITY_API_KEYS")
        sys.exit(1)
