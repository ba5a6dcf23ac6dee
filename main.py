"""Run the bridge: the settlement loops and the operator API."""
import asyncio
import logging
import signal

import uvicorn

from api import create_app
from config import load_config, FatalConfigError
from context import build_context

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

class UvicornServer:
    """Wrapper for running uvicorn with proper lifecycle management."""

    def __init__(self, app, host: str = "127.0.0.1", port: int = 8000):
        self.config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="info"
        )
        self.server = uvicorn.Server(self.config)

    async def run(self):
        await self.server.serve()

    async def stop(self):
        self.server.should_exit = True

async def main():
    """Run the bridge loops and the API server until a shutdown signal arrives."""
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    settings = load_config()
    context = await build_context(settings)
    server = UvicornServer(create_app(context), settings.api_host, settings.api_port)

    context.start()
    api_task = asyncio.create_task(server.run(), name="api")
    logger.info("All services started")

    try:
        while not shutdown.is_set():
            try:
                await asyncio.wait_for(shutdown.wait(), timeout=1)
            except asyncio.TimeoutError:
                pass

            if api_task.done():
                logger.info("API server exited")
                shutdown.set()

            # Check if any tasks failed
            for task in context.tasks + [api_task]:
                if task.done() and not task.cancelled() and task.exception():
                    logger.error(f"Task {task.get_name()} failed with error: {task.exception()}")
                    shutdown.set()

        logger.info("Shutdown signal received. Cleaning up...")
    finally:
        logger.info("Stopping API server...")
        await server.stop()
        await asyncio.gather(api_task, return_exceptions=True)

        logger.info("Stopping bridge loops...")
        await context.stop()
        logger.info("Cleanup complete.")

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except FatalConfigError as e:
        logger.error(str(e))
        raise SystemExit(1)
