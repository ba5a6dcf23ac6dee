"""REST API module for the bridge.

This module provides HTTP endpoints for:
- Deposit instructions and limits
- Reserve, supply and status metrics
- Cross-chain transaction lookup and history
- Operator commands (pause, resume, initialize)
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logger = logging.getLogger(__name__)

def create_app(context=None) -> FastAPI:
    """Create the API application.

    Args:
        context: BridgeContext to serve. When omitted, the lifespan loads the
            configuration, builds the context and runs the bridge loops for
            the lifetime of the server.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown events."""
        owned = None
        if getattr(app.state, 'bridge', None) is None:
            from config import load_config
            from context import build_context

            logger.info("Initializing bridge...")
            owned = await build_context(load_config())
            app.state.bridge = owned
            owned.start()

        yield

        if owned is not None:
            logger.info("Shutting down bridge...")
            await owned.stop()
            app.state.bridge = None

    app = FastAPI(
        title="SolZ Bridge API",
        description="Operator API for the Zcash to Solana wZEC bridge",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.bridge = context

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from .bridge import router as bridge_router
    app.include_router(bridge_router)

    return app

__all__ = ['create_app']
