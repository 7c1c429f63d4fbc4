"""Recipe Engine API.

Creates and runs multi-step AI recipes (transcribe, write, illustrate,
format, publish) and reports their progress.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from recipe_engine import __version__
from recipe_engine.api.routes import executions, recipes
from recipe_engine.recipes.registry import get_preset_registry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Loading recipe presets...")
    preset_registry = get_preset_registry()
    logger.info(f"Loaded {preset_registry.count()} presets")

    logger.info("Recipe Engine API ready")
    yield
    logger.info("Shutting down Recipe Engine API")


app = FastAPI(
    title="Recipe Engine API",
    description="""
## Recipe execution service

Runs user-authored multi-step AI pipelines against an input and
tracks each step's result and cost.

### Key Endpoints

- `GET /v1/recipes/presets` - List preset recipes
- `POST /v1/recipes` - Save a recipe (preset key or full definition)
- `POST /v1/executions` - Start an execution
- `GET /v1/executions/{id}` - Poll status, progress and step results
- `POST /v1/executions/{id}/cancel` - Cancel at the next step boundary
""",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(recipes.router, prefix="/v1")
app.include_router(executions.router, prefix="/v1")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Recipe Engine API",
        "version": __version__,
        "docs": "/docs",
        "endpoints": {
            "presets": "/v1/recipes/presets",
            "recipes": "/v1/recipes",
            "executions": "/v1/executions",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "presets_loaded": get_preset_registry().count(),
    }
