import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from app.routes import job_routes # pylint: disable=import-error
from app.core.config import settings # pylint: disable=import-error
from app.models.job_model import ScrapeError # pylint: disable=import-error

# Setup logging (configure only if not already configured)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION)

app.include_router(job_routes.router, tags=["Jobs"])


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Anything that escapes a route (dependency setup included) still answers with ScrapeError JSON."""
    logger.exception(f"UNHANDLED ERROR on {request.method} {request.url.path}")
    body = ScrapeError(error="internal_error", message=f"Internal error: {str(exc)}")
    return JSONResponse(status_code=500, content=body.model_dump())


@app.get("/")
def root():
    return {"status": "ok", "message": "Upwork scraper running"}


def run():
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
