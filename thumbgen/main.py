"""
Main FastAPI application for the thumbnail generation API.
Serves generate/edit, credits, signed asset files, admin, health and metrics.
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from thumbgen.api.routes import admin, credits, files, generation, health
from thumbgen.core.config import settings
from thumbgen.core.logging import configure_logging
from thumbgen.services.generation.errors import GenerationError
from thumbgen.utils.metrics import router as metrics_router


configure_logging()

app = FastAPI(
    title="Thumbgen API",
    description="Credit-metered thumbnail generation",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GenerationError)
def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    details = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors]
    return JSONResponse(
        status_code=400,
        content={"error": message, "code": "VALIDATION_ERROR", "details": details},
    )


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(generation.router)
app.include_router(credits.router)
app.include_router(files.router)
app.include_router(admin.router)
app.include_router(metrics_router)
