# src/fluxrest/app.py
"""Main FluxRest API generator."""

from typing import Dict, Optional

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from rich.markup import escape
from starlette.exceptions import HTTPException as StarletteHTTPException

from fluxrest.api.routers.rest import RestRouter
from fluxrest.core.config import RestConfig
from fluxrest.core.engine import RestEngine
from fluxrest.core.errors import ExecutionError, RestError
from fluxrest.core.introspection.postgres import PostgresIntrospector
from fluxrest.core.logging import color_palette, log
from fluxrest.core.models.tables import SchemaCatalog
from fluxrest.core.response import NEXT_CURSOR_HEADER
from fluxrest.db.client import DbClient


class FluxRest:
    """Builds a FastAPI app exposing every catalog table as a REST resource."""

    def __init__(
        self,
        config: RestConfig,
        catalog: SchemaCatalog,
        db_client: DbClient,
        app: Optional[FastAPI] = None,
    ):
        self.config = config
        self.catalog = catalog
        self.db_client = db_client
        self.engine = RestEngine(catalog, db_client, config)
        self.app = app or FastAPI()
        self.routers: Dict[str, APIRouter] = {}
        self._initialize_app()

    @classmethod
    def from_database(cls, config: RestConfig, db_client: DbClient, app: Optional[FastAPI] = None) -> "FluxRest":
        """Introspect the configured schemas once and build the API on top."""
        catalog = PostgresIntrospector(db_client.engine).load_catalog(config.include_schemas)
        return cls(config, catalog, db_client, app)

    def _initialize_app(self) -> None:
        self.app.title = self.config.project_name
        self.app.version = self.config.version
        if self.config.description:
            self.app.description = self.config.description

        if self.config.author:
            self.app.contact = {"name": self.config.author, "email": self.config.email}

        if self.config.license_info:
            self.app.license_info = self.config.license_info

        # Add CORS middleware by default
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["Content-Range", "X-Affected-Count", NEXT_CURSOR_HEADER],
        )

    def print_welcome(self, host: str = "localhost", port: int = 8000) -> None:
        self.db_client.test_connection()
        log.info(f"{self.config.project_name} initialized (version {self.config.version})")
        log.info(f"API Documentation: http://{host}:{port}/docs")

    def gen_table_routes(self) -> None:
        """Register the REST routes of every catalog table, one router per schema."""
        log.section("Generating Table Routes")

        tables = self.catalog.tables()
        for table in tables:
            schema = table.schema_name
            if schema not in self.routers:
                self.routers[schema] = APIRouter(prefix=f"/{schema}", tags=[schema.upper()])

            log.info(f"Generating routes for: {color_palette['schema'](schema)}.{color_palette['table'](table.name)}")
            if len(table.primary_key) != 1:
                with log.indented():
                    log.warn("No single-column primary key, skipping by-id routes")

            RestRouter(table, self.engine, self.routers[schema], self.config.pagination).generate_all()

        for router in self.routers.values():
            self.app.include_router(router)

        log.table(
            headers=["Schema", "Tables", "By-id routes"],
            rows=[
                [
                    schema,
                    sum(1 for t in tables if t.schema_name == schema),
                    sum(1 for t in tables if t.schema_name == schema and len(t.primary_key) == 1),
                ]
                for schema in self.routers
            ],
        )
        log.success(f"Generated table routes for {len(tables)} tables")

    def configure_error_handlers(self) -> None:
        """Turn errors into `{"error": true, "message": ..., "status_code": ...}` bodies."""

        @self.app.exception_handler(RestError)
        async def rest_error_handler(request, exc: RestError):
            message = exc.message
            detail = None
            if isinstance(exc, ExecutionError):
                log.error(f"Execution error: {escape(exc.message)}")
                message = "Query execution failed"
                detail = exc.message if self.config.debug_mode else None
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "error": True,
                    "message": message,
                    "detail": detail,
                    "status_code": exc.status_code,
                },
            )

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request, exc):
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "error": True,
                    "message": exc.detail,
                    "status_code": exc.status_code,
                },
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request, exc):
            log.error(f"Unhandled exception: {escape(str(exc))}")

            return JSONResponse(
                status_code=500,
                content={
                    "error": True,
                    "message": "Internal server error",
                    "detail": str(exc) if self.config.debug_mode else None,
                    "status_code": 500,
                },
            )

        log.success("Configured global error handlers")
