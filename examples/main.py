# examples/main.py
"""
fluxrest: serve a PostgreSQL schema as PostgREST-style REST endpoints.

Run with `uvicorn examples.main:app` after pointing DB_* at a database.
"""

import os

from fastapi import FastAPI

from fluxrest import DbClient, DbConfig, FluxRest, PoolConfig, RestConfig
from fluxrest.core.logging import LogLevel, log


# ? Main FluxRest ------------------------------------------------------------------------------------

db_client = DbClient(
    DbConfig(
        user=os.getenv("DB_USER", "postgres"),
        password=os.getenv("DB_PASSWORD", ""),
        host=os.getenv("DB_HOST", "localhost"),
        port=int(os.getenv("DB_PORT", "5432")),
        database=os.getenv("DB_NAME", "postgres"),
        pool_config=PoolConfig(pool_size=5, max_overflow=10),
    )
)

config = RestConfig(
    project_name="fluxrest demo",
    version="0.1.0",
    include_schemas=os.getenv("DB_SCHEMAS", "public").split(","),
    log_sql=os.getenv("LOG_SQL") == "1",
    debug_mode=os.getenv("DEBUG") == "1",
)

if config.log_sql:
    log.set_level(LogLevel.DEBUG)

app: FastAPI = FastAPI()

flux = FluxRest.from_database(config, db_client, app)
flux.configure_error_handlers()
flux.gen_table_routes()


if __name__ == "__main__":
    import uvicorn

    flux.print_welcome()
    uvicorn.run(app, host="0.0.0.0", port=8000)
