# src/fluxrest/api/routers/rest.py
"""PostgREST-style routes for one catalog table."""

import dataclasses
import json
from typing import Any, List, Optional, Tuple

from fastapi import APIRouter, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

from ...core.config import PaginationConfig, apply_pagination
from ...core.engine import MutationResult, RestEngine
from ...core.errors import ValidationError
from ...core.models.tables import TableInfo
from ...core.query.builder import UpsertOptions
from ...core.query.compiler import (
    QueryStringParser,
    convert,
    extract_on_conflict,
    parse_query_string,
)
from ...core.query.cursor import next_cursor
from ...core.query.models import PostQueryRequest, QueryParams
from ...core.response import (
    NEXT_CURSOR_HEADER,
    Operation,
    PreferOptions,
    Resolution,
    ReturnMode,
    content_range,
    mutation_headers,
    parse_prefer,
    status_for,
)

QueryItems = List[Tuple[str, str]]


def query_items(request: Request) -> QueryItems:
    """Decode the raw query string of a request."""
    raw = request.scope.get("query_string", b"")
    try:
        decoded = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise ValidationError("Invalid query string")
    return parse_query_string(decoded)


async def json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw.strip():
        raise ValidationError("Invalid request body: empty body")
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise ValidationError(f"Invalid request body: {exc}")


class RestRouter:
    """Registers list, write, query and by-id routes for a table."""

    def __init__(
        self,
        table: TableInfo,
        engine: RestEngine,
        router: APIRouter,
        pagination: Optional[PaginationConfig] = None,
    ):
        self.table = table
        self.engine = engine
        self.router = router
        self.pagination = pagination or engine.config.pagination
        self.parser = QueryStringParser()

    def _path(self, suffix: str = "") -> str:
        return f"/{self.table.name}{suffix}"

    def generate_all(self) -> None:
        self.read()
        self.query()
        self.create()
        self.update()
        self.delete()
        if len(self.table.primary_key) == 1:
            self.read_one()
            self.update_one()
            self.delete_one()

    # ===== Shared helpers =====

    def _paginate(self, params: QueryParams, prefer: PreferOptions) -> QueryParams:
        limit, offset = apply_pagination(params.limit, params.offset, self.pagination)
        return dataclasses.replace(
            params,
            limit=limit,
            offset=offset,
            count=params.count or prefer.count,
        )

    async def _read_response(self, params: QueryParams) -> Response:
        result = await run_in_threadpool(self.engine.select, self.table, params)
        headers = {"Content-Range": content_range(params.offset, len(result.rows), result.total)}
        cursor = next_cursor(result.rows, params, params.limit)
        if cursor is not None:
            headers[NEXT_CURSOR_HEADER] = cursor
        return JSONResponse(jsonable_encoder(result.rows), status_code=200, headers=headers)

    def _mutation_response(
        self,
        result: MutationResult,
        operation: Operation,
        prefer: PreferOptions,
        single: bool = False,
    ) -> Response:
        headers = mutation_headers(result.affected)
        status_code = status_for(operation, prefer.return_mode)
        if prefer.return_mode is not ReturnMode.REPRESENTATION:
            return Response(status_code=status_code, headers=headers)
        content = result.rows[0] if single and result.rows else result.rows
        return JSONResponse(jsonable_encoder(content), status_code=status_code, headers=headers)

    @staticmethod
    def _upsert_options(items: QueryItems, prefer: PreferOptions) -> Optional[UpsertOptions]:
        on_conflict = extract_on_conflict(items)
        if prefer.resolution is None and not on_conflict:
            return None
        return UpsertOptions(
            on_conflict=on_conflict,
            ignore_duplicates=prefer.resolution is Resolution.IGNORE_DUPLICATES,
            default_to_null=prefer.missing_default,
        )

    @staticmethod
    def _values(body: Any) -> dict:
        if not isinstance(body, dict):
            raise ValidationError("Invalid request body: expected an object")
        return body

    # ===== Collection routes =====

    def read(self) -> None:
        @self.router.get(self._path(), summary=f"List {self.table.name} rows")
        async def list_rows(request: Request) -> Response:
            prefer = parse_prefer(request.headers.get("prefer"))
            params = self._paginate(self.parser.parse(query_items(request)), prefer)
            return await self._read_response(params)

    def query(self) -> None:
        @self.router.post(self._path("/query"), summary=f"Query {self.table.name} rows")
        async def query_rows(request: Request) -> Response:
            prefer = parse_prefer(request.headers.get("prefer"))
            body = await json_body(request)
            try:
                post_query = PostQueryRequest.model_validate(body)
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid request body: {exc.errors()[0]['msg']}")
            params = self._paginate(convert(post_query), prefer)
            return await self._read_response(params)

    def create(self) -> None:
        @self.router.post(self._path(), summary=f"Insert or upsert {self.table.name} rows")
        async def create_rows(request: Request) -> Response:
            items = query_items(request)
            prefer = parse_prefer(request.headers.get("prefer"))
            body = await json_body(request)
            upsert = self._upsert_options(items, prefer)
            result = await run_in_threadpool(self.engine.insert, self.table, body, upsert)
            return self._mutation_response(result, Operation.CREATE, prefer)

    def update(self) -> None:
        @self.router.patch(self._path(), summary=f"Update matching {self.table.name} rows")
        async def update_rows(request: Request) -> Response:
            params = self.parser.parse(query_items(request))
            prefer = parse_prefer(request.headers.get("prefer"))
            values = self._values(await json_body(request))
            result = await run_in_threadpool(self.engine.update_batch, self.table, values, params)
            return self._mutation_response(result, Operation.UPDATE, prefer)

    def delete(self) -> None:
        @self.router.delete(self._path(), summary=f"Delete matching {self.table.name} rows")
        async def delete_rows(request: Request) -> Response:
            params = self.parser.parse(query_items(request))
            prefer = parse_prefer(request.headers.get("prefer"))
            result = await run_in_threadpool(self.engine.delete_batch, self.table, params)
            return self._mutation_response(result, Operation.DELETE, prefer)

    # ===== Single row routes =====

    def read_one(self) -> None:
        @self.router.get(self._path("/{id}"), summary=f"Get one {self.table.name} row")
        async def read_row(id: str, request: Request) -> Response:
            params = self.parser.parse(query_items(request))
            row = await run_in_threadpool(self.engine.get_by_pk, self.table, id, params)
            return JSONResponse(jsonable_encoder(row), status_code=200)

    def update_one(self) -> None:
        async def update_row(id: str, request: Request) -> Response:
            prefer = parse_prefer(request.headers.get("prefer"))
            values = self._values(await json_body(request))
            result = await run_in_threadpool(self.engine.update_by_pk, self.table, id, values)
            return self._mutation_response(result, Operation.UPDATE, prefer, single=True)

        self.router.add_api_route(
            self._path("/{id}"),
            update_row,
            methods=["PATCH", "PUT"],
            summary=f"Update one {self.table.name} row",
        )

    def delete_one(self) -> None:
        @self.router.delete(self._path("/{id}"), summary=f"Delete one {self.table.name} row")
        async def delete_row(id: str, request: Request) -> Response:
            prefer = parse_prefer(request.headers.get("prefer"))
            result = await run_in_threadpool(self.engine.delete_by_pk, self.table, id)
            return self._mutation_response(result, Operation.DELETE, prefer, single=True)
