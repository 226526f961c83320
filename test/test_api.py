# test/test_api.py
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError

from conftest import FakeResult
from fluxrest.app import FluxRest
from fluxrest.core.query.cursor import decode_cursor, encode_cursor


@pytest.fixture
def client(config, catalog, fake_db):
    flux = FluxRest(config, catalog, fake_db)
    flux.configure_error_handlers()
    flux.gen_table_routes()
    return TestClient(flux.app)


def contact_rows(*rows):
    return FakeResult(["id", "name", "email", "phone"], rows)


class TestList:
    def test_list_with_content_range(self, client, fake_db):
        fake_db.queue(contact_rows((1, "Ann", None, None), (2, "Bob", None, None)))
        response = client.get("/public/contacts?name=like.*&offset=10")
        assert response.status_code == 200
        assert response.json()[1] == {"id": 2, "name": "Bob", "email": None, "phone": None}
        assert response.headers["content-range"] == "10-11/*"

    def test_default_and_capped_limit(self, client, fake_db):
        client.get("/public/contacts")
        assert fake_db.last_params == {"p1": 25, "p2": 0}
        client.get("/public/contacts?limit=5000")
        assert fake_db.last_params == {"p1": 100, "p2": 0}

    def test_exact_count_from_prefer(self, client, fake_db):
        fake_db.queue(contact_rows(), FakeResult(scalar=100))
        response = client.get("/public/contacts", headers={"Prefer": "count=exact"})
        assert response.headers["content-range"] == "0-0/100"

    def test_unknown_column(self, client, fake_db):
        response = client.get("/public/contacts?nope=eq.1")
        assert response.status_code == 400
        body = response.json()
        assert body["error"] is True
        assert body["message"] == "Unknown column: nope"
        assert fake_db.executed == []

    def test_invalid_query_string(self, client):
        response = client.get("/public/contacts?name=eq.%E9")
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid query string"

    def test_malformed_or(self, client):
        response = client.get("/public/contacts?or=(name.eq)")
        assert response.status_code == 400
        assert "invalid OR filter format" in response.json()["message"]

    def test_unknown_table(self, client):
        assert client.get("/public/nope").status_code == 404

    @pytest.mark.parametrize("query", ["name=nq.Ann", "name=Ann"])
    def test_value_without_operator_is_rejected(self, client, fake_db, query):
        response = client.get(f"/public/contacts?{query}")
        assert response.status_code == 400
        assert response.json()["message"] == "Unknown operator for column: name"
        assert fake_db.executed == []

    @pytest.mark.parametrize("raw", [b"NaN", b"Infinity", b"-Infinity"])
    def test_non_json_constant_bytes_are_text(self, client, fake_db, raw):
        fake_db.queue(contact_rows((1, raw, None, None)))
        response = client.get("/public/contacts")
        assert response.status_code == 200
        assert response.json()[0]["name"] == raw.decode()


class TestQueryEndpoint:
    def test_post_query(self, client, fake_db):
        fake_db.queue(contact_rows((1, "Ann", None, None)))
        response = client.post(
            "/public/users/query",
            json={
                "select": "id,name",
                "between_filters": [{"column": "age", "min": 18, "max": 65, "negated": True}],
                "order": [{"column": "name", "direction": "desc"}],
                "limit": 10,
            },
        )
        assert response.status_code == 200
        sql = fake_db.last_sql
        assert 'WHERE ("age" < :p1 OR "age" > :p2)' in sql
        assert 'ORDER BY "name" DESC' in sql
        assert response.headers["content-range"] == "0-0/*"

    def test_invalid_body(self, client):
        response = client.post("/public/users/query", content="{not json")
        assert response.status_code == 400
        assert response.json()["message"].startswith("Invalid request body")

    @pytest.mark.parametrize("body", [{"limit": -5}, {"offset": -3}, {"limit": -5, "offset": -3}])
    def test_negative_bounds_are_rejected(self, client, fake_db, body):
        response = client.post("/public/contacts/query", json=body)
        assert response.status_code == 400
        assert response.json()["message"].startswith("Invalid request body")
        assert fake_db.executed == []

    def test_cursor_in_body(self, client, fake_db):
        client.post("/public/contacts/query", json={"cursor": encode_cursor("id", 7), "limit": 5})
        assert 'WHERE "id" > :p1 ORDER BY "id" ASC' in fake_db.last_sql
        assert fake_db.last_params["p1"] == 7


class TestCreate:
    def test_insert(self, client, fake_db):
        fake_db.queue(contact_rows((1, "Ann", None, None)))
        response = client.post("/public/contacts", json={"name": "Ann"})
        assert response.status_code == 201
        assert response.json() == [{"id": 1, "name": "Ann", "email": None, "phone": None}]
        assert response.headers["content-range"] == "*/1"
        assert response.headers["x-affected-count"] == "1"

    def test_return_minimal(self, client, fake_db):
        fake_db.queue(contact_rows((1, "Ann", None, None)))
        response = client.post("/public/contacts", json={"name": "Ann"}, headers={"Prefer": "return=minimal"})
        assert response.status_code == 201
        assert response.content == b""
        assert response.headers["x-affected-count"] == "1"

    def test_empty_batch(self, client):
        response = client.post("/public/contacts", json=[])
        assert response.status_code == 400
        assert response.json()["message"] == "Empty array provided"

    def test_invalid_json(self, client):
        response = client.post("/public/contacts", content="[{")
        assert response.status_code == 400

    def test_upsert_default_to_null(self, client, fake_db):
        client.post(
            "/public/contacts",
            json={"id": 1, "name": "Ann"},
            headers={"Prefer": "resolution=merge-duplicates,missing=default"},
        )
        assert 'DO UPDATE SET "name" = EXCLUDED."name", "email" = NULL, "phone" = NULL' in fake_db.last_sql

    def test_upsert_on_conflict_columns(self, client, fake_db):
        client.post(
            "/public/memberships?on_conflict=tenant_id,%20user_id",
            json={"tenant_id": 1, "user_id": 2, "role": "admin"},
        )
        assert 'ON CONFLICT ("tenant_id", "user_id")' in fake_db.last_sql

    def test_upsert_without_primary_key(self, client):
        response = client.post(
            "/public/memberships",
            json={"role": "admin"},
            headers={"Prefer": "resolution=merge-duplicates"},
        )
        assert response.status_code == 400
        assert "no primary key or unique constraint" in response.json()["message"]

    def test_database_error(self, client, fake_db):
        fake_db.error = IntegrityError("INSERT", {}, Exception("duplicate key"))
        response = client.post("/public/contacts", json={"name": "Ann"})
        assert response.status_code == 500
        assert response.json()["message"] == "Query execution failed"
        assert "duplicate key" in response.json()["detail"]


class TestBatchUpdateDelete:
    def test_patch_requires_filter(self, client):
        response = client.patch("/public/contacts", json={"name": "Ann"})
        assert response.status_code == 400
        assert response.json()["message"] == "Batch update requires at least one filter"

    def test_patch_minimal(self, client, fake_db):
        fake_db.queue(contact_rows((1, "Ann", None, None), (2, "Ann", None, None)))
        response = client.patch(
            "/public/contacts?email=is.null",
            json={"name": "Ann"},
            headers={"Prefer": "return=minimal"},
        )
        assert response.status_code == 204
        assert response.headers["x-affected-count"] == "2"

    def test_delete_requires_filter(self, client):
        response = client.delete("/public/contacts")
        assert response.status_code == 400
        assert response.json()["message"] == "Batch delete requires at least one filter"

    def test_delete(self, client, fake_db):
        fake_db.queue(contact_rows((3, "Cid", None, None)))
        response = client.delete("/public/contacts?id=in.(3,4)")
        assert response.status_code == 200
        assert response.headers["content-range"] == "*/1"
        assert fake_db.last_sql.startswith('DELETE FROM "public"."contacts" WHERE "id" IN (:p1, :p2)')


class TestById:
    def test_get(self, client, fake_db):
        fake_db.queue(contact_rows((5, "Ann", None, None)))
        response = client.get("/public/contacts/5")
        assert response.status_code == 200
        assert response.json()["name"] == "Ann"

    def test_get_applies_query_filters(self, client, fake_db):
        response = client.get("/public/contacts/5?name=eq.Bob")
        assert response.status_code == 404
        sql, params = fake_db.executed[0]
        assert sql.endswith('WHERE "id" = :p1 AND "name" = :p2')
        assert params == {"p1": "5", "p2": "Bob"}

    def test_get_not_found(self, client):
        response = client.get("/public/contacts/5")
        assert response.status_code == 404
        assert response.json()["error"] is True

    @pytest.mark.parametrize("method", ["patch", "put"])
    def test_update(self, client, fake_db, method):
        fake_db.queue(contact_rows((5, "Ann", "a@x.com", None)))
        response = getattr(client, method)("/public/contacts/5", json={"email": "a@x.com"})
        assert response.status_code == 200
        assert response.json()["email"] == "a@x.com"
        assert response.headers["x-affected-count"] == "1"

    def test_update_not_found(self, client):
        response = client.patch("/public/contacts/5", json={"email": "a@x.com"})
        assert response.status_code == 404

    def test_delete_minimal(self, client, fake_db):
        fake_db.queue(contact_rows((5, "Ann", None, None)))
        response = client.delete("/public/contacts/5", headers={"Prefer": "return=minimal"})
        assert response.status_code == 204

    def test_no_by_id_routes_without_single_primary_key(self, client):
        assert client.get("/public/memberships/1").status_code == 404


class TestKeysetPagination:
    def test_cursor_page_and_next_cursor(self, client, fake_db):
        fake_db.queue(contact_rows((11, "Kim", None, None), (12, "Lee", None, None)))
        response = client.get("/public/contacts", params={"cursor": encode_cursor("id", 10), "limit": 2})
        assert response.status_code == 200
        sql, params = fake_db.executed[0]
        assert sql == 'SELECT * FROM "public"."contacts" WHERE "id" > :p1 ORDER BY "id" ASC LIMIT :p2 OFFSET :p3'
        assert params == {"p1": 10, "p2": 2, "p3": 0}
        cursor = decode_cursor(response.headers["x-next-cursor"])
        assert (cursor.column, cursor.value, cursor.desc) == ("id", 12, False)

    def test_short_page_has_no_next_cursor(self, client, fake_db):
        fake_db.queue(contact_rows((11, "Kim", None, None)))
        response = client.get("/public/contacts", params={"cursor_column": "id", "limit": 2})
        assert response.status_code == 200
        assert "x-next-cursor" not in response.headers

    def test_descending_order_walks_backwards(self, client, fake_db):
        client.get("/public/contacts", params={"cursor": encode_cursor("id", 10), "order": "id.desc"})
        assert 'WHERE "id" < :p1 ORDER BY "id" DESC' in fake_db.last_sql

    @pytest.mark.parametrize(
        "params, message",
        [
            ({"cursor": "not-valid-base64!!!"}, "invalid cursor encoding"),
            ({"cursor": "bm90LWpzb24="}, "invalid cursor format"),
            ({"cursor_column": "invalid-column-name"}, "invalid cursor_column"),
            ({"cursor": encode_cursor("nope", 1)}, "Unknown column: nope"),
        ],
    )
    def test_bad_cursor(self, client, fake_db, params, message):
        response = client.get("/public/contacts", params=params)
        assert response.status_code == 400
        assert message in response.json()["message"]
        assert fake_db.executed == []


class TestJsonPaths:
    def test_filter_on_json_path(self, client, fake_db):
        client.get("/public/users", params={"profile->>theme": "eq.dark"})
        sql, params = fake_db.executed[0]
        assert "WHERE \"profile\"->>'theme' = :p1" in sql
        assert params["p1"] == "dark"

    def test_path_into_non_json_column(self, client, fake_db):
        response = client.get("/public/contacts", params={"name->>first": "eq.Ann"})
        assert response.status_code == 400
        assert response.json()["message"] == "Column is not JSON: name"
        assert fake_db.executed == []
