from __future__ import annotations

import logging

import pytest

from clinic_orm.errors import QueryError
from clinic_orm.orm.query_builder import QueryBuilder, execute_raw
from clinic_orm.orm.transaction import TxOptions, run_in_transaction

TOTAL_ROWS = 25
PER_PAGE = 10


def test_select_where_or_where_order_limit() -> None:
    sql, values = (
        QueryBuilder("users")
        .select("id", "email")
        .where("status", "=", "active")
        .or_where("role_id", "=", 1)
        .order_by("created_at", "desc")
        .limit(20)
        .to_sql()
    )

    assert sql == (
        "SELECT id, email FROM users WHERE status = %s OR role_id = %s "
        "ORDER BY created_at DESC LIMIT 20"
    )
    assert values == ["active", 1]


def test_default_select_is_star_without_clauses() -> None:
    sql, values = QueryBuilder("roles").to_sql()

    assert sql == "SELECT * FROM roles"
    assert values == []


def test_first_condition_renders_where_even_for_or() -> None:
    sql, _ = QueryBuilder("users").or_where("id", "=", 1).where("id", "<", 9).to_sql()

    assert sql == "SELECT * FROM users WHERE id = %s AND id < %s"


def test_where_in_and_null_predicates() -> None:
    sql, values = (
        QueryBuilder("users")
        .where_in("id", [3, 4, 5])
        .where_not_in("status", ["locked"])
        .where_null("deleted_at")
        .where_not_null("email")
        .to_sql()
    )

    assert sql == (
        "SELECT * FROM users WHERE id IN (%s, %s, %s) AND status NOT IN (%s) "
        "AND deleted_at IS NULL AND email IS NOT NULL"
    )
    assert values == [3, 4, 5, "locked"]


def test_empty_in_lists_render_constant_predicates() -> None:
    sql, values = QueryBuilder("users").where_in("id", []).to_sql()
    assert sql == "SELECT * FROM users WHERE 1 = 0"
    assert values == []

    sql, values = QueryBuilder("users").where_not_in("id", []).to_sql()
    assert sql == "SELECT * FROM users WHERE 1 = 1"
    assert values == []


def test_where_raw_appends_bindings_in_order() -> None:
    sql, values = (
        QueryBuilder("users")
        .where("status", "=", "active")
        .where_raw("(email ILIKE %s OR first_name ILIKE %s)", ["%ann%", "%ann%"])
        .where_raw("role_id > %s", [2], connector="OR")
        .to_sql()
    )

    assert sql == (
        "SELECT * FROM users WHERE status = %s AND (email ILIKE %s OR first_name ILIKE %s) "
        "OR role_id > %s"
    )
    assert values == ["active", "%ann%", "%ann%", 2]


def test_joins_in_declaration_order() -> None:
    sql, _ = (
        QueryBuilder("users")
        .select("users.*", "roles.name")
        .join("roles", "users.role_id", "=", "roles.id")
        .left_join("role_permissions", "roles.id", "=", "role_permissions.role_id")
        .right_join("permissions", "permissions.id", "=", "role_permissions.permission_id")
        .to_sql()
    )

    assert sql == (
        "SELECT users.*, roles.name FROM users"
        " INNER JOIN roles ON users.role_id = roles.id"
        " LEFT JOIN role_permissions ON roles.id = role_permissions.role_id"
        " RIGHT JOIN permissions ON permissions.id = role_permissions.permission_id"
    )


def test_having_bindings_follow_where_bindings() -> None:
    sql, values = (
        QueryBuilder("users")
        .select("role_id", "COUNT(*) AS total")
        .having("COUNT(*)", ">", 2)
        .where("status", "=", "active")
        .group_by("role_id")
        .to_sql()
    )

    assert sql == (
        "SELECT role_id, COUNT(*) AS total FROM users WHERE status = %s "
        "GROUP BY role_id HAVING COUNT(*) > %s"
    )
    assert values == ["active", 2]


def test_distinct_offset_and_locks() -> None:
    builder = QueryBuilder("users").select("role_id").distinct().limit(5).offset(10)

    sql, _ = builder.lock_for_update().to_sql()
    assert sql == "SELECT DISTINCT role_id FROM users LIMIT 5 OFFSET 10 FOR UPDATE"

    sql, _ = builder.shared_lock().to_sql()
    assert sql.endswith("OFFSET 10 FOR SHARE")


def test_invalid_operator_and_direction_are_rejected() -> None:
    with pytest.raises(QueryError, match="operator"):
        QueryBuilder("users").where("id", "=; DROP TABLE users", 1)

    with pytest.raises(QueryError, match="direction"):
        QueryBuilder("users").order_by("id", "sideways")


def test_dump_logs_statement_and_returns_builder(caplog) -> None:
    builder = QueryBuilder("users").where("id", "=", 3)

    with caplog.at_level(logging.DEBUG, logger="clinic_orm.orm.query_builder"):
        assert builder.dump() is builder

    [record] = [r for r in caplog.records if r.getMessage() == "query dump"]
    assert record.sql == "SELECT * FROM users WHERE id = %s"
    assert record.params == [3]


def test_operator_is_case_insensitive() -> None:
    sql, _ = QueryBuilder("users").where("email", "ilike", "%@clinic.test").to_sql()

    assert sql == "SELECT * FROM users WHERE email ILIKE %s"


@pytest.mark.asyncio
async def test_count_drops_paging_and_restores_select(provider, pool) -> None:
    pool.responder = lambda sql, params: [{"aggregate": 7}]
    builder = (
        QueryBuilder("users", provider=provider)
        .select("id", "email")
        .where("status", "=", "active")
        .order_by("id")
        .limit(5)
        .offset(5)
        .lock_for_update()
    )

    assert await builder.count() == 7
    assert pool.connections[0].statements == [
        ("SELECT COUNT(*) AS aggregate FROM users WHERE status = %s", ("active",))
    ]
    assert builder.columns == ["id", "email"]
    assert builder.to_sql()[0].startswith("SELECT id, email FROM users")


@pytest.mark.asyncio
async def test_aggregates_default_to_zero_on_null(provider, pool) -> None:
    pool.responder = lambda sql, params: [{"aggregate": None}]
    builder = QueryBuilder("login_attempts", provider=provider)

    assert await builder.sum("id") == 0
    assert await builder.max("created_at") == 0
    assert pool.connections[0].sql == [
        "SELECT SUM(id) AS aggregate FROM login_attempts",
        "SELECT MAX(created_at) AS aggregate FROM login_attempts",
    ]


@pytest.mark.asyncio
async def test_distinct_aggregate_applies_to_column(provider, pool) -> None:
    pool.responder = lambda sql, params: [{"aggregate": 2}]

    assert await QueryBuilder("users", provider=provider).distinct().count("role_id") == 2
    assert pool.connections[0].sql == [
        "SELECT COUNT(DISTINCT role_id) AS aggregate FROM users"
    ]


@pytest.mark.asyncio
async def test_paginate_counts_then_fetches_page(provider, pool) -> None:
    def responder(sql, params):
        if "COUNT(*)" in sql:
            return [{"aggregate": TOTAL_ROWS}]
        return [{"id": i} for i in range(21, 26)]

    pool.responder = responder
    result = await QueryBuilder("roles", provider=provider).order_by("id").paginate(3, PER_PAGE)

    assert result["meta"] == {
        "total": TOTAL_ROWS,
        "per_page": PER_PAGE,
        "current_page": 3,
        "last_page": 3,
    }
    assert [row["id"] for row in result["data"]] == [21, 22, 23, 24, 25]
    assert pool.connections[0].sql[-1] == "SELECT * FROM roles ORDER BY id ASC LIMIT 10 OFFSET 20"


@pytest.mark.asyncio
async def test_paginate_distinct_counts_distinct_rows(provider, pool) -> None:
    def responder(sql, params):
        if "AS sub" in sql:
            return [{"aggregate": 3}]
        return [{"role_id": 1}, {"role_id": 2}]

    pool.responder = responder
    builder = QueryBuilder("users", provider=provider).select("role_id").distinct()
    result = await builder.paginate(1, 2)

    assert result["meta"] == {"total": 3, "per_page": 2, "current_page": 1, "last_page": 2}
    assert pool.connections[0].sql == [
        "SELECT COUNT(*) AS aggregate FROM (SELECT DISTINCT role_id FROM users) AS sub",
        "SELECT DISTINCT role_id FROM users LIMIT 2 OFFSET 0",
    ]


@pytest.mark.asyncio
async def test_paginate_grouped_counts_groups(provider, pool) -> None:
    def responder(sql, params):
        if "AS sub" in sql:
            return [{"aggregate": 3}]
        return [{"role_id": 1, "total": 10}]

    pool.responder = responder
    builder = (
        QueryBuilder("users", provider=provider)
        .select("role_id", "COUNT(*) AS total")
        .where("status", "=", "active")
        .group_by("role_id")
        .having("COUNT(*)", ">", 1)
        .order_by("role_id")
    )
    result = await builder.paginate(1, 1)

    assert result["meta"]["total"] == 3
    assert result["meta"]["last_page"] == 3
    assert pool.connections[0].statements[0] == (
        "SELECT COUNT(*) AS aggregate FROM (SELECT role_id, COUNT(*) AS total FROM users "
        "WHERE status = %s GROUP BY role_id HAVING COUNT(*) > %s) AS sub",
        ("active", 1),
    )
    assert builder.columns == ["role_id", "COUNT(*) AS total"]


@pytest.mark.asyncio
async def test_paginate_validates_arguments(provider) -> None:
    builder = QueryBuilder("roles", provider=provider)

    with pytest.raises(QueryError):
        await builder.paginate(0, 10)
    with pytest.raises(QueryError):
        await builder.paginate(1, -1)


@pytest.mark.asyncio
async def test_paginate_zero_page_size_has_no_last_page(provider, pool) -> None:
    pool.responder = lambda sql, params: [{"aggregate": 4}] if "COUNT" in sql else []

    result = await QueryBuilder("roles", provider=provider).paginate(1, 0)

    assert result["meta"]["last_page"] == 0
    assert result["data"] == []


@pytest.mark.asyncio
async def test_first_returns_single_row_or_none(provider, pool) -> None:
    pool.responder = lambda sql, params: [{"id": 4}]
    assert await QueryBuilder("users", provider=provider).where("id", "=", 4).first() == {"id": 4}
    assert pool.connections[0].sql[-1] == "SELECT * FROM users WHERE id = %s LIMIT 1"

    pool.responder = lambda sql, params: []
    assert await QueryBuilder("users", provider=provider).first() is None


@pytest.mark.asyncio
async def test_insert_returns_generated_id(provider, pool) -> None:
    pool.responder = lambda sql, params: [{"id": 42}]

    record_id = await QueryBuilder("roles", provider=provider).insert(
        {"name": "dentist", "is_system_role": False}
    )

    assert record_id == 42
    assert pool.connections[0].statements == [
        (
            "INSERT INTO roles (name, is_system_role) VALUES (%s, %s) RETURNING id",
            ("dentist", False),
        )
    ]


@pytest.mark.asyncio
async def test_insert_without_columns_or_returning(provider, pool) -> None:
    builder = QueryBuilder("audit_logs", provider=provider)

    assert await builder.insert({}, returning=None) is None
    assert pool.connections[0].sql == ["INSERT INTO audit_logs DEFAULT VALUES"]


@pytest.mark.asyncio
async def test_insert_many_builds_one_statement(provider, pool) -> None:
    pool.responder = lambda sql, params: 2
    rows = [{"role_id": 1, "permission_id": 5}, {"permission_id": 6, "role_id": 1}]

    assert await QueryBuilder("role_permissions", provider=provider).insert_many(rows) == 2
    assert pool.connections[0].statements == [
        (
            "INSERT INTO role_permissions (role_id, permission_id) VALUES (%s, %s), (%s, %s)",
            (1, 5, 1, 6),
        )
    ]


@pytest.mark.asyncio
async def test_insert_many_rejects_mismatched_rows(provider, pool) -> None:
    builder = QueryBuilder("role_permissions", provider=provider)

    assert await builder.insert_many([]) == 0
    with pytest.raises(QueryError, match="Row 1"):
        await builder.insert_many([{"role_id": 1, "permission_id": 2}, {"role_id": 1}])
    assert pool.connections == []


@pytest.mark.asyncio
async def test_update_binds_set_values_before_where(provider, pool) -> None:
    pool.responder = lambda sql, params: 3

    affected = await (
        QueryBuilder("users", provider=provider)
        .where("role_id", "=", 2)
        .where_null("deleted_at")
        .update({"status": "inactive", "email_verified": False})
    )

    assert affected == 3
    assert pool.connections[0].statements == [
        (
            "UPDATE users SET status = %s, email_verified = %s "
            "WHERE role_id = %s AND deleted_at IS NULL",
            ("inactive", False, 2),
        )
    ]


@pytest.mark.asyncio
async def test_update_requires_data(provider) -> None:
    with pytest.raises(QueryError, match="Nothing to update"):
        await QueryBuilder("users", provider=provider).where("id", "=", 1).update({})


@pytest.mark.asyncio
async def test_delete_returns_rowcount(provider, pool) -> None:
    pool.responder = lambda sql, params: 4

    assert await QueryBuilder("role_permissions", provider=provider).where(
        "role_id", "=", 9
    ).delete() == 4
    assert pool.connections[0].sql == ["DELETE FROM role_permissions WHERE role_id = %s"]


@pytest.mark.asyncio
async def test_bound_connection_wins_over_ambient_transaction(
    provider, pool, make_connection
) -> None:
    bound = make_connection(lambda sql, params: [])

    async def work() -> None:
        await QueryBuilder("users", bound).get()
        await QueryBuilder("roles", provider=provider).get()

    await run_in_transaction(work, TxOptions(backoff_seconds=0), provider=provider)

    assert bound.sql == ["SELECT * FROM users"]
    assert pool.connections[0].sql == ["BEGIN", "SELECT * FROM roles", "COMMIT"]


@pytest.mark.asyncio
async def test_execute_raw_falls_back_to_pool(provider, pool) -> None:
    pool.responder = lambda sql, params: [{"now": 1}]

    result = await execute_raw("SELECT 1 AS now", provider=provider)

    assert result.rows == [{"now": 1}]
    assert provider.checked_out == 0
    assert pool.in_use == 0
