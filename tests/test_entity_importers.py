from datetime import datetime, timezone

import pytest

from Rehome import models, repos
from Rehome.dataset import ExistingUser
from Rehome.db import ImportTransaction
from Rehome.entity_importers import (
    CREATED,
    EXISTING,
    FAILED,
    SKIPPED,
    TOLERATED,
    UPDATED,
    import_apps,
    import_posts,
    import_settings,
    import_subscribers,
    import_tags,
    import_users,
    is_blank,
    strip_properties,
)
from Rehome.metrics import get_counter


async def _tx(db) -> ImportTransaction:
    owner = await repos.seed_instance(
        db, owner_name="The Owner", owner_email="owner@x.com", owner_password="x" * 50
    )
    return ImportTransaction(session=db, actor_id=owner.id)


def test_strip_properties_copies_rows():
    rows = [{"id": 1, "name": "news", "meta": {"a": 1}}]
    out = strip_properties(["id"], rows)
    out[0]["meta"]["a"] = 2
    assert out == [{"name": "news", "meta": {"a": 2}}]
    assert rows[0] == {"id": 1, "name": "news", "meta": {"a": 1}}


def test_blank_rows_have_every_identifying_field_empty():
    assert is_blank("post", {"title": "", "slug": None, "markdown": ""})
    assert not is_blank("post", {"title": "Draft", "slug": "draft", "markdown": ""})
    assert not is_blank("tag", {"name": "news", "slug": ""})
    assert is_blank("tag", {"description": "no name, no slug"})
    assert not is_blank("widget", {})


@pytest.mark.asyncio
async def test_empty_input_yields_no_outcomes(db):
    tx = await _tx(db)
    assert await import_tags(None, tx) == []
    assert await import_posts([], tx) == []
    assert await import_users([], {}, tx) == []


@pytest.mark.asyncio
async def test_tags_are_created_once(db):
    tx = await _tx(db)
    rows = [
        {"id": 1, "name": "news", "slug": "news"},
        {"id": 2, "name": "tech", "slug": "tech"},
    ]
    first = await import_tags(rows, tx)
    assert [o.status for o in first] == [CREATED, CREATED]
    assert [o.value.name for o in first] == ["news", "tech"]
    assert all(o.value.created_by == tx.actor_id for o in first)

    again = await import_tags(rows, tx)
    assert [o.status for o in again] == [EXISTING, EXISTING]
    assert await repos.count(db, "tag") == 2
    # Caller rows keep their source ids
    assert rows[0]["id"] == 1


@pytest.mark.asyncio
async def test_blank_rows_are_skipped(db):
    tx = await _tx(db)
    out = await import_tags(
        [{"id": 1, "name": "", "slug": None}, {"name": "news", "slug": "news"}], tx
    )
    assert [o.status for o in out] == [SKIPPED, CREATED]
    assert get_counter("importer.tag.skipped") == 1
    assert await repos.count(db, "tag") == 1


@pytest.mark.asyncio
async def test_partially_filled_rows_still_import(db):
    tx = await _tx(db)
    tags = await import_tags([{"id": 1, "name": "Big News", "slug": ""}], tx)
    posts = await import_posts([{"id": 2, "title": "Draft", "slug": "draft", "markdown": ""}], tx)
    untitled = await import_posts([{"id": 3, "title": "No Slug", "markdown": "body"}], tx)

    assert [o.status for o in tags + posts + untitled] == [CREATED, CREATED, CREATED]
    assert tags[0].value.slug == "big-news"
    assert posts[0].value.markdown == ""
    assert untitled[0].value.slug == "no-slug"
    assert await repos.count(db, "post") == 2


@pytest.mark.asyncio
async def test_posts_keep_exported_timestamps(db):
    tx = await _tx(db)
    out = await import_posts(
        [
            {
                "id": 10,
                "title": "Hello",
                "slug": "hello",
                "markdown": "hi",
                "created_at": 1483228800000,
                "published_at": 1483315200000,
                "author_id": tx.actor_id,
            },
            {"id": 11, "title": "Undated", "slug": "undated", "markdown": "hi", "created_at": None},
        ],
        tx,
    )
    assert [o.status for o in out] == [CREATED, CREATED]
    hello, undated = (o.value for o in out)
    assert hello.created_at == datetime(2017, 1, 1, tzinfo=timezone.utc)
    assert hello.updated_at == hello.created_at
    assert hello.published_at == datetime(2017, 1, 2, tzinfo=timezone.utc)
    assert undated.created_at is not None


@pytest.mark.asyncio
async def test_new_users_are_locked_with_a_fresh_credential(db):
    tx = await _tx(db)
    roles = {r["name"]: r["id"] for r in await repos.list_roles(db)}
    existing = {"owner@x.com": ExistingUser(real_id=tx.actor_id)}
    rows = [
        {"id": 1, "name": "Old Owner", "slug": "old-owner", "email": "owner@x.com"},
        {
            "id": 2,
            "name": "Writer",
            "slug": "writer",
            "email": "w@x.com",
            "password": "secret",
            "status": "active",
            "roles": [roles["Author"]],
        },
    ]
    out = await import_users(rows, existing, tx, credential_length=64)

    assert [o.status for o in out] == [EXISTING, CREATED]
    assert out[0].value.real_id == tx.actor_id
    writer = out[1].value
    assert writer.status == "locked"
    assert len(writer.password) == 64
    assert writer.password != "secret"
    assert await repos.role_ids_for_user(db, writer.id) == [roles["Author"]]
    assert await repos.count(db, "user") == 2


@pytest.mark.asyncio
async def test_settings_update_by_key_and_never_touch_core(db, monkeypatch):
    tx = await _tx(db)
    db.add_all(
        [
            models.Setting(key="title", value="Old", type="blog"),
            models.Setting(key="db_hash", value="h", type="core"),
            models.Setting(key="active_apps", value="[]", type="app"),
        ]
    )
    await db.flush()

    edited_keys: list[str] = []
    real_edit = repos.edit

    async def _spy(s, kind, rows, **kw):
        edited_keys.extend(r["key"] for r in rows)
        return await real_edit(s, kind, rows, **kw)

    monkeypatch.setattr(repos, "edit", _spy)

    out = await import_settings(
        [
            {"id": 1, "key": "title", "value": "New", "type": "blog"},
            {"id": 2, "key": "db_hash", "value": "x", "type": "core"},
            {"id": 3, "key": "missing", "value": "v", "type": "blog"},
            {"id": 4, "key": "activePlugins", "value": '["a"]', "type": "app"},
            {"id": 5, "key": "active_theme", "value": "casper", "type": "theme"},
        ],
        tx,
    )

    assert [o.status for o in out] == [UPDATED, SKIPPED, TOLERATED, UPDATED, SKIPPED]
    assert "db_hash" not in edited_keys
    assert "active_theme" not in edited_keys
    assert (await repos.find_one(db, "setting", key="title")).value == "New"
    assert (await repos.find_one(db, "setting", key="db_hash")).value == "h"
    assert (await repos.find_one(db, "setting", key="active_apps")).value == '["a"]'
    assert await repos.find_one(db, "setting", key="missing") is None


@pytest.mark.asyncio
async def test_duplicate_subscribers_are_tolerated(db):
    tx = await _tx(db)
    out = await import_subscribers(
        [{"id": 1, "email": "s@x.com"}, {"id": 2, "email": "s@x.com"}, {"id": 3, "email": "t@x.com"}],
        tx,
    )
    assert sorted(o.status for o in out) == [CREATED, CREATED, TOLERATED]
    assert all(o.ok for o in out)
    assert await repos.count(db, "subscriber") == 2


@pytest.mark.asyncio
async def test_apps_are_deduplicated_by_name(db):
    tx = await _tx(db)
    out = await import_apps([{"id": 1, "name": "Ghost Backup"}, {"id": 2, "name": "Ghost Backup"}], tx)
    assert [o.status for o in out] == [CREATED, EXISTING]
    assert out[0].value.slug == "ghost-backup"
    assert await repos.count(db, "app") == 1


@pytest.mark.asyncio
async def test_a_failing_row_does_not_stop_its_siblings(db, monkeypatch):
    tx = await _tx(db)
    real_add = repos.add

    async def _flaky(s, kind, row, **kw):
        if row.get("slug") == "bad":
            await real_add(s, kind, row, **kw)
            raise RuntimeError("storage exploded")
        return await real_add(s, kind, row, **kw)

    monkeypatch.setattr(repos, "add", _flaky)

    out = await import_tags(
        [
            {"name": "good", "slug": "good"},
            {"name": "bad", "slug": "bad"},
            {"name": "fine", "slug": "fine"},
        ],
        tx,
    )

    assert [o.status for o in out] == [CREATED, FAILED, CREATED]
    failure = out[1].failure
    assert failure is not None
    assert failure.entity_kind == "tag"
    assert isinstance(failure.raw_error, RuntimeError)
    assert failure.row_data == {"name": "bad", "slug": "bad"}
    assert get_counter("importer.tag.failed") == 1
    # The failed row's savepoint was rolled back
    assert await repos.find_one(db, "tag", name="bad") is None
    assert await repos.count(db, "tag") == 2


@pytest.mark.asyncio
async def test_user_rows_never_carry_credentials(db, monkeypatch):
    tx = await _tx(db)
    inserted: list[dict] = []
    real_add = repos.add

    async def _failing_add(s, kind, row, **kw):
        inserted.append(row)
        if row.get("slug") == "broken":
            raise RuntimeError("insert failed")
        return await real_add(s, kind, row, **kw)

    monkeypatch.setattr(repos, "add", _failing_add)

    out = await import_users(
        [
            {"id": 2, "name": "Writer", "slug": "writer", "email": "w@x.com", "password": "$2a$hash"},
            {"id": 3, "name": "Broken", "slug": "broken", "email": "b@x.com", "password": "$2a$hash"},
        ],
        {},
        tx,
    )

    assert [o.status for o in out] == [CREATED, FAILED]
    assert all("password" not in o.row_data for o in out)
    assert "password" not in out[1].failure.row_data
    # The insert itself still gets a fresh credential
    assert all(len(row["password"]) == 50 and row["password"] != "$2a$hash" for row in inserted)
    assert all(row["status"] == "locked" for row in inserted)
