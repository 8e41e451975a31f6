from concurrent.futures import ThreadPoolExecutor

import pytest
import requests

from nutrimigrate.services.asset_migrator import AssetMigrator, content_type_for

from conftest import FakeResponse, FakeSession

SOURCE = "http://files.parse.test/app/abc_photo.jpg"


def ok_session(content=b"\xff\xd8jpeg"):
    return FakeSession(lambda url, params: FakeResponse(200, content=content))


@pytest.mark.parametrize("name, content_type", [
    ("foodlog_1.jpg", "image/jpeg"),
    ("foodlog_1.JPEG", "image/jpeg"),
    ("foodlog_1.png", "image/png"),
    ("foodlog_1.heic", "image/heic"),
    ("foodlog_1.webp", "image/webp"),
    ("foodlog_1.gif", "image/jpeg"),
    ("foodlog_1", "image/jpeg"),
])
def test_content_type_for(name, content_type):
    assert content_type_for(name) == content_type


def test_migrate_uploads_and_returns_public_url(store):
    session = ok_session()
    migrator = AssetMigrator(store, bucket="food-photos", timeout=5, session=session)

    result = migrator.migrate(SOURCE, "foodlog_l1_1.png")

    assert result.migrated
    assert not result.degraded
    assert result.url == f"{store.PUBLIC_BASE}/food-photos/foodlog_l1_1.png"
    assert store.objects["food-photos/foodlog_l1_1.png"] == {"body": b"\xff\xd8jpeg", "content_type": "image/png"}
    assert session.calls[0]["url"] == SOURCE
    assert session.calls[0]["timeout"] == 5


def test_migrate_appends_extension(store):
    migrator = AssetMigrator(store, session=ok_session())

    result = migrator.migrate(SOURCE, "foodlog_l1")

    assert result.url.endswith("/food-photos/foodlog_l1.jpg")


def test_migrate_keeps_legacy_url_on_http_error(store):
    session = FakeSession(lambda url, params: FakeResponse(503))
    migrator = AssetMigrator(store, session=session)

    result = migrator.migrate(SOURCE, "foodlog_l1.jpg")

    assert result.degraded
    assert result.url == SOURCE
    assert "503" in result.error
    assert store.objects == {}


def test_migrate_keeps_legacy_url_when_host_unreachable(store):
    def refuse(url, params):
        raise requests.ConnectionError("connection refused")

    result = AssetMigrator(store, session=FakeSession(refuse)).migrate(SOURCE, "foodlog_l1.jpg")

    assert result.degraded
    assert result.url == SOURCE


def test_migrate_keeps_legacy_url_on_upload_failure(store):
    store.fail_upload = True

    result = AssetMigrator(store, session=ok_session()).migrate(SOURCE, "foodlog_l1.jpg")

    assert result.degraded
    assert result.url == SOURCE
    assert "storage unavailable" in result.error


def test_dry_run_skips_transfer(store):
    session = ok_session()

    result = AssetMigrator(store, dry_run=True, session=session).migrate(SOURCE, "foodlog_l1.jpg")

    assert result.skipped
    assert not result.degraded
    assert result.url == SOURCE
    assert session.calls == []


def test_each_worker_thread_gets_its_own_session(store):
    migrator = AssetMigrator(store)

    main_session = migrator.session
    with ThreadPoolExecutor(max_workers=1) as executor:
        worker_session = executor.submit(lambda: migrator.session).result()

    assert isinstance(main_session, requests.Session)
    assert migrator.session is main_session
    assert worker_session is not main_session


def test_injected_session_is_shared(store):
    session = ok_session()
    migrator = AssetMigrator(store, session=session)

    with ThreadPoolExecutor(max_workers=1) as executor:
        assert executor.submit(lambda: migrator.session).result() is session
