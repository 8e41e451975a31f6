import itertools

import pytest

from nutrimigrate.loaders.batch_loader import BatchLoader
from nutrimigrate.loaders.user_loader import MIGRATED_MARKER, UserLoader
from nutrimigrate.models.migration import Stage
from nutrimigrate.models.record import TargetRecord
from nutrimigrate.orchestrator import MigrationOrchestrator

from conftest import FakeExtractor, make_user


def user_target(email, legacy_id="u1", verified=True):
    return TargetRecord(
        id=f"t-{legacy_id}",
        entity="User",
        data={"email": email, "username": email.split("@")[0], "email_verified": verified},
        legacy_id=legacy_id,
    )


def food_targets(count):
    ids = itertools.count(1)
    targets = []
    for n in range(count):
        target_id = f"food-{next(ids)}"
        targets.append(TargetRecord(
            id=target_id,
            entity="Food",
            data={"id": target_id, "name": f"Food {n}"},
            legacy_id=f"f{n}",
        ))
    return targets


class TestUserLoader:

    def test_creates_new_identity(self, store):
        result = UserLoader(store).upsert(user_target("alice@example.com"))

        assert result.created
        assert result.warning is None
        identity = store.identities[0]
        assert identity["id"] == result.target_id
        assert identity["email_confirm"] is True
        assert identity["user_metadata"] == {
            "username": "alice",
            MIGRATED_MARKER: True,
            "parse_object_id": "u1",
        }

    def test_upsert_is_idempotent(self, store):
        first = UserLoader(store).upsert(user_target("alice@example.com"))
        second = UserLoader(store).upsert(user_target("Alice@Example.com"))

        assert not second.created
        assert second.target_id == first.target_id
        assert len(store.identities) == 1

    def test_same_loader_sees_identities_it_created(self, store):
        loader = UserLoader(store)
        first = loader.upsert(user_target("alice@example.com"))
        second = loader.upsert(user_target("alice@example.com"))

        assert second.target_id == first.target_id
        assert not second.created

    def test_existing_identity_gets_metadata_merged_once(self, store):
        identity_id = store.add_identity("alice@example.com", {"plan": "pro"})
        loader = UserLoader(store)

        loader.upsert(user_target("alice@example.com"))
        loader.upsert(user_target("alice@example.com"))

        assert store.metadata_updates == [identity_id]
        metadata = store.identities[0]["user_metadata"]
        assert metadata["plan"] == "pro"
        assert metadata[MIGRATED_MARKER] is True

    def test_already_marked_identity_is_left_alone(self, store):
        store.add_identity("alice@example.com", {MIGRATED_MARKER: True})

        result = UserLoader(store).upsert(user_target("alice@example.com"))

        assert not result.created
        assert store.metadata_updates == []

    def test_metadata_merge_failure_is_a_warning(self, store):
        identity_id = store.add_identity("alice@example.com")
        store.fail_metadata_update = True

        result = UserLoader(store).upsert(user_target("alice@example.com"))

        assert result.target_id == identity_id
        assert not result.created
        assert "metadata update failed" in result.warning

    def test_failed_listing_is_retried_before_next_upsert(self, store):
        bob_id = store.add_identity("bob@example.com")
        listing = store.list_identities
        calls = []

        def flaky_listing():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("auth admin unavailable")
            return listing()

        store.list_identities = flaky_listing
        loader = UserLoader(store)

        with pytest.raises(RuntimeError):
            loader.upsert(user_target("alice@example.com"))
        result = loader.upsert(user_target("bob@example.com", legacy_id="u2"))

        assert len(calls) == 2
        assert not result.created
        assert result.target_id == bob_id
        assert len(store.identities) == 1

    def test_users_stage_recovers_from_failed_listing(self, config, store):
        store.add_identity("bob@example.com")
        listing = store.list_identities
        calls = []

        def flaky_listing():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("auth admin unavailable")
            return listing()

        store.list_identities = flaky_listing
        extractor = FakeExtractor({"User": [
            make_user("u1", "alice@example.com"),
            make_user("u2", "bob@example.com"),
            make_user("u3", "carol@example.com"),
        ]})

        stats = MigrationOrchestrator(config, extractor=extractor, store=store).run([Stage.USERS])

        assert (stats.users.errors, stats.users.existing, stats.users.created) == (1, 1, 1)
        assert [i["email"] for i in store.identities] == ["bob@example.com", "carol@example.com"]

    def test_dry_run_creates_nothing(self, store):
        target = user_target("alice@example.com")

        result = UserLoader(store, dry_run=True).upsert(target)

        assert result.created
        assert result.target_id == target.id
        assert store.identities == []

    def test_create_failure_propagates(self, store):
        def reject(**kwargs):
            raise RuntimeError("signups disabled")

        store.create_identity = reject

        with pytest.raises(RuntimeError):
            UserLoader(store).upsert(user_target("alice@example.com"))


class TestBatchLoader:

    def test_writes_in_batches(self, store):
        result = BatchLoader(store, "foods", batch_size=2).write_batch(food_targets(5))

        assert store.insert_calls == [("foods", 2), ("foods", 2), ("foods", 1)]
        assert result.total_succeeded == 5
        assert result.total_failed == 0
        assert result.created_ids == [f"food-{n}" for n in range(1, 6)]
        assert [row["id"] for row in store.tables["foods"]] == result.created_ids

    def test_failed_batch_is_isolated(self, store):
        store.fail_insert = lambda table, rows: any(row["name"] == "Food 2" for row in rows)

        result = BatchLoader(store, "foods", batch_size=2).write_batch(food_targets(5))

        assert result.total_succeeded == 3
        assert result.total_failed == 2
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert failure.table == "foods"
        assert failure.legacy_ids == ["f2", "f3"]
        assert "food-3" not in result.created_ids
        assert len(store.tables["foods"]) == 3

    def test_parallel_workers_keep_batch_isolation(self, store):
        store.fail_insert = lambda table, rows: any(row["name"] == "Food 7" for row in rows)

        result = BatchLoader(store, "foods", batch_size=3, parallel_workers=4).write_batch(food_targets(10))

        assert len(store.insert_calls) == 4
        assert result.total_succeeded == 7
        assert result.total_failed == 3
        assert result.failures[0].legacy_ids == ["f6", "f7", "f8"]
        assert len(store.tables["foods"]) == 7
        assert len(result.created_ids) == 7

    def test_dry_run_skips_inserts(self, store):
        result = BatchLoader(store, "foods", dry_run=True, batch_size=2).write_batch(food_targets(3))

        assert result.total_succeeded == 3
        assert store.insert_calls == []

    def test_load_result_to_dict(self, store):
        store.fail_insert = lambda table, rows: True

        data = BatchLoader(store, "food_logs", batch_size=10).write_batch(food_targets(2)).to_dict()

        assert data["total_failed"] == 2
        assert data["success_rate"] == 0.0
        assert data["failures"][0]["legacy_ids"] == ["f0", "f1"]
        assert data["failures"][0]["batch_size"] == 2
