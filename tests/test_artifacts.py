"""Tests for the artifact store lifecycle and its invariants."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from sitegen_website.backend.errors import (
    AccessDeniedError,
    GeneratorSafetyBlocked,
    NotFoundError,
    ValidationError,
)


def assert_consistent(store, artifact_id):
    """Counters and the latest pointer agree with the persisted history."""
    artifact = store.load(artifact_id)
    history = store.versions.list_for_artifact(artifact_id)
    assert artifact.version_count == len(history)
    assert sum(1 for v in history if v.is_initial) == 1
    latest = store.versions.get(artifact.latest_version_id)
    assert latest.artifact_id == artifact_id


class TestCreate:

    def test_create_persists_artifact_and_initial_version(self, store, alice, generator):
        artifact, version = store.create(
            alice,
            {"display_name": "Studio", "tags": "art, design", "visibility": "public"},
            {"instruction": "A design studio portfolio", "content_type": "portfolio"},
        )

        assert artifact.owner_id == alice
        assert artifact.latest_version_id == version.id
        assert artifact.version_count == 1
        assert artifact.edit_count == 0
        assert artifact.tags == ["art", "design"]
        assert version.version_number == 1.0
        assert version.is_initial
        assert version.parent_version_id is None
        assert version.edit_instruction is None
        assert len(generator.calls) == 1
        assert_consistent(store, artifact.id)

    def test_defaults(self, store, alice):
        artifact, version = store.create(alice, None, {"instruction": "Something"})

        assert artifact.display_name == "New Website"
        assert artifact.visibility == "private"
        assert artifact.content_type == "general"
        assert version.content_type == "general"

    def test_unknown_owner_persists_nothing(self, store, generator):
        with pytest.raises(ValidationError):
            store.create("usr_nobody", {}, {"instruction": "A page"})

        with store.db.connection() as conn:
            assert conn.execute("SELECT COUNT(*) FROM artifacts").fetchone()[0] == 0
            assert conn.execute("SELECT COUNT(*) FROM versions").fetchone()[0] == 0
        assert generator.calls == []

    @pytest.mark.parametrize("instruction", ["", "   ", None])
    def test_empty_instruction_rejected(self, store, alice, instruction):
        with pytest.raises(ValidationError):
            store.create(alice, {}, {"instruction": instruction})

    def test_unknown_content_type_rejected(self, store, alice):
        with pytest.raises(ValidationError):
            store.create(alice, {}, {"instruction": "A page", "content_type": "spaceship"})

    def test_generation_failure_persists_nothing(self, store, alice, generator):
        generator.fail_with = GeneratorSafetyBlocked("blocked")

        with pytest.raises(GeneratorSafetyBlocked):
            store.create(alice, {"visibility": "public"}, {"instruction": "A page"})
        assert store.list(owner_id=alice, requester_id=alice) == []

    def test_identical_requests_share_generation(self, store, alice, generator, clock):
        request = {"instruction": "A coffee shop", "content_type": "landing"}
        store.create(alice, {}, request)
        store.create(alice, {}, request)
        assert len(generator.calls) == 1

        clock.advance(store.cache.ttl_seconds + 1)
        store.create(alice, {}, request)
        assert len(generator.calls) == 2


class TestEdit:

    def test_version_numbering_through_edits(self, store, make_site, alice):
        artifact, _ = make_site()

        _, v1 = store.edit(artifact.id, alice, "Make it blue")
        _, v2 = store.edit(artifact.id, alice, "Add a footer")
        updated, v3 = store.edit(artifact.id, alice, "Redesign", is_major_edit=True)

        assert [v1.version_number, v2.version_number, v3.version_number] == [1.1, 1.2, 2.0]
        assert v3.parent_version_id == v2.id
        assert v2.parent_version_id == v1.id
        assert updated.latest_version_id == v3.id
        assert updated.version_count == 4
        assert updated.edit_count == 3
        assert_consistent(store, artifact.id)

    def test_edit_keeps_original_instruction_and_sends_context(self, store, make_site, alice, generator):
        artifact, original = make_site(instruction="A bakery landing page")

        _, version = store.edit(artifact.id, alice, "Use a warmer palette")

        assert version.instruction == "A bakery landing page"
        assert version.edit_instruction == "Use a warmer palette"
        assert not version.is_initial
        combined, content_type = generator.calls[-1]
        assert "Use a warmer palette" in combined
        assert original.content in combined
        assert content_type == "landing"

    def test_old_versions_stay_retrievable(self, store, make_site, alice):
        artifact, original = make_site()
        store.edit(artifact.id, alice, "Change")

        assert store.versions.get(original.id).content == original.content

    def test_edit_missing_artifact(self, store, alice):
        with pytest.raises(NotFoundError):
            store.edit("site_missing", alice, "Change")

    def test_edit_by_non_owner(self, store, make_site, bob):
        artifact, _ = make_site()
        with pytest.raises(AccessDeniedError):
            store.edit(artifact.id, bob, "Change")

    def test_empty_edit_instruction(self, store, make_site, alice):
        artifact, _ = make_site()
        with pytest.raises(ValidationError):
            store.edit(artifact.id, alice, "  ")

    def test_failed_generation_leaves_history_alone(self, store, make_site, alice, generator):
        artifact, version = make_site()
        generator.fail_with = GeneratorSafetyBlocked("blocked")

        with pytest.raises(GeneratorSafetyBlocked):
            store.edit(artifact.id, alice, "Something odd")

        after = store.load(artifact.id)
        assert after.latest_version_id == version.id
        assert after.version_count == 1
        assert_consistent(store, artifact.id)

    def test_concurrent_edits_lose_no_versions(self, store, make_site, alice):
        artifact, _ = make_site()

        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(lambda n: store.edit(artifact.id, alice, f"Edit {n}"), range(12)))

        after = store.load(artifact.id)
        assert after.version_count == 13
        assert after.edit_count == 12
        assert after.latest_version_id in {version.id for _, version in results}
        assert_consistent(store, artifact.id)


class TestGet:

    def test_get_counts_views(self, store, make_site, bob):
        artifact, version = make_site()

        store.get(artifact.id, bob)
        view = store.get(artifact.id, None)

        assert view.artifact.view_count == 2
        assert view.latest_version.id == version.id
        assert view.to_dict()["latest_version"]["content"] == version.content

    def test_get_without_content(self, store, make_site):
        artifact, _ = make_site()

        data = store.get(artifact.id, include_content=False).to_dict()

        assert "content" not in data["latest_version"]

    def test_private_artifact_visible_to_owner_only(self, store, make_site, alice, bob):
        artifact, _ = make_site(visibility="private")

        assert store.get(artifact.id, alice).artifact.id == artifact.id
        with pytest.raises(AccessDeniedError):
            store.get(artifact.id, bob)
        with pytest.raises(AccessDeniedError):
            store.get(artifact.id, None)

    def test_private_denials_are_indistinguishable(self, store, make_site, alice, bob):
        first, _ = make_site(visibility="private", display_name="One")
        second, _ = make_site(visibility="private", display_name="Two")

        errors = []
        for artifact_id, requester in [(first.id, bob), (second.id, None)]:
            with pytest.raises(AccessDeniedError) as excinfo:
                store.get(artifact_id, requester)
            errors.append(excinfo.value)

        assert type(errors[0]) is type(errors[1])
        assert str(errors[0]) == str(errors[1])
        assert first.id not in str(errors[0])

    def test_denied_read_does_not_count_view(self, store, make_site, alice, bob):
        artifact, _ = make_site(visibility="private")
        with pytest.raises(AccessDeniedError):
            store.get(artifact.id, bob)
        assert store.load(artifact.id).view_count == 0

    def test_get_missing(self, store):
        with pytest.raises(NotFoundError):
            store.get("site_missing")

    def test_get_version_follows_visibility(self, store, make_site, alice, bob):
        artifact, version = make_site(visibility="private")

        assert store.get_version(version.id, alice).id == version.id
        with pytest.raises(AccessDeniedError):
            store.get_version(version.id, bob)


class TestUpdateMetadata:

    def test_updates_only_allowed_fields(self, store, make_site, alice):
        artifact, _ = make_site(visibility="private")

        updated = store.update_metadata(artifact.id, alice, {
            "display_name": "Renamed",
            "visibility": "public",
            "tags": ["food"],
            "thumbnail": "https://example.com/t.png",
            "owner_id": "usr_thief",
            "version_count": 99,
        })

        assert updated.display_name == "Renamed"
        assert updated.visibility == "public"
        assert updated.tags == ["food"]
        assert updated.thumbnail == "https://example.com/t.png"
        assert updated.owner_id == alice
        assert updated.version_count == 1
        assert updated.latest_version_id == artifact.latest_version_id

    def test_non_owner_cannot_update(self, store, make_site, bob):
        artifact, _ = make_site()
        with pytest.raises(AccessDeniedError):
            store.update_metadata(artifact.id, bob, {"display_name": "Mine now"})

    def test_bad_visibility(self, store, make_site, alice):
        artifact, _ = make_site()
        with pytest.raises(ValidationError):
            store.update_metadata(artifact.id, alice, {"visibility": "secret"})


class TestDelete:

    def test_delete_cascades_to_versions(self, store, make_site, alice):
        artifact, _ = make_site()
        for n in range(4):
            store.edit(artifact.id, alice, f"Edit {n}")
        assert len(store.versions.list_for_artifact(artifact.id)) == 5

        assert store.delete(artifact.id, alice)

        assert store.versions.list_for_artifact(artifact.id) == []
        with pytest.raises(NotFoundError):
            store.get(artifact.id, alice)

    def test_non_owner_cannot_delete(self, store, make_site, bob):
        artifact, _ = make_site()
        with pytest.raises(AccessDeniedError):
            store.delete(artifact.id, bob)
        assert store.load(artifact.id)

    def test_delete_missing(self, store, alice):
        with pytest.raises(NotFoundError):
            store.delete("site_missing", alice)


class TestList:

    def test_unscoped_listing_is_public_only(self, store, make_site):
        public, _ = make_site(visibility="public")
        make_site(visibility="private")

        assert [a.id for a in store.list()] == [public.id]

    def test_owner_listing(self, store, make_site, alice, bob):
        public, _ = make_site(visibility="public")
        private, _ = make_site(visibility="private")
        make_site(owner_id=bob, visibility="public")

        own = {a.id for a in store.list(owner_id=alice, requester_id=alice)}
        seen_by_bob = {a.id for a in store.list(owner_id=alice, requester_id=bob)}

        assert own == {public.id, private.id}
        assert seen_by_bob == {public.id}

    def test_ordering_and_filters(self, store, make_site, alice):
        first, _ = make_site(instruction="One", content_type="blog", tags=["food"])
        second, _ = make_site(instruction="Two", content_type="landing", tags=["tech"])
        third, _ = make_site(instruction="Three", content_type="blog", tags=["food", "tech"])
        store.edit(first.id, alice, "Bump")

        assert [a.id for a in store.list()] == [first.id, third.id, second.id]
        assert {a.id for a in store.list(content_type="blog")} == {first.id, third.id}
        assert {a.id for a in store.list(tags=["tech"])} == {second.id, third.id}
        assert len(store.list(limit=2)) == 2

    def test_list_versions_hides_content(self, store, make_site, alice, bob):
        artifact, _ = make_site(visibility="private")
        store.edit(artifact.id, alice, "Change")

        summary, history = store.list_versions(artifact.id, alice)

        assert summary.id == artifact.id
        assert [v["version_number"] for v in history] == [1.1, 1.0]
        assert all("content" not in v for v in history)
        with pytest.raises(AccessDeniedError):
            store.list_versions(artifact.id, bob)


class TestRepair:

    def test_repair_repoints_to_highest_version(self, store, make_site, alice):
        artifact, initial = make_site()
        # Simulate a crash after the version was written but before the repoint
        orphan = store.versions.append(
            artifact_id=artifact.id,
            content="<html>recovered</html>",
            instruction=initial.instruction,
            edit_instruction="lost edit",
            content_type=initial.content_type,
            parent_version_id=initial.id,
            version_number=1.1,
            is_initial=False,
        )

        repaired = store.repair_latest(artifact.id)

        assert repaired.latest_version_id == orphan.id
        assert repaired.version_count == 2
        assert repaired.edit_count == 1
        assert store.repair_latest(artifact.id).latest_version_id == orphan.id
        assert_consistent(store, artifact.id)
