"""
Tests for ephemeral statuses: the status store and the /status endpoints.
"""

from datetime import datetime, timedelta, timezone

import pytest

from chatsync import contacts, services, statuses
from chatsync.config import settings
from chatsync.errors import ValidationError
from chatsync.uploads import upload_dir


T0 = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


def at(seconds: int = 0, hours: int = 0) -> datetime:
    return T0 + timedelta(seconds=seconds, hours=hours)


def stored_uploads() -> list[str]:
    return sorted(p.name for p in upload_dir().iterdir())


class TestValidateItem:
    """Test kind/payload consistency checks."""

    @pytest.mark.parametrize(
        "kind,text,media_url",
        [
            ("text", None, None),
            ("text", "   ", None),
            ("text", "hello", "/uploads/a.png"),
            ("image", None, None),
            ("video", "", None),
            ("image", "caption", "/uploads/a.png"),
            ("audio", None, "/uploads/a.mp3"),
        ],
    )
    def test_rejects_inconsistent_items(self, kind, text, media_url):
        """Test that mismatched kind and payload raise ValidationError."""
        with pytest.raises(ValidationError):
            statuses.validate_item(kind, text, media_url)

    def test_accepts_consistent_items(self):
        """Test that text, image and video items with the right payload pass."""
        assert statuses.validate_item("text", "hello", None).value == "text"
        assert statuses.validate_item("image", None, "/uploads/a.png").value == "image"
        assert statuses.validate_item("video", None, "/uploads/a.mp4").value == "video"


class TestPostItem:
    """Test appending items to a contact's collection."""

    def test_first_post_creates_collection(self, db):
        """Test that the first item creates the collection with a 24h expiry."""
        collection, item = statuses.post_item(db, "A", "Ann", "text", text="hello", now=at())

        assert collection.contact_id == "A"
        assert collection.display_name == "Ann"
        assert [i.id for i in collection.items] == [item.id]
        assert item.id.startswith("status_")
        assert item.created_at == "2025-01-15T10:00:00.000000Z"
        assert item.expires_at == "2025-01-16T10:00:00.000000Z"
        assert collection.last_updated == item.created_at

    def test_second_post_appends_to_same_collection(self, db):
        """Test that later items append in order and bump lastUpdated."""
        _, first = statuses.post_item(db, "A", "Ann", "text", text="one", now=at(0))
        collection, second = statuses.post_item(db, "A", None, "image", media_url="/uploads/x.png", now=at(60))

        assert [i.id for i in collection.items] == [first.id, second.id]
        assert collection.last_updated == second.created_at
        assert collection.display_name == "Ann"
        assert collection.items[1].text is None
        assert collection.items[1].media_url == "/uploads/x.png"

    def test_display_name_refreshed_when_supplied(self, db):
        """Test that a new display name replaces the stored one."""
        statuses.post_item(db, "A", "Ann", "text", text="one", now=at(0))
        collection, _ = statuses.post_item(db, "A", "Annie", "text", text="two", now=at(10))

        assert collection.display_name == "Annie"

    def test_invalid_item_is_not_stored(self, db):
        """Test that a rejected item leaves no collection behind."""
        with pytest.raises(ValidationError):
            statuses.post_item(db, "A", "Ann", "text", text="")

        assert statuses.get_collection(db, "A") is None

    def test_requires_contact_id(self, db):
        """Test that an empty contact id is rejected."""
        with pytest.raises(ValidationError):
            statuses.post_item(db, "", "Ann", "text", text="hi")


class TestListVisible:
    """Test expiry filtering and ordering of the status list."""

    def test_expired_items_are_hidden(self, db):
        """Test that items past their expiry are filtered out."""
        statuses.post_item(db, "A", "Ann", "text", text="old", now=at(0))
        statuses.post_item(db, "A", "Ann", "text", text="new", now=at(hours=12))

        visible = statuses.list_visible(db, now=at(hours=25))

        assert len(visible) == 1
        assert [i.text for i in visible[0].items] == ["new"]

    def test_item_expiring_exactly_now_is_hidden(self, db):
        """Test that the expiry boundary is exclusive."""
        statuses.post_item(db, "A", "Ann", "text", text="x", now=at(0))

        assert statuses.list_visible(db, now=at(hours=24)) == []

    def test_collection_with_only_expired_items_is_hidden(self, db):
        """Test that fully expired collections are omitted but kept in storage."""
        statuses.post_item(db, "A", "Ann", "text", text="x", now=at(0))
        statuses.post_item(db, "B", "Bob", "text", text="y", now=at(hours=20))

        visible = statuses.list_visible(db, now=at(hours=30))

        assert [c.contact_id for c in visible] == ["B"]
        # Expired items stay stored until deleted
        assert len(statuses.get_collection(db, "A").items) == 1

    def test_most_recently_updated_first(self, db):
        """Test ordering by lastUpdated, newest first."""
        statuses.post_item(db, "A", "Ann", "text", text="a", now=at(0))
        statuses.post_item(db, "B", "Bob", "text", text="b", now=at(10))
        statuses.post_item(db, "A", "Ann", "text", text="a2", now=at(20))

        assert [c.contact_id for c in statuses.list_visible(db, now=at(30))] == ["A", "B"]

    def test_avatar_decoration(self, db):
        """Test that collections carry the directory avatar."""
        statuses.post_item(db, "A", "Ann", "text", text="a", now=at(0))
        contacts.merge_upsert(db, "A", avatar_url="/uploads/ann.png")

        visible = statuses.list_visible(db, now=at(1))

        assert visible[0].avatar_url == "/uploads/ann.png"


class TestDelete:
    """Test item and collection deletion."""

    def test_delete_only_item_hides_collection(self, db):
        """Test that removing the last item leaves an empty, hidden collection."""
        _, item = statuses.post_item(db, "A", "Ann", "text", text="x", now=at(0))

        collection = statuses.delete_item(db, "A", item.id)

        assert collection is not None
        assert collection.items == []
        assert statuses.list_visible(db, now=at(1)) == []

    def test_delete_unknown_item_keeps_others(self, db):
        """Test that an unknown item id is a no-op."""
        statuses.post_item(db, "A", "Ann", "text", text="x", now=at(0))

        collection = statuses.delete_item(db, "A", "status_missing")

        assert len(collection.items) == 1

    def test_delete_item_without_collection(self, db):
        """Test that deleting from a missing collection returns None."""
        assert statuses.delete_item(db, "nobody", "status_missing") is None

    def test_delete_collection(self, db):
        """Test that a collection is removed once and then reports zero."""
        statuses.post_item(db, "A", "Ann", "text", text="x", now=at(0))
        statuses.post_item(db, "A", "Ann", "text", text="y", now=at(1))

        assert statuses.delete_collection(db, "A") == 1
        assert statuses.get_collection(db, "A") is None
        assert statuses.delete_collection(db, "A") == 0


class TestStatusEndpoints:
    """Test the /status endpoints."""

    def test_post_and_list(self, client, events):
        """Test posting a text status publishes status:new and lists it."""
        response = client.post(
            "/status",
            json={"contactId": "A", "displayName": "Ann", "kind": "text", "text": "hello"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["contactId"] == "A"
        assert [i["text"] for i in body["items"]] == ["hello"]

        created = events.of_type("status:new")
        assert len(created) == 1
        assert created[0]["contactId"] == "A"
        assert created[0]["displayName"] == "Ann"
        assert created[0]["item"]["id"] == body["items"][0]["id"]

        listing = client.get("/status").json()["statuses"]
        assert [c["contactId"] for c in listing] == ["A"]

    def test_post_invalid_kind(self, client, events):
        """Test that an image status without media returns 422 and no event."""
        response = client.post("/status", json={"contactId": "A", "kind": "image", "text": "no media"})

        assert response.status_code == 422
        assert events.of_type("status:new") == []

    def test_get_collection_endpoint(self, client):
        """Test fetching one collection, and 404 with detail when missing."""
        client.post("/status", json={"contactId": "A", "text": "x"})

        assert client.get("/status/A").json()["contactId"] == "A"
        response = client.get("/status/nobody")
        assert response.status_code == 404
        assert "detail" in response.json()

    def test_delete_item_endpoint(self, client, events):
        """Test deleting an item publishes status:itemDeleted."""
        body = client.post("/status", json={"contactId": "A", "text": "x"}).json()
        item_id = body["items"][0]["id"]

        response = client.delete(f"/status/A/items/{item_id}")

        assert response.status_code == 200
        assert response.json()["status"]["items"] == []
        assert events.of_type("status:itemDeleted") == [{"contactId": "A", "itemId": item_id}]
        assert client.get("/status").json()["statuses"] == []

    def test_delete_collection_endpoint(self, client, events):
        """Test deleting a collection publishes status:deleted."""
        client.post("/status", json={"contactId": "A", "text": "x"})

        response = client.delete("/status/A")

        assert response.status_code == 200
        assert response.json() == {"deletedCount": 1}
        assert events.of_type("status:deleted") == [{"contactId": "A"}]


class TestStatusUpload:
    """Test POST /status/upload."""

    def test_upload_image_status(self, client, events):
        """Test that an uploaded image becomes an image item served from /uploads."""
        response = client.post(
            "/status/upload",
            data={"contactId": "A", "displayName": "Ann"},
            files={"file": ("photo.png", b"\x89PNG fake image bytes", "image/png")},
        )

        assert response.status_code == 200
        item = response.json()["items"][0]
        assert item["kind"] == "image"
        assert item["mediaUrl"].startswith("/uploads/status_")
        assert item["mediaUrl"].endswith(".png")
        assert len(events.of_type("status:new")) == 1

        served = client.get(item["mediaUrl"])
        assert served.status_code == 200
        assert served.content == b"\x89PNG fake image bytes"

    def test_upload_rejects_non_media(self, client):
        """Test that a non image/video file returns 422."""
        response = client.post(
            "/status/upload",
            data={"contactId": "A"},
            files={"file": ("notes.txt", b"plain text", "text/plain")},
        )

        assert response.status_code == 422

    def test_upload_rejects_empty_file(self, client):
        """Test that an empty file returns 422."""
        response = client.post(
            "/status/upload",
            data={"contactId": "A"},
            files={"file": ("empty.png", b"", "image/png")},
        )

        assert response.status_code == 422

    def test_upload_rejects_oversized_file(self, client, monkeypatch):
        """Test that a file over MAX_UPLOAD_MB returns 422 and is not stored."""
        monkeypatch.setattr(settings, "MAX_UPLOAD_MB", 0)
        before = stored_uploads()

        response = client.post(
            "/status/upload",
            data={"contactId": "A"},
            files={"file": ("photo.png", b"\x89PNG", "image/png")},
        )

        assert response.status_code == 422
        assert "too large" in response.json()["detail"]
        assert stored_uploads() == before

    def test_blank_contact_leaves_no_file(self, client, events):
        """Test that a blank contactId returns 422 without writing the upload."""
        before = stored_uploads()

        response = client.post(
            "/status/upload",
            data={"contactId": "   "},
            files={"file": ("photo.png", b"\x89PNG fake image bytes", "image/png")},
        )

        assert response.status_code == 422
        assert stored_uploads() == before
        assert events.of_type("status:new") == []

    def test_failed_post_discards_file(self, client, monkeypatch):
        """Test that a status rejected after saving removes the stored file."""

        async def reject(*args, **kwargs):
            raise ValidationError("rejected")

        monkeypatch.setattr(services, "post_status", reject)
        before = stored_uploads()

        response = client.post(
            "/status/upload",
            data={"contactId": "A"},
            files={"file": ("photo.png", b"\x89PNG fake image bytes", "image/png")},
        )

        assert response.status_code == 422
        assert stored_uploads() == before
