"""
Tests for the contact directory and the profile picture endpoints.
"""

from chatsync import contacts, services
from chatsync.errors import ValidationError
from chatsync.uploads import discard_upload, upload_dir


def stored_uploads() -> list[str]:
    return sorted(p.name for p in upload_dir().iterdir())


class TestMergeUpsert:
    """Test merge-upsert of directory entries."""

    def test_create(self, db):
        """Test that a new entry is created with an empty avatar."""
        contact, changed = contacts.merge_upsert(db, "A", display_name="Bob")

        assert changed is True
        assert contact.display_name == "Bob"
        assert contact.avatar_url == ""

    def test_merge_keeps_existing_fields(self, db):
        """Test that supplying one field keeps the other."""
        contacts.merge_upsert(db, "A", display_name="Bob")
        contact, changed = contacts.merge_upsert(db, "A", avatar_url="/x.png")

        assert changed is True
        assert contact.display_name == "Bob"
        assert contact.avatar_url == "/x.png"

    def test_empty_values_do_not_clobber(self, db):
        """Test that empty or missing values never overwrite stored ones."""
        contacts.merge_upsert(db, "A", display_name="Bob", avatar_url="/x.png")
        contact, changed = contacts.merge_upsert(db, "A", display_name="", avatar_url=None)

        assert changed is False
        assert contact.display_name == "Bob"
        assert contact.avatar_url == "/x.png"

    def test_same_values_report_no_change(self, db):
        """Test that rewriting identical values is not a change."""
        contacts.merge_upsert(db, "A", display_name="Bob")
        _, changed = contacts.merge_upsert(db, "A", display_name="Bob")

        assert changed is False

    def test_nothing_supplied_for_unknown_contact(self, db):
        """Test that no entry is created when nothing is supplied."""
        contact, changed = contacts.merge_upsert(db, "nobody")

        assert contact is None
        assert changed is False
        assert contacts.get_contact(db, "nobody") is None

    def test_get_contacts(self, db):
        """Test bulk lookup returns only known contacts."""
        contacts.merge_upsert(db, "A", display_name="Ann")
        contacts.merge_upsert(db, "B", display_name="Bob")

        found = contacts.get_contacts(db, ["A", "B", "C"])

        assert sorted(found) == ["A", "B"]
        assert contacts.get_contacts(db, []) == {}


class TestClearAvatar:
    """Test clearing a contact's avatar."""

    def test_clear(self, db):
        """Test that clearing keeps the display name."""
        contacts.merge_upsert(db, "A", display_name="Bob", avatar_url="/x.png")

        contact, changed = contacts.clear_avatar(db, "A")

        assert changed is True
        assert contact.avatar_url == ""
        assert contact.display_name == "Bob"

    def test_clear_without_avatar(self, db):
        """Test that clearing an absent avatar is not a change."""
        contacts.merge_upsert(db, "A", display_name="Bob")

        _, changed = contacts.clear_avatar(db, "A")

        assert changed is False

    def test_clear_unknown_contact(self, db):
        """Test that clearing an unknown contact is a no-op."""
        assert contacts.clear_avatar(db, "nobody") == (None, False)


class TestDiscardUpload:
    """Test removing stored uploads."""

    def test_discard_removes_file(self):
        """Test that a /uploads URL maps back to its file."""
        (upload_dir() / "profile_gone.png").write_bytes(b"x")

        discard_upload("/uploads/profile_gone.png")

        assert "profile_gone.png" not in stored_uploads()

    def test_discard_ignores_other_urls(self):
        """Test that external or missing URLs are left alone."""
        discard_upload("https://cdn.example.com/a.png")
        discard_upload("/uploads/never_stored.png")


class TestProfilePicEndpoints:
    """Test the profile picture endpoints."""

    def test_set_by_url(self, client, events):
        """Test setting an avatar by URL publishes user:updated."""
        response = client.post(
            "/users/profilePic/url",
            json={"contactId": "A", "avatarUrl": "https://cdn.example.com/a.png", "displayName": "Ann"},
        )

        assert response.status_code == 200
        expected = {"contactId": "A", "displayName": "Ann", "avatarUrl": "https://cdn.example.com/a.png"}
        assert response.json() == expected
        assert events.of_type("user:updated") == [expected]

    def test_set_same_url_twice_publishes_once(self, client, events):
        """Test that an unchanged avatar publishes no second event."""
        body = {"contactId": "A", "avatarUrl": "/uploads/a.png"}
        client.post("/users/profilePic/url", json=body)
        client.post("/users/profilePic/url", json=body)

        assert len(events.of_type("user:updated")) == 1

    def test_set_by_url_requires_url(self, client):
        """Test that an empty avatarUrl returns 422."""
        response = client.post("/users/profilePic/url", json={"contactId": "A", "avatarUrl": ""})

        assert response.status_code == 422

    def test_upload(self, client, events):
        """Test that an uploaded image becomes the avatar."""
        response = client.post(
            "/users/profilePic",
            data={"contactId": "A", "displayName": "Ann"},
            files={"file": ("me.jpg", b"fake jpeg", "image/jpeg")},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["avatarUrl"].startswith("/uploads/profile_")
        assert body["displayName"] == "Ann"
        assert events.of_type("user:updated")[-1]["avatarUrl"] == body["avatarUrl"]

    def test_upload_rejects_video(self, client):
        """Test that a non-image profile picture returns 422."""
        response = client.post(
            "/users/profilePic",
            data={"contactId": "A"},
            files={"file": ("clip.mp4", b"fake video", "video/mp4")},
        )

        assert response.status_code == 422

    def test_upload_blank_contact_leaves_no_file(self, client, events):
        """Test that a blank contactId returns 422 without writing the upload."""
        before = stored_uploads()

        response = client.post(
            "/users/profilePic",
            data={"contactId": "   "},
            files={"file": ("me.png", b"\x89PNG fake", "image/png")},
        )

        assert response.status_code == 422
        assert stored_uploads() == before
        assert events.of_type("user:updated") == []

    def test_upload_failed_update_discards_file(self, client, monkeypatch):
        """Test that an avatar rejected after saving removes the stored file."""

        async def reject(*args, **kwargs):
            raise ValidationError("rejected")

        monkeypatch.setattr(services, "set_avatar", reject)
        before = stored_uploads()

        response = client.post(
            "/users/profilePic",
            data={"contactId": "A"},
            files={"file": ("me.png", b"\x89PNG fake", "image/png")},
        )

        assert response.status_code == 422
        assert stored_uploads() == before

    def test_clear(self, client, events):
        """Test clearing an avatar via the endpoint."""
        client.post("/users/profilePic/url", json={"contactId": "A", "avatarUrl": "/uploads/a.png", "displayName": "Ann"})

        response = client.delete("/users/A/profilePic")

        assert response.status_code == 200
        assert response.json() == {"contactId": "A", "displayName": "Ann", "avatarUrl": ""}
        assert events.of_type("user:updated")[-1]["avatarUrl"] == ""

    def test_clear_unknown_contact(self, client, events):
        """Test clearing an unknown contact returns an empty entry and no event."""
        response = client.delete("/users/nobody/profilePic")

        assert response.status_code == 200
        assert response.json() == {"contactId": "nobody", "displayName": "", "avatarUrl": ""}
        assert events.of_type("user:updated") == []

    def test_avatar_shows_up_in_chat_list(self, client):
        """Test that the chat list is decorated with the directory avatar."""
        client.post("/messages/send", json={"contactId": "A", "text": "hi", "displayName": "Ann"})
        client.post("/users/profilePic/url", json={"contactId": "A", "avatarUrl": "/uploads/a.png"})

        chat = client.get("/chats").json()["chats"][0]

        assert chat["displayName"] == "Ann"
        assert chat["avatarUrl"] == "/uploads/a.png"
