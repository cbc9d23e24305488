"""Tests for note operations and the parent/ownership checks behind them."""

import pytest

from notes_backend.db.models import NoteStatus
from notes_backend.errors import InvalidParent, NotFoundError, NoteUnauthorized, ValidationError
from notes_backend.services import notes


@pytest.fixture
def alice(make_user):
    return make_user("alice")


@pytest.fixture
def bob(make_user, alice):
    return make_user("bob")


def ids(items):
    return [note.id for note in items]


class TestCheckParent:
    def test_no_parent(self, db, alice):
        assert notes.check_parent(db, alice.id, None) is None

    def test_missing_parent(self, db, alice):
        with pytest.raises(InvalidParent):
            notes.check_parent(db, alice.id, 12345)

    def test_parent_of_other_user(self, db, alice, bob):
        theirs = notes.create_note(db, bob.id, "bob's")
        with pytest.raises(NoteUnauthorized):
            notes.check_parent(db, alice.id, theirs.id)

    def test_self_parent(self, db, alice):
        note = notes.create_note(db, alice.id, "n")
        with pytest.raises(InvalidParent):
            notes.check_parent(db, alice.id, note.id, note_id=note.id)

    def test_descendant_as_parent(self, db, alice):
        top = notes.create_note(db, alice.id, "top")
        middle = notes.create_note(db, alice.id, "middle", parent_id=top.id)
        bottom = notes.create_note(db, alice.id, "bottom", parent_id=middle.id)

        with pytest.raises(InvalidParent):
            notes.check_parent(db, alice.id, bottom.id, note_id=top.id)
        assert notes.check_parent(db, alice.id, top.id, note_id=bottom.id).id == top.id

    def test_existence_is_checked_before_ownership(self, db, alice, bob):
        with pytest.raises(InvalidParent):
            notes.check_parent(db, bob.id, 12345)


class TestCreateNote:
    def test_create_root_note(self, db, alice):
        note = notes.create_note(db, alice.id, "Groceries", content="milk", icon="cart")
        assert note.id
        assert note.user_id == alice.id
        assert note.parent_id is None
        assert note.status == NoteStatus.NORMAL.value
        assert note.icon == "cart"
        assert not note.is_favorite

    def test_create_child_note(self, db, alice):
        parent = notes.create_note(db, alice.id, "Parent")
        child = notes.create_note(db, alice.id, "Child", parent_id=parent.id)
        assert child.parent_id == parent.id

    def test_blank_title(self, db, alice):
        with pytest.raises(ValidationError):
            notes.create_note(db, alice.id, "   ")

    def test_parent_owned_by_other_user(self, db, alice, bob):
        theirs = notes.create_note(db, bob.id, "bob's")
        with pytest.raises(NoteUnauthorized):
            notes.create_note(db, alice.id, "mine", parent_id=theirs.id)

    def test_missing_parent(self, db, alice):
        with pytest.raises(InvalidParent):
            notes.create_note(db, alice.id, "orphan", parent_id=4242)


class TestReadNotes:
    def test_get_note(self, db, alice, bob):
        note = notes.create_note(db, alice.id, "mine")
        assert notes.get_note(db, alice.id, note.id).title == "mine"
        with pytest.raises(NoteUnauthorized):
            notes.get_note(db, bob.id, note.id)
        with pytest.raises(NotFoundError):
            notes.get_note(db, alice.id, 9999)

    def test_list_only_own_notes_in_order(self, db, alice, bob):
        second = notes.create_note(db, alice.id, "second", position=2)
        first = notes.create_note(db, alice.id, "first", position=1)
        notes.create_note(db, bob.id, "not mine")

        assert ids(notes.list_notes(db, alice.id)) == [first.id, second.id]

    def test_list_children_and_roots(self, db, alice):
        root = notes.create_note(db, alice.id, "root")
        child = notes.create_note(db, alice.id, "child", parent_id=root.id)
        notes.create_note(db, alice.id, "grandchild", parent_id=child.id)

        assert ids(notes.list_children(db, alice.id, None)) == [root.id]
        assert ids(notes.list_children(db, alice.id, root.id)) == [child.id]

    def test_list_children_of_foreign_note(self, db, alice, bob):
        theirs = notes.create_note(db, bob.id, "bob's")
        with pytest.raises(NoteUnauthorized):
            notes.list_children(db, alice.id, theirs.id)

    def test_list_favorites(self, db, alice):
        starred = notes.create_note(db, alice.id, "starred", is_favorite=True)
        notes.create_note(db, alice.id, "plain")
        trashed = notes.create_note(db, alice.id, "starred but trashed", is_favorite=True)
        notes.trash_note(db, alice.id, trashed.id)

        assert ids(notes.list_favorites(db, alice.id)) == [starred.id]

    def test_invalid_status(self, db, alice):
        with pytest.raises(ValidationError):
            notes.list_notes(db, alice.id, "archived")


class TestUpdateNote:
    def test_partial_update(self, db, alice):
        note = notes.create_note(db, alice.id, "title", content="body", icon="pin")
        updated = notes.update_note(db, alice.id, note.id, {"content": "new body"})
        assert updated.title == "title"
        assert updated.content == "new body"
        assert updated.icon == "pin"

    def test_move_and_move_back_to_root(self, db, alice):
        parent = notes.create_note(db, alice.id, "parent")
        note = notes.create_note(db, alice.id, "note")

        assert notes.update_note(db, alice.id, note.id, {"parent_id": parent.id}).parent_id == parent.id
        assert notes.update_note(db, alice.id, note.id, {"parent_id": None}).parent_id is None

    def test_cannot_become_own_parent(self, db, alice):
        note = notes.create_note(db, alice.id, "note")
        with pytest.raises(InvalidParent):
            notes.update_note(db, alice.id, note.id, {"parent_id": note.id})

    def test_cannot_move_under_descendant(self, db, alice):
        top = notes.create_note(db, alice.id, "top")
        child = notes.create_note(db, alice.id, "child", parent_id=top.id)
        with pytest.raises(InvalidParent):
            notes.update_note(db, alice.id, top.id, {"parent_id": child.id})
        assert notes.get_note(db, alice.id, top.id).parent_id is None

    def test_other_users_note(self, db, alice, bob):
        note = notes.create_note(db, alice.id, "mine")
        with pytest.raises(NoteUnauthorized):
            notes.update_note(db, bob.id, note.id, {"title": "hijacked"})
        assert notes.get_note(db, alice.id, note.id).title == "mine"

    def test_owner_cannot_be_changed(self, db, alice, bob):
        note = notes.create_note(db, alice.id, "mine")
        with pytest.raises(ValidationError):
            notes.update_note(db, alice.id, note.id, {"user_id": bob.id})

    @pytest.mark.parametrize("changes", [{"title": ""}, {"title": None}, {"position": None}, {"status": "gone"}])
    def test_invalid_changes(self, db, alice, changes):
        note = notes.create_note(db, alice.id, "note")
        with pytest.raises(ValidationError):
            notes.update_note(db, alice.id, note.id, changes)

    def test_status_through_update(self, db, alice):
        note = notes.create_note(db, alice.id, "note")
        assert notes.update_note(db, alice.id, note.id, {"status": NoteStatus.TRASHED}).is_trashed


class TestNoteLifecycle:
    def test_trash_and_restore(self, db, alice):
        keep = notes.create_note(db, alice.id, "keep")
        bin_me = notes.create_note(db, alice.id, "bin me")

        trashed = notes.trash_note(db, alice.id, bin_me.id)
        assert trashed.status == NoteStatus.TRASHED.value
        assert ids(notes.list_notes(db, alice.id)) == [keep.id]
        assert ids(notes.list_notes(db, alice.id, NoteStatus.TRASHED)) == [bin_me.id]

        restored = notes.restore_note(db, alice.id, bin_me.id)
        assert restored.status == NoteStatus.NORMAL.value
        assert set(ids(notes.list_notes(db, alice.id))) == {keep.id, bin_me.id}
        assert notes.list_notes(db, alice.id, NoteStatus.TRASHED) == []

    def test_trash_other_users_note(self, db, alice, bob):
        note = notes.create_note(db, alice.id, "mine")
        with pytest.raises(NoteUnauthorized):
            notes.trash_note(db, bob.id, note.id)

    def test_delete_reparents_children(self, db, alice):
        parent = notes.create_note(db, alice.id, "parent")
        child = notes.create_note(db, alice.id, "child", parent_id=parent.id)

        notes.delete_note(db, alice.id, parent.id)

        with pytest.raises(NotFoundError):
            notes.get_note(db, alice.id, parent.id)
        assert notes.get_note(db, alice.id, child.id).parent_id is None

    def test_delete_other_users_note(self, db, alice, bob):
        note = notes.create_note(db, alice.id, "mine")
        with pytest.raises(NoteUnauthorized):
            notes.delete_note(db, bob.id, note.id)

    def test_toggle_favorite(self, db, alice):
        note = notes.create_note(db, alice.id, "note")
        assert notes.toggle_favorite(db, alice.id, note.id).is_favorite
        assert not notes.toggle_favorite(db, alice.id, note.id).is_favorite

    def test_update_position(self, db, alice):
        a = notes.create_note(db, alice.id, "a", position=0)
        b = notes.create_note(db, alice.id, "b", position=1)
        notes.update_position(db, alice.id, a.id, 5)
        assert ids(notes.list_notes(db, alice.id)) == [b.id, a.id]
