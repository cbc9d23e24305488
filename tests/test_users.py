"""Tests for registration, login and account maintenance."""

import threading

import pytest
from sqlalchemy import func, select

from notes_backend.db.models import User
from notes_backend.errors import (
    AccountDisabled,
    DuplicateEmail,
    DuplicateUsername,
    InvalidCredentials,
    NotFoundError,
    ValidationError,
)
from notes_backend.services import users


class TestRegister:
    def test_first_account_is_admin(self, make_user):
        first = make_user("alice")
        second = make_user("bob")
        assert first.is_admin
        assert not second.is_admin
        assert first.is_active and second.is_active

    def test_password_is_hashed(self, make_user, pwd_context):
        user = make_user("alice", password="hunter22")
        assert user.password_hash != "hunter22"
        assert pwd_context.verify("hunter22", user.password_hash)

    def test_email_is_normalized(self, make_user):
        user = make_user("alice", email="  Alice@Example.COM ")
        assert user.email == "alice@example.com"

    def test_duplicate_username(self, make_user):
        make_user("alice")
        with pytest.raises(DuplicateUsername):
            make_user("alice", email="other@example.com")

    def test_duplicate_email(self, make_user):
        make_user("alice")
        with pytest.raises(DuplicateEmail):
            make_user("alice2", email="ALICE@example.com")

    @pytest.mark.parametrize(
        ("username", "password", "email"),
        [("", "secret-pw", "a@example.com"), ("alice", "", "a@example.com"), ("alice", "secret-pw", "  ")],
    )
    def test_missing_fields(self, db, pwd_context, username, password, email):
        with pytest.raises(ValidationError):
            users.register(db, pwd_context, username, password, email)

    def test_concurrent_registrations_create_exactly_one_admin(self, session_factory, pwd_context):
        count = 8
        barrier = threading.Barrier(count)
        errors = []

        def register(index):
            with session_factory() as db:
                barrier.wait()
                try:
                    users.register(db, pwd_context, f"user{index}", "secret-pw", f"user{index}@example.com")
                except Exception as e:  # collected and asserted below
                    errors.append(e)

        threads = [threading.Thread(target=register, args=(i,)) for i in range(count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        with session_factory() as db:
            assert db.scalar(select(func.count()).select_from(User)) == count
            assert db.scalar(select(func.count()).select_from(User).where(User.is_admin.is_(True))) == 1


class TestLogin:
    def test_success(self, db, pwd_context, make_user):
        created = make_user("alice", password="hunter22")
        assert users.login(db, pwd_context, "alice@example.com", "hunter22").id == created.id

    def test_email_is_case_insensitive(self, db, pwd_context, make_user):
        make_user("alice", password="hunter22")
        assert users.login(db, pwd_context, " ALICE@example.com", "hunter22").username == "alice"

    def test_unknown_email_and_wrong_password_fail_identically(self, db, pwd_context, make_user):
        make_user("alice", password="hunter22")

        with pytest.raises(InvalidCredentials) as unknown:
            users.login(db, pwd_context, "nobody@example.com", "hunter22")
        with pytest.raises(InvalidCredentials) as wrong:
            users.login(db, pwd_context, "alice@example.com", "wrong-password")

        assert str(unknown.value) == str(wrong.value)
        assert unknown.value.status_code == wrong.value.status_code == 401

    def test_disabled_account(self, db, pwd_context, make_user):
        make_user("admin")
        bob = make_user("bob", password="hunter22")
        users.disable_user(db, bob.id)

        with pytest.raises(AccountDisabled):
            users.login(db, pwd_context, "bob@example.com", "hunter22")
        # wrong password on a disabled account does not reveal the account state
        with pytest.raises(InvalidCredentials):
            users.login(db, pwd_context, "bob@example.com", "nope-nope")


class TestAccountMaintenance:
    def test_get_user(self, db, make_user):
        alice = make_user("alice")
        assert users.get_user(db, alice.id).username == "alice"
        with pytest.raises(NotFoundError):
            users.get_user(db, 9999)

    def test_update_profile(self, db, make_user):
        alice = make_user("alice")
        updated = users.update_profile(db, alice.id, username="alicia", email="Alicia@Example.com")
        assert updated.username == "alicia"
        assert updated.email == "alicia@example.com"

    def test_update_profile_keeps_omitted_fields(self, db, make_user):
        alice = make_user("alice")
        updated = users.update_profile(db, alice.id, username="alicia")
        assert updated.email == "alice@example.com"

    def test_update_profile_to_own_values_is_allowed(self, db, make_user):
        alice = make_user("alice")
        users.update_profile(db, alice.id, username="alice", email="alice@example.com")

    def test_update_profile_conflicts(self, db, make_user):
        make_user("alice")
        bob_id = make_user("bob").id
        with pytest.raises(DuplicateUsername):
            users.update_profile(db, bob_id, username="alice")
        with pytest.raises(DuplicateEmail):
            users.update_profile(db, bob_id, email="alice@example.com")

    def test_update_profile_after_failed_update(self, db, make_user):
        make_user("alice")
        bob = make_user("bob")
        with pytest.raises(DuplicateUsername):
            users.update_profile(db, bob.id, username="alice")
        # reading the expired object opens a read transaction first
        assert bob.username == "bob"
        assert users.update_profile(db, bob.id, username="robert").username == "robert"

    def test_update_profile_rejects_blank(self, db, make_user):
        alice = make_user("alice")
        with pytest.raises(ValidationError):
            users.update_profile(db, alice.id, username="  ")

    def test_change_password(self, db, pwd_context, make_user):
        alice = make_user("alice", password="hunter22")
        users.change_password(db, pwd_context, alice.id, "new-secret")

        assert users.login(db, pwd_context, "alice@example.com", "new-secret").id == alice.id
        with pytest.raises(InvalidCredentials):
            users.login(db, pwd_context, "alice@example.com", "hunter22")

    def test_disable_unknown_user(self, db):
        with pytest.raises(NotFoundError):
            users.disable_user(db, 9999)
