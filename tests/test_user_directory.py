import pytest

from exam_app.core.auth import AuthIdentity, account_email, is_recent_login, require_capability, role_from_email
from exam_app.core.errors import ConflictError, InvalidInputError, NotFoundError, PermissionDeniedError
from exam_app.core.models import AuthSession, Role
from exam_app.core.services.user_directory import ProfileUpdate, UserDirectory, UserRepository


@pytest.fixture
def directory(store, auth, clock) -> UserDirectory:
    return UserDirectory(UserRepository(store), auth, now=clock.now)


def sign_in(auth, directory, username, password, role="student") -> AuthSession:
    token = auth.sign_in(account_email(username, role), password)
    return directory.resolve_session(auth.verify_token(token))


class TestRoles:
    def test_role_from_email(self):
        assert role_from_email("teacher-jane@quizmaster.com") is Role.TEACHER
        assert role_from_email("student-0012345678@quizmaster.com") is Role.STUDENT
        assert role_from_email("someone@example.org") is Role.STUDENT
        assert role_from_email(None) is Role.STUDENT

    def test_capabilities(self):
        teacher = AuthSession(user_id="t", role=Role.TEACHER)
        student = AuthSession(user_id="s", role=Role.STUDENT)
        assert require_capability(teacher, "can_manage_exams") is teacher
        with pytest.raises(PermissionDeniedError):
            require_capability(student, "can_manage_users")
        with pytest.raises(PermissionDeniedError):
            require_capability(teacher, "can_take_exams")


class TestCreateUser:
    def test_create_student(self, directory, auth, store):
        user = directory.create_user("Sara Ahmadi", "0012345678", "password1", "student")
        assert user.id == "0012345678"
        assert user.email == "student-0012345678@quizmaster.com"
        assert store.get("users", "0012345678")["firstName"] == "Sara"
        assert auth.email_of(user.auth_uid) == user.email

    def test_student_national_id_must_be_ten_digits(self, directory):
        with pytest.raises(InvalidInputError):
            directory.create_user("Sara Ahmadi", "12345", "password1", "student")

    def test_teacher_username_is_free_form(self, directory):
        assert directory.create_user("Mr Karimi", "karimi", "password1", "teacher").role is Role.TEACHER

    def test_short_password(self, directory):
        with pytest.raises(InvalidInputError):
            directory.create_user("Sara Ahmadi", "0012345678", "short", "student")

    def test_duplicate_national_id(self, directory):
        directory.create_user("Sara Ahmadi", "0012345678", "password1", "student")
        with pytest.raises(ConflictError):
            directory.create_user("Other Person", "0012345678", "password2", "student")

    def test_unknown_role(self, directory):
        with pytest.raises(InvalidInputError):
            directory.create_user("Sara Ahmadi", "0012345678", "password1", "admin")


class TestLookupAndSession:
    def test_lookup_falls_back_to_national_id_field(self, directory, store):
        store.set("users", "legacy-uid", {"nationalId": "0099999999", "firstName": "Old", "role": "student"})
        assert directory.get_user("0099999999").id == "legacy-uid"
        with pytest.raises(NotFoundError):
            directory.get_user("missing")

    def test_resolve_session(self, directory, auth):
        user = directory.create_user("Sara Ahmadi", "0012345678", "password1", "student")
        session = sign_in(auth, directory, "0012345678", "password1")
        assert session.user_id == user.auth_uid
        assert session.role is Role.STUDENT
        assert session.national_id == "0012345678"

    def test_delete_user_keeps_auth_until_sync(self, directory, auth):
        user = directory.create_user("Sara Ahmadi", "0012345678", "password1", "student")
        directory.create_user("Mr Karimi", "karimi", "password1", "teacher")
        directory.delete_user("0012345678")
        assert user.auth_uid in auth.list_uids()
        report = directory.sync_auth_users()
        assert (report.checked, report.deleted, report.failed) == (2, 1, 0)
        assert user.auth_uid not in auth.list_uids()
        assert directory.sync_auth_users().in_sync


class TestProfileUpdate:
    def test_requires_recent_sign_in(self, directory, auth, clock):
        directory.create_user("Sara Ahmadi", "0012345678", "password1", "student")
        session = sign_in(auth, directory, "0012345678", "password1")
        clock.advance(301)
        assert not is_recent_login(session, now=clock.now())
        with pytest.raises(PermissionDeniedError):
            directory.update_profile(session, ProfileUpdate("Sara", "Rahimi", "0012345678"))

    def test_rename_and_change_password(self, directory, auth, store):
        directory.create_user("Sara Ahmadi", "0012345678", "password1", "student")
        session = sign_in(auth, directory, "0012345678", "password1")
        user = directory.update_profile(session, ProfileUpdate("Sara", "Rahimi", "0012345678", "newpass"))
        assert user.last_name == "Rahimi"
        assert store.get("users", "0012345678")["lastName"] == "Rahimi"
        auth.sign_in("student-0012345678@quizmaster.com", "newpass")

    def test_national_id_change_moves_document(self, directory, auth, store):
        created = directory.create_user("Sara Ahmadi", "0012345678", "password1", "student")
        session = sign_in(auth, directory, "0012345678", "password1")
        moved = directory.update_profile(session, ProfileUpdate("Sara", "Ahmadi", "1111111111"))
        assert moved.id == "1111111111"
        assert store.get("users", "0012345678") is None
        assert store.get("users", "1111111111")["uid"] == created.auth_uid
        assert auth.email_of(created.auth_uid) == "student-1111111111@quizmaster.com"

    def test_national_id_target_must_be_free(self, directory, auth):
        directory.create_user("Sara Ahmadi", "0012345678", "password1", "student")
        directory.create_user("Reza Nouri", "2222222222", "password1", "student")
        session = sign_in(auth, directory, "0012345678", "password1")
        with pytest.raises(ConflictError):
            directory.update_profile(session, ProfileUpdate("Sara", "Ahmadi", "2222222222"))

    def test_new_password_minimum(self, directory, auth):
        directory.create_user("Sara Ahmadi", "0012345678", "password1", "student")
        session = sign_in(auth, directory, "0012345678", "password1")
        with pytest.raises(InvalidInputError):
            directory.update_profile(session, ProfileUpdate("Sara", "Ahmadi", "0012345678", "12345"))

    def test_identity_without_profile(self, directory):
        session = directory.resolve_session(AuthIdentity(uid="u1", email="teacher-x@quizmaster.com"))
        assert session.role is Role.TEACHER
        assert session.national_id == "x"
