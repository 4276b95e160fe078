"""Tests for sharing codes and apiary invite codes."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from bkeeper.core.errors import (
    AlreadyMember,
    AuthorizationDenied,
    BKeeperError,
    CodeExhausted,
    CodeExpired,
    CodeNotFound,
)
from bkeeper.core.models import Profile, ResourceType
from bkeeper.core.remote_backend import MemoryBackend
from bkeeper.core.remote_store import RemoteStore
from bkeeper.core.sharing import (
    CODE_ALPHABET,
    SharingService,
    format_invite_message,
    generate_code,
)

OWNER = Profile(id="owner-1")
FRIEND = Profile(id="friend-1")
OTHER = Profile(id="other-1")

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def backend():
    return MemoryBackend(OWNER)


@pytest.fixture
def owner(backend):
    return RemoteStore(backend, OWNER.id)


@pytest.fixture
def apiary(owner):
    return owner.create_apiary("Hemgården")


@pytest.fixture
def hive(owner, apiary):
    return owner.hive_service(apiary.id).create_hive("Kupa A", "Ängen")


@pytest.fixture
def sharing(owner):
    return SharingService(owner, clock=lambda: NOW)


def redeem_as(backend, profile, code):
    backend.sign_in(profile)
    store = RemoteStore(backend, profile.id)
    return SharingService(store, clock=lambda: NOW).redeem_code(code, profile.id)


# --- Codes ---


def test_generate_code():
    """Test codes use the lowercase alphabet and default length."""
    code = generate_code()
    assert len(code) == 8
    assert set(code) <= set(CODE_ALPHABET)
    assert len({generate_code() for _ in range(50)}) == 50


def test_format_invite_message():
    text = format_invite_message("Hemgården", "abc12345")
    assert "Hemgården" in text
    assert "abc12345" in text
    assert "bigård" in text
    assert "kupa" in format_invite_message("Kupa A", "abc12345", ResourceType.HIVE)


class TestCreateCode:
    def test_owner_creates_code(self, backend, sharing, apiary):
        code = sharing.create_code("apiary", apiary.id, OWNER.id, max_uses=3)
        assert code.is_active is True
        assert code.current_uses == 0
        row = backend.select("sharing_codes", id=code.id)[0]
        assert row["resource_type"] == "apiary"
        assert row["max_uses"] == 3

    def test_non_owner_cannot_create(self, backend, apiary):
        """Test only the owner may mint codes."""
        backend.sign_in(FRIEND)
        backend.rpc("join_apiary_by_invite_code", {"invite_code_param": apiary.invite_code})
        service = SharingService(RemoteStore(backend, FRIEND.id))
        with pytest.raises(AuthorizationDenied):
            service.create_code(ResourceType.APIARY, apiary.id, FRIEND.id)
        assert backend.tables["sharing_codes"] == []

    def test_hive_code_requires_hive_owner(self, sharing, hive):
        code = sharing.create_code(ResourceType.HIVE, hive.id, OWNER.id)
        assert code.resource_id == hive.id
        with pytest.raises(AuthorizationDenied):
            sharing.create_code(ResourceType.HIVE, "missing-hive", OWNER.id)

    def test_collision_regenerates(self, sharing, apiary):
        """Test a clash with an active code draws a new one."""
        first = sharing.create_code("apiary", apiary.id, OWNER.id)
        with patch(
            "bkeeper.core.sharing.generate_code", side_effect=[first.code, "zzzz9999"]
        ):
            second = sharing.create_code("apiary", apiary.id, OWNER.id)
        assert second.code == "zzzz9999"

    def test_gives_up_after_repeated_collisions(self, sharing, apiary):
        first = sharing.create_code("apiary", apiary.id, OWNER.id)
        with patch("bkeeper.core.sharing.generate_code", return_value=first.code):
            with pytest.raises(BKeeperError):
                sharing.create_code("apiary", apiary.id, OWNER.id)


# --- Redemption ---


class TestRedeem:
    def test_redeem_grants_access(self, backend, sharing, apiary):
        """Test redeeming adds a grant and counts the use."""
        code = sharing.create_code("apiary", apiary.id, OWNER.id)
        access = redeem_as(backend, FRIEND, code.code)

        assert access.profile_id == FRIEND.id
        assert access.resource_id == apiary.id
        assert len(backend.tables["shared_access"]) == 1
        assert backend.select("sharing_codes", id=code.id)[0]["current_uses"] == 1

        friend = RemoteStore(backend, FRIEND.id)
        assert [a.id for a in friend.list_apiaries_for_user()] == [apiary.id]

    def test_code_is_case_insensitive(self, backend, sharing, apiary):
        code = sharing.create_code("apiary", apiary.id, OWNER.id)
        redeem_as(backend, FRIEND, f"  {code.code.upper()} ")
        assert len(backend.tables["shared_access"]) == 1

    def test_second_redeem_is_already_member(self, backend, sharing, apiary):
        """Test redeeming twice is reported as already a member."""
        code = sharing.create_code("apiary", apiary.id, OWNER.id)
        redeem_as(backend, FRIEND, code.code)
        with pytest.raises(AlreadyMember) as exc:
            redeem_as(backend, FRIEND, code.code)
        assert exc.value.kind == "already_member"
        assert len(backend.tables["shared_access"]) == 1
        assert backend.select("sharing_codes", id=code.id)[0]["current_uses"] == 1

    def test_owner_redeeming_own_code(self, backend, sharing, apiary):
        code = sharing.create_code("apiary", apiary.id, OWNER.id)
        with pytest.raises(AlreadyMember):
            sharing.redeem_code(code.code, OWNER.id)

    def test_unknown_code(self, backend, sharing):
        with pytest.raises(CodeNotFound) as exc:
            redeem_as(backend, FRIEND, "nope0000")
        assert exc.value.kind == "not_found"

    def test_inactive_code_is_not_found(self, backend, sharing, apiary):
        """Test deactivated codes behave as unknown."""
        code = sharing.create_code("apiary", apiary.id, OWNER.id)
        sharing.deactivate_code(code.id, OWNER.id)
        with pytest.raises(CodeNotFound):
            redeem_as(backend, FRIEND, code.code)
        assert backend.tables["shared_access"] == []

    def test_expired_code(self, backend, sharing, apiary):
        """Test an expired code writes nothing."""
        code = sharing.create_code("apiary", apiary.id, OWNER.id, expires_at=NOW - timedelta(minutes=1))
        with pytest.raises(CodeExpired) as exc:
            redeem_as(backend, FRIEND, code.code)
        assert exc.value.kind == "expired"
        assert backend.tables["shared_access"] == []

    def test_not_yet_expired_code(self, backend, sharing, apiary):
        code = sharing.create_code("apiary", apiary.id, OWNER.id, expires_at=NOW + timedelta(days=1))
        redeem_as(backend, FRIEND, code.code)
        assert len(backend.tables["shared_access"]) == 1

    def test_naive_expiry_is_read_as_utc(self, backend, sharing, apiary):
        """Test expiry times without a timezone are read as UTC."""
        later = sharing.create_code(
            "apiary", apiary.id, OWNER.id, expires_at=datetime(2024, 6, 2, 12, 0)
        )
        assert later.expires_at == NOW + timedelta(days=1)
        redeem_as(backend, FRIEND, later.code)

        earlier = sharing.create_code(
            "apiary", apiary.id, OWNER.id, expires_at=datetime(2024, 6, 1, 11, 0)
        )
        with pytest.raises(CodeExpired):
            redeem_as(backend, OTHER, earlier.code)

    def test_expiry_with_offset_is_stored_in_utc(self, sharing, apiary):
        stockholm = timezone(timedelta(hours=2))
        code = sharing.create_code(
            "apiary", apiary.id, OWNER.id, expires_at=datetime(2024, 6, 1, 15, 0, tzinfo=stockholm)
        )
        assert code.expires_at == datetime(2024, 6, 1, 13, 0, tzinfo=timezone.utc)
        assert code.expires_at.tzinfo == timezone.utc
        assert not code.is_expired(NOW)

    def test_exhausted_code(self, backend, sharing, apiary):
        """Test a used-up code writes nothing."""
        code = sharing.create_code("apiary", apiary.id, OWNER.id, max_uses=1)
        redeem_as(backend, FRIEND, code.code)
        with pytest.raises(CodeExhausted) as exc:
            redeem_as(backend, OTHER, code.code)
        assert exc.value.kind == "exhausted"
        assert len(backend.tables["shared_access"]) == 1

    def test_hive_code_shares_single_hive(self, backend, sharing, hive):
        code = sharing.create_code("hive", hive.id, OWNER.id)
        redeem_as(backend, FRIEND, code.code)

        friend = RemoteStore(backend, FRIEND.id)
        assert friend.list_apiaries_for_user() == []
        assert friend.has_access("hive", hive.id, FRIEND.id)

    def test_deleted_resource_is_not_found(self, backend, sharing, owner, apiary, hive):
        """Test a code for a deleted hive is reported as not found."""
        code = sharing.create_code("hive", hive.id, OWNER.id)
        owner.hive_service(apiary.id).delete_hive(hive.id)
        with pytest.raises(CodeNotFound):
            redeem_as(backend, FRIEND, code.code)

    def test_failed_use_count_removes_grant(self, backend, sharing, apiary):
        """Test the grant is removed when counting the use fails."""
        code = sharing.create_code("apiary", apiary.id, OWNER.id)
        backend.sign_in(FRIEND)
        service = SharingService(RemoteStore(backend, FRIEND.id), clock=lambda: NOW)
        with patch.object(backend, "update", side_effect=BKeeperError("update failed")):
            with pytest.raises(BKeeperError):
                service.redeem_code(code.code, FRIEND.id)
        assert backend.tables["shared_access"] == []


class TestDeactivate:
    def test_only_creator_or_owner(self, backend, sharing, apiary):
        code = sharing.create_code("apiary", apiary.id, OWNER.id)
        backend.sign_in(FRIEND)
        with pytest.raises(AuthorizationDenied):
            SharingService(RemoteStore(backend, FRIEND.id)).deactivate_code(code.id, FRIEND.id)

    def test_list_codes(self, sharing, apiary):
        sharing.create_code("apiary", apiary.id, OWNER.id)
        sharing.create_code("apiary", apiary.id, OWNER.id)
        assert len(sharing.list_codes("apiary", apiary.id)) == 2


# --- Invite codes ---


class TestInviteCode:
    def test_join_adds_member(self, backend, apiary):
        backend.sign_in(FRIEND)
        store = RemoteStore(backend, FRIEND.id)
        name = SharingService(store).join_by_invite_code(apiary.invite_code)
        assert name == "Hemgården"
        assert store.role_for(apiary.id) == "member"

    def test_join_twice(self, backend, apiary):
        """Test joining an apiary twice."""
        backend.sign_in(FRIEND)
        service = SharingService(RemoteStore(backend, FRIEND.id))
        service.join_by_invite_code(apiary.invite_code)
        with pytest.raises(AlreadyMember):
            service.join_by_invite_code(apiary.invite_code)
        assert len(backend.select("apiary_members", apiary_id=apiary.id)) == 2

    def test_unknown_invite_code(self, backend, apiary):
        backend.sign_in(FRIEND)
        with pytest.raises(CodeNotFound):
            SharingService(RemoteStore(backend, FRIEND.id)).join_by_invite_code("wrong123")

    def test_blank_invite_code(self, sharing):
        with pytest.raises(CodeNotFound):
            sharing.join_by_invite_code("  ")
