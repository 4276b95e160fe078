"""Sharing codes and apiary invite codes.

A sharing code grants one profile access to an apiary or a single hive.
Codes are minted active and stay active; whether a code has expired or run
out of uses is decided when someone tries to redeem it. The apiary's own
``invite_code`` is a separate, non-expiring path that adds a plain
``member`` row through a server-side procedure.
"""

import logging
import secrets
import string
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Union

from bkeeper.core.errors import (
    AlreadyMember,
    AuthorizationDenied,
    BKeeperError,
    CodeExhausted,
    CodeExpired,
    CodeNotFound,
)
from bkeeper.core.models import ResourceType, SharedAccess, SharingCode, utcnow

if TYPE_CHECKING:
    from bkeeper.core.remote_store import RemoteStore

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_lowercase + string.digits
CODE_LENGTH = 8
MINT_ATTEMPTS = 5


def generate_code(length: int = CODE_LENGTH) -> str:
    """Random lowercase alphanumeric code (8 chars is ~41 bits)."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str) -> str:
    return code.strip().lower()


def format_invite_message(
    resource_name: str,
    code: str,
    resource_type: Union[ResourceType, str] = ResourceType.APIARY,
) -> str:
    """Text handed to the platform share sheet."""
    noun = "bigård" if ResourceType(resource_type) is ResourceType.APIARY else "kupa"
    return (
        f'Gå med i min B.Keeper {noun} "{resource_name}"!\n\n'
        f"Använd delningskoden: {code}\n\n"
        "Ladda ner B.Keeper appen och gå till Inställningar > Gå med i bigård"
    )


class SharingService:
    """Mint and redeem sharing codes against the collaborative store."""

    def __init__(self, store: "RemoteStore", clock=utcnow):
        self.store = store
        self.backend = store.backend
        self.clock = clock

    def create_code(
        self,
        resource_type: Union[ResourceType, str],
        resource_id: str,
        creator_id: str,
        expires_at: Optional[datetime] = None,
        max_uses: Optional[int] = None,
    ) -> SharingCode:
        """Mint a new active code for a resource the creator owns."""
        resource_type = ResourceType(resource_type)
        if not self.store.is_owner(resource_type, resource_id, creator_id):
            raise AuthorizationDenied("Endast ägaren kan dela den här resursen")
        if max_uses is not None and max_uses < 1:
            raise BKeeperError("max_uses must be at least 1")

        for _ in range(MINT_ATTEMPTS):
            code = generate_code()
            if not self.backend.select("sharing_codes", code=code, is_active=True):
                break
        else:
            raise BKeeperError("Kunde inte skapa en unik delningskod")

        sharing_code = SharingCode(
            code=code,
            resource_type=resource_type,
            resource_id=resource_id,
            created_by=creator_id,
            expires_at=expires_at,
            max_uses=max_uses,
        )
        self.backend.insert("sharing_codes", sharing_code.to_remote())
        logger.info("Created sharing code for %s %s", resource_type.value, resource_id)
        return sharing_code

    def find_code(self, code: str) -> SharingCode:
        rows = self.backend.select("sharing_codes", code=normalize_code(code), is_active=True)
        if not rows:
            raise CodeNotFound()
        return SharingCode.model_validate(rows[0])

    def redeem_code(self, code: str, profile_id: str) -> SharedAccess:
        """Grant ``profile_id`` access through a sharing code.

        Raises CodeNotFound, AlreadyMember, CodeExpired or CodeExhausted; on
        any of these nothing is written.
        """
        sharing_code = self.find_code(code)
        resource_type = ResourceType(sharing_code.resource_type)

        if not self.store.resource_exists(resource_type, sharing_code.resource_id):
            raise CodeNotFound("Resursen som koden pekar på finns inte längre")
        if self.store.has_access(resource_type, sharing_code.resource_id, profile_id):
            raise AlreadyMember()
        if sharing_code.is_expired(self.clock()):
            raise CodeExpired()
        if sharing_code.is_exhausted():
            raise CodeExhausted()

        access = SharedAccess(
            sharing_code_id=sharing_code.id,
            profile_id=profile_id,
            resource_type=resource_type,
            resource_id=sharing_code.resource_id,
        )
        self.backend.insert("shared_access", access.to_remote())
        try:
            self.backend.update(
                "sharing_codes", {"current_uses": sharing_code.current_uses + 1}, id=sharing_code.id
            )
        except BKeeperError:
            self.backend.delete("shared_access", id=access.id)
            raise
        logger.info("Profile %s redeemed code for %s %s", profile_id, resource_type.value, access.resource_id)
        return access

    def deactivate_code(self, code_id: str, profile_id: str) -> None:
        rows = self.backend.select("sharing_codes", id=code_id)
        if not rows:
            raise CodeNotFound()
        sharing_code = SharingCode.model_validate(rows[0])
        if sharing_code.created_by != profile_id and not self.store.is_owner(
            ResourceType(sharing_code.resource_type), sharing_code.resource_id, profile_id
        ):
            raise AuthorizationDenied("Endast skaparen kan inaktivera koden")
        self.backend.update("sharing_codes", {"is_active": False}, id=code_id)

    def list_codes(self, resource_type: Union[ResourceType, str], resource_id: str) -> list[SharingCode]:
        rows = self.backend.select(
            "sharing_codes", resource_type=ResourceType(resource_type).value, resource_id=resource_id
        )
        return [SharingCode.model_validate(r) for r in rows]

    def join_by_invite_code(self, invite_code: str) -> str:
        """Join an apiary by its stable invite code; returns the apiary name."""
        if not invite_code or not invite_code.strip():
            raise CodeNotFound("Ange en inbjudningskod")
        data = self.backend.rpc(
            "join_apiary_by_invite_code", {"invite_code_param": invite_code.strip()}
        )
        if data and data.get("success"):
            logger.info("Joined apiary %s by invite code", data.get("apiary_name"))
            return data.get("apiary_name", "")

        error = (data or {}).get("error") or ""
        kind = (data or {}).get("code")
        if kind == "already_member" or "redan" in error.lower():
            raise AlreadyMember(error or AlreadyMember.user_message)
        raise CodeNotFound(error or CodeNotFound.user_message)
