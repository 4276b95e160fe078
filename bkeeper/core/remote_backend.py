"""Table-level access to the collaborative backend.

``RemoteStore`` talks to the server only through ``RemoteBackend``: a
handful of filtered select/insert/update/delete calls, one stored
procedure, and the signed-in profile. ``SupabaseBackend`` is the production
implementation; ``MemoryBackend`` keeps the same tables in process and
applies the same role policy, for tests and offline development.
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from bkeeper.core.errors import AuthorizationDenied, BKeeperError, NetworkFailure
from bkeeper.core.models import MemberRole, Profile, new_remote_id

logger = logging.getLogger(__name__)

TABLES = (
    "profiles",
    "apiaries",
    "apiary_members",
    "hives",
    "inspections",
    "tasks",
    "harvests",
    "sharing_codes",
    "shared_access",
)

JOIN_BY_INVITE_CODE = "join_apiary_by_invite_code"

# PostgreSQL insufficient_privilege, and PostgREST JWT/permission errors
PERMISSION_ERROR_CODES = {"42501", "PGRST301", "PGRST302"}


class RemoteBackend(ABC):
    """Filtered table access on behalf of the signed-in profile.

    Filters are column equality; a list or tuple value means "column is one
    of these values".
    """

    @abstractmethod
    def current_profile(self) -> Optional[Profile]: ...

    @abstractmethod
    def select(self, table: str, **filters) -> list[dict]: ...

    @abstractmethod
    def insert(self, table: str, row: dict) -> dict: ...

    @abstractmethod
    def update(self, table: str, values: dict, **filters) -> list[dict]: ...

    @abstractmethod
    def delete(self, table: str, **filters) -> int: ...

    @abstractmethod
    def rpc(self, name: str, params: dict) -> Any: ...


class SupabaseBackend(RemoteBackend):
    """Backend backed by a Supabase project."""

    def __init__(self, url: str, key: str, client: Optional[Client] = None):
        self.url = url
        self.client = client or create_client(url, key)

    # --- Auth ---

    def sign_in(self, email: str, password: str) -> tuple[str, str]:
        """Sign in with email/password; returns (access_token, refresh_token)."""
        response = self._call(
            lambda: self.client.auth.sign_in_with_password({"email": email, "password": password})
        )
        return response.session.access_token, response.session.refresh_token

    def restore_session(self, access_token: str, refresh_token: str) -> None:
        self._call(lambda: self.client.auth.set_session(access_token, refresh_token))

    def current_profile(self) -> Optional[Profile]:
        session = self._call(self.client.auth.get_session)
        if session is None or session.user is None:
            return None
        rows = self.select("profiles", user_id=session.user.id)
        if not rows:
            return None
        return Profile.model_validate(rows[0])

    # --- Tables ---

    @staticmethod
    def _filtered(query, filters: dict):
        for column, value in filters.items():
            if isinstance(value, (list, tuple, set)):
                query = query.in_(column, list(value))
            else:
                query = query.eq(column, value)
        return query

    def select(self, table: str, **filters) -> list[dict]:
        query = self._filtered(self.client.table(table).select("*"), filters)
        return self._call(query.execute).data or []

    def insert(self, table: str, row: dict) -> dict:
        response = self._call(self.client.table(table).insert(row).execute)
        return response.data[0] if response.data else row

    def update(self, table: str, values: dict, **filters) -> list[dict]:
        query = self._filtered(self.client.table(table).update(values), filters)
        return self._call(query.execute).data or []

    def delete(self, table: str, **filters) -> int:
        query = self._filtered(self.client.table(table).delete(), filters)
        return len(self._call(query.execute).data or [])

    def rpc(self, name: str, params: dict) -> Any:
        return self._call(self.client.rpc(name, params).execute).data

    @staticmethod
    def _call(fn):
        """Run a client call, translating failures into core error kinds."""
        try:
            return fn()
        except APIError as e:
            message = e.message or str(e)
            if e.code in PERMISSION_ERROR_CODES or "row-level security" in message:
                raise AuthorizationDenied(message) from e
            logger.error("Backend rejected request: %s (%s)", message, e.code)
            raise BKeeperError(message) from e
        except httpx.HTTPError as e:
            logger.error("Backend unreachable: %s", e)
            raise NetworkFailure(str(e)) from e


class MemoryBackend(RemoteBackend):
    """In-process tables with the server's role policy applied on writes."""

    def __init__(self, profile: Optional[Profile] = None):
        self.tables: dict[str, list[dict]] = {table: [] for table in TABLES}
        self.profile: Optional[Profile] = None
        if profile is not None:
            self.sign_in(profile)

    def sign_in(self, profile: Profile) -> None:
        if not any(p["id"] == profile.id for p in self.tables["profiles"]):
            self.tables["profiles"].append(profile.model_dump(mode="json"))
        self.profile = profile

    def sign_out(self) -> None:
        self.profile = None

    def current_profile(self) -> Optional[Profile]:
        return self.profile

    # --- Tables ---

    def _table(self, table: str) -> list[dict]:
        if table not in self.tables:
            raise BKeeperError(f"Unknown table {table}")
        return self.tables[table]

    @staticmethod
    def _matches(row: dict, filters: dict) -> bool:
        for column, value in filters.items():
            if isinstance(value, (list, tuple, set)):
                if row.get(column) not in value:
                    return False
            elif row.get(column) != value:
                return False
        return True

    def select(self, table: str, **filters) -> list[dict]:
        return [copy.deepcopy(r) for r in self._table(table) if self._matches(r, filters)]

    def insert(self, table: str, row: dict) -> dict:
        row = copy.deepcopy(row)
        row.setdefault("id", new_remote_id())
        self._authorize("insert", table, row)
        if any(r["id"] == row["id"] for r in self._table(table)):
            raise BKeeperError(f"Duplicate id {row['id']} in {table}")
        self._table(table).append(row)
        return copy.deepcopy(row)

    def update(self, table: str, values: dict, **filters) -> list[dict]:
        rows = [r for r in self._table(table) if self._matches(r, filters)]
        for row in rows:
            self._authorize("update", table, row)
        for row in rows:
            row.update(copy.deepcopy(values))
        return [copy.deepcopy(r) for r in rows]

    def delete(self, table: str, **filters) -> int:
        rows = [r for r in self._table(table) if self._matches(r, filters)]
        for row in rows:
            self._authorize("delete", table, row)
        self.tables[table] = [r for r in self._table(table) if not self._matches(r, filters)]
        return len(rows)

    # --- Stored procedure ---

    def rpc(self, name: str, params: dict) -> Any:
        if name != JOIN_BY_INVITE_CODE:
            raise BKeeperError(f"Unknown procedure {name}")
        profile_id = self._require_profile()
        code = (params.get("invite_code_param") or "").strip()
        apiaries = [a for a in self.tables["apiaries"] if a.get("invite_code") == code]
        if not apiaries:
            return {"success": False, "error": "Ogiltig inbjudningskod", "code": "not_found"}
        apiary = apiaries[0]
        if self._role(profile_id, apiary["id"]) is not None:
            return {
                "success": False,
                "error": "Du är redan medlem i denna bigård",
                "code": "already_member",
            }
        self.tables["apiary_members"].append(
            {
                "id": new_remote_id(),
                "apiary_id": apiary["id"],
                "profile_id": profile_id,
                "role": MemberRole.MEMBER.value,
            }
        )
        return {"success": True, "apiary_name": apiary["name"]}

    # --- Role policy ---

    def _require_profile(self) -> str:
        if self.profile is None:
            raise AuthorizationDenied("Not signed in")
        return self.profile.id

    def _role(self, profile_id: str, apiary_id: str) -> Optional[str]:
        for m in self.tables["apiary_members"]:
            if m["apiary_id"] == apiary_id and m["profile_id"] == profile_id:
                return m["role"]
        for g in self.tables["shared_access"]:
            if (
                g["profile_id"] == profile_id
                and g["resource_type"] == "apiary"
                and g["resource_id"] == apiary_id
            ):
                return g["access_level"]
        return None

    def _hive_access(self, profile_id: str, hive_id: str) -> Optional[str]:
        for hive in self.tables["hives"]:
            if hive["id"] == hive_id:
                role = self._role(profile_id, hive["apiary_id"])
                if role is not None:
                    return role
        for g in self.tables["shared_access"]:
            if (
                g["profile_id"] == profile_id
                and g["resource_type"] == "hive"
                and g["resource_id"] == hive_id
            ):
                return g["access_level"]
        return None

    def _owner_of(self, apiary_id: str) -> Optional[str]:
        for a in self.tables["apiaries"]:
            if a["id"] == apiary_id:
                return a["owner_id"]
        return None

    def _authorize(self, action: str, table: str, row: dict) -> None:
        profile_id = self._require_profile()
        managers = (MemberRole.OWNER.value, MemberRole.ADMIN.value)
        allowed = True

        if table == "profiles":
            allowed = row.get("id") == profile_id
        elif table == "apiaries":
            allowed = row.get("owner_id") == profile_id
        elif table == "apiary_members":
            owner_joining = (
                row.get("profile_id") == profile_id
                and self._owner_of(row.get("apiary_id")) == profile_id
            )
            allowed = owner_joining or self._role(profile_id, row.get("apiary_id")) in managers
        elif table == "hives":
            if action == "update":
                allowed = self._hive_access(profile_id, row["id"]) is not None
            else:
                allowed = self._role(profile_id, row.get("apiary_id")) in managers
        elif table in ("inspections", "harvests"):
            allowed = self._hive_access(profile_id, row.get("hive_id")) is not None
        elif table == "tasks":
            allowed = self._role(profile_id, row.get("apiary_id")) is not None or (
                row.get("hive_id") is not None
                and self._hive_access(profile_id, row["hive_id"]) is not None
            )
        elif table == "sharing_codes":
            if action == "insert":
                allowed = row.get("created_by") == profile_id
        elif table == "shared_access":
            allowed = row.get("profile_id") == profile_id

        if not allowed:
            raise AuthorizationDenied(f"{action} on {table} not permitted for this profile")
