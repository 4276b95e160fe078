"""Collaborative store: apiaries, membership, and hive operations scoped to them."""

import logging
from datetime import date, datetime, timezone
from typing import Optional, Union

from bkeeper.core.analysis import InspectionAnalyzer
from bkeeper.core.errors import AuthorizationDenied, BKeeperError, NotFound, RecordValidationError
from bkeeper.core.hive_service import DEFAULT_TOTAL_FRAMES, HiveService, build, same_name
from bkeeper.core.metrics import refresh_hive
from bkeeper.core.models import (
    AccessLevel,
    Apiary,
    ApiaryMember,
    Harvest,
    Hive,
    Inspection,
    MemberRole,
    ResourceType,
    Task,
    TaskPriority,
    new_remote_id,
)
from bkeeper.core.remote_backend import RemoteBackend
from bkeeper.core.sharing import generate_code

logger = logging.getLogger(__name__)

MANAGER_ROLES = (MemberRole.OWNER, MemberRole.ADMIN)

# Hive columns written as a side effect of recording an inspection
DERIVED_HIVE_COLUMNS = (
    "status",
    "population",
    "varroa",
    "frames",
    "last_inspection",
    "has_queen",
    "queen_marked",
    "queen_color",
    "queen_wing_clipped",
    "queen_added_date",
    "is_wintered",
)

# Rows removed together with their hive
HIVE_HISTORY_TABLES = ("inspections", "harvests")


def _strongest(levels) -> Optional[MemberRole]:
    roles = [MemberRole(level) for level in levels]
    if not roles:
        return None
    return MemberRole.ADMIN if MemberRole.ADMIN in roles else MemberRole.MEMBER


class RemoteStore:
    """Membership-aware queries against the collaborative backend."""

    def __init__(self, backend: RemoteBackend, profile_id: str):
        self.backend = backend
        self.profile_id = profile_id

    # --- Apiaries ---

    def create_apiary(
        self, name: str, description: Optional[str] = None, location: Optional[str] = None
    ) -> Apiary:
        """Create an apiary owned by the current profile."""
        if not name or not name.strip():
            raise RecordValidationError("Ange ett namn för bigården")
        apiary = Apiary(
            name=name.strip(),
            description=(description or "").strip() or None,
            location=(location or "").strip() or None,
            owner_id=self.profile_id,
            invite_code=generate_code(),
            role=MemberRole.OWNER,
        )
        self.backend.insert("apiaries", apiary.to_remote())
        owner = ApiaryMember(apiary_id=apiary.id, profile_id=self.profile_id, role=MemberRole.OWNER)
        try:
            self.backend.insert("apiary_members", owner.to_remote())
        except BKeeperError:
            self.backend.delete("apiaries", id=apiary.id)
            raise
        logger.info("Created apiary %s (%s)", apiary.name, apiary.id)
        return apiary

    def get_apiary(self, apiary_id: str) -> Apiary:
        rows = self.backend.select("apiaries", id=apiary_id)
        if not rows:
            raise NotFound(f"Bigård {apiary_id} hittades inte")
        return Apiary.model_validate(rows[0])

    def list_apiaries_for_user(self, profile_id: Optional[str] = None) -> list[Apiary]:
        """Apiaries the profile belongs to directly or through shared access.

        Each apiary carries the profile's role; a direct membership wins over
        a shared grant for the same apiary.
        """
        profile_id = profile_id or self.profile_id
        roles: dict[str, MemberRole] = {}
        for m in self.backend.select("apiary_members", profile_id=profile_id):
            roles[m["apiary_id"]] = MemberRole(m["role"])

        granted: dict[str, list] = {}
        for g in self.backend.select("shared_access", profile_id=profile_id, resource_type="apiary"):
            granted.setdefault(g["resource_id"], []).append(g["access_level"])
        for apiary_id, levels in granted.items():
            roles.setdefault(apiary_id, _strongest(levels))

        if not roles:
            return []
        apiaries = [Apiary.model_validate(row) for row in self.backend.select("apiaries", id=list(roles))]
        for apiary in apiaries:
            apiary.role = roles[apiary.id]
        apiaries.sort(key=lambda a: a.created_at)
        return apiaries

    def list_members(self, apiary_id: str) -> list[ApiaryMember]:
        return [ApiaryMember.model_validate(r) for r in self.backend.select("apiary_members", apiary_id=apiary_id)]

    def role_for(self, apiary_id: str, profile_id: Optional[str] = None) -> Optional[MemberRole]:
        profile_id = profile_id or self.profile_id
        rows = self.backend.select("apiary_members", apiary_id=apiary_id, profile_id=profile_id)
        if rows:
            return MemberRole(rows[0]["role"])
        grants = self.backend.select(
            "shared_access", profile_id=profile_id, resource_type="apiary", resource_id=apiary_id
        )
        return _strongest(g["access_level"] for g in grants)

    def hive_role(self, hive: Hive, profile_id: Optional[str] = None) -> Optional[MemberRole]:
        """Role on a hive: the apiary role, else a hive-level grant."""
        profile_id = profile_id or self.profile_id
        role = self.role_for(hive.apiary_id, profile_id)
        if role is not None:
            return role
        grants = self.backend.select(
            "shared_access", profile_id=profile_id, resource_type="hive", resource_id=str(hive.id)
        )
        return _strongest(g["access_level"] for g in grants)

    # --- Resource checks used by sharing ---

    def fetch_hive(self, hive_id: str) -> Hive:
        rows = self.backend.select("hives", id=hive_id)
        if not rows:
            raise NotFound(f"Kupa {hive_id} hittades inte")
        return Hive.from_remote(rows[0])

    def resource_exists(self, resource_type: Union[ResourceType, str], resource_id: str) -> bool:
        table = "apiaries" if ResourceType(resource_type) is ResourceType.APIARY else "hives"
        return bool(self.backend.select(table, id=resource_id))

    def is_owner(self, resource_type: Union[ResourceType, str], resource_id: str, profile_id: str) -> bool:
        if ResourceType(resource_type) is ResourceType.APIARY:
            apiary_id = resource_id
        else:
            rows = self.backend.select("hives", id=resource_id)
            if not rows:
                return False
            apiary_id = rows[0]["apiary_id"]
        rows = self.backend.select("apiaries", id=apiary_id)
        return bool(rows) and rows[0]["owner_id"] == profile_id

    def has_access(self, resource_type: Union[ResourceType, str], resource_id: str, profile_id: str) -> bool:
        if ResourceType(resource_type) is ResourceType.APIARY:
            return self.role_for(resource_id, profile_id) is not None
        return self.hive_role(self.fetch_hive(resource_id), profile_id) is not None

    # --- Hives ---

    def list_hives_for_apiary(self, apiary_id: str, profile_id: Optional[str] = None) -> list[Hive]:
        """Hives of an apiary plus hives shared individually with the profile.

        Individually shared hives are tagged ``is_shared``; hives reached
        through the apiary itself never are.
        """
        profile_id = profile_id or self.profile_id
        hives = [Hive.from_remote(r) for r in self.backend.select("hives", apiary_id=apiary_id)]
        direct_ids = {h.id for h in hives}

        shared_ids = [
            g["resource_id"]
            for g in self.backend.select("shared_access", profile_id=profile_id, resource_type="hive")
            if g["resource_id"] not in direct_ids
        ]
        if shared_ids:
            for row in self.backend.select("hives", id=shared_ids):
                hives.append(Hive.from_remote(row).model_copy(update={"is_shared": True}))
        return hives

    def hive_service(self, apiary_id: str, analyzer: Optional[InspectionAnalyzer] = None) -> "RemoteHiveService":
        return RemoteHiveService(self, apiary_id, analyzer)


class RemoteHiveService(HiveService):
    """Hive operations for one selected apiary in the collaborative store."""

    def __init__(self, store: RemoteStore, apiary_id: str, analyzer: Optional[InspectionAnalyzer] = None):
        super().__init__(analyzer)
        self.store = store
        self.backend = store.backend
        self.apiary_id = apiary_id

    def _require_role(self, role: Optional[MemberRole], allowed=tuple(MemberRole), action: str = "") -> MemberRole:
        if role is None or role not in allowed:
            raise AuthorizationDenied(f"Din roll tillåter inte: {action}" if action else "")
        return role

    def _accessible_hive(self, hive_id: str, allowed=tuple(MemberRole), action: str = "") -> Hive:
        hive = self.store.fetch_hive(hive_id)
        self._require_role(self.store.hive_role(hive), allowed, action)
        return hive

    # --- Hives ---

    def list_hives(self) -> list[Hive]:
        return self.store.list_hives_for_apiary(self.apiary_id)

    def get_hive(self, hive_id: str) -> Hive:
        hive = self._accessible_hive(hive_id, action="visa kupa")
        if hive.apiary_id != self.apiary_id:
            hive = hive.model_copy(update={"is_shared": self.store.role_for(hive.apiary_id) is None})
        return hive

    def create_hive(
        self,
        name: str,
        location: str,
        total_frames: int = DEFAULT_TOTAL_FRAMES,
        is_nucleus: Optional[bool] = None,
        notes: str = "",
    ) -> Hive:
        nucleus = self.check_hive_input(name, location, total_frames, is_nucleus)
        self._require_role(self.store.role_for(self.apiary_id), MANAGER_ROLES, "skapa kupa")
        existing = self.backend.select("hives", apiary_id=self.apiary_id)
        if any(same_name(row["name"], name) for row in existing):
            raise RecordValidationError(f"Det finns redan en kupa som heter {name.strip()}")
        hive = build(
            Hive,
            id=new_remote_id(),
            apiary_id=self.apiary_id,
            name=name,
            location=location.strip(),
            frames=f"0/{total_frames}",
            is_nucleus=nucleus,
            notes=notes.strip(),
        )
        self.backend.insert("hives", hive.to_remote())
        logger.info("Created hive %s in apiary %s", hive.name, self.apiary_id)
        return hive

    def rename_hive(self, hive_id: str, new_name: str) -> Hive:
        hive = self._accessible_hive(hive_id, MANAGER_ROLES, "byta namn på kupa")
        siblings = self.backend.select("hives", apiary_id=hive.apiary_id)
        if any(same_name(row["name"], new_name) and row["id"] != hive_id for row in siblings):
            raise RecordValidationError(f"Det finns redan en kupa som heter {new_name.strip()}")
        renamed = build(Hive, **{**hive.model_dump(), "name": new_name})
        self.backend.update("hives", {"name": renamed.name}, id=hive_id)
        return renamed

    def delete_hive(self, hive_id: str) -> None:
        """Delete a hive together with its inspections and harvests.

        Tasks for the hive stay in the apiary with the hive link cleared.
        The hive row goes last, after its history. If any step fails the
        removed rows and task links are put back before the error is raised.
        """
        hive = self.store.fetch_hive(hive_id)
        self._require_role(self.store.role_for(hive.apiary_id), MANAGER_ROLES, "ta bort kupa")
        history = {table: self.backend.select(table, hive_id=hive_id) for table in HIVE_HISTORY_TABLES}
        task_ids = [row["id"] for row in self.backend.select("tasks", hive_id=hive_id)]
        try:
            if task_ids:
                self.backend.update("tasks", {"hive_id": None}, id=task_ids)
            for table in HIVE_HISTORY_TABLES:
                self.backend.delete(table, hive_id=hive_id)
            self.backend.delete("hives", id=hive_id)
        except BKeeperError:
            logger.error("Deleting hive %s failed, restoring its records", hive_id)
            self._restore_history(hive_id, history, task_ids)
            raise
        logger.info("Deleted hive %s", hive_id)

    def _restore_history(self, hive_id: str, history: dict, task_ids: list) -> None:
        for table, rows in history.items():
            remaining = {row["id"] for row in self.backend.select(table, hive_id=hive_id)}
            for row in rows:
                if row["id"] not in remaining:
                    self.backend.insert(table, row)
        if task_ids:
            self.backend.update("tasks", {"hive_id": hive_id}, id=task_ids)

    # --- Inspections ---

    def add_inspection(self, hive_id: str, **readings) -> Inspection:
        """Insert the inspection, then write the hive's derived columns.

        If the hive update fails the inspection row is removed again, so a
        failure leaves neither table changed.
        """
        hive = self._accessible_hive(hive_id, action="inspektera kupa")
        readings.setdefault("inspector_id", self.store.profile_id)
        inspection = self.prepare_inspection(hive, new_remote_id(), readings)

        self.backend.insert("inspections", inspection.to_remote())
        refreshed = refresh_hive(hive, inspection).to_remote()
        values = {column: refreshed[column] for column in DERIVED_HIVE_COLUMNS}
        try:
            self.backend.update("hives", values, id=hive_id)
        except BKeeperError:
            logger.error("Hive update failed, removing inspection %s", inspection.id)
            self.backend.delete("inspections", id=inspection.id)
            raise
        return inspection

    def list_inspections(self, hive_id: Optional[str] = None) -> list[Inspection]:
        hives = {h.id: h for h in self.list_hives()}
        if hive_id is not None:
            if hive_id not in hives:
                self._accessible_hive(hive_id, action="visa inspektioner")
            rows = self.backend.select("inspections", hive_id=hive_id)
        elif hives:
            rows = self.backend.select("inspections", hive_id=list(hives))
        else:
            rows = []

        inspections = []
        for row in rows:
            inspection = Inspection.from_remote(row)
            if inspection.hive_id in hives:
                inspection = inspection.model_copy(update={"hive": hives[inspection.hive_id].name})
            inspections.append(inspection)
        inspections.sort(key=lambda i: (i.date, i.created_at), reverse=True)
        return inspections

    # --- Tasks ---

    def add_task(
        self,
        title: str,
        due_date: Optional[date] = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        hive_id: Optional[str] = None,
        notes: str = "",
    ) -> Task:
        if due_date is None:
            raise RecordValidationError("Ange ett datum")
        if hive_id is not None:
            self._accessible_hive(hive_id, action="skapa uppgift")
        else:
            self._require_role(self.store.role_for(self.apiary_id), action="skapa uppgift")
        task = build(
            Task,
            id=new_remote_id(),
            apiary_id=self.apiary_id,
            hive_id=hive_id,
            title=title,
            due_date=due_date,
            priority=priority,
            notes=notes.strip(),
        )
        row = task.to_remote()
        row["creator_id"] = self.store.profile_id
        self.backend.insert("tasks", row)
        return task

    def list_tasks(self, include_completed: bool = True) -> list[Task]:
        tasks = [Task.from_remote(r) for r in self.backend.select("tasks", apiary_id=self.apiary_id)]
        if not include_completed:
            tasks = [t for t in tasks if not t.completed]
        tasks.sort(key=lambda t: (t.completed, t.due_date or date.max))
        return tasks

    def complete_task(self, task_id: str) -> Task:
        rows = self.backend.select("tasks", id=task_id, apiary_id=self.apiary_id)
        if not rows:
            raise NotFound(f"Uppgift {task_id} hittades inte")
        self._require_role(self.store.role_for(self.apiary_id), action="slutföra uppgift")
        completed_at = datetime.now(timezone.utc)
        self.backend.update(
            "tasks", {"status": "completed", "completed_at": completed_at.isoformat()}, id=task_id
        )
        return Task.from_remote(rows[0]).model_copy(update={"completed": True, "completed_at": completed_at})

    # --- Harvests ---

    def add_harvest(
        self,
        hive_id: str,
        honey_frames: float,
        harvest_date: Optional[date] = None,
        notes: str = "",
    ) -> Harvest:
        hive = self._accessible_hive(hive_id, action="registrera skattning")
        harvest = self.prepare_harvest(hive, new_remote_id(), honey_frames, harvest_date, notes)
        self.backend.insert("harvests", harvest.to_remote())
        try:
            self.backend.update("hives", {"honey": self.add_honey(hive, harvest.estimated_kg)}, id=hive_id)
        except BKeeperError:
            self.backend.delete("harvests", id=harvest.id)
            raise
        return harvest
