"""Hive operations on the device-local store."""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from pydantic import ValidationError

from bkeeper.core.analysis import InspectionAnalyzer
from bkeeper.core.errors import NotFound, RecordValidationError
from bkeeper.core.hive_service import DEFAULT_TOTAL_FRAMES, HiveService, build, same_name
from bkeeper.core.local_store import HARVESTS, HIVES, INSPECTIONS, TASKS, LocalStore
from bkeeper.core.metrics import refresh_hive
from bkeeper.core.models import (
    LOCAL_APIARY,
    SCHEMA_VERSION,
    Harvest,
    Hive,
    Inspection,
    RecordId,
    Task,
    TaskPriority,
    new_local_id,
)

logger = logging.getLogger(__name__)

RELATIVE_DAYS = {"idag": 0, "imorgon": 1, "övermorgon": 2}


def upgrade_record(collection: str, raw: dict, hive_ids_by_name: dict) -> Optional[dict]:
    """Bring a stored record up to the current schema version.

    Returns None when the record cannot be upgraded (for example an
    inspection whose hive no longer exists).
    """
    if not isinstance(raw, dict):
        return None
    version = raw.get("schemaVersion", 1)
    if version >= SCHEMA_VERSION:
        return raw

    record = dict(raw)
    if collection in (INSPECTIONS, HARVESTS) and record.get("hiveId") is None:
        # Version 1 linked these to hives by name only
        hive_id = hive_ids_by_name.get(record.get("hive"))
        if hive_id is None:
            return None
        record["hiveId"] = hive_id
    if collection == TASKS:
        _upgrade_task_date(record)
    if collection in (HIVES, TASKS, HARVESTS):
        record.setdefault("apiaryId", LOCAL_APIARY)
    record["schemaVersion"] = SCHEMA_VERSION
    return record


def _created_on(record: dict) -> Optional[date]:
    created = record.get("createdAt")
    if isinstance(created, str):
        try:
            return date.fromisoformat(created[:10])
        except ValueError:
            pass
    # Local ids are creation timestamps in milliseconds
    if isinstance(record.get("id"), int):
        return datetime.fromtimestamp(record["id"] / 1000, timezone.utc).date()
    return None


def _upgrade_task_date(record: dict) -> None:
    """Version 1 tasks kept the due date as whatever the user typed.

    ISO dates are kept. "Idag", "Imorgon" and "Övermorgon" are resolved
    against the day the task was created. Any other text is kept as
    ``dueText`` with no due date.
    """
    raw = record.get("date")
    if not isinstance(raw, str) or not raw.strip():
        return
    text = raw.strip()
    try:
        date.fromisoformat(text[:10])
        return
    except ValueError:
        pass

    created = _created_on(record)
    offset = RELATIVE_DAYS.get(text.lower().replace(" ", ""))
    if offset is not None and created is not None:
        record["date"] = (created + timedelta(days=offset)).isoformat()
        return
    record["date"] = None
    record["dueText"] = text


class LocalRepository(HiveService):
    """Hives, inspections, tasks and harvests kept on this device."""

    MODELS = {HIVES: Hive, INSPECTIONS: Inspection, TASKS: Task, HARVESTS: Harvest}

    def __init__(self, store: LocalStore, analyzer: Optional[InspectionAnalyzer] = None):
        super().__init__(analyzer)
        self.store = store

    # --- Loading ---

    def _load(self, collection: str) -> list:
        """Load, upgrade and validate a collection.

        Upgraded records are written back; records that fail validation are
        quarantined next to the collection file.
        """
        model = self.MODELS[collection]
        with self.store.transaction():
            raw_records = self.store.load(collection)
            hive_ids_by_name = {}
            if collection in (INSPECTIONS, HARVESTS) and any(
                isinstance(r, dict) and r.get("schemaVersion", 1) < SCHEMA_VERSION
                for r in raw_records
            ):
                hive_ids_by_name = {h.name: h.id for h in self._load(HIVES)}

            records, rejected, changed = [], [], False
            for raw in raw_records:
                upgraded = upgrade_record(collection, raw, hive_ids_by_name)
                if upgraded is None:
                    rejected.append(raw)
                    continue
                try:
                    records.append(model.from_local(upgraded))
                except ValidationError as e:
                    logger.warning("Rejected %s record %r: %s", collection, raw.get("id"), e)
                    rejected.append(raw)
                    continue
                if upgraded is not raw:
                    changed = True

            if rejected:
                self.store.quarantine(collection, rejected)
            if rejected or changed:
                self.store.save(collection, [r.to_local() for r in records])
        return records

    def _save(self, collection: str, records: list) -> None:
        self.store.save(collection, [r.to_local() for r in records])

    @staticmethod
    def _find(records: list, record_id: RecordId, what: str):
        for record in records:
            if record.id == record_id:
                return record
        raise NotFound(f"{what} {record_id} hittades inte")

    # --- Hives ---

    def list_hives(self) -> list[Hive]:
        return self._load(HIVES)

    def get_hive(self, hive_id: RecordId) -> Hive:
        return self._find(self._load(HIVES), hive_id, "Kupa")

    def find_hive_by_name(self, name: str) -> Optional[Hive]:
        for hive in self._load(HIVES):
            if same_name(hive.name, name):
                return hive
        return None

    def create_hive(
        self,
        name: str,
        location: str,
        total_frames: int = DEFAULT_TOTAL_FRAMES,
        is_nucleus: Optional[bool] = None,
        notes: str = "",
    ) -> Hive:
        nucleus = self.check_hive_input(name, location, total_frames, is_nucleus)
        with self.store.transaction():
            hives = self._load(HIVES)
            if any(same_name(h.name, name) for h in hives):
                raise RecordValidationError(f"Det finns redan en kupa som heter {name.strip()}")
            hive = build(
                Hive,
                id=new_local_id(h.id for h in hives),
                apiary_id=LOCAL_APIARY,
                name=name,
                location=location.strip(),
                frames=f"0/{total_frames}",
                is_nucleus=nucleus,
                notes=notes.strip(),
            )
            hives.append(hive)
            self._save(HIVES, hives)
        logger.info("Created local hive %s (%s)", hive.name, hive.id)
        return hive

    def rename_hive(self, hive_id: RecordId, new_name: str) -> Hive:
        with self.store.transaction():
            hives = self._load(HIVES)
            hive = self._find(hives, hive_id, "Kupa")
            if any(same_name(h.name, new_name) and h.id != hive_id for h in hives):
                raise RecordValidationError(f"Det finns redan en kupa som heter {new_name.strip()}")
            renamed = build(Hive, **{**hive.model_dump(), "name": new_name})
            self._save(HIVES, [renamed if h.id == hive_id else h for h in hives])

            # Linked records follow the hive id; only their display name changes
            for collection in (INSPECTIONS, HARVESTS):
                records = self._load(collection)
                self._save(
                    collection,
                    [
                        r.model_copy(update={"hive": renamed.name}) if r.hive_id == hive_id else r
                        for r in records
                    ],
                )
        return renamed

    def delete_hive(self, hive_id: RecordId) -> None:
        """Delete a hive together with its inspections and harvests."""
        with self.store.transaction():
            hives = self._load(HIVES)
            self._find(hives, hive_id, "Kupa")
            self._save(HIVES, [h for h in hives if h.id != hive_id])

            for collection in (INSPECTIONS, HARVESTS):
                records = self._load(collection)
                self._save(collection, [r for r in records if r.hive_id != hive_id])

            tasks = self._load(TASKS)
            if any(t.hive_id == hive_id for t in tasks):
                self._save(
                    TASKS,
                    [t.model_copy(update={"hive_id": None}) if t.hive_id == hive_id else t for t in tasks],
                )
        logger.info("Deleted local hive %s", hive_id)

    # --- Inspections ---

    def add_inspection(self, hive_id: RecordId, **readings) -> Inspection:
        """Record an inspection and refresh the hive's cached health fields.

        Both collections are written inside one store transaction.
        """
        hive = self.get_hive(hive_id)
        # Placeholder id; the real one is assigned under the lock
        inspection = self.prepare_inspection(hive, 0, readings)

        with self.store.transaction():
            hives = self._load(HIVES)
            hive = self._find(hives, hive_id, "Kupa")
            inspections = self._load(INSPECTIONS)
            inspection = inspection.model_copy(
                update={"id": new_local_id(i.id for i in inspections), "hive": hive.name}
            )
            inspections.append(inspection)
            self._save(INSPECTIONS, inspections)

            refreshed = refresh_hive(hive, inspection)
            self._save(HIVES, [refreshed if h.id == hive_id else h for h in hives])
        logger.info("Recorded inspection %s for hive %s", inspection.id, hive.name)
        return inspection

    def list_inspections(self, hive_id: Optional[RecordId] = None) -> list[Inspection]:
        inspections = self._load(INSPECTIONS)
        if hive_id is not None:
            inspections = [i for i in inspections if i.hive_id == hive_id]
        inspections.sort(key=lambda i: (i.date, i.created_at), reverse=True)
        return inspections

    # --- Tasks ---

    def add_task(
        self,
        title: str,
        due_date: Optional[date] = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        hive_id: Optional[RecordId] = None,
        notes: str = "",
    ) -> Task:
        if due_date is None:
            raise RecordValidationError("Ange ett datum")
        with self.store.transaction():
            if hive_id is not None:
                self._find(self._load(HIVES), hive_id, "Kupa")
            tasks = self._load(TASKS)
            task = build(
                Task,
                id=new_local_id(t.id for t in tasks),
                hive_id=hive_id,
                title=title,
                due_date=due_date,
                priority=priority,
                notes=notes.strip(),
            )
            tasks.append(task)
            self._save(TASKS, tasks)
        return task

    def list_tasks(self, include_completed: bool = True) -> list[Task]:
        tasks = self._load(TASKS)
        if not include_completed:
            tasks = [t for t in tasks if not t.completed]
        tasks.sort(key=lambda t: (t.completed, t.due_date or date.max))
        return tasks

    def complete_task(self, task_id: RecordId) -> Task:
        with self.store.transaction():
            tasks = self._load(TASKS)
            task = self._find(tasks, task_id, "Uppgift")
            done = task.model_copy(
                update={"completed": True, "completed_at": datetime.now(timezone.utc)}
            )
            self._save(TASKS, [done if t.id == task_id else t for t in tasks])
        return done

    # --- Harvests ---

    def add_harvest(
        self,
        hive_id: RecordId,
        honey_frames: float,
        harvest_date: Optional[date] = None,
        notes: str = "",
    ) -> Harvest:
        with self.store.transaction():
            hives = self._load(HIVES)
            hive = self._find(hives, hive_id, "Kupa")
            harvests = self._load(HARVESTS)
            harvest = self.prepare_harvest(
                hive, new_local_id(h.id for h in harvests), honey_frames, harvest_date, notes
            )
            harvests.append(harvest)
            self._save(HARVESTS, harvests)

            updated = hive.model_copy(update={"honey": self.add_honey(hive, harvest.estimated_kg)})
            self._save(HIVES, [updated if h.id == hive_id else h for h in hives])
        return harvest

    def list_harvests(self, hive_id: Optional[RecordId] = None) -> list[Harvest]:
        harvests = self._load(HARVESTS)
        if hive_id is not None:
            harvests = [h for h in harvests if h.hive_id == hive_id]
        return harvests
