"""Operations every hive store offers, and the input handling they share."""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Optional

from pydantic import ValidationError

from bkeeper.core.analysis import InspectionAnalyzer
from bkeeper.core.errors import RecordValidationError
from bkeeper.core.metrics import estimate_honey_kg, rating_for_status, with_readings
from bkeeper.core.models import (
    Harvest,
    Hive,
    Inspection,
    RecordId,
    Task,
    TaskPriority,
)

logger = logging.getLogger(__name__)

NUCLEUS_MAX_FRAMES = 10
DEFAULT_TOTAL_FRAMES = 20


def build(model, **data):
    """Validate a record, turning schema errors into a ``validation`` failure."""
    try:
        return model(**data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'record'}: {err['msg']}"
            for err in e.errors()
        )
        raise RecordValidationError(problems) from e


def same_name(a: str, b: str) -> bool:
    return a.strip().casefold() == b.strip().casefold()


class HiveService(ABC):
    """A hive collection bound to one store.

    Local and remote stores use different id schemes (integers on the
    device, server-assigned strings remotely); a service only ever sees ids
    from its own store.
    """

    def __init__(self, analyzer: Optional[InspectionAnalyzer] = None):
        self.analyzer = analyzer

    # --- Hives ---

    @abstractmethod
    def list_hives(self) -> list[Hive]: ...

    @abstractmethod
    def get_hive(self, hive_id: RecordId) -> Hive: ...

    @abstractmethod
    def create_hive(
        self,
        name: str,
        location: str,
        total_frames: int = DEFAULT_TOTAL_FRAMES,
        is_nucleus: Optional[bool] = None,
        notes: str = "",
    ) -> Hive: ...

    @abstractmethod
    def rename_hive(self, hive_id: RecordId, new_name: str) -> Hive: ...

    @abstractmethod
    def delete_hive(self, hive_id: RecordId) -> None: ...

    # --- Inspections ---

    @abstractmethod
    def add_inspection(self, hive_id: RecordId, **readings) -> Inspection: ...

    @abstractmethod
    def list_inspections(self, hive_id: Optional[RecordId] = None) -> list[Inspection]: ...

    # --- Tasks and harvests ---

    @abstractmethod
    def add_task(
        self,
        title: str,
        due_date: Optional[date] = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        hive_id: Optional[RecordId] = None,
        notes: str = "",
    ) -> Task: ...

    @abstractmethod
    def list_tasks(self, include_completed: bool = True) -> list[Task]: ...

    @abstractmethod
    def complete_task(self, task_id: RecordId) -> Task: ...

    @abstractmethod
    def add_harvest(
        self,
        hive_id: RecordId,
        honey_frames: float,
        harvest_date: Optional[date] = None,
        notes: str = "",
    ) -> Harvest: ...

    # --- Shared input handling ---

    @staticmethod
    def check_hive_input(
        name: str, location: str, total_frames: int, is_nucleus: Optional[bool]
    ) -> bool:
        """Validate new-hive input and return the resolved nucleus flag."""
        if not name or not name.strip():
            raise RecordValidationError("Ange ett namn för kupan")
        if not location or not location.strip():
            raise RecordValidationError("Ange en plats för kupan")
        if total_frames is None or total_frames <= 0:
            raise RecordValidationError("Antal ramar måste vara större än noll")
        if total_frames <= NUCLEUS_MAX_FRAMES:
            if is_nucleus is None:
                raise RecordValidationError("Är detta en avläggare? Ange is_nucleus för små kupor")
            return is_nucleus
        return False

    def prepare_inspection(self, hive: Hive, record_id: RecordId, readings: dict) -> Inspection:
        """Validate readings, derive mite and rating fields, attach commentary."""
        now = datetime.now()
        data = dict(readings)
        data.setdefault("date", now.date())
        data.setdefault("time", now.strftime("%H:%M"))
        if data.get("brood_frames") is None or data.get("total_frames") is None:
            raise RecordValidationError("Ange antal yngel- och totalramar")

        inspection = build(Inspection, id=record_id, hive_id=hive.id, hive=hive.name, **data)
        inspection = with_readings(inspection)

        if self.analyzer is not None:
            analysis = self.analyzer.analyze(inspection, hive.name)
            update = {
                "ai_analysis": analysis.model_dump(mode="json"),
                "findings": list(analysis.observations),
            }
            if self.analyzer.enabled:
                update["rating"] = rating_for_status(analysis.status)
            inspection = inspection.model_copy(update=update)
        return inspection

    @staticmethod
    def prepare_harvest(
        hive: Hive, record_id: RecordId, honey_frames: float, harvest_date: Optional[date], notes: str
    ) -> Harvest:
        estimated = estimate_honey_kg(honey_frames)
        if estimated is None:
            raise RecordValidationError("Ange antal honungsramar")
        return build(
            Harvest,
            id=record_id,
            apiary_id=hive.apiary_id,
            hive_id=hive.id,
            hive=hive.name,
            date=harvest_date or date.today(),
            honey_frames=honey_frames,
            estimated_kg=estimated,
            notes=notes.strip(),
        )

    @staticmethod
    def add_honey(hive: Hive, kilograms: float) -> str:
        """Running honey total for the hive's cached ``honey`` label."""
        current = 0.0
        if hive.honey:
            try:
                current = float(hive.honey.split()[0].replace(",", "."))
            except ValueError:
                logger.debug("Unparseable honey label %r on hive %s", hive.honey, hive.id)
        total = current + kilograms
        return f"{total:g} kg"
