"""Example data written on the first run of the local store."""

import logging

from bkeeper.core.local_store import HIVES, INSPECTIONS, LocalStore
from bkeeper.core.models import SCHEMA_VERSION

logger = logging.getLogger(__name__)

SEED_HIVES = [
    {
        "schemaVersion": SCHEMA_VERSION,
        "id": 1,
        "apiaryId": "local",
        "name": "Kupa Alpha",
        "location": "Norra ängen",
        "lastInspection": "2024-01-15",
        "status": "excellent",
        "population": "Stark",
        "varroa": "1.2/dag",
        "honey": "25 kg",
        "frames": "18/20",
        "hasQueen": True,
        "queenMarked": True,
        "queenColor": "yellow",
        "queenWingClipped": False,
        "queenAddedDate": "2024-01-01",
        "isNucleus": False,
        "isWintered": False,
        "notes": "",
        "createdAt": "2024-01-01T00:00:00Z",
    },
    {
        "schemaVersion": SCHEMA_VERSION,
        "id": 2,
        "apiaryId": "local",
        "name": "Kupa Beta",
        "location": "Södra skogen",
        "lastInspection": "2024-01-12",
        "status": "good",
        "population": "Medel",
        "varroa": "3.2/dag",
        "honey": "18 kg",
        "frames": "14/20",
        "hasQueen": True,
        "queenMarked": False,
        "queenColor": None,
        "queenWingClipped": True,
        "queenAddedDate": "2023-12-15",
        "isNucleus": False,
        "isWintered": False,
        "notes": "",
        "createdAt": "2023-12-15T00:00:00Z",
    },
    {
        "schemaVersion": SCHEMA_VERSION,
        "id": 3,
        "apiaryId": "local",
        "name": "Kupa Gamma",
        "location": "Östra fältet",
        "lastInspection": "2024-01-10",
        "status": "warning",
        "population": "Svag",
        "varroa": "6.8/dag",
        "honey": "8 kg",
        "frames": "10/20",
        "hasQueen": False,
        "queenMarked": None,
        "queenColor": None,
        "queenWingClipped": None,
        "queenAddedDate": None,
        "isNucleus": False,
        "isWintered": False,
        "notes": "",
        "createdAt": "2023-11-01T00:00:00Z",
    },
]

SEED_INSPECTIONS = [
    {
        "schemaVersion": SCHEMA_VERSION,
        "id": 1,
        "hiveId": 1,
        "hive": "Kupa Alpha",
        "date": "2024-01-15",
        "time": "14:30",
        "weather": "Soligt, 18°C",
        "duration": "45 min",
        "rating": 5,
        "notes": "Mycket aktiv samhälle. Drottningen sedd och märkt. God byggtakt på nya ramar.",
        "findings": ["Drottning sedd", "Yngel i alla stadier", "Varroa: 1.2/dag (lågt)"],
        "createdAt": "2024-01-15T14:30:00Z",
    },
    {
        "schemaVersion": SCHEMA_VERSION,
        "id": 2,
        "hiveId": 2,
        "hive": "Kupa Beta",
        "date": "2024-01-12",
        "time": "10:15",
        "weather": "Molnigt, 15°C",
        "duration": "30 min",
        "rating": 4,
        "notes": "Normalt beteende. Lite varroamiter upptäckta på botten. Planera behandling.",
        "findings": ["Varroa: 3.2/dag (normalt)", "Honung i övre magasin", "Behöver mer plats"],
        "createdAt": "2024-01-12T10:15:00Z",
    },
    {
        "schemaVersion": SCHEMA_VERSION,
        "id": 3,
        "hiveId": 3,
        "hive": "Kupa Gamma",
        "date": "2024-01-10",
        "time": "16:00",
        "weather": "Regnigt, 12°C",
        "duration": "20 min",
        "rating": 2,
        "notes": "Svag aktivitet. Drottningen inte sedd. Misstänker drottninglöshet.",
        "findings": ["Drottning ej sedd", "Få bin", "Varroa: 6.8/dag (högt)"],
        "createdAt": "2024-01-10T16:00:00Z",
    },
]


def seed_if_empty(store: LocalStore) -> bool:
    """Write the example hives and inspections on a device's first run.

    Only collections whose file has never been created are seeded, so a user
    who deletes every hive does not get the examples back.
    """
    seeded = False
    with store.transaction():
        if not store.exists(HIVES):
            store.save(HIVES, [dict(h) for h in SEED_HIVES])
            seeded = True
            # Example inspections only make sense next to the example hives
            if not store.exists(INSPECTIONS):
                store.save(INSPECTIONS, [dict(i) for i in SEED_INSPECTIONS])
    if seeded:
        logger.info("Seeded local store in %s with example hives", store.data_dir)
    return seeded
