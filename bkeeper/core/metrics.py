"""Derived hive metrics computed from inspection readings.

Everything in this module is pure: the same inputs always produce the same
labels, and missing optional readings produce ``None`` ("not computed")
instead of raising.
"""

import math
from datetime import date
from typing import Iterable, Optional, Union

from bkeeper.core.models import (
    Hive,
    HiveStatus,
    Inspection,
    InspectionAnalysis,
    MiteLevel,
    Population,
    Temperament,
)

LOW_MITE_MAX = 2.0
NORMAL_MITE_MAX = 5.0
STRONG_BROOD_MIN = 8
MEDIUM_BROOD_MIN = 5
HONEY_KG_PER_FRAME = 2.0

OBSERVATION_BROOD_PATTERN = "brood-pattern"
OBSERVATION_BROOD_DISEASE = "brood-disease"
OBSERVATION_POP_STRONG = "pop-strong"
OBSERVATION_POP_WEAK = "pop-weak"


def mites_per_day(count: Optional[float], days: Optional[float]) -> Optional[float]:
    """Natural mite drop per day, or None when it cannot be computed."""
    if count is None or days is None:
        return None
    if count < 0 or days <= 0:
        return None
    return count / days


def classify_mite_level(per_day: Optional[float]) -> Optional[MiteLevel]:
    """Low up to 2 mites a day, normal up to 5, high above."""
    if per_day is None:
        return None
    if per_day <= LOW_MITE_MAX:
        return MiteLevel.LOW
    if per_day <= NORMAL_MITE_MAX:
        return MiteLevel.NORMAL
    return MiteLevel.HIGH


def classify_population(brood_frames: Optional[int]) -> Optional[Population]:
    """Strong from 8 brood frames, medium from 5, weak below."""
    if brood_frames is None:
        return None
    if brood_frames >= STRONG_BROOD_MIN:
        return Population.STRONG
    if brood_frames >= MEDIUM_BROOD_MIN:
        return Population.MEDIUM
    return Population.WEAK


def classify_status(
    queen_seen: Optional[bool],
    mite_level: Union[MiteLevel, str, None],
    temperament: Union[Temperament, str, None],
) -> HiveStatus:
    """Hive status from the latest inspection; first matching rule wins.

    Never returns ``HiveStatus.NEW``, which is reserved for hives that have
    not been inspected yet.
    """
    level = MiteLevel(mite_level) if mite_level is not None else None
    mood = Temperament(temperament) if temperament is not None else None

    if queen_seen is False:
        return HiveStatus.CRITICAL
    if level is MiteLevel.HIGH:
        return HiveStatus.CRITICAL
    if level is MiteLevel.NORMAL or mood is Temperament.AGGRESSIVE:
        return HiveStatus.WARNING
    if queen_seen is True and level is MiteLevel.LOW:
        return HiveStatus.EXCELLENT
    return HiveStatus.GOOD


def status_for_inspection(inspection: Inspection) -> HiveStatus:
    level = classify_mite_level(
        mites_per_day(inspection.varroa_count, inspection.varroa_days)
    )
    return classify_status(inspection.queen_seen, level, inspection.temperament)


def queen_age_days(added: Optional[date], today: Optional[date] = None) -> Optional[int]:
    """Days since the queen was added, or None if no date is recorded."""
    if added is None:
        return None
    today = today or date.today()
    return abs((today - added).days)


def format_queen_age(days: Optional[int]) -> Optional[str]:
    """Render a queen age as days, months, or years plus months."""
    if days is None:
        return None
    if days < 30:
        return f"{days} dagar"
    if days < 365:
        months = days // 30
        return f"{months} månad{'er' if months > 1 else ''}"
    years = days // 365
    remaining_months = (days % 365) // 30
    if remaining_months > 0:
        return f"{years} år {remaining_months} mån"
    return f"{years} år"


def format_varroa(per_day: Optional[float]) -> Optional[str]:
    if per_day is None:
        return None
    return f"{per_day:.1f}/dag"


def inspection_rating(
    queen_seen: Optional[bool],
    per_day: Optional[float],
    temperament: Union[Temperament, str, None],
    observations: Iterable[str] = (),
) -> int:
    """Score an inspection from 1 (poor) to 5 (excellent)."""
    observed = set(observations)
    mood = Temperament(temperament) if temperament is not None else None
    score = 3.0

    if queen_seen is True:
        score += 1
    if per_day is not None and per_day <= LOW_MITE_MAX:
        score += 1
    if mood is Temperament.CALM:
        score += 0.5
    if OBSERVATION_BROOD_PATTERN in observed:
        score += 0.5
    if OBSERVATION_POP_STRONG in observed:
        score += 0.5

    if queen_seen is False:
        score -= 1
    if per_day is not None and per_day > NORMAL_MITE_MAX:
        score -= 1
    if mood is Temperament.AGGRESSIVE:
        score -= 0.5
    if OBSERVATION_BROOD_DISEASE in observed:
        score -= 2
    if OBSERVATION_POP_WEAK in observed:
        score -= 1

    # Halves round up
    return max(1, min(5, math.floor(score + 0.5)))


def rating_for_status(status: Union[HiveStatus, str]) -> int:
    return {
        HiveStatus.EXCELLENT: 5,
        HiveStatus.GOOD: 4,
        HiveStatus.WARNING: 3,
    }.get(HiveStatus(status), 2)


def next_inspection_days(status: Union[HiveStatus, str]) -> int:
    return {
        HiveStatus.CRITICAL: 3,
        HiveStatus.WARNING: 7,
    }.get(HiveStatus(status), 14)


def estimate_honey_kg(honey_frames: Optional[float]) -> Optional[float]:
    if honey_frames is None or honey_frames <= 0:
        return None
    return honey_frames * HONEY_KG_PER_FRAME


def basic_analysis(inspection: Inspection) -> InspectionAnalysis:
    """Deterministic commentary used when no text-generation service answers."""
    observations = []
    recommendations = []
    priority_actions = []
    per_day = mites_per_day(inspection.varroa_count, inspection.varroa_days)

    if inspection.queen_seen is False:
        observations.append("Drottning ej sedd - kan vara drottninglös")
        recommendations.append("Kontrollera för drottningceller eller lägg till ny drottning")
        priority_actions.append("Drottningkontroll inom 3 dagar")

    if per_day is not None and per_day > NORMAL_MITE_MAX:
        observations.append(f"Hög varroabelastning ({per_day:.1f}/dag)")
        recommendations.append("Genomför varroabehandling omedelbart")
        priority_actions.append("Varroabehandling inom 1 vecka")

    if (
        inspection.brood_frames is not None
        and inspection.total_frames
        and inspection.brood_frames < inspection.total_frames * 0.3
    ):
        observations.append("Låg yngelproduktion")
        recommendations.append("Kontrollera drottningens äggläggning och näringstillgång")

    status = status_for_inspection(inspection)
    return InspectionAnalysis(
        observations=observations,
        recommendations=recommendations,
        status=status,
        priority_actions=priority_actions,
        next_inspection_days=next_inspection_days(status),
    )


def with_readings(inspection: Inspection) -> Inspection:
    """Fill the mite and rating fields an inspection derives from its readings."""
    per_day = mites_per_day(inspection.varroa_count, inspection.varroa_days)
    level = classify_mite_level(per_day)
    rating = inspection_rating(
        inspection.queen_seen, per_day, inspection.temperament, inspection.observations
    )
    return inspection.model_copy(
        update={
            "varroa_per_day": per_day,
            "varroa_level": level.value if level else None,
            "rating": rating,
        }
    )


def is_latest(inspection: Inspection, hive: Hive) -> bool:
    return hive.last_inspection is None or inspection.date >= hive.last_inspection


def refresh_hive(hive: Hive, inspection: Inspection) -> Hive:
    """Return the hive with its cached fields recomputed from an inspection.

    An inspection dated before the hive's last inspection only contributes
    queen changes; the cached health fields keep following the newest one.
    """
    update = {}

    if inspection.new_queen_added:
        update.update(
            has_queen=True,
            queen_marked=inspection.new_queen_marked,
            queen_color=inspection.new_queen_color if inspection.new_queen_marked else None,
            queen_wing_clipped=inspection.new_queen_wing_clipped,
            queen_added_date=inspection.date,
        )

    if inspection.is_wintering:
        update["is_wintered"] = True

    if is_latest(inspection, hive):
        per_day = mites_per_day(inspection.varroa_count, inspection.varroa_days)
        population = classify_population(inspection.brood_frames)
        update.update(
            last_inspection=inspection.date,
            status=status_for_inspection(inspection).value,
            population=population.value if population else hive.population,
            varroa=format_varroa(per_day) or hive.varroa,
        )
        if inspection.brood_frames is not None and inspection.total_frames is not None:
            update["frames"] = f"{inspection.brood_frames}/{inspection.total_frames}"

    return hive.model_copy(update=update)
