"""Inspection commentary from Claude, with a deterministic fallback."""

import json
import logging

import anthropic
from pydantic import ValidationError

from bkeeper.core.metrics import basic_analysis, mites_per_day
from bkeeper.core.models import Inspection, InspectionAnalysis

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"

SYSTEM_PROMPT = """Du är en erfaren biodlare som granskar inspektionsdata.
Ge konkreta iakttagelser och rekommendationer på svenska.
Fokusera på praktiska biodlarråd baserat på säsong, väder och kupans tillstånd.

Svara ENDAST med JSON i följande format:
{
  "observations": ["..."],
  "recommendations": ["..."],
  "status": "excellent|good|warning|critical",
  "priority_actions": ["..."],
  "next_inspection_days": 14
}"""


def _yes_no_unknown(value) -> str:
    if value is True:
        return "Ja"
    if value is False:
        return "Nej"
    return "Osäker"


def describe_inspection(inspection: Inspection, hive_name: str) -> str:
    """Plain-text snapshot of an inspection for the prompt."""
    per_day = mites_per_day(inspection.varroa_count, inspection.varroa_days)
    frames = (
        f"{inspection.brood_frames}/{inspection.total_frames}"
        if inspection.brood_frames is not None
        else "Ej angivet"
    )
    return "\n".join(
        [
            f"Kupa: {hive_name}",
            f"Datum: {inspection.date.isoformat()}",
            f"Väder: {inspection.weather or 'Ej angivet'}",
            f"Yngelramar: {frames}",
            f"Drottning sedd: {_yes_no_unknown(inspection.queen_seen)}",
            f"Temperament: {inspection.temperament or 'Ej angivet'}",
            f"Varroa/dag: {f'{per_day:.1f}' if per_day is not None else 'Ej mätt'}",
            f"Invintring: {'Ja' if inspection.is_wintering else 'Nej'}",
            f"Varroabehandling: {'Ja' if inspection.is_varroa_treatment else 'Nej'}",
            f"Anteckningar: {inspection.notes or 'Inga'}",
        ]
    )


class InspectionAnalyzer:
    """Asks Claude for commentary on an inspection.

    The hive's status never depends on this class: callers always classify
    with the metrics engine, and any failure here returns
    ``basic_analysis`` instead of raising.
    """

    def __init__(self, model: str = DEFAULT_MODEL, enabled: bool = True):
        self.model = model
        self.enabled = enabled

    def analyze(self, inspection: Inspection, hive_name: str) -> InspectionAnalysis:
        if not self.enabled:
            return basic_analysis(inspection)
        try:
            return self._ask_model(inspection, hive_name)
        except (anthropic.AnthropicError, json.JSONDecodeError, ValidationError, IndexError, AttributeError) as e:
            logger.warning("Inspection analysis unavailable, using basic analysis: %s", e)
            return basic_analysis(inspection)

    def _ask_model(self, inspection: Inspection, hive_name: str) -> InspectionAnalysis:
        client = anthropic.Anthropic()

        response = client.messages.create(
            model=self.model,
            max_tokens=1000,
            system=SYSTEM_PROMPT,
            messages=[
                {
                    "role": "user",
                    "content": (
                        "Analysera denna inspektion:\n\n"
                        f"{describe_inspection(inspection, hive_name)}"
                    ),
                }
            ],
        )

        raw_text = response.content[0].text.strip()

        # Handle markdown code blocks if present
        if raw_text.startswith("```"):
            lines = [l for l in raw_text.split("\n") if not l.strip().startswith("```")]
            raw_text = "\n".join(lines)

        return InspectionAnalysis.model_validate(json.loads(raw_text))
