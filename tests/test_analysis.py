"""Tests for inspection commentary and its fallback."""

import json
from datetime import date
from unittest.mock import MagicMock, patch

import anthropic
import pytest

from bkeeper.core.analysis import InspectionAnalyzer, describe_inspection
from bkeeper.core.local_repository import LocalRepository
from bkeeper.core.local_store import LocalStore
from bkeeper.core.models import Inspection


def make_inspection(**fields):
    data = {
        "id": 1,
        "hive_id": 1,
        "hive": "Kupa A",
        "date": date(2024, 6, 1),
        "brood_frames": 9,
        "total_frames": 20,
        "queen_seen": True,
        "varroa_count": 10,
        "varroa_days": 7,
    }
    data.update(fields)
    return Inspection(**data)


def mock_reply(mock_anthropic_class, text):
    mock_client = MagicMock()
    mock_anthropic_class.return_value = mock_client
    mock_response = MagicMock()
    mock_response.content = [MagicMock(text=text)]
    mock_client.messages.create.return_value = mock_response
    return mock_client


REPLY = {
    "observations": ["Starkt samhälle"],
    "recommendations": ["Sätt på ett skattlåda"],
    "status": "excellent",
    "priority_actions": [],
    "next_inspection_days": 10,
}


def test_describe_inspection():
    text = describe_inspection(make_inspection(), "Kupa A")
    assert "Kupa: Kupa A" in text
    assert "Yngelramar: 9/20" in text
    assert "Drottning sedd: Ja" in text
    assert "Varroa/dag: 1.4" in text


def test_describe_inspection_without_readings():
    text = describe_inspection(
        make_inspection(brood_frames=None, total_frames=None, queen_seen=None, varroa_count=None),
        "Kupa A",
    )
    assert "Yngelramar: Ej angivet" in text
    assert "Drottning sedd: Osäker" in text
    assert "Varroa/dag: Ej mätt" in text


class TestAnalyzer:
    @patch("bkeeper.core.analysis.anthropic.Anthropic")
    def test_uses_model_reply(self, mock_anthropic_class):
        mock_client = mock_reply(mock_anthropic_class, json.dumps(REPLY))

        analysis = InspectionAnalyzer(model="claude-test").analyze(make_inspection(), "Kupa A")

        assert analysis.observations == ["Starkt samhälle"]
        assert analysis.next_inspection_days == 10
        kwargs = mock_client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert "Kupa A" in kwargs["messages"][0]["content"]

    @patch("bkeeper.core.analysis.anthropic.Anthropic")
    def test_reply_in_code_block(self, mock_anthropic_class):
        """Test a reply wrapped in a code fence."""
        mock_reply(mock_anthropic_class, f"```json\n{json.dumps(REPLY)}\n```")
        analysis = InspectionAnalyzer().analyze(make_inspection(), "Kupa A")
        assert analysis.status == "excellent"

    @patch("bkeeper.core.analysis.anthropic.Anthropic")
    def test_falls_back_on_bad_json(self, mock_anthropic_class):
        """Test fallback when the reply is not JSON."""
        mock_reply(mock_anthropic_class, "Jag kan inte svara på det.")
        analysis = InspectionAnalyzer().analyze(make_inspection(queen_seen=False), "Kupa A")
        assert analysis.status == "critical"
        assert analysis.next_inspection_days == 3

    @patch("bkeeper.core.analysis.anthropic.Anthropic")
    def test_falls_back_on_bad_status(self, mock_anthropic_class):
        mock_reply(mock_anthropic_class, json.dumps({**REPLY, "status": "fantastic"}))
        analysis = InspectionAnalyzer().analyze(make_inspection(), "Kupa A")
        assert analysis.status == "excellent"
        assert analysis.next_inspection_days == 14

    @patch("bkeeper.core.analysis.anthropic.Anthropic")
    def test_falls_back_on_api_error(self, mock_anthropic_class):
        """Test fallback when the client cannot be created."""
        mock_anthropic_class.side_effect = anthropic.AnthropicError("no api key")
        analysis = InspectionAnalyzer().analyze(make_inspection(), "Kupa A")
        assert analysis.status == "excellent"

    @patch("bkeeper.core.analysis.anthropic.Anthropic")
    def test_disabled_never_calls_model(self, mock_anthropic_class):
        InspectionAnalyzer(enabled=False).analyze(make_inspection(), "Kupa A")
        mock_anthropic_class.assert_not_called()


@patch("bkeeper.core.analysis.anthropic.Anthropic")
def test_hive_status_ignores_model_opinion(mock_anthropic_class, tmp_path):
    """Test hive status comes from the metrics, not the model."""
    mock_reply(mock_anthropic_class, json.dumps({**REPLY, "status": "excellent"}))
    repo = LocalRepository(LocalStore(tmp_path), InspectionAnalyzer())
    hive = repo.create_hive("Kupa A", "Ängen")

    inspection = repo.add_inspection(hive.id, brood_frames=9, total_frames=20, queen_seen=False)

    assert inspection.findings == ["Starkt samhälle"]
    assert inspection.ai_analysis["status"] == "excellent"
    assert repo.get_hive(hive.id).status == "critical"
