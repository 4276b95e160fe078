"""CLI smoke tests."""

import pytest
from click.testing import CliRunner
from rich.console import Console

from bkeeper.cli import cli
from bkeeper.core.local_repository import LocalRepository
from bkeeper.core.local_store import TASKS, LocalStore
from bkeeper.core.models import Profile
from bkeeper.core.remote_backend import MemoryBackend

OWNER = Profile(id="owner-1", email="anna@example.com")
FRIEND = Profile(id="friend-1", email="bo@example.com")


@pytest.fixture(autouse=True)
def isolated_cli(monkeypatch):
    monkeypatch.delenv("BKEEPER_SUPABASE_URL", raising=False)
    monkeypatch.delenv("BKEEPER_SUPABASE_KEY", raising=False)
    # Wide enough that table cells never wrap
    monkeypatch.setattr("bkeeper.cli.console", Console(width=200))


@pytest.fixture
def run(tmp_path):
    runner = CliRunner()

    def invoke(*args, backend=None):
        obj = {"backend": backend} if backend is not None else {}
        return runner.invoke(cli, ["--data-dir", str(tmp_path), *args], obj=obj)

    return invoke


def local_repo(tmp_path):
    return LocalRepository(LocalStore(tmp_path / "local"))


# --- Local mode ---


class TestLocalHives:
    def test_list_shows_examples(self, run):
        result = run("hive", "list")
        assert result.exit_code == 0
        assert "Kupa Alpha" in result.output

    def test_add_and_show(self, run, tmp_path):
        result = run("hive", "add", "Kupa Ny", "--location", "Ängen", "--frames", "20")
        assert result.exit_code == 0
        assert "Skapade kupa" in result.output

        hive = local_repo(tmp_path).find_hive_by_name("Kupa Ny")
        result = run("hive", "show", str(hive.id))
        assert result.exit_code == 0
        assert "Kupa Ny" in result.output
        assert "new" in result.output

    def test_small_hive_needs_nucleus_flag(self, run):
        result = run("hive", "add", "Liten", "-l", "Ängen", "-f", "5")
        assert result.exit_code == 1
        assert "Ogiltiga uppgifter" in result.output

        result = run("hive", "add", "Liten", "-l", "Ängen", "-f", "5", "--nucleus")
        assert result.exit_code == 0

    def test_unknown_hive(self, run):
        result = run("hive", "show", "999")
        assert result.exit_code == 1
        assert "Hittades inte" in result.output

    def test_remote_id_rejected_locally(self, run):
        result = run("hive", "show", "9f1c2b7e-0000-4000-8000-000000000000")
        assert result.exit_code == 1

    def test_rename_and_delete(self, run, tmp_path):
        assert run("hive", "rename", "1", "Kupa Omega").exit_code == 0
        assert local_repo(tmp_path).get_hive(1).name == "Kupa Omega"

        result = run("hive", "delete", "1", "--force")
        assert result.exit_code == 0
        assert [i.hive_id for i in local_repo(tmp_path).list_inspections()] == [2, 3]


class TestLocalRecords:
    def test_inspection_updates_status(self, run, tmp_path):
        result = run(
            "inspect", "add", "1",
            "--brood", "9", "--total", "20",
            "--queen-seen", "--mites", "40", "--days", "5",
            "--date", "2024-06-01",
        )
        assert result.exit_code == 0, result.output
        assert "critical" in result.output
        assert local_repo(tmp_path).get_hive(1).status == "critical"

        result = run("inspect", "list", "--hive", "1")
        assert result.exit_code == 0
        assert "2024-06-01" in result.output

    def test_inspection_brood_exceeds_total(self, run):
        result = run("inspect", "add", "1", "--brood", "12", "--total", "10")
        assert result.exit_code == 1
        assert "Ogiltiga uppgifter" in result.output

    def test_tasks(self, run, tmp_path):
        result = run("task", "add", "Fodra", "--date", "2024-09-01", "--priority", "high")
        assert result.exit_code == 0
        assert "Fodra" in run("task", "list").output

        task = local_repo(tmp_path).list_tasks()[0]
        assert task.priority == "hög"
        assert run("task", "done", str(task.id)).exit_code == 0
        assert "Inga uppgifter" in run("task", "list").output

    def test_old_task_with_typed_date(self, run, tmp_path):
        """Test tasks saved with a typed due date are still listed."""
        store = LocalStore(tmp_path / "local")
        store.save(TASKS, [{"id": 1705700000000, "task": "Byt drottning", "date": "Nästa vecka", "priority": "hög"}])

        result = run("task", "list")
        assert result.exit_code == 0
        assert "Byt drottning" in result.output
        assert "Nästa vecka" in result.output

    def test_harvest(self, run, tmp_path):
        result = run("harvest", "add", "2", "--frames", "3")
        assert result.exit_code == 0
        assert "6 kg" in result.output
        assert local_repo(tmp_path).get_hive(2).honey == "24 kg"

    def test_apiary_needs_login(self, run):
        result = run("apiary", "list")
        assert result.exit_code == 1
        assert "Behörighet saknas" in result.output


# --- Collaborative mode ---


class TestCollaborative:
    def test_status(self, run):
        result = run("status", backend=MemoryBackend(OWNER))
        assert result.exit_code == 0
        assert "collaborative" in result.output

    def test_apiary_flow(self, run):
        backend = MemoryBackend(OWNER)
        result = run("apiary", "create", "Hemgården", "--location", "Uppsala", backend=backend)
        assert result.exit_code == 0
        apiary = backend.tables["apiaries"][0]
        assert apiary["invite_code"] in result.output

        assert "Hemgården" in run("apiary", "list", backend=backend).output
        assert run("hive", "add", "Kupa A", "-l", "Ängen", backend=backend).exit_code == 0
        assert "Kupa A" in run("hive", "list", backend=backend).output

        result = run("apiary", "share", "--max-uses", "1", backend=backend)
        assert result.exit_code == 0
        code = backend.tables["sharing_codes"][0]["code"]
        assert code in result.output

        backend.sign_in(FRIEND)
        result = run("code", "redeem", code, backend=backend)
        assert result.exit_code == 0
        assert "bigården" in result.output

        result = run("code", "redeem", code, backend=backend)
        assert result.exit_code == 1
        assert "Redan medlem" in result.output

    def test_share_rejects_zero_days(self, run):
        """Test a sharing code must last at least one day."""
        backend = MemoryBackend(OWNER)
        run("apiary", "create", "Hemgården", backend=backend)

        result = run("apiary", "share", "--expires-days", "0", backend=backend)
        assert result.exit_code == 2
        assert backend.tables["sharing_codes"] == []

        result = run("apiary", "share", "--expires-days", "1", backend=backend)
        assert result.exit_code == 0
        assert "Går ut" in result.output

    def test_join_by_invite_code(self, run):
        backend = MemoryBackend(OWNER)
        run("apiary", "create", "Hemgården", backend=backend)
        invite_code = backend.tables["apiaries"][0]["invite_code"]

        backend.sign_in(FRIEND)
        result = run("apiary", "join", invite_code, backend=backend)
        assert result.exit_code == 0
        assert "Hemgården" in result.output

    def test_member_cannot_add_hive(self, run):
        backend = MemoryBackend(OWNER)
        run("apiary", "create", "Hemgården", backend=backend)
        backend.sign_in(FRIEND)
        run("apiary", "join", backend.tables["apiaries"][0]["invite_code"], backend=backend)

        result = run("hive", "add", "Kupa B", "-l", "Skogen", backend=backend)
        assert result.exit_code == 1
        assert "Behörighet saknas" in result.output

    def test_local_id_rejected_remotely(self, run):
        backend = MemoryBackend(OWNER)
        run("apiary", "create", "Hemgården", backend=backend)
        result = run("hive", "show", "1", backend=backend)
        assert result.exit_code == 1
        assert "Hittades inte" in result.output


# --- Config ---


def test_config_set_and_show(run):
    assert run("config", "set", "analysis_model", "claude-test").exit_code == 0
    result = run("config", "show")
    assert result.exit_code == 0
    assert "claude-test" in result.output


def test_config_unknown_key(run):
    result = run("config", "set", "colour", "blue")
    assert result.exit_code == 1
