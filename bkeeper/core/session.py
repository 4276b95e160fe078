"""Picks the active store for a run and the selected apiary within it."""

import logging
from enum import Enum
from pathlib import Path
from typing import Optional

from bkeeper.core.analysis import InspectionAnalyzer
from bkeeper.core.config import BKeeperConfig
from bkeeper.core.errors import AuthorizationDenied, NotFound, RecordValidationError
from bkeeper.core.hive_service import HiveService
from bkeeper.core.local_repository import LocalRepository
from bkeeper.core.local_store import LocalStore
from bkeeper.core.models import Apiary, Profile, RecordId
from bkeeper.core.remote_backend import RemoteBackend, SupabaseBackend
from bkeeper.core.remote_store import RemoteStore
from bkeeper.core.seed import seed_if_empty
from bkeeper.core.sharing import SharingService

logger = logging.getLogger(__name__)

LOCAL_DIR_NAME = "local"


class SessionMode(str, Enum):
    """Which store a session reads and writes."""

    LOCAL = "local"
    COLLABORATIVE = "collaborative"


def connect_backend(config: BKeeperConfig) -> Optional[SupabaseBackend]:
    """Backend from configured credentials, with any saved login restored."""
    if not config.has_remote():
        return None
    backend = SupabaseBackend(config.supabase_url, config.supabase_key)
    access_token = config.get("supabase_access_token")
    refresh_token = config.get("supabase_refresh_token")
    if access_token and refresh_token:
        backend.restore_session(access_token, refresh_token)
    return backend


def login(config: BKeeperConfig, email: str, password: str) -> None:
    """Sign in with email and password and remember the session tokens."""
    backend = connect_backend(config)
    if backend is None:
        raise RecordValidationError("Ange supabase_url och supabase_key först")
    access_token, refresh_token = backend.sign_in(email, password)
    config.set("supabase_access_token", access_token)
    config.set("supabase_refresh_token", refresh_token)


def logout(config: BKeeperConfig) -> None:
    config.set("supabase_access_token", None)
    config.set("supabase_refresh_token", None)
    config.set("selected_apiary", None)


class AppSession:
    """One run of the app, bound to exactly one store.

    Local mode uses the device store; collaborative mode uses the remote
    store scoped to the selected apiary. Records from the two stores are
    never mixed: local ids are integers, remote ids are strings.
    """

    def __init__(
        self,
        config: BKeeperConfig,
        backend: Optional[RemoteBackend] = None,
        profile: Optional[Profile] = None,
    ):
        self.config = config
        self.backend = backend
        self.profile = profile
        self.analyzer = InspectionAnalyzer(
            model=config.analysis_model, enabled=config.use_ai_analysis
        )
        self._remote: Optional[RemoteStore] = None
        if profile is not None:
            self._remote = RemoteStore(backend, profile.id)

    @classmethod
    def open(cls, config: BKeeperConfig, backend: Optional[RemoteBackend] = None) -> "AppSession":
        """Collaborative when the backend reports a signed-in profile, local otherwise.

        A backend that cannot be reached raises ``NetworkFailure``; there is
        no cached remote view to fall back to.
        """
        if backend is None:
            backend = connect_backend(config)
        profile = backend.current_profile() if backend is not None else None
        session = cls(config, backend if profile else None, profile)
        logger.debug("Opened %s session", session.mode.value)
        return session

    @property
    def mode(self) -> SessionMode:
        return SessionMode.COLLABORATIVE if self.profile is not None else SessionMode.LOCAL

    @property
    def local_dir(self) -> Path:
        return self.config.data_dir / LOCAL_DIR_NAME

    def remote(self) -> RemoteStore:
        if self._remote is None:
            raise AuthorizationDenied("Logga in för att använda delade bigårdar")
        return self._remote

    # --- Apiary selection ---

    def apiaries(self) -> list[Apiary]:
        return self.remote().list_apiaries_for_user()

    def select_apiary(self, apiary_id: str) -> Apiary:
        for apiary in self.apiaries():
            if apiary.id == apiary_id:
                self.config.set("selected_apiary", apiary_id)
                return apiary
        raise NotFound(f"Bigård {apiary_id} hittades inte")

    def active_apiary(self) -> Optional[Apiary]:
        """The explicitly selected apiary, else the first one returned."""
        apiaries = self.apiaries()
        if not apiaries:
            return None
        selected = self.config.get("selected_apiary")
        for apiary in apiaries:
            if apiary.id == selected:
                return apiary
        return apiaries[0]

    # --- Services ---

    def hives(self) -> HiveService:
        if self.mode is SessionMode.LOCAL:
            store = LocalStore(self.local_dir)
            seed_if_empty(store)
            return LocalRepository(store, self.analyzer)

        apiary = self.active_apiary()
        if apiary is None:
            raise NotFound("Du har ingen bigård ännu. Skapa en med 'bkeeper apiary create'")
        return self.remote().hive_service(apiary.id, self.analyzer)

    def sharing(self) -> SharingService:
        return SharingService(self.remote())

    def parse_id(self, raw: str) -> RecordId:
        """Turn a command-line id into this store's id type.

        Numeric ids belong to the device store and are rejected in a
        collaborative session, and the other way round.
        """
        raw = raw.strip()
        if self.mode is SessionMode.LOCAL:
            if not raw.isdigit():
                raise NotFound(f"{raw} är inte ett id i det lokala lagret")
            return int(raw)
        if raw.isdigit():
            raise NotFound(f"{raw} är ett lokalt id och finns inte i den delade bigården")
        return raw
