"""
State Store — persistence for users, medications and emergency alerts.

Two backends share one interface:
  InMemoryStore — process-local dicts, used in tests and single-node dev.
  GCSStore      — one JSON blob per record in a GCS bucket.

Both use optimistic locking.  ``load_*`` returns ``(record, version)``;
``save_*`` requires the version it loaded and raises
StoreConcurrencyError if another writer got there first.  Pass
``version=None`` to force-write (e.g. on create).

All methods are blocking; async callers wrap them in asyncio.to_thread.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod

from healthbot.gateway.records import EmergencyAlert, Medication, UserState

logger = logging.getLogger("gateway.store")


class UserNotFoundError(Exception):
    pass


class MedicationNotFoundError(Exception):
    pass


class StoreConcurrencyError(Exception):
    """Raised when optimistic locking fails (record was modified by another writer)."""
    pass


class StateStore(ABC):
    """Persistence interface consumed by the gateway and the scheduler."""

    # ── Users ──

    @abstractmethod
    def load_user(self, user_id: str) -> tuple[UserState, int]:
        """Return (state, version).  Raises UserNotFoundError."""

    @abstractmethod
    def save_user(self, state: UserState, version: int | None = None) -> int:
        """Persist state, returning the new version."""

    @abstractmethod
    def list_user_ids(self) -> list[str]:
        ...

    def user_exists(self, user_id: str) -> bool:
        try:
            self.load_user(user_id)
            return True
        except UserNotFoundError:
            return False

    # ── Medications ──

    @abstractmethod
    def load_medication(self, user_id: str, medication_id: str) -> tuple[Medication, int]:
        """Return (medication, version).  Raises MedicationNotFoundError."""

    @abstractmethod
    def save_medication(self, medication: Medication, version: int | None = None) -> int:
        ...

    @abstractmethod
    def list_medications(self, user_id: str) -> list[Medication]:
        ...

    @abstractmethod
    def list_medication_user_ids(self) -> list[str]:
        """User ids that own at least one medication record."""

    # ── Alerts ──

    @abstractmethod
    def save_alert(self, alert: EmergencyAlert) -> None:
        ...

    @abstractmethod
    def list_alerts(self, user_id: str) -> list[EmergencyAlert]:
        ...


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  In-memory backend
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class InMemoryStore(StateStore):
    """
    Dict-backed store.  Records are kept as JSON strings so callers never
    share mutable objects with the store, matching the GCS backend.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users: dict[str, tuple[str, int]] = {}
        self._medications: dict[str, dict[str, tuple[str, int]]] = {}
        self._alerts: dict[str, list[str]] = {}

    def load_user(self, user_id: str) -> tuple[UserState, int]:
        with self._lock:
            entry = self._users.get(user_id)
        if entry is None:
            raise UserNotFoundError(f"No state found for user {user_id}")
        content, version = entry
        return UserState.model_validate_json(content), version

    def save_user(self, state: UserState, version: int | None = None) -> int:
        state.touch()
        content = state.model_dump_json()
        with self._lock:
            current = self._users.get(state.user_id)
            current_version = current[1] if current else 0
            if version is not None and version != current_version:
                raise StoreConcurrencyError(
                    f"State for {state.user_id} was modified by another writer"
                )
            new_version = current_version + 1
            self._users[state.user_id] = (content, new_version)
        return new_version

    def list_user_ids(self) -> list[str]:
        with self._lock:
            return list(self._users.keys())

    def load_medication(self, user_id: str, medication_id: str) -> tuple[Medication, int]:
        with self._lock:
            entry = self._medications.get(user_id, {}).get(medication_id)
        if entry is None:
            raise MedicationNotFoundError(
                f"No medication {medication_id} for user {user_id}"
            )
        content, version = entry
        return Medication.model_validate_json(content), version

    def save_medication(self, medication: Medication, version: int | None = None) -> int:
        content = medication.model_dump_json()
        with self._lock:
            bucket = self._medications.setdefault(medication.user_id, {})
            current = bucket.get(medication.id)
            current_version = current[1] if current else 0
            if version is not None and version != current_version:
                raise StoreConcurrencyError(
                    f"Medication {medication.id} was modified by another writer"
                )
            new_version = current_version + 1
            bucket[medication.id] = (content, new_version)
        return new_version

    def list_medications(self, user_id: str) -> list[Medication]:
        with self._lock:
            entries = list(self._medications.get(user_id, {}).values())
        meds = [Medication.model_validate_json(content) for content, _ in entries]
        return sorted(meds, key=lambda m: m.created)

    def list_medication_user_ids(self) -> list[str]:
        with self._lock:
            return [uid for uid, meds in self._medications.items() if meds]

    def save_alert(self, alert: EmergencyAlert) -> None:
        with self._lock:
            self._alerts.setdefault(alert.user_id, []).append(alert.model_dump_json())

    def list_alerts(self, user_id: str) -> list[EmergencyAlert]:
        with self._lock:
            entries = list(self._alerts.get(user_id, []))
        return [EmergencyAlert.model_validate_json(content) for content in entries]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  GCS backend
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _is_not_found(exc: Exception) -> bool:
    err_type = type(exc).__name__.lower()
    err_msg = str(exc).lower()
    return "notfound" in err_type or "not found" in err_msg or "notfound" in err_msg


def _is_precondition_failure(exc: Exception) -> bool:
    return "conditionNotMet" in str(exc) or "Precondition" in str(exc)


class GCSStore(StateStore):
    """
    Persists records to GCS via GCSBucketManager.

    Uses GCS generation-match for optimistic locking: the blob generation
    captured on load must still be current when saving.
    """

    USER_PREFIX = "users"
    MEDICATION_PREFIX = "medications"
    ALERT_PREFIX = "alerts"

    # HTTP timeout for individual GCS operations (seconds)
    GCS_TIMEOUT = 30

    def __init__(self, gcs_bucket_manager) -> None:
        self._gcs = gcs_bucket_manager

    # ── Paths ──

    def _user_path(self, user_id: str) -> str:
        return f"{self.USER_PREFIX}/user_{user_id}/state.json"

    def _medication_path(self, user_id: str, medication_id: str) -> str:
        return f"{self.MEDICATION_PREFIX}/user_{user_id}/{medication_id}.json"

    def _alert_path(self, user_id: str, alert_id: str) -> str:
        return f"{self.ALERT_PREFIX}/user_{user_id}/{alert_id}.json"

    # ── Blob helpers ──

    def _read(self, path: str) -> tuple[str, int]:
        blob = self._gcs.bucket.blob(path)
        content = blob.download_as_text(timeout=self.GCS_TIMEOUT)
        return content, blob.generation or 0

    def _write(self, path: str, content: str, generation: int | None) -> int:
        blob = self._gcs.bucket.blob(path)
        if generation is not None:
            blob.upload_from_string(
                content,
                content_type="application/json",
                if_generation_match=generation,
                timeout=self.GCS_TIMEOUT,
            )
        else:
            blob.upload_from_string(
                content,
                content_type="application/json",
                timeout=self.GCS_TIMEOUT,
            )
        blob.reload(timeout=self.GCS_TIMEOUT)
        return blob.generation or 0

    def _list_user_folders(self, prefix: str) -> list[str]:
        ids = []
        for name in self._gcs.list_files(prefix):
            # Folder names look like "user_+919876543210/"
            if name.startswith("user_") and name.endswith("/"):
                ids.append(name[len("user_"):-1])
        return ids

    # ── Users ──

    def load_user(self, user_id: str) -> tuple[UserState, int]:
        try:
            content, generation = self._read(self._user_path(user_id))
        except Exception as e:
            if _is_not_found(e):
                raise UserNotFoundError(f"No state found for user {user_id}") from e
            raise
        return UserState.model_validate(json.loads(content)), generation

    def save_user(self, state: UserState, version: int | None = None) -> int:
        state.touch()
        try:
            return self._write(
                self._user_path(state.user_id),
                state.model_dump_json(indent=2),
                version,
            )
        except Exception as e:
            if _is_precondition_failure(e):
                raise StoreConcurrencyError(
                    f"State for {state.user_id} was modified by another process"
                ) from e
            raise

    def list_user_ids(self) -> list[str]:
        return self._list_user_folders(self.USER_PREFIX)

    # ── Medications ──

    def load_medication(self, user_id: str, medication_id: str) -> tuple[Medication, int]:
        try:
            content, generation = self._read(self._medication_path(user_id, medication_id))
        except Exception as e:
            if _is_not_found(e):
                raise MedicationNotFoundError(
                    f"No medication {medication_id} for user {user_id}"
                ) from e
            raise
        return Medication.model_validate(json.loads(content)), generation

    def save_medication(self, medication: Medication, version: int | None = None) -> int:
        try:
            return self._write(
                self._medication_path(medication.user_id, medication.id),
                medication.model_dump_json(indent=2),
                version,
            )
        except Exception as e:
            if _is_precondition_failure(e):
                raise StoreConcurrencyError(
                    f"Medication {medication.id} was modified by another process"
                ) from e
            raise

    def list_medications(self, user_id: str) -> list[Medication]:
        meds = []
        folder = f"{self.MEDICATION_PREFIX}/user_{user_id}"
        for name in self._gcs.list_files(folder):
            if not name.endswith(".json"):
                continue
            content = self._gcs.bucket.blob(f"{folder}/{name}").download_as_text(
                timeout=self.GCS_TIMEOUT
            )
            meds.append(Medication.model_validate(json.loads(content)))
        return sorted(meds, key=lambda m: m.created)

    def list_medication_user_ids(self) -> list[str]:
        return self._list_user_folders(self.MEDICATION_PREFIX)

    # ── Alerts ──

    def save_alert(self, alert: EmergencyAlert) -> None:
        self._write(
            self._alert_path(alert.user_id, alert.id),
            alert.model_dump_json(indent=2),
            None,
        )
        logger.info("Stored emergency alert %s for %s", alert.id, alert.user_id)

    def list_alerts(self, user_id: str) -> list[EmergencyAlert]:
        alerts = []
        folder = f"{self.ALERT_PREFIX}/user_{user_id}"
        for name in self._gcs.list_files(folder):
            if not name.endswith(".json"):
                continue
            content = self._gcs.bucket.blob(f"{folder}/{name}").download_as_text(
                timeout=self.GCS_TIMEOUT
            )
            alerts.append(EmergencyAlert.model_validate(json.loads(content)))
        return sorted(alerts, key=lambda a: a.created)
