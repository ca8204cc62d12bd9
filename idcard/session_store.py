# idcard/session_store.py
"""
Session-scoped persistence for the wizard.

The backing mapping is `app.storage.user` in the running app and a plain
dict in tests. Everything stored here is JSON-serializable. `clear()` wipes
the whole session and is called only on a fresh verification entry, after
a successful submission and on logout.
"""
from __future__ import annotations

import copy
import logging
from collections.abc import MutableMapping
from typing import Any

from .draft import Draft, identity_fields, new_draft
from .form_data_builder import Role
from .utils import (
    CURRENT_STEP_KEY, UPLOADED_FILES_KEY, VERIFIED_EMAIL_KEY,
    VERIFIED_IDENTIFIER_KEY, VERIFIED_ROLE_KEY, draft_storage_key,
)
from .verification import ApplicantIdentity

logger = logging.getLogger(__name__)

class DraftStore:
    def __init__(self, storage: MutableMapping[str, Any]) -> None:
        self._storage = storage

    # --- identity ---
    def save_identity(self, identity: ApplicantIdentity) -> None:
        self._storage[VERIFIED_ROLE_KEY] = identity.role.value
        self._storage[VERIFIED_IDENTIFIER_KEY] = identity.identifier
        self._storage[VERIFIED_EMAIL_KEY] = identity.email

    def load_identity(self) -> ApplicantIdentity | None:
        role_value = self._storage.get(VERIFIED_ROLE_KEY)
        identifier = self._storage.get(VERIFIED_IDENTIFIER_KEY)
        email = self._storage.get(VERIFIED_EMAIL_KEY)
        if not (role_value and identifier and email):
            return None
        try:
            role = Role(role_value)
        except ValueError:
            logger.warning(f"Ignoring stored identity with unknown role '{role_value}'.")
            return None
        return ApplicantIdentity(role=role, identifier=identifier, email=email)

    # --- draft ---
    def save_draft(self, identity: ApplicantIdentity, draft: Draft) -> None:
        self._storage[draft_storage_key(identity.role)] = {
            'owner': identity.identifier,
            'fields': copy.deepcopy(draft),
        }

    def load_draft(self, identity: ApplicantIdentity) -> Draft:
        """
        Merge-on-resume: defaults, then the saved fields if they belong to this
        identity, then the locked identity fields on top. A draft saved by
        anyone else is ignored.
        """
        draft = new_draft(identity.role)
        saved = self._storage.get(draft_storage_key(identity.role))
        if isinstance(saved, dict) and saved.get('owner') == identity.identifier:
            fields = saved.get('fields') or {}
            draft.update({key: copy.deepcopy(value) for key, value in fields.items() if key in draft})
        elif saved:
            logger.info(f"Discarding stored {identity.role.value} draft that belongs to another applicant.")
        draft.update(identity_fields(identity.role, identity))
        return draft

    # --- files & position ---
    def save_file_manifest(self, manifest: dict[str, str | None]) -> None:
        self._storage[UPLOADED_FILES_KEY] = dict(manifest)

    def load_file_manifest(self) -> dict[str, str | None]:
        return dict(self._storage.get(UPLOADED_FILES_KEY) or {})

    def save_step(self, step_id: int) -> None:
        self._storage[CURRENT_STEP_KEY] = step_id

    def load_step(self) -> int | None:
        step = self._storage.get(CURRENT_STEP_KEY)
        return step if isinstance(step, int) else None

    def clear(self) -> None:
        self._storage.clear()
