# idcard/files.py
"""
File slots and the size/type policies that guard them.

A slot is a named upload target (photo, fir, payment). `accept` checks a
candidate file against a `FilePolicy` and returns either a populated
`FileSlot` or a `FileRejection`; it never raises for a policy breach.
"""
from __future__ import annotations

import base64
import logging
import math
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

KB: int = 1024
MB: int = 1024 * 1024
SLOT_NAMES: tuple[str, ...] = ('photo', 'fir', 'payment')

SLOT_LABELS: dict[str, str] = {
    'photo': 'Passport Photograph',
    'fir': 'FIR Copy',
    'payment': 'Payment Receipt',
}

# ===================================================================
# 1. POLICIES
# ===================================================================

@dataclass(frozen=True)
class FilePolicy:
    name: str
    default_max_bytes: int = 5 * MB
    slot_max_bytes: dict[str, int] = field(default_factory=dict)
    image_only_slots: frozenset[str] = frozenset()

    def max_bytes(self, slot_name: str) -> int:
        return self.slot_max_bytes.get(slot_name, self.default_max_bytes)

    def max_mb(self, slot_name: str) -> float:
        return self.max_bytes(slot_name) / MB

STAGED_UPLOAD_POLICY = FilePolicy(name='staged')

# The inline variant only takes a small, image-only passport photo.
LEGACY_INLINE_PHOTO_POLICY = FilePolicy(
    name='legacy-inline',
    slot_max_bytes={'photo': 1 * MB},
    image_only_slots=frozenset({'photo'}),
)

FILE_POLICIES: dict[str, FilePolicy] = {
    policy.name: policy for policy in (STAGED_UPLOAD_POLICY, LEGACY_INLINE_PHOTO_POLICY)
}

def get_policy(name: str) -> FilePolicy:
    try:
        return FILE_POLICIES[name]
    except KeyError:
        raise ValueError(f"Unknown file policy '{name}'. Choose one of: {', '.join(FILE_POLICIES)}") from None

# ===================================================================
# 2. CANDIDATES, ACCEPTED SLOTS, REJECTIONS
# ===================================================================

@dataclass(frozen=True)
class CandidateFile:
    """A file as handed over by the upload widget."""
    filename: str
    content: bytes
    mime_type: str

@dataclass(frozen=True)
class FileSlot:
    logical_name: str
    filename: str
    content: bytes = field(repr=False)
    size_bytes: int
    mime_type: str
    preview_data_uri: str | None = field(default=None, repr=False)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith('image/')

@dataclass(frozen=True)
class FileRejection:
    slot_name: str
    message: str

@dataclass(frozen=True)
class FileTooLarge(FileRejection):
    max_mb: float = 5.0

@dataclass(frozen=True)
class UnsupportedFileType(FileRejection):
    mime_type: str = ''

@dataclass(frozen=True)
class UnknownSlot(FileRejection):
    pass

AcceptResult = FileSlot | FileRejection

def _format_mb(value: float) -> str:
    return f"{value:g}"

def build_preview(content: bytes, mime_type: str) -> str | None:
    """Data URI for images, None for anything else (PDFs get a filename/size line instead)."""
    if not mime_type.startswith('image/'):
        return None
    encoded = base64.b64encode(content).decode('ascii')
    return f"data:{mime_type};base64,{encoded}"

def accept(slot_name: str, candidate: CandidateFile, policy: FilePolicy) -> AcceptResult:
    """Checks `candidate` against `policy` for `slot_name`."""
    if slot_name not in SLOT_NAMES:
        return UnknownSlot(slot_name=slot_name, message=f"Unknown upload slot '{slot_name}'.")

    size_bytes = len(candidate.content)
    max_bytes = policy.max_bytes(slot_name)
    if size_bytes > max_bytes:
        max_mb = policy.max_mb(slot_name)
        logger.info(f"Rejected {slot_name} upload: {size_bytes} bytes exceeds {max_bytes} ({policy.name}).")
        return FileTooLarge(
            slot_name=slot_name,
            message=f"File size exceeds {_format_mb(max_mb)}MB limit",
            max_mb=max_mb,
        )

    mime_type = (candidate.mime_type or 'application/octet-stream').lower()
    if slot_name in policy.image_only_slots and not mime_type.startswith('image/'):
        return UnsupportedFileType(
            slot_name=slot_name,
            message="Please upload an image file (JPG or PNG).",
            mime_type=mime_type,
        )

    return FileSlot(
        logical_name=slot_name,
        filename=candidate.filename,
        content=candidate.content,
        size_bytes=size_bytes,
        mime_type=mime_type,
        preview_data_uri=build_preview(candidate.content, mime_type),
    )

def format_file_size(size_bytes: int) -> str:
    """Human-readable size: Bytes, KB or MB, rounded half-up to 2 decimals."""
    if size_bytes <= 0:
        return '0 Bytes'
    units = ['Bytes', 'KB', 'MB']
    unit_index = 0
    while size_bytes >= KB ** (unit_index + 1) and unit_index < len(units) - 1:
        unit_index += 1
    value = math.floor(size_bytes / KB ** unit_index * 100 + 0.5) / 100
    text = str(int(value)) if value.is_integer() else f"{value:.2f}".rstrip('0').rstrip('.')
    return f"{text} {units[unit_index]}"

# ===================================================================
# 3. THE SLOT BOARD
# ===================================================================

class SlotBoard:
    """Holds the files of one wizard session, at most one per slot."""

    def __init__(self, slot_names: tuple[str, ...] | list[str]) -> None:
        self._slots: dict[str, FileSlot | None] = {name: None for name in slot_names}

    def __contains__(self, slot_name: object) -> bool:
        return slot_name in self._slots

    @property
    def slot_names(self) -> list[str]:
        return list(self._slots)

    def get(self, slot_name: str) -> FileSlot | None:
        return self._slots.get(slot_name)

    def has(self, slot_name: str) -> bool:
        return self._slots.get(slot_name) is not None

    def put(self, file_slot: FileSlot) -> None:
        if file_slot.logical_name not in self._slots:
            raise KeyError(file_slot.logical_name)
        self._slots[file_slot.logical_name] = file_slot

    def remove(self, slot_name: str) -> None:
        """Clears the file and its preview. Removing an empty slot is a no-op."""
        if self._slots.get(slot_name) is None:
            return
        self._slots[slot_name] = None

    def clear(self) -> None:
        for slot_name in self._slots:
            self.remove(slot_name)

    def present(self) -> dict[str, FileSlot]:
        return {name: slot for name, slot in self._slots.items() if slot is not None}

    def manifest(self) -> dict[str, str | None]:
        """Names only, no content; safe to keep in session storage."""
        return {name: (slot.filename if slot else None) for name, slot in self._slots.items()}
