"""Keeps image references in the chat pointing at the gallery's current URLs.

When an image is edited after being attached, the gallery entry keeps its id
but gets a new ``src``. File parts carry the gallery id in ``name``, so stale
URLs can be remapped by id without touching anything else.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from socialab_studio.assistant.models import ChatReferenceImage, FilePart, GalleryImage
from socialab_studio.assistant.transcript import Transcript
from socialab_studio.config.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SyncResult:
    """Outcome of one synchronization pass."""

    reference: ChatReferenceImage | None
    patched_parts: list[FilePart] = field(default_factory=list)
    reference_changed: bool = False

    @property
    def changed(self) -> bool:
        return self.reference_changed or bool(self.patched_parts)


class ImageReferenceSynchronizer:
    """Remaps file-part and reference URLs to the latest gallery ``src``.

    Pure remap: parts are never added or removed. A pass with no new gallery
    snapshot and no transcript change is skipped.
    """

    def __init__(self) -> None:
        self._seen_ids: set[str] = set()
        self._last_key: tuple[tuple[tuple[str, str], ...], int, str | None] | None = None

    def reset(self) -> None:
        self._last_key = None

    def sync(
        self,
        gallery: Iterable[GalleryImage],
        transcript: Transcript,
        reference: ChatReferenceImage | None,
    ) -> SyncResult:
        images = list(gallery)
        by_id = {img.id: img.src for img in images}
        fingerprint = tuple(sorted(by_id.items()))
        ref_key = f"{reference.id}|{reference.src}" if reference else None
        key = (fingerprint, transcript.revision, ref_key)
        if key == self._last_key:
            return SyncResult(reference=reference)

        result = SyncResult(reference=reference)
        if reference is not None:
            src = by_id.get(reference.id)
            if src is not None and src != reference.src:
                logger.debug("Reference image %s moved to a new URL", reference.id)
                result.reference = ChatReferenceImage(id=reference.id, src=src)
                result.reference_changed = True
            elif src is None and reference.id in self._seen_ids:
                logger.info("Reference image %s was deleted from the gallery", reference.id)
                result.reference = None
                result.reference_changed = True

        for msg in transcript:
            for part in msg.file_parts:
                src = by_id.get(part.name)
                if src is not None and src != part.url:
                    part.url = src
                    result.patched_parts.append(part)
        if result.patched_parts:
            logger.debug("Patched %d stale image URLs", len(result.patched_parts))
            transcript.touch()

        self._seen_ids.update(by_id)
        ref_key = f"{result.reference.id}|{result.reference.src}" if result.reference else None
        self._last_key = (fingerprint, transcript.revision, ref_key)
        return result
