"""Per-group candidate building.

Upstream proposals may list stale URLs, photos from other folders, or nothing
at all. This module turns a proposal into the concrete photos that hero/back
selection and the fallback assigner consider for that group.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .models import Photo, ProposedGroup
from .utils.text import basename_key, folder_key

logger = logging.getLogger(__name__)


@dataclass
class GroupCandidates:
    """Photos a group may draw from."""

    group: ProposedGroup
    photos: List[Photo] = field(default_factory=list)
    folder_key: str = ""
    folder_photos: List[Photo] = field(default_factory=list)
    filled_from_folder: bool = False
    source_photo: Optional[Photo] = None
    secondary_photo: Optional[Photo] = None
    supporting_photos: List[Photo] = field(default_factory=list)

    @property
    def group_id(self) -> str:
        return self.group.group_id

    @property
    def pool_size(self) -> int:
        return len(self.folder_photos)


class PhotoCatalog:
    """URL and basename lookup over the photos of one run."""

    def __init__(self, photos: Sequence[Photo]) -> None:
        self.photos: List[Photo] = list(photos)
        self._by_url: Dict[str, Photo] = {}
        self._by_basename: Dict[str, Photo] = {}
        for photo in self.photos:
            self._by_url.setdefault(photo.url, photo)
            for key in (basename_key(photo.url), basename_key(photo.name)):
                if key:
                    self._by_basename.setdefault(key, photo)

    def resolve(self, value: Optional[str]) -> Optional[Photo]:
        if not value:
            return None
        found = self._by_url.get(value.strip())
        if found is not None:
            return found
        base = basename_key(value)
        return self._by_basename.get(base) if base else None

    def get(self, url: str) -> Optional[Photo]:
        return self._by_url.get(url)

    def in_folder(self, key: str) -> List[Photo]:
        return [photo for photo in self.photos if photo.folder_key == key]

    def __iter__(self):
        return iter(self.photos)

    def __len__(self) -> int:
        return len(self.photos)


def build_group_candidates(
    group: ProposedGroup,
    catalog: PhotoCatalog,
    request_folder: str = "",
    folder_gate: bool = True,
) -> GroupCandidates:
    """Resolve a group's proposed photos and scope them to its folder."""
    request_key = folder_key(request_folder)

    resolved: List[Photo] = []
    seen = set()
    stale = 0
    for url in group.images:
        photo = catalog.resolve(url)
        if photo is None:
            stale += 1
            continue
        if photo.url in seen:
            continue
        seen.add(photo.url)
        resolved.append(photo)
    if stale:
        logger.debug(f"Group {group.group_id}: dropped {stale} proposed URLs not in the folder listing")

    source = catalog.resolve(group.source_image_url)
    source_folder = source.folder_key if source is not None else ""
    secondary = catalog.resolve(group.secondary_image_url)
    supporting = []
    for url in group.supporting_image_urls:
        photo = catalog.resolve(url)
        if photo is not None and photo not in supporting:
            supporting.append(photo)

    filled = False
    if not resolved:
        fill_key = folder_key(group.folder) or source_folder or request_key
        resolved = catalog.in_folder(fill_key)
        filled = bool(resolved)
        if filled:
            logger.debug(
                f"Group {group.group_id}: no usable proposal, filled {len(resolved)} photos from folder '{fill_key}'"
            )

    key = folder_key(group.folder) or source_folder
    if not key and resolved:
        key = resolved[0].folder_key
    if not key:
        key = request_key

    if folder_gate:
        folder_photos = [photo for photo in resolved if photo.folder_key == key]
        if not folder_photos:
            folder_photos = list(resolved)
    else:
        folder_photos = list(resolved)

    return GroupCandidates(
        group=group,
        photos=resolved,
        folder_key=key,
        folder_photos=folder_photos,
        filled_from_folder=filled,
        source_photo=source,
        secondary_photo=secondary,
        supporting_photos=supporting,
    )
