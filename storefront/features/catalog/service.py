"""
Profile catalog.

Profiles are static content: either a JSON file (PROFILES_PATH) shaped like
{"profiles": [ {...Profile...}, ... ]} or the built-in sample catalog.
"""
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional

from storefront.core.errors import NotFoundError
from storefront.models.catalog import Profile

logger = logging.getLogger(__name__)


def _media(profile_id: str, item_id: str) -> Dict[str, str]:
    return {
        "preview": f"/medias/{profile_id}/{item_id}.preview.mp4",
        "full": f"/medias/{profile_id}/{item_id}.mp4",
        "thumbnail": f"/medias/{profile_id}/{item_id}.jpg",
    }


SAMPLE_PROFILES = [
    {
        "id": "profile1",
        "displayName": "Creator One",
        "membershipPrice": 999,
        "promotionPercentage": 17,
        "items": [
            {"id": "video1", "type": "free", "title": "Welcome", "basePrice": 0, "media": _media("profile1", "video1")},
            {"id": "video2", "type": "membership", "title": "Members Cut", "basePrice": 0, "media": _media("profile1", "video2")},
            {"id": "video3", "type": "paid", "title": "Behind the Scenes", "basePrice": 699, "media": _media("profile1", "video3")},
            {"id": "video4", "type": "paid", "title": "Special Edition", "basePrice": 799, "media": _media("profile1", "video4")},
        ],
    },
    {
        "id": "profile2",
        "displayName": "Creator Two",
        "membershipPrice": 0,
        "promotionPercentage": 0,
        "items": [
            {"id": "clip1", "type": "free", "title": "Hello", "basePrice": 0, "media": _media("profile2", "clip1")},
            {"id": "clip2", "type": "membership", "title": "Followers Only", "basePrice": 0, "media": _media("profile2", "clip2")},
            {"id": "clip3", "type": "paid", "title": "Full Session", "basePrice": 499, "media": _media("profile2", "clip3")},
        ],
    },
]


class ProfileCatalog:
    """In-memory lookup of profiles by id."""

    def __init__(self, profiles: Iterable[Profile]):
        self._profiles: Dict[str, Profile] = {p.id: p for p in profiles}

    def get(self, profile_id: str) -> Optional[Profile]:
        return self._profiles.get(profile_id)

    def require(self, profile_id: str) -> Profile:
        profile = self.get(profile_id)
        if profile is None:
            raise NotFoundError(f"Profile not found: {profile_id}")
        return profile

    def __iter__(self):
        return iter(self._profiles.values())

    def __len__(self) -> int:
        return len(self._profiles)


def load_catalog(path: Optional[str] = None) -> ProfileCatalog:
    """Load the catalog from a JSON file, or the sample catalog when no path is given."""
    if not path:
        return ProfileCatalog(Profile.model_validate(p) for p in SAMPLE_PROFILES)

    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    entries = raw.get("profiles", []) if isinstance(raw, dict) else raw
    catalog = ProfileCatalog(Profile.model_validate(p) for p in entries)
    logger.info(f"[catalog] loaded {len(catalog)} profiles from {path}")
    return catalog
