from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from firebase_admin import firestore
from google.cloud.firestore_v1.field_path import FieldPath
from loguru import logger

from models import History


class UserStore:
    """User documents in Firestore, one per uid.

    Every write is a field-level merge; concurrent writers race per field.
    """

    def __init__(self, db: Any, collection: str = "userCollection") -> None:
        self.db = db
        self.collection = collection

    def _doc(self, uid: str):
        return self.db.collection(self.collection).document(uid)

    def _read(self, uid: str) -> Optional[Dict[str, Any]]:
        snapshot = self._doc(uid).get()
        if not snapshot.exists:
            return None
        return snapshot.to_dict() or {}

    def get_preferences(self, uid: str) -> Dict[str, Any]:
        data = self._read(uid)
        if not data:
            return {}
        prefs = data.get("preferences")
        if not isinstance(prefs, dict):
            return {}
        inner = prefs.get("preferences")
        if isinstance(inner, dict):
            prefs = self._migrate_nested_preferences(uid, prefs, inner)
        return prefs

    def _migrate_nested_preferences(
        self, uid: str, outer: Dict[str, Any], inner: Dict[str, Any]
    ) -> Dict[str, Any]:
        # Older clients saved {"preferences": {"preferences": {...}}}.
        migrated = {k: v for k, v in outer.items() if k != "preferences"}
        migrated.update(inner)
        self._doc(uid).update({"preferences": migrated})
        logger.info("migrated nested preferences for uid={}", uid)
        return migrated

    def merge_preferences(self, uid: str, partial: Dict[str, Any]) -> None:
        if not partial:
            return
        # Each listed path is replaced whole; a re-rated entry must not keep old fields.
        paths = []
        for key, value in partial.items():
            if key == "ratings" and isinstance(value, dict):
                paths.extend(FieldPath("preferences", "ratings", rid) for rid in value)
            else:
                paths.append(FieldPath("preferences", key))
        if not paths:
            return
        self._doc(uid).set({"preferences": partial}, merge=paths)

    def sync_profile(
        self,
        uid: str,
        *,
        email: Optional[str],
        display_name: Optional[str],
        photo_url: Optional[str],
    ) -> None:
        self._doc(uid).set(
            {
                "email": email,
                "displayName": display_name,
                "photoURL": photo_url,
                "lastLogin": firestore.SERVER_TIMESTAMP,
                "updatedAt": firestore.SERVER_TIMESTAMP,
            },
            merge=True,
        )

    def append_history(
        self,
        uid: str,
        keywords: Iterable[str] = (),
        restaurant_names: Iterable[str] = (),
    ) -> bool:
        keyword_list = list(dict.fromkeys(k.strip() for k in keywords if k and k.strip()))
        name_list = list(dict.fromkeys(n.strip() for n in restaurant_names if n and n.strip()))
        update: Dict[str, Any] = {}
        if keyword_list:
            update["searchKeywords"] = firestore.ArrayUnion(keyword_list)
        if name_list:
            update["recommendedHistory"] = firestore.ArrayUnion(name_list)
        if not update:
            return False
        self._doc(uid).set(update, merge=True)
        return True

    def get_history(self, uid: str) -> History:
        data = self._read(uid) or {}
        history = History(
            search_keywords=list(data.get("searchKeywords") or []),
            recommended_history=list(data.get("recommendedHistory") or []),
        )
        logger.debug(
            "history uid={} keywords={} restaurants={}",
            uid,
            len(history.search_keywords),
            len(history.recommended_history),
        )
        return history
