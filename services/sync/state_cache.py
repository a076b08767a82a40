"""
Cached per-user views of flags and onboarding state.

Reads go through the two-level cache (in-process + Redis). Flag entries are
keyed by two epochs, one global and one per user; a change event bumps the
matching epoch, which orphans every key built from the old value. Onboarding
views are deleted outright on change.

This is a read accelerator for end-user routes only. Admin and mutation paths
read the database directly.
"""
from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from schemas.onboarding import OnboardingStateOut
from services.cache.cache_backend import cache_bump, cache_delete, cache_get, cache_set
from services.flag_resolver import lookup, resolve_all
from services.onboarding.state_store import get_or_create_state, serialize_state
from services.sync.change_feed import ChangeEvent, ChangeFeed, Subscription, change_feed

logger = logging.getLogger(__name__)

FLAG_CACHE_TTL_SEC = int(os.getenv("FLAG_CACHE_TTL_SEC", "60"))
ONBOARDING_CACHE_TTL_SEC = int(os.getenv("ONBOARDING_CACHE_TTL_SEC", "30"))
# epochs must outlive the entries built from them
EPOCH_TTL_SEC = max(FLAG_CACHE_TTL_SEC, ONBOARDING_CACHE_TTL_SEC) * 10

GLOBAL_FLAG_EPOCH_KEY = "flags:epoch:global"


def _user_epoch_key(user_id: str) -> str:
    return f"flags:epoch:user:{user_id}"


def _onboarding_key(user_id: str) -> str:
    return f"onboarding:{user_id}"


class UserStateCache:
    def __init__(self) -> None:
        self._subscription: Optional[Subscription] = None

    # ── invalidation ─────────────────────────────────────────────

    def attach(self, feed: ChangeFeed) -> None:
        if self._subscription is not None and not self._subscription.closed:
            return
        self._subscription = feed.subscribe_all(self.handle_change)

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def handle_change(self, event: ChangeEvent) -> None:
        if event.table == "feature_flags":
            self._bump(GLOBAL_FLAG_EPOCH_KEY)
        elif event.table == "user_feature_overrides":
            if event.user_id:
                self._bump(_user_epoch_key(event.user_id))
            else:
                self._bump(GLOBAL_FLAG_EPOCH_KEY)
        elif event.table == "onboarding_state" and event.user_id:
            cache_delete(_onboarding_key(event.user_id))

    def _epoch(self, key: str) -> int:
        value = cache_get(key)
        if isinstance(value, int):
            return value
        epoch = time.time_ns()
        cache_set(key, epoch, ttl_seconds=EPOCH_TTL_SEC)
        return epoch

    def _bump(self, key: str) -> None:
        epoch = cache_bump(key, ttl_seconds=EPOCH_TTL_SEC)
        logger.debug("state_cache_invalidated key=%s epoch=%d", key, epoch)

    def _flag_prefix(self, user_id: str) -> str:
        return f"flags:{self._epoch(GLOBAL_FLAG_EPOCH_KEY)}:{self._epoch(_user_epoch_key(user_id))}:{user_id}"

    # ── reads ────────────────────────────────────────────────────

    def get_flag(self, db: Session, user_id: str, flag_name: str) -> bool:
        key = f"{self._flag_prefix(user_id)}:one:{flag_name}"
        hit = cache_get(key)
        if isinstance(hit, bool):
            return hit
        try:
            value = lookup(db, flag_name, user_id)
        except SQLAlchemyError:
            # fail closed, but leave nothing cached so recovery is immediate
            logger.exception("flag_cache_resolve_failed flag=%s user_id=%s", flag_name, user_id)
            return False
        cache_set(key, value, ttl_seconds=FLAG_CACHE_TTL_SEC)
        return value

    def get_all_flags(self, db: Session, user_id: str) -> List[Dict[str, Any]]:
        key = f"{self._flag_prefix(user_id)}:all"
        hit = cache_get(key)
        if isinstance(hit, list):
            return hit
        flags = [f.to_dict() for f in resolve_all(db, user_id)]
        cache_set(key, flags, ttl_seconds=FLAG_CACHE_TTL_SEC)
        return flags

    def get_onboarding(self, db: Session, user_id: str) -> Dict[str, Any]:
        key = _onboarding_key(user_id)
        hit = cache_get(key)
        if isinstance(hit, dict):
            return hit
        state = get_or_create_state(db, user_id)
        view = OnboardingStateOut.model_validate(serialize_state(state)).model_dump(mode="json")
        cache_set(key, view, ttl_seconds=ONBOARDING_CACHE_TTL_SEC)
        return view


user_state_cache = UserStateCache()
user_state_cache.attach(change_feed)
