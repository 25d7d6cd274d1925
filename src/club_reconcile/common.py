from __future__ import annotations

from typing import Any, List, Optional

from .config_loader import ReconcileConfig, load_reconcile_config
from .errors import ReconcileError, RowError
from .identity_index import IdentityIndex, IndexCollision, build_index
from .models import (
    ExternalContact,
    KnownProfile,
    LinkedCard,
    MatchCandidate,
    MatchResult,
    MergedPaymentView,
    PaymentEvidence,
)
from .normalization import (
    frame_records,
    normalize_email,
    normalize_name,
    normalize_phone,
    read_table,
    safe_get,
    warn_missing,
)

__all__ = [
    "ExternalContact",
    "IdentityIndex",
    "IndexCollision",
    "KnownProfile",
    "LinkedCard",
    "MatchCandidate",
    "MatchResult",
    "MergedPaymentView",
    "PaymentEvidence",
    "ReconcileConfig",
    "ReconcileError",
    "RowError",
    "build_index",
    "ensure_known_profile",
    "frame_records",
    "load_config",
    "load_profiles",
    "normalize_email",
    "normalize_name",
    "normalize_phone",
    "read_table",
    "safe_get",
    "warn_missing",
]


def load_config(args: Any) -> ReconcileConfig:
    return load_reconcile_config(args)


def ensure_known_profile(obj: Any) -> KnownProfile:
    if isinstance(obj, KnownProfile):
        return obj
    if isinstance(obj, dict):
        return KnownProfile.from_mapping(obj)
    raise TypeError(f"Unsupported profile payload type: {type(obj)!r}")


def load_profiles(path: Optional[str]) -> List[KnownProfile]:
    if warn_missing(path, "Profiles"):
        return []
    profiles = [ensure_known_profile(record) for record in frame_records(read_table(path))]
    return [profile for profile in profiles if profile.profile_id]
