"""
dome_utils.py — DOME (overlay / seasonal strategy / batch) identifier helpers.

A DOME id is a compact, dash-separated token:

    REG_ID-STRATUM-RAP_ID-MAN_ID-RAP_VER-CLIM_ID-DESCRIPTION

e.g. "MACHAKOS-1-RAP1-MAN2-1-0XXX-BASELINE". An experiment can carry several
of them joined with "|" when more than one DOME was applied in sequence.
The description is the remainder of the token and may contain dashes itself.
"""
from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, List, Mapping, Optional, Sequence

DOME_NAME_FIELDS = ("reg_id", "stratum", "rap_id", "man_id", "rap_ver", "clim_id", "description")
DOME_SEPARATOR = "|"


def unpack_dome_name(dome_name: str) -> Dict[str, str]:
    """Split one DOME id into its named parts; missing trailing parts are absent."""
    if not dome_name:
        return {}
    parts = dome_name.split("-", len(DOME_NAME_FIELDS) - 1)
    return dict(zip(DOME_NAME_FIELDS, parts))


def get_dome_meta_infos(dome_str: str) -> List[Dict[str, str]]:
    """Unpack every "|"-separated DOME id of a composite string, in order."""
    return [unpack_dome_name(dome) for dome in (dome_str or "").split(DOME_SEPARATOR)]


def get_dome_meta_info(
    dome_bases: Sequence[Mapping[str, str]], meta_id: str, default: str = ""
) -> str:
    """First non-empty ``meta_id`` across ``dome_bases``, else ``default``."""
    for base in dome_bases:
        value = base.get(meta_id) or ""
        if value:
            return value
    return default


def get_dome_hash(dome_hashes: Optional[Mapping[str, str]], dome_ids: str) -> str:
    """Map each "|"-separated DOME id to its content hash.

    Ids without a known hash are dropped rather than left as blanks.
    """
    if not dome_hashes:
        return ""
    found = [dome_hashes.get(dome_id) or "" for dome_id in (dome_ids or "").split(DOME_SEPARATOR)]
    return DOME_SEPARATOR.join(h for h in found if h)


def dome_content_hash(dome: Any) -> str:
    """SHA-256 of a DOME definition, independent of key order."""
    payload = json.dumps(dome, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def build_dome_hash_index(domes: Mapping[str, Any]) -> Dict[str, str]:
    """Hash every DOME definition, keyed by its upper-cased DOME id."""
    return {dome_id.upper(): dome_content_hash(dome) for dome_id, dome in domes.items()}
