"""
Evidence Catalog
================

Material evidence items attached to an accident. Independent of
testimony fragments.
"""

from typing import Iterable, List, Optional

from .schemas import MaterialEvidence


def catalog(
    accident_id: int,
    description: str,
    is_useful: bool = False,
    file_name: Optional[str] = None,
    file_url: Optional[str] = None,
) -> MaterialEvidence:
    description = (description or "").strip()
    if not description:
        raise ValueError("Evidence description must not be empty")
    return MaterialEvidence(
        accident_id=accident_id,
        description=description,
        is_useful=is_useful,
        file_name=file_name,
        file_url=file_url,
    )


def mark_useful(item: MaterialEvidence, flag: bool) -> MaterialEvidence:
    return item.model_copy(update={"is_useful": bool(flag)})


def edit(item: MaterialEvidence, **fields) -> MaterialEvidence:
    """Merge editable fields (description, is_useful, file_name, file_url)"""
    allowed = {"description", "is_useful", "file_name", "file_url"}
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown evidence fields: {sorted(unknown)}")
    if "description" in fields and not (fields["description"] or "").strip():
        raise ValueError("Evidence description must not be empty")
    return item.model_copy(update=fields)


def useful_evidence(items: Iterable[MaterialEvidence]) -> List[MaterialEvidence]:
    return [e for e in items if e.is_useful]
