from typing import Optional

from anitrack.scrapers.models import AnimeRecord, ChangeKind


def has_changed(old: Optional[AnimeRecord], new: AnimeRecord) -> bool:
    """
    Coarse structural diff deciding whether a fresh record is worth storing.

    Only the episode counts and the number of sources are compared; title,
    description, image and timestamp never count. A record seen for the first
    time is always a change.
    """
    if old is None:
        return True

    return (
        old.sub_count != new.sub_count
        or old.dub_count != new.dub_count
        or len(old.sources) != len(new.sources)
    )


def classify_increase(
    old: Optional[AnimeRecord], new: AnimeRecord
) -> Optional[ChangeKind]:
    if old is None:
        return None

    sub_increased = new.sub_count > old.sub_count
    dub_increased = new.dub_count > old.dub_count

    if sub_increased and dub_increased:
        return "all"
    if dub_increased:
        return "dub"
    if sub_increased:
        return "sub"
    return None
