from enum import Enum


class AssetType(str, Enum):
    VIDEO = "video"
    PHOTO = "photo"
    EXPORT = "export"
    DOCUMENT = "document"
    TESTER_DATA = "tester_data"


class VideoRole(str, Enum):
    ANCHOR_VIEW = "anchor_view"
    EQUIPMENT_VIEW = "equipment_view"
    UNASSIGNED = "unassigned"


def suggest_video_role(claimed: set[str]) -> VideoRole:
    """Return the first of anchor_view, equipment_view not in ``claimed``, else unassigned."""
    for role in (VideoRole.ANCHOR_VIEW, VideoRole.EQUIPMENT_VIEW):
        if role.value not in claimed:
            return role
    return VideoRole.UNASSIGNED
