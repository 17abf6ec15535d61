from testlog.models.asset import MediaAsset
from testlog.models.base import Base
from testlog.models.enums import AssetType, VideoRole
from testlog.models.measurement import Measurement
from testlog.models.pull_test import PullTest
from testlog.models.sync_configuration import SyncConfiguration

__all__ = [
    "Base",
    "AssetType",
    "VideoRole",
    "PullTest",
    "MediaAsset",
    "Measurement",
    "SyncConfiguration",
]
