from assetvault.models.directory import Organization, Project, User
from assetvault.models.asset import Asset, AssetVersion, AssetRendition
from assetvault.models.job import ProcessingJob

__all__ = [
    "Organization",
    "Project",
    "User",
    "Asset",
    "AssetVersion",
    "AssetRendition",
    "ProcessingJob",
]
