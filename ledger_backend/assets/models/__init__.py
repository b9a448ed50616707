# assets/models/__init__.py

from assets.models.asset import Asset, AssetCategory, AssetEvent

__all__ = [
    "Asset",
    "AssetCategory",
    "AssetEvent",
]
