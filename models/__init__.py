from .asset import AssetRow
