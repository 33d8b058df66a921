from .catalog import UNTRACKED, Product, StockLevel, Tracked, Untracked


__all__ = [
    "Product",
    "StockLevel",
    "Tracked",
    "Untracked",
    "UNTRACKED",
]
