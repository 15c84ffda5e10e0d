from .models import CatalogProduct, CatalogProductType, CodeStatus, RedemptionCode
from .service import RedemptionCodeManager

__all__ = [
    "CatalogProduct",
    "CatalogProductType",
    "CodeStatus",
    "RedemptionCode",
    "RedemptionCodeManager",
]
