"""
Request bodies for the HTTP layer
"""
from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field


class BackfillRequest(BaseModel):
    org_id: str
    start: date
    end: date


class TenantSyncRequest(BaseModel):
    org_id: Optional[str] = None
    tenants: Optional[List[str]] = None


class RecalculateRepeatRequest(BaseModel):
    org_id: str


class ProductUpdateRequest(BaseModel):
    """Only fields present in the body are written."""
    sku: Optional[str] = Field(None, min_length=1)
    product_name: Optional[str] = None
    brand: Optional[str] = None
    unit_barcode: Optional[str] = None
    asin: Optional[str] = None
    shippo_sku: Optional[str] = None
    pieces_per_pack: Optional[int] = None
    pack_weight_kg: Optional[float] = None
    pack_length_cm: Optional[float] = None
    pack_width_cm: Optional[float] = None
    pack_height_cm: Optional[float] = None
    unit_cbm: Optional[float] = None
    dimensional_weight: Optional[float] = None
    unit_price_usd: Optional[float] = None
    unit_price_gbp: Optional[float] = None
    pack_cost_gbp: Optional[float] = None
    landed_cost: Optional[float] = None
    unit_lcogs: Optional[float] = None
    dtc_rrp: Optional[float] = None
    pp_unit: Optional[float] = None
    carton_barcode: Optional[str] = None
    units_per_master_carton: Optional[int] = None
    pieces_per_master_carton: Optional[int] = None
    gross_weight_kg: Optional[float] = None
    carton_width_cm: Optional[float] = None
    carton_length_cm: Optional[float] = None
    carton_height_cm: Optional[float] = None
    carton_cbm: Optional[float] = None
    dtc_rrp_ex_vat: Optional[float] = None
    active: Optional[bool] = None
