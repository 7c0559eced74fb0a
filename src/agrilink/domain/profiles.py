"""Domain models for shop owner profiles."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

PROFILE_FIELDS = (
    "full_name",
    "phone",
    "profile_image_url",
    "region",
    "district",
    "street_area",
    "shop_name",
    "shop_type",
    "business_size",
    "onboarding_completed",
)

TANZANIA_REGIONS = (
    "Arusha",
    "Dar es Salaam",
    "Dodoma",
    "Geita",
    "Iringa",
    "Kagera",
    "Katavi",
    "Kigoma",
    "Kilimanjaro",
    "Lindi",
    "Manyara",
    "Mara",
    "Mbeya",
    "Morogoro",
    "Mtwara",
    "Mwanza",
    "Njombe",
    "Pemba North",
    "Pemba South",
    "Pwani",
    "Rukwa",
    "Ruvuma",
    "Shinyanga",
    "Simiyu",
    "Singida",
    "Songwe",
    "Tabora",
    "Tanga",
    "Unguja North",
    "Unguja South",
)

SHOP_TYPES = (
    "Agrovet Shop",
    "Agricultural Supplies Store",
    "Farm Input Dealer",
    "Veterinary Clinic",
    "Seed & Fertilizer Store",
    "Agricultural Equipment Dealer",
    "Other",
)

BUSINESS_SIZES = (
    "Small (1-5 employees)",
    "Medium (6-20 employees)",
    "Large (21+ employees)",
    "Individual/Solo",
)


@dataclass(frozen=True)
class UserProfile:
    """A row of the ``user_profiles`` table, one per user."""

    id: str
    full_name: str | None = None
    phone: str | None = None
    profile_image_url: str | None = None
    region: str | None = None
    district: str | None = None
    street_area: str | None = None
    shop_name: str | None = None
    shop_type: str | None = None
    business_size: str | None = None
    onboarding_completed: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProfileCompletionStatus(str, Enum):
    """Next onboarding step a profile still needs."""

    NEEDS_NAME = "needs_name"
    NEEDS_SHOP_ADDRESS = "needs_shop_address"
    NEEDS_SHOP_DETAILS = "needs_shop_details"
    COMPLETE = "complete"
