"""Form actions for the sign-in and onboarding screens."""

import logging
from dataclasses import dataclass

from agrilink.domain.auth import AuthResult
from agrilink.domain.errors import AgriLinkError, ProviderError, ValidationError
from agrilink.domain.navigation import STATUS_ROUTES, Route
from agrilink.domain.profiles import BUSINESS_SIZES, SHOP_TYPES, TANZANIA_REGIONS
from agrilink.services.auth import AuthService
from agrilink.services.profiles import ProfileService
from agrilink.validation import (
    normalize_phone,
    require_choice,
    require_text,
    validate_otp_code,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepResult:
    """Outcome of an onboarding form submission."""

    ok: bool
    next_route: Route | None = None
    error: AgriLinkError | None = None


@dataclass
class OnboardingFlow:
    """Validates form input, then calls the auth and profile services."""

    auth_service: AuthService
    profile_service: ProfileService
    country_code: str = "255"

    async def send_code(self, raw_phone: str) -> AuthResult:
        try:
            phone = normalize_phone(raw_phone, self.country_code)
        except ValidationError as exc:
            return AuthResult.failure(exc)
        return await self.auth_service.request_otp(phone)

    async def resend_code(self) -> AuthResult:
        phone = self.auth_service.state.saved_phone_number
        if not phone:
            return AuthResult.failure(ValidationError("Please enter your phone number"))
        return await self.auth_service.request_otp(phone)

    async def confirm_code(self, code: str) -> AuthResult:
        phone = self.auth_service.state.saved_phone_number
        if not phone:
            return AuthResult.failure(ValidationError("Please enter your phone number"))
        try:
            cleaned = validate_otp_code(code)
        except ValidationError as exc:
            return AuthResult.failure(exc)
        return await self.auth_service.verify_otp(phone, cleaned)

    def change_number(self) -> None:
        self.auth_service.reset_otp_state()

    async def submit_personal_info(
        self, full_name: str, profile_image_url: str | None = None
    ) -> StepResult:
        """Save the owner's name; next step is the shop location."""
        try:
            name = require_text(full_name, "Please enter your full name")
            user = self.auth_service.state.user
            await self.profile_service.update_personal_info(
                user.id if user else None,
                full_name=name,
                phone=user.phone if user else None,
                profile_image_url=profile_image_url,
            )
        except AgriLinkError as exc:
            return StepResult(ok=False, error=exc)
        except Exception as exc:
            return self._failed("Failed to save profile", exc)
        return StepResult(ok=True, next_route=Route.SHOP_LOCATION)

    async def submit_shop_location(
        self, region: str, district: str, street_area: str
    ) -> StepResult:
        """Save the shop address and route on the resulting onboarding status."""
        try:
            region = require_text(region, "Please select your region")
            region = require_choice(
                region, TANZANIA_REGIONS, "Please select your region"
            )
            district = require_text(district, "Please enter your district")
            street_area = require_text(street_area, "Please enter your street or area")
            user_id = self._user_id()
            await self.profile_service.update_shop_location(
                user_id, region=region, district=district, street_area=street_area
            )
        except AgriLinkError as exc:
            return StepResult(ok=False, error=exc)
        except Exception as exc:
            return self._failed("Failed to save location", exc)
        status = await self.profile_service.onboarding_status(user_id)
        logger.info("Shop location saved, next step: %s", status.value)
        return StepResult(ok=True, next_route=STATUS_ROUTES[status])

    async def submit_shop_details(
        self, shop_name: str, shop_type: str, business_size: str | None = None
    ) -> StepResult:
        """Save shop details, mark onboarding complete and go to the main tabs."""
        try:
            name = require_text(shop_name, "Please enter your shop name")
            kind = require_text(shop_type, "Please select your shop type")
            kind = require_choice(kind, SHOP_TYPES, "Please select your shop type")
            size = None
            if business_size and business_size.strip():
                size = require_choice(
                    business_size, BUSINESS_SIZES, "Please select your business size"
                )
            user_id = self._user_id()
            await self.profile_service.update_shop_details(
                user_id, shop_name=name, shop_type=kind, business_size=size
            )
            await self.profile_service.complete_onboarding(user_id)
        except AgriLinkError as exc:
            return StepResult(ok=False, error=exc)
        except Exception as exc:
            return self._failed("Failed to complete setup", exc)
        self.auth_service.set_saved_phone_number(None)
        return StepResult(ok=True, next_route=Route.TABS)

    def _user_id(self) -> str | None:
        user = self.auth_service.state.user
        return user.id if user else None

    def _failed(self, message: str, exc: Exception) -> StepResult:
        logger.exception(message)
        return StepResult(ok=False, error=ProviderError(str(exc) or message))
