"""Profile rows: read one, or create-or-patch the signed-in user's own."""
import logging
from typing import Optional

from numnum.clients.supabase_client import GatewayError, SupabaseClient
from numnum.models import ProfileRow, decode_row
from numnum.schemas import ActionResult, ProfileResponse, ProfileUpdate, sign_in_required

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"


def to_profile_response(profile: ProfileRow) -> ProfileResponse:
    return ProfileResponse(
        id=profile.id,
        username=profile.handle,
        display_name=profile.name,
        avatar_url=profile.avatar_url,
        bio=profile.bio,
        is_public=profile.public,
        has_completed_onboarding=bool(profile.has_completed_onboarding),
    )


class ProfileService:
    def __init__(self, gateway: SupabaseClient) -> None:
        self.gateway = gateway

    async def get_profile(self, user_id: str) -> Optional[ProfileResponse]:
        result = await (
            self.gateway.table(PROFILES_TABLE)
            .select("*")
            .eq("id", user_id)
            .maybe_single()
            .execute()
        )
        profile = decode_row(ProfileRow, result.data)
        return to_profile_response(profile) if profile else None

    async def ensure_profile(
        self, user_id: Optional[str], patch: Optional[ProfileUpdate] = None
    ) -> ActionResult[ProfileResponse]:
        """Insert the profile if it is missing, otherwise update the given fields."""
        if not user_id:
            return sign_in_required("edit a profile")

        changes = patch.model_dump(exclude_none=True) if patch else {}
        existing = await (
            self.gateway.table(PROFILES_TABLE)
            .select("id")
            .eq("id", user_id)
            .maybe_single()
            .execute()
        )

        if existing.data is None:
            result = await (
                self.gateway.table(PROFILES_TABLE)
                .insert({"id": user_id, **changes})
                .select("*")
                .maybe_single()
                .execute()
            )
            logger.info("Created profile %s", user_id)
        elif changes:
            result = await (
                self.gateway.table(PROFILES_TABLE)
                .update(changes)
                .eq("id", user_id)
                .select("*")
                .maybe_single()
                .execute()
            )
        else:
            result = await (
                self.gateway.table(PROFILES_TABLE)
                .select("*")
                .eq("id", user_id)
                .maybe_single()
                .execute()
            )

        profile = decode_row(ProfileRow, result.data)
        if profile is None:
            raise GatewayError(f"Backend returned no readable profile for {user_id}")
        return ActionResult[ProfileResponse].ok(to_profile_response(profile))
