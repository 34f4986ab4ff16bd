import hmac
import logging
from typing import Optional

from wa_relay.errors import ValidationError
from wa_relay.utils import mask_identifier

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    Provider credentials and the webhook verify token.

    Held in memory only; a restart returns to the values given at
    construction time.
    """

    def __init__(
        self,
        verify_token: str,
        phone_number_id: Optional[str] = None,
        access_token: Optional[str] = None,
    ):
        self._verify_token = verify_token
        self.phone_number_id = phone_number_id or ""
        self.access_token = access_token or ""

    @property
    def configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)

    def set_credentials(self, phone_number_id: Optional[str], access_token: Optional[str]) -> None:
        phone_number_id = (phone_number_id or "").strip()
        access_token = (access_token or "").strip()
        if not phone_number_id or not access_token:
            raise ValidationError("Missing phoneNumberId or accessToken")

        self.phone_number_id = phone_number_id
        self.access_token = access_token
        logger.info(f"Configuration saved for phone number id {mask_identifier(phone_number_id)}")

    def get_status(self) -> dict:
        return {
            "configured": self.configured,
            "masked_id": mask_identifier(self.phone_number_id),
        }

    def verify_token(self, token: Optional[str]) -> bool:
        if not token or not self._verify_token:
            return False
        return hmac.compare_digest(token.encode("utf-8"), self._verify_token.encode("utf-8"))
