"""Inference credential selection.

Only the tier label (``tenant`` or ``platform_grace``) ever leaves this
module in logs, errors or audit data.
"""

from typing import Final
from uuid import UUID

from beartype import beartype
from pydantic import SecretStr

from ..core.config import Settings
from ..core.database import Database
from ..core.errors import PipelineError, missing_credential
from ..core.logging_utils import get_logger
from ..core.result_types import Err, Ok
from ..core.secrets import SecretCipher
from ..models.estimate import ResolvedCredential
from ..models.quote import KeySource

logger = get_logger(__name__)

TENANT_KEY_QUERY: Final = """
    SELECT openai_key_enc
    FROM tenant_secrets
    WHERE tenant_id = $1
    LIMIT 1
"""


class KeyResolver:
    """Choose between the tenant-owned key and the platform grace key."""

    def __init__(self, db: Database, settings: Settings) -> None:
        """Initialize resolver with an explicit store handle."""
        self._db = db
        self._platform_key = settings.openai_api_key
        self._cipher = SecretCipher(settings.encryption_key)

    @beartype
    async def resolve(
        self, tenant_id: UUID, forced_source: KeySource | None = None
    ) -> Ok[ResolvedCredential] | Err[PipelineError]:
        """Resolve the credential for one call.

        A forced tier never falls back to the other one.
        """
        if forced_source is KeySource.PLATFORM_GRACE:
            return self._platform_credential(tenant_id, forced=True)

        tenant_key = await self._tenant_key(tenant_id)
        if isinstance(tenant_key, Err):
            return tenant_key

        if tenant_key.value is not None:
            logger.info("Using tenant credential for tenant %s", tenant_id)
            return Ok(
                ResolvedCredential(api_key=tenant_key.value, key_source=KeySource.TENANT)
            )

        if forced_source is KeySource.TENANT:
            logger.warning("Tenant %s forced to tenant key but none is stored", tenant_id)
            return Err(
                missing_credential(
                    "Tenant API key is required but not configured",
                    key_source=KeySource.TENANT.value,
                )
            )

        return self._platform_credential(tenant_id, forced=False)

    def _platform_credential(
        self, tenant_id: UUID, *, forced: bool
    ) -> Ok[ResolvedCredential] | Err[PipelineError]:
        key = self._platform_key
        if key is None or not key.get_secret_value().strip():
            logger.warning(
                "No platform grace credential available for tenant %s (forced=%s)",
                tenant_id,
                forced,
            )
            return Err(
                missing_credential(
                    "Platform API key is not configured",
                    key_source=KeySource.PLATFORM_GRACE.value,
                )
            )

        logger.info("Using platform grace credential for tenant %s", tenant_id)
        return Ok(ResolvedCredential(api_key=key, key_source=KeySource.PLATFORM_GRACE))

    async def _tenant_key(
        self, tenant_id: UUID
    ) -> Ok[SecretStr | None] | Err[PipelineError]:
        stored = await self._db.fetchval(TENANT_KEY_QUERY, tenant_id)
        if stored is None or not str(stored).strip():
            return Ok(None)

        decrypted = self._cipher.decrypt(str(stored))
        if isinstance(decrypted, Err):
            logger.error(
                "Stored tenant credential for tenant %s is unusable: %s",
                tenant_id,
                decrypted.error,
            )
            return Err(
                missing_credential(
                    "Tenant API key could not be decrypted",
                    key_source=KeySource.TENANT.value,
                )
            )
        return Ok(decrypted.value)
