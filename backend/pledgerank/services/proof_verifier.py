"""ZK proof verification: consumed as an opaque external service.

The proof system itself is out of scope; this module only asks a verifier
whether ``(zk_proof_ref, commitment_hash, event_id)`` checks out.
"""

from typing import Protocol

import httpx
import structlog

from pledgerank.core.config import get_settings
from pledgerank.core.exceptions import DependencyError

logger = structlog.get_logger(__name__)


class ProofVerifier(Protocol):
    async def verify(self, zk_proof_ref: str, commitment_hash: str, event_id: str) -> bool: ...


class HttpProofVerifier:
    """Client for a verifier exposing ``POST /verify -> {"valid": bool}``."""

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else get_settings().proof_verify_timeout_seconds
        self._transport = transport

    async def verify(self, zk_proof_ref: str, commitment_hash: str, event_id: str) -> bool:
        """Ask the verifier about one proof.

        Raises:
            DependencyError: On transport failure, non-2xx status, or a
                malformed response body
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/verify",
                    json={
                        "zkProofRef": zk_proof_ref,
                        "commitmentHash": commitment_hash,
                        "eventId": event_id,
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("proof_verifier_bad_status", status_code=exc.response.status_code, event_id=event_id)
            raise DependencyError(f"Proof verifier returned {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.warning("proof_verifier_unreachable", error=str(exc), error_type=type(exc).__name__)
            raise DependencyError("Proof verifier unreachable") from exc
        except ValueError as exc:
            raise DependencyError("Proof verifier returned invalid JSON") from exc

        valid = data.get("valid") if isinstance(data, dict) else None
        if not isinstance(valid, bool):
            raise DependencyError("Proof verifier response missing 'valid'")
        return valid


class StaticProofVerifier:
    """Verifier with a fixed answer. Local development and tests only."""

    def __init__(self, valid: bool = True):
        self.valid = valid
        self.calls: list[tuple[str, str, str]] = []

    async def verify(self, zk_proof_ref: str, commitment_hash: str, event_id: str) -> bool:
        self.calls.append((zk_proof_ref, commitment_hash, event_id))
        return self.valid


def build_proof_verifier() -> ProofVerifier:
    """Build the verifier for the current settings.

    Raises:
        DependencyError: If no verifier URL is configured outside debug mode
    """
    settings = get_settings()
    if settings.proof_verifier_url:
        return HttpProofVerifier(settings.proof_verifier_url)
    if settings.debug:
        logger.warning("proof_verifier_static", reason="PROOF_VERIFIER_URL not set, debug mode accepts all proofs")
        return StaticProofVerifier(valid=True)
    raise DependencyError("PROOF_VERIFIER_URL must be set outside debug mode")
