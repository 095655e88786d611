"""
Remote Risk Analysis Client.

Optional classifier that scores the latest vitals. Its result is attached to
escalation decisions when available; local threshold detection never waits
for it, and any failure simply yields no analysis.
"""

import logging
from typing import Optional

import httpx

from .models import HealthAnalysis, VitalsSnapshot

logger = logging.getLogger(__name__)


class RiskAnalysisClient:
    """Posts vitals to the risk-scoring service and parses its verdict."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Service root, e.g. http://localhost:5100/api. Empty disables the client.
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def analyze(self, vitals: VitalsSnapshot) -> Optional[HealthAnalysis]:
        """
        Request a risk analysis for the given vitals.

        Returns:
            HealthAnalysis, or None when disabled, unreachable or malformed
        """
        if not self.enabled:
            return None

        payload = {
            "heart_rate": vitals.heart_rate,
            "blood_oxygen": vitals.blood_oxygen,
        }

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            ) as client:
                response = await client.post(f"{self.base_url}/analyze_health_data", json=payload)

            if response.status_code != 200:
                logger.warning(
                    f"[RISK] Service returned status {response.status_code}: {response.text}"
                )
                return None

            analysis = HealthAnalysis.from_dict(response.json())
            logger.info(
                f"[RISK] risk_score={analysis.risk_score:.2f}, anomaly={analysis.is_anomaly}"
            )
            return analysis

        except httpx.ConnectError:
            logger.debug(f"[RISK] Service not available at {self.base_url}")
            return None
        except httpx.HTTPError as e:
            logger.warning(f"[RISK] Request failed: {e}")
            return None
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"[RISK] Malformed analysis response: {e}")
            return None
