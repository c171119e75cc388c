"""
HTTP clients for the services a voucher book is built from.

- VoucherServiceClient: batch voucher lookup
- ProviderServiceClient: provider display names
- CryptoServiceClient: short codes and signed QR payloads

Every upstream failure surfaces as ContentResolutionError carrying the
upstream message.
"""
import asyncio
import logging
from typing import Dict, List, Optional, Sequence

import httpx

from .exceptions import ContentResolutionError
from .schemas import ProviderSummary, ShortCode, VoucherSummary

logger = logging.getLogger(__name__)

# Printed vouchers stay redeemable for a year
PRINT_QR_TTL_SECONDS = 365 * 24 * 60 * 60


class ServiceClient:
    """
    Base for JSON services reached over httpx.

    Pass ``client`` to share a connection pool (or a mock transport in
    tests); otherwise one AsyncClient is opened per call.
    """

    service_name = "service"

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {}
        self.timeout = httpx.Timeout(timeout)
        self._client = client

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                response = await self._client.request(method, url, headers=self.headers, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, headers=self.headers, **kwargs)
        except httpx.RequestError as e:
            raise ContentResolutionError(
                f"{self.service_name} unreachable: {e.__class__.__name__}: {e}"
            ) from e

        if response.status_code >= 400:
            raise ContentResolutionError(
                f"{self.service_name} error: {response.status_code} - {_error_message(response)}"
            )
        return response.json()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message") or str(error)
        return body.get("message") or error or str(body)
    return str(body)


def _field(data: dict, snake: str, camel: str, default=None):
    if snake in data:
        return data[snake]
    return data.get(camel, default)


class VoucherServiceClient(ServiceClient):
    service_name = "Voucher service"

    async def get_vouchers_by_ids(self, ids: Sequence[str]) -> Dict[str, VoucherSummary]:
        """Fetch vouchers in one call. Ids the service does not know are absent."""
        if not ids:
            return {}
        data = await self._request("POST", "/internal/vouchers/batch", json={"voucherIds": list(ids)})
        items = data.get("vouchers", data.get("data", []))

        vouchers = {}
        for item in items:
            voucher = VoucherSummary(
                id=item["id"],
                title=item.get("title") or {},
                description=item.get("description") or {},
                discount_type=_field(item, "discount_type", "discountType"),
                discount_value=_field(item, "discount_value", "discountValue"),
                provider_id=_field(item, "provider_id", "providerId"),
                expires_at=_field(item, "expires_at", "expiresAt"),
            )
            vouchers[voucher.id] = voucher
        logger.debug(f"Fetched {len(vouchers)}/{len(ids)} vouchers")
        return vouchers


class ProviderServiceClient(ServiceClient):
    service_name = "Provider service"

    async def get_provider(self, provider_id: str) -> ProviderSummary:
        data = await self._request("GET", f"/internal/providers/{provider_id}")
        data = data.get("data", data)
        return ProviderSummary(
            id=data.get("id", provider_id),
            business_name=_field(data, "business_name", "businessName", ""),
        )

    async def get_providers(self, provider_ids: Sequence[str]) -> Dict[str, ProviderSummary]:
        """Look up several providers concurrently."""
        unique = list(dict.fromkeys(provider_ids))
        providers = await asyncio.gather(*(self.get_provider(pid) for pid in unique))
        return {p.id: p for p in providers}


class CryptoServiceClient(ServiceClient):
    service_name = "Crypto service"

    async def generate_short_code(self, voucher_id: str) -> ShortCode:
        data = await self._request(
            "POST",
            "/internal/short-codes",
            json={"voucherId": voucher_id, "type": "print"},
        )
        return ShortCode(
            short_code=_field(data, "short_code", "shortCode"),
            checksum=data.get("checksum"),
            expires_at=_field(data, "expires_at", "expiresAt"),
        )

    async def generate_batch_qr_payloads(
        self,
        items: List[dict],
        batch_id: str,
        ttl: int = PRINT_QR_TTL_SECONDS,
    ) -> Dict[str, str]:
        """
        Sign QR payloads for printed vouchers.

        Args:
            items: Dicts with key, voucher_id, provider_id and short_code
            batch_id: Print batch identifier
            ttl: Payload lifetime in seconds

        Returns:
            Payload per item key
        """
        if not items:
            return {}
        data = await self._request(
            "POST",
            "/internal/qr/batch",
            json={
                "batchId": batch_id,
                "ttl": ttl,
                "items": [
                    {
                        "key": item["key"],
                        "voucherId": item["voucher_id"],
                        "providerId": item.get("provider_id"),
                        "shortCode": item["short_code"],
                    }
                    for item in items
                ],
            },
        )
        payloads = data.get("payloads", data.get("data", {}))
        logger.info(f"Generated {len(payloads)} QR payloads for batch {batch_id}")
        return dict(payloads)
