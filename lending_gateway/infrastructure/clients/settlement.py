"""Settlement Network HTTP client for irreversible wallet-to-wallet transfers"""

import asyncio
import httpx
from lending_gateway.config import settings
from lending_gateway.domain.exceptions import SettlementNetworkError, TransferFailed
from lending_gateway.domain.models import FeeParams, TransferReceipt
from lending_gateway.infrastructure.observability.metrics import (
    settlement_network_failures_counter,
    settlement_network_latency_histogram,
)

CONFIRMED = "confirmed"
SUBMITTED = "submitted"


def fee_params_from_settings() -> FeeParams:
    return FeeParams(
        gas_price_wei=settings.transfer_gas_price_wei,
        gas_limit=settings.transfer_gas_limit,
        chain_id=settings.chain_id,
    )


class SettlementNetworkClient:
    """
    Client for the external transfer gateway.

    The httpx.AsyncClient is owned by the caller and injected here, so no
    connection state lives at module level.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str | None = None,
        timeout: float | None = None,
        poll_interval: float | None = None,
    ):
        self.http_client = http_client
        self.base_url = base_url or settings.settlement_network_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.poll_interval = settings.confirmation_poll_interval_seconds if poll_interval is None else poll_interval

    async def transfer(
        self,
        from_address: str,
        to_address: str,
        amount: float,
        fee_params: FeeParams,
        idempotency_key: str,
    ) -> TransferReceipt:
        """
        Submit a transfer and wait until the network confirms it.

        The idempotency key is sent with every submission, so re-sending after
        an unknown outcome returns the original transfer instead of a new one.

        Raises:
            TransferFailed: rejected=True if the network refused the transfer,
                rejected=False if the outcome is unknown
        """
        submitted = False
        with settlement_network_latency_histogram.labels(call="transfer").time():
            try:
                response = await self.http_client.post(
                    f"{self.base_url}/transfers",
                    json={
                        "from_address": from_address,
                        "to_address": to_address,
                        "amount": amount,
                        "gas_price_wei": fee_params.gas_price_wei,
                        "gas_limit": fee_params.gas_limit,
                        "chain_id": fee_params.chain_id,
                    },
                    headers={"Idempotency-Key": idempotency_key},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                data = response.json()
                submitted = True

                # Poll until the transfer leaves the submitted state
                while data["status"] == SUBMITTED:
                    await asyncio.sleep(self.poll_interval)
                    response = await self.http_client.get(
                        f"{self.base_url}/transfers/{data['reference']}",
                        timeout=self.timeout,
                    )
                    response.raise_for_status()
                    data = response.json()

            except httpx.TimeoutException as e:
                settlement_network_failures_counter.labels(call="transfer").inc()
                raise TransferFailed(f"Settlement Network timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                settlement_network_failures_counter.labels(call="transfer").inc()
                status_code = e.response.status_code
                rejected = not submitted and 400 <= status_code < 500
                raise TransferFailed(f"Settlement Network error: {status_code}", rejected=rejected) from e
            except httpx.RequestError as e:
                settlement_network_failures_counter.labels(call="transfer").inc()
                raise TransferFailed(f"Settlement Network unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                settlement_network_failures_counter.labels(call="transfer").inc()
                raise TransferFailed(f"Invalid transfer response from Settlement Network: {e}") from e

        if data["status"] != CONFIRMED:
            settlement_network_failures_counter.labels(call="transfer").inc()
            raise TransferFailed(
                f"transfer {data.get('reference')} {data['status']}: {data.get('error', 'no reason given')}",
                rejected=True,
            )

        return TransferReceipt(reference=data["reference"], fee=float(data.get("fee", 0.0)))

    async def balance_of(self, address: str) -> float:
        """
        Fetch the on-network balance of a wallet address.

        Raises:
            SettlementNetworkError: On timeout, HTTP errors, or invalid response
        """
        with settlement_network_latency_histogram.labels(call="balance").time():
            try:
                response = await self.http_client.get(
                    f"{self.base_url}/balances/{address}",
                    timeout=self.timeout,
                )
                response.raise_for_status()
                return float(response.json()["balance"])

            except httpx.TimeoutException as e:
                settlement_network_failures_counter.labels(call="balance").inc()
                raise SettlementNetworkError(f"Settlement Network timeout after {self.timeout}s") from e
            except httpx.HTTPError as e:
                settlement_network_failures_counter.labels(call="balance").inc()
                raise SettlementNetworkError(f"Settlement Network error: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                settlement_network_failures_counter.labels(call="balance").inc()
                raise SettlementNetworkError(f"Invalid balance data from Settlement Network: {e}") from e
