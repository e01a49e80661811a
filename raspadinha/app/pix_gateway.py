"""
=============================================================================
RASPADINHA - Cliente do Gateway PIX (Woovi / OpenPix)
=============================================================================
Cria cobranças PIX. A confirmação do pagamento chega depois, pelos webhooks.
=============================================================================
"""

import asyncio
import base64
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import aiohttp

from .config import DepositConfig, settings
from .errors import PaymentGatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PixCharge:
    correlation_id: str
    br_code: Optional[str]
    qr_code_image: Optional[str]
    pix_key: Optional[str]
    expires_in: int
    payment_link_url: Optional[str]
    global_id: Optional[str]

    @classmethod
    def from_response(cls, data: Dict[str, Any], correlation_id: str) -> "PixCharge":
        charge = data.get("charge") or {}
        return cls(
            correlation_id=charge.get("correlationID") or correlation_id,
            br_code=charge.get("brCode"),
            qr_code_image=charge.get("qrCodeImage"),
            pix_key=charge.get("pixKey"),
            expires_in=int(charge.get("expiresIn") or DepositConfig.CHARGE_EXPIRES_IN),
            payment_link_url=charge.get("paymentLinkUrl"),
            global_id=charge.get("globalID"),
        )


def build_authorization(
    app_id: Optional[str],
    client_id: Optional[str],
    client_secret: Optional[str],
) -> Optional[str]:
    """
    APP_ID é enviado como está; sem ele, Basic base64(client_id:client_secret).
    """
    if app_id:
        return app_id
    if client_id and client_secret:
        token = base64.b64encode(f"{client_id}:{client_secret}".encode()).decode()
        return f"Basic {token}"
    return None


class WooviClient:

    def __init__(
        self,
        base_url: str = settings.WOOVI_API_BASE,
        app_id: str = settings.WOOVI_APP_ID,
        client_id: str = settings.WOOVI_CLIENT_ID,
        client_secret: str = settings.WOOVI_CLIENT_SECRET,
        timeout_seconds: float = settings.WOOVI_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.authorization = build_authorization(app_id, client_id, client_secret)
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        return self.session

    async def close(self) -> None:
        if self.session is not None and not self.session.closed:
            await self.session.close()

    async def create_charge(
        self,
        correlation_id: str,
        amount: Decimal,
        customer_name: str = "Cliente",
        customer_email: str = "",
    ) -> PixCharge:
        if not self.authorization:
            logger.error("[PIX] Credenciais da Woovi não configuradas")
            raise PaymentGatewayError()

        payload = {
            "correlationID": correlation_id,
            "value": int((amount * 100).to_integral_value()),  # centavos
            "comment": f"Depósito de R$ {amount:.2f}",
            "customer": {"name": customer_name, "email": customer_email},
            "expiresIn": DepositConfig.CHARGE_EXPIRES_IN,
        }
        url = f"{self.base_url}/charge"
        session = await self._get_session()

        try:
            async with session.post(
                url, json=payload, headers={"Authorization": self.authorization}
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    logger.error("[PIX] Woovi respondeu %s: %s", response.status, error_text)
                    raise PaymentGatewayError()
                data = await response.json()
        except asyncio.TimeoutError as e:
            logger.error("[PIX] Timeout ao criar cobrança %s", correlation_id)
            raise PaymentGatewayError() from e
        except aiohttp.ClientError as e:
            logger.error("[PIX] Erro de rede ao criar cobrança %s: %s", correlation_id, e)
            raise PaymentGatewayError() from e

        logger.info("[PIX] Cobrança criada %s (R$ %s)", correlation_id, amount)
        return PixCharge.from_response(data, correlation_id)
