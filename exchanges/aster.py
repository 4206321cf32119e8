from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping

from execution.errors import ExchangeRejection
from execution.orders import ProtectionResult
from signing import param_to_str

from .binance import BinanceFuturesClient, map_order, order_params
from .dispatcher import SCHEME_HMAC, SCHEME_WALLET

logger = logging.getLogger(__name__)

# v3 endpoints take the wallet signature; v1/v2 endpoints take HMAC.
ASTER_ROUTES: Dict[str, str] = {
    "POST /fapi/v3/order": SCHEME_WALLET,
    "/fapi/v3/account": SCHEME_WALLET,
    "/fapi/v3/positionRisk": SCHEME_WALLET,
    "/fapi/v3/balance": SCHEME_WALLET,
    "/fapi/v1/order": SCHEME_HMAC,
    "/fapi/v1/openOrders": SCHEME_HMAC,
    "/fapi/v1/allOpenOrders": SCHEME_HMAC,
    "/fapi/v1/batchOrders": SCHEME_HMAC,
    "/fapi/v1/leverage": SCHEME_HMAC,
    "/fapi/v1/positionSide/dual": SCHEME_HMAC,
    "/fapi/v2/positionRisk": SCHEME_HMAC,
}


class AsterClient(BinanceFuturesClient):
    """Aster perpetuals: Binance-compatible payloads, mixed signature schemes."""

    name = "aster"
    routes: Mapping[str, str] = ASTER_ROUTES

    place_order_path = "/fapi/v3/order"
    position_path = "/fapi/v3/positionRisk"
    balance_path = "/fapi/v3/balance"

    async def place_protective_orders(
        self,
        symbol: str,
        *,
        close_side: str,
        stop_loss_price: str | None,
        take_profit_price: str | None,
        position_side: str | None = None,
        quantity: str | None = None,
    ) -> ProtectionResult:
        """Both legs in one batchOrders call; results come back in request order."""
        legs = self.protective_requests(
            symbol,
            close_side=close_side,
            stop_loss_price=stop_loss_price,
            take_profit_price=take_profit_price,
            position_side=position_side,
            quantity=quantity,
        )
        result = ProtectionResult()
        if not legs:
            return result
        names = list(legs)
        batch = []
        for name in names:
            request = await self.format_order(legs[name])
            batch.append({key: param_to_str(value) for key, value in order_params(request).items()})
        body = {"batchOrders": json.dumps(batch, separators=(",", ":"))}
        logger.debug("%s: batch placing %s for %s", self.name, ", ".join(names), symbol)
        try:
            raw = await self.dispatcher.request("POST", "/fapi/v1/batchOrders", body)
        except ExchangeRejection as exc:
            for name in names:
                result.errors[name] = str(exc)
            return result

        items = raw if isinstance(raw, list) else []
        for index, name in enumerate(names):
            item = items[index] if index < len(items) else None
            if not isinstance(item, dict):
                result.errors[name] = "missing result in batch response"
                continue
            code = item.get("code")
            if isinstance(code, int) and code < 0:
                result.errors[name] = str(item.get("msg") or f"exchange error {code}")
                continue
            setattr(result, name, map_order(item, legs[name]))
        return result

    def debug_credentials(self) -> Dict[str, Any]:
        info = super().debug_credentials()
        info["schemes"] = {"v1": "hmac", "v3": "wallet"}
        return info
