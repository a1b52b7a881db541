from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from app.core.http import ResilientHTTPClient
from app.core.template_parser import end_of_day
from app.db.models import MarketParams, WalletVoteResolver

logger = logging.getLogger(__name__)


@dataclass
class CreateMarketResult:
    success: bool
    market_id: str | None = None
    market_pda: str | None = None
    signatures: list[str] = field(default_factory=list)
    error: str | None = None


def build_market_payload(params: MarketParams, fee_receiver: str | None) -> dict:
    resolver: dict = {"type": "uma"}
    if isinstance(params.resolver_type, WalletVoteResolver):
        resolver = {"type": "walletVote", "voters": list(params.resolver_type.voters)}
    return {
        "name": params.question,
        "category": params.category,
        "marketQuestion": params.question,
        "eventDeadline": end_of_day(params.end_date).isoformat().replace("+00:00", "Z"),
        "description": params.description,
        "rules": params.rules,
        "imageUri": params.image_uri,
        "resolverType": resolver,
        "feeReceiver": fee_receiver,
    }


def _error_text(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            if body.get(key):
                return str(body[key])
    return f"Market service returned HTTP {resp.status_code}"


class MarketCreationClient:
    """Creates regular markets through the market service. Never raises."""

    def __init__(self, http: ResilientHTTPClient, api_url: str, api_key: str = "") -> None:
        self.http = http
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key

    async def create_market(self, params: MarketParams, fee_receiver: str | None = None) -> CreateMarketResult:
        logger.info(
            "market_creating",
            extra={"event": "market_creating", "question": params.question, "category": params.category, "end_date": str(params.end_date)},
        )
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        try:
            resp = await self.http.post_json(f"{self.api_url}/api/v1/markets", build_market_payload(params, fee_receiver), headers=headers)
        except httpx.HTTPError as exc:
            logger.error("market_creation_failed", extra={"event": "market_creation_failed", "error": str(exc)})
            return CreateMarketResult(success=False, error=str(exc) or exc.__class__.__name__)

        if resp.is_error:
            error = _error_text(resp)
            logger.error("market_creation_failed", extra={"event": "market_creation_failed", "status": resp.status_code, "error": error})
            return CreateMarketResult(success=False, error=error)

        try:
            body = resp.json()
            market_id = str(body["marketId"])
            market_pda = str(body["marketPda"])
            signatures = [str(s) for s in body.get("signatures") or []]
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("market_creation_bad_response", extra={"event": "market_creation_bad_response", "response": resp.text[:500]})
            return CreateMarketResult(success=False, error=f"Unexpected market service response: {exc}")

        logger.info("market_created", extra={"event": "market_created", "market_id": market_id, "market_pda": market_pda})
        return CreateMarketResult(success=True, market_id=market_id, market_pda=market_pda, signatures=signatures)
