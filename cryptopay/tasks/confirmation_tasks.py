import logging

import httpx

from cryptopay.celery_app import celery_app
from cryptopay.core.config import get_settings
from cryptopay.core.errors import StorageError
from cryptopay.db.session import SessionLocal
from cryptopay.services.chain_rpc import ChainClients
from cryptopay.services.confirmation_reconciler import summary_response, sweep_confirmations
from cryptopay.services.price_oracle import PriceCache, PriceOracle

logger = logging.getLogger(__name__)

# Shared across sweeps in one worker process, like the API's app.state cache.
_price_cache = PriceCache()


@celery_app.task(name="sweep_confirmations")
def run_confirmation_sweep():
    settings = get_settings()
    db = SessionLocal()
    try:
        with httpx.Client(timeout=settings.http_timeout_seconds) as http:
            chains = ChainClients(http, settings)
            oracle = PriceOracle(http, settings.coingecko_base_url, _price_cache)
            summary = sweep_confirmations(db, chains, oracle, settings.confirmation_batch_size)
        return summary_response(summary)
    except StorageError as e:
        logger.error(f"[Confirmations] Sweep aborted: {e.message}")
        return {"ok": False, "error": e.message, "code": e.code}
    finally:
        db.close()
