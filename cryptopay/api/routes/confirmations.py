import logging

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from cryptopay.api.deps import get_chain_clients, get_price_oracle
from cryptopay.core.config import Settings, get_settings
from cryptopay.db.session import get_db
from cryptopay.services.chain_rpc import ChainClients
from cryptopay.services.confirmation_reconciler import summary_response, sweep_confirmations
from cryptopay.services.payment_ingestion import verify_shared_secret
from cryptopay.services.price_oracle import PriceOracle

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/confirmations")
def run_confirmation_sweep(
    x_cron_secret: str = Header(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    chains: ChainClients = Depends(get_chain_clients),
    oracle: PriceOracle = Depends(get_price_oracle),
):
    """External scheduler trigger. ``x-cron-secret`` is required only when CRON_SECRET is set."""
    if settings.cron_secret:
        verify_shared_secret(x_cron_secret, settings.cron_secret)
    summary = sweep_confirmations(db, chains, oracle, settings.confirmation_batch_size)
    return summary_response(summary)
