"""
Solana Pay transaction requests: an unsigned transfer the buyer's wallet signs.

SOL goes through the system program in lamports. USDC/USDT move between the
associated token accounts of buyer and merchant; when the merchant's account
does not exist yet, a create-associated-account instruction paid by the buyer
is prepended.
"""
import base64
import logging
from decimal import ROUND_DOWN, Decimal

from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams as SystemTransferParams
from solders.system_program import transfer as system_transfer
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)
from spl.token.models import TransferCheckedParams

from cryptopay.core.config import Settings
from cryptopay.core.currencies import SOLANA, quantize_amount
from cryptopay.core.errors import ConfigurationError, ValidationError
from cryptopay.models.invoice import PAYABLE_STATUSES, Invoice
from cryptopay.services.chain_rpc import SolanaRpcClient

logger = logging.getLogger(__name__)

LAMPORTS_DECIMALS = 9


def to_minor_units(amount, decimals: int) -> int:
    """Truncate to the mint's precision; never round a payment up."""
    scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def parse_pubkey(value: str, label: str) -> Pubkey:
    try:
        return Pubkey.from_string((value or "").strip())
    except ValueError as e:
        raise ValidationError(f"Invalid {label}", code=f"invalid_{label}") from e


def build_instructions(invoice: Invoice, buyer: Pubkey, settings: Settings, rpc: SolanaRpcClient) -> list:
    merchant = parse_pubkey(invoice.to_address, "recipient")

    if invoice.currency == "SOL":
        lamports = to_minor_units(quantize_amount(invoice.amount, invoice.currency), LAMPORTS_DECIMALS)
        return [system_transfer(SystemTransferParams(from_pubkey=buyer, to_pubkey=merchant, lamports=lamports))]

    mint_address = settings.mint_for(invoice.currency)
    if not mint_address:
        raise ConfigurationError(f"{invoice.currency} mint is not configured", code="mint_missing", status_code=500)
    mint = parse_pubkey(mint_address, "mint")
    decimals = rpc.get_token_decimals(mint_address)

    source = get_associated_token_address(buyer, mint)
    dest = get_associated_token_address(merchant, mint)

    instructions = []
    if not rpc.account_exists(str(dest)):
        instructions.append(create_associated_token_account(payer=buyer, owner=merchant, mint=mint))
    instructions.append(
        transfer_checked(
            TransferCheckedParams(
                program_id=TOKEN_PROGRAM_ID,
                source=source,
                mint=mint,
                dest=dest,
                owner=buyer,
                amount=to_minor_units(quantize_amount(invoice.amount, invoice.currency), decimals),
                decimals=decimals,
            )
        )
    )
    return instructions


def build_payment_transaction(invoice: Invoice, account: str, settings: Settings, rpc: SolanaRpcClient) -> dict:
    if invoice.network != SOLANA:
        raise ValidationError("Invoice is not payable on Solana", code="wrong_network")
    if invoice.status not in PAYABLE_STATUSES:
        raise ValidationError("Invoice already paid", code="already_paid")
    buyer = parse_pubkey(account, "account")

    instructions = build_instructions(invoice, buyer, settings, rpc)
    blockhash = Hash.from_string(rpc.get_latest_blockhash("finalized"))
    message = Message.new_with_blockhash(instructions, buyer, blockhash)
    transaction = Transaction.new_unsigned(message)

    logger.info(f"[SolanaPay] Built {invoice.currency} transfer for invoice {invoice.id} payer {buyer}")
    return {
        "transaction": base64.b64encode(bytes(transaction)).decode("ascii"),
        "message": f"Invoice {invoice.reference}" if invoice.reference else "Payment",
    }
