from cryptopay.models.invoice import Invoice
from cryptopay.models.payment import Payment
from cryptopay.models.merchant import Merchant
from cryptopay.models.wallet import Wallet
from cryptopay.models.usage import MerchantUsageMonthly, PaymentsLedger

__all__ = [
    "Invoice",
    "Payment",
    "Merchant",
    "Wallet",
    "MerchantUsageMonthly",
    "PaymentsLedger",
]
