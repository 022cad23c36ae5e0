import os

from planpal.receipt.base import ReceiptExtractor


def get_receipt_extractor() -> ReceiptExtractor:
    """Return the configured receipt extraction provider."""
    provider = os.getenv("RECEIPT_PROVIDER", "openai")
    if provider == "openai":
        # Imported lazily so the agents SDK only loads when receipts are scanned
        from planpal.receipt.openai_provider import OpenAIReceiptExtractor

        return OpenAIReceiptExtractor()
    raise ValueError(f"Unknown receipt provider: {provider}")
