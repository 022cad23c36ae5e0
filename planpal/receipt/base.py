from typing import Protocol

from pydantic import BaseModel, Field

# Below this the chat flow asks the payer to type the details in
CONFIDENCE_THRESHOLD = 0.7


class AmountCandidate(BaseModel):
    amount: float  # display units (e.g. 1250.50 for ₹1,250.50)
    label: str | None = None  # the text next to the number, e.g. "Grand Total"


class ReceiptExtractionResult(BaseModel):
    description: str | None = None  # best-guess description (e.g. "Toit brewpub dinner")
    candidates: list[AmountCandidate] = []  # likeliest total first
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    def top_amount(self) -> float | None:
        return self.candidates[0].amount if self.candidates else None

    def is_unclear(self) -> bool:
        return self.top_amount() is None or self.confidence < CONFIDENCE_THRESHOLD


class ReceiptExtractor(Protocol):
    async def extract(self, image_bytes: bytes, content_type: str) -> ReceiptExtractionResult: ...
