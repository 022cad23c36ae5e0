import base64

from agents import Agent, Runner

from planpal.receipt.base import ReceiptExtractionResult

INSTRUCTIONS = """\
You are an invoice reader for a group expense tracker. Given a photo of a bill, receipt or invoice, \
return the amount that was paid and a short description.

Rules:
- description: a short, recognizable name for this bill (e.g. "Toit brewpub dinner", "Uber to airport"). \
Infer it from the merchant name and items.
- candidates: up to 3 amounts that could be the final amount paid, likeliest first. Prefer "Grand Total", \
"Net Amount", "Amount Payable" and amounts written in words ("Rupees ... Only") over subtotals, item \
prices, tax lines (CGST/SGST/IGST) and discounts.
- amount is a decimal number in rupees with full precision; label is the text printed next to it.
- confidence: 0 to 1, how sure you are that the first candidate is the amount paid. Use a low value when \
the photo is blurred, cut off, or not a bill at all.
- Do NOT convert currencies
- If the bill is not in English, translate the description to English"""

agent = Agent(
    name="Invoice Reader",
    instructions=INSTRUCTIONS,
    model="gpt-4o",
    output_type=ReceiptExtractionResult,
)


class OpenAIReceiptExtractor:
    """Receipt extraction using OpenAI Agents SDK with GPT-4o vision."""

    async def extract(self, image_bytes: bytes, content_type: str) -> ReceiptExtractionResult:
        b64_image = base64.b64encode(image_bytes).decode("utf-8")
        media_type = content_type or "image/jpeg"

        result = await Runner.run(
            agent,
            input=[
                {
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": "Find the amount paid on this bill."},
                        {"type": "input_image", "image_url": f"data:{media_type};base64,{b64_image}"},
                    ],
                }
            ],
        )

        return result.final_output
