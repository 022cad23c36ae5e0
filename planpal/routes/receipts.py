import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from planpal.deps import get_ledger_service
from planpal.errors import ValidationError
from planpal.ledger import to_minor_units
from planpal.ledger_service import LedgerService
from planpal.receipt.factory import get_receipt_extractor

logger = logging.getLogger("planpal")
router = APIRouter()

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MB
ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp", "image/heic", "image/heif"}


@router.post("/events/{event_id}/scan-receipt")
async def scan_receipt(
    event_id: int,
    file: UploadFile = File(...),
    service: LedgerService = Depends(get_ledger_service),
):
    event = service.get_event(event_id)

    if file.content_type not in ALLOWED_CONTENT_TYPES:
        raise HTTPException(status_code=400, detail="Unsupported image format. Use JPEG, PNG, or WebP.")

    image_bytes = await file.read()
    if len(image_bytes) == 0:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(image_bytes) > MAX_FILE_SIZE:
        raise HTTPException(status_code=400, detail="Image too large. Maximum size is 10 MB.")

    try:
        extractor = get_receipt_extractor()
        result = await extractor.extract(image_bytes, file.content_type)
    except ValueError as e:
        logger.error(f"Receipt extraction config error: {e}")
        raise HTTPException(status_code=503, detail="Receipt scanning is not available")
    except Exception as e:
        logger.error(f"Receipt extraction failed: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail="Failed to extract receipt data. Please try again.")

    candidates = []
    for candidate in result.candidates:
        try:
            amount = to_minor_units(round(candidate.amount, 2))
        except ValidationError:
            continue
        candidates.append({"amount": amount, "label": candidate.label})

    logger.info(
        "Receipt scanned",
        extra={"extra_data": {
            "event_id": event.id,
            "candidates_count": len(candidates),
            "confidence": result.confidence,
        }},
    )

    return {
        "description": result.description,
        "candidates": candidates,
        "confidence": result.confidence,
        "unclear": result.is_unclear() or not candidates,
    }
