from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from pydantic import BaseModel
from typing import List, Optional
import logging

from spamscanner.errors import InvalidUrlError, NotLoadedError, ParseError
from spamscanner.schemas import Attachment, PhishingResults, ScanResult
from spamscanner.services.scanner import SpamScanner

logger = logging.getLogger(__name__)

router = APIRouter()

# ============================================================================
# DATA MODELS
# ============================================================================

class ContentRequest(BaseModel):
    html: Optional[str] = None
    text: Optional[str] = None


class PhishingRequest(ContentRequest):
    sender: Optional[str] = None


class AttachmentResults(BaseModel):
    executables: List[str] = []
    viruses: List[str] = []


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_scanner(request: Request) -> SpamScanner:
    scanner = getattr(request.app.state, 'scanner', None)
    if scanner is None or not scanner.loaded:
        raise HTTPException(status_code=503, detail="Scanner is not loaded")
    return scanner


# ============================================================================
# SCAN ENDPOINTS
# ============================================================================

@router.post("/scan", response_model=ScanResult)
async def scan_email(file: UploadFile = File(...), scanner: SpamScanner = Depends(get_scanner)):
    """Scan an uploaded email file (.eml format)"""
    raw_email = await file.read()
    try:
        return scanner.scan(raw_email)
    except ParseError as e:
        logger.warning(f"⚠️ Rejected upload {file.filename}: {e}")
        raise HTTPException(status_code=400, detail=f"Could not parse message: {e}")
    except NotLoadedError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/phishing", response_model=PhishingResults)
def phishing_results(request: PhishingRequest, scanner: SpamScanner = Depends(get_scanner)):
    try:
        return scanner.get_phishing_results(html=request.html, text=request.text, sender=request.sender)
    except NotLoadedError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/arbitrary", response_model=List[str])
def arbitrary_results(request: ContentRequest, scanner: SpamScanner = Depends(get_scanner)):
    return scanner.get_arbitrary_results(html=request.html, text=request.text)


@router.post("/viruses", response_model=AttachmentResults)
async def attachment_results(files: List[UploadFile] = File(...),
                             scanner: SpamScanner = Depends(get_scanner)):
    """Check uploaded files for executables and known malware"""
    attachments = []
    for upload in files:
        attachments.append(Attachment(
            content=await upload.read(),
            filename=upload.filename,
            content_type=upload.content_type
        ))

    try:
        return AttachmentResults(
            executables=scanner.get_executable_results(attachments),
            viruses=scanner.get_virus_results(attachments)
        )
    except NotLoadedError as e:
        raise HTTPException(status_code=503, detail=str(e))


# ============================================================================
# UTILITY ENDPOINTS
# ============================================================================

@router.get("/normalize")
def normalize(url: str = Query(..., min_length=1), scanner: SpamScanner = Depends(get_scanner)):
    try:
        return {"url": url, "normalized": scanner.get_normalized_url(url)}
    except InvalidUrlError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/health")
def health(request: Request):
    scanner = getattr(request.app.state, 'scanner', None)
    loaded = scanner is not None and scanner.loaded
    return {
        "status": "ok" if loaded else "loading",
        "loaded": loaded,
        "feeds": list(scanner.feed_store.snapshot.providers) if loaded else [],
        "feed_entries": len(scanner.feed_store.entries) if loaded else 0
    }
