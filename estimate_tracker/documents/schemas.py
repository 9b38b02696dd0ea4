from typing import List, Optional
from pydantic import BaseModel

class DocumentInfo(BaseModel):
    name: str
    size: int = 0
    created_at: Optional[str] = None

class DocumentListEnvelope(BaseModel):
    success: bool = True
    documents: List[DocumentInfo]

class DocumentEnvelope(BaseModel):
    success: bool = True
    name: str
