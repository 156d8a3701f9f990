from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional


class GenerationSettingsPayload(BaseModel):
    ratio: str = "Portrait (tall)"
    quality: str = "low"
    preset: str = "Coloring Book"
    reference_images: List[str] = Field(default_factory=list, alias="referenceImages")  # data:image/... URLs

    class Config:
        populate_by_name = True


class GenerationRunRequest(BaseModel):
    email: EmailStr
    prompts: List[str] = Field(..., min_length=1, max_length=50)
    settings: GenerationSettingsPayload = Field(default_factory=GenerationSettingsPayload)


class GenerationJobResponse(BaseModel):
    prompt: str
    status: str
    countdown: Optional[int] = None
    image: Optional[str] = None
    error: Optional[str] = None
    charge_error: Optional[str] = Field(default=None, alias="chargeError")
    tokens_charged: int = Field(default=0, alias="tokensCharged")

    class Config:
        populate_by_name = True


class GenerationRunResponse(BaseModel):
    run_id: str = Field(alias="runId")
    finished: bool
    jobs: List[GenerationJobResponse]

    class Config:
        populate_by_name = True


class ImprovePromptRequest(BaseModel):
    prompt: str = Field(..., max_length=4000)


class ImprovePromptResponse(BaseModel):
    prompt: str


class PdfRequest(BaseModel):
    images: List[str] = Field(..., min_length=1, max_length=100)  # data URLs or base64 PNG/JPEG
    ratio: str = "Portrait (tall)"
