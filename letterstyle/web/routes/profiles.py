"""Per-clinician style profiles, seed letters and guidance preview."""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel

from letterstyle.style.errors import ProfileNotFoundError, ValidationError
from letterstyle.web.deps import checked_strength, get_config, get_service, require_analyzer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/style/clinicians/{clinician_id}")


class StrengthUpdate(BaseModel):
    learning_strength: float


class SeedLetterUpload(BaseModel):
    letter_text: str


class GuidanceRequest(BaseModel):
    base_prompt: str = ""
    letter_type: str | None = None


def _profile_or_404(service, clinician_id: str, subspecialty: str):
    try:
        return service.require_profile(clinician_id, subspecialty)
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/profiles")
def list_profiles(clinician_id: str, service=Depends(get_service)):
    return {"profiles": [p.to_dict() for p in service.list_profiles(clinician_id)]}


@router.get("/profiles/{subspecialty}")
def get_profile(clinician_id: str, subspecialty: str, service=Depends(get_service)):
    profile = _profile_or_404(service, clinician_id, subspecialty)
    return {"profile": profile.to_dict(), "overall_confidence": round(profile.overall_confidence(), 3)}


@router.delete("/profiles/{subspecialty}")
def delete_profile(clinician_id: str, subspecialty: str, service=Depends(get_service)):
    if not service.delete_profile(clinician_id, subspecialty):
        raise HTTPException(status_code=404, detail=f"No style profile found for subspecialty {subspecialty}")
    return {"status": "ok", "message": f"Style profile for {subspecialty} reset"}


@router.patch("/profiles/{subspecialty}/strength")
def set_learning_strength(clinician_id: str, subspecialty: str, body: StrengthUpdate, service=Depends(get_service)):
    strength = checked_strength(body.learning_strength)
    try:
        profile = service.adjust_learning_strength(clinician_id, subspecialty, strength)
    except ProfileNotFoundError:
        profile = service.create_profile(clinician_id, subspecialty, learning_strength=strength)
    return {"profile": profile.to_dict()}


def _run_analysis_task(learner, clinician_id: str, subspecialty: str):
    """Background task for an explicitly requested analysis."""
    try:
        learner.run_analysis(clinician_id, subspecialty, force=True)
    except Exception:
        logger.exception("Requested analysis failed for %s/%s", clinician_id, subspecialty)


def _run_seed_analysis_task(learner, clinician_id: str, subspecialty: str):
    try:
        learner.analyze_seed_letters(clinician_id, subspecialty)
    except Exception:
        logger.exception("Seed letter analysis failed for %s/%s", clinician_id, subspecialty)


@router.post("/profiles/{subspecialty}/analyze", status_code=202)
def trigger_analysis(
    clinician_id: str,
    subspecialty: str,
    background_tasks: BackgroundTasks,
    learner=Depends(require_analyzer),
):
    """Run an analysis now, regardless of the scheduling thresholds."""
    if learner.service.edits.count(clinician_id, subspecialty) == 0:
        raise HTTPException(status_code=400, detail=f"No recorded edits for {subspecialty}")
    background_tasks.add_task(_run_analysis_task, learner, clinician_id, subspecialty)
    return {"status": "started", "message": f"Style analysis for {subspecialty} started in background"}


@router.get("/profiles/{subspecialty}/seed-letters")
def list_seed_letters(clinician_id: str, subspecialty: str, service=Depends(get_service)):
    return {"seed_letters": service.list_seed_letters(clinician_id, subspecialty)}


@router.post("/profiles/{subspecialty}/seed-letters", status_code=201)
def upload_seed_letter(clinician_id: str, subspecialty: str, body: SeedLetterUpload, service=Depends(get_service)):
    try:
        seed_id = service.add_seed_letter(clinician_id, subspecialty, body.letter_text)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"id": seed_id}


@router.delete("/seed-letters/{seed_letter_id}")
def delete_seed_letter(clinician_id: str, seed_letter_id: int, service=Depends(get_service)):
    if not service.delete_seed_letter(clinician_id, seed_letter_id):
        raise HTTPException(status_code=404, detail="Seed letter not found")
    return {"status": "ok"}


@router.post("/profiles/{subspecialty}/seed-letters/analyze", status_code=202)
def analyze_seed_letters(
    clinician_id: str,
    subspecialty: str,
    background_tasks: BackgroundTasks,
    learner=Depends(require_analyzer),
):
    background_tasks.add_task(_run_seed_analysis_task, learner, clinician_id, subspecialty)
    return {"status": "started", "message": f"Seed letter analysis for {subspecialty} started in background"}


@router.post("/profiles/{subspecialty}/guidance")
def preview_guidance(
    clinician_id: str,
    subspecialty: str,
    body: GuidanceRequest,
    service=Depends(get_service),
    config=Depends(get_config),
):
    """Show what the learned style would add to a generation prompt."""
    result = service.condition_prompt(
        clinician_id,
        subspecialty,
        body.base_prompt,
        letter_type=body.letter_type,
        threshold=config.get_float("min_confidence_threshold"),
    )
    return {
        "prompt": result.prompt,
        "guidance": result.guidance_text,
        "hints": result.hints,
        "metadata": result.metadata,
    }
