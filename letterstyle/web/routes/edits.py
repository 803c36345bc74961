"""Approval hook and edit statistics."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from letterstyle.web.deps import get_learner, get_queue, get_service

router = APIRouter(prefix="/api/style")


class LetterApproval(BaseModel):
    clinician_id: str
    subspecialty: str
    draft_text: str
    final_text: str


@router.post("/letters/{letter_id}/approved")
def letter_approved(letter_id: str, body: LetterApproval, learner=Depends(get_learner), queue=Depends(get_queue)):
    """Record style edits for an approved letter. Always succeeds."""
    outcome = learner.on_letter_approved(
        body.clinician_id,
        letter_id,
        body.subspecialty,
        body.draft_text,
        body.final_text,
        queue=queue,
    )
    return outcome.to_dict()


@router.get("/clinicians/{clinician_id}/edits/{subspecialty}")
def edit_statistics(clinician_id: str, subspecialty: str, service=Depends(get_service), learner=Depends(get_learner)):
    stats = service.get_edit_statistics(clinician_id, subspecialty)
    stats["analysis"] = learner.check_analysis(clinician_id, subspecialty).to_dict()
    return stats
