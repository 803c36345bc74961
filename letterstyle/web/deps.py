"""Request-scoped access to the services built by ``create_app``."""

from fastapi import HTTPException, Request

from letterstyle.style.errors import ValidationError
from letterstyle.style.merger import validate_strength


def get_service(request: Request):
    return request.app.state.service


def get_learner(request: Request):
    return request.app.state.learner


def get_queue(request: Request):
    return request.app.state.queue


def get_aggregator(request: Request):
    return request.app.state.aggregator


def get_config(request: Request):
    return request.app.state.config


def require_analyzer(request: Request):
    learner = request.app.state.learner
    if learner.analyzer is None:
        raise HTTPException(status_code=503, detail="No style analyzer configured")
    return learner


def checked_strength(value) -> float:
    try:
        return validate_strength(value)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
