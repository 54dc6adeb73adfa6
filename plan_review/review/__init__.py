"""Consultation state machine and its collaborators."""

from plan_review.review.consultation import ConsultationStateMachine

__all__ = ["ConsultationStateMachine"]
