"""Persistence boundary for booking entities."""

from positivenrg.repositories.appointment_repository import AppointmentRepository
from positivenrg.repositories.companion_repository import CompanionRepository
from positivenrg.repositories.earning_repository import EarningRepository
from positivenrg.repositories.review_repository import ReviewRepository

__all__ = [
    "AppointmentRepository",
    "CompanionRepository",
    "EarningRepository",
    "ReviewRepository",
]
