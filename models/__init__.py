# models/__init__.py
from .bid import BidCreate, BidUpdate
from .message import MessageCreate
from .project import ProjectCreate, ProjectUpdate
from .rating import RatingCreate, RatingModeration, RatingReport, RatingUpdate
from .user import UserCreate, UserUpdate

__all__ = [
    "BidCreate", "BidUpdate",
    "MessageCreate",
    "ProjectCreate", "ProjectUpdate",
    "RatingCreate", "RatingModeration", "RatingReport", "RatingUpdate",
    "UserCreate", "UserUpdate",
]
