# SQLAlchemy models
from .base import Base
from .gradebook import AssessmentResultRecord

__all__ = ["AssessmentResultRecord", "Base"]
