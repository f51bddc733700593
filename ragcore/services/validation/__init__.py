from ragcore.services.validation.quality_validator import QualityValidator, grade_for

__all__ = ["QualityValidator", "grade_for"]
