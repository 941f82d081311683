from .intake import SubmissionIntake

__all__ = ["SubmissionIntake"]
