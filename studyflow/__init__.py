"""studyflow: study-plan generation jobs and spaced-repetition scheduling."""

__version__ = '1.0.0'
