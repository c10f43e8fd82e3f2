"""Exam-related constants shared across services and the API layer."""

EXAMS_COLLECTION: str = "exams"
QUESTIONS_SUBCOLLECTION: str = "questions"
RESULTS_COLLECTION: str = "examResults"
USERS_COLLECTION: str = "users"

MIN_OPTIONS_PER_QUESTION: int = 2
MAX_TIME_LIMIT_MINUTES: int = 600
DEFAULT_TIME_LIMIT_MINUTES: int = 10
DEFAULT_LEADERBOARD_SIZE: int = 3
PASS_THRESHOLD_PERCENTAGE: int = 50

AI_MIN_GENERATED_QUESTIONS: int = 1
AI_MAX_GENERATED_QUESTIONS: int = 20
AI_DEFAULT_GENERATED_QUESTIONS: int = 10

NO_QUESTIONS_MESSAGE: str = "No questions are available for this exam."
ALREADY_COMPLETED_MESSAGE: str = "You have already taken this exam. Showing your results."
SUBMISSION_FAILED_MESSAGE: str = "Your answers could not be saved. Please try submitting again."
