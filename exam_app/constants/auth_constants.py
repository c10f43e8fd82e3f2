"""Account naming rules shared by user management and the auth adapters."""

EMAIL_DOMAIN: str = "quizmaster.com"
STUDENT_NATIONAL_ID_PATTERN: str = r"^\d{10}$"
MIN_CREATE_PASSWORD_LENGTH: int = 8
MIN_CHANGE_PASSWORD_LENGTH: int = 6
RECENT_LOGIN_WINDOW_SECONDS: int = 5 * 60
