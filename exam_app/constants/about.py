"""Static metadata describing the exam service."""

APP_NAME = "QuizMaster"
APP_VERSION = "0.1.0"
