"""Application entry point for the QuizMaster exam service."""

from __future__ import annotations

from exam_app.ai.question_generator import QuestionGenerator
from exam_app.config import AppConfig
from exam_app.core.auth import AuthProvider, FirebaseAuthProvider, InMemoryAuthProvider
from exam_app.core.exam_manager import ExamManager
from exam_app.server.api_server import start_api_server
from exam_app.storage import DocumentStore, InMemoryDocumentStore
from exam_app.storage.firestore_store import FirestoreDocumentStore, initialize_firebase_app
from exam_app.utils.logging_config import configure_logging


def build_backends(config: AppConfig) -> tuple[DocumentStore, AuthProvider]:
    """Create the document store and auth provider selected by ``EXAM_APP_STORAGE``."""
    if config.STORAGE == "firestore":
        app = initialize_firebase_app(config.FIREBASE_CREDENTIALS)
        return FirestoreDocumentStore.from_credentials(config.FIREBASE_CREDENTIALS), FirebaseAuthProvider(app)
    return InMemoryDocumentStore(), InMemoryAuthProvider()


def main() -> None:
    """Load configuration, initialize logging, and serve the API."""
    config = AppConfig.load()
    logger = configure_logging(config.LOG_LEVEL)
    logger.info("Starting QuizMaster exam service (%s storage)", config.STORAGE)

    store, auth = build_backends(config)
    exam_manager = ExamManager(store, auth, ai=QuestionGenerator(model=config.AI_MODEL))
    logger.info("API available at http://%s:%d/", config.HOST, config.PORT)
    start_api_server(exam_manager, host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL)


if __name__ == "__main__":
    main()
