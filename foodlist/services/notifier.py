"""
AuthNotifier - How the session layer talks back to the UI (notices and redirects).
"""

from loguru import logger

SESSION_EXPIRED_MESSAGE = "Sessão expirada. Por favor, faça login novamente."
SIGN_IN_PATH = "/auth/signin"


class AuthNotifier:
    """Default notifier: writes notices and redirects to the log."""

    def notify(self, message: str, level: str = "error") -> None:
        logger.log(level.upper(), f"[notice] {message}")

    def redirect_to_sign_in(self) -> None:
        logger.info(f"Redirecting to {SIGN_IN_PATH}")
