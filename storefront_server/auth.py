"""Session management on top of an identity provider."""

import json
import logging
import os
from typing import Callable, Optional

from .errors import AuthFailure
from .identity import IdentityProvider
from .models import SessionData

logger = logging.getLogger(__name__)

AuthStateCallback = Callable[[Optional[str]], None]


class AuthManager:
    """Manages the session identity and its persistence."""

    def __init__(self, provider: IdentityProvider, session_file: Optional[str] = None) -> None:
        """
        Initialize the authentication manager.

        Args:
            provider: Identity provider that issues sessions
            session_file: Path to store session data. None keeps the session in memory only
        """
        self.provider = provider
        self.session_file = session_file
        self.session: SessionData = self._load_session()
        self._listeners: list[AuthStateCallback] = []

    def _load_session(self) -> SessionData:
        """Load session data from file if it exists."""
        if self.session_file and os.path.exists(self.session_file):
            try:
                with open(self.session_file, "r") as f:
                    session = SessionData(**json.load(f))
            except (json.JSONDecodeError, ValueError, TypeError):
                # If file is corrupted, start fresh
                logger.warning(f"Ignoring unreadable session file {self.session_file}")
                return SessionData()
            if session.provider == self.provider.name:
                return session
            logger.info("Stored session belongs to another provider, ignoring it")
        return SessionData()

    def _save_session(self) -> None:
        """Save session data to file."""
        if not self.session_file:
            return
        try:
            with open(self.session_file, "w") as f:
                f.write(self.session.model_dump_json())
            # Set restrictive permissions on session file
            os.chmod(self.session_file, 0o600)
        except OSError as e:
            logger.error(f"Could not save session: {e}")

    def on_auth_state_change(self, callback: AuthStateCallback) -> Callable[[], None]:
        """
        Register a callback receiving the session ID (or None on sign-out).

        Returns:
            A function that removes the callback
        """
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _set_session(self, session: SessionData) -> None:
        previous = self.session.session_id
        self.session = session
        self._save_session()
        if session.session_id != previous:
            for callback in list(self._listeners):
                callback(session.session_id)

    def is_authenticated(self) -> bool:
        return self.session.is_authenticated

    @property
    def session_id(self) -> Optional[str]:
        return self.session.session_id

    async def sign_in(self, token: Optional[str] = None) -> str:
        """
        Establish a session identity.

        A pre-issued token wins; otherwise a stored session is reused;
        otherwise the user is signed in anonymously.

        Returns:
            The session ID

        Raises:
            AuthFailure: If the identity provider rejected the sign-in
        """
        if token:
            session = await self.provider.sign_in_with_token(token)
        elif self.session.is_authenticated:
            logger.info("Reusing stored session")
            session = self.session
            if session.is_expired():
                try:
                    session = await self.provider.refresh(session)
                except AuthFailure as e:
                    logger.warning(f"Stored session could not be renewed, starting a new one: {e}")
                    self.sign_out()
                    session = await self.provider.sign_in_anonymous()
        else:
            session = await self.provider.sign_in_anonymous()

        if not session.session_id:
            raise AuthFailure("The identity provider did not return a user")
        self._set_session(session)
        logger.info(f"Signed in ({'anonymous' if session.anonymous else 'token'})")
        return session.session_id

    async def id_token(self) -> Optional[str]:
        """Current bearer token, renewed first when it has expired."""
        if self.session.is_authenticated and self.session.is_expired():
            self._set_session(await self.provider.refresh(self.session))
        return self.session.id_token

    def sign_out(self) -> None:
        """Forget the session and delete the session file."""
        self._set_session(SessionData())
        if self.session_file and os.path.exists(self.session_file):
            os.remove(self.session_file)
