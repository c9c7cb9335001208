import logging

from firebase_admin import auth, firestore

from .config import USERS_COLLECTION
from .models import AnonymousSession

logger = logging.getLogger(__name__)


def ensure_profile(db, uid: str) -> bool:
    """Create users/{uid} on first sign-in. Returns True when it was created."""
    user_ref = db.collection(USERS_COLLECTION).document(uid)
    doc = user_ref.get()
    if doc.exists:
        return False
    user_ref.set({
        "uid": uid,
        "anonymous": True,
        "createdAt": firestore.SERVER_TIMESTAMP,
    })
    return True


def sign_in_anonymously(db, auth_client=auth) -> AnonymousSession:
    """
    Server-side equivalent of an anonymous sign-in: a Firebase Auth user with
    no provider, plus a custom token the client exchanges for an ID token.
    """
    user = auth_client.create_user()
    token = auth_client.create_custom_token(user.uid)
    if isinstance(token, bytes):
        token = token.decode("utf-8")
    if ensure_profile(db, user.uid):
        logger.info(f"Created profile for anonymous user {user.uid}")
    return AnonymousSession(uid=user.uid, customToken=token)
