"""
One-time passcode login and session tokens.

A user proves ownership of an email address by echoing back a short numeric
code that was mailed to it. The code is stored only as a bcrypt hash together
with its expiry and a failed-attempt counter:

    no code -> issued (attempts=0) -> issued (attempts=n) on each mismatch
            -> consumed on match | expired on timeout | exhausted at the limit

Consumed, expired and exhausted codes are removed from the user document, and
a new ``request_code`` always overwrites whatever was pending.
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

import bcrypt
import jwt
from fastapi import Depends
from pymongo import ReturnDocument

from config import Settings, get_settings
from database import as_utc, get_db, parse_object_id, serialize_doc, utcnow
from errors import (
    CodeExpired,
    InvalidCode,
    InvalidToken,
    NotFound,
    ProviderFailure,
    TooManyAttempts,
    Unauthorized,
)
from mailer import Mailer, get_mailer
from schemas import User

logger = logging.getLogger(__name__)

REDACTED_USER_FIELDS = ("otp",)


def normalize_email(email: str) -> str:
    return str(email).strip().lower()


def generate_code(length: int = 6) -> str:
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def hash_code(code: str, rounds: int) -> str:
    return bcrypt.hashpw(code.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_code(code: str, code_hash: str) -> bool:
    return bcrypt.checkpw(code.encode("utf-8"), code_hash.encode("utf-8"))


def serialize_user(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Client-facing user representation; OTP material never leaves the server."""
    if doc is None:
        return None
    doc = {k: v for k, v in doc.items() if k not in REDACTED_USER_FIELDS}
    return serialize_doc(doc)


class IdentityEngine:
    def __init__(self, db, settings: Settings, mailer: Mailer,
                 clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.settings = settings
        self.mailer = mailer
        self.clock = clock

    @property
    def users(self):
        return self.db["user"]

    def request_code(self, email: str, name: Optional[str] = None) -> str:
        email = normalize_email(email)
        now = self.clock()
        code = generate_code(self.settings.otp_length)
        otp = {
            "codeHash": hash_code(code, self.settings.otp_hash_rounds),
            "expiresAt": now + timedelta(minutes=self.settings.otp_expire_minutes),
            "attempts": 0,
        }

        to_set: Dict[str, Any] = {"otp": otp, "updatedAt": now}
        if name:
            to_set["name"] = name
        on_insert = User(email=email).model_dump(by_alias=True, exclude_none=True)
        on_insert["createdAt"] = now
        for key in to_set:
            on_insert.pop(key, None)

        user = self.users.find_one_and_update(
            {"email": email},
            {"$set": to_set, "$setOnInsert": on_insert},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        logger.info("Issued login code for user %s", user["_id"])

        try:
            self.mailer.send_code(email, user.get("name", "User"), code, self.settings.otp_expire_minutes)
        except ProviderFailure:
            raise
        except Exception as exc:
            logger.error("OTP dispatch failed for %s: %s", email, exc)
            raise ProviderFailure() from exc
        return email

    def verify_code(self, email: str, code: str) -> Tuple[str, Dict[str, Any]]:
        email = normalize_email(email)
        user = self.users.find_one({"email": email})
        otp = (user or {}).get("otp") or {}
        if not otp.get("codeHash") or not otp.get("expiresAt"):
            raise NotFound("No pending OTP for this email. Please request a new one.")

        code_hash = otp["codeHash"]
        if self.clock() > as_utc(otp["expiresAt"]):
            self._clear_code(user["_id"], code_hash)
            logger.warning("Expired login code presented for user %s", user["_id"])
            raise CodeExpired()

        max_attempts = self.settings.otp_max_attempts
        if otp.get("attempts", 0) >= max_attempts:
            self._clear_code(user["_id"], code_hash)
            logger.warning("Login code exhausted for user %s", user["_id"])
            raise TooManyAttempts()

        # the attempt is counted before comparing
        counted = self.users.find_one_and_update(
            {"_id": user["_id"], "otp.codeHash": code_hash, "otp.attempts": {"$lt": max_attempts}},
            {"$inc": {"otp.attempts": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if counted is None:
            raise NotFound("No pending OTP for this email. Please request a new one.")

        if not check_code(code, code_hash):
            logger.warning("Wrong login code for user %s (attempt %d)",
                           user["_id"], counted["otp"]["attempts"])
            raise InvalidCode()

        now = self.clock()
        user = self.users.find_one_and_update(
            {"_id": user["_id"], "otp.codeHash": code_hash},
            {"$unset": {"otp": ""}, "$set": {"isVerified": True, "lastLogin": now, "updatedAt": now}},
            return_document=ReturnDocument.AFTER,
        )
        if user is None:
            # consumed by a concurrent verification
            raise NotFound("No pending OTP for this email. Please request a new one.")
        logger.info("User %s logged in", user["_id"])
        return self.create_token(user), user

    def _clear_code(self, user_id, code_hash: str) -> None:
        self.users.update_one({"_id": user_id, "otp.codeHash": code_hash}, {"$unset": {"otp": ""}})

    def create_token(self, user: Dict[str, Any]) -> str:
        exp = utcnow() + timedelta(days=self.settings.jwt_expire_days)
        payload = {"id": str(user["_id"]), "role": user.get("role", "user"), "exp": exp}
        return jwt.encode(payload, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)

    def decode_token(self, token: str) -> dict:
        try:
            return jwt.decode(token, self.settings.jwt_secret, algorithms=[self.settings.jwt_algorithm])
        except jwt.ExpiredSignatureError:
            raise InvalidToken("Token has expired")
        except jwt.InvalidTokenError:
            raise InvalidToken()

    def resolve_session(self, token: str) -> Dict[str, Any]:
        payload = self.decode_token(token)
        user_id = parse_object_id(payload.get("id"), InvalidToken, "Invalid token payload")
        user = self.users.find_one({"_id": user_id})
        if user is None:
            raise Unauthorized("Token is invalid - user not found")
        return user


def get_identity(db=Depends(get_db), settings: Settings = Depends(get_settings),
                 mailer: Mailer = Depends(get_mailer)) -> IdentityEngine:
    return IdentityEngine(db, settings, mailer)
