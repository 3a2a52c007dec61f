"""Identity and role model: users keyed by email, with a role and a status."""

import logging
import re
from typing import Optional

from pymongo.errors import DuplicateKeyError

from database import USERS, Store, now_utc, serialize, to_object_id
from errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from schemas import ProfileUpdate, RegisterRequest, RoleUpdate, StatusUpdate, User
from security import hash_password, verify_password

logger = logging.getLogger(__name__)

USER_EXISTS = {"message": "user exists", "insertedId": None}


def public_user(user_doc: Optional[dict]) -> Optional[dict]:
    user = serialize(user_doc)
    if user is not None:
        user.pop("passwordHash", None)
    return user


def require_admin(actor: dict) -> None:
    if actor.get("role") != "admin":
        raise AuthorizationError("Admin access required")


class UserService:
    def __init__(self, store: Store):
        self.store = store

    def get_by_email(self, email: str) -> Optional[dict]:
        return self.store.find_one(USERS, {"email": email.lower()})

    def get(self, user_id: str) -> dict:
        user = self.store.find_one(USERS, {"_id": to_object_id(user_id)})
        if not user:
            raise NotFoundError("User not found")
        return user

    def register_if_absent(self, email: str, profile: RegisterRequest) -> dict:
        email = email.lower()
        doc = User(
            email=email,
            name=profile.name,
            photoURL=profile.photoURL,
            passwordHash=hash_password(profile.password),
        ).model_dump()
        stamp = now_utc()
        doc["createdAt"] = stamp
        doc["updatedAt"] = stamp
        # Upsert keyed by email; the unique index on email turns a lost race into DuplicateKeyError.
        try:
            result = self.store.update_one(USERS, {"email": email}, {"$setOnInsert": doc}, upsert=True)
        except DuplicateKeyError:
            logger.info("Concurrent registration for %s already inserted it", email)
            return dict(USER_EXISTS)
        if result.upserted_id is None:
            return dict(USER_EXISTS)
        logger.info("Registered user %s", email)
        return {"message": "user created", "insertedId": str(result.upserted_id)}

    def authenticate(self, email: str, password: str) -> dict:
        user = self.get_by_email(email)
        if not user or not verify_password(password, user.get("passwordHash", "")):
            raise AuthenticationError("Invalid email or password")
        return user

    def list_users(self, search: str = "", role: Optional[str] = None, page: int = 1, limit: int = 20) -> dict:
        filter_dict = {}
        if search:
            pattern = re.escape(search)
            filter_dict["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"email": {"$regex": pattern, "$options": "i"}},
            ]
        if role:
            filter_dict["role"] = role
        page, limit = max(page, 1), max(limit, 1)
        total = self.store.count(USERS, filter_dict)
        data = self.store.find(USERS, filter_dict, skip=(page - 1) * limit, limit=limit,
                               sort=[("createdAt", -1)])
        return {"total": total, "page": page, "limit": limit, "data": [public_user(u) for u in data]}

    def set_role(self, user_id: str, update: RoleUpdate, actor: dict) -> dict:
        require_admin(actor)
        result = self.store.update_one(
            USERS,
            {"_id": to_object_id(user_id)},
            {"$set": {"role": update.role, "updatedAt": now_utc()}},
        )
        if result.matched_count == 0:
            raise NotFoundError("User not found")
        logger.info("%s set role of user %s to %s", actor.get("email"), user_id, update.role)
        return public_user(self.get(user_id))

    def set_status(self, user_id: str, update: StatusUpdate, actor: dict) -> dict:
        require_admin(actor)
        result = self.store.update_one(
            USERS,
            {"_id": to_object_id(user_id)},
            {"$set": {
                "status": update.status,
                "suspensionReason": update.suspensionReason,
                "updatedAt": now_utc(),
            }},
        )
        if result.matched_count == 0:
            raise NotFoundError("User not found")
        logger.info("%s set status of user %s to %s", actor.get("email"), user_id, update.status)
        return public_user(self.get(user_id))

    def update_profile(self, email: str, update: ProfileUpdate, actor_email: str) -> dict:
        email = email.lower()
        if actor_email.lower() != email:
            raise AuthorizationError("You can only update your own profile")
        fields = update.model_dump(exclude_none=True)
        if not fields:
            raise ValidationError("Nothing to update")
        fields["updatedAt"] = now_utc()
        result = self.store.update_one(USERS, {"email": email}, {"$set": fields})
        if result.matched_count == 0:
            raise NotFoundError("User not found")
        return public_user(self.get_by_email(email))
