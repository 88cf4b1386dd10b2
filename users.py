import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, EmailStr
from pymongo import ReturnDocument
from pymongo.database import Database

from auth import Principal, can_access_user_resource, get_current_user, require_admin
from database import create_document, get_db, get_documents, now, serialize_doc
from schemas import AccountStatus, Address, Role, User as UserSchema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


class ProfileSync(BaseModel):
    uid: str
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    photo_url: Optional[str] = None
    phone_number: Optional[str] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    photo_url: Optional[str] = None
    phone_number: Optional[str] = None
    addresses: Optional[List[Address]] = None


class StatusUpdate(BaseModel):
    status: AccountStatus


class RoleUpdate(BaseModel):
    role: Role


def sync_profile(db: Database, data: ProfileSync) -> tuple:
    """Create or refresh a profile. Returns (user, created)."""
    fields = {k: v for k, v in data.model_dump(exclude={"uid"}).items() if v}
    if "email" in fields:
        fields["email"] = fields["email"].lower()
    existing = db["user"].find_one({"uid": data.uid})
    if existing:
        fields["updated_at"] = now()
        db["user"].update_one({"uid": data.uid}, {"$set": fields})
        return serialize_doc(db["user"].find_one({"uid": data.uid})), False
    create_document(db, "user", UserSchema(uid=data.uid, **fields).model_dump(exclude_none=True))
    return serialize_doc(db["user"].find_one({"uid": data.uid})), True


def update_profile(db: Database, uid: str, data: ProfileUpdate) -> Dict[str, Any]:
    fields = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    fields["updated_at"] = now()
    user = db["user"].find_one_and_update({"uid": uid}, {"$set": fields}, return_document=ReturnDocument.AFTER)
    if not user:
        raise HTTPException(status_code=404, detail="User not found in database.")
    return serialize_doc(user)


def get_profile(db: Database, uid: str) -> Dict[str, Any]:
    user = db["user"].find_one({"uid": uid})
    if not user:
        raise HTTPException(status_code=404, detail="User not found in database.")
    return serialize_doc(user)


def list_profiles(db: Database) -> List[Dict[str, Any]]:
    return [serialize_doc(u) for u in get_documents(db, "user", newest_first=True)]


def set_user_field(db: Database, uid: str, field: str, value: str) -> Dict[str, Any]:
    user = db["user"].find_one_and_update(
        {"uid": uid},
        {"$set": {field: value, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise HTTPException(status_code=404, detail="User not found.")
    logger.info("User %s %s set to %s", uid, field, value)
    return serialize_doc(user)


@router.post("")
def sync_profile_route(data: ProfileSync, response: Response, current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    if not can_access_user_resource(current_user, data.uid):
        raise HTTPException(status_code=403, detail="Unauthorized: You can only sync your own profile.")
    user, created = sync_profile(db, data)
    if created:
        response.status_code = 201
        return {"message": "User profile created", "user": user}
    return {"message": "User profile updated", "user": user}


@router.get("")
def list_profiles_route(current_user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return list_profiles(db)


@router.put("/{uid}")
def update_profile_route(uid: str, data: ProfileUpdate, current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    if current_user.id != uid:
        raise HTTPException(status_code=403, detail="Unauthorized: You can only update your own profile.")
    return {"message": "User profile updated successfully", "user": update_profile(db, uid, data)}


@router.get("/{uid}")
def get_profile_route(uid: str, current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    if not can_access_user_resource(current_user, uid):
        raise HTTPException(status_code=403, detail="Unauthorized: You can only view your own profile or require admin access.")
    return {"user": get_profile(db, uid)}


@router.put("/{uid}/status")
def set_status_route(uid: str, data: StatusUpdate, current_user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    user = set_user_field(db, uid, "status", data.status)
    return {"message": f"User {user.get('email')} status updated to {data.status}.", "user": user}


@router.put("/{uid}/role")
def set_role_route(uid: str, data: RoleUpdate, current_user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    user = set_user_field(db, uid, "role", data.role)
    return {"message": f"User {user.get('email')} role updated to {data.role}.", "user": user}
