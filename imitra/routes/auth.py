# Authentication, account self-service and admin user management

import asyncio
import logging
import secrets
from datetime import timedelta
from typing import List, Optional, Dict, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from ..config import (
    COOKIE_SECURE, FRONTEND_URL, JWT_EXPIRE_HOURS, RATE_LIMIT_AUTH, new_id, now_utc,
)
from ..db import get_db, executor
from ..messaging import send_email, send_sms
from ..models import (
    Department, ForgotPasswordRequest, PasswordUpdate, PhoneVerification, ProfileUpdate,
    ResetPasswordRequest, TokenResponse, UserCreate, UserLogin, UserResponse, UserRole,
    UserUpdate, role_field_error,
)
from ..security import (
    TOKEN_COOKIE, generate_reset_token, get_current_user, hash_password, hash_token,
    limiter, oauth2_scheme, request_token, require_role, revoke_token, token_for,
    user_to_response, validate_uuid, verify_password,
)
from ..workflow import check_department_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

RESET_TOKEN_MINUTES = 10

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def build_user_doc(data: UserCreate) -> Dict[str, Any]:
    now = now_utc()
    doc = {
        "_id": new_id(), "name": data.name, "email": data.email, "phone": data.phone,
        "hashed_password": hash_password(data.password), "role": data.role.value,
        "is_active": True, "phone_verified": False,
        "preferred_language": data.preferred_language.value,
        "notification_preferences": {"email": True, "sms": True, "push": True},
        "last_login": None, "created_at": now, "updated_at": now,
    }
    if data.role in (UserRole.OFFICER, UserRole.MITRA):
        doc["department"] = data.department.value
        doc["employee_id"] = data.employee_id
    if data.role == UserRole.CITIZEN:
        doc["address"] = data.address
        doc["zone"] = data.zone.value
    if data.role == UserRole.MITRA:
        doc["assigned_officer"] = data.assigned_officer
    return doc

def set_token_cookie(response: Response, token: str) -> None:
    response.set_cookie(TOKEN_COOKIE, token, httponly=True, samesite="lax",
                        secure=COOKIE_SECURE, max_age=JWT_EXPIRE_HOURS * 3600)

def issue_token(user: dict, response: Response) -> TokenResponse:
    token = token_for(user)
    set_token_cookie(response, token)
    return TokenResponse(access_token=token, user=user_to_response(user))

async def check_mitra_officer(db, officer_id: str, department: Optional[str]) -> None:
    loop = asyncio.get_event_loop()
    officer = await loop.run_in_executor(
        executor, db.users.find_one, {"_id": officer_id, "role": UserRole.OFFICER.value})
    if not officer:
        raise HTTPException(status_code=400, detail="Assigned officer not found")
    if officer.get("department") != department:
        raise HTTPException(status_code=400, detail="Assigned officer must belong to the same department")

async def apply_profile_update(user: dict, update: ProfileUpdate, db) -> dict:
    set_fields: Dict[str, Any] = {}
    if update.name is not None:
        set_fields["name"] = update.name
    if update.phone is not None and update.phone != user.get("phone"):
        set_fields["phone"] = update.phone
        set_fields["phone_verified"] = False
    if update.address is not None:
        set_fields["address"] = update.address
    if update.zone is not None:
        set_fields["zone"] = update.zone.value
    if update.preferred_language is not None:
        set_fields["preferred_language"] = update.preferred_language.value
    if not set_fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    set_fields["updated_at"] = now_utc()
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(
        executor, lambda: db.users.update_one({"_id": user["_id"]}, {"$set": set_fields}))
    return await loop.run_in_executor(executor, db.users.find_one, {"_id": user["_id"]})

# ---------------------------------------------------------------------------
# AUTH ENDPOINTS
# ---------------------------------------------------------------------------
@router.post("/register", response_model=TokenResponse, status_code=201)
@limiter.limit(RATE_LIMIT_AUTH)
async def register(request: Request, response: Response, user_data: UserCreate, db=Depends(get_db)):
    # Public registration is citizen-only; staff accounts are created by an administrator
    if user_data.role != UserRole.CITIZEN:
        raise HTTPException(status_code=403, detail="Public registration is for citizens only. Staff accounts must be created by an administrator.")
    loop = asyncio.get_event_loop()
    existing = await loop.run_in_executor(executor, db.users.find_one, {"email": user_data.email})
    if existing:
        raise HTTPException(status_code=400, detail="Email already exists")
    user_doc = build_user_doc(user_data)
    await loop.run_in_executor(executor, db.users.insert_one, user_doc)
    logger.info("Registered citizen %s", user_doc["email"])
    return issue_token(user_doc, response)

@router.post("/login", response_model=TokenResponse)
@limiter.limit(RATE_LIMIT_AUTH)
async def login(request: Request, response: Response, form: UserLogin, db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    user = await loop.run_in_executor(executor, db.users.find_one, {"email": form.email.strip().lower()})
    if not user or not verify_password(form.password, user["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="Account has been deactivated")
    user["last_login"] = now_utc()
    await loop.run_in_executor(
        executor, lambda: db.users.update_one({"_id": user["_id"]}, {"$set": {"last_login": user["last_login"]}}))
    return issue_token(user, response)

@router.post("/logout")
async def logout(request: Request, response: Response, bearer: Optional[str] = Depends(oauth2_scheme)):
    token = request_token(request, bearer)
    if token:
        revoke_token(token)
    response.delete_cookie(TOKEN_COOKIE)
    return {"detail": "Logged out successfully"}

@router.get("/me", response_model=UserResponse)
async def get_me(user=Depends(get_current_user)):
    return user_to_response(user)

@router.put("/update-details", response_model=UserResponse)
async def update_details(update: ProfileUpdate, user=Depends(get_current_user), db=Depends(get_db)):
    return user_to_response(await apply_profile_update(user, update, db))

@router.put("/update-password", response_model=TokenResponse)
async def update_password(request: Request, response: Response, data: PasswordUpdate,
                          bearer: Optional[str] = Depends(oauth2_scheme),
                          user=Depends(get_current_user), db=Depends(get_db)):
    if not verify_password(data.current_password, user["hashed_password"]):
        raise HTTPException(status_code=401, detail="Password is incorrect")
    hashed = hash_password(data.new_password)
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, lambda: db.users.update_one(
        {"_id": user["_id"]}, {"$set": {"hashed_password": hashed, "updated_at": now_utc()}}))
    revoke_token(request_token(request, bearer))
    logger.info("User %s changed password", user["email"])
    return issue_token(user, response)

@router.post("/forgot-password")
@limiter.limit(RATE_LIMIT_AUTH)
async def forgot_password(request: Request, data: ForgotPasswordRequest, db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    user = await loop.run_in_executor(executor, db.users.find_one, {"email": data.email.lower()})
    if not user:
        raise HTTPException(status_code=404, detail="There is no user with that email")
    raw, digest = generate_reset_token()
    expires = now_utc() + timedelta(minutes=RESET_TOKEN_MINUTES)
    await loop.run_in_executor(executor, lambda: db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {"reset_password_token": digest, "reset_password_expire": expires}}))
    try:
        await send_email(user["email"], "i-Mitra password reset", "password_reset",
                         name=user["name"], reset_url=f"{FRONTEND_URL}/reset-password/{raw}")
    except Exception as e:
        logger.error("Reset email to %s failed: %s", user["email"], e)
        await loop.run_in_executor(executor, lambda: db.users.update_one(
            {"_id": user["_id"]}, {"$unset": {"reset_password_token": "", "reset_password_expire": ""}}))
        raise HTTPException(status_code=500, detail="Email could not be sent")
    return {"detail": "Password reset email sent"}

@router.put("/reset-password/{token}", response_model=TokenResponse)
async def reset_password(token: str, data: ResetPasswordRequest, response: Response, db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    user = await loop.run_in_executor(executor, db.users.find_one, {
        "reset_password_token": hash_token(token), "reset_password_expire": {"$gt": now_utc()}})
    if not user:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")
    hashed = hash_password(data.password)
    await loop.run_in_executor(executor, lambda: db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {"hashed_password": hashed, "updated_at": now_utc()},
         "$unset": {"reset_password_token": "", "reset_password_expire": ""}}))
    return issue_token(user, response)

@router.post("/send-phone-verification")
async def send_phone_verification(user=Depends(get_current_user), db=Depends(get_db)):
    if user.get("phone_verified"):
        raise HTTPException(status_code=400, detail="Phone already verified")
    code = f"{secrets.randbelow(10 ** 6):06d}"
    expires = now_utc() + timedelta(minutes=RESET_TOKEN_MINUTES)
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, lambda: db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {"phone_verification_code": hash_token(code), "phone_verification_expire": expires}}))
    try:
        await send_sms(user["phone"], "phone_verification", code=code)
    except Exception as e:
        logger.error("Verification SMS to %s failed: %s", user["phone"], e)
        raise HTTPException(status_code=500, detail="SMS could not be sent")
    return {"detail": "Verification code sent"}

@router.post("/verify-phone", response_model=UserResponse)
async def verify_phone(data: PhoneVerification, user=Depends(get_current_user), db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    result = await loop.run_in_executor(executor, lambda: db.users.update_one(
        {"_id": user["_id"], "phone_verification_code": hash_token(data.code),
         "phone_verification_expire": {"$gt": now_utc()}},
        {"$set": {"phone_verified": True},
         "$unset": {"phone_verification_code": "", "phone_verification_expire": ""}}))
    if result.matched_count == 0:
        raise HTTPException(status_code=400, detail="Invalid or expired verification code")
    updated = await loop.run_in_executor(executor, db.users.find_one, {"_id": user["_id"]})
    return user_to_response(updated)

@router.get("/department/{department}/mitra", response_model=List[UserResponse])
async def department_mitra(department: Department,
                           user=Depends(require_role(UserRole.OFFICER.value, UserRole.ADMIN.value)),
                           db=Depends(get_db)):
    check_department_access(user, department.value)
    loop = asyncio.get_event_loop()
    mitra = await loop.run_in_executor(executor, lambda: list(db.users.find(
        {"role": UserRole.MITRA.value, "department": department.value, "is_active": True}).sort("name", 1)))
    return [user_to_response(m) for m in mitra]

# ---------------------------------------------------------------------------
# ADMIN USER MANAGEMENT ENDPOINTS
# ---------------------------------------------------------------------------
@router.get("/users", response_model=List[UserResponse])
async def admin_list_users(role: Optional[UserRole] = None, department: Optional[Department] = None,
                           is_active: Optional[bool] = None,
                           limit: int = Query(50, ge=1, le=100), skip: int = Query(0, ge=0, le=10000),
                           user=Depends(require_role(UserRole.ADMIN.value)),
                           db=Depends(get_db)):
    query: Dict[str, Any] = {}
    if role:
        query["role"] = role.value
    if department:
        query["department"] = department.value
    if is_active is not None:
        query["is_active"] = is_active
    loop = asyncio.get_event_loop()
    users = await loop.run_in_executor(
        executor, lambda: list(db.users.find(query).sort("created_at", -1).skip(skip).limit(limit)))
    return [user_to_response(u) for u in users]

@router.get("/users/{user_id}", response_model=UserResponse)
async def admin_get_user(user_id: str, user=Depends(require_role(UserRole.ADMIN.value)),
                         db=Depends(get_db)):
    user_id = validate_uuid(user_id, "user_id")
    loop = asyncio.get_event_loop()
    target = await loop.run_in_executor(executor, db.users.find_one, {"_id": user_id})
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    return user_to_response(target)

@router.post("/users", response_model=UserResponse, status_code=201)
async def admin_create_user(user_data: UserCreate,
                            user=Depends(require_role(UserRole.ADMIN.value)),
                            db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    existing = await loop.run_in_executor(executor, db.users.find_one, {"email": user_data.email})
    if existing:
        raise HTTPException(status_code=400, detail="Email already exists")
    if user_data.role == UserRole.MITRA:
        await check_mitra_officer(db, user_data.assigned_officer, user_data.department.value)
    user_doc = build_user_doc(user_data)
    await loop.run_in_executor(executor, db.users.insert_one, user_doc)
    logger.info("Admin %s created user %s (%s)", user["email"], user_doc["email"], user_doc["role"])
    return user_to_response(user_doc)

@router.put("/users/{user_id}", response_model=UserResponse)
async def admin_update_user(user_id: str, update: UserUpdate,
                            user=Depends(require_role(UserRole.ADMIN.value)),
                            db=Depends(get_db)):
    user_id = validate_uuid(user_id, "user_id")
    loop = asyncio.get_event_loop()
    target = await loop.run_in_executor(executor, db.users.find_one, {"_id": user_id})
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    set_fields: Dict[str, Any] = {}
    for field in ("name", "phone", "employee_id", "address", "assigned_officer", "is_active"):
        value = getattr(update, field)
        if value is not None:
            set_fields[field] = value
    if update.email is not None:
        set_fields["email"] = update.email.lower()
    for field in ("role", "department", "zone"):
        value = getattr(update, field)
        if value is not None:
            set_fields[field] = value.value
    if update.password is not None:
        set_fields["hashed_password"] = hash_password(update.password)
    if not set_fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    merged = {**target, **set_fields}
    error = role_field_error(merged["role"], merged.get("department"), merged.get("employee_id"),
                             merged.get("address"), merged.get("zone"), merged.get("assigned_officer"))
    if error:
        raise HTTPException(status_code=400, detail=error)
    if merged["role"] == UserRole.MITRA.value:
        await check_mitra_officer(db, merged["assigned_officer"], merged.get("department"))
    set_fields["updated_at"] = now_utc()
    result = await loop.run_in_executor(
        executor, lambda: db.users.update_one({"_id": user_id}, {"$set": set_fields}))
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    updated = await loop.run_in_executor(executor, db.users.find_one, {"_id": user_id})
    logger.info("Admin %s updated user %s", user["email"], target["email"])
    return user_to_response(updated)

@router.delete("/users/{user_id}")
async def admin_delete_user(user_id: str,
                            user=Depends(require_role(UserRole.ADMIN.value)),
                            db=Depends(get_db)):
    user_id = validate_uuid(user_id, "user_id")
    if str(user["_id"]) == user_id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")
    loop = asyncio.get_event_loop()
    target = await loop.run_in_executor(executor, db.users.find_one, {"_id": user_id})
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    def cascade():
        now = now_utc()
        if target["role"] == UserRole.CITIZEN.value:
            db.complaints.update_many(
                {"citizen.user_id": user_id},
                {"$set": {"is_deleted": True, "deleted_at": now, "deleted_by": str(user["_id"])}})
        elif target["role"] == UserRole.OFFICER.value:
            db.complaints.update_many({"assigned_officer": user_id},
                                      {"$set": {"assigned_officer": None, "updated_at": now}})
        elif target["role"] == UserRole.MITRA.value:
            db.complaints.update_many({"assigned_mitra": user_id},
                                      {"$set": {"assigned_mitra": None, "updated_at": now}})
        db.notifications.delete_many({"user_id": user_id})
        db.users.delete_one({"_id": user_id})
    await loop.run_in_executor(executor, cascade)
    logger.info("Admin %s deleted user %s", user["email"], target["email"])
    return {"detail": f"User '{target['email']}' deleted"}
