import logging
import secrets
from datetime import timedelta
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response

from . import config, schemas
from .auth import create_access_token, hash_password, verify_password
from .deps import get_current_user, get_notifier, get_storage, require_admin
from .notifications import Notifier
from .storage import Storage, StorageError
from .utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


def generate_otp_code() -> str:
    return str(secrets.randbelow(900000) + 100000)


async def check_resend_window(store: Storage, email: str, type: str):
    """Reject with 429 if a code of this type was issued too recently."""
    last = await store.get_last_otp_time(email, type)
    if last is None:
        return
    wait = config.get_settings().resend_timer
    elapsed = int((utcnow() - last).total_seconds())
    if elapsed < wait:
        remaining = wait - elapsed
        raise HTTPException(
            status_code=429,
            detail={
                "error": f"Please wait {remaining} seconds before requesting a new code",
                "remainingTime": remaining,
            },
        )


async def issue_otp(store: Storage, outbox: Notifier, email: str, type: str) -> schemas.OTP:
    expires_at = utcnow() + timedelta(seconds=config.get_settings().otp_expiry)
    otp = await store.create_otp(email, generate_otp_code(), type, expires_at)
    try:
        outbox.otp_issued(email, otp.code, type)
    except Exception:
        logger.exception("Failed to queue OTP email for %s", email)
    return otp


def _session(user: schemas.User) -> dict:
    return {
        "success": True,
        "user": user.public(),
        "access_token": create_access_token(user.id, user.role),
        "token_type": "bearer",
    }


# -------------------- Auth --------------------

@router.post("/api/auth/login")
async def login(payload: schemas.LoginRequest, store: Storage = Depends(get_storage)):
    user = await store.get_user_by_email(payload.email)
    if not user or not verify_password(payload.password, user.password):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return _session(user)


@router.post("/api/auth/signup", status_code=201)
async def signup(
    payload: schemas.UserCreate,
    store: Storage = Depends(get_storage),
    outbox: Notifier = Depends(get_notifier),
):
    if await store.get_user_by_email(payload.email):
        raise HTTPException(status_code=400, detail="Email already registered")

    user = await store.create_user(payload.model_copy(update={"role": "user", "password": hash_password(payload.password)}))
    await issue_otp(store, outbox, user.email, "email_verification")
    return {"success": True, "message": "Account created. Please verify your email.", "user": user.public()}


@router.post("/api/auth/verify-otp")
async def verify_otp(payload: schemas.VerifyOtpRequest, store: Storage = Depends(get_storage)):
    otp = await store.get_otp(payload.email, payload.code, payload.type)
    if not otp:
        raise HTTPException(status_code=400, detail="Invalid or expired OTP")

    if payload.type == "email_verification":
        user = await store.get_user_by_email(payload.email)
        if user:
            await store.update_user(user.id, {"is_email_verified": True})

    await store.delete_otp(otp)
    return {"success": True, "message": "OTP verified successfully"}


@router.post("/api/auth/resend-otp")
async def resend_otp(
    payload: schemas.OtpRequest,
    store: Storage = Depends(get_storage),
    outbox: Notifier = Depends(get_notifier),
):
    if payload.type != "email_change" and not await store.get_user_by_email(payload.email):
        raise HTTPException(status_code=404, detail="User not found")
    await check_resend_window(store, payload.email, payload.type)
    await issue_otp(store, outbox, payload.email, payload.type)
    return {"success": True, "message": "OTP sent successfully"}


@router.post("/api/auth/cancel-verification")
async def cancel_verification(payload: schemas.OtpRequest, store: Storage = Depends(get_storage)):
    # drops every pending code for the address, not only the given type
    await store.delete_all_otps_for_email(payload.email)
    return {"success": True, "message": "Verification cancelled"}


@router.post("/api/auth/forgot-password")
async def forgot_password(
    payload: schemas.ForgotPasswordRequest,
    store: Storage = Depends(get_storage),
    outbox: Notifier = Depends(get_notifier),
):
    if not await store.get_user_by_email(payload.email):
        raise HTTPException(status_code=404, detail="No account found with this email address")
    await check_resend_window(store, payload.email, "password_reset")
    await issue_otp(store, outbox, payload.email, "password_reset")
    return {"success": True, "message": "Verification code sent to your email"}


@router.post("/api/auth/reset-password")
async def reset_password(payload: schemas.ResetPasswordRequest, store: Storage = Depends(get_storage)):
    otp = await store.get_otp(payload.email, payload.code, "password_reset")
    if not otp:
        raise HTTPException(status_code=400, detail="Invalid or expired OTP")
    user = await store.get_user_by_email(payload.email)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    await store.update_user(user.id, {"password": hash_password(payload.new_password)})
    await store.delete_otp(otp)
    return {"success": True, "message": "Password reset successfully"}


@router.get("/api/auth/has-admin")
async def has_admin(store: Storage = Depends(get_storage)):
    return {"hasAdmin": await store.has_admin_account()}


@router.post("/api/auth/create-admin", status_code=201)
async def create_admin(
    payload: schemas.UserCreate,
    store: Storage = Depends(get_storage),
    outbox: Notifier = Depends(get_notifier),
):
    if await store.has_admin_account():
        raise HTTPException(status_code=400, detail="Admin account already exists")
    if await store.get_user_by_email(payload.email):
        raise HTTPException(status_code=400, detail="Email already registered")

    admin = await store.create_user(payload.model_copy(update={"role": "admin", "password": hash_password(payload.password)}))
    await issue_otp(store, outbox, admin.email, "email_verification")
    return {"success": True, "message": "Admin account created. Please verify your email.", "user": admin.public()}


# -------------------- Account --------------------

@router.get("/api/account/profile", response_model=schemas.UserRead)
async def get_profile(user: schemas.User = Depends(get_current_user)):
    return user.public()


@router.patch("/api/account/profile")
async def update_profile(
    payload: schemas.UpdateProfileRequest,
    user: schemas.User = Depends(get_current_user),
    store: Storage = Depends(get_storage),
):
    changes = {}
    if payload.new_password:
        if not payload.current_password:
            raise HTTPException(status_code=401, detail="Current password is required")
        if not verify_password(payload.current_password, user.password):
            raise HTTPException(status_code=401, detail="Current password is incorrect")
        changes["password"] = hash_password(payload.new_password)
    if payload.name:
        changes["name"] = payload.name

    if not changes:
        return {"success": True, "message": "No changes to update"}
    updated = await store.update_user(user.id, changes)
    return {"success": True, "user": updated.public()}


@router.post("/api/account/change-email")
async def change_email(
    payload: schemas.ChangeEmailRequest,
    user: schemas.User = Depends(get_current_user),
    store: Storage = Depends(get_storage),
    outbox: Notifier = Depends(get_notifier),
):
    if await store.get_user_by_email(payload.new_email):
        raise HTTPException(status_code=400, detail="Email already in use")
    await check_resend_window(store, payload.new_email, "email_change")
    await issue_otp(store, outbox, payload.new_email, "email_change")
    return {"success": True, "message": "Verification code sent to new email address"}


@router.post("/api/account/verify-email-change")
async def verify_email_change(
    payload: schemas.VerifyEmailChangeRequest,
    user: schemas.User = Depends(get_current_user),
    store: Storage = Depends(get_storage),
):
    otp = await store.get_otp(payload.new_email, payload.code, "email_change")
    if not otp:
        raise HTTPException(status_code=400, detail="Invalid or expired OTP")
    if await store.get_user_by_email(payload.new_email):
        raise HTTPException(status_code=400, detail="Email already in use")

    updated = await store.update_user(user.id, {"email": payload.new_email, "is_email_verified": True})
    await store.delete_otp(otp)
    return {"success": True, "message": "Email changed successfully", "user": updated.public()}


@router.delete("/api/account/delete")
async def delete_account(
    payload: schemas.DeleteAccountRequest,
    user: schemas.User = Depends(get_current_user),
    store: Storage = Depends(get_storage),
):
    if not verify_password(payload.password, user.password):
        raise HTTPException(status_code=401, detail="Invalid password")
    if user.role == "admin" and len(await store.get_admin_users()) <= 1:
        raise HTTPException(status_code=400, detail="Cannot delete the only admin account")

    await store.delete_all_otps_for_email(user.email)
    await store.delete_user(user.id)
    return {"success": True, "message": "Account permanently deleted"}


@router.get("/api/user/orders", response_model=List[schemas.Order])
async def get_my_orders(user: schemas.User = Depends(get_current_user), store: Storage = Depends(get_storage)):
    return await store.get_orders_by_email(user.email)


# -------------------- Backup / restore --------------------

@router.get("/api/admin/backup", response_model=schemas.Backup)
async def backup(response: Response, admin: schemas.User = Depends(require_admin), store: Storage = Depends(get_storage)):
    now = utcnow()
    response.headers["Content-Disposition"] = f"attachment; filename=database-backup-{int(now.timestamp() * 1000)}.json"
    # users and their credentials are never part of a backup
    return schemas.Backup(
        timestamp=now,
        data=schemas.BackupData(products=await store.get_all_products(), orders=await store.get_all_orders()),
    )


@router.post("/api/admin/restore")
async def restore(payload: schemas.Backup, admin: schemas.User = Depends(require_admin), store: Storage = Depends(get_storage)):
    restored_products = 0
    for product in payload.data.products:
        try:
            await store.put_product(product)
            restored_products += 1
        except StorageError as e:
            logger.error("Failed to restore product %s: %s", product.id, e)

    restored_orders = 0
    for order in payload.data.orders:
        # written as-is: restoring an order never touches stock
        try:
            await store.put_order(order)
            restored_orders += 1
        except StorageError as e:
            logger.error("Failed to restore order %s: %s", order.id, e)

    logger.info("Backup restored by %s: %d products, %d orders", admin.email, restored_products, restored_orders)
    return {
        "success": True,
        "message": "Backup restored successfully",
        "stats": {"products": restored_products, "orders": restored_orders},
    }
