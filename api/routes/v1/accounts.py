"""
api/routes/v1/accounts.py -- Administrative account endpoints.

Routes:
  GET   /api/v1/accounts/{account_id}   -- public view of any account (admin only)
  PATCH /api/v1/accounts/{account_id}   -- change role / is_active (admin only)

This is the only place an account's role can change after registration.

Security:
  Both routes list authenticate_request before require_role(Role.admin), so
  the guard always sees the principal of the current request.
  PATCH blocks self-deactivation and self-demotion. The caller is always an
  active admin, so this also keeps at least one active admin in place.
  A role change or deactivation does not revoke tokens already issued, but a
  deactivated account is rejected on its next request because
  authenticate_request reloads the account every time.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import AccountPatch, AccountView
from auth.dependencies import authenticate_request, require_role
from auth.models import Account, Principal, Role
from auth.store import AccountStore

logger = logging.getLogger("rentally.api.accounts")

router = APIRouter(dependencies=[Depends(authenticate_request), Depends(require_role(Role.admin))])


def _get_or_404(store: AccountStore, account_id: str) -> Account:
    account = store.find_by_id(account_id)
    if account is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Account not found."},
        )
    return account


@router.get("/accounts/{account_id}", response_model=AccountView)
def get_account(request: Request, account_id: str) -> AccountView:
    store: AccountStore = request.app.state.account_store
    return AccountView.from_account(_get_or_404(store, account_id))


@router.patch("/accounts/{account_id}", response_model=AccountView)
def update_account(request: Request, account_id: str, body: AccountPatch) -> AccountView:
    """Update an account's role or active status.

    Prevents:
      - Self-deactivation or self-demotion (admin locking themselves out).
    """
    store: AccountStore = request.app.state.account_store
    principal: Principal = request.state.principal
    target = _get_or_404(store, account_id)

    deactivating = body.is_active is False and target.is_active
    demoting = body.role is not None and body.role != Role.admin and target.role == Role.admin

    if (deactivating or demoting) and target.id == principal.account_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_lockout", "message": "You cannot deactivate or demote your own account."},
        )

    updates: dict = {}
    if body.role is not None:
        updates["role"] = body.role
    if body.is_active is not None:
        updates["is_active"] = body.is_active
    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )

    updated = store.update(account_id, **updates)
    if updated is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Account not found."},
        )
    logger.info(
        "Admin %s updated account %s: %s",
        principal.account_id,
        account_id,
        {k: getattr(v, "value", v) for k, v in updates.items()},
    )
    return AccountView.from_account(updated)
