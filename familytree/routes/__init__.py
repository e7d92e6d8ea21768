"""
HTTP routes for the family tree API.
"""

from __future__ import annotations

from fastapi import APIRouter

from familytree.routes import auth, contact, people, relationships, users

router = APIRouter()


@router.get("/")
def health():
    return {"status": "ok", "message": "Server is running"}


router.include_router(auth.router)
router.include_router(users.router)
router.include_router(people.router)
router.include_router(relationships.router)
router.include_router(contact.router)
