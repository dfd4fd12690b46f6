# Overview: Service-layer operations for business API tokens; issue, hash and validate bearer tokens.

"""
Business API Token Service

Merchant integrations authenticate with a long-lived bearer token.

- Plaintext tokens are 32 random bytes (64 hex chars), shown once on issue
- Only the SHA-256 hash is stored; lookups go by hash
- Revoked tokens and tokens of deactivated businesses are rejected
"""

from __future__ import annotations

import hashlib
import secrets

from ..extensions import db
from ..models import Business, BusinessToken
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, to_text


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_business(name: str) -> Business:
    name = to_text(name)
    if not name:
        raise ValidationError("Business name is required")
    business = Business(name=name, is_active=True)
    db.session.add(business)
    db.session.commit()
    return business


def issue_business_token(business_id: int, name: str | None = None) -> tuple[BusinessToken, str]:
    """
    Create a token for the business.

    Returns:
        (BusinessToken row, plaintext token). The plaintext is not recoverable later.
    """
    business = db.session.query(Business).filter_by(id=business_id).first()
    if not business:
        raise NotFoundError(f"Business {business_id} not found")

    plaintext = generate_token()
    token = BusinessToken(
        business_id=business.id,
        token_hash=hash_token(plaintext),
        name=to_text(name),
        is_revoked=False,
    )
    db.session.add(token)
    db.session.commit()
    return token, plaintext


def revoke_business_token(token_id: int) -> bool:
    token = db.session.query(BusinessToken).filter_by(id=token_id).first()
    if not token:
        return False
    token.is_revoked = True
    db.session.commit()
    return True


def validate_business_token(plaintext: str) -> Business | None:
    """Business owning a valid token, or None."""
    if not plaintext:
        return None

    token = (
        db.session.query(BusinessToken)
        .filter_by(token_hash=hash_token(plaintext), is_revoked=False)
        .first()
    )
    if not token:
        return None

    business = db.session.query(Business).filter_by(id=token.business_id).first()
    if not business or not business.is_active:
        return None

    token.last_used_at = utcnow()
    db.session.commit()
    return business
