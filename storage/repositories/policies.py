"""
Policies Repository.

Responsibilities:
- Store, list and fetch account policy documents.

Invariant:
Only documents that parse into a PolicyConfig are stored.
"""

from typing import List, Optional

from leadstitch.database import StoredPolicy
from leadstitch.errors import PolicyValidationError
from leadstitch.policy import parse_policy


def add_policy(session, account_id: int, name: str, yaml_text: str, is_default: bool = False) -> StoredPolicy:
    """
    Validate and store a policy document.

    Raises:
        PolicyValidationError: invalid document or duplicate name
    """
    parse_policy(yaml_text)

    existing = session.query(StoredPolicy).filter_by(account_id=account_id, name=name).first()
    if existing is not None:
        raise PolicyValidationError("Policy with this name already exists", [f"duplicate name: {name}"])

    if is_default:
        session.query(StoredPolicy).filter_by(account_id=account_id, is_default=True).update(
            {StoredPolicy.is_default: False}, synchronize_session=False
        )

    policy = StoredPolicy(account_id=account_id, name=name, yaml=yaml_text, is_default=is_default)
    session.add(policy)
    session.flush()
    return policy


def list_policies(session, account_id: int) -> List[StoredPolicy]:
    return (
        session.query(StoredPolicy)
        .filter_by(account_id=account_id)
        .order_by(StoredPolicy.created_at, StoredPolicy.id)
        .all()
    )


def get_policy_document(session, account_id: int, policy_id: Optional[int]) -> Optional[str]:
    """YAML for policy_id, or the account default when policy_id is None."""
    query = session.query(StoredPolicy.yaml).filter(StoredPolicy.account_id == account_id)
    if policy_id is None:
        row = query.filter(StoredPolicy.is_default.is_(True)).first()
    else:
        row = query.filter(StoredPolicy.id == policy_id).first()
    return row[0] if row else None
