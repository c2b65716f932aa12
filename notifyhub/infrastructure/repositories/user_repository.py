"""Persistence helpers for the recipient directory."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from notifyhub.domain.entities import User
from notifyhub.infrastructure.models import UserModel


class UserRepository:
    """Read recipients and their contact details."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> User | None:
        model = self.session.get(UserModel, user_id)
        return self._to_entity(model) if model else None

    def get_map(self, user_ids: Iterable[int]) -> dict[int, User]:
        ids = {int(user_id) for user_id in user_ids}
        if not ids:
            return {}
        query = self.session.query(UserModel).filter(UserModel.id.in_(ids))
        return {model.id: self._to_entity(model) for model in query.all()}

    def list_ids_by_roles(self, roles: Iterable[str]) -> list[int]:
        normalized = {role.lower() for role in roles if role}
        if not normalized:
            return []
        query = (
            self.session.query(UserModel.id)
            .filter(func.lower(UserModel.role).in_(normalized))
            .filter(UserModel.is_active.is_(True))
            .order_by(UserModel.id)
        )
        return [user_id for (user_id,) in query.all()]

    def list(self) -> Sequence[User]:
        query = self.session.query(UserModel).order_by(UserModel.id)
        return [self._to_entity(model) for model in query.all()]

    def create(self, user: User) -> User:
        model = UserModel(
            name=user.name,
            email=user.email,
            phone=user.phone,
            push_token=user.push_token,
            role=user.role,
            is_active=user.is_active,
        )
        self.session.add(model)
        self.session.commit()
        self.session.refresh(model)
        return self._to_entity(model)

    @staticmethod
    def _to_entity(model: UserModel) -> User:
        return User(
            id=model.id,
            name=model.name,
            email=model.email,
            role=model.role,
            phone=model.phone,
            push_token=model.push_token,
            is_active=bool(model.is_active),
        )


__all__ = ["UserRepository"]
