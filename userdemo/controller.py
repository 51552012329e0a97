"""Business operations on users."""

from __future__ import annotations

from typing import Protocol

from userdemo.repository import User


class _Repository(Protocol):
    def get_all(self) -> list[User]: ...

    def create(self, name: str, email: str) -> User: ...


class UserController:
    """Lists and creates users through a repository."""

    def __init__(self, repository: _Repository) -> None:
        self.repository = repository

    def get_users(self) -> list[User]:
        return self.repository.get_all()

    def create_user(self, name: str, email: str) -> User:
        return self.repository.create(name, email)