from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, BeforeValidator, EmailStr, Field, model_validator

RoleName = Literal["admin", "project_admin", "member"]
TaskStatusName = Literal["todo", "in_process", "done"]


def _strip(value: object) -> object:
  if isinstance(value, str):
    return value.strip()
  return value


Stripped = Annotated[str, BeforeValidator(_strip)]


class UserSummary(BaseModel):
  id: str
  username: str
  fullname: str | None = None
  email: str


class UserOut(UserSummary):
  role: str
  isEmailVerified: bool
  createdAt: datetime
  updatedAt: datetime


class RegisterIn(BaseModel):
  email: EmailStr
  username: Stripped = Field(min_length=3, max_length=13)
  password: str = Field(min_length=6, max_length=200)
  fullname: Stripped | None = Field(default=None, max_length=120)



class LoginIn(BaseModel):
  email: EmailStr
  password: str = Field(min_length=1, max_length=200)


class LoginOut(BaseModel):
  user: UserOut
  accessToken: str
  refreshToken: str


class ResendVerificationIn(BaseModel):
  email: EmailStr
  password: str = Field(min_length=1, max_length=200)


class RefreshTokenIn(BaseModel):
  refreshToken: str | None = None


class TokenPairOut(BaseModel):
  accessToken: str
  refreshToken: str


class ForgotPasswordIn(BaseModel):
  email: EmailStr


class ResetPasswordIn(BaseModel):
  newPassword: str = Field(min_length=6, max_length=200)


class ChangePasswordIn(BaseModel):
  oldPassword: str = Field(min_length=1, max_length=200)
  newPassword: str = Field(min_length=6, max_length=200)


class ProjectCreateIn(BaseModel):
  name: Stripped = Field(min_length=1, max_length=200)
  description: str | None = Field(default=None, max_length=5000)



class ProjectUpdateIn(BaseModel):
  name: Stripped | None = Field(default=None, min_length=1, max_length=200)
  description: str | None = Field(default=None, max_length=5000)


  @model_validator(mode="after")
  def at_least_one(self) -> ProjectUpdateIn:
    if self.name is None and self.description is None:
      raise ValueError("name or description is required")
    return self


class ProjectOut(BaseModel):
  id: str
  name: str
  description: str | None = None
  createdBy: UserSummary | None = None
  role: RoleName | None = None
  createdAt: datetime
  updatedAt: datetime


class MemberAddIn(BaseModel):
  email: EmailStr
  role: RoleName = "member"


class MemberRoleIn(BaseModel):
  role: RoleName


class MemberOut(BaseModel):
  id: str
  projectId: str
  user: UserSummary
  role: RoleName
  createdAt: datetime
  updatedAt: datetime


class AttachmentOut(BaseModel):
  id: str
  url: str
  externalId: str
  filename: str
  mimetype: str
  size: int
  createdAt: datetime


class TaskCreateIn(BaseModel):
  title: Stripped = Field(min_length=1, max_length=200)
  description: str = Field(default="", max_length=20000)
  assignedTo: str | None = None
  status: TaskStatusName = "todo"



class TaskUpdateIn(BaseModel):
  title: Stripped | None = Field(default=None, min_length=1, max_length=200)
  description: str | None = Field(default=None, max_length=20000)


  @model_validator(mode="after")
  def at_least_one(self) -> TaskUpdateIn:
    if self.title is None and self.description is None:
      raise ValueError("title or description is required")
    return self


class TaskStatusIn(BaseModel):
  status: TaskStatusName


class TaskAssignIn(BaseModel):
  assignedTo: str


class TaskOut(BaseModel):
  id: str
  projectId: str
  title: str
  description: str
  status: TaskStatusName
  assignedTo: UserSummary | None = None
  assignedBy: UserSummary | None = None
  attachments: list[AttachmentOut] = Field(default_factory=list)
  createdAt: datetime
  updatedAt: datetime


class SubTaskCreateIn(BaseModel):
  title: Stripped = Field(min_length=1, max_length=200)



class SubTaskUpdateIn(BaseModel):
  title: Stripped | None = Field(default=None, min_length=1, max_length=200)
  isCompleted: bool | None = None


  @model_validator(mode="after")
  def at_least_one(self) -> SubTaskUpdateIn:
    if self.title is None and self.isCompleted is None:
      raise ValueError("title or isCompleted is required")
    return self


class SubTaskOut(BaseModel):
  id: str
  taskId: str
  title: str
  isCompleted: bool
  createdBy: str | None = None
  createdAt: datetime
  updatedAt: datetime


class NoteIn(BaseModel):
  content: Stripped = Field(min_length=1, max_length=20000)



class NoteOut(BaseModel):
  id: str
  projectId: str
  content: str
  createdBy: UserSummary | None = None
  createdAt: datetime
  updatedAt: datetime


class DeletedOut(BaseModel):
  id: str
  deleted: bool = True
