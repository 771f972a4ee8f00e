from __future__ import annotations

from enum import Enum


class Role(str, Enum):
  """Project membership roles.

  The three roles are flat tags: each endpoint names the set it accepts and no
  role implies another. ``project_admin`` is accepted by the enum but no endpoint
  currently grants it anything beyond plain membership.
  """

  ADMIN = "admin"
  PROJECT_ADMIN = "project_admin"
  MEMBER = "member"

  def allows(self, required: frozenset[Role]) -> bool:
    # empty set: any membership passes
    if not required:
      return True
    return self in required


class TaskStatus(str, Enum):
  TODO = "todo"
  IN_PROCESS = "in_process"
  DONE = "done"


ANY_MEMBER: frozenset[Role] = frozenset()
ADMIN_ONLY: frozenset[Role] = frozenset({Role.ADMIN})
ADMIN_OR_MEMBER: frozenset[Role] = frozenset({Role.ADMIN, Role.MEMBER})
