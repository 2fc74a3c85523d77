"""Shared test data and fakes for planmatrix tests."""

from __future__ import annotations

import httpx

from planmatrix.common.config import (
    AccessFlag,
    ConfigDocument,
    Feature,
    Plan,
    PlanId,
    Role,
)
from planmatrix.services.config.sync import ConfigSync

CONFIG_URL = "https://config.example.test/plans_matrix.yml"

PLANS_MATRIX_YAML = """\
version: 1
generated_at: 2025-10-04
notes:
  - Initial matrix
features:
  - Calls
  - ScreenTime
  - Location
plans:
  Free:    { features: [Calls] }
  Basic:   { features: [Calls, ScreenTime] }
  Premium: { features: [Calls, ScreenTime, Location] }
roles: [Parent, Child, Member, self]
access:
  Parent:
    self:
      Free:    { Calls: R, ScreenTime: N, Location: N }
      Basic:   { Calls: R, ScreenTime: R, Location: N }
    Child:
      Premium: { Calls: R, ScreenTime: R, Location: R }
  Member:
    self:
      Free:    { Calls: R, ScreenTime: N, Location: N }
"""

R = AccessFlag.ALLOWED
N = AccessFlag.DENIED

EXPECTED_DOCUMENT = ConfigDocument(
    version=1,
    generated_at="2025-10-04",
    notes=("Initial matrix",),
    features=(Feature.CALLS, Feature.SCREEN_TIME, Feature.LOCATION),
    plans={
        PlanId.FREE: Plan(frozenset({Feature.CALLS})),
        PlanId.BASIC: Plan(frozenset({Feature.CALLS, Feature.SCREEN_TIME})),
        PlanId.PREMIUM: Plan(frozenset({Feature.CALLS, Feature.SCREEN_TIME, Feature.LOCATION})),
    },
    roles=frozenset({Role.PARENT, Role.CHILD, Role.MEMBER, Role.SELF}),
    access={
        Role.PARENT: {
            Role.SELF: {
                PlanId.FREE: {Feature.CALLS: R, Feature.SCREEN_TIME: N, Feature.LOCATION: N},
                PlanId.BASIC: {Feature.CALLS: R, Feature.SCREEN_TIME: R, Feature.LOCATION: N},
            },
            Role.CHILD: {
                PlanId.PREMIUM: {Feature.CALLS: R, Feature.SCREEN_TIME: R, Feature.LOCATION: R},
            },
        },
        Role.MEMBER: {
            Role.SELF: {
                PlanId.FREE: {Feature.CALLS: R, Feature.SCREEN_TIME: N, Feature.LOCATION: N},
            },
        },
    },
)


class FakeSync:
    """Stand-in for ConfigSync returning a fixed document or raising."""

    def __init__(self, document: ConfigDocument | None = None, error: Exception | None = None):
        self.document = document
        self.error = error
        self.calls = 0
        self.closed = False

    async def fetch_config(self) -> ConfigDocument:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.document

    async def close(self) -> None:
        self.closed = True


def yaml_sync(body: str = PLANS_MATRIX_YAML, status_code: int = 200) -> ConfigSync:
    """ConfigSync backed by an in-process HTTP transport."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, text=body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ConfigSync(config_url=CONFIG_URL, client=client)


